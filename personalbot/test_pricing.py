import datetime
import random
from unittest.mock import patch

from personalbot.services.pricing import (
    CarDetails,
    PricingService,
    base_premium,
    discount_for,
    estimate_vehicle_value,
    features_for,
)

THIS_YEAR = datetime.date.today().year


def test_new_car_keeps_full_value():
    assert estimate_vehicle_value("Honda City", THIS_YEAR) == 1_200_000


def test_value_depreciates_per_year():
    assert estimate_vehicle_value("honda city", THIS_YEAR - 2) == round(1_200_000 * 0.9 ** 2)


def test_unknown_model_uses_default_table_entry():
    assert estimate_vehicle_value("Tesla Model 3", THIS_YEAR) == 800_000


def test_premium_rate_by_age_band():
    assert base_premium(1_000_000, THIS_YEAR, "comprehensive") == 26_500
    assert base_premium(1_000_000, THIS_YEAR - 3, "comprehensive") == 29_500
    assert base_premium(1_000_000, THIS_YEAR - 5, "comprehensive") == 33_500
    assert base_premium(1_000_000, THIS_YEAR - 9, "comprehensive") == 39_500


def test_third_party_premium():
    assert base_premium(1_000_000, THIS_YEAR - 9, "third-party") == 3_500


def test_discount_and_features():
    assert discount_for(THIS_YEAR).startswith("20% new car discount")
    assert "Zero Depreciation Cover" in features_for("comprehensive")
    assert "Zero Depreciation Cover" not in features_for("third-party")


async def test_quote_is_cached():
    service = PricingService(rng=random.Random(1))
    car = CarDetails(model="honda city", year=2021)
    first = await service.get_car_quote(car)
    second = await service.get_car_quote(car)
    assert first is second
    assert first["source"] == "TATA AIG Market Data"


async def test_quote_varies_within_ten_percent():
    service = PricingService(rng=random.Random(3))
    car = CarDetails(model="honda city", year=THIS_YEAR)
    quote = await service.get_car_quote(car)
    expected = base_premium(1_200_000, THIS_YEAR, "comprehensive")
    assert 0.9 * expected <= quote["premium"] <= 1.1 * expected


async def test_failure_returns_fallback_quote():
    service = PricingService()
    with patch("personalbot.services.pricing.estimate_vehicle_value", side_effect=RuntimeError("boom")):
        quote = await service.get_car_quote(CarDetails(model="honda city"))
    assert quote["premium"] == 18500
    assert quote["source"] == "Fallback Data"
