"""
Motor insurance pricing source.

Estimates a market quote from vehicle model, year and coverage type.
Quotes are cached in memory per vehicle for an hour so that repeated
negotiations for the same car are priced consistently; any failure
returns a fixed fallback quote instead of raising.
"""

import asyncio
import datetime
import logging
import random
import time
from dataclasses import dataclass
from typing import Any

from personalbot.graph.schemas import format_rupees

logger = logging.getLogger(__name__)

# model -> (new vehicle value in ₹, yearly depreciation)
_VEHICLE_VALUES: dict[str, tuple[int, float]] = {
    "maruti swift": (800_000, 0.12),
    "hyundai i20": (900_000, 0.11),
    "honda city": (1_200_000, 0.10),
    "maruti baleno": (850_000, 0.12),
    "tata nexon": (1_000_000, 0.13),
    "mahindra xuv500": (1_800_000, 0.15),
    "toyota innova": (2_000_000, 0.10),
    "hyundai verna": (1_100_000, 0.11),
    "hyundai creta": (1_400_000, 0.12),
    "hyundai venue": (1_000_000, 0.12),
    "bmw 3 series": (4_500_000, 0.20),
    "audi a4": (5_000_000, 0.22),
    "mercedes c class": (5_500_000, 0.20),
}
_DEFAULT_VALUE = (800_000, 0.15)

_FIXED_CHARGES = 1500  # registration, handling
_THIRD_PARTY_BASE = 2500

_BASE_FEATURES = [
    "24/7 Roadside Assistance",
    "Cashless Claims Network",
    "Personal Accident Cover",
]
_COMPREHENSIVE_FEATURES = [
    "Zero Depreciation Cover",
    "Engine Protection",
    "Return to Invoice",
]
_SPECIAL_OFFERS = [
    "Multi-year policy discount up to 15%",
    "Family floater discount 5%",
    "Anti-theft device discount 2.5%",
    "Voluntary deductible discount up to 15%",
]
_NCB_LADDER = "20% for 1 year, 25% for 2 years, 35% for 3 years, 45% for 4 years, 50% for 5+ years"


@dataclass(frozen=True)
class CarDetails:
    model: str
    year: int = 2020
    coverage_type: str = "comprehensive"  # comprehensive | third-party


def _vehicle_age(year: int) -> int:
    return max(0, datetime.date.today().year - year)


def estimate_vehicle_value(model: str, year: int) -> int:
    """Depreciated market value (IDV) of the vehicle."""
    base, depreciation = _VEHICLE_VALUES.get(model.lower().strip(), _DEFAULT_VALUE)
    return round(base * (1 - depreciation) ** _vehicle_age(year))


def base_premium(vehicle_value: int, year: int, coverage_type: str) -> int:
    if coverage_type == "third-party":
        return round(_THIRD_PARTY_BASE + vehicle_value * 0.001)

    age = _vehicle_age(year)
    if age <= 1:
        rate = 0.025
    elif age <= 3:
        rate = 0.028
    elif age <= 5:
        rate = 0.032
    else:
        rate = 0.038
    return round(vehicle_value * rate + _FIXED_CHARGES)


def discount_for(year: int) -> str:
    age = _vehicle_age(year)
    if age <= 1:
        return "20% new car discount + 10% online discount"
    if age <= 3:
        return "15% low depreciation discount + 10% online discount"
    return "10% online discount + 5% loyalty discount"


def features_for(coverage_type: str) -> list[str]:
    if coverage_type == "comprehensive":
        return _BASE_FEATURES + _COMPREHENSIVE_FEATURES
    return list(_BASE_FEATURES)


def fallback_quote() -> dict:
    return {
        "policy_name": "TATA AIG Motor Insurance",
        "plan_name": "Comprehensive Plan",
        "premium": 18500,
        "coverage": "₹8,00,000 (IDV) + ₹15,00,000 (Third Party)",
        "discount": "15% online discount + 5% loyalty discount",
        "features": [
            "Zero Depreciation Cover",
            "24/7 Roadside Assistance",
            "Cashless Claims",
            "Personal Accident Cover",
        ],
        "ncb": "Up to 50% No Claim Bonus",
        "special_offers": "Multi-year discount available",
        "source": "Fallback Data",
    }


class PricingService:
    """Quote source with a TTL cache and a fallback value."""

    def __init__(self, ttl_seconds: float = 3600.0, rng: random.Random | None = None) -> None:
        self._ttl = ttl_seconds
        self._rng = rng or random.Random()
        self._cache: dict[str, tuple[float, Any]] = {}  # key -> (timestamp, data)

    # -- cache -----------------------------------------------------------------

    def _get_cached(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry and (time.time() - entry[0]) < self._ttl:
            return entry[1]
        return None

    def _set_cached(self, key: str, data: Any) -> None:
        self._cache[key] = (time.time(), data)

    # -- quotes ----------------------------------------------------------------

    def _build_quote(self, car: CarDetails) -> dict:
        value = estimate_vehicle_value(car.model, car.year)
        premium = base_premium(value, car.year, car.coverage_type)
        variation = self._rng.uniform(-0.1, 0.1)
        return {
            "policy_name": "TATA AIG Motor Protect",
            "plan_name": "Comprehensive Plan" if car.coverage_type == "comprehensive" else "Third Party Plan",
            "premium": round(premium * (1 + variation)),
            "coverage": f"{format_rupees(value)} (IDV) + ₹15,00,000 (Third Party)",
            "discount": discount_for(car.year),
            "features": features_for(car.coverage_type),
            "ncb": _NCB_LADDER,
            "special_offers": self._rng.choice(_SPECIAL_OFFERS),
            "idv": value,
            "source": "TATA AIG Market Data",
            "last_updated": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }

    async def get_car_quote(self, car: CarDetails) -> dict:
        """
        Returns: { policy_name, plan_name, premium, coverage, discount,
                   features, ncb, special_offers, source, ... }
        """
        cache_key = f"car:{car.model.lower()}:{car.year}:{car.coverage_type}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        try:
            data = await asyncio.to_thread(self._build_quote, car)
            self._set_cached(cache_key, data)
            return data
        except Exception as exc:
            logger.error("Pricing for %s failed: %s", car, exc)
            return fallback_quote()
