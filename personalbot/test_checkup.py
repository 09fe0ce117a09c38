import datetime
import random
import re

import pytest

from personalbot.graph.checkup import (
    PACKAGES,
    SchedulingAgent,
    checkup_discount,
    recommend_package,
    slot_preferences,
)
from personalbot.graph.schemas import UserProfile

TODAY = datetime.date(2026, 10, 19)


def _profile(**overrides) -> UserProfile:
    data = {"name": "Test", "age": 30, "health": {}, "lifestyle": {"stressLevel": "Low"}}
    data.update(overrides)
    return UserProfile.model_validate(data)


@pytest.fixture
def agent(profiles):
    return SchedulingAgent(profiles, rng=random.Random(11), today=lambda: TODAY)


class TestRecommendation:
    def test_young_healthy_profile_gets_basic(self):
        assert recommend_package(_profile())[0] == "basic"

    def test_age_forty_gets_comprehensive(self):
        assert recommend_package(_profile(age=41))[0] == "comprehensive"

    def test_age_fifty_gets_executive(self):
        package, reasons = recommend_package(_profile(age=55))
        assert package == "executive"
        assert len(reasons) == 2

    def test_diabetes_history_upgrades_basic(self):
        package, _ = recommend_package(_profile(health={"familyMedicalHistory": "Mother: diabetes"}))
        assert package == "diabetes"

    def test_high_cholesterol_upgrades_basic(self):
        package, _ = recommend_package(_profile(health={"cholesterol": "High"}))
        assert package == "cardiac"

    def test_family_history_keeps_age_based_package(self):
        package, reasons = recommend_package(_profile(age=52, health={"familyMedicalHistory": "heart disease"}))
        assert package == "executive"
        assert "Cardiac screening recommended due to family history" in reasons

    def test_smoker_gets_comprehensive(self):
        assert recommend_package(_profile(age=55, health={"smoker": True}))[0] == "comprehensive"

    def test_stored_profile(self, profiles):
        package, reasons = recommend_package(profiles.get())
        assert package == "comprehensive"
        assert "Diabetes screening recommended due to family history" in reasons


def test_discount_for_insurance_holder(profiles):
    discount = checkup_discount(2499, profiles.get().insurance)
    assert discount["discount"] == 625
    assert discount["finalPrice"] == 1874
    assert len(discount["discountReasons"]) == 2


def test_slot_preferences():
    assert slot_preferences("Saturday morning please") == {
        "preferred_time": "morning",
        "preferred_days": ["Saturday"],
    }
    assert slot_preferences("any time") == {}


class TestCheckupRequest:
    async def test_full_result(self, agent):
        result = await agent.process_checkup_request("Annual health checkup")
        assert re.fullmatch(r"HC\d+", result.booking_id)
        assert result.recommendation.package_details == PACKAGES["comprehensive"]
        assert result.recommendation.insurance_coverage["covered"] is True
        assert result.recommendation.insurance_coverage["coverageAmount"] == 2499
        assert 0 < len(result.available_slots) <= 10
        assert all(slot.available for slot in result.available_slots)
        assert [c.distance for c in result.locations] == ["5.2 km", "12.8 km", "15.3 km"]

    async def test_slots_start_tomorrow_and_span_two_weeks(self, agent):
        slots = agent.generate_slots()
        assert len(slots) == 14 * 5
        assert slots[0].date == "2026-10-20"
        assert slots[-1].date == "2026-11-02"

    async def test_morning_preference_filters_slots(self, agent):
        result = await agent.process_checkup_request("morning slot preferred")
        assert result.available_slots
        assert {slot.type for slot in result.available_slots} == {"morning"}

    async def test_failure_returns_fallback(self, agent, monkeypatch):
        def explode(profile):
            raise RuntimeError("boom")

        monkeypatch.setattr(agent, "recommend", explode)
        result = await agent.process_checkup_request("checkup")
        assert result.recommendation is None
        assert result.error == "Technical error occurred"


async def test_confirm_booking_uses_requested_slot(agent):
    result = await agent.process_checkup_request("checkup")
    slot = result.available_slots[1]
    booking = await agent.confirm_booking(result, slot.date, slot.time)
    assert re.fullmatch(r"CONF\d+", booking.confirmation_id)
    assert booking.booking_id == result.booking_id
    assert (booking.appointment_date, booking.appointment_time) == (slot.date, slot.time)
    assert booking.location == result.locations[0].name
    assert booking.total_amount == 1874
    assert booking.instructions[0] == "Fast for 10-12 hours before the appointment"


async def test_confirm_booking_defaults_to_first_slot(agent):
    result = await agent.process_checkup_request("checkup")
    booking = await agent.confirm_booking(result)
    assert booking.appointment_date == result.available_slots[0].date
