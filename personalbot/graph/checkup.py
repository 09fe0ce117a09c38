"""
Health checkup scheduling agent.

Pure rules over the user profile: recommend a package, price it against the
user's health cover, list open slots and nearby centres, and confirm a
booking once the user picks a slot.
"""

import datetime
import logging
import random
from typing import Callable, Optional

from personalbot.graph.agents import make_reference
from personalbot.graph.schemas import (
    BookingConfirmation,
    CheckupRecommendation,
    CheckupResult,
    CheckupSlot,
    DiagnosticCentre,
    HealthPackage,
    InsuranceHoldings,
    UserProfile,
)
from personalbot.services.profile_store import ProfileStore

logger = logging.getLogger(__name__)

ROLE = "checkup_agent"
NAME = "TATA 1mg Health Checkup Agent"
AVATAR = "🩺"

CHECKUP_STEPS = [
    "Analyzing health profile and requirements...",
    "Checking available health packages...",
    "Coordinating with diagnostic centers...",
    "Checking available time slots...",
    "Confirming appointment details...",
    "Generating booking recommendation...",
]

PACKAGES: dict[str, HealthPackage] = {
    "basic": HealthPackage(
        name="Basic Health Checkup",
        price=999,
        tests=["Complete Blood Count", "Lipid Profile", "Blood Sugar", "Kidney Function", "Liver Function"],
        duration="2-3 hours",
        fasting="10-12 hours",
        report_time="24 hours",
    ),
    "comprehensive": HealthPackage(
        name="Comprehensive Health Checkup",
        price=2499,
        tests=[
            "Complete Blood Count", "Lipid Profile", "Diabetes Panel", "Thyroid Profile",
            "Vitamin Profile", "ECG", "Chest X-Ray", "Ultrasound Abdomen",
        ],
        duration="3-4 hours",
        fasting="10-12 hours",
        report_time="48 hours",
    ),
    "executive": HealthPackage(
        name="Executive Health Checkup",
        price=4999,
        tests=[
            "All Comprehensive tests", "Stress Test", "Echo Cardiography", "CT Scan",
            "Advanced Cancer Markers", "Pulmonary Function Test",
        ],
        duration="4-5 hours",
        fasting="10-12 hours",
        report_time="72 hours",
    ),
    "cardiac": HealthPackage(
        name="Cardiac Health Package",
        price=3499,
        tests=["ECG", "Echo Cardiography", "Stress Test", "Lipid Profile", "Cardiac Markers", "Chest X-Ray"],
        duration="3 hours",
        fasting="6 hours",
        report_time="48 hours",
    ),
    "diabetes": HealthPackage(
        name="Diabetes Care Package",
        price=1899,
        tests=[
            "HbA1c", "Fasting & PP Blood Sugar", "Insulin Levels", "Kidney Function",
            "Eye Examination", "Foot Examination",
        ],
        duration="2-3 hours",
        fasting="10-12 hours",
        report_time="24 hours",
    ),
}

# (time, slot type, probability the slot is open)
_SLOT_TIMES = [
    ("7:00 AM", "morning", 0.7),
    ("9:00 AM", "morning", 0.6),
    ("2:00 PM", "afternoon", 0.5),
    ("4:00 PM", "afternoon", 0.4),
    ("6:00 PM", "evening", 0.6),
]

_CENTRES = [
    DiagnosticCentre(
        name="TATA 1mg Diagnostics - Bandra West",
        address="Shop No. 3, Hill Road, Bandra West, Mumbai - 400050",
        distance="5.2 km",
        facilities=["Parking Available", "AC Waiting Area", "Online Reports"],
    ),
    DiagnosticCentre(
        name="TATA 1mg Diagnostics - Andheri East",
        address="Chakala, Andheri East, Mumbai - 400099",
        distance="12.8 km",
        facilities=["Home Collection", "Weekend Availability", "Express Reports"],
    ),
    DiagnosticCentre(
        name="TATA 1mg Diagnostics - Powai",
        address="Hiranandani Gardens, Powai, Mumbai - 400076",
        distance="15.3 km",
        facilities=["Premium Center", "Specialist Consultations", "Same Day Reports"],
    ),
]

_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def recommend_package(profile: UserProfile) -> tuple[str, list[str]]:
    """Return (package key, reasons) for the profile."""
    package = "basic"
    reasons: list[str] = []

    if profile.age >= 40:
        package = "comprehensive"
        reasons.append("Comprehensive screening recommended for age 40+")
    if profile.age >= 50:
        package = "executive"
        reasons.append("Executive package recommended for age 50+ with advanced screenings")

    family_history = profile.health.family_medical_history.lower()
    if "diabetes" in family_history:
        if package == "basic":
            package = "diabetes"
        reasons.append("Diabetes screening recommended due to family history")
    if "heart" in family_history or (profile.health.cholesterol or "").lower() == "high":
        if package == "basic":
            package = "cardiac"
        reasons.append("Cardiac screening recommended due to family history")

    if profile.health.smoker or profile.lifestyle.stress_level.lower() == "high":
        package = "comprehensive"
        reasons.append("Comprehensive screening recommended due to lifestyle factors")

    return package, reasons


def insurance_coverage(insurance: InsuranceHoldings, package_cost: int) -> dict:
    policy = insurance.health_insurance
    if policy and any("checkup" in f.lower() for f in policy.features):
        return {
            "covered": True,
            "coverageAmount": min(package_cost, 5000),
            "message": "Health checkup covered under your insurance policy",
        }
    return {"covered": False, "message": "Health checkup not covered, full payment required"}


def checkup_discount(price: int, insurance: InsuranceHoldings) -> dict:
    discount = price * 0.15
    reasons = ["15% first-time user discount"]
    if insurance.health_insurance:
        discount += price * 0.10
        reasons.append("10% insurance holder discount")
    discount = round(discount)
    return {
        "originalPrice": price,
        "discount": discount,
        "finalPrice": price - discount,
        "discountReasons": reasons,
    }


def slot_preferences(text: str) -> dict:
    lowered = text.lower()
    prefs: dict = {}
    for slot_type in ("morning", "afternoon", "evening"):
        if slot_type in lowered:
            prefs["preferred_time"] = slot_type
            break
    days = [day for day in _WEEKDAYS if day.lower() in lowered]
    if days:
        prefs["preferred_days"] = days
    return prefs


class SchedulingAgent:
    role = ROLE
    name = NAME
    avatar = AVATAR

    def __init__(
        self,
        profiles: ProfileStore,
        rng: Optional[random.Random] = None,
        today: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self._profiles = profiles
        self._rng = rng or random.Random()
        self._today = today

    def progress_steps(self) -> list[str]:
        return list(CHECKUP_STEPS)

    def generate_slots(self, days: int = 14) -> list[CheckupSlot]:
        start = self._today()
        slots = []
        for offset in range(1, days + 1):
            day = start + datetime.timedelta(days=offset)
            for time_label, slot_type, open_probability in _SLOT_TIMES:
                slots.append(
                    CheckupSlot(
                        date=day.isoformat(),
                        day=_WEEKDAYS[day.weekday()],
                        time=time_label,
                        available=self._rng.random() < open_probability,
                        type=slot_type,
                    )
                )
        return slots

    def available_slots(self, preferences: dict, limit: int = 10) -> list[CheckupSlot]:
        slots = [s for s in self.generate_slots() if s.available]
        if preferences.get("preferred_time"):
            slots = [s for s in slots if s.type == preferences["preferred_time"]]
        if preferences.get("preferred_days"):
            slots = [s for s in slots if s.day in preferences["preferred_days"]]
        return slots[:limit]

    def recommend(self, profile: UserProfile) -> CheckupRecommendation:
        package_type, reasons = recommend_package(profile)
        package = PACKAGES[package_type]
        return CheckupRecommendation(
            package_type=package_type,
            package_details=package,
            reasons=reasons,
            insurance_coverage=insurance_coverage(profile.insurance, package.price),
            total_cost=package.price,
            discounted_cost=checkup_discount(package.price, profile.insurance),
        )

    async def process_checkup_request(self, request_text: str) -> CheckupResult:
        booking_id = make_reference("HC", 3)
        try:
            profile = self._profiles.get()
            return CheckupResult(
                booking_id=booking_id,
                recommendation=self.recommend(profile),
                available_slots=self.available_slots(slot_preferences(request_text)),
                locations=sorted(_CENTRES, key=lambda c: float(c.distance.split()[0])),
                next_steps=[
                    "Select preferred health package",
                    "Choose convenient date and time",
                    "Confirm booking and make payment",
                    "Receive appointment confirmation",
                ],
            )
        except Exception as exc:
            logger.error("Health checkup request failed: %s", exc)
            return fallback_checkup(booking_id)

    async def confirm_booking(
        self,
        result: CheckupResult,
        date: Optional[str] = None,
        time: Optional[str] = None,
        location: Optional[str] = None,
    ) -> BookingConfirmation:
        """Confirm ``result`` for the chosen slot, defaulting to the first open one."""
        slot = next(
            (s for s in result.available_slots if (date is None or s.date == date) and (time is None or s.time == time)),
            result.available_slots[0] if result.available_slots else None,
        )
        package = result.recommendation.package_details if result.recommendation else PACKAGES["basic"]
        amount = (
            result.recommendation.discounted_cost.get("finalPrice", package.price)
            if result.recommendation
            else package.price
        )
        confirmation_id = make_reference("CONF", 3)
        return BookingConfirmation(
            confirmation_id=confirmation_id,
            booking_id=result.booking_id,
            package_name=package.name,
            appointment_date=date or (slot.date if slot else ""),
            appointment_time=time or (slot.time if slot else ""),
            location=location or (result.locations[0].name if result.locations else _CENTRES[0].name),
            total_amount=amount,
            instructions=[
                f"Fast for {package.fasting} before the appointment",
                "Carry a valid photo ID",
                "Bring insurance card if applicable",
                "Arrive 15 minutes before appointment time",
                "Wear comfortable clothing",
            ],
            contact={
                "phone": "1800-1mg-1mg",
                "email": "support@1mg.com",
                "whatsapp": "+91-8800-1mg-1mg",
            },
            report_delivery={
                "method": "Email + Physical Copy",
                "timeline": package.report_time,
                "trackingUrl": f"https://1mg.com/reports/{confirmation_id}",
            },
        )


def fallback_checkup(booking_id: str) -> CheckupResult:
    return CheckupResult(
        booking_id=booking_id,
        recommendation=None,
        error="Technical error occurred",
        next_steps=["Please try again or contact support"],
    )
