"""
Keyword classifiers consulted before any model call.

These are cheap and deterministic; the claims agent only asks the model
when ``classify_claim`` returns ``ClaimCategory.UNKNOWN``.
"""

import re
from typing import Optional

from personalbot.graph.schemas import ClaimCategory, ClaimDetails, Vehicle, parse_rupees
from personalbot.services.pricing import CarDetails

_CLAIM_KEYWORDS: list[tuple[ClaimCategory, tuple[str, ...]]] = [
    (ClaimCategory.HEALTH, ("health", "medical", "hospital", "surgery", "treatment", "opd")),
    (ClaimCategory.MOTOR, ("motor", "car", "vehicle", "accident", "bike", "collision", "theft")),
    (ClaimCategory.LIFE, ("life", "death", "critical illness", "disability")),
]

# keyword -> pricing table key
_CAR_MODELS = {
    "swift": "maruti swift",
    "i20": "hyundai i20",
    "city": "honda city",
    "baleno": "maruti baleno",
    "nexon": "tata nexon",
    "xuv500": "mahindra xuv500",
    "innova": "toyota innova",
    "verna": "hyundai verna",
    "creta": "hyundai creta",
    "venue": "hyundai venue",
}

_YEAR_RE = re.compile(r"\b(20\d{2})\b")
_AMOUNT_RE = re.compile(r"(?:₹|rs\.?|inr)\s*([\d,]+(?:\.\d+)?)\s*(lakh|lac|k)?", re.IGNORECASE)
_REGISTRATION_RE = re.compile(r"\b([A-Z]{2}\s?\d{1,2}\s?[A-Z]{1,3}\s?\d{4})\b")


def classify_claim(text: str) -> ClaimCategory:
    """First matching category wins; health is checked before motor."""
    lowered = text.lower()
    for category, keywords in _CLAIM_KEYWORDS:
        if any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in keywords):
            return category
    return ClaimCategory.UNKNOWN


def extract_amount(text: str) -> int:
    match = _AMOUNT_RE.search(text)
    if not match:
        return 0
    value = float(match.group(1).replace(",", ""))
    unit = (match.group(2) or "").lower()
    if unit in ("lakh", "lac"):
        value *= 100_000
    elif unit == "k":
        value *= 1000
    return int(value)


def extract_car_details(text: str) -> Optional[CarDetails]:
    """Pull model, year and coverage type out of free text, if a model is named."""
    lowered = text.lower()
    model = next((full for key, full in _CAR_MODELS.items() if re.search(rf"\b{key}\b", lowered)), None)
    if model is None:
        return None
    year_match = _YEAR_RE.search(lowered)
    coverage = "third-party" if "third party" in lowered or "third-party" in lowered else "comprehensive"
    return CarDetails(model=model, year=int(year_match.group(1)) if year_match else 2020, coverage_type=coverage)


def car_details_for(vehicle: Vehicle) -> CarDetails:
    coverage = "comprehensive"
    if vehicle.insurance_details and "third party" in vehicle.insurance_details.policy_type.lower():
        coverage = "third-party"
    return CarDetails(model=f"{vehicle.make} {vehicle.model}", year=vehicle.year, coverage_type=coverage)


def extract_claim_details(text: str, hospitals: list[str], vehicles: list[Vehicle]) -> ClaimDetails:
    lowered = text.lower()
    hospital = next((h for h in hospitals if h.lower() in lowered), None)
    registration = _REGISTRATION_RE.search(text.upper())
    car_model = next((v.model for v in vehicles if v.model.lower() in lowered), None)
    return ClaimDetails(
        description=text,
        amount=extract_amount(text) or parse_rupees(text if "₹" in text else ""),
        hospital=hospital,
        registration=registration.group(1).replace(" ", "") if registration else None,
        car_model=car_model,
        third_party="third party" in lowered or "third-party" in lowered,
    )
