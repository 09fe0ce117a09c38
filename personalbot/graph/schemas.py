"""Structured objects exchanged between agents, the engine and the wire.

Field names are snake_case in Python and camelCase on the wire; every
model accepts either on input.
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_RUPEE_RE = re.compile(r"₹\s*([\d,]+)")


def parse_rupees(text: str | None) -> int:
    """Return the first rupee amount in ``text`` as an int, or 0."""
    if not text:
        return 0
    match = _RUPEE_RE.search(text)
    digits = match.group(1) if match else re.sub(r"[^\d]", "", text)
    digits = digits.replace(",", "")
    return int(digits) if digits else 0


def format_rupees(amount: int) -> str:
    """Format ``amount`` with Indian digit grouping, e.g. ₹15,00,000."""
    s = str(int(amount))
    if len(s) <= 3:
        return f"₹{s}"
    head, tail = s[:-3], s[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return "₹" + ",".join(groups + [tail])


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# User profile
# ---------------------------------------------------------------------------

class InsurancePolicy(WireModel):
    policy_number: str = ""
    provider: str = ""
    policy_type: str = ""
    coverage: str = ""
    valid_till: Optional[date] = None
    premium: Optional[str] = None
    features: list[str] = Field(default_factory=list)

    @property
    def coverage_limit(self) -> int:
        return parse_rupees(self.coverage)


class Vehicle(WireModel):
    make: str
    model: str
    year: int = 2020
    variant: Optional[str] = None
    registration: Optional[str] = None
    is_primary: bool = False
    insurance_details: Optional[InsurancePolicy] = None


class HealthRecord(WireModel):
    smoker: bool = False
    gym_member: bool = False
    pre_existing_conditions: str = "None"
    last_checkup: Optional[str] = None
    family_medical_history: str = ""
    cholesterol: Optional[str] = None
    preferred_hospitals: list[str] = Field(default_factory=list)


class Family(WireModel):
    spouse: Optional[dict[str, Any]] = None
    children: int = 0
    total_dependents: int = 0


class BudgetRange(WireModel):
    min: int = 15000
    max: int = 25000


class InsuranceHoldings(WireModel):
    budget_range: BudgetRange = Field(default_factory=BudgetRange)
    preferred_coverage: str = "Comprehensive"
    current_policies: list[str] = Field(default_factory=list)
    health_insurance: Optional[InsurancePolicy] = None
    life_insurance: Optional[InsurancePolicy] = None


class Lifestyle(WireModel):
    driving_experience: str = "10 years"
    accident_history: str = "None"
    stress_level: str = "Moderate"


class UserProfile(WireModel):
    name: str = "User"
    age: int = 30
    location: str = "Mumbai"
    occupation: str = "Professional"
    income: Optional[str] = None
    cars: list[Vehicle] = Field(default_factory=list)
    family: Family = Field(default_factory=Family)
    health: HealthRecord = Field(default_factory=HealthRecord)
    insurance: InsuranceHoldings = Field(default_factory=InsuranceHoldings)
    lifestyle: Lifestyle = Field(default_factory=Lifestyle)


# ---------------------------------------------------------------------------
# Requester decision
# ---------------------------------------------------------------------------

class ServiceType(str, Enum):
    POLICY_INFO = "policy_info"
    CLAIMS = "claims"
    HEALTH_CHECKUP = "health_checkup"
    GENERAL = "general"


class RequesterDecision(WireModel):
    response: str = Field(min_length=1)
    service_type: ServiceType = ServiceType.GENERAL
    requires_a2a: bool = Field(False, alias="requiresA2A")
    service_details: str = ""
    insurance_type: str = ""


# ---------------------------------------------------------------------------
# Provider offers
# ---------------------------------------------------------------------------

class Offer(WireModel):
    policy_name: Optional[str] = None
    plan_name: Optional[str] = None
    premium: str = ""
    premium_amount: int = 0
    coverage: str
    discount: str = ""
    features: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _sync_premium(self) -> "Offer":
        if not self.premium_amount:
            self.premium_amount = parse_rupees(self.premium)
        if not self.premium and self.premium_amount:
            self.premium = f"{format_rupees(self.premium_amount)}/year"
        if not self.premium_amount:
            raise ValueError("offer has no premium")
        return self


class NegotiationResult(WireModel):
    negotiation_steps: list[str] = Field(default_factory=list)
    final_offer: Offer
    reasoning: str = ""
    real_data_source: Optional[str] = None


class PaymentDetails(WireModel):
    amount: str
    amount_value: int
    term: str = "1 Year"
    due_date: str
    policy_type: str
    payment_id: str
    transaction_id: str
    merchant_id: str = "TATA_AIG_MERCHANT"
    redirect_url: str = "https://payment.tataaig.com/secure"
    features: list[str] = Field(default_factory=list)


class PolicyDocument(WireModel):
    policy_number: str
    issue_date: str
    expiry_date: str
    policy_type: str
    premium: str
    coverage: str
    features: list[str] = Field(default_factory=list)
    document_url: str
    certificate_url: str


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

class ClaimCategory(str, Enum):
    HEALTH = "health"
    MOTOR = "motor"
    LIFE = "life"
    UNKNOWN = "unknown"


class ClaimDetails(WireModel):
    description: str = ""
    amount: int = 0
    hospital: Optional[str] = None
    registration: Optional[str] = None
    car_model: Optional[str] = None
    third_party: bool = False


class ClaimAssessment(WireModel):
    approved: bool = False
    amount: int = 0
    reason: str = ""
    required_documents: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


class ClaimResult(WireModel):
    claim_id: str
    category: ClaimCategory = ClaimCategory.UNKNOWN
    status: Literal["Approved", "Under Review", "Error"]
    assessment: ClaimAssessment
    estimated_settlement: str = "Pending approval"
    contact_info: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Health checkups
# ---------------------------------------------------------------------------

class HealthPackage(WireModel):
    name: str
    price: int
    tests: list[str]
    duration: str
    fasting: str
    report_time: str


class CheckupSlot(WireModel):
    date: str
    day: str
    time: str
    available: bool
    type: Literal["morning", "afternoon", "evening"]


class DiagnosticCentre(WireModel):
    name: str
    address: str
    distance: str
    facilities: list[str] = Field(default_factory=list)


class CheckupRecommendation(WireModel):
    package_type: str
    package_details: HealthPackage
    reasons: list[str] = Field(default_factory=list)
    insurance_coverage: dict[str, Any] = Field(default_factory=dict)
    total_cost: int
    discounted_cost: dict[str, Any] = Field(default_factory=dict)


class CheckupResult(WireModel):
    booking_id: str
    recommendation: Optional[CheckupRecommendation] = None
    available_slots: list[CheckupSlot] = Field(default_factory=list)
    locations: list[DiagnosticCentre] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class BookingConfirmation(WireModel):
    confirmation_id: str
    booking_id: str
    package_name: str
    appointment_date: str
    appointment_time: str
    location: str
    total_amount: int
    payment_status: str = "Confirmed"
    instructions: list[str] = Field(default_factory=list)
    contact: dict[str, str] = Field(default_factory=dict)
    report_delivery: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Inbound transport events
# ---------------------------------------------------------------------------

class UserMessageEvent(WireModel):
    text: str = Field(min_length=1)
    timestamp: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_message_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "text" not in data and "message" in data:
            data = {**data, "text": data["message"]}
        return data

    @field_validator("text", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class AcceptOfferEvent(WireModel):
    negotiation_id: str


class RejectOfferEvent(WireModel):
    negotiation_id: str
    feedback: str = ""


class PaymentCompletedEvent(WireModel):
    payment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    status: str


class ConfirmBookingEvent(WireModel):
    negotiation_id: str
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
