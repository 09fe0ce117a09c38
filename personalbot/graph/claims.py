"""
Claims agent.

Routes a claim to the relevant policy with the keyword classifier, asks the
model only when the keywords are inconclusive, then applies the eligibility
rules for health, motor and life policies.
"""

import datetime
import logging
from typing import Callable, Optional

from personalbot.graph.agents import make_reference
from personalbot.graph.classifier import classify_claim, extract_claim_details
from personalbot.graph.llm import Completion, load_prompt
from personalbot.graph.schemas import (
    ClaimAssessment,
    ClaimCategory,
    ClaimDetails,
    ClaimResult,
    InsurancePolicy,
    format_rupees,
)
from personalbot.services.profile_store import ProfileStore

logger = logging.getLogger(__name__)

ROLE = "claims_agent"
NAME = "TATA AIG Claims Agent"
AVATAR = "🏥"

CLAIM_STEPS = [
    "Receiving claim request...",
    "Verifying policy details and coverage...",
    "Checking eligibility and waiting periods...",
    "Validating submitted documents...",
    "Processing claim assessment...",
    "Finalizing claim decision...",
]

_CONTACT = {
    "phone": "1800-266-7780",
    "email": "claims@tataaig.com",
    "chatSupport": "24/7 available",
}


def fallback_claim(claim_id: str) -> ClaimResult:
    return ClaimResult(
        claim_id=claim_id,
        status="Error",
        assessment=ClaimAssessment(
            reason="Technical error occurred",
            next_steps=["Please contact customer support"],
        ),
        contact_info=_CONTACT,
    )


def settlement_timeline(assessment: ClaimAssessment) -> str:
    if assessment.approved:
        return next((step for step in assessment.next_steps if "days" in step), "7-10 working days")
    return "Pending approval"


class ClaimsAgent:
    role = ROLE
    name = NAME
    avatar = AVATAR

    def __init__(
        self,
        completion: Completion,
        profiles: ProfileStore,
        today: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self._complete = completion
        self._profiles = profiles
        self._today = today

    def progress_steps(self) -> list[str]:
        return list(CLAIM_STEPS)

    async def refine_category(self, text: str) -> ClaimCategory:
        """Model-backed classification for claims the keywords could not place."""
        try:
            raw = await self._complete(load_prompt("claim_classifier.txt"), {"claim_text": text}, 50, 0.0)
            return ClaimCategory(raw.get("category", "unknown"))
        except Exception as exc:
            logger.error("Claim classification failed: %s", exc)
            return ClaimCategory.UNKNOWN

    async def process_claim(self, description: str, original_message: str = "") -> ClaimResult:
        claim_id = make_reference("CLM", 3)
        try:
            text = f"{description} {original_message}".strip()
            category = classify_claim(text)
            if category == ClaimCategory.UNKNOWN:
                category = await self.refine_category(text)

            profile = self._profiles.get()
            details = extract_claim_details(text, profile.health.preferred_hospitals, profile.cars)
            policy = self.relevant_policy(category, details)
            assessment = self.assess(category, details, policy)
            return ClaimResult(
                claim_id=claim_id,
                category=category,
                status="Approved" if assessment.approved else "Under Review",
                assessment=assessment,
                estimated_settlement=settlement_timeline(assessment),
                contact_info=_CONTACT,
            )
        except Exception as exc:
            logger.error("Claims processing failed: %s", exc)
            return fallback_claim(claim_id)

    def relevant_policy(self, category: ClaimCategory, details: ClaimDetails) -> Optional[InsurancePolicy]:
        profile = self._profiles.get()
        if category == ClaimCategory.HEALTH:
            return profile.insurance.health_insurance
        if category == ClaimCategory.LIFE:
            return profile.insurance.life_insurance
        if category == ClaimCategory.MOTOR:
            for car in profile.cars:
                if details.registration and car.registration and details.registration == car.registration:
                    return car.insurance_details
                if details.car_model and details.car_model.lower() == car.model.lower():
                    return car.insurance_details
            primary = self._profiles.primary_vehicle()
            return primary.insurance_details
        return None

    # -- eligibility rules -----------------------------------------------------

    def _expired(self, policy: InsurancePolicy) -> bool:
        return policy.valid_till is not None and self._today() > policy.valid_till

    def assess(
        self,
        category: ClaimCategory,
        details: ClaimDetails,
        policy: Optional[InsurancePolicy],
    ) -> ClaimAssessment:
        if policy is None:
            return ClaimAssessment(
                reason="No valid policy found for this claim type",
                next_steps=["Please verify your policy details"],
            )
        if category == ClaimCategory.HEALTH:
            return self._assess_health(details, policy)
        if self._expired(policy):
            return ClaimAssessment(
                reason="Policy has expired",
                next_steps=["Please renew your policy to proceed with claims"],
            )
        if category == ClaimCategory.MOTOR:
            return self._assess_motor(details, policy)
        return self._assess_life()

    def _assess_health(self, details: ClaimDetails, policy: InsurancePolicy) -> ClaimAssessment:
        if self._expired(policy):
            return ClaimAssessment(
                reason="Health claim under process",
                next_steps=[
                    "Please renew your health insurance policy to proceed with claims",
                    "We will keep you posted on renewal options",
                ],
            )
        if details.amount > policy.coverage_limit:
            return ClaimAssessment(
                reason=(
                    f"Health claim under process - Claim amount ({format_rupees(details.amount)}) "
                    f"exceeds policy coverage ({policy.coverage})"
                ),
                next_steps=[
                    "Consider partial settlement up to policy limit",
                    "We will keep you posted on the claim status",
                ],
            )

        network = details.hospital is not None
        if network:
            next_steps = [
                "Cashless claim approved",
                "Hospital will receive direct payment",
                "Claim will be settled within 3-5 working days",
            ]
        else:
            next_steps = [
                "Reimbursement claim approved",
                "Submit original bills for processing",
                "Amount will be credited within 7-10 working days",
            ]
        return ClaimAssessment(
            approved=True,
            amount=details.amount,
            reason="Health claim under process",
            required_documents=[
                "Hospital discharge summary",
                "Medical bills and receipts",
                "Diagnostic reports",
                "Doctor's prescription",
                "Insurance card copy",
            ],
            next_steps=next_steps,
        )

    def _assess_motor(self, details: ClaimDetails, policy: InsurancePolicy) -> ClaimAssessment:
        if "third party" in policy.policy_type.lower() and not details.third_party:
            return ClaimAssessment(
                reason="Own damage not covered under Third Party policy",
                next_steps=["Consider upgrading to Comprehensive coverage"],
            )
        return ClaimAssessment(
            approved=True,
            amount=min(details.amount, policy.coverage_limit),
            reason="Motor claim approved based on policy terms",
            required_documents=[
                "FIR copy (if applicable)",
                "Driving license copy",
                "RC copy",
                "Repair estimates",
                "Photos of damage",
                "Insurance policy copy",
            ],
            next_steps=[
                "Visit authorized garage for repair",
                "Claim will be settled directly with garage",
                "Estimated settlement time: 5-7 working days",
            ],
        )

    def _assess_life(self) -> ClaimAssessment:
        # Life claims always go to manual review
        return ClaimAssessment(
            reason="Life insurance claims require detailed verification",
            required_documents=[
                "Death certificate (original)",
                "Medical reports",
                "Police report (if applicable)",
                "Nominee identification proof",
                "Policy bond original",
                "Claim form duly filled",
            ],
            next_steps=[
                "Submit all required documents",
                "Claim will be reviewed by underwriting team",
                "Verification process may take 15-30 days",
            ],
        )
