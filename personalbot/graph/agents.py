import datetime
import logging
import random
import re
import time

from pydantic import ValidationError

from personalbot.graph.classifier import car_details_for, extract_car_details
from personalbot.graph.llm import Completion, load_prompt
from personalbot.graph.schemas import (
    NegotiationResult,
    Offer,
    PaymentDetails,
    PolicyDocument,
    format_rupees,
)
from personalbot.services.pricing import PricingService
from personalbot.services.profile_store import ProfileStore

logger = logging.getLogger(__name__)

ROLE = "tata_aig"
NAME = "TATA AIG"
AVATAR = "🏢"

_FALLBACK_OFFERS: dict[str, dict] = {
    "car insurance": {
        "policyName": "TATA AIG Motor Protect",
        "premium": "₹15,000/year",
        "coverage": "₹8,00,000",
        "discount": "20% first-year discount",
        "features": ["Zero depreciation", "24/7 roadside assistance", "Cashless claims"],
    },
    "health insurance": {
        "policyName": "TATA AIG Medicare",
        "premium": "₹12,000/year",
        "coverage": "₹15,00,000",
        "discount": "25% family discount",
        "features": ["Cashless hospitalization", "Pre-existing coverage", "Annual checkup"],
    },
    "life insurance": {
        "policyName": "TATA AIG Term Life",
        "premium": "₹18,000/year",
        "coverage": "₹75,00,000",
        "discount": "15% online discount",
        "features": ["Term life coverage", "Accidental death benefit", "Tax benefits"],
    },
    "home insurance": {
        "policyName": "TATA AIG Home Secure",
        "premium": "₹8,000/year",
        "coverage": "₹25,00,000",
        "discount": "10% multi-policy discount",
        "features": ["Fire and theft coverage", "Natural disaster protection", "Personal belongings"],
    },
}

_PERCENT_RE = re.compile(r"(\d+)%")


def _is_motor(insurance_type: str) -> bool:
    lowered = insurance_type.lower()
    return any(k in lowered for k in ("car", "motor", "vehicle"))


def _normalize_type(insurance_type: str) -> str:
    lowered = insurance_type.lower()
    for key in _FALLBACK_OFFERS:
        if key.split()[0] in lowered:
            return key
    return "car insurance"


def negotiation_steps(insurance_type: str) -> list[str]:
    return [
        f"Analyzing {insurance_type or 'insurance'} requirements...",
        "Reviewing TATA AIG policy options...",
        "Calculating personalized premium rates...",
        "Preparing competitive offer with maximum benefits...",
    ]


def fallback_negotiation(insurance_type: str) -> NegotiationResult:
    """Static offer used whenever the provider cannot produce one."""
    offer = Offer.model_validate(_FALLBACK_OFFERS[_normalize_type(insurance_type)])
    return NegotiationResult(
        negotiation_steps=negotiation_steps(insurance_type),
        final_offer=offer,
        reasoning=(
            f"This offer provides excellent value with comprehensive coverage "
            f"and competitive pricing for {insurance_type or 'insurance'}."
        ),
    )


def offer_from_market_data(data: dict, insurance_type: str) -> NegotiationResult:
    offer = Offer(
        policy_name=data["policy_name"],
        plan_name=data["plan_name"],
        premium_amount=int(data["premium"]),
        coverage=data["coverage"],
        discount=data["discount"],
        features=list(data["features"]),
    )
    return NegotiationResult(
        negotiation_steps=[
            f"Analyzing {insurance_type} requirements...",
            "Accessing TATA AIG real-time pricing data...",
            "Calculating personalized premium based on current rates...",
            "Preparing competitive offer with maximum benefits...",
        ],
        final_offer=offer,
        reasoning=(
            f"This offer is based on current TATA AIG market rates and includes "
            f"genuine features available for {insurance_type}."
        ),
        real_data_source=data.get("source"),
    )


def improve_offer(previous: Offer) -> Offer:
    """Deterministic concession: 10% off the premium, 5 points more discount."""
    amount = int(previous.premium_amount * 0.9)
    match = _PERCENT_RE.search(previous.discount or "")
    if match:
        discount = _PERCENT_RE.sub(f"{int(match.group(1)) + 5}%", previous.discount, count=1)
    else:
        discount = "15% additional discount"
    return previous.model_copy(
        update={
            "premium_amount": amount,
            "premium": f"{format_rupees(amount)}/year",
            "discount": discount,
        }
    )


def make_reference(prefix: str, suffix_digits: int = 0) -> str:
    ref = f"{prefix}{int(time.time() * 1000)}"
    if suffix_digits:
        ref += str(random.randrange(10 ** suffix_digits)).zfill(suffix_digits)
    return ref


class ProviderAgent:
    """The insurer's side of the negotiation."""

    role = ROLE
    name = NAME
    avatar = AVATAR

    def __init__(self, completion: Completion, pricing: PricingService, profiles: ProfileStore) -> None:
        self._complete = completion
        self._pricing = pricing
        self._profiles = profiles

    def progress_steps(self, insurance_type: str) -> list[str]:
        return negotiation_steps(insurance_type)

    async def negotiate(self, insurance_type: str, requirements: str, requester_message: str = "") -> NegotiationResult:
        """
        Produce an offer for ``insurance_type``.

        Motor requests are grounded on a market quote. A reply that fails the
        schema falls back to that quote, a provider error to the static table.
        """
        market_data = None
        if _is_motor(insurance_type):
            car = extract_car_details(requirements) or car_details_for(self._profiles.primary_vehicle())
            market_data = await self._pricing.get_car_quote(car)

        payload = {
            "insurance_type": insurance_type,
            "user_profile": self._profiles.get().to_wire(),
            "user_requirements": requirements,
            "personal_bot_request": requester_message,
        }
        if market_data:
            payload["market_data"] = market_data

        try:
            raw = await self._complete(load_prompt("provider.txt"), payload, 800, 0.8)
        except Exception as exc:
            logger.error("Provider negotiation failed: %s", exc)
            return fallback_negotiation(insurance_type)

        try:
            result = NegotiationResult.model_validate(raw)
        except ValidationError as exc:
            logger.error("Provider returned malformed offer: %s", exc)
            if market_data:
                return offer_from_market_data(market_data, insurance_type)
            return fallback_negotiation(insurance_type)

        if market_data:
            result.final_offer.policy_name = market_data["policy_name"]
            result.final_offer.plan_name = market_data["plan_name"]
            result.real_data_source = market_data.get("source")
        return result

    async def renegotiate(self, previous: Offer, feedback: str) -> Offer:
        """Return an offer strictly cheaper than ``previous``."""
        payload = {
            "previous_offer": previous.to_wire(),
            "feedback": feedback,
            "personal_bot_request": "Requesting an improved offer with better rates and additional benefits",
        }
        offer = None
        try:
            raw = await self._complete(load_prompt("renegotiation.txt"), payload, 800, 0.9)
            offer = NegotiationResult.model_validate(raw).final_offer
        except ValidationError as exc:
            logger.error("Provider returned malformed renegotiation: %s", exc)
        except Exception as exc:
            logger.error("Provider renegotiation failed: %s", exc)

        if offer is None or offer.premium_amount >= previous.premium_amount:
            return improve_offer(previous)
        return offer

    async def process_payment(self, offer: Offer, insurance_type: str) -> PaymentDetails:
        due = datetime.date.today() + datetime.timedelta(days=30)
        return PaymentDetails(
            amount=format_rupees(offer.premium_amount),
            amount_value=offer.premium_amount,
            due_date=due.isoformat(),
            policy_type=insurance_type,
            payment_id=make_reference("PAY"),
            transaction_id=make_reference("TXN"),
            features=list(offer.features),
        )

    async def issue_policy(self, payment: PaymentDetails, offer: Offer, insurance_type: str) -> PolicyDocument:
        today = datetime.date.today()
        policy_number = make_reference("TAIG", 3)
        return PolicyDocument(
            policy_number=policy_number,
            issue_date=today.isoformat(),
            expiry_date=(today + datetime.timedelta(days=365)).isoformat(),
            policy_type=insurance_type,
            premium=payment.amount or offer.premium,
            coverage=offer.coverage or "Comprehensive Coverage",
            features=list(offer.features),
            document_url=f"https://documents.tataaig.com/policy/{policy_number}.pdf",
            certificate_url=f"https://documents.tataaig.com/certificate/{policy_number}.pdf",
        )
