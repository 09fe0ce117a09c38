"""
Orchestration engine.

Turns inbound transport events into agent work. Every user message goes
through the turn graph (requester, then gate); a message that passes the gate
opens a negotiation record and runs a staged exchange with the specialist
agent picked by service type. Accepting an offer, completing payment,
rejecting an offer and confirming a checkup booking each run their own
staged exchange against an existing record.

Inbound events of one session are handled one at a time under the session
lock. Handlers run as tasks owned by the session, so destroying the session
cancels whatever is still in flight; every emission is additionally checked
against the registry so nothing reaches a closed connection.
"""

import asyncio
import datetime
import logging
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from personalbot.config import Settings
from personalbot.graph.agents import ProviderAgent, fallback_negotiation, make_reference
from personalbot.graph.checkup import SchedulingAgent, fallback_checkup
from personalbot.graph.claims import ClaimsAgent, fallback_claim
from personalbot.graph.gate import is_acknowledgment
from personalbot.graph.graph import compile_turn_graph
from personalbot.graph.requester import RequesterAgent
from personalbot.graph.schemas import (
    AcceptOfferEvent,
    BookingConfirmation,
    CheckupResult,
    ClaimResult,
    ConfirmBookingEvent,
    NegotiationResult,
    Offer,
    PaymentCompletedEvent,
    PaymentDetails,
    PolicyDocument,
    RejectOfferEvent,
    RequesterDecision,
    ServiceType,
    UserMessageEvent,
    WireModel,
)
from personalbot.services.sessions import (
    NegotiationPhase,
    NegotiationRecord,
    NegotiationStatus,
    SessionRegistry,
)

logger = logging.getLogger(__name__)

# (session_id, event name, payload)
Emit = Callable[[str, str, dict], Awaitable[None]]

GENERIC_ERROR = "Sorry, something went wrong. Please try again."
MISSING_NEGOTIATION = "Negotiation data not found. Please try again."

PAYMENT_STEPS = [
    "PersonalBot initiating payment setup with TATA AIG...",
    "TATA AIG processing application details...",
    "Calculating payment terms and due dates...",
    "Generating secure payment gateway...",
    "Finalizing payment setup...",
]

ISSUANCE_STEPS = [
    "PersonalBot initiating policy generation with TATA AIG...",
    "TATA AIG validating payment confirmation...",
    "Generating unique policy number...",
    "Creating policy documents and certificate...",
    "Preparing policy activation...",
    "Finalizing policy issuance...",
]

RENEGOTIATION_STEPS = [
    "Initiating renegotiation with TATA AIG...",
    "Reviewing your feedback with TATA AIG...",
    "Recalculating premium and benefits...",
]


def _timestamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds")


def _bullets(items: list[str]) -> str:
    return "\n".join(f"• {item}" for item in items)


# ---------------------------------------------------------------------------
# Message text
# ---------------------------------------------------------------------------

def offer_message(insurance_type: str, result: NegotiationResult) -> str:
    offer = result.final_offer
    return (
        "Great news! I've analyzed your requirements and prepared a competitive offer:\n\n"
        f"📋 **{(insurance_type or 'insurance').upper()}**\n"
        f"💰 Premium: {offer.premium}\n"
        f"🛡️ Coverage: {offer.coverage}\n"
        f"🎉 Special Offer: {offer.discount}\n\n"
        f"✨ **Key Features:**\n{_bullets(offer.features)}\n\n"
        f"{result.reasoning or 'This offer provides excellent value with comprehensive coverage.'}\n\n"
        "Would you like to proceed with this offer?"
    )


def improved_offer_message(insurance_type: str, offer: Offer) -> str:
    return (
        "I've reviewed your feedback and prepared an improved offer:\n\n"
        f"📋 **IMPROVED {(insurance_type or 'insurance').upper()} OFFER**\n"
        f"💰 Premium: {offer.premium}\n"
        f"🛡️ Coverage: {offer.coverage}\n"
        f"🎉 Enhanced Offer: {offer.discount}\n\n"
        f"✨ **Enhanced Features:**\n{_bullets(offer.features)}\n\n"
        "This improved offer addresses your concerns with better pricing and additional benefits."
    )


def payment_message(payment: PaymentDetails) -> str:
    return (
        "Thank you for choosing TATA AIG! Your application has been processed and is ready for payment.\n\n"
        "📋 **Application Details:**\n"
        f"Policy Type: {payment.policy_type}\n"
        f"Premium Amount: {payment.amount}\n"
        f"Policy Term: {payment.term}\n\n"
        "💳 **Payment Required:**\n"
        f"Amount: {payment.amount}\n"
        f"Due Date: {payment.due_date}\n\n"
        "I've prepared a secure payment link for you. Please complete the payment to activate your policy."
    )


def policy_message(policy: PolicyDocument) -> str:
    return (
        "🎉 **Policy Issued Successfully!**\n\n"
        "**Policy Details:**\n"
        f"📄 Policy Number: **{policy.policy_number}**\n"
        f"📅 Issue Date: {policy.issue_date}\n"
        f"📅 Expiry Date: {policy.expiry_date}\n"
        f"💰 Premium: {policy.premium}\n"
        f"🛡️ Coverage: {policy.coverage}\n\n"
        "**Policy Documents:**\n"
        f"📋 [Policy Certificate]({policy.certificate_url})\n"
        f"📄 [Policy Document]({policy.document_url})\n\n"
        f"**Key Features:**\n{_bullets(policy.features)}\n\n"
        "Your policy is now active! You'll receive the documents via email within 15 minutes. "
        "Keep your policy number safe for future reference.\n\n"
        "Welcome to the TATA AIG family! 🏢"
    )


def claim_message(claim: ClaimResult) -> str:
    assessment = claim.assessment
    lines = [
        "📋 **Claim Registered**",
        f"Claim ID: **{claim.claim_id}**",
        f"Status: {claim.status}",
        f"Assessment: {assessment.reason}",
    ]
    if assessment.approved:
        lines.append(f"Approved Amount: ₹{assessment.amount:,}")
    lines.append(f"Estimated Settlement: {claim.estimated_settlement}")
    if assessment.required_documents:
        lines.append(f"\n📎 **Required Documents:**\n{_bullets(assessment.required_documents)}")
    if assessment.next_steps:
        lines.append(f"\n➡️ **Next Steps:**\n{_bullets(assessment.next_steps)}")
    return "\n".join(lines)


def checkup_message(result: CheckupResult) -> str:
    rec = result.recommendation
    if rec is None:
        return "I couldn't prepare a checkup recommendation right now. Please try again shortly."
    discounted = rec.discounted_cost
    lines = [
        "🩺 **Recommended Health Checkup**",
        f"Package: **{rec.package_details.name}**",
        f"Price: ₹{rec.total_cost:,} (₹{discounted.get('finalPrice', rec.total_cost):,} after discounts)",
        f"Insurance: {rec.insurance_coverage.get('message', '')}",
    ]
    if rec.reasons:
        lines.append(f"\n**Why this package:**\n{_bullets(rec.reasons)}")
    if result.available_slots:
        slots = [f"{s.day} {s.date}, {s.time}" for s in result.available_slots[:3]]
        lines.append(f"\n📅 **Next available slots:**\n{_bullets(slots)}")
    if result.locations:
        lines.append(f"\n📍 Nearest centre: {result.locations[0].name} ({result.locations[0].distance})")
    lines.append("\nShall I confirm the booking for you?")
    return "\n".join(lines)


def booking_message(booking: BookingConfirmation) -> str:
    return (
        "✅ **Health Checkup Booked!**\n\n"
        f"Confirmation ID: **{booking.confirmation_id}**\n"
        f"Package: {booking.package_name}\n"
        f"📅 {booking.appointment_date} at {booking.appointment_time}\n"
        f"📍 {booking.location}\n"
        f"💰 Amount: ₹{booking.total_amount:,}\n\n"
        f"**Preparation:**\n{_bullets(booking.instructions)}"
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class Orchestrator:
    """Routes inbound events and runs staged agent-to-agent exchanges."""

    def __init__(
        self,
        registry: SessionRegistry,
        requester: RequesterAgent,
        provider: ProviderAgent,
        claims: ClaimsAgent,
        scheduling: SchedulingAgent,
        emit: Emit,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._requester = requester
        self._provider = provider
        self._claims = claims
        self._scheduling = scheduling
        self._emit = emit
        self._settings = settings
        self._turn_graph = compile_turn_graph(requester, registry, settings)
        self._handlers: dict[str, tuple[type[WireModel], Callable[[str, Any], Awaitable[None]]]] = {
            "user_message": (UserMessageEvent, self.handle_user_message),
            "accept_offer": (AcceptOfferEvent, self.accept_offer),
            "reject_offer": (RejectOfferEvent, self.reject_offer),
            "payment_completed": (PaymentCompletedEvent, self.payment_completed),
            "confirm_booking": (ConfirmBookingEvent, self.confirm_booking),
        }

    # -- inbound ---------------------------------------------------------------

    async def dispatch(self, session_id: str, event: str, data: Any) -> Optional[asyncio.Task]:
        """Validate an inbound event and schedule its handler for the session."""
        entry = self._handlers.get(event)
        if entry is None:
            logger.warning("Unknown event %r from session %s", event, session_id)
            await self._error(session_id, f"Unsupported event: {event}")
            return None
        model, handler = entry
        try:
            payload = model.model_validate(data if data is not None else {})
        except ValidationError as exc:
            logger.warning("Invalid %s payload from session %s: %s", event, session_id, exc)
            await self._error(session_id, f"Invalid {event} request.")
            return None
        return self._registry.spawn(session_id, self._run(session_id, event, handler, payload))

    async def _run(self, session_id: str, event: str, handler, payload) -> None:
        session = self._registry.get_session(session_id)
        if session is None:
            return
        async with session.lock:
            try:
                await handler(session_id, payload)
            except Exception:
                logger.exception("Handling %s for session %s failed", event, session_id)
                await self._error(session_id, GENERIC_ERROR)

    # -- outbound --------------------------------------------------------------

    async def _send(self, session_id: str, event: str, data: dict) -> None:
        if not self._registry.is_alive(session_id):
            return
        await self._emit(session_id, event, data)

    async def _error(self, session_id: str, message: str) -> None:
        await self._send(session_id, "error", {"message": message})

    async def _say(self, session_id: str, agent, message: str, **extra: Any) -> None:
        data = {
            "bot": agent.role,
            "name": agent.name,
            "avatar": agent.avatar,
            "message": message,
            "timestamp": _timestamp(),
        }
        for key, value in extra.items():
            if value is None:
                continue
            data[key] = value.to_wire() if isinstance(value, WireModel) else value
        await self._send(session_id, "bot_message", data)

    async def _follow_up(self, session_id: str, message: str) -> None:
        await asyncio.sleep(self._settings.follow_up_seconds)
        await self._say(session_id, self._requester, message)

    async def _staged(self, session_id: str, service_id: str, steps: list[str], call: Awaitable[Any]) -> Any:
        """
        Await ``call`` under the agent timeout while emitting ``steps`` as
        numbered progress events. Returns the call's result or raises its
        error once every step has gone out.

        ``negotiation_complete`` closes the exchange whether the call
        succeeded or failed; a cancelled exchange emits nothing further.
        """
        interval = self._settings.step_interval_seconds
        task = asyncio.ensure_future(asyncio.wait_for(call, timeout=self._settings.agent_timeout_seconds))
        cancelled = False
        try:
            await self._send(session_id, "negotiation_start", {"timestamp": _timestamp()})
            for index, step in enumerate(steps, start=1):
                await self._send(
                    session_id,
                    "negotiation_update",
                    {"step": index, "message": step, "timestamp": _timestamp()},
                )
                await asyncio.sleep(interval)
            return await task
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            if not task.done():
                task.cancel()
            if not cancelled:
                await self._send(session_id, "negotiation_complete", {"serviceId": service_id})

    def _owned_record(self, session_id: str, negotiation_id: str) -> Optional[NegotiationRecord]:
        return self._registry.get_negotiation(negotiation_id, session_id=session_id)

    # -- user_message ----------------------------------------------------------

    async def handle_user_message(self, session_id: str, event: UserMessageEvent) -> None:
        text = event.text.strip()
        suppressed = self._registry.is_suppressed(session_id, self._settings.suppression_window_ms)
        acknowledgment = is_acknowledgment(text)

        state = await self._turn_graph.ainvoke(
            {
                "session_id": session_id,
                "message": text,
                "recent_transaction": suppressed,
                "acknowledgment": acknowledgment,
                "decision": None,
                "gate": None,
            }
        )
        decision: RequesterDecision = state["decision"]
        await self._say(session_id, self._requester, decision.response)

        if not state["gate"].allowed:
            return
        await self.start_exchange(session_id, decision, text)

    async def start_exchange(self, session_id: str, decision: RequesterDecision, message: str) -> str:
        requirements = decision.service_details.strip() or message
        negotiation_id = self._registry.open_negotiation(
            session_id, decision.service_type, requirements, decision.insurance_type
        )
        record = self._owned_record(session_id, negotiation_id)
        record.phase = NegotiationPhase.NEGOTIATING
        logger.info(
            "Opened %s negotiation %s for session %s",
            decision.service_type.value,
            negotiation_id,
            session_id,
        )

        await asyncio.sleep(self._settings.lead_in_seconds)
        if decision.service_type == ServiceType.POLICY_INFO:
            await self._negotiate(session_id, record, decision.response)
        elif decision.service_type == ServiceType.CLAIMS:
            await self._file_claim(session_id, record, message)
        elif decision.service_type == ServiceType.HEALTH_CHECKUP:
            await self._schedule_checkup(session_id, record)
        return negotiation_id

    async def _negotiate(self, session_id: str, record: NegotiationRecord, requester_message: str) -> None:
        try:
            result: NegotiationResult = await self._staged(
                session_id,
                record.id,
                self._provider.progress_steps(record.insurance_type),
                self._provider.negotiate(record.insurance_type, record.requirements_text, requester_message),
            )
        except Exception as exc:
            logger.error("Negotiation %s failed: %r", record.id, exc)
            self._registry.close_negotiation(record.id, NegotiationStatus.ABANDONED)
            await self._say(
                session_id,
                self._requester,
                "I'm having trouble connecting with TATA AIG right now. "
                "Here is their standard offer while I retry. Send me a message when you'd like me to try again.",
                offer=fallback_negotiation(record.insurance_type).final_offer,
            )
            return

        self._registry.record_offer(record.id, result.final_offer)
        record.phase = NegotiationPhase.OFFERED
        await self._say(
            session_id,
            self._provider,
            offer_message(record.insurance_type, result),
            offer=result.final_offer,
            negotiationId=record.id,
        )
        await self._follow_up(
            session_id,
            "I've successfully negotiated this deal with TATA AIG based on your requirements! "
            "Shall I proceed with the application, or would you like me to negotiate further on any specific aspect?",
        )

    async def _file_claim(self, session_id: str, record: NegotiationRecord, message: str) -> None:
        try:
            claim: ClaimResult = await self._staged(
                session_id,
                record.id,
                self._claims.progress_steps(),
                self._claims.process_claim(record.requirements_text, message),
            )
        except Exception as exc:
            logger.error("Claim for negotiation %s failed: %r", record.id, exc)
            claim = None

        if claim is None or claim.status == "Error":
            self._registry.close_negotiation(record.id, NegotiationStatus.ABANDONED)
            await self._say(
                session_id,
                self._requester,
                "I couldn't get your claim registered with TATA AIG right now. "
                "Please send me the details again in a moment.",
                claimData=claim or fallback_claim(make_reference("CLM", 3)),
            )
            return

        self._registry.record_offer(record.id, claim)
        await self._say(session_id, self._claims, claim_message(claim), claimData=claim, negotiationId=record.id)
        self._registry.mark_completed_transaction(session_id, claim.claim_id)
        self._registry.close_negotiation(record.id)
        await self._follow_up(
            session_id,
            f"Your claim {claim.claim_id} is registered. Keep the claim ID handy, "
            "and let me know if you need help gathering the documents.",
        )

    async def _schedule_checkup(self, session_id: str, record: NegotiationRecord) -> None:
        try:
            result: CheckupResult = await self._staged(
                session_id,
                record.id,
                self._scheduling.progress_steps(),
                self._scheduling.process_checkup_request(record.requirements_text),
            )
        except Exception as exc:
            logger.error("Checkup request for negotiation %s failed: %r", record.id, exc)
            result = None

        if result is None or result.recommendation is None:
            self._registry.close_negotiation(record.id, NegotiationStatus.ABANDONED)
            await self._say(
                session_id,
                self._requester,
                "I couldn't reach TATA 1mg to arrange your checkup right now. Please try again shortly.",
                checkupData=result or fallback_checkup(make_reference("HC", 3)),
            )
            return

        self._registry.record_offer(record.id, result)
        record.phase = NegotiationPhase.OFFERED
        await self._say(
            session_id,
            self._scheduling,
            checkup_message(result),
            checkupData=result,
            negotiationId=record.id,
        )

    # -- accept_offer ----------------------------------------------------------

    async def accept_offer(self, session_id: str, event: AcceptOfferEvent) -> None:
        record = self._owned_record(session_id, event.negotiation_id)
        if record is None or record.last_offer is None or record.service_type != ServiceType.POLICY_INFO:
            await self._error(session_id, MISSING_NEGOTIATION)
            return
        if record.phase != NegotiationPhase.OFFERED:
            await self._error(session_id, "This offer is already being processed.")
            return

        record.phase = NegotiationPhase.ACCEPTED
        await self._say(
            session_id,
            self._requester,
            "Perfect! I'm now coordinating with TATA AIG to process your application and set up payment. "
            "Let me get the payment details for you...",
        )
        await asyncio.sleep(self._settings.lead_in_seconds)
        try:
            payment: PaymentDetails = await self._staged(
                session_id,
                record.id,
                PAYMENT_STEPS,
                self._provider.process_payment(record.last_offer, record.insurance_type or "insurance"),
            )
        except Exception as exc:
            logger.error("Payment setup for negotiation %s failed: %r", record.id, exc)
            record.phase = NegotiationPhase.OFFERED
            await self._say(
                session_id,
                self._requester,
                "I encountered an issue while setting up payment. Please accept the offer again to retry.",
            )
            return

        record.payment = payment
        await self._say(
            session_id,
            self._provider,
            payment_message(payment),
            paymentData=payment,
            negotiationId=record.id,
        )
        await self._follow_up(
            session_id,
            "Perfect! I've successfully coordinated with TATA AIG to set up your payment. "
            "The secure payment portal is ready. The payment process is completely safe and encrypted. 🔒",
        )

    # -- payment_completed -----------------------------------------------------

    def _awaiting_payment(self, session_id: str, payment_id: Optional[str]) -> Optional[NegotiationRecord]:
        candidates = [
            r
            for r in self._registry.negotiations_for(session_id)
            if r.phase == NegotiationPhase.ACCEPTED and r.payment is not None
        ]
        if payment_id:
            return next((r for r in candidates if r.payment.payment_id == payment_id), None)
        return max(candidates, key=lambda r: r.created_at) if candidates else None

    async def payment_completed(self, session_id: str, event: PaymentCompletedEvent) -> None:
        record = self._awaiting_payment(session_id, event.payment_id)
        if record is None:
            await self._error(session_id, "Unable to find policy data. Please contact support.")
            return
        if event.status != "success":
            logger.info("Payment for negotiation %s reported %s", record.id, event.status)
            await self._say(
                session_id,
                self._requester,
                "It looks like the payment didn't go through. No money has been taken; "
                "you can retry from the payment portal whenever you're ready.",
            )
            return

        await self._say(
            session_id,
            self._requester,
            "Excellent! Your payment has been processed successfully. I'm now coordinating with TATA AIG "
            "to generate your policy documents and certificate. This will just take a moment...",
        )
        await asyncio.sleep(self._settings.lead_in_seconds)
        try:
            policy: PolicyDocument = await self._staged(
                session_id,
                record.id,
                ISSUANCE_STEPS,
                self._provider.issue_policy(record.payment, record.last_offer, record.insurance_type or "insurance"),
            )
        except Exception as exc:
            logger.error("Policy issuance for negotiation %s failed: %r", record.id, exc)
            await self._say(
                session_id,
                self._requester,
                "There was an issue generating your policy. Your payment is safe; "
                "please let me know and I'll retry the issuance.",
            )
            return

        await self._say(session_id, self._provider, policy_message(policy), policyData=policy)
        self._registry.mark_completed_transaction(session_id, policy.policy_number)
        self._registry.close_negotiation(record.id)
        await self._follow_up(
            session_id,
            "🎊 Congratulations! Your insurance policy has been successfully issued. "
            "I've completed the entire process for you, from negotiating the rates to securing your policy.\n\n"
            "**What's Next:**\n"
            "✅ Your policy is now active\n"
            "✅ Documents will arrive in your email\n"
            f"✅ Keep your policy number: **{policy.policy_number}**\n"
            "✅ 24/7 customer support available",
        )

    # -- reject_offer ----------------------------------------------------------

    async def reject_offer(self, session_id: str, event: RejectOfferEvent) -> None:
        record = self._owned_record(session_id, event.negotiation_id)
        if (
            record is None
            or record.last_offer is None
            or record.service_type != ServiceType.POLICY_INFO
            or record.phase != NegotiationPhase.OFFERED
        ):
            await self._error(session_id, MISSING_NEGOTIATION)
            return

        if record.renegotiation_rounds >= self._settings.max_renegotiation_rounds:
            logger.info("Negotiation %s reached the renegotiation cap", record.id)
            await self._say(
                session_id,
                self._requester,
                "I've pushed TATA AIG as far as they will go; this is the best offer available. "
                "Would you like to accept it?",
                offer=record.last_offer,
                negotiationId=record.id,
            )
            return

        await self._say(
            session_id,
            self._requester,
            "I understand you'd like better terms. Let me renegotiate with TATA AIG to get you an improved offer. "
            "I'll push for better rates and additional benefits...",
        )
        record.phase = NegotiationPhase.NEGOTIATING
        await asyncio.sleep(self._settings.lead_in_seconds)
        try:
            offer: Offer = await self._staged(
                session_id,
                record.id,
                RENEGOTIATION_STEPS,
                self._provider.renegotiate(record.last_offer, event.feedback or "User wants better terms"),
            )
        except Exception as exc:
            logger.error("Renegotiation of %s failed: %r", record.id, exc)
            record.phase = NegotiationPhase.OFFERED
            await self._say(
                session_id,
                self._requester,
                "Let me try a different approach to get you better terms. What specific aspects would you like "
                "me to focus on - lower premium, higher coverage, or additional benefits?",
            )
            return

        self._registry.record_offer(record.id, offer)
        record.renegotiation_rounds += 1
        record.phase = NegotiationPhase.OFFERED
        await self._say(
            session_id,
            self._provider,
            improved_offer_message(record.insurance_type, offer),
            offer=offer,
            negotiationId=record.id,
        )
        await self._follow_up(
            session_id,
            "Excellent! I've secured an improved deal for you with better terms. How does this look?",
        )

    # -- confirm_booking -------------------------------------------------------

    async def confirm_booking(self, session_id: str, event: ConfirmBookingEvent) -> None:
        record = self._owned_record(session_id, event.negotiation_id)
        if (
            record is None
            or record.service_type != ServiceType.HEALTH_CHECKUP
            or record.phase != NegotiationPhase.OFFERED
            or not isinstance(record.last_offer, CheckupResult)
        ):
            await self._error(session_id, MISSING_NEGOTIATION)
            return

        record.phase = NegotiationPhase.ACCEPTED
        try:
            booking = await asyncio.wait_for(
                self._scheduling.confirm_booking(record.last_offer, event.date, event.time, event.location),
                timeout=self._settings.agent_timeout_seconds,
            )
        except Exception as exc:
            logger.error("Booking confirmation for %s failed: %r", record.id, exc)
            record.phase = NegotiationPhase.OFFERED
            await self._say(
                session_id,
                self._requester,
                "I couldn't confirm the booking with TATA 1mg just now. Please try confirming again.",
            )
            return

        await self._say(
            session_id,
            self._scheduling,
            booking_message(booking),
            checkupData=booking,
            negotiationId=record.id,
        )
        self._registry.mark_completed_transaction(session_id, booking.confirmation_id)
        self._registry.close_negotiation(record.id)
