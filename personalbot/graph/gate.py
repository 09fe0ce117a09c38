"""
Deterministic gate in front of agent-to-agent exchanges.

The requester's classification is model-driven and noisy; nothing downstream
starts unless every rule here passes.
"""

from dataclasses import dataclass
from enum import Enum

from personalbot.graph.schemas import ServiceType

ACKNOWLEDGMENTS = frozenset(
    {
        "ok",
        "okay",
        "thanks",
        "thank you",
        "proceed",
        "yes",
        "sure",
        "go ahead",
        "accept",
        "agree",
        "great",
    }
)

# Service types whose detail text must clear the length threshold
_DETAIL_CHECKED = {ServiceType.POLICY_INFO, ServiceType.CLAIMS}


class GateReason(str, Enum):
    ALLOWED = "allowed"
    NOT_REQUESTED = "a2a_not_requested"
    GENERAL_SERVICE = "no_downstream_agent"
    SUPPRESSED = "recent_transaction"
    ACKNOWLEDGMENT = "acknowledgment_only"
    INSUFFICIENT_DETAIL = "insufficient_detail"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: GateReason


def is_acknowledgment(message: str) -> bool:
    """Whole-message match against the acknowledgment vocabulary."""
    normalized = message.strip().rstrip(".!").strip().lower()
    return normalized in ACKNOWLEDGMENTS


def evaluate_gate(
    requires_a2a: bool,
    service_type: ServiceType,
    suppressed: bool,
    acknowledgment: bool,
    detail_length: int,
    min_detail_length: int,
) -> GateDecision:
    if not requires_a2a:
        return GateDecision(False, GateReason.NOT_REQUESTED)
    if service_type == ServiceType.GENERAL:
        return GateDecision(False, GateReason.GENERAL_SERVICE)
    if suppressed:
        return GateDecision(False, GateReason.SUPPRESSED)
    if acknowledgment:
        return GateDecision(False, GateReason.ACKNOWLEDGMENT)
    if service_type in _DETAIL_CHECKED and detail_length < min_detail_length:
        return GateDecision(False, GateReason.INSUFFICIENT_DETAIL)
    return GateDecision(True, GateReason.ALLOWED)
