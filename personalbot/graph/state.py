from typing import Optional, TypedDict

from personalbot.graph.gate import GateDecision
from personalbot.graph.schemas import RequesterDecision


class TurnState(TypedDict):
    session_id: str
    message: str
    # Suppression flags computed before the requester runs
    recent_transaction: bool
    acknowledgment: bool
    decision: Optional[RequesterDecision]
    gate: Optional[GateDecision]
