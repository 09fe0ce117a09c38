import logging

from langgraph.graph import END, START, StateGraph

from personalbot.config import Settings
from personalbot.graph.gate import evaluate_gate
from personalbot.graph.requester import RequesterAgent
from personalbot.graph.state import TurnState
from personalbot.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)


def compile_turn_graph(requester: RequesterAgent, registry: SessionRegistry, settings: Settings):
    """Build and compile the per-message pipeline: requester, then gate."""

    async def requester_node(state: TurnState) -> dict:
        decision = await requester.process(
            registry,
            state["session_id"],
            state["message"],
            recent_transaction=state["recent_transaction"],
            acknowledgment=state["acknowledgment"],
        )
        return {"decision": decision}

    def gate_node(state: TurnState) -> dict:
        """Deterministic second check on the requester's classification."""
        decision = state["decision"]
        gate = evaluate_gate(
            requires_a2a=decision.requires_a2a,
            service_type=decision.service_type,
            suppressed=state["recent_transaction"],
            acknowledgment=state["acknowledgment"],
            detail_length=len(decision.service_details.strip()),
            min_detail_length=settings.min_detail_length,
        )
        if not gate.allowed:
            logger.info(
                "Gate refused %s exchange for session %s: %s",
                decision.service_type.value,
                state["session_id"],
                gate.reason.value,
            )
        return {"gate": gate}

    graph = StateGraph(TurnState)

    graph.add_node("requester", requester_node)
    graph.add_node("gate", gate_node)

    graph.add_edge(START, "requester")
    graph.add_edge("requester", "gate")
    graph.add_edge("gate", END)

    return graph.compile()
