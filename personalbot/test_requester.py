import asyncio

import pytest

from conftest import REQUESTER_CLAIM, ScriptedCompletion
from personalbot.graph.requester import RequesterAgent, fallback_decision
from personalbot.graph.schemas import ServiceType


@pytest.fixture
def session(registry):
    registry.create_session("s1")
    return "s1"


async def test_structured_reply_is_parsed(profiles):
    agent = RequesterAgent(ScriptedCompletion(requester=REQUESTER_CLAIM), profiles)
    decision = await agent.decide("I had an accident", [])
    assert decision.service_type == ServiceType.CLAIMS
    assert decision.requires_a2a is True
    assert decision.service_details.startswith("Motor claim")


async def test_payload_carries_profile_history_and_flags(profiles):
    completion = ScriptedCompletion(requester=REQUESTER_CLAIM)
    agent = RequesterAgent(completion, profiles)
    history = [{"role": "user", "content": "hello"}]
    await agent.decide("ok", history, recent_transaction=True, acknowledgment=True)
    _, payload = completion.calls[0]
    assert payload["conversation_history"] == history
    assert payload["user_profile"]["name"] == "Arjun Mehta"
    assert payload["context"] == {"recent_transaction": True, "acknowledgment": True}


@pytest.mark.parametrize(
    "reply",
    [
        RuntimeError("provider down"),
        {"serviceType": "claims", "requiresA2A": True},
        {"response": "", "serviceType": "claims"},
        {"response": "hi", "serviceType": "travel"},
    ],
)
async def test_failures_yield_safe_default(profiles, reply):
    agent = RequesterAgent(ScriptedCompletion(requester=reply), profiles)
    decision = await agent.decide("hello", [])
    assert decision == fallback_decision()
    assert decision.requires_a2a is False
    assert decision.response


async def test_timeout_yields_safe_default(profiles):
    async def hang(payload):
        await asyncio.Event().wait()

    agent = RequesterAgent(ScriptedCompletion(requester=hang), profiles, timeout_seconds=0.01)
    decision = await agent.decide("hello", [])
    assert decision == fallback_decision()


async def test_process_records_both_sides(profiles, registry, session):
    agent = RequesterAgent(ScriptedCompletion(requester=REQUESTER_CLAIM), profiles)
    await agent.process(registry, session, "I had an accident")
    assert registry.recent_turns(session, 10) == [
        {"role": "user", "content": "I had an accident"},
        {"role": "assistant", "content": REQUESTER_CLAIM["response"]},
    ]


async def test_process_uses_history_window(profiles, registry, session):
    completion = ScriptedCompletion(requester=REQUESTER_CLAIM)
    agent = RequesterAgent(completion, profiles, history_window=2)
    for i in range(3):
        registry.append_turn(session, {"role": "user", "content": f"m{i}"})
    await agent.process(registry, session, "next")
    _, payload = completion.calls[0]
    assert [t["content"] for t in payload["conversation_history"]] == ["m1", "m2"]


async def test_replaced_profile_reaches_the_agent(profiles):
    completion = ScriptedCompletion(requester=REQUESTER_CLAIM)
    agent = RequesterAgent(completion, profiles)
    profiles.replace({"name": "Priya Mehta", "age": 39})
    await agent.decide("hello", [])
    _, payload = completion.calls[0]
    assert payload["user_profile"]["name"] == "Priya Mehta"
