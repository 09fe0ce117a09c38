import inspect
import random
from pathlib import Path

import pytest

from personalbot.config import Settings
from personalbot.graph.agents import ProviderAgent
from personalbot.graph.checkup import SchedulingAgent
from personalbot.graph.claims import ClaimsAgent
from personalbot.graph.llm import load_prompt
from personalbot.graph.requester import RequesterAgent
from personalbot.services.orchestrator import Orchestrator
from personalbot.services.pricing import PricingService
from personalbot.services.profile_store import ProfileStore
from personalbot.services.sessions import SessionRegistry

PROFILE_PATH = Path(__file__).parent / "data" / "user_profile.json"

_PROMPTS = ("requester", "provider", "renegotiation", "claim_classifier")


class ScriptedCompletion:
    """
    Stands in for the model. Replies are keyed by prompt name; a reply may be
    a dict, an exception to raise, or a callable taking the payload (sync or
    async).
    """

    def __init__(self, **replies) -> None:
        self.replies = replies
        self.calls: list[tuple[str, dict]] = []
        self._names = {load_prompt(f"{name}.txt"): name for name in _PROMPTS}

    async def __call__(self, system_prompt, payload, max_tokens=800, temperature=0.7):
        name = self._names.get(system_prompt, "unknown")
        self.calls.append((name, payload))
        reply = self.replies.get(name)
        if reply is None:
            raise RuntimeError(f"no scripted reply for {name}")
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(payload)
            if inspect.isawaitable(reply):
                reply = await reply
        return reply


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class EventLog:
    """Collects outbound events the way the connection manager would send them."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    async def __call__(self, session_id: str, event: str, data: dict) -> None:
        self.events.append((session_id, event, data))

    def named(self, event: str) -> list[dict]:
        return [data for _, name, data in self.events if name == event]

    def bot_messages(self, bot: str | None = None) -> list[dict]:
        return [m for m in self.named("bot_message") if bot is None or m["bot"] == bot]


REQUESTER_POLICY = {
    "response": "Let me get TATA AIG to quote a renewal for your Honda City.",
    "serviceType": "policy_info",
    "requiresA2A": True,
    "serviceDetails": "Comprehensive car insurance renewal for Honda City 2021 with zero depreciation cover",
    "insuranceType": "car insurance",
}

REQUESTER_CLAIM = {
    "response": "I'm sorry to hear that. I'll file the claim with TATA AIG right away.",
    "serviceType": "claims",
    "requiresA2A": True,
    "serviceDetails": "Motor claim for Honda City MH02AB1234 after a car accident, damage about ₹50,000",
    "insuranceType": "car insurance",
}

REQUESTER_CHECKUP = {
    "response": "I'll check health checkup options with TATA 1mg.",
    "serviceType": "health_checkup",
    "requiresA2A": True,
    "serviceDetails": "Annual health checkup, morning slot preferred",
    "insuranceType": "",
}

PROVIDER_OFFER = {
    "negotiationSteps": ["Analyzing requirements...", "Preparing offer..."],
    "finalOffer": {
        "policyName": "TATA AIG Auto Secure",
        "premium": "₹21,000/year",
        "coverage": "₹9,50,000 (IDV)",
        "discount": "10% online discount",
        "features": ["Zero Depreciation Cover", "Engine Protection"],
    },
    "reasoning": "Priced on your clean driving record.",
}


@pytest.fixture
def settings():
    return Settings(
        profile_path=str(PROFILE_PATH),
        step_interval_seconds=0,
        lead_in_seconds=0,
        follow_up_seconds=0,
        agent_timeout_seconds=1.0,
    )


@pytest.fixture
def profiles():
    return ProfileStore(PROFILE_PATH)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return SessionRegistry(clock=clock)


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def make_orchestrator(settings, profiles, registry, event_log):
    """Factory: build an engine around a scripted completion."""

    def build(completion: ScriptedCompletion, **overrides) -> Orchestrator:
        engine_settings = overrides.pop("settings", settings)
        rng = random.Random(7)
        return Orchestrator(
            registry=registry,
            requester=RequesterAgent(completion, profiles, timeout_seconds=engine_settings.agent_timeout_seconds),
            provider=ProviderAgent(completion, PricingService(rng=rng), profiles),
            claims=ClaimsAgent(completion, profiles),
            scheduling=SchedulingAgent(profiles, rng=rng),
            emit=event_log,
            settings=engine_settings,
        )

    return build
