import asyncio
import logging

from pydantic import ValidationError

from personalbot.graph.llm import Completion, load_prompt
from personalbot.graph.schemas import RequesterDecision, ServiceType
from personalbot.services.profile_store import ProfileStore
from personalbot.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)

ROLE = "personal"
NAME = "PersonalBot"
AVATAR = "🤖"

_FALLBACK_RESPONSE = "I'm having trouble processing your request right now. Could you please try again?"


def fallback_decision() -> RequesterDecision:
    return RequesterDecision(
        response=_FALLBACK_RESPONSE,
        service_type=ServiceType.GENERAL,
        requires_a2a=False,
    )


class RequesterAgent:
    """Talks to the user and classifies whether a specialist is needed."""

    role = ROLE
    name = NAME
    avatar = AVATAR

    def __init__(
        self,
        completion: Completion,
        profiles: ProfileStore,
        history_window: int = 10,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._complete = completion
        self._profiles = profiles
        self._history_window = history_window
        self._timeout = timeout_seconds

    async def decide(
        self,
        message: str,
        history: list[dict],
        recent_transaction: bool = False,
        acknowledgment: bool = False,
    ) -> RequesterDecision:
        """
        Classify ``message``. Never raises: provider errors, timeouts and
        replies that fail the schema all yield the apologetic default.
        """
        payload = {
            "user_message": message,
            "conversation_history": history,
            "user_profile": self._profiles.summary(),
            "context": {
                "recent_transaction": recent_transaction,
                "acknowledgment": acknowledgment,
            },
        }
        try:
            raw = await asyncio.wait_for(
                self._complete(load_prompt("requester.txt"), payload, 500, 0.7),
                timeout=self._timeout,
            )
            return RequesterDecision.model_validate(raw)
        except asyncio.TimeoutError:
            logger.error("Requester agent timed out after %.1fs", self._timeout)
        except ValidationError as exc:
            logger.error("Requester agent returned malformed output: %s", exc)
        except Exception as exc:
            logger.error("Requester agent failed: %s", exc)
        return fallback_decision()

    async def process(
        self,
        registry: SessionRegistry,
        session_id: str,
        message: str,
        recent_transaction: bool = False,
        acknowledgment: bool = False,
    ) -> RequesterDecision:
        """Decide on ``message`` and record both sides of the exchange."""
        history = registry.recent_turns(session_id, self._history_window)
        decision = await self.decide(message, history, recent_transaction, acknowledgment)
        registry.append_turn(session_id, {"role": "user", "content": message})
        registry.append_turn(session_id, {"role": "assistant", "content": decision.response})
        return decision
