import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from personalbot.config import Settings

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

# (system_prompt, payload, max_tokens, temperature) -> parsed JSON object
Completion = Callable[[str, dict, int, float], Awaitable[Any]]


def load_prompt(name: str) -> str:
    return (_PROMPTS_DIR / name).read_text(encoding="utf-8")


def extract_json(raw: str) -> Any:
    """Parse a JSON document out of a model reply, tolerating code fences."""
    if "```" in raw:
        raw = raw.split("```")[1]
        if raw.startswith("json"):
            raw = raw[4:]
    return json.loads(raw.strip())


def anthropic_completion(settings: Settings) -> Completion:
    """Build the completion function every agent calls.

    Errors (network, auth, unparseable reply) propagate; each agent turns
    them into its own fallback result.
    """

    async def complete(
        system_prompt: str,
        payload: dict,
        max_tokens: int = 800,
        temperature: float = 0.7,
    ) -> Any:
        llm = ChatAnthropic(
            model=settings.model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        response = await llm.ainvoke(
            [
                SystemMessage(content=system_prompt),
                HumanMessage(content=json.dumps(payload, indent=2, default=str)),
            ]
        )
        return extract_json(response.content)

    return complete
