from typing import Literal, TypedDict


class ConversationTurn(TypedDict):
    role: Literal["user", "assistant"]
    content: str
