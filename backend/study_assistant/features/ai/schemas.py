"""
AI feature: Value types exchanged with the generation capability.
"""

from dataclasses import dataclass, field
from typing import Literal

Role = Literal["user", "assistant", "system"]


@dataclass(frozen=True)
class ChatTurn:
    """One role/content pair of conversation history.

    message_id links the turn to its persisted message; turns that only
    live in the cache (a seeded system turn) have none.
    """
    role: Role
    content: str
    message_id: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class GenerationResult:
    content: str
    tokens_used: int | None = None
    model: str | None = None
