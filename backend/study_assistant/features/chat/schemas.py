"""
Chat feature: Schemas for conversations, messages and API payloads.
"""

import math
from datetime import datetime
from typing import Literal

from pydantic import Field, field_validator

from study_assistant.core.schemas import CamelModel


class Conversation(CamelModel):
    id: str
    student_id: str
    title: str
    is_active: bool = True
    last_message_at: datetime | None = None
    message_count: int = 0
    created_at: datetime | None = None


class ChatMessage(CamelModel):
    """A persisted message. Append-only, never edited."""
    id: str
    conversation_id: str
    role: Literal["user", "assistant"]
    content: str
    metadata: dict | None = None
    created_at: datetime | None = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit))


# ── API payloads ─────────────────────────────────────────

class SendMessageRequest(CamelModel):
    """Request to send a message (batch or streaming)."""
    student_id: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=4000)
    conversation_id: str | None = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class SendMessageResponse(CamelModel):
    conversation_id: str
    user_message: ChatMessage
    assistant_message: ChatMessage


class NewConversationRequest(CamelModel):
    student_id: str = Field(min_length=1)
    initial_context: str | None = None


class ConversationHistory(CamelModel):
    conversation: Conversation
    messages: list[ChatMessage]
    pagination: Pagination


class ConversationList(CamelModel):
    conversations: list[Conversation]
    pagination: Pagination


class DeleteHistoryResponse(CamelModel):
    deleted_messages: int
