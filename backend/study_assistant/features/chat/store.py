"""
Chat feature: Persistence adapter for conversations and messages.

Tables: `conversations`, `chat_messages` (see sql/schema.sql). Counter
updates go through the `record_conversation_exchange` RPC so the
increment happens server-side.
"""

import uuid
from datetime import datetime, timezone

from supabase import AsyncClient

from study_assistant.core.database import storage_errors
from study_assistant.features.chat.schemas import ChatMessage, Conversation

CONVERSATIONS = "conversations"
MESSAGES = "chat_messages"


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class ConversationStore:
    """CRUD operations for conversations and their messages."""

    def __init__(self, db: AsyncClient):
        self.db = db

    # ── Conversations ────────────────────────────────────

    async def create_conversation(self, student_id: str, title: str) -> Conversation:
        insert_data = {
            "student_id": student_id,
            "title": title,
            "is_active": True,
            "last_message_at": datetime.now(timezone.utc).isoformat(),
            "message_count": 0,
        }
        async with storage_errors("create conversation"):
            result = await self.db.table(CONVERSATIONS).insert(insert_data).execute()
        return Conversation.model_validate(result.data[0])

    async def find_conversation(self, conversation_id: str, student_id: str | None = None) -> Conversation | None:
        """Conversation by id (optionally owned by student_id), or None."""
        if not _is_uuid(conversation_id):
            return None

        async with storage_errors("find conversation"):
            query = self.db.table(CONVERSATIONS).select("*").eq("id", conversation_id)
            if student_id:
                query = query.eq("student_id", student_id)
            result = await query.limit(1).execute()
        return Conversation.model_validate(result.data[0]) if result.data else None

    async def deactivate_other_conversations(self, student_id: str, keep_id: str) -> None:
        async with storage_errors("deactivate conversations"):
            await (
                self.db.table(CONVERSATIONS)
                .update({"is_active": False})
                .eq("student_id", student_id)
                .neq("id", keep_id)
                .execute()
            )

    async def record_exchange(self, conversation_id: str, message_delta: int = 2) -> None:
        """message_count += delta, last_message_at = now()."""
        async with storage_errors("update conversation counters"):
            await self.db.rpc(
                "record_conversation_exchange",
                {"conversation_id_param": conversation_id, "message_delta": message_delta},
            ).execute()

    async def list_conversations(self, student_id: str, offset: int, limit: int) -> tuple[list[Conversation], int]:
        """Most recently active first."""
        async with storage_errors("list conversations"):
            result = await (
                self.db.table(CONVERSATIONS)
                .select("*", count="exact")
                .eq("student_id", student_id)
                .order("last_message_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        conversations = [Conversation.model_validate(row) for row in result.data]
        return conversations, result.count or 0

    async def delete_conversation(self, conversation_id: str) -> None:
        async with storage_errors("delete conversation"):
            await self.db.table(CONVERSATIONS).delete().eq("id", conversation_id).execute()

    # ── Messages ─────────────────────────────────────────

    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict | None = None,
    ) -> ChatMessage:
        insert_data = {
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "metadata": metadata,
        }
        async with storage_errors("create message"):
            result = await self.db.table(MESSAGES).insert(insert_data).execute()
        return ChatMessage.model_validate(result.data[0])

    async def recent_messages(self, conversation_id: str, limit: int) -> list[ChatMessage]:
        """The last `limit` messages, returned oldest first."""
        async with storage_errors("load recent messages"):
            result = await (
                self.db.table(MESSAGES)
                .select("*")
                .eq("conversation_id", conversation_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        return [ChatMessage.model_validate(row) for row in reversed(result.data)]

    async def list_messages(self, conversation_id: str, offset: int, limit: int) -> tuple[list[ChatMessage], int]:
        """A page of messages in chronological order, plus the total count."""
        async with storage_errors("list messages"):
            result = await (
                self.db.table(MESSAGES)
                .select("*", count="exact")
                .eq("conversation_id", conversation_id)
                .order("created_at")
                .range(offset, offset + limit - 1)
                .execute()
            )
        messages = [ChatMessage.model_validate(row) for row in result.data]
        return messages, result.count or 0

    async def delete_messages(self, conversation_id: str) -> int:
        async with storage_errors("delete messages"):
            result = await self.db.table(MESSAGES).delete().eq("conversation_id", conversation_id).execute()
        return len(result.data or [])
