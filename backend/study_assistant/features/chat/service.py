"""
Chat feature: Conversation orchestration.

One exchange = resolve conversation → persist user message → retrieve
course context (best effort) → assemble history from the context cache →
generate → persist assistant reply → update counters and cache.

Exchange lifecycle:
  idle → conversation_resolved → context_assembled → generating → completed
  any non-terminal state → failed (the error propagates to the caller)
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator

from study_assistant.config import Settings, get_settings
from study_assistant.features.ai.client import GenerationClient
from study_assistant.features.ai.schemas import ChatTurn
from study_assistant.features.chat.cache import ContextCache
from study_assistant.features.chat.schemas import (
    ChatMessage,
    Conversation,
    ConversationHistory,
    ConversationList,
    Pagination,
    SendMessageResponse,
)
from study_assistant.features.chat.store import ConversationStore
from study_assistant.features.knowledge.service import KnowledgeService

logger = logging.getLogger(__name__)

STREAM_MODEL_LABEL = "stream"


class ExchangeState(str, Enum):
    IDLE = "idle"
    CONVERSATION_RESOLVED = "conversation_resolved"
    CONTEXT_ASSEMBLED = "context_assembled"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Exchange:
    """Working state of a single request/response exchange."""
    student_id: str
    message: str
    state: ExchangeState = ExchangeState.IDLE
    conversation: Conversation | None = None
    user_message: ChatMessage | None = None
    history: list[ChatTurn] = field(default_factory=list)
    context: list[str] = field(default_factory=list)

    def advance(self, state: ExchangeState) -> None:
        conversation_id = self.conversation.id if self.conversation else "-"
        logger.debug(f"Exchange [{conversation_id}] {self.state.value} → {state.value}")
        self.state = state


class ChatService:
    """Stateless orchestrator; all mutable state lives in the store and the cache."""

    def __init__(
        self,
        store: ConversationStore,
        cache: ContextCache,
        generation: GenerationClient,
        knowledge: KnowledgeService,
        settings: Settings | None = None,
    ):
        self.store = store
        self.cache = cache
        self.generation = generation
        self.knowledge = knowledge
        self.settings = settings or get_settings()

    # ── Conversations ────────────────────────────────────

    async def start_new_conversation(self, student_id: str, initial_context: str | None = None) -> Conversation:
        """Create an active conversation, deactivating the student's others.

        An initial_context becomes a system turn that lives only in the
        context cache; it is never persisted as a message.
        """
        conversation = await self._create_conversation(student_id)
        seed = [ChatTurn(role="system", content=initial_context)] if initial_context else []
        self.cache.set(conversation.id, seed)
        return conversation

    async def _create_conversation(self, student_id: str) -> Conversation:
        conversation = await self.store.create_conversation(student_id, self.settings.DEFAULT_CONVERSATION_TITLE)
        await self.store.deactivate_other_conversations(student_id, conversation.id)
        logger.info(f"Started conversation {conversation.id} for student {student_id}")
        return conversation

    async def _resolve_conversation(self, exchange: Exchange, conversation_id: str | None) -> Conversation:
        conversation = None
        if conversation_id:
            conversation = await self.store.find_conversation(conversation_id, exchange.student_id)
            if conversation is None:
                logger.info(f"Conversation {conversation_id} not found for {exchange.student_id}, starting a new one")
        if conversation is None:
            conversation = await self._create_conversation(exchange.student_id)

        exchange.conversation = conversation
        exchange.advance(ExchangeState.CONVERSATION_RESOLVED)
        return conversation

    # ── Exchange steps ───────────────────────────────────

    async def _assemble(self, exchange: Exchange) -> None:
        """Persist the user message, then gather grounding context and history."""
        conversation_id = exchange.conversation.id
        exchange.user_message = await self.store.create_message(conversation_id, "user", exchange.message)

        user_message_id = exchange.user_message.id
        self.cache.append(conversation_id, ChatTurn(role="user", content=exchange.message, message_id=user_message_id))

        exchange.context = await self._retrieve_context(exchange.message)

        # The window already holds this exchange's user turn (appended, or rebuilt
        # from storage), not necessarily last when other sends run concurrently
        window = await self.cache.get(conversation_id)
        exchange.history = [turn for turn in window if turn.message_id != user_message_id]
        exchange.advance(ExchangeState.CONTEXT_ASSEMBLED)

    async def _retrieve_context(self, message: str) -> list[str]:
        """Course snippets for the prompt. Failures degrade to no context."""
        try:
            results = await self.knowledge.search_similar(
                message,
                limit=self.settings.RAG_SEARCH_LIMIT,
                min_score=self.settings.RAG_MIN_SCORE,
            )
        except Exception as e:
            logger.warning(f"Context retrieval failed, continuing without it: {e}")
            return []
        return [result.content for result in results]

    async def _complete(self, exchange: Exchange, content: str, metadata: dict) -> ChatMessage:
        conversation_id = exchange.conversation.id
        assistant_message = await self.store.create_message(conversation_id, "assistant", content, metadata)
        await self.store.record_exchange(conversation_id, message_delta=2)
        self.cache.append(
            conversation_id, ChatTurn(role="assistant", content=content, message_id=assistant_message.id)
        )
        exchange.advance(ExchangeState.COMPLETED)
        return assistant_message

    # ── Send ─────────────────────────────────────────────

    async def send_message(
        self,
        student_id: str,
        message: str,
        conversation_id: str | None = None,
    ) -> SendMessageResponse:
        """Run one full exchange and return both persisted messages."""
        exchange = Exchange(student_id=student_id, message=message)
        try:
            await self._resolve_conversation(exchange, conversation_id)
            await self._assemble(exchange)

            exchange.advance(ExchangeState.GENERATING)
            result = await self.generation.generate(message, exchange.history, exchange.context)

            metadata = {"tokensUsed": result.tokens_used, "model": result.model}
            assistant_message = await self._complete(exchange, result.content, metadata)
        except Exception:
            exchange.advance(ExchangeState.FAILED)
            raise

        return SendMessageResponse(
            conversation_id=exchange.conversation.id,
            user_message=exchange.user_message,
            assistant_message=assistant_message,
        )

    async def stream_message(
        self,
        student_id: str,
        message: str,
        conversation_id: str | None = None,
    ) -> AsyncIterator[dict]:
        """Run one exchange, yielding wire events as they happen.

        Events, in order: {"conversationId"}, zero or more {"token"}, then
        {"done": True, "messageId"}. Errors after the first event propagate
        out of the iterator. The assistant message is only persisted once
        the fragment stream is exhausted, so an abandoned or failed stream
        leaves just the user message behind.
        """
        exchange = Exchange(student_id=student_id, message=message)
        try:
            await self._resolve_conversation(exchange, conversation_id)
            yield {"conversationId": exchange.conversation.id}

            await self._assemble(exchange)

            exchange.advance(ExchangeState.GENERATING)
            parts: list[str] = []
            fragments = self.generation.generate_streaming(message, exchange.history, exchange.context)
            async with aclosing(fragments):
                async for fragment in fragments:
                    parts.append(fragment)
                    yield {"token": fragment}

            assistant_message = await self._complete(exchange, "".join(parts), {"model": STREAM_MODEL_LABEL})
        except (GeneratorExit, asyncio.CancelledError):
            logger.info(f"Stream abandoned for conversation {exchange.conversation.id if exchange.conversation else '-'}")
            exchange.advance(ExchangeState.FAILED)
            raise
        except Exception:
            exchange.advance(ExchangeState.FAILED)
            raise

        yield {"done": True, "messageId": assistant_message.id}

    # ── History ──────────────────────────────────────────

    async def get_history(
        self,
        student_id: str,
        conversation_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> ConversationHistory | ConversationList | None:
        """Paginated messages of one conversation, or the student's conversations.

        Returns None when conversation_id is given but not owned by the student.
        """
        offset = (page - 1) * limit

        if conversation_id:
            conversation = await self.store.find_conversation(conversation_id, student_id)
            if conversation is None:
                return None
            messages, total = await self.store.list_messages(conversation.id, offset, limit)
            return ConversationHistory(
                conversation=conversation,
                messages=messages,
                pagination=Pagination.build(page, limit, total),
            )

        conversations, total = await self.store.list_conversations(student_id, offset, limit)
        return ConversationList(
            conversations=conversations,
            pagination=Pagination.build(page, limit, total),
        )

    async def delete_history(self, student_id: str, conversation_id: str) -> int | None:
        """Delete a conversation with its messages. None if it doesn't exist for the student."""
        conversation = await self.store.find_conversation(conversation_id, student_id)
        if conversation is None:
            return None

        deleted = await self.store.delete_messages(conversation.id)
        await self.store.delete_conversation(conversation.id)
        self.cache.invalidate(conversation.id)

        logger.info(f"Deleted conversation {conversation.id} ({deleted} messages)")
        return deleted
