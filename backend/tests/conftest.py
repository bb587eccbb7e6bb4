"""
Shared pytest fixtures: in-memory stand-ins for Supabase and the LLM provider.
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessage, AIMessageChunk

# Settings are read at import time by study_assistant.main
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-key")

from study_assistant.config import Settings, get_settings  # noqa: E402
from study_assistant.core.rate_limit import CallScheduler  # noqa: E402
from study_assistant.features.ai.client import GenerationClient  # noqa: E402
from study_assistant.features.chat.cache import ContextCache  # noqa: E402
from study_assistant.features.chat.schemas import ChatMessage, Conversation  # noqa: E402
from study_assistant.features.chat.service import ChatService  # noqa: E402
from study_assistant.features.knowledge.schemas import KnowledgeChunk  # noqa: E402
from study_assistant.features.knowledge.service import KnowledgeService  # noqa: E402


class ProviderStatusError(Exception):
    """Provider SDK error carrying an HTTP status, like openai.RateLimitError."""

    def __init__(self, status_code: int, message: str = "provider error"):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code


# -- Storage fakes --

class FakeConversationStore:
    """In-memory ConversationStore with the same async interface."""

    def __init__(self):
        self.conversations: dict[str, Conversation] = {}
        self.messages: list[ChatMessage] = []
        self.recent_calls = 0
        self.gate: asyncio.Event | None = None
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def create_conversation(self, student_id, title):
        now = self._now()
        conversation = Conversation(
            id=str(uuid.uuid4()),
            student_id=student_id,
            title=title,
            last_message_at=now,
            created_at=now,
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def find_conversation(self, conversation_id, student_id=None):
        conversation = self.conversations.get(conversation_id)
        if conversation is None or (student_id and conversation.student_id != student_id):
            return None
        return conversation

    async def deactivate_other_conversations(self, student_id, keep_id):
        for cid, conversation in self.conversations.items():
            if conversation.student_id == student_id and cid != keep_id:
                self.conversations[cid] = conversation.model_copy(update={"is_active": False})

    async def record_exchange(self, conversation_id, message_delta=2):
        conversation = self.conversations[conversation_id]
        self.conversations[conversation_id] = conversation.model_copy(
            update={
                "message_count": conversation.message_count + message_delta,
                "last_message_at": self._now(),
            }
        )

    async def list_conversations(self, student_id, offset, limit):
        owned = [c for c in self.conversations.values() if c.student_id == student_id]
        owned.sort(key=lambda c: c.last_message_at, reverse=True)
        return owned[offset:offset + limit], len(owned)

    async def delete_conversation(self, conversation_id):
        self.conversations.pop(conversation_id, None)

    async def create_message(self, conversation_id, role, content, metadata=None):
        message = ChatMessage(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=metadata,
            created_at=self._now(),
        )
        self.messages.append(message)
        return message

    async def recent_messages(self, conversation_id, limit):
        self.recent_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        owned = [m for m in self.messages if m.conversation_id == conversation_id]
        return owned[-limit:]

    async def list_messages(self, conversation_id, offset, limit):
        owned = [m for m in self.messages if m.conversation_id == conversation_id]
        return owned[offset:offset + limit], len(owned)

    async def delete_messages(self, conversation_id):
        before = len(self.messages)
        self.messages = [m for m in self.messages if m.conversation_id != conversation_id]
        return before - len(self.messages)

    def messages_of(self, conversation_id) -> list[ChatMessage]:
        return [m for m in self.messages if m.conversation_id == conversation_id]


class FakeChunkRepository:
    """In-memory ChunkRepository."""

    def __init__(self, chunks: list[KnowledgeChunk] | None = None):
        self.chunks: list[KnowledgeChunk] = []
        for chunk in chunks or []:
            self.add(chunk)

    def add(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        stored = chunk.model_copy(update={"id": chunk.id or str(uuid.uuid4())})
        self.chunks.append(stored)
        return stored

    async def insert_many(self, chunks):
        for chunk in chunks:
            self.add(chunk)
        return len(chunks)

    async def find(self, course_id=None):
        return [c for c in self.chunks if course_id is None or c.course_id == course_id]

    async def delete_by_course(self, course_id):
        before = len(self.chunks)
        self.chunks = [c for c in self.chunks if c.course_id != course_id]
        return before - len(self.chunks)

    async def count(self):
        return len(self.chunks)

    async def distinct_course_ids(self):
        return {c.course_id for c in self.chunks}


# -- Provider fakes --

class FakeEmbeddings(Embeddings):
    """Deterministic embeddings: exact-text lookup, else a default vector."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default=None, fail_on=()):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0, 0.0]
        self.fail_on = set(fail_on)
        self.calls = 0

    def _vector(self, text: str) -> list[float]:
        self.calls += 1
        if text in self.fail_on:
            raise RuntimeError(f"embedding failed for {text!r}")
        return list(self.vectors.get(text, self.default))

    def embed_documents(self, texts):
        return [self._vector(t) for t in texts]

    def embed_query(self, text):
        return self._vector(text)

    async def aembed_query(self, text):
        return self._vector(text)


class ScriptedChatModel:
    """Chat model double that plays back one scripted outcome per call.

    Each script entry is either:
      - str: batch reply content (or a single streamed fragment)
      - list: streamed fragments; an Exception inside is raised at that point
      - Exception: raised before anything is produced
    """

    def __init__(self, *script, model_name: str = "fake-model"):
        self.script = list(script)
        self.model_name = model_name
        self.calls = 0
        self.seen_messages: list[list] = []

    def _next(self, messages):
        self.calls += 1
        self.seen_messages.append(list(messages))
        outcome = self.script.pop(0) if self.script else "Default reply."
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def ainvoke(self, messages):
        outcome = self._next(messages)
        content = "".join(outcome) if isinstance(outcome, list) else outcome
        return AIMessage(
            content=content,
            usage_metadata={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
            response_metadata={"model_name": self.model_name},
        )

    async def astream(self, messages):
        outcome = self._next(messages)
        fragments = outcome if isinstance(outcome, list) else [outcome]
        for fragment in fragments:
            if isinstance(fragment, Exception):
                raise fragment
            await asyncio.sleep(0)
            yield AIMessageChunk(content=fragment)


class FailingKnowledge:
    """Knowledge service whose search always blows up."""

    async def search_similar(self, *args, **kwargs):
        raise RuntimeError("vector store offline")


# -- Fixtures --

@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SUPABASE_URL="http://localhost:54321",
        SUPABASE_KEY="test-key",
        LLM_API_KEY="",
        GENERATION_MIN_INTERVAL_MS=0,
        GENERATION_MAX_RETRIES=2,
        GENERATION_BACKOFF_BASE_MS=0,
        GENERATION_BACKOFF_JITTER_MS=0,
        PLACEHOLDER_STREAM_DELAY_MS=0,
        CONTEXT_WINDOW_SIZE=20,
    )


@pytest.fixture
def store() -> FakeConversationStore:
    return FakeConversationStore()


@pytest.fixture
def chunk_repository() -> FakeChunkRepository:
    return FakeChunkRepository()


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
def knowledge(chunk_repository, embeddings, settings) -> KnowledgeService:
    return KnowledgeService(chunk_repository, embeddings=embeddings, settings=settings)


@pytest.fixture
def scheduler(settings) -> CallScheduler:
    return CallScheduler(max_concurrent=2, min_interval=0, max_pending=20)


@pytest.fixture
def chat_model() -> ScriptedChatModel:
    return ScriptedChatModel()


@pytest.fixture
def generation(settings, chat_model, scheduler) -> GenerationClient:
    return GenerationClient(settings=settings, llm=chat_model, scheduler=scheduler)


@pytest.fixture
def cache(store, settings) -> ContextCache:
    return ContextCache(store, window_size=settings.CONTEXT_WINDOW_SIZE)


@pytest.fixture
def chat_service(store, cache, generation, knowledge, settings) -> ChatService:
    return ChatService(store, cache, generation, knowledge, settings=settings)
