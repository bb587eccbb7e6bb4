"""
FastAPI dependency injection functions.

Services are built once at startup (see init_services) and kept on
app.state, so tests can swap them through app.dependency_overrides.
"""

import logging

from fastapi import FastAPI, Request

from study_assistant.config import get_settings
from study_assistant.core.database import get_supabase_client
from study_assistant.features.ai.client import GenerationClient
from study_assistant.features.chat.cache import ContextCache
from study_assistant.features.chat.service import ChatService
from study_assistant.features.chat.store import ConversationStore
from study_assistant.features.knowledge.repository import ChunkRepository
from study_assistant.features.knowledge.service import KnowledgeService

logger = logging.getLogger(__name__)


async def init_services(app: FastAPI) -> None:
    """Wire storage adapters, capability clients and services onto app.state."""
    settings = get_settings()
    db = await get_supabase_client()

    store = ConversationStore(db)
    knowledge = KnowledgeService(ChunkRepository(db), settings=settings)
    generation = GenerationClient(settings=settings)
    cache = ContextCache(
        store,
        window_size=settings.CONTEXT_WINDOW_SIZE,
        max_conversations=settings.CONTEXT_CACHE_MAX_CONVERSATIONS,
    )

    app.state.knowledge_service = knowledge
    app.state.generation_client = generation
    app.state.chat_service = ChatService(store, cache, generation, knowledge, settings=settings)
    logger.info("Services initialized")


def get_knowledge_service(request: Request) -> KnowledgeService:
    """Dependency: the shared KnowledgeService."""
    return request.app.state.knowledge_service


def get_chat_service(request: Request) -> ChatService:
    """Dependency: the shared ChatService."""
    return request.app.state.chat_service
