"""
Study Assistant - FastAPI Application Entry Point.

Feature-based modular architecture:
  Each feature in study_assistant/features/ has its own router, service and schemas.
  knowledge → course material index (chunking, embeddings, similarity search)
  ai        → resilient generation client (scheduler, retry, placeholder mode)
  chat      → conversation orchestration (persistence, context cache, SSE)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware

from study_assistant.config import get_settings
from study_assistant.core.dependencies import get_chat_service, init_services
from study_assistant.core.exceptions import AppBaseError, app_error_to_http
from study_assistant.features.chat.service import ChatService

# ── Feature Routers ──────────────────────────────────────
from study_assistant.features.chat.router import router as chat_router
from study_assistant.features.knowledge.router import router as knowledge_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup & shutdown."""
    settings = get_settings()
    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} starting...")
    logger.info(f"LLM Provider: {settings.LLM_PROVIDER} ({settings.LLM_MODEL})")
    logger.info(f"Embeddings: {settings.EMBEDDING_PROVIDER} ({settings.EMBEDDING_MODEL})")
    if not settings.LLM_API_KEY:
        logger.warning("Running in degraded mode: placeholder replies, no knowledge search")
    await init_services(app)
    yield
    logger.info("Shutting down...")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Conversational study assistant grounded in course material",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error Handling ───────────────────────────────────
    @app.exception_handler(AppBaseError)
    async def app_error_handler(request: Request, error: AppBaseError):
        if error.status_code >= 500:
            logger.error(f"{type(error).__name__} on {request.url.path}: {error.message} ({error.detail})")
        return await http_exception_handler(request, app_error_to_http(error))

    # ── Register Feature Routers ─────────────────────────
    app.include_router(knowledge_router, prefix="/api/knowledge", tags=["Knowledge"])
    app.include_router(chat_router, prefix="/api/chat", tags=["Chat"])

    # ── Health Check ─────────────────────────────────────
    @app.get("/health", tags=["System"])
    async def health_check(chat: ChatService = Depends(get_chat_service)):
        scheduler = chat.generation.scheduler
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "llm_configured": bool(settings.LLM_API_KEY),
            "generation_queue": {"running": scheduler.running, "pending": scheduler.pending},
        }

    return app


app = create_app()
