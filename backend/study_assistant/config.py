"""
Application configuration using Pydantic Settings.
All config is loaded from environment variables / .env file.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "study-assistant"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"  # comma-separated

    # ── Supabase ─────────────────────────────────────────
    SUPABASE_URL: str
    SUPABASE_KEY: str

    # ── LLM (Provider-Agnostic) ──────────────────────────
    LLM_PROVIDER: str = "openai"  # openai | gemini | groq
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_API_KEY: str = ""  # empty = placeholder replies
    LLM_TEMPERATURE: float = 0.7

    # ── Embedding ────────────────────────────────────────
    EMBEDDING_PROVIDER: str = "openai"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = 1536

    # ── Generation scheduler & retry ─────────────────────
    GENERATION_MAX_CONCURRENT: int = 2
    GENERATION_MIN_INTERVAL_MS: int = 200  # spacing between call starts
    GENERATION_MAX_PENDING: int = 20  # queued calls beyond this are rejected
    GENERATION_MAX_RETRIES: int = 5  # retries on provider rate limit (429)
    GENERATION_BACKOFF_BASE_MS: int = 250
    GENERATION_BACKOFF_JITTER_MS: int = 250
    PLACEHOLDER_STREAM_DELAY_MS: int = 50

    # ── Knowledge (RAG) ──────────────────────────────────
    KNOWLEDGE_CHUNK_SIZE: int = 1000  # characters
    KNOWLEDGE_EMBED_BATCH_SIZE: int = 5
    RAG_SEARCH_LIMIT: int = 3
    RAG_MIN_SCORE: float = 0.5
    MAX_UPLOAD_SIZE_MB: int = 10

    # ── Chat ─────────────────────────────────────────────
    CONTEXT_WINDOW_SIZE: int = 20  # messages kept per conversation
    CONTEXT_CACHE_MAX_CONVERSATIONS: int = 1000
    DEFAULT_CONVERSATION_TITLE: str = "New conversation"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (singleton)."""
    return Settings()
