"""
Database connections: Supabase client setup.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from supabase import AsyncClient, acreate_client

from study_assistant.config import get_settings
from study_assistant.core.exceptions import StorageError

logger = logging.getLogger(__name__)

# Singleton async client (lazy init, created inside the running event loop)
_supabase_client: AsyncClient | None = None

# PostgREST caps rows per request; linear scans page through in steps of this size
PAGE_SIZE = 1000


async def get_supabase_client() -> AsyncClient:
    """Get the async Supabase client (singleton)."""
    global _supabase_client
    if _supabase_client is None:
        settings = get_settings()
        _supabase_client = await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    return _supabase_client


@asynccontextmanager
async def storage_errors(action: str) -> AsyncIterator[None]:
    """Wrap any client/network failure from the document store as StorageError."""
    try:
        yield
    except StorageError:
        raise
    except Exception as e:
        logger.error(f"Storage operation '{action}' failed: {e}")
        raise StorageError(action, str(e)) from e
