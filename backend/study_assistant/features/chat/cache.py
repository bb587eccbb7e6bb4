"""
Chat feature: Per-conversation context window cache.

Each entry is an immutable tuple of ChatTurns owned by exactly one
conversation id. Every write stores a new tuple; callers always receive
a fresh list copy, so no two keys (and no caller) ever share a container.
The cache is a disposable projection of persisted messages: a miss
rebuilds the window from storage, and concurrent misses for the same
conversation share a single rebuild.
"""

import asyncio
import logging
from functools import partial
from typing import Iterable

from cachetools import LRUCache

from study_assistant.features.ai.schemas import ChatTurn
from study_assistant.features.chat.store import ConversationStore

logger = logging.getLogger(__name__)

Window = tuple[ChatTurn, ...]


class ContextCache:
    """Bounded, single-flight history cache keyed by conversation id."""

    def __init__(self, store: ConversationStore, window_size: int = 20, max_conversations: int = 1000):
        self.store = store
        self.window_size = window_size
        self._entries: LRUCache[str, Window] = LRUCache(maxsize=max_conversations)
        self._loading: dict[str, asyncio.Task] = {}

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._entries

    async def get(self, conversation_id: str) -> list[ChatTurn]:
        """Cached window, rebuilding it from storage on a miss."""
        window = self._entries.get(conversation_id)
        if window is not None:
            return list(window)

        task = self._loading.get(conversation_id)
        if task is None:
            task = asyncio.ensure_future(self._load(conversation_id))
            self._loading[conversation_id] = task
            task.add_done_callback(partial(self._forget_load, conversation_id))

        # shield: one waiter being cancelled must not abort the shared rebuild
        return list(await asyncio.shield(task))

    def set(self, conversation_id: str, turns: Iterable[ChatTurn]) -> None:
        """Replace the entry wholesale with a newly built window."""
        self._loading.pop(conversation_id, None)
        self._entries[conversation_id] = self._bounded(tuple(turns))

    def append(self, conversation_id: str, *turns: ChatTurn) -> None:
        """Extend an existing entry (no-op on a miss; the next get() rebuilds)."""
        window = self._entries.get(conversation_id)
        if window is not None:
            self._entries[conversation_id] = self._bounded(window + turns)

    def invalidate(self, conversation_id: str) -> None:
        self._loading.pop(conversation_id, None)
        self._entries.pop(conversation_id, None)

    async def _load(self, conversation_id: str) -> Window:
        messages = await self.store.recent_messages(conversation_id, self.window_size)
        window = tuple(ChatTurn(role=m.role, content=m.content, message_id=m.id) for m in messages)

        # A set()/invalidate() during the rebuild wins over the stale result
        if self._loading.get(conversation_id) is asyncio.current_task():
            self._entries[conversation_id] = window
            logger.debug(f"Context cache rebuilt for {conversation_id} ({len(window)} turns)")
        return window

    def _forget_load(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._loading.get(conversation_id) is task:
            del self._loading[conversation_id]

    def _bounded(self, window: Window) -> Window:
        return window[-self.window_size:] if len(window) > self.window_size else window
