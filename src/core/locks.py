"""
In-process concurrency guards for generation jobs.

JobRegistry gives each story a single job slot: claiming a held slot fails
immediately with JobInProgress instead of waiting. KeyedLocks serializes
work per key (e.g. (story_id, page_number)) and waits.

Both are per-process; running several workers against one database needs
sticky routing by story id.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

from src.core.errors import JobInProgress

logger = logging.getLogger(__name__)


class JobSlot:
    """A claimed job slot. Release exactly once."""

    def __init__(self, registry: "JobRegistry", story_id: str):
        self._registry = registry
        self.story_id = story_id
        self.released = False

    def release(self) -> None:
        if not self.released:
            self.released = True
            self._registry._release(self.story_id)

    async def __aenter__(self) -> "JobSlot":
        return self

    async def __aexit__(self, *_exc) -> None:
        self.release()


class JobRegistry:
    def __init__(self):
        self._active: set[str] = set()

    def is_active(self, story_id: str) -> bool:
        return story_id in self._active

    def claim(self, story_id: str) -> JobSlot:
        if story_id in self._active:
            raise JobInProgress(story_id)
        self._active.add(story_id)
        logger.debug(f"[{story_id}] Job slot claimed")
        return JobSlot(self, story_id)

    def _release(self, story_id: str) -> None:
        self._active.discard(story_id)
        logger.debug(f"[{story_id}] Job slot released")


class KeyedLocks:
    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]
