"""
Story persistence behind one interface.

InMemoryStoryStore backs local development and tests; SqlStoryStore backs
production through the repository functions. Both make ``update_story`` an
atomic read-modify-write, so concurrent writers to different parts of a
story (a stage commit and a page image append) merge instead of
overwriting each other.
"""

import asyncio
import copy
import logging
import uuid
from typing import Callable, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.errors import RevisionNotFound, StoryNotFound
from src.core.models import Story, StoryRevision, utcnow
from src.db import repository

logger = logging.getLogger(__name__)

# Receives the story and the next revision number; returns the revision to insert
RevisionFactory = Callable[[Story, int], StoryRevision]


class StoryStore(Protocol):
    async def create_story(self, story: Story) -> Story: ...

    async def get_story(self, story_id: str) -> Optional[Story]: ...

    async def list_stories(self, user_id: str) -> list[Story]: ...

    async def update_story(self, story_id: str, mutate: Callable[[Story], None]) -> Story: ...

    async def create_revision(self, story_id: str, factory: RevisionFactory) -> StoryRevision: ...

    async def get_revision(self, story_id: str, revision_number: int) -> Optional[StoryRevision]: ...

    async def list_revisions(self, story_id: str) -> list[StoryRevision]: ...


async def require_story(store: StoryStore, story_id: str) -> Story:
    story = await store.get_story(story_id)
    if story is None:
        raise StoryNotFound(story_id)
    return story


async def require_revision(store: StoryStore, story_id: str, revision_number: int) -> StoryRevision:
    revision = await store.get_revision(story_id, revision_number)
    if revision is None:
        raise RevisionNotFound(story_id, revision_number)
    return revision


class InMemoryStoryStore:
    """Process-local store. Returned objects are copies."""

    def __init__(self):
        self._stories: dict[str, Story] = {}
        self._revisions: dict[str, list[StoryRevision]] = {}
        self._lock = asyncio.Lock()

    async def create_story(self, story: Story) -> Story:
        async with self._lock:
            self._stories[story.id] = copy.deepcopy(story)
            self._revisions.setdefault(story.id, [])
        return copy.deepcopy(story)

    async def get_story(self, story_id: str) -> Optional[Story]:
        story = self._stories.get(story_id)
        return copy.deepcopy(story) if story else None

    async def list_stories(self, user_id: str) -> list[Story]:
        stories = [s for s in self._stories.values() if s.user_id == user_id]
        stories.sort(key=lambda s: s.created_at, reverse=True)
        return copy.deepcopy(stories)

    async def update_story(self, story_id: str, mutate: Callable[[Story], None]) -> Story:
        async with self._lock:
            current = self._stories.get(story_id)
            if current is None:
                raise StoryNotFound(story_id)
            story = copy.deepcopy(current)
            mutate(story)
            story.updated_at = utcnow()
            self._stories[story_id] = story
            return copy.deepcopy(story)

    async def create_revision(self, story_id: str, factory: RevisionFactory) -> StoryRevision:
        async with self._lock:
            current = self._stories.get(story_id)
            if current is None:
                raise StoryNotFound(story_id)
            revisions = self._revisions.setdefault(story_id, [])
            number = max((r.revision_number for r in revisions), default=0) + 1
            revision = factory(copy.deepcopy(current), number)
            revisions.append(revision)
            current.current_revision = revision.revision_number
            current.updated_at = utcnow()
            return revision

    async def get_revision(self, story_id: str, revision_number: int) -> Optional[StoryRevision]:
        for revision in self._revisions.get(story_id, []):
            if revision.revision_number == revision_number:
                return revision
        return None

    async def list_revisions(self, story_id: str) -> list[StoryRevision]:
        return sorted(self._revisions.get(story_id, []), key=lambda r: r.revision_number, reverse=True)


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class SqlStoryStore:
    """PostgreSQL store. Each call runs in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_story(self, story: Story) -> Story:
        async with self._session_factory() as session:
            record = await repository.create_story(session, story)
            return repository.record_to_story(record)

    async def get_story(self, story_id: str) -> Optional[Story]:
        key = _as_uuid(story_id)
        if key is None:
            return None
        async with self._session_factory() as session:
            record = await repository.get_story(session, key)
            return repository.record_to_story(record) if record else None

    async def list_stories(self, user_id: str) -> list[Story]:
        key = _as_uuid(user_id)
        if key is None:
            return []
        async with self._session_factory() as session:
            records = await repository.list_stories_for_user(session, key)
            return [repository.record_to_story(r) for r in records]

    async def update_story(self, story_id: str, mutate: Callable[[Story], None]) -> Story:
        key = _as_uuid(story_id)
        if key is None:
            raise StoryNotFound(story_id)
        async with self._session_factory() as session:
            record = await repository.get_story_for_update(session, key)
            if record is None:
                raise StoryNotFound(story_id)
            story = repository.record_to_story(record)
            mutate(story)
            story.updated_at = utcnow()
            repository.apply_story(record, story)
            await session.commit()
            return story

    async def create_revision(self, story_id: str, factory: RevisionFactory) -> StoryRevision:
        key = _as_uuid(story_id)
        if key is None:
            raise StoryNotFound(story_id)
        async with self._session_factory() as session:
            # The row lock also serializes revision numbering per story
            record = await repository.get_story_for_update(session, key)
            if record is None:
                raise StoryNotFound(story_id)
            number = await repository.get_max_revision_number(session, key) + 1
            revision = factory(repository.record_to_story(record), number)
            await repository.add_revision(session, revision)
            record.current_revision = revision.revision_number
            record.updated_at = utcnow()
            await session.commit()
            return revision

    async def get_revision(self, story_id: str, revision_number: int) -> Optional[StoryRevision]:
        key = _as_uuid(story_id)
        if key is None:
            return None
        async with self._session_factory() as session:
            record = await repository.get_revision(session, key, revision_number)
            return repository.record_to_revision(record) if record else None

    async def list_revisions(self, story_id: str) -> list[StoryRevision]:
        key = _as_uuid(story_id)
        if key is None:
            return []
        async with self._session_factory() as session:
            records = await repository.list_revisions(session, key)
            return [repository.record_to_revision(r) for r in records]


_store: Optional[StoryStore] = None


def get_story_store() -> StoryStore:
    """Return the module-level store, defaulting to an in-memory one."""
    global _store
    if _store is None:
        _store = InMemoryStoryStore()
    return _store


def set_story_store(store: Optional[StoryStore]) -> None:
    global _store
    _store = store
