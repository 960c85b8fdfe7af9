"""
Repository layer: async CRUD operations for stories and revisions.

Functions take an open session. Writes that must be atomic with a row lock
(``get_story_for_update``) leave the commit to the caller.
"""

import uuid
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.models import Story, StoryRevision, StoryStatus
from src.db.models import StoryRecord, StoryRevisionRecord


# ========================
# CONVERSION
# ========================


def record_to_story(record: StoryRecord) -> Story:
    return Story.from_dict({
        "id": str(record.id),
        "user_id": str(record.user_id),
        "title": record.title,
        "setting": record.setting,
        "expanded_setting": record.expanded_setting,
        "characters": record.characters,
        "extracted_characters": record.extracted_characters,
        "plot": record.plot,
        "age_group": record.age_group,
        "total_pages": record.total_pages,
        "pages": record.pages,
        "core_image_url": record.core_image_url,
        "status": record.status,
        "is_bookmarked": record.is_bookmarked,
        "current_revision": record.current_revision,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    })


def apply_story(record: StoryRecord, story: Story) -> None:
    """Copy the mutable story fields onto a loaded row."""
    data = story.to_dict()
    record.title = story.title
    record.setting = story.setting
    record.expanded_setting = story.expanded_setting
    record.characters = story.characters
    record.extracted_characters = data["extracted_characters"]
    record.plot = story.plot
    record.age_group = story.age_group
    record.pages = data["pages"]
    record.core_image_url = story.core_image_url
    record.status = story.status.value
    record.is_bookmarked = story.is_bookmarked
    record.current_revision = story.current_revision
    record.updated_at = story.updated_at


def record_to_revision(record: StoryRevisionRecord) -> StoryRevision:
    return StoryRevision(
        story_id=str(record.story_id),
        revision_number=record.revision_number,
        step_completed=record.step_completed,
        status=StoryStatus(record.status),
        snapshot=record.snapshot,
        parent_revision=record.parent_revision,
        description=record.description,
        created_at=record.created_at,
    )


# ========================
# STORIES
# ========================


async def create_story(session: AsyncSession, story: Story) -> StoryRecord:
    record = StoryRecord(
        id=uuid.UUID(story.id),
        user_id=uuid.UUID(story.user_id),
        total_pages=story.total_pages,
        created_at=story.created_at,
    )
    apply_story(record, story)
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def get_story(
    session: AsyncSession, story_id: uuid.UUID
) -> Optional[StoryRecord]:
    result = await session.execute(select(StoryRecord).where(StoryRecord.id == story_id))
    return result.scalar_one_or_none()


async def get_story_for_update(
    session: AsyncSession, story_id: uuid.UUID
) -> Optional[StoryRecord]:
    """Load a story row with ``SELECT ... FOR UPDATE``. Caller commits."""
    result = await session.execute(
        select(StoryRecord).where(StoryRecord.id == story_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def list_stories_for_user(
    session: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[StoryRecord]:
    result = await session.execute(
        select(StoryRecord)
        .where(StoryRecord.user_id == user_id)
        .order_by(StoryRecord.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


# ========================
# REVISIONS
# ========================


async def add_revision(session: AsyncSession, revision: StoryRevision) -> StoryRevisionRecord:
    """Stage a revision row in the current transaction. Caller commits."""
    record = StoryRevisionRecord(
        story_id=uuid.UUID(revision.story_id),
        revision_number=revision.revision_number,
        step_completed=revision.step_completed,
        status=revision.status.value,
        snapshot=revision.snapshot,
        parent_revision=revision.parent_revision,
        description=revision.description,
        created_at=revision.created_at,
    )
    session.add(record)
    await session.flush()
    return record


async def get_max_revision_number(session: AsyncSession, story_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.max(StoryRevisionRecord.revision_number))
        .where(StoryRevisionRecord.story_id == story_id)
    )
    return result.scalar_one_or_none() or 0


async def get_revision(
    session: AsyncSession, story_id: uuid.UUID, revision_number: int
) -> Optional[StoryRevisionRecord]:
    result = await session.execute(
        select(StoryRevisionRecord).where(
            StoryRevisionRecord.story_id == story_id,
            StoryRevisionRecord.revision_number == revision_number,
        )
    )
    return result.scalar_one_or_none()


async def list_revisions(
    session: AsyncSession, story_id: uuid.UUID
) -> list[StoryRevisionRecord]:
    result = await session.execute(
        select(StoryRevisionRecord)
        .where(StoryRevisionRecord.story_id == story_id)
        .order_by(StoryRevisionRecord.revision_number.desc())
    )
    return list(result.scalars().all())
