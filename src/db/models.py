"""
SQLAlchemy async ORM models for story persistence.

Pages, extracted characters and page image history are embedded as JSONB
on the story row, so a stage commit is a single-row write.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


STATUS_VALUES = (
    "'draft', 'setting_expansion', 'characters_extracted', "
    "'text_approved', 'generating_images', 'completed'"
)
STEP_VALUES = "'details', 'setting', 'characters', 'review', 'images', 'complete'"


class StoryRecord(Base):
    __tablename__ = "stories"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    setting: Mapped[str] = mapped_column(Text, nullable=False)
    expanded_setting: Mapped[str | None] = mapped_column(Text, nullable=True)
    characters: Mapped[str] = mapped_column(Text, nullable=False)
    extracted_characters: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    plot: Mapped[str] = mapped_column(Text, nullable=False)
    age_group: Mapped[str] = mapped_column(String(8), nullable=False)
    total_pages: Mapped[int] = mapped_column(Integer, nullable=False)
    pages: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    core_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    is_bookmarked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    current_revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({STATUS_VALUES})", name="ck_stories_status"),
        CheckConstraint("age_group IN ('3-5', '6-8', '9-12')", name="ck_stories_age_group"),
        CheckConstraint("total_pages BETWEEN 5 AND 50", name="ck_stories_total_pages"),
        Index("idx_stories_user_id_created_at", "user_id", "created_at"),
    )


class StoryRevisionRecord(Base):
    """Append-only story snapshot. Rows are never updated."""

    __tablename__ = "story_revisions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    story_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("stories.id", ondelete="CASCADE"),
        nullable=False,
    )
    revision_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_completed: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSONB, nullable=False)
    parent_revision: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("story_id", "revision_number", name="uq_story_revisions_number"),
        CheckConstraint(f"step_completed IN ({STEP_VALUES})", name="ck_story_revisions_step"),
        CheckConstraint(f"status IN ({STATUS_VALUES})", name="ck_story_revisions_status"),
    )
