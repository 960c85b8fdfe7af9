"""
Domain model for stories, pages, image history and revisions.

These are plain dataclasses; persistence layers convert them to and from
JSON-compatible dicts with ``to_dict`` / ``from_dict``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return utcnow()


class StoryStatus(str, Enum):
    DRAFT = "draft"
    SETTING_EXPANSION = "setting_expansion"
    CHARACTERS_EXTRACTED = "characters_extracted"
    TEXT_APPROVED = "text_approved"
    GENERATING_IMAGES = "generating_images"
    COMPLETED = "completed"


# Statuses in which the page list must match total_pages
PAGED_STATUSES = frozenset({
    StoryStatus.TEXT_APPROVED,
    StoryStatus.GENERATING_IMAGES,
    StoryStatus.COMPLETED,
})

AGE_GROUPS = ("3-5", "6-8", "9-12")


@dataclass
class Character:
    name: str
    description: str
    image_url: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"name": self.name, "description": self.description}
        if self.image_url:
            data["image_url"] = self.image_url
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Character":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            image_url=data.get("image_url"),
        )


@dataclass
class ImageVersion:
    """One entry of a page's append-only image history."""
    url: str
    prompt: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    is_active: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    mode: str = "live"  # "live" or "offline" (fallback placeholder)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "prompt": self.prompt,
            "created_at": self.created_at.isoformat(),
            "is_active": self.is_active,
            "mode": self.mode,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ImageVersion":
        return cls(
            id=data.get("id") or uuid.uuid4().hex,
            url=data["url"],
            prompt=data.get("prompt"),
            created_at=_parse_ts(data.get("created_at")),
            is_active=bool(data.get("is_active", False)),
            mode=data.get("mode", "live"),
        )


@dataclass
class StoryPage:
    page_number: int
    text: str
    image_url: Optional[str] = None
    image_prompt: Optional[str] = None
    image_history: list[ImageVersion] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "page_number": self.page_number,
            "text": self.text,
            "image_url": self.image_url,
            "image_prompt": self.image_prompt,
            "image_history": [v.to_dict() for v in self.image_history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoryPage":
        return cls(
            page_number=int(data["page_number"]),
            text=data.get("text", ""),
            image_url=data.get("image_url"),
            image_prompt=data.get("image_prompt"),
            image_history=[
                ImageVersion.from_dict(v) for v in data.get("image_history") or []
            ],
        )


@dataclass
class Story:
    user_id: str
    title: str
    setting: str
    characters: str
    plot: str
    age_group: str
    total_pages: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    expanded_setting: Optional[str] = None
    extracted_characters: list[Character] = field(default_factory=list)
    pages: list[StoryPage] = field(default_factory=list)
    core_image_url: Optional[str] = None
    status: StoryStatus = StoryStatus.DRAFT
    is_bookmarked: bool = False
    current_revision: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def get_page(self, page_number: int) -> Optional[StoryPage]:
        for page in self.pages:
            if page.page_number == page_number:
                return page
        return None

    @property
    def setting_for_generation(self) -> str:
        return self.expanded_setting or self.setting

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "setting": self.setting,
            "expanded_setting": self.expanded_setting,
            "characters": self.characters,
            "extracted_characters": [c.to_dict() for c in self.extracted_characters],
            "plot": self.plot,
            "age_group": self.age_group,
            "total_pages": self.total_pages,
            "pages": [p.to_dict() for p in self.pages],
            "core_image_url": self.core_image_url,
            "status": self.status.value,
            "is_bookmarked": self.is_bookmarked,
            "current_revision": self.current_revision,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Story":
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            title=data["title"],
            setting=data["setting"],
            expanded_setting=data.get("expanded_setting"),
            characters=data["characters"],
            extracted_characters=[
                Character.from_dict(c) for c in data.get("extracted_characters") or []
            ],
            plot=data["plot"],
            age_group=data["age_group"],
            total_pages=int(data["total_pages"]),
            pages=[StoryPage.from_dict(p) for p in data.get("pages") or []],
            core_image_url=data.get("core_image_url"),
            status=StoryStatus(data.get("status", StoryStatus.DRAFT.value)),
            is_bookmarked=bool(data.get("is_bookmarked", False)),
            current_revision=int(data.get("current_revision", 1)),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
        )


@dataclass(frozen=True)
class StoryRevision:
    """Immutable snapshot of a story, keyed by (story_id, revision_number)."""
    story_id: str
    revision_number: int
    step_completed: str
    status: StoryStatus
    snapshot: dict  # Story.to_dict() minus identity/timestamps
    parent_revision: Optional[int] = None
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "story_id": self.story_id,
            "revision_number": self.revision_number,
            "step_completed": self.step_completed,
            "status": self.status.value,
            "snapshot": self.snapshot,
            "parent_revision": self.parent_revision,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }
