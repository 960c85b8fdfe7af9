"""
Image history and story revision operations.

Page image history is append-only: a new image is appended as the active
version and the previous active entry is deactivated, never removed.
Story revisions are immutable snapshots identified by
(story_id, revision_number); parents are plain integer references.
"""

import copy
from typing import Iterable, Optional

from src.core.errors import PageCountMismatch, RevisionNotFound, VersionNotFound
from src.core.models import (
    PAGED_STATUSES,
    Character,
    ImageVersion,
    Story,
    StoryPage,
    StoryRevision,
    utcnow,
)
from src.core.workflow import require_step_reached, status_for_step

# Story fields captured in a revision snapshot
SNAPSHOT_FIELDS = (
    "title",
    "setting",
    "expanded_setting",
    "characters",
    "extracted_characters",
    "plot",
    "age_group",
    "total_pages",
    "pages",
    "core_image_url",
    "status",
)


# ========================
# PAGE IMAGE HISTORY
# ========================


def active_version(page: StoryPage) -> Optional[ImageVersion]:
    for version in page.image_history:
        if version.is_active:
            return version
    return None


def find_version(page: StoryPage, version_id: str) -> Optional[ImageVersion]:
    for version in page.image_history:
        if version.id == version_id:
            return version
    return None


def _activate(page: StoryPage, target: ImageVersion) -> None:
    for version in page.image_history:
        version.is_active = version is target
    page.image_url = target.url
    page.image_prompt = target.prompt


def append_image_version(
    page: StoryPage,
    url: str,
    prompt: Optional[str] = None,
    mode: str = "live",
) -> ImageVersion:
    """Append a new active image version and point the page at it."""
    # Pages created before history tracking carry only the live url
    if page.image_url and not page.image_history:
        page.image_history.append(
            ImageVersion(url=page.image_url, prompt=page.image_prompt, is_active=True)
        )

    version = ImageVersion(url=url, prompt=prompt, created_at=utcnow(), mode=mode)
    page.image_history.append(version)
    _activate(page, version)
    return version


def restore_image_version(page: StoryPage, version_id: str) -> ImageVersion:
    """Make a historical version the active one. Raises VersionNotFound."""
    version = find_version(page, version_id)
    if version is None:
        raise VersionNotFound(
            f"Image version {version_id} not found on page {page.page_number}"
        )
    _activate(page, version)
    return version


def history_newest_first(page: StoryPage) -> list[ImageVersion]:
    return sorted(page.image_history, key=lambda v: v.created_at, reverse=True)


# ========================
# STORY REVISIONS
# ========================


def next_revision_number(revisions: Iterable[StoryRevision]) -> int:
    return max((r.revision_number for r in revisions), default=0) + 1


def snapshot_story(
    story: Story,
    *,
    revision_number: int,
    step: str,
    parent_revision: Optional[int] = None,
    description: Optional[str] = None,
) -> StoryRevision:
    """Build an immutable revision from the story's current state.

    ``step`` may not be later than the story's status, so restoring the
    revision never lands on a status without its content.
    """
    require_step_reached(story.status, step)
    data = story.to_dict()
    snapshot = copy.deepcopy({name: data[name] for name in SNAPSHOT_FIELDS})
    return StoryRevision(
        story_id=story.id,
        revision_number=revision_number,
        step_completed=step,
        status=story.status,
        snapshot=snapshot,
        parent_revision=parent_revision,
        description=description,
    )


def apply_revision(story: Story, revision: StoryRevision) -> None:
    """Load a revision's snapshot into the story.

    The status is reset to the one mapped from the revision's step marker.
    """
    if revision.story_id != story.id:
        raise RevisionNotFound(story.id, revision.revision_number)

    target_status = status_for_step(revision.step_completed)
    snapshot = copy.deepcopy(revision.snapshot)
    pages = [StoryPage.from_dict(p) for p in snapshot.get("pages") or []]

    if target_status in PAGED_STATUSES and len(pages) != story.total_pages:
        raise PageCountMismatch(story.total_pages, len(pages), stage="restore_revision")

    story.title = snapshot["title"]
    story.setting = snapshot["setting"]
    story.expanded_setting = snapshot.get("expanded_setting")
    story.characters = snapshot["characters"]
    story.extracted_characters = [
        Character.from_dict(c) for c in snapshot.get("extracted_characters") or []
    ]
    story.plot = snapshot["plot"]
    story.age_group = snapshot["age_group"]
    story.pages = pages
    story.core_image_url = snapshot.get("core_image_url")
    story.status = target_status
    story.current_revision = revision.revision_number
