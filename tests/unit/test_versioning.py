"""Unit tests for src/core/versioning.py: image history and revisions."""

from datetime import timedelta

import pytest

from src.core.errors import (
    InvalidTransition,
    PageCountMismatch,
    RevisionNotFound,
    ValidationError,
    VersionNotFound,
)
from src.core.models import StoryPage, StoryStatus
from src.core.versioning import (
    active_version,
    append_image_version,
    apply_revision,
    history_newest_first,
    next_revision_number,
    restore_image_version,
    snapshot_story,
)


def _page() -> StoryPage:
    return StoryPage(page_number=1, text="Luna hops along the windy harbor path.")


class TestImageHistory:
    def test_append_activates_new_version(self):
        page = _page()
        first = append_image_version(page, "https://img/1.png", "prompt one")
        second = append_image_version(page, "https://img/2.png", "prompt two", mode="offline")

        assert len(page.image_history) == 2
        assert not first.is_active
        assert second.is_active
        assert second.mode == "offline"
        assert page.image_url == "https://img/2.png"
        assert page.image_prompt == "prompt two"

    def test_single_active_entry(self):
        page = _page()
        for n in range(4):
            append_image_version(page, f"https://img/{n}.png")
        assert sum(v.is_active for v in page.image_history) == 1
        assert active_version(page).url == "https://img/3.png"

    def test_legacy_live_image_is_kept(self):
        page = _page()
        page.image_url = "https://img/legacy.png"
        page.image_prompt = "legacy"
        append_image_version(page, "https://img/new.png")
        assert [v.url for v in page.image_history] == ["https://img/legacy.png", "https://img/new.png"]
        assert not page.image_history[0].is_active

    def test_restore_swaps_active_and_live_fields(self):
        page = _page()
        first = append_image_version(page, "https://img/1.png", "prompt one")
        append_image_version(page, "https://img/2.png", "prompt two")

        restored = restore_image_version(page, first.id)

        assert restored is first
        assert first.is_active
        assert sum(v.is_active for v in page.image_history) == 1
        assert page.image_url == "https://img/1.png"
        assert page.image_prompt == "prompt one"
        assert len(page.image_history) == 2

    def test_restore_unknown_version(self):
        page = _page()
        append_image_version(page, "https://img/1.png")
        with pytest.raises(VersionNotFound):
            restore_image_version(page, "missing")

    def test_newest_first(self):
        page = _page()
        old = append_image_version(page, "https://img/1.png")
        new = append_image_version(page, "https://img/2.png")
        old.created_at = new.created_at - timedelta(minutes=5)
        assert history_newest_first(page) == [new, old]


class TestRevisions:
    def test_next_revision_number(self, make_story):
        assert next_revision_number([]) == 1
        story = make_story()
        revisions = [snapshot_story(story, revision_number=n, step="review") for n in (1, 4, 2)]
        assert next_revision_number(revisions) == 5

    def test_snapshot_is_a_copy(self, make_story):
        story = make_story()
        revision = snapshot_story(story, revision_number=1, step="review", description="first")
        story.pages[0].text = "changed"
        assert revision.snapshot["pages"][0]["text"] != "changed"
        assert revision.status == StoryStatus.TEXT_APPROVED
        assert revision.parent_revision is None

    def test_snapshot_rejects_unknown_step(self, make_story):
        with pytest.raises(ValidationError):
            snapshot_story(make_story(), revision_number=1, step="publish")

    def test_apply_resets_status_from_step(self, make_story):
        story = make_story(status=StoryStatus.COMPLETED, with_images=True)
        revision = snapshot_story(story, revision_number=3, step="review")
        story.title = "Something else"
        story.status = StoryStatus.COMPLETED

        apply_revision(story, revision)

        assert story.title == "Luna's Lantern"
        assert story.status == StoryStatus.TEXT_APPROVED
        assert story.current_revision == 3
        assert story.pages[0].image_history[0].url.endswith("page-1.png")

    def test_snapshot_rejects_unreached_step(self, make_story):
        with pytest.raises(InvalidTransition):
            snapshot_story(make_story(status=StoryStatus.CHARACTERS_EXTRACTED), revision_number=1, step="review")

    def test_apply_checks_page_count(self, make_story):
        revision = snapshot_story(make_story(), revision_number=1, step="review")
        target = make_story(total_pages=6)
        target.id = revision.story_id
        with pytest.raises(PageCountMismatch):
            apply_revision(target, revision)

    def test_apply_other_story(self, make_story):
        revision = snapshot_story(make_story(), revision_number=1, step="review")
        with pytest.raises(RevisionNotFound):
            apply_revision(make_story(), revision)
