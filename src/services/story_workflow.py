"""
Story workflow façade.

Entry point for client actions: validates the requested transition and its
payload before any provider call, then hands provider-backed stages to the
GenerationOrchestrator. Plain field edits (title, bookmark, step edits) are
applied here directly.
"""

import copy
import logging
from typing import Any, Optional

from src.core.errors import InvalidTransition, StoryNotFound, ValidationError
from src.core.models import Story, StoryRevision
from src.core.workflow import (
    MIN_TITLE_LENGTH,
    WorkflowEvent,
    check_page_count,
    clear_after_step,
    coerce_event,
    require_step_reached,
    resolve_transition,
    status_for_step,
    validate_characters,
    validate_expanded_setting,
    validate_page_texts,
    validate_story_details,
    validate_step_updates,
)
from src.services.orchestrator import GenerationOrchestrator, ImageGenerationJob, get_orchestrator
from src.services.story_store import require_story

logger = logging.getLogger(__name__)


class StoryWorkflow:
    def __init__(self, orchestrator: Optional[GenerationOrchestrator] = None):
        self.orchestrator = orchestrator or get_orchestrator()

    @property
    def store(self):
        return self.orchestrator.store

    async def create_story(self, user_id: str, payload: dict) -> Story:
        details = validate_story_details(payload)
        story = await self.store.create_story(Story(user_id=str(user_id), **details))
        logger.info(f"[{story.id}] Story created ({story.total_pages} pages, ages {story.age_group})")
        return story

    async def get_story_for_user(self, story_id: str, user_id: str) -> Story:
        """Load a story owned by ``user_id``. Other users' stories are not found."""
        story = await self.store.get_story(story_id)
        if story is None or story.user_id != str(user_id):
            raise StoryNotFound(story_id)
        return story

    async def list_stories(self, user_id: str) -> list[Story]:
        return await self.store.list_stories(str(user_id))

    async def request_transition(self, story_id: str, event: Any, payload: Optional[dict] = None) -> Story:
        """
        Apply a client event to a story.

        Raises:
            InvalidTransition: the current status does not accept the event
            ValidationError: the payload fails the stage's content rules
            JobInProgress: another stage job holds the story
            GenerationFailed: the provider stage failed; state was restored
        """
        event = coerce_event(event)
        payload = payload or {}
        story = await require_story(self.store, story_id)
        resolve_transition(story.status, event)

        if event == WorkflowEvent.APPROVE_SETTING:
            expanded_setting = validate_expanded_setting(payload)
            return await self.orchestrator.approve_setting(story_id, expanded_setting)

        if event == WorkflowEvent.EXTRACT_CHARACTERS:
            return await self.orchestrator.extract_characters(story_id)

        if event == WorkflowEvent.APPROVE_CHARACTERS:
            characters = validate_characters(payload.get("characters"))
            return await self.orchestrator.approve_characters(story_id, characters)

        if event == WorkflowEvent.APPROVE_TEXT:
            pages = validate_page_texts(payload.get("pages"), story.total_pages)
            return await self.approve_text(story_id, pages)

        if event == WorkflowEvent.GENERATE_IMAGES:
            job = await self.start_image_generation(story_id)
            return await job.run()

        # images_complete is only emitted by the image stage itself
        raise InvalidTransition(story.status.value, event.value)

    async def approve_text(self, story_id: str, pages: list[tuple[int, str]]) -> Story:
        """Replace page text with the user's edits. Page images are kept."""
        texts = dict(pages)

        def apply(story: Story) -> None:
            story.status = resolve_transition(story.status, WorkflowEvent.APPROVE_TEXT)
            for page in story.pages:
                page.text = texts[page.page_number]

        story = await self.store.update_story(story_id, apply)
        logger.info(f"[{story_id}] Story text approved")
        return story

    async def start_image_generation(self, story_id: str) -> ImageGenerationJob:
        return await self.orchestrator.start_image_generation(story_id)

    async def update_title(self, story_id: str, title: str) -> Story:
        title = (title or "").strip()
        if len(title) < MIN_TITLE_LENGTH:
            raise ValidationError({"title": f"Title must be at least {MIN_TITLE_LENGTH} characters"})

        def apply(story: Story) -> None:
            story.title = title

        return await self.store.update_story(story_id, apply)

    async def toggle_bookmark(self, story_id: str) -> Story:
        def apply(story: Story) -> None:
            story.is_bookmarked = not story.is_bookmarked

        return await self.store.update_story(story_id, apply)

    async def save_step(
        self,
        story_id: str,
        step: str,
        updates: Optional[dict] = None,
        clear_future_steps: bool = False,
    ) -> tuple[Story, Optional[StoryRevision]]:
        """
        Edit the inputs of a workflow step.

        With ``clear_future_steps`` the current story is first saved as a
        revision, then the data of later steps is cleared and the status is
        reset to the one mapped from ``step``, which the story must already
        have reached. Otherwise only the edited fields change.
        """
        status_for_step(step)
        changes = validate_step_updates(updates)

        def apply_changes(story: Story) -> None:
            for key, value in changes.items():
                setattr(story, key, value)

        if not clear_future_steps:
            return await self.store.update_story(story_id, apply_changes), None

        def edit(story: Story) -> None:
            target_status = require_step_reached(story.status, step)
            apply_changes(story)
            clear_after_step(story, step)
            story.status = target_status
            if not check_page_count(story.status, story.pages, story.total_pages):
                raise ValidationError({
                    "step": f"Step '{step}' needs {story.total_pages} pages, story has {len(story.pages)}"
                })

        async with self.orchestrator.jobs.claim(story_id):
            # Reject the edit before writing the checkpoint
            edit(copy.deepcopy(await require_story(self.store, story_id)))

            revision = await self.orchestrator.create_revision(
                story_id, step, description=f"Edited at {step} step"
            )
            story = await self.store.update_story(story_id, edit)
            logger.info(
                f"[{story_id}] Step '{step}' edited; checkpoint revision {revision.revision_number}"
            )
            return story, revision


_workflow: Optional[StoryWorkflow] = None


def get_story_workflow() -> StoryWorkflow:
    """Return the module-level workflow singleton (FastAPI dependency)."""
    global _workflow
    if _workflow is None:
        _workflow = StoryWorkflow()
    return _workflow


def set_story_workflow(workflow: Optional[StoryWorkflow]) -> None:
    global _workflow
    _workflow = workflow
