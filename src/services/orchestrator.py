"""
Generation orchestrator.

Runs the provider-backed stages of the story workflow:

- setting suggestion from the draft details
- character extraction (after the setting is approved)
- story text drafting (after the characters are approved)
- illustration: core image, character portraits, then pages in order
- single page and core image regeneration
- page image version restore and story revisions

A story has at most one stage job in flight (JobRegistry); a second request
fails with JobInProgress. Stage results are committed in one atomic story
update at the end of the stage. On failure the pre-request status and content
are restored and an ``error`` event is published.
"""

import asyncio
import copy
import logging
from typing import Callable, Optional

from src.core.errors import GenerationFailed, ValidationError, VersionNotFound
from src.core.events import EventBus, StageReporter, get_event_bus
from src.core.locks import JobRegistry, JobSlot, KeyedLocks
from src.core.models import Character, ImageVersion, Story, StoryPage, StoryRevision, StoryStatus
from src.core.prompts import build_page_image_prompt, build_regeneration_prompt, build_core_image_prompt, format_character_list
from src.core.provider import LIVE, OFFLINE, Generated, ProviderAdapter
from src.core.storage import ImagePublisher
from src.core.versioning import (
    append_image_version,
    apply_revision,
    history_newest_first,
    restore_image_version,
    snapshot_story,
)
from src.core.workflow import WorkflowEvent, check_page_count, resolve_transition, status_for_step
from src.services.story_store import StoryStore, get_story_store, require_revision, require_story

logger = logging.getLogger(__name__)

# Fields restored when a stage fails, per stage
EXTRACTION_FIELDS = ("status", "expanded_setting", "extracted_characters")
DRAFTING_FIELDS = ("status", "title", "extracted_characters", "pages")

# Seconds a scheduled image job may wait to start before its claim is dropped
JOB_START_TIMEOUT = 60.0


def _restore_fields(before: Story, fields: tuple[str, ...]) -> Callable[[Story], None]:
    def mutate(story: Story) -> None:
        for name in fields:
            setattr(story, name, copy.deepcopy(getattr(before, name)))
    return mutate


def _combined_mode(modes: list[str]) -> str:
    return OFFLINE if OFFLINE in modes else LIVE


class GenerationOrchestrator:
    def __init__(
        self,
        store: Optional[StoryStore] = None,
        adapter: Optional[ProviderAdapter] = None,
        bus: Optional[EventBus] = None,
        publisher: Optional[ImagePublisher] = None,
    ):
        self.store = store or get_story_store()
        self.adapter = adapter or ProviderAdapter()
        self.bus = bus or get_event_bus()
        self.publisher = publisher or ImagePublisher()
        self.jobs = JobRegistry()
        self.page_locks = KeyedLocks()

    def reporter(self, story_id: str, stage: str) -> StageReporter:
        return StageReporter(self.bus, story_id, stage)

    async def _rollback(self, story_id: str, before: Story, fields: tuple[str, ...]) -> None:
        try:
            await self.store.update_story(story_id, _restore_fields(before, fields))
            logger.info(f"[{story_id}] Restored pre-request state ({before.status.value})")
        except Exception:
            logger.exception(f"[{story_id}] Failed to restore pre-request state")

    async def _transition(self, story_id: str, event: WorkflowEvent, mutate: Optional[Callable[[Story], None]] = None) -> Story:
        """Apply ``event`` in one atomic update, with optional extra changes."""
        def apply(story: Story) -> None:
            story.status = resolve_transition(story.status, event)
            if mutate:
                mutate(story)
        return await self.store.update_story(story_id, apply)

    # ========================
    # TEXT STAGES
    # ========================

    async def suggest_setting(self, story_id: str) -> Generated[str]:
        """Draft an expanded setting for the user to edit. The story is not changed."""
        async with self.jobs.claim(story_id):
            story = await require_story(self.store, story_id)
            reporter = self.reporter(story_id, "expand_setting")
            reporter.start("Expanding setting")
            try:
                result = await self.adapter.expand_setting(
                    story.setting, story.characters, story.plot, story.age_group
                )
            except Exception as e:
                reporter.fail(str(e))
                raise
            reporter.complete("Setting expanded", mode=result.mode)
            return result

    async def approve_setting(self, story_id: str, expanded_setting: str) -> Story:
        """Store the approved setting, then extract characters from it."""
        async with self.jobs.claim(story_id):
            before = await require_story(self.store, story_id)
            resolve_transition(before.status, WorkflowEvent.APPROVE_SETTING)

            def set_setting(story: Story) -> None:
                story.expanded_setting = expanded_setting

            story = await self._transition(story_id, WorkflowEvent.APPROVE_SETTING, set_setting)
            return await self._extract_characters(story, before)

    async def extract_characters(self, story_id: str) -> Story:
        """Re-run character extraction for a story left in setting_expansion."""
        async with self.jobs.claim(story_id):
            before = await require_story(self.store, story_id)
            resolve_transition(before.status, WorkflowEvent.EXTRACT_CHARACTERS)
            return await self._extract_characters(before, before)

    async def _extract_characters(self, story: Story, before: Story) -> Story:
        reporter = self.reporter(story.id, "extract_characters")
        reporter.start("Extracting characters")
        try:
            result = await self.adapter.extract_characters(
                story.characters, story.setting_for_generation, story.plot
            )

            def set_characters(target: Story) -> None:
                target.extracted_characters = result.value

            updated = await self._transition(story.id, WorkflowEvent.EXTRACT_CHARACTERS, set_characters)
        except Exception as e:
            await self._rollback(story.id, before, EXTRACTION_FIELDS)
            reporter.fail(str(e))
            raise

        logger.info(f"[{story.id}] Extracted {len(result.value)} characters ({result.mode})")
        reporter.complete(f"Extracted {len(result.value)} characters", mode=result.mode)
        return updated

    async def approve_characters(self, story_id: str, characters: list[Character]) -> Story:
        """Store the approved characters, then draft the story text."""
        async with self.jobs.claim(story_id):
            before = await require_story(self.store, story_id)
            resolve_transition(before.status, WorkflowEvent.APPROVE_CHARACTERS)

            def set_characters(story: Story) -> None:
                story.extracted_characters = copy.deepcopy(characters)

            story = await self.store.update_story(story_id, set_characters)

            reporter = self.reporter(story_id, "draft_text")
            reporter.start("Writing story text")
            try:
                result = await self.adapter.generate_story_text(
                    story.setting_for_generation,
                    format_character_list(characters, story.characters),
                    story.plot,
                    story.age_group,
                    story.total_pages,
                )

                def set_text(target: Story) -> None:
                    target.title = result.value["title"]
                    target.pages = [
                        StoryPage(page_number=p["page_number"], text=p["text"])
                        for p in result.value["pages"]
                    ]

                updated = await self._transition(story_id, WorkflowEvent.APPROVE_CHARACTERS, set_text)
            except Exception as e:
                await self._rollback(story_id, before, DRAFTING_FIELDS)
                reporter.fail(str(e))
                raise

            logger.info(f"[{story_id}] Drafted {len(updated.pages)} pages ({result.mode})")
            reporter.complete(f"Drafted {len(updated.pages)} pages", mode=result.mode)
            return updated

    # ========================
    # IMAGE STAGE
    # ========================

    async def start_image_generation(self, story_id: str) -> "ImageGenerationJob":
        """
        Claim the story and move it to generating_images.

        The returned job owns the story's slot until ``run()`` finishes.
        """
        slot = self.jobs.claim(story_id)
        try:
            before = await require_story(self.store, story_id)
            resolve_transition(before.status, WorkflowEvent.GENERATE_IMAGES)
            if not check_page_count(before.status, before.pages, before.total_pages):
                raise ValidationError({
                    "pages": f"Expected {before.total_pages} pages, got {len(before.pages)}"
                })
            story = await self._transition(story_id, WorkflowEvent.GENERATE_IMAGES)
        except Exception:
            slot.release()
            raise
        return ImageGenerationJob(self, slot, story, before)

    async def generate_images(self, story_id: str) -> Story:
        job = await self.start_image_generation(story_id)
        return await job.run()

    # ========================
    # PAGE IMAGES
    # ========================

    async def regenerate_image(
        self,
        story_id: str,
        page_number: int,
        custom_prompt: Optional[str] = None,
        use_current_image_as_reference: bool = False,
    ) -> ImageVersion:
        """
        Generate a new image for one page and make it the active version.

        Serialized per page; does not take the story's job slot, so it can run
        while other pages are being edited. Never changes status or ordering.
        """
        async with self.page_locks.hold((story_id, page_number)):
            story = await require_story(self.store, story_id)
            page = story.get_page(page_number)
            if page is None:
                raise VersionNotFound(f"Page {page_number} not found in story {story_id}")

            base_prompt = page.image_prompt or build_page_image_prompt(
                page.text,
                setting=story.setting_for_generation,
                characters=format_character_list(story.extracted_characters, story.characters),
            )
            prompt = build_regeneration_prompt(base_prompt, custom_prompt, use_current_image_as_reference)

            reporter = self.reporter(story_id, "regenerate_image")
            reporter.start(f"Regenerating page {page_number}")
            try:
                core_ref = await self.publisher.provider_reference(story.core_image_url)
                current_ref = None
                if use_current_image_as_reference:
                    current_ref = await self.publisher.provider_reference(page.image_url)

                result = await self.adapter.generate_page_image(
                    page.text,
                    page_number,
                    core_image_ref=core_ref,
                    prompt=prompt,
                    extra_references=[current_ref],
                )
                image_ref = await self.publisher.publish(story_id, f"page_{page_number}", result.value)

                appended: list[ImageVersion] = []

                def append(target: Story) -> None:
                    target_page = target.get_page(page_number)
                    if target_page is None:
                        raise VersionNotFound(f"Page {page_number} not found in story {story_id}")
                    appended.append(append_image_version(target_page, image_ref, prompt, mode=result.mode))

                await self.store.update_story(story_id, append)
            except Exception as e:
                reporter.fail(str(e), page_number=page_number)
                raise

            reporter.complete(
                f"Page {page_number} regenerated",
                page_number=page_number,
                image_ref=image_ref,
                mode=result.mode,
            )
            return appended[0]

    async def restore_image_version(self, story_id: str, page_number: int, version_id: str) -> ImageVersion:
        """Make a historical image version active again."""
        async with self.page_locks.hold((story_id, page_number)):
            restored: list[ImageVersion] = []

            def restore(story: Story) -> None:
                page = story.get_page(page_number)
                if page is None:
                    raise VersionNotFound(f"Page {page_number} not found in story {story_id}")
                restored.append(restore_image_version(page, version_id))

            await self.store.update_story(story_id, restore)
            logger.info(f"[{story_id}] Page {page_number} restored to image version {version_id}")
            return restored[0]

    async def list_image_history(self, story_id: str, page_number: int) -> list[ImageVersion]:
        story = await require_story(self.store, story_id)
        page = story.get_page(page_number)
        if page is None:
            raise VersionNotFound(f"Page {page_number} not found in story {story_id}")
        return history_newest_first(page)

    async def regenerate_core_image(
        self,
        story_id: str,
        custom_prompt: Optional[str] = None,
        use_current_image_as_reference: bool = False,
    ) -> Story:
        """Replace the story's core reference image. Status is unchanged."""
        async with self.jobs.claim(story_id):
            story = await require_story(self.store, story_id)
            characters = format_character_list(story.extracted_characters, story.characters)
            prompt = build_regeneration_prompt(
                build_core_image_prompt(story.setting_for_generation, characters),
                custom_prompt,
                use_current_image_as_reference,
            )

            reporter = self.reporter(story_id, "regenerate_core_image")
            reporter.start("Regenerating core image")
            try:
                references = []
                if use_current_image_as_reference:
                    references.append(await self.publisher.provider_reference(story.core_image_url))
                result = await self.adapter.generate_core_image(
                    story.setting_for_generation, characters, prompt=prompt, references=references
                )
                image_ref = await self.publisher.publish(story_id, "core", result.value)

                def set_core(target: Story) -> None:
                    target.core_image_url = image_ref

                updated = await self.store.update_story(story_id, set_core)
            except Exception as e:
                reporter.fail(str(e))
                raise

            reporter.complete("Core image regenerated", image_ref=image_ref, mode=result.mode)
            return updated

    # ========================
    # REVISIONS
    # ========================

    async def create_revision(
        self,
        story_id: str,
        step: str,
        description: Optional[str] = None,
        from_revision: Optional[int] = None,
    ) -> StoryRevision:
        """
        Snapshot the story as a new revision and make it current.

        The parent is ``from_revision`` when given (it must exist), otherwise
        the story's current revision if one was recorded.
        """
        status_for_step(step)
        story = await require_story(self.store, story_id)
        if from_revision is not None:
            parent = (await require_revision(self.store, story_id, from_revision)).revision_number
        elif await self.store.get_revision(story_id, story.current_revision) is not None:
            parent = story.current_revision
        else:
            parent = None

        def factory(current: Story, number: int) -> StoryRevision:
            return snapshot_story(
                current,
                revision_number=number,
                step=step,
                parent_revision=parent,
                description=description,
            )

        revision = await self.store.create_revision(story_id, factory)
        logger.info(f"[{story_id}] Created revision {revision.revision_number} at step '{step}'")
        return revision

    async def list_revisions(self, story_id: str) -> list[StoryRevision]:
        await require_story(self.store, story_id)
        return await self.store.list_revisions(story_id)

    async def restore_revision(self, story_id: str, revision_number: int) -> Story:
        """Load a revision into the story, resetting status from its step."""
        async with self.jobs.claim(story_id):
            revision = await require_revision(self.store, story_id, revision_number)
            story = await self.store.update_story(story_id, lambda s: apply_revision(s, revision))
            logger.info(
                f"[{story_id}] Restored revision {revision_number} (status {story.status.value})"
            )
            return story


class ImageGenerationJob:
    """One illustration run. Holds the story's job slot until ``run()`` ends or the job is abandoned."""

    def __init__(self, orchestrator: GenerationOrchestrator, slot: JobSlot, story: Story, before: Story):
        self.orchestrator = orchestrator
        self.slot = slot
        self.story = story
        self.before = before
        self.started = False
        self._expiry: Optional[asyncio.TimerHandle] = None
        self._abandon_task: Optional[asyncio.Task] = None

    @property
    def story_id(self) -> str:
        return self.story.id

    def expire_after(self, seconds: float = JOB_START_TIMEOUT) -> None:
        """Abandon the job if ``run()`` has not started within ``seconds``."""
        loop = asyncio.get_running_loop()
        self._expiry = loop.call_later(seconds, self._expire)

    def _expire(self) -> None:
        if not self.started:
            self._abandon_task = asyncio.ensure_future(self.abandon())

    async def abandon(self) -> None:
        """Drop a job that never ran: restore the status and free the slot."""
        if self.started:
            return
        self.started = True
        try:
            logger.warning(f"[{self.story_id}] Image job never started; releasing the story")
            await self.orchestrator._rollback(self.story_id, self.before, ("status",))
        finally:
            self.slot.release()

    async def run(self) -> Story:
        if self._expiry is not None:
            self._expiry.cancel()
        if self.started:
            raise GenerationFailed("Image job was already run or abandoned", stage="generate_images")
        self.started = True

        orch = self.orchestrator
        story = self.story
        story_id = story.id
        setting = story.setting_for_generation
        characters_text = format_character_list(story.extracted_characters, story.characters)
        reporter = orch.reporter(story_id, "generate_images")
        modes: list[str] = []

        try:
            reporter.start(f"Generating images for {len(story.pages)} pages")

            # Core reference image
            core = await orch.adapter.generate_core_image(setting, characters_text)
            core_ref = await orch.publisher.publish(story_id, "core", core.value)
            core_provider_ref = core.value.url
            modes.append(core.mode)
            reporter.progress("Core image ready", image_ref=core_ref, mode=core.mode)

            # Character portraits
            portraits: dict[str, str] = {}
            for index, character in enumerate(story.extracted_characters, start=1):
                portrait = await orch.adapter.generate_character_image(character, setting, core_provider_ref)
                portraits[character.name] = await orch.publisher.publish(
                    story_id, f"character_{index}", portrait.value
                )
                modes.append(portrait.mode)
                reporter.progress(
                    f"Character {character.name} ready",
                    character_id=character.name,
                    image_ref=portraits[character.name],
                    mode=portrait.mode,
                )

            # Pages, in order; each references the previous page's new image
            page_images: list[tuple[int, str, Optional[str], str]] = []
            previous_provider_ref: Optional[str] = None
            for page in sorted(story.pages, key=lambda p: p.page_number):
                reporter.progress(f"Generating image for page {page.page_number}", page_number=page.page_number)
                image = await orch.adapter.generate_page_image(
                    page.text,
                    page.page_number,
                    core_image_ref=core_provider_ref,
                    previous_page_image_ref=previous_provider_ref,
                    setting=setting,
                    characters=characters_text,
                )
                image_ref = await orch.publisher.publish(story_id, f"page_{page.page_number}", image.value)
                page_images.append((page.page_number, image_ref, image.value.prompt, image.mode))
                previous_provider_ref = image.value.url
                modes.append(image.mode)
                reporter.progress(
                    f"Page {page.page_number} illustrated",
                    page_number=page.page_number,
                    image_ref=image_ref,
                    mode=image.mode,
                )

            def commit(target: Story) -> None:
                if target.status != StoryStatus.GENERATING_IMAGES:
                    raise GenerationFailed(
                        f"Story left generating_images during the run ({target.status.value})",
                        stage="generate_images",
                    )
                if not check_page_count(target.status, target.pages, target.total_pages):
                    raise GenerationFailed("Page list changed during the run", stage="generate_images")
                target.core_image_url = core_ref
                for character in target.extracted_characters:
                    if character.name in portraits:
                        character.image_url = portraits[character.name]
                for page_number, image_ref, prompt, mode in page_images:
                    append_image_version(target.get_page(page_number), image_ref, prompt, mode=mode)
                target.status = resolve_transition(target.status, WorkflowEvent.IMAGES_COMPLETE)

            updated = await orch.store.update_story(story_id, commit)
        except Exception as e:
            await orch._rollback(story_id, self.before, ("status",))
            reporter.fail(str(e))
            raise
        finally:
            self.slot.release()

        logger.info(f"[{story_id}] Image generation complete: {len(page_images)} pages")
        reporter.complete(
            f"Generated {len(page_images)} page images",
            image_ref=core_ref,
            mode=_combined_mode(modes),
        )
        return updated


_orchestrator: Optional[GenerationOrchestrator] = None


def get_orchestrator() -> GenerationOrchestrator:
    """Return the module-level orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = GenerationOrchestrator(publisher=ImagePublisher.from_env())
    return _orchestrator


def set_orchestrator(orchestrator: Optional[GenerationOrchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator


async def close_orchestrator() -> None:
    """Close the singleton's provider client. Call once at app shutdown."""
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.adapter.close()
    _orchestrator = None
