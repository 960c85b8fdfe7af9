"""Tests for src/tasks/story_tasks.py."""

import logging
from unittest.mock import AsyncMock, MagicMock

from src.core.errors import GenerationFailed
from src.core.models import StoryStatus
from src.tasks.story_tasks import run_image_generation_task


def _job(run: AsyncMock) -> MagicMock:
    job = MagicMock()
    job.story_id = "story-1"
    job.story.pages = [MagicMock(), MagicMock()]
    job.run = run
    return job


class TestRunImageGenerationTask:
    async def test_runs_the_job(self, orchestrator, saved_story):
        story = await saved_story()
        job = await orchestrator.start_image_generation(story.id)

        await run_image_generation_task(job)

        assert (await orchestrator.store.get_story(story.id)).status == StoryStatus.COMPLETED

    async def test_workflow_errors_are_logged(self, caplog):
        job = _job(AsyncMock(side_effect=GenerationFailed("provider down", stage="generate_images")))

        with caplog.at_level(logging.WARNING, logger="src.tasks.story_tasks"):
            await run_image_generation_task(job)

        assert "[story-1] Image generation failed: provider down" in caplog.text

    async def test_unexpected_errors_are_logged(self, caplog):
        job = _job(AsyncMock(side_effect=RuntimeError("boom")))

        with caplog.at_level(logging.ERROR, logger="src.tasks.story_tasks"):
            await run_image_generation_task(job)

        assert "crashed: boom" in caplog.text
