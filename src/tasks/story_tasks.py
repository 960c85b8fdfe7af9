"""
Background tasks for story generation stages.

Run outside the request cycle via FastAPI BackgroundTasks, so failures are
logged here instead of being returned to a client. The orchestrator has
already restored the story and published the ``error`` event by then.
"""

import logging

from src.core.errors import WorkflowError
from src.services.orchestrator import ImageGenerationJob


logger = logging.getLogger(__name__)


async def run_image_generation_task(job: ImageGenerationJob) -> None:
    """Background task to illustrate a story that was moved to generating_images."""
    story_id = job.story_id
    logger.info(f"[{story_id}] Starting image generation task: {len(job.story.pages)} pages")

    try:
        story = await job.run()
        logger.info(f"[{story_id}] Image generation task finished: status={story.status.value}")
    except WorkflowError as e:
        logger.warning(f"[{story_id}] Image generation failed: {e.message}")
    except Exception as e:
        logger.error(f"[{story_id}] Image generation task crashed: {str(e)}", exc_info=True)
