"""
Story workflow endpoints.

Each approval action maps to one workflow event. Text stages run inline and
return the updated story; image generation is accepted with 202 and runs in
the background, reporting progress over the websocket.
"""

import uuid
import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from starlette.requests import Request

from src.api.deps import get_current_user_id, get_owned_story, get_workflow
from src.api.rate_limit import GENERATION_RATE_LIMIT, IMAGE_RATE_LIMIT, limiter
from src.api.schemas import (
    ApproveCharactersRequest,
    ApproveSettingRequest,
    ApproveTextRequest,
    ErrorResponse,
    ImageGenerationResponse,
    ImageHistoryResponse,
    ImageVersionItem,
    ImageVersionResponse,
    RegenerateImageRequest,
    RestoreImageRequest,
    RevisionCreateRequest,
    RevisionItem,
    RevisionListResponse,
    SaveStepRequest,
    SaveStepResponse,
    SettingSuggestionResponse,
    StoryCreateRequest,
    StoryListResponse,
    StoryResponse,
    StoryUpdateRequest,
)
from src.core.models import Story
from src.core.workflow import WorkflowEvent
from src.services.story_workflow import StoryWorkflow
from src.tasks.story_tasks import run_image_generation_task


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stories", tags=["Stories"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# ========================
# STORIES
# ========================


@router.post("", response_model=StoryResponse, status_code=201, responses=ERROR_RESPONSES)
async def create_story(
    body: StoryCreateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    """Create a story in ``draft`` from the user's details."""
    story = await workflow.create_story(str(user_id), body.model_dump())
    return StoryResponse.from_story(story)


@router.get("", response_model=StoryListResponse)
async def list_stories(
    user_id: uuid.UUID = Depends(get_current_user_id),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryListResponse:
    """List the caller's stories, newest first."""
    stories = await workflow.list_stories(str(user_id))
    return StoryListResponse(
        stories=[StoryResponse.from_story(s) for s in stories],
        total=len(stories),
    )


@router.get("/{story_id}", response_model=StoryResponse, responses=ERROR_RESPONSES)
async def get_story(story: Story = Depends(get_owned_story)) -> StoryResponse:
    return StoryResponse.from_story(story)


@router.patch("/{story_id}", response_model=StoryResponse, responses=ERROR_RESPONSES)
async def update_story(
    body: StoryUpdateRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    updated = await workflow.update_title(story.id, body.title)
    return StoryResponse.from_story(updated)


@router.post("/{story_id}/bookmark", response_model=StoryResponse, responses=ERROR_RESPONSES)
async def toggle_bookmark(
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    updated = await workflow.toggle_bookmark(story.id)
    return StoryResponse.from_story(updated)


# ========================
# WORKFLOW ACTIONS
# ========================


@router.post("/{story_id}/expand-setting", response_model=SettingSuggestionResponse, responses=ERROR_RESPONSES)
@limiter.limit(GENERATION_RATE_LIMIT)
async def expand_setting(
    request: Request,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> SettingSuggestionResponse:
    """Suggest an expanded setting from the story details. The story is not changed."""
    result = await workflow.orchestrator.suggest_setting(story.id)
    return SettingSuggestionResponse(story_id=story.id, expanded_setting=result.value, mode=result.mode)


@router.post("/{story_id}/approve-setting", response_model=StoryResponse, responses=ERROR_RESPONSES)
@limiter.limit(GENERATION_RATE_LIMIT)
async def approve_setting(
    request: Request,
    body: ApproveSettingRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    """
    Approve the expanded setting and extract characters from it.

    On success the story is in ``characters_extracted``. If extraction fails
    the story is returned to its previous status.
    """
    updated = await workflow.request_transition(
        story.id, WorkflowEvent.APPROVE_SETTING, body.model_dump()
    )
    return StoryResponse.from_story(updated)


@router.post("/{story_id}/extract-characters", response_model=StoryResponse, responses=ERROR_RESPONSES)
@limiter.limit(GENERATION_RATE_LIMIT)
async def extract_characters(
    request: Request,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    """Retry character extraction for a story in ``setting_expansion``."""
    updated = await workflow.request_transition(story.id, WorkflowEvent.EXTRACT_CHARACTERS)
    return StoryResponse.from_story(updated)


@router.post("/{story_id}/approve-characters", response_model=StoryResponse, responses=ERROR_RESPONSES)
@limiter.limit(GENERATION_RATE_LIMIT)
async def approve_characters(
    request: Request,
    body: ApproveCharactersRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    """Approve the characters and draft the story text (``text_approved``)."""
    updated = await workflow.request_transition(
        story.id, WorkflowEvent.APPROVE_CHARACTERS, body.model_dump()
    )
    return StoryResponse.from_story(updated)


@router.post("/{story_id}/approve-text", response_model=StoryResponse, responses=ERROR_RESPONSES)
async def approve_text(
    body: ApproveTextRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    """Save the user's edited page text. Exactly ``total_pages`` pages."""
    updated = await workflow.request_transition(
        story.id, WorkflowEvent.APPROVE_TEXT, body.model_dump()
    )
    return StoryResponse.from_story(updated)


@router.post(
    "/{story_id}/generate-images",
    response_model=ImageGenerationResponse,
    status_code=202,
    responses=ERROR_RESPONSES,
)
@limiter.limit(GENERATION_RATE_LIMIT)
async def generate_images(
    request: Request,
    background_tasks: BackgroundTasks,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> ImageGenerationResponse:
    """
    Start illustrating the story.

    The story moves to ``generating_images`` before this returns; the core
    image, character portraits and pages are then generated in the
    background. Subscribe to the websocket for progress.
    """
    job = await workflow.start_image_generation(story.id)
    # Background tasks are skipped when the response cannot be sent
    job.expire_after()
    background_tasks.add_task(run_image_generation_task, job)
    logger.info(f"[{story.id}] Image generation scheduled")
    return ImageGenerationResponse(
        story_id=story.id,
        status=job.story.status.value,
        message="Image generation started",
    )


# ========================
# PAGE IMAGES
# ========================


@router.post(
    "/{story_id}/pages/{page_number}/regenerate-image",
    response_model=ImageVersionResponse,
    responses=ERROR_RESPONSES,
)
@limiter.limit(IMAGE_RATE_LIMIT)
async def regenerate_page_image(
    request: Request,
    page_number: int,
    body: RegenerateImageRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> ImageVersionResponse:
    """Generate a new image for one page; it becomes the active version."""
    version = await workflow.orchestrator.regenerate_image(
        story.id,
        page_number,
        custom_prompt=body.custom_prompt,
        use_current_image_as_reference=body.use_current_image_as_reference,
    )
    return ImageVersionResponse(
        story_id=story.id,
        page_number=page_number,
        version=ImageVersionItem.model_validate(version.to_dict()),
    )


@router.get(
    "/{story_id}/pages/{page_number}/images",
    response_model=ImageHistoryResponse,
    responses=ERROR_RESPONSES,
)
async def get_page_image_history(
    page_number: int,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> ImageHistoryResponse:
    versions = await workflow.orchestrator.list_image_history(story.id, page_number)
    return ImageHistoryResponse(
        story_id=story.id,
        page_number=page_number,
        versions=[ImageVersionItem.model_validate(v.to_dict()) for v in versions],
    )


@router.post(
    "/{story_id}/pages/{page_number}/restore-image",
    response_model=ImageVersionResponse,
    responses=ERROR_RESPONSES,
)
async def restore_page_image(
    page_number: int,
    body: RestoreImageRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> ImageVersionResponse:
    version = await workflow.orchestrator.restore_image_version(story.id, page_number, body.version_id)
    return ImageVersionResponse(
        story_id=story.id,
        page_number=page_number,
        version=ImageVersionItem.model_validate(version.to_dict()),
    )


@router.post("/{story_id}/regenerate-core-image", response_model=StoryResponse, responses=ERROR_RESPONSES)
@limiter.limit(IMAGE_RATE_LIMIT)
async def regenerate_core_image(
    request: Request,
    body: RegenerateImageRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    updated = await workflow.orchestrator.regenerate_core_image(
        story.id,
        custom_prompt=body.custom_prompt,
        use_current_image_as_reference=body.use_current_image_as_reference,
    )
    return StoryResponse.from_story(updated)


# ========================
# REVISIONS
# ========================


@router.get("/{story_id}/revisions", response_model=RevisionListResponse, responses=ERROR_RESPONSES)
async def list_revisions(
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> RevisionListResponse:
    revisions = await workflow.orchestrator.list_revisions(story.id)
    return RevisionListResponse(
        story_id=story.id,
        current_revision=story.current_revision,
        revisions=[RevisionItem.from_revision(r) for r in revisions],
    )


@router.post(
    "/{story_id}/revisions",
    response_model=RevisionItem,
    status_code=201,
    responses=ERROR_RESPONSES,
)
async def create_revision(
    body: RevisionCreateRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> RevisionItem:
    revision = await workflow.orchestrator.create_revision(
        story.id, body.step, description=body.description, from_revision=body.from_revision
    )
    return RevisionItem.from_revision(revision)


@router.post(
    "/{story_id}/revisions/{revision_number}/restore",
    response_model=StoryResponse,
    responses=ERROR_RESPONSES,
)
async def restore_revision(
    revision_number: int,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> StoryResponse:
    """Load a revision; status is reset from the revision's step."""
    updated = await workflow.orchestrator.restore_revision(story.id, revision_number)
    return StoryResponse.from_story(updated)


@router.post("/{story_id}/save-step", response_model=SaveStepResponse, responses=ERROR_RESPONSES)
async def save_step(
    body: SaveStepRequest,
    story: Story = Depends(get_owned_story),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> SaveStepResponse:
    updated, revision = await workflow.save_step(
        story.id, body.step, body.updates, clear_future_steps=body.clear_future_steps
    )
    return SaveStepResponse(
        story=StoryResponse.from_story(updated),
        revision_created=revision is not None,
        revision_number=revision.revision_number if revision else None,
    )
