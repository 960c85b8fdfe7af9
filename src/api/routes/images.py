"""
Stored image access.

Images uploaded to R2 are referenced as ``/api/v1/images/{key}``; this route
checks that the caller owns the story in the key and redirects to a
short-lived presigned URL.
"""

import uuid
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from src.api.deps import get_current_user_id, get_workflow
from src.api.schemas import ErrorResponse
from src.core.storage import PRESIGNED_URL_EXPIRATION, get_storage, is_r2_configured
from src.services.story_workflow import StoryWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/images", tags=["Images"])


@router.get(
    "/{key:path}",
    responses={
        307: {"description": "Redirect to presigned R2 URL"},
        404: {"model": ErrorResponse},
    },
)
async def get_image(
    key: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> RedirectResponse:
    """Redirect to a stored story image. Keys look like ``images/<story_id>/<name>.png``."""
    parts = key.split("/")
    if len(parts) != 3 or parts[0] != "images" or not parts[2]:
        raise HTTPException(status_code=404, detail="Image not found")
    if not is_r2_configured():
        raise HTTPException(status_code=404, detail="Image storage not configured")

    await workflow.get_story_for_user(parts[1], str(user_id))

    presigned_url = await get_storage().generate_presigned_url(key, expiration=PRESIGNED_URL_EXPIRATION)
    return RedirectResponse(url=presigned_url, status_code=307)
