"""
FastAPI dependencies: workflow access and user authentication.
"""

import os
import logging
from uuid import UUID
from typing import Optional

from fastapi import Depends, HTTPException, Header

from src.core.models import Story
from src.services.story_workflow import StoryWorkflow, get_story_workflow

logger = logging.getLogger(__name__)

# Fixed UUID for local development when auth is not configured
_DEV_USER_ID = UUID("00000000-0000-0000-0000-000000000000")


async def get_workflow() -> StoryWorkflow:
    return get_story_workflow()


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> UUID:
    """
    Extract the authenticated user's ID from the X-User-Id header.

    An upstream gateway validates the session and forwards the user ID in the
    X-User-Id header. In local dev mode (no DATABASE_URL), falls back to a
    fixed dev UUID.
    """
    if x_user_id:
        try:
            return UUID(x_user_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid X-User-Id header")

    if not os.getenv("DATABASE_URL"):
        return _DEV_USER_ID

    raise HTTPException(
        status_code=401,
        detail="Authentication required. Provide X-User-Id header.",
    )


async def get_owned_story(
    story_id: str,
    user_id: UUID = Depends(get_current_user_id),
    workflow: StoryWorkflow = Depends(get_workflow),
) -> Story:
    """Resolve the path's story for the caller; other users' stories are 404."""
    return await workflow.get_story_for_user(story_id, str(user_id))
