"""
Pydantic schemas for API request/response models.

Request models check shape only; minimum-content rules are enforced by the
workflow so that every stage reports them the same way (422 with per-field
errors).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.core.models import Story, StoryRevision


# =============================================================================
# STORY MODELS
# =============================================================================

class CharacterItem(BaseModel):
    """An extracted or user-approved character."""

    name: str = Field(..., max_length=200)
    description: str = Field(..., max_length=2000)
    image_url: Optional[str] = Field(None, description="Character portrait reference")


class ImageVersionItem(BaseModel):
    """One entry of a page's image history."""

    id: str = Field(..., description="Version reference used for restore")
    url: str
    prompt: Optional[str] = None
    created_at: datetime
    is_active: bool
    mode: str = Field("live", description="'live' or 'offline' (placeholder fallback)")


class StoryPageItem(BaseModel):
    page_number: int
    text: str
    image_url: Optional[str] = None
    image_prompt: Optional[str] = None
    image_history: List[ImageVersionItem] = Field(default_factory=list)


class StoryResponse(BaseModel):
    """Full story state."""

    id: str
    user_id: str
    title: str
    setting: str
    expanded_setting: Optional[str] = None
    characters: str
    extracted_characters: List[CharacterItem] = Field(default_factory=list)
    plot: str
    age_group: str
    total_pages: int
    pages: List[StoryPageItem] = Field(default_factory=list)
    core_image_url: Optional[str] = None
    status: str
    is_bookmarked: bool = False
    current_revision: int = 1
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_story(cls, story: Story) -> "StoryResponse":
        return cls.model_validate(story.to_dict())


class StoryListResponse(BaseModel):
    stories: List[StoryResponse]
    total: int


class StoryCreateRequest(BaseModel):
    """Request schema for story creation."""

    title: str = Field(..., max_length=200, description="Story title (at least 3 characters)")
    setting: str = Field(..., max_length=5000, description="Where the story takes place")
    characters: str = Field(..., max_length=5000, description="Free-text description of the characters")
    plot: str = Field(..., max_length=10000, description="What happens in the story")
    age_group: str = Field(..., description="Target age group: 3-5, 6-8 or 9-12")
    total_pages: int = Field(..., description="Number of story pages (5-50)")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "title": "Pip and the Lantern",
                    "setting": "A foggy harbor town with crooked lighthouses",
                    "characters": "Pip, a small grey seal; Ada, a lighthouse keeper's daughter",
                    "plot": "Pip helps Ada relight the old lantern before the storm arrives",
                    "age_group": "6-8",
                    "total_pages": 8,
                }
            ]
        }
    }


class StoryUpdateRequest(BaseModel):
    title: str = Field(..., max_length=200)


# =============================================================================
# WORKFLOW ACTIONS
# =============================================================================

class SettingSuggestionResponse(BaseModel):
    story_id: str
    expanded_setting: str
    mode: str = Field(..., description="live, or offline when fallback content was used")


class ApproveSettingRequest(BaseModel):
    expanded_setting: str = Field(..., max_length=10000, description="Approved setting description")


class ApproveCharactersRequest(BaseModel):
    characters: List[CharacterItem] = Field(..., max_length=20)


class PageTextItem(BaseModel):
    page_number: int
    text: str = Field(..., max_length=5000)


class ApproveTextRequest(BaseModel):
    pages: List[PageTextItem] = Field(..., max_length=50)


class ImageGenerationResponse(BaseModel):
    """Response for an accepted image generation request."""

    story_id: str
    status: str
    message: str
    progress_channel: str = Field("/api/v1/ws", description="Websocket to subscribe for progress")


class RegenerateImageRequest(BaseModel):
    custom_prompt: Optional[str] = Field(None, max_length=2000, description="Extra instructions for the image")
    use_current_image_as_reference: bool = Field(
        False, description="Send the current image as a reference and keep its composition"
    )


class ImageVersionResponse(BaseModel):
    story_id: str
    page_number: int
    version: ImageVersionItem


class ImageHistoryResponse(BaseModel):
    story_id: str
    page_number: int
    versions: List[ImageVersionItem] = Field(..., description="Newest first")


class RestoreImageRequest(BaseModel):
    version_id: str = Field(..., description="Id of the image version to make active")


# =============================================================================
# REVISIONS
# =============================================================================

class RevisionCreateRequest(BaseModel):
    step: str = Field(..., description="Step marker: details, setting, characters, review, images, complete")
    description: Optional[str] = Field(None, max_length=500)
    from_revision: Optional[int] = Field(None, description="Parent revision; defaults to the current one")


class RevisionItem(BaseModel):
    revision_number: int
    step_completed: str
    status: str
    parent_revision: Optional[int] = None
    description: Optional[str] = None
    created_at: datetime
    snapshot: Dict[str, Any]

    @classmethod
    def from_revision(cls, revision: StoryRevision) -> "RevisionItem":
        return cls.model_validate(revision.to_dict())


class RevisionListResponse(BaseModel):
    story_id: str
    current_revision: int
    revisions: List[RevisionItem]


class SaveStepRequest(BaseModel):
    step: str = Field(..., description="Step being edited")
    updates: Dict[str, Any] = Field(default_factory=dict, description="Edited fields")
    clear_future_steps: bool = Field(False, description="Checkpoint as a revision and clear later steps")


class SaveStepResponse(BaseModel):
    story: StoryResponse
    revision_created: bool
    revision_number: Optional[int] = None


# =============================================================================
# COMMON
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    errors: Optional[Dict[str, str]] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str = "1.0.0"
    openrouter_configured: bool
    database_configured: bool = False
    storage_configured: bool = False
    generation_mode: str = Field("offline", description="'live' when provider calls are enabled")
    story_store: str = Field("memory", description="'postgres' when DATABASE_URL is configured")
    text_model: Optional[str] = None
    image_model: Optional[str] = None
