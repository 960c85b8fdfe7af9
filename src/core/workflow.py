"""
Story workflow state machine.

The legal lifecycle of a story is a single table keyed by
(current status, event). Every status change in the service goes through
``resolve_transition`` so the rules live in one place.

    draft --approve_setting--> setting_expansion --extract_characters-->
    characters_extracted --approve_characters--> text_approved
    --generate_images--> generating_images --images_complete--> completed
"""

from enum import Enum
from typing import Any, Iterable, Optional

from src.core.errors import InvalidTransition, ValidationError
from src.core.models import AGE_GROUPS, PAGED_STATUSES, Character, StoryPage, StoryStatus


class WorkflowEvent(str, Enum):
    APPROVE_SETTING = "approve_setting"
    EXTRACT_CHARACTERS = "extract_characters"
    APPROVE_CHARACTERS = "approve_characters"
    APPROVE_TEXT = "approve_text"
    GENERATE_IMAGES = "generate_images"
    IMAGES_COMPLETE = "images_complete"


TRANSITIONS: dict[tuple[StoryStatus, WorkflowEvent], StoryStatus] = {
    (StoryStatus.DRAFT, WorkflowEvent.APPROVE_SETTING): StoryStatus.SETTING_EXPANSION,
    (StoryStatus.SETTING_EXPANSION, WorkflowEvent.EXTRACT_CHARACTERS): StoryStatus.CHARACTERS_EXTRACTED,
    (StoryStatus.CHARACTERS_EXTRACTED, WorkflowEvent.APPROVE_CHARACTERS): StoryStatus.TEXT_APPROVED,
    (StoryStatus.TEXT_APPROVED, WorkflowEvent.APPROVE_TEXT): StoryStatus.TEXT_APPROVED,
    (StoryStatus.TEXT_APPROVED, WorkflowEvent.GENERATE_IMAGES): StoryStatus.GENERATING_IMAGES,
    (StoryStatus.COMPLETED, WorkflowEvent.GENERATE_IMAGES): StoryStatus.GENERATING_IMAGES,
    (StoryStatus.GENERATING_IMAGES, WorkflowEvent.IMAGES_COMPLETE): StoryStatus.COMPLETED,
}

# Events whose stage needs provider calls (handled by the orchestrator)
ORCHESTRATED_EVENTS = frozenset({
    WorkflowEvent.APPROVE_SETTING,
    WorkflowEvent.EXTRACT_CHARACTERS,
    WorkflowEvent.APPROVE_CHARACTERS,
    WorkflowEvent.GENERATE_IMAGES,
})


# Revision step markers, in workflow order
STEPS = ("details", "setting", "characters", "review", "images", "complete")

STEP_STATUS: dict[str, StoryStatus] = {
    "details": StoryStatus.DRAFT,
    "setting": StoryStatus.SETTING_EXPANSION,
    "characters": StoryStatus.CHARACTERS_EXTRACTED,
    "review": StoryStatus.TEXT_APPROVED,
    "images": StoryStatus.COMPLETED,
    "complete": StoryStatus.COMPLETED,
}

# Minimum-content rules
MIN_TITLE_LENGTH = 3
MIN_SETTING_LENGTH = 10
MIN_CHARACTERS_LENGTH = 10
MIN_PLOT_LENGTH = 20
MIN_EXPANDED_SETTING_LENGTH = 20
MIN_CHARACTER_DESCRIPTION_LENGTH = 10
MIN_PAGE_TEXT_LENGTH = 50
MIN_TOTAL_PAGES = 5
MAX_TOTAL_PAGES = 50


def coerce_status(value: Any) -> StoryStatus:
    return value if isinstance(value, StoryStatus) else StoryStatus(value)


def coerce_event(value: Any) -> WorkflowEvent:
    try:
        return value if isinstance(value, WorkflowEvent) else WorkflowEvent(value)
    except ValueError:
        raise InvalidTransition("unknown", str(value))


def allowed_events(status: StoryStatus) -> list[WorkflowEvent]:
    """Events the given status accepts."""
    return [event for (state, event) in TRANSITIONS if state == status]


def resolve_transition(status: Any, event: Any) -> StoryStatus:
    """Return the next status, or raise InvalidTransition."""
    status = coerce_status(status)
    event = coerce_event(event)
    next_status = TRANSITIONS.get((status, event))
    if next_status is None:
        raise InvalidTransition(status.value, event.value)
    return next_status


def status_for_step(step: str) -> StoryStatus:
    if step not in STEP_STATUS:
        raise ValidationError({"step": f"Unknown step '{step}'. Expected one of: {', '.join(STEPS)}"})
    return STEP_STATUS[step]


# Lifecycle order used to tell backward step edits from forward jumps
STATUS_ORDER = (
    StoryStatus.DRAFT,
    StoryStatus.SETTING_EXPANSION,
    StoryStatus.CHARACTERS_EXTRACTED,
    StoryStatus.TEXT_APPROVED,
    StoryStatus.GENERATING_IMAGES,
    StoryStatus.COMPLETED,
)


def require_step_reached(status: Any, step: str) -> StoryStatus:
    """Return the status mapped from ``step`` if the story has already reached it.

    Step edits and revisions may only point back to work that exists; moving
    forward goes through ``resolve_transition``.
    """
    status = coerce_status(status)
    target = status_for_step(step)
    if STATUS_ORDER.index(target) > STATUS_ORDER.index(status):
        raise InvalidTransition(status.value, f"{step} step")
    return target


# =============================================================================
# PAYLOAD VALIDATION
# =============================================================================


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _min_length(errors: dict, payload: dict, key: str, minimum: int, label: str) -> None:
    if len(_text(payload, key)) < minimum:
        errors[key] = f"{label} must be at least {minimum} characters"


def validate_story_details(payload: dict) -> dict:
    """Validate story creation input. Returns the normalized fields."""
    errors: dict[str, str] = {}
    _min_length(errors, payload, "title", MIN_TITLE_LENGTH, "Title")
    _min_length(errors, payload, "setting", MIN_SETTING_LENGTH, "Setting")
    _min_length(errors, payload, "characters", MIN_CHARACTERS_LENGTH, "Characters")
    _min_length(errors, payload, "plot", MIN_PLOT_LENGTH, "Plot")

    total_pages = payload.get("total_pages")
    if not isinstance(total_pages, int) or isinstance(total_pages, bool):
        errors["total_pages"] = "Total pages must be an integer"
    elif not MIN_TOTAL_PAGES <= total_pages <= MAX_TOTAL_PAGES:
        errors["total_pages"] = f"Total pages must be between {MIN_TOTAL_PAGES} and {MAX_TOTAL_PAGES}"

    if payload.get("age_group") not in AGE_GROUPS:
        errors["age_group"] = f"Age group must be one of: {', '.join(AGE_GROUPS)}"

    if errors:
        raise ValidationError(errors)

    return {
        "title": _text(payload, "title"),
        "setting": _text(payload, "setting"),
        "characters": _text(payload, "characters"),
        "plot": _text(payload, "plot"),
        "total_pages": total_pages,
        "age_group": payload["age_group"],
    }


def validate_expanded_setting(payload: dict) -> str:
    errors: dict[str, str] = {}
    _min_length(errors, payload, "expanded_setting", MIN_EXPANDED_SETTING_LENGTH, "Setting")
    if errors:
        raise ValidationError(errors)
    return _text(payload, "expanded_setting")


def validate_characters(characters: Optional[Iterable[Any]]) -> list[Character]:
    items = list(characters or [])
    if not items:
        raise ValidationError({"characters": "At least one character is required"})

    errors: dict[str, str] = {}
    result = []
    for index, item in enumerate(items):
        data = item.to_dict() if isinstance(item, Character) else dict(item)
        name = (data.get("name") or "").strip()
        description = (data.get("description") or "").strip()
        if not name:
            errors[f"characters[{index}].name"] = "Character name required"
        if len(description) < MIN_CHARACTER_DESCRIPTION_LENGTH:
            errors[f"characters[{index}].description"] = (
                f"Character description must be at least {MIN_CHARACTER_DESCRIPTION_LENGTH} characters"
            )
        result.append(Character(name=name, description=description, image_url=data.get("image_url")))

    if errors:
        raise ValidationError(errors)
    return result


def validate_page_texts(pages: Optional[Iterable[Any]], total_pages: int) -> list[tuple[int, str]]:
    """Validate user-approved page text. Returns (page_number, text) pairs in order."""
    items = []
    for item in pages or []:
        data = item.to_dict() if isinstance(item, StoryPage) else dict(item)
        items.append((data.get("page_number"), (data.get("text") or "").strip()))

    if len(items) != total_pages:
        raise ValidationError({"pages": f"Expected {total_pages} pages, got {len(items)}"})

    items.sort(key=lambda pair: pair[0] if isinstance(pair[0], int) else 0)
    errors: dict[str, str] = {}
    if [number for number, _ in items] != list(range(1, total_pages + 1)):
        errors["pages"] = f"Page numbers must be 1..{total_pages} without gaps"
    for number, text in items:
        if len(text) < MIN_PAGE_TEXT_LENGTH:
            errors[f"pages[{number}].text"] = f"Page text must be at least {MIN_PAGE_TEXT_LENGTH} characters"

    if errors:
        raise ValidationError(errors)
    return items


def check_page_count(status: StoryStatus, pages: list, total_pages: int) -> bool:
    """Whether the page list satisfies the page-count invariant for this status."""
    if coerce_status(status) not in PAGED_STATUSES:
        return True
    return len(pages) == total_pages


# =============================================================================
# STEP EDITS
# =============================================================================

# Fields a step edit may change, with their minimum lengths
STEP_EDITABLE_FIELDS = {
    "title": MIN_TITLE_LENGTH,
    "setting": MIN_SETTING_LENGTH,
    "characters": MIN_CHARACTERS_LENGTH,
    "plot": MIN_PLOT_LENGTH,
    "expanded_setting": MIN_EXPANDED_SETTING_LENGTH,
}


def validate_step_updates(updates: Optional[dict]) -> dict:
    """Validate the editable fields of a step edit. Unknown keys are rejected."""
    updates = updates or {}
    errors: dict[str, str] = {}
    for key in updates:
        if key not in STEP_EDITABLE_FIELDS:
            errors[key] = "Field cannot be edited"
    for key, minimum in STEP_EDITABLE_FIELDS.items():
        if key in updates:
            _min_length(errors, updates, key, minimum, key.replace("_", " ").capitalize())
    if errors:
        raise ValidationError(errors)
    return {key: _text(updates, key) for key in updates}


def clear_after_step(story, step: str) -> None:
    """Drop the data produced by the steps after ``step``.

    At the ``review`` step pages stay and their image history is kept with
    every version deactivated. Earlier steps drop the pages along with their
    history; the checkpoint revision written before the edit still holds it.
    """
    index = STEPS.index(step)
    if index < STEPS.index("setting"):
        story.expanded_setting = None
    if index < STEPS.index("characters"):
        story.extracted_characters = []
    if index < STEPS.index("review"):
        story.pages = []
    if index < STEPS.index("images"):
        story.core_image_url = None
        for character in story.extracted_characters:
            character.image_url = None
        for page in story.pages:
            for version in page.image_history:
                version.is_active = False
            page.image_url = None
            page.image_prompt = None
