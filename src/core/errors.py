"""
Error taxonomy for the story generation workflow.

Every error raised by the workflow, orchestrator and provider adapter derives
from WorkflowError so API handlers can map them in one place.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for workflow failures."""

    status_code: int = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StoryNotFound(WorkflowError):
    status_code = 404

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(f"Story not found: {story_id}")


class InvalidTransition(WorkflowError):
    """The story's current status does not accept the requested event."""

    status_code = 400

    def __init__(self, current_status: str, event: str):
        self.current_status = current_status
        self.event = event
        super().__init__(
            f"Cannot apply '{event}' to a story in status '{current_status}'"
        )


class ValidationError(WorkflowError):
    """Payload does not satisfy the stage's minimum-content rules."""

    status_code = 422

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        summary = "; ".join(f"{field}: {msg}" for field, msg in errors.items())
        super().__init__(f"Invalid input: {summary}")


class JobInProgress(WorkflowError):
    """Another generation job already holds this story."""

    status_code = 409

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(
            f"A generation job is already running for story {story_id}. Retry later."
        )


class GenerationFailed(WorkflowError):
    """Provider output was unusable or the provider call failed."""

    status_code = 502

    def __init__(self, message: str, stage: Optional[str] = None):
        self.stage = stage
        super().__init__(message)


class PageCountMismatch(GenerationFailed):
    def __init__(self, expected: int, actual: int, stage: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Provider returned {actual} pages, expected {expected}", stage=stage
        )


class VersionNotFound(WorkflowError):
    status_code = 404

    def __init__(self, message: str):
        super().__init__(message)


class RevisionNotFound(VersionNotFound):
    def __init__(self, story_id: str, revision_number: int):
        self.story_id = story_id
        self.revision_number = revision_number
        super().__init__(f"Revision {revision_number} not found for story {story_id}")
