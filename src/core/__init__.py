"""
Core story generation modules.
"""

from src.core.config import ProviderConfig
from src.core.errors import WorkflowError
from src.core.events import EventBus, ProgressEvent, get_event_bus
from src.core.models import Character, ImageVersion, Story, StoryPage, StoryRevision, StoryStatus
from src.core.provider import Generated, ProviderAdapter
from src.core.workflow import WorkflowEvent

__all__ = [
    "ProviderConfig",
    "WorkflowError",
    "EventBus",
    "ProgressEvent",
    "get_event_bus",
    "Character",
    "ImageVersion",
    "Story",
    "StoryPage",
    "StoryRevision",
    "StoryStatus",
    "Generated",
    "ProviderAdapter",
    "WorkflowEvent",
]
