"""
Per-story progress event bus.

Observers subscribe to a story id and receive events through a bounded
asyncio queue. Delivery is best effort and at most once: there is no
persistence or replay, and an observer whose queue is full misses events
instead of blocking the publisher. Within one story, events are delivered
in publish order.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

EVENT_KINDS = ("start", "progress", "complete", "error")

# Wire message types for each event kind
MESSAGE_TYPES = {
    "start": "image_generation_start",
    "progress": "image_generation_progress",
    "complete": "image_generation_complete",
    "error": "image_generation_error",
}

DEFAULT_QUEUE_SIZE = 100


@dataclass
class ProgressEvent:
    kind: str
    story_id: str
    stage: Optional[str] = None
    page_number: Optional[int] = None
    character_id: Optional[str] = None
    message: Optional[str] = None
    image_ref: Optional[str] = None
    error: Optional[str] = None
    mode: Optional[str] = None

    def __post_init__(self):
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {self.kind}")

    @property
    def is_terminal(self) -> bool:
        return self.kind in ("complete", "error")

    def to_message(self) -> dict[str, Any]:
        """Serialize as ``{type, storyId, data}`` for the progress stream."""
        data = {
            "stage": self.stage,
            "pageNumber": self.page_number,
            "characterId": self.character_id,
            "progress": self.message,
            "imageRef": self.image_ref,
            "error": self.error,
            "mode": self.mode,
        }
        return {
            "type": MESSAGE_TYPES[self.kind],
            "storyId": self.story_id,
            "data": {k: v for k, v in data.items() if v is not None},
        }


@dataclass(eq=False)
class Subscription:
    story_id: str
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(DEFAULT_QUEUE_SIZE))
    dropped: int = 0

    async def get(self) -> ProgressEvent:
        return await self.queue.get()


class EventBus:
    """Publish/subscribe hub keyed by story id."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: dict[str, set[Subscription]] = {}

    def subscribe(self, story_id: str) -> Subscription:
        subscription = Subscription(story_id=story_id, queue=asyncio.Queue(self._queue_size))
        self._subscribers.setdefault(story_id, set()).add(subscription)
        logger.debug(f"Subscribed to story {story_id} ({self.subscriber_count(story_id)} observers)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        observers = self._subscribers.get(subscription.story_id)
        if not observers:
            return
        observers.discard(subscription)
        if not observers:
            del self._subscribers[subscription.story_id]

    def subscriber_count(self, story_id: str) -> int:
        return len(self._subscribers.get(story_id, ()))

    def publish(self, event: ProgressEvent) -> int:
        """Deliver an event to the story's current observers. Returns delivery count."""
        delivered = 0
        for subscription in list(self._subscribers.get(event.story_id, ())):
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.warning(
                    f"[{event.story_id}] Observer queue full, dropped {event.kind} event"
                )
        return delivered


class StageReporter:
    """Publishes the start / progress / terminal events of one stage."""

    def __init__(self, bus: EventBus, story_id: str, stage: str):
        self.bus = bus
        self.story_id = story_id
        self.stage = stage
        self.finished = False

    def _emit(self, kind: str, **kwargs) -> None:
        self.bus.publish(ProgressEvent(kind=kind, story_id=self.story_id, stage=self.stage, **kwargs))

    def start(self, message: Optional[str] = None) -> None:
        self._emit("start", message=message)

    def progress(self, message: str, **kwargs) -> None:
        self._emit("progress", message=message, **kwargs)

    def complete(self, message: Optional[str] = None, **kwargs) -> None:
        if self.finished:
            return
        self.finished = True
        self._emit("complete", message=message, **kwargs)

    def fail(self, error: str, **kwargs) -> None:
        if self.finished:
            return
        self.finished = True
        self._emit("error", error=error, **kwargs)


_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Return the module-level event bus singleton."""
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus
