"""
Progress stream websocket.

Clients connect to ``/api/v1/ws`` and subscribe per story:

    {"action": "subscribe", "storyId": "..."}
    {"action": "unsubscribe", "storyId": "..."}

Stage events are forwarded as ``{"type", "storyId", "data"}``. Delivery is
best effort with no replay; after a reconnect the client subscribes again.
"""

import asyncio
import logging
import os
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.core.errors import StoryNotFound
from src.core.events import EventBus, Subscription
from src.services.story_workflow import StoryWorkflow, get_story_workflow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Progress"])

# Fixed UUID for local development when auth is not configured
_DEV_USER_ID = "00000000-0000-0000-0000-000000000000"


def _websocket_user_id(websocket: WebSocket) -> Optional[str]:
    user_id = websocket.headers.get("X-User-Id") or websocket.query_params.get("user_id")
    if user_id:
        return user_id
    if not os.getenv("DATABASE_URL"):
        return _DEV_USER_ID
    return None


class ProgressConnection:
    """One websocket client and its per-story subscriptions."""

    def __init__(self, websocket: WebSocket, bus: EventBus, workflow: StoryWorkflow, user_id: str):
        self.websocket = websocket
        self.bus = bus
        self.workflow = workflow
        self.user_id = user_id
        self._subscriptions: dict[str, tuple[Subscription, asyncio.Task]] = {}
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def _forward(self, subscription: Subscription) -> None:
        while True:
            event = await subscription.get()
            try:
                await self.send(event.to_message())
            except (WebSocketDisconnect, RuntimeError) as e:
                # Socket closed under us; the receive loop drops the subscription
                logger.debug(f"[{subscription.story_id}] Progress forward stopped: {e!r}")
                return

    async def subscribe(self, story_id: str) -> None:
        if story_id in self._subscriptions:
            await self.send({"type": "subscribed", "storyId": story_id})
            return
        try:
            await self.workflow.get_story_for_user(story_id, self.user_id)
        except StoryNotFound as e:
            await self.send({"type": "error", "storyId": story_id, "error": e.message})
            return

        subscription = self.bus.subscribe(story_id)
        task = asyncio.create_task(self._forward(subscription))
        self._subscriptions[story_id] = (subscription, task)
        logger.info(f"[{story_id}] Progress observer subscribed")
        await self.send({"type": "subscribed", "storyId": story_id})

    async def unsubscribe(self, story_id: str) -> None:
        entry = self._subscriptions.pop(story_id, None)
        if entry:
            subscription, task = entry
            self.bus.unsubscribe(subscription)
            task.cancel()
        await self.send({"type": "unsubscribed", "storyId": story_id})

    async def handle(self, message: dict) -> None:
        action = message.get("action") or message.get("type")
        story_id = message.get("storyId")
        if action not in ("subscribe", "unsubscribe") or not isinstance(story_id, str) or not story_id:
            await self.send({"type": "error", "error": "Expected {action: subscribe|unsubscribe, storyId}"})
            return
        if action == "subscribe":
            await self.subscribe(story_id)
        else:
            await self.unsubscribe(story_id)

    def close(self) -> None:
        for subscription, task in self._subscriptions.values():
            self.bus.unsubscribe(subscription)
            task.cancel()
        self._subscriptions.clear()


@router.websocket("/ws")
async def progress_stream(websocket: WebSocket) -> None:
    user_id = _websocket_user_id(websocket)
    if user_id is None:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    workflow = get_story_workflow()
    connection = ProgressConnection(websocket, workflow.orchestrator.bus, workflow, user_id)
    await connection.send({"type": "connection_established"})

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await connection.send({"type": "error", "error": "Invalid JSON"})
                continue
            if isinstance(message, dict):
                await connection.handle(message)
            else:
                await connection.send({"type": "error", "error": "Expected a JSON object"})
    except WebSocketDisconnect:
        logger.debug("Progress websocket disconnected")
    finally:
        connection.close()
