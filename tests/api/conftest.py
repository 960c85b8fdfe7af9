"""API-specific test fixtures."""

import pytest
from unittest.mock import AsyncMock, patch

from httpx import AsyncClient, ASGITransport

from src.api.app import app
from src.api.rate_limit import limiter
from src.services.story_workflow import set_story_workflow


@pytest.fixture
def api_workflow(workflow):
    """Route the app's workflow dependency to the offline test workflow."""
    set_story_workflow(workflow)
    enabled = limiter.enabled
    limiter.enabled = False
    yield workflow
    limiter.enabled = enabled
    limiter.reset()
    set_story_workflow(None)
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(api_workflow, user_id):
    """Async test client for FastAPI, authenticated as the test user."""
    # Patch database initialization to avoid real DB connections
    with (
        patch("src.api.app.init_db", new_callable=AsyncMock),
        patch("src.api.app.close_db", new_callable=AsyncMock),
    ):
        transport = ASGITransport(app=app)
        async with AsyncClient(
            transport=transport,
            base_url="http://test",
            headers={"X-User-Id": user_id},
        ) as client:
            yield client
