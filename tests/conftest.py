"""Root-level test fixtures."""

import pytest

from src.core.config import ProviderConfig
from src.core.events import EventBus
from src.core.models import Character, ImageVersion, Story, StoryPage, StoryStatus
from src.core.provider import ProviderAdapter
from src.core.storage import ImagePublisher
from src.services.orchestrator import GenerationOrchestrator
from src.services.story_store import InMemoryStoryStore
from src.services.story_workflow import StoryWorkflow


USER_ID = "00000000-0000-0000-0000-000000000001"


# Ensure no real API keys leak into tests
@pytest.fixture(autouse=True)
def _clear_env_keys(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("GENERATION_OFFLINE", raising=False)
    monkeypatch.delenv("API_SECRET_KEY", raising=False)
    for var in ("R2_ACCOUNT_ID", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_BUCKET_NAME"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def story_payload():
    return {
        "title": "Luna's Lantern",
        "setting": "A quiet seaside village with a tall striped lighthouse",
        "characters": "Luna - a brave little bunny with a red scarf, Max - a wise old owl who loves maps",
        "plot": "Luna and Max must relight the lighthouse lantern before the storm arrives",
        "age_group": "6-8",
        "total_pages": 5,
    }


@pytest.fixture
def offline_adapter():
    return ProviderAdapter(ProviderConfig(api_key=""))


@pytest.fixture
def store():
    return InMemoryStoryStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def orchestrator(store, offline_adapter, bus):
    return GenerationOrchestrator(store=store, adapter=offline_adapter, bus=bus, publisher=ImagePublisher())


@pytest.fixture
def workflow(orchestrator):
    return StoryWorkflow(orchestrator)


def _make_story(
    status: StoryStatus = StoryStatus.TEXT_APPROVED,
    total_pages: int = 5,
    with_images: bool = False,
    characters: int = 1,
) -> Story:
    """Build a story at the given status with consistent content."""
    story = Story(
        user_id=USER_ID,
        title="Luna's Lantern",
        setting="A quiet seaside village with a tall striped lighthouse",
        characters="Luna - a brave little bunny with a red scarf",
        plot="Luna must relight the lighthouse lantern before the storm arrives",
        age_group="6-8",
        total_pages=total_pages,
        status=status,
    )
    if status != StoryStatus.DRAFT:
        story.expanded_setting = "A quiet seaside village where gulls sing and boats bob in the harbor"
    if status not in (StoryStatus.DRAFT, StoryStatus.SETTING_EXPANSION):
        story.extracted_characters = [
            Character(name=f"Character {i}", description="A brave little bunny with a red scarf")
            for i in range(1, characters + 1)
        ]
    if status in (StoryStatus.TEXT_APPROVED, StoryStatus.GENERATING_IMAGES, StoryStatus.COMPLETED):
        story.pages = [
            StoryPage(page_number=n, text=f"Page {n}: Luna hops along the windy harbor path toward the lighthouse.")
            for n in range(1, total_pages + 1)
        ]
    if with_images:
        story.core_image_url = "https://cdn.example.com/core.png"
        for page in story.pages:
            version = ImageVersion(url=f"https://cdn.example.com/page-{page.page_number}.png", prompt="first", is_active=True)
            page.image_history = [version]
            page.image_url = version.url
            page.image_prompt = version.prompt
    return story


def _drain(subscription) -> list:
    """Return every event currently queued on a subscription."""
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


@pytest.fixture
def make_story():
    return _make_story


@pytest.fixture
def drain():
    return _drain


@pytest.fixture
def saved_story(store, make_story):
    """Factory: persist a story built by make_story and return it."""
    async def _save(**kwargs) -> Story:
        return await store.create_story(make_story(**kwargs))
    return _save


@pytest.fixture
def user_id():
    return USER_ID
