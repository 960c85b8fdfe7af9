"""
Configuration settings for the Story Studio generation service.
"""

from dataclasses import dataclass, field
import os

# Default models
DEFAULT_TEXT_MODEL = "openai/gpt-4o"
DEFAULT_IMAGE_MODEL = "google/gemini-2.5-flash-image"

# Placeholder host used by the offline fallback
DEMO_IMAGE_HOST = "https://placehold.co"

from dotenv import load_dotenv

load_dotenv()


@dataclass
class ProviderConfig:
    """Configuration for the OpenRouter generation provider."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    base_url: str = field(
        default_factory=lambda: os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    )
    text_model: str = field(default_factory=lambda: os.getenv("TEXT_MODEL", DEFAULT_TEXT_MODEL))
    image_model: str = field(default_factory=lambda: os.getenv("IMAGE_MODEL", DEFAULT_IMAGE_MODEL))
    max_tokens: int = 4000
    temperature: float = 0.8  # Creative but controlled

    # Per-call timeouts (seconds); a timeout switches that call to offline mode
    text_timeout: float = 60.0
    image_timeout: float = 120.0

    # Retry policy for transient provider failures (5xx, dropped connections)
    max_attempts: int = 3
    backoff_base: float = 2.0

    # Force the offline fallback even when a key is configured
    offline: bool = field(
        default_factory=lambda: os.getenv("GENERATION_OFFLINE", "").lower() == "true"
    )

    def validate(self) -> bool:
        """Check if API key is configured."""
        return bool(self.api_key)

    @property
    def live_enabled(self) -> bool:
        return self.validate() and not self.offline
