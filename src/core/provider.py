"""
Generation provider adapter.

OpenRouterClient talks to the OpenRouter chat completions API (text, and
images through the image modality). ProviderAdapter exposes one method per
generation capability, validates each result, and falls back to the
deterministic offline content per call when no credential is configured or
the live call times out or runs out of quota. Every result is wrapped in
``Generated`` with an explicit ``mode``.
"""

import base64
import io
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, Optional, TypeVar

import httpx
from PIL import Image

from src.core import demo_content
from src.core.config import ProviderConfig
from src.core.errors import GenerationFailed, PageCountMismatch
from src.core.models import Character
from src.core.prompts import (
    SETTING_EXPANSION_SYSTEM,
    STORY_TEXT_SYSTEM,
    MalformedOutput,
    build_character_extraction_prompt,
    build_character_image_prompt,
    build_core_image_prompt,
    build_page_image_prompt,
    build_setting_expansion_prompt,
    build_story_text_prompt,
    get_character_extraction_response_format,
    get_story_text_response_format,
    parse_character_extraction_response,
    parse_setting_expansion_response,
    parse_story_text_response,
)
from src.core.retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

LIVE = "live"
OFFLINE = "offline"

TIMEOUT_STATUS_CODES = (408, 504)
QUOTA_STATUS_CODES = (402, 429)


# =============================================================================
# ERRORS
# =============================================================================


class ProviderError(Exception):
    """A provider call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderTimeout(ProviderError):
    """The call timed out. Triggers the offline fallback."""


class ProviderQuotaExceeded(ProviderError):
    """Rate limit or credit exhaustion. Triggers the offline fallback."""


class ProviderUnavailable(ProviderError):
    """Transient failure (5xx, dropped connection). Retried before surfacing."""


class ProviderRejected(ProviderError):
    """The provider refused the request (other 4xx)."""


def classify_status(status_code: int, message: str) -> ProviderError:
    """Map an HTTP status code to the matching provider error."""
    if status_code in TIMEOUT_STATUS_CODES:
        return ProviderTimeout(message, status_code)
    if status_code in QUOTA_STATUS_CODES:
        return ProviderQuotaExceeded(message, status_code)
    if status_code >= 500:
        return ProviderUnavailable(message, status_code)
    return ProviderRejected(message, status_code)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class Generated(Generic[T]):
    """Generated content plus the mode that produced it."""
    value: T
    mode: str = LIVE

    @property
    def is_offline(self) -> bool:
        return self.mode == OFFLINE


@dataclass
class ProviderImage:
    """An image as returned by the provider.

    ``url`` is a data URL, a remote URL, or an offline placeholder URL.
    ``data`` holds the decoded bytes when the provider returned them inline.
    """
    url: str
    prompt: Optional[str] = None
    data: Optional[bytes] = None
    content_type: str = "image/png"


def decode_image_data_url(data_url: str) -> tuple[bytes, str]:
    """
    Decode a base64 data URL and check that the bytes are an image.

    Returns:
        Tuple of (raw bytes, detected MIME type). The bytes are returned as-is.

    Raises:
        MalformedOutput: if the URL is not base64 or the bytes do not decode
    """
    if not data_url.startswith("data:") or "," not in data_url:
        raise MalformedOutput(f"Invalid image data URL: {data_url[:60]}")

    _header, encoded = data_url.split(",", 1)
    try:
        raw = base64.b64decode(encoded, validate=True)
    except ValueError as e:
        raise MalformedOutput(f"Invalid base64 image data: {e}") from e

    try:
        img = Image.open(io.BytesIO(raw))
        image_format = img.format
        img.verify()
    except Exception as e:
        raise MalformedOutput(f"Image validation failed: {e}") from e

    return raw, Image.MIME.get(image_format, "image/png")


def _is_absolute_reference(ref: str) -> bool:
    return ref.startswith(("http://", "https://", "data:"))


# =============================================================================
# OPENROUTER CLIENT
# =============================================================================


class OpenRouterClient:
    """Client for OpenRouter chat completions (text and image modality).

    Reuses a single httpx.AsyncClient across requests. Call ``close()`` on
    shutdown.
    """

    def __init__(self, config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://github.com/story-studio",
            "X-Title": "Story Studio"
        }
        self._client = http_client or httpx.AsyncClient()
        self.retry_policy = RetryPolicy(
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
            retry_on=(ProviderUnavailable,),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post_once(self, payload: dict, timeout: float) -> dict:
        try:
            response = await self._client.post(
                f"{self.config.base_url}/chat/completions",
                headers=self.headers,
                json=payload,
                timeout=timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Request timed out after {timeout:.0f}s: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise classify_status(status, f"API error: {status} - {e.response.text[:500]}") from e
        except httpx.RequestError as e:
            raise ProviderUnavailable(f"Request failed: {e}") from e
        except ValueError as e:
            raise MalformedOutput(f"Response is not JSON: {e}") from e

        # OpenRouter can report upstream errors inside a 200 body
        error = data.get("error") if isinstance(data, dict) else None
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if isinstance(code, int):
                raise classify_status(code, f"API error: {code} - {message}")
            raise ProviderUnavailable(f"API error: {message}")

        if not isinstance(data, dict) or not data.get("choices"):
            raise MalformedOutput("Response has no choices")
        return data

    async def _post(self, payload: dict, timeout: float) -> dict:
        return await self.retry_policy.call(
            self._post_once, payload, timeout, label=f"OpenRouter {payload['model']}"
        )

    async def complete_text(
        self,
        prompt: str,
        system: Optional[str] = None,
        response_format: Optional[dict] = None,
    ) -> str:
        """Run a chat completion and return the message content."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.config.text_model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if response_format:
            payload["response_format"] = response_format

        data = await self._post(payload, self.config.text_timeout)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedOutput(f"Invalid response format: {e}") from e
        if not isinstance(content, str) or not content.strip():
            raise MalformedOutput("Empty completion")

        tokens = (data.get("usage") or {}).get("total_tokens", 0)
        logger.debug(f"Text completion used {tokens} tokens")
        return content.strip()

    async def generate_image(self, prompt: str, references: Iterable[str] = ()) -> ProviderImage:
        """Generate an image, optionally conditioned on reference images."""
        content: list[dict] = [{"type": "text", "text": f"Generate an image: {prompt}"}]
        for ref in references:
            content.append({"type": "image_url", "image_url": {"url": ref}})

        payload = {
            "model": self.config.image_model,
            "messages": [{"role": "user", "content": content}],
            "modalities": ["image", "text"],
        }

        data = await self._post(payload, self.config.image_timeout)
        message = data["choices"][0].get("message") or {}
        images = message.get("images") or []
        url = images[0].get("image_url", {}).get("url", "") if images else ""

        if not url:
            logger.warning(f"No image in response. Message keys: {list(message.keys())}")
            raise MalformedOutput("No image in response")

        if url.startswith("data:"):
            raw, content_type = decode_image_data_url(url)
            return ProviderImage(url=url, prompt=prompt, data=raw, content_type=content_type)
        if url.startswith(("http://", "https://")):
            return ProviderImage(url=url, prompt=prompt)
        raise MalformedOutput(f"Invalid image URL format: {url[:100]}")


# =============================================================================
# ADAPTER
# =============================================================================


class ProviderAdapter:
    """Capability interface over the live client and the offline fallback."""

    def __init__(self, config: Optional[ProviderConfig] = None, client: Optional[OpenRouterClient] = None):
        self.config = config or ProviderConfig()
        self.client = client or OpenRouterClient(self.config)

    @property
    def live_enabled(self) -> bool:
        return self.config.live_enabled

    async def close(self) -> None:
        await self.client.close()

    async def _run(
        self,
        stage: str,
        live: Callable[[], Awaitable[T]],
        offline: Callable[[], T],
    ) -> Generated[T]:
        """Run one call live, or offline when the live path is unavailable."""
        if not self.live_enabled:
            return Generated(offline(), OFFLINE)

        try:
            return Generated(await live(), LIVE)
        except (ProviderTimeout, ProviderQuotaExceeded) as e:
            logger.warning(f"{stage}: {type(e).__name__} ({e}), using offline content")
            return Generated(offline(), OFFLINE)
        except ProviderError as e:
            raise GenerationFailed(f"{stage} failed: {e}", stage=stage) from e
        except MalformedOutput as e:
            raise GenerationFailed(f"{stage} returned malformed output: {e}", stage=stage) from e

    async def expand_setting(self, setting: str, characters: str, plot: str, age_group: str) -> Generated[str]:
        async def live() -> str:
            prompt = build_setting_expansion_prompt(setting, characters, plot, age_group)
            content = await self.client.complete_text(prompt, system=SETTING_EXPANSION_SYSTEM)
            return parse_setting_expansion_response(content)

        return await self._run(
            "expand_setting", live,
            lambda: demo_content.demo_expanded_setting(setting, characters, plot),
        )

    async def extract_characters(self, characters: str, setting: str, plot: str) -> Generated[list[Character]]:
        async def live() -> list[Character]:
            content = await self.client.complete_text(
                build_character_extraction_prompt(characters, setting, plot),
                response_format=get_character_extraction_response_format(),
            )
            return parse_character_extraction_response(content)

        return await self._run(
            "extract_characters", live,
            lambda: demo_content.demo_characters(characters, setting),
        )

    async def generate_story_text(
        self,
        setting: str,
        characters: str,
        plot: str,
        age_group: str,
        total_pages: int,
    ) -> Generated[dict]:
        """
        Draft the story text.

        Returns:
            Generated dict with "title" and "pages" (page_number, text)

        Raises:
            PageCountMismatch: if the provider returned the wrong number of pages
        """
        async def live() -> dict:
            content = await self.client.complete_text(
                build_story_text_prompt(setting, characters, plot, age_group, total_pages),
                system=STORY_TEXT_SYSTEM,
                response_format=get_story_text_response_format(),
            )
            return parse_story_text_response(content)

        result = await self._run(
            "generate_story_text", live,
            lambda: demo_content.demo_story_text(setting, characters, plot, age_group, total_pages),
        )
        if len(result.value["pages"]) != total_pages:
            raise PageCountMismatch(total_pages, len(result.value["pages"]), stage="generate_story_text")
        return result

    async def _image(
        self,
        stage: str,
        prompt: str,
        references: Iterable[Optional[str]],
        offline_url: Callable[[], str],
    ) -> Generated[ProviderImage]:
        usable = [ref for ref in references if ref and _is_absolute_reference(ref)]
        return await self._run(
            stage,
            lambda: self.client.generate_image(prompt, usable),
            lambda: ProviderImage(url=offline_url(), prompt=prompt),
        )

    async def generate_core_image(
        self,
        setting: str,
        characters: str,
        prompt: Optional[str] = None,
        references: Iterable[Optional[str]] = (),
    ) -> Generated[ProviderImage]:
        return await self._image(
            "generate_core_image",
            prompt or build_core_image_prompt(setting, characters),
            references,
            lambda: demo_content.demo_core_image_url(setting, characters),
        )

    async def generate_page_image(
        self,
        page_text: str,
        page_number: int,
        core_image_ref: Optional[str] = None,
        previous_page_image_ref: Optional[str] = None,
        setting: Optional[str] = None,
        characters: Optional[str] = None,
        prompt: Optional[str] = None,
        extra_references: Iterable[Optional[str]] = (),
    ) -> Generated[ProviderImage]:
        """
        Illustrate one page.

        The core image and the previous page's image are passed as references
        so character designs stay consistent across pages.
        """
        if prompt is None:
            prompt = build_page_image_prompt(
                page_text,
                has_previous_page=bool(previous_page_image_ref),
                setting=setting,
                characters=characters,
            )
        return await self._image(
            f"generate_page_image[{page_number}]",
            prompt,
            [core_image_ref, previous_page_image_ref, *extra_references],
            lambda: demo_content.demo_page_image_url(page_number, page_text),
        )

    async def generate_character_image(
        self,
        character: Character,
        setting: str,
        core_image_ref: Optional[str] = None,
    ) -> Generated[ProviderImage]:
        return await self._image(
            f"generate_character_image[{character.name}]",
            build_character_image_prompt(character, setting),
            [core_image_ref],
            lambda: demo_content.demo_character_image_url(character),
        )
