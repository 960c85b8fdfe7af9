"""
Prompt templates for story generation stages.

This module centralizes the prompts sent to the text and image models:
setting expansion, character extraction, story drafting and illustration.
"""

import json
import logging
import re
from typing import Optional

from src.core.models import Character

logger = logging.getLogger(__name__)


class MalformedOutput(ValueError):
    """Model output could not be parsed into the expected structure."""


AGE_GROUP_GUIDANCE = {
    "3-5": "very short, simple sentences and familiar words; gentle and reassuring",
    "6-8": "short paragraphs, simple dialogue and a little gentle suspense",
    "9-12": "richer vocabulary, dialogue and a clear story arc with a satisfying ending",
}

IMAGE_STYLE = (
    "Bright, vibrant colors, cartoonish and friendly children's book art style, "
    "clear well-defined characters and environment, high quality digital illustration"
)

NO_TEXT_RULES = "No text or words in the image. Safe and wholesome content only."


def _age_guidance(age_group: str) -> str:
    return AGE_GROUP_GUIDANCE.get(age_group, AGE_GROUP_GUIDANCE["6-8"])


def _load_json(response_text: str) -> dict:
    """Parse a JSON object, tolerating markdown fences around it."""
    text = response_text.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        json_match = re.search(r'\{[\s\S]*\}', text)
        if not json_match:
            raise MalformedOutput("No JSON object found in response")
        try:
            data = json.loads(json_match.group())
        except json.JSONDecodeError as e:
            raise MalformedOutput(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise MalformedOutput("Response is not a JSON object")
    return data


def format_character_list(characters: list[Character], fallback: str = "") -> str:
    if not characters:
        return fallback
    return ", ".join(f"{c.name} - {c.description}" for c in characters)


# =============================================================================
# SETTING EXPANSION
# =============================================================================

SETTING_EXPANSION_SYSTEM = (
    "You are a professional children's book author who builds vivid, "
    "age-appropriate story worlds."
)

SETTING_EXPANSION_TEMPLATE = """Expand the following story setting into a rich description for a children's story for ages {age_group}.

Setting: {setting}
Characters: {characters}
Plot: {plot}

Requirements:
- 2-3 short paragraphs describing places, sights, sounds and mood
- Keep it consistent with the characters and plot
- Language suitable for ages {age_group}: {guidance}
- Return only the description, no headings or preamble"""


def build_setting_expansion_prompt(setting: str, characters: str, plot: str, age_group: str) -> str:
    return SETTING_EXPANSION_TEMPLATE.format(
        setting=setting,
        characters=characters,
        plot=plot,
        age_group=age_group,
        guidance=_age_guidance(age_group),
    )


def parse_setting_expansion_response(response_text: str) -> str:
    text = response_text.strip()
    if not text:
        raise MalformedOutput("Empty setting description")
    return text


# =============================================================================
# CHARACTER EXTRACTION
# =============================================================================

CHARACTER_EXTRACTION_JSON_SCHEMA = {
    "name": "character_extraction",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "characters": {
                "type": "array",
                "description": "Main characters of the story",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Character name"},
                        "description": {
                            "type": "string",
                            "description": "Visual appearance and personality in one or two sentences",
                        },
                    },
                    "required": ["name", "description"],
                    "additionalProperties": False,
                },
            }
        },
        "required": ["characters"],
        "additionalProperties": False,
    },
}

CHARACTER_EXTRACTION_TEMPLATE = """Identify the main characters of this children's story and describe each one so an illustrator can draw them consistently.

Characters as written by the author: {characters}
Setting: {setting}
Plot: {plot}

For each character give the name and a description covering appearance (species, size, colors, clothing) and personality.
Return JSON: {{"characters": [{{"name": "...", "description": "..."}}]}}"""


def build_character_extraction_prompt(characters: str, setting: str, plot: str) -> str:
    return CHARACTER_EXTRACTION_TEMPLATE.format(characters=characters, setting=setting, plot=plot)


def get_character_extraction_response_format() -> dict:
    return {
        "type": "json_schema",
        "json_schema": CHARACTER_EXTRACTION_JSON_SCHEMA
    }


def parse_character_extraction_response(response_text: str) -> list[Character]:
    """
    Parse the extraction response into Character objects.

    Raises:
        MalformedOutput: if the JSON is invalid or no character is usable
    """
    data = _load_json(response_text)
    items = data.get("characters")
    if not isinstance(items, list):
        raise MalformedOutput("'characters' is not an array")

    characters = []
    for item in items:
        if isinstance(item, dict) and item.get("name") and item.get("description"):
            characters.append(Character(
                name=str(item["name"]).strip(),
                description=str(item["description"]).strip(),
            ))

    if not characters:
        raise MalformedOutput("No characters in response")
    return characters


# =============================================================================
# STORY TEXT
# =============================================================================

STORY_TEXT_SYSTEM = (
    "You are a professional children's book author who creates engaging, educational, "
    "and age-appropriate stories. Always respond with valid JSON in the exact format requested."
)

STORY_TEXT_JSON_SCHEMA = {
    "name": "story_text",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "Catchy, child-friendly title"},
            "pages": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "page_number": {"type": "integer"},
                        "text": {"type": "string"},
                    },
                    "required": ["page_number", "text"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["title", "pages"],
        "additionalProperties": False,
    },
}

STORY_TEXT_TEMPLATE = """Create a children's story suitable for ages {age_group}. The story must have exactly {total_pages} pages.

Setting: {setting}
Characters: {characters}
Plot: {plot}

Requirements:
- Each page should have 50-150 words of engaging text
- Writing style: {guidance}
- The story should be complete and satisfying
- Ensure the story flows naturally across all pages
- Generate a catchy, child-friendly title

Return JSON: {{"title": "...", "pages": [{{"page_number": 1, "text": "..."}}]}}"""


def build_story_text_prompt(
    setting: str,
    characters: str,
    plot: str,
    age_group: str,
    total_pages: int,
) -> str:
    return STORY_TEXT_TEMPLATE.format(
        setting=setting,
        characters=characters,
        plot=plot,
        age_group=age_group,
        total_pages=total_pages,
        guidance=_age_guidance(age_group),
    )


def get_story_text_response_format() -> dict:
    return {
        "type": "json_schema",
        "json_schema": STORY_TEXT_JSON_SCHEMA
    }


def parse_story_text_response(response_text: str) -> dict:
    """
    Parse the drafting response into ``{"title", "pages"}``.

    Pages are returned renumbered 1..N in the order given. The page count is
    checked by the caller, which knows the requested total.

    Raises:
        MalformedOutput: on invalid JSON, a missing title or empty page text
    """
    data = _load_json(response_text)
    title = str(data.get("title") or "").strip()
    pages = data.get("pages")

    if not title:
        raise MalformedOutput("Story response has no title")
    if not isinstance(pages, list):
        raise MalformedOutput("Story response 'pages' is not an array")

    normalized = []
    for index, page in enumerate(pages, start=1):
        text = page.get("text") if isinstance(page, dict) else page
        if not isinstance(text, str) or not text.strip():
            raise MalformedOutput(f"Page {index} has no text")
        normalized.append({"page_number": index, "text": text.strip()})

    return {"title": title, "pages": normalized}


# =============================================================================
# ILLUSTRATION PROMPTS
# =============================================================================

CORE_IMAGE_TEMPLATE = """Create a beautiful, child-friendly illustration showing the main characters and setting for a children's storybook.

Setting: {setting}
Characters: {characters}

Style: {style}.
{rules}"""

PAGE_IMAGE_TEMPLATE = """Create a beautiful children's book illustration for this page of text:

{page_text}

{context}Style: {style}.
- Maintain consistent character designs and art style with the core reference image
- Show the specific scene or action described in the text
{continuity}{rules}"""

CHARACTER_IMAGE_TEMPLATE = """Create a full-body character portrait for a children's storybook.

Character: {name}
Description: {description}
Setting: {setting}

Style: {style}. Plain, softly colored background.
{rules}"""

PREVIOUS_PAGE_CONTINUITY = "- Maintain visual consistency with the previous page illustration\n"

REGENERATION_INSTRUCTIONS = """

CRITICAL REGENERATION INSTRUCTIONS:
- You are regenerating an existing image that must keep visual consistency with the core story image and the current image
- Do NOT change the character designs, art style, or color palette established in the core image
- Do NOT drastically alter the composition or main elements unless specifically requested
- Make the specific changes requested while preserving everything else"""

DEFAULT_REGENERATION_REQUEST = (
    "Please regenerate this image keeping the same composition, style, and character "
    "designs while making minor improvements or adjustments."
)


def build_core_image_prompt(setting: str, characters: str) -> str:
    return CORE_IMAGE_TEMPLATE.format(
        setting=setting,
        characters=characters,
        style=IMAGE_STYLE,
        rules=NO_TEXT_RULES,
    )


def build_page_image_prompt(
    page_text: str,
    has_previous_page: bool = False,
    setting: Optional[str] = None,
    characters: Optional[str] = None,
) -> str:
    """
    Build prompt for a story page illustration.

    Args:
        page_text: Text content of this page
        has_previous_page: Whether the previous page's image is sent as a reference
        setting: Optional setting description for context
        characters: Optional character descriptions for context
    """
    context = ""
    if setting and characters:
        context = f"Setting: {setting}\nCharacters: {characters}\n\n"
    return PAGE_IMAGE_TEMPLATE.format(
        page_text=page_text,
        context=context,
        style=IMAGE_STYLE,
        continuity=PREVIOUS_PAGE_CONTINUITY if has_previous_page else "",
        rules=NO_TEXT_RULES,
    )


def build_character_image_prompt(character: Character, setting: str) -> str:
    return CHARACTER_IMAGE_TEMPLATE.format(
        name=character.name,
        description=character.description,
        setting=setting,
        style=IMAGE_STYLE,
        rules=NO_TEXT_RULES,
    )


def build_regeneration_prompt(
    base_prompt: str,
    custom_prompt: Optional[str] = None,
    use_current_image_as_reference: bool = False,
) -> str:
    """
    Combine the stored prompt with a user's custom request.

    With ``use_current_image_as_reference`` the consistency instructions are
    appended, since the current image is sent along as a reference.
    """
    if use_current_image_as_reference:
        request = (custom_prompt or DEFAULT_REGENERATION_REQUEST) + REGENERATION_INSTRUCTIONS
        return f"{base_prompt}\n\n{request}"
    if custom_prompt:
        return f"{base_prompt}\n\nAdditional instructions: {custom_prompt}"
    return base_prompt
