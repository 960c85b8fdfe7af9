"""
Deterministic offline content.

Used when no provider credential is configured, or when a live call times
out or runs out of quota. The same inputs always produce the same output,
so offline stories are reproducible in tests and demos.
"""

import re
from urllib.parse import quote

from src.core.config import DEMO_IMAGE_HOST
from src.core.models import Character

MAX_DEMO_CHARACTERS = 6


def _setting_tail(setting: str) -> str:
    return " ".join(setting.split()[-2:])


def _placeholder_url(color: str, text: str) -> str:
    return f"{DEMO_IMAGE_HOST}/1024x1024/{color}/FFFFFF/png?text={quote(text)}"


def _first_sentences(text: str, count: int) -> str:
    sentences = [s.strip() for s in text.split(".") if s.strip()]
    return ". ".join(sentences[:count]) + "."


def demo_expanded_setting(setting: str, characters: str, plot: str) -> str:
    return (
        f"{setting.strip().rstrip('.')}. It is a bright and welcoming place full of "
        f"gentle sounds, friendly faces and little surprises around every corner. "
        f"This is where {characters.strip().rstrip('.')} live, and where a new "
        f"adventure is about to begin: {plot.strip().rstrip('.')}."
    )


def demo_characters(characters: str, setting: str) -> list[Character]:
    """Split the author's free-text character list into Character entries."""
    chunks = re.split(r"[,;\n]+|\band\b", characters)
    result: list[Character] = []
    for chunk in chunks:
        chunk = chunk.strip(" .")
        if not chunk:
            continue

        if " - " in chunk or ":" in chunk:
            name, _, description = re.split(r"( - |:)", chunk, maxsplit=1)
            name, description = name.strip(), description.strip()
        else:
            name, description = chunk, ""

        if len(description) < 10:
            description = f"{chunk}, a cheerful friend who lives in {_setting_tail(setting)}"

        result.append(Character(name=name[:1].upper() + name[1:], description=description))
        if len(result) == MAX_DEMO_CHARACTERS:
            break

    if not result:
        result.append(Character(
            name="Hero",
            description=f"A curious young adventurer from {_setting_tail(setting)}",
        ))
    return result


def demo_story_text(
    setting: str,
    characters: str,
    plot: str,
    age_group: str,
    total_pages: int,
) -> dict:
    """Build a templated story with exactly ``total_pages`` pages."""
    title = f"The Amazing Adventure in {_setting_tail(setting)}"
    pages = []
    for number in range(1, total_pages + 1):
        if number == 1:
            text = (
                f"Once upon a time, in {setting}, there lived {characters}. "
                f"They were about to embark on the most exciting adventure of their lives!"
            )
        elif number == total_pages:
            text = (
                f"After their incredible journey, {characters} returned home as heroes. "
                f"They had learned valuable lessons about friendship, courage, and believing "
                f"in themselves. The end!"
            )
        elif number == 2:
            text = (
                f"{characters} discovered something magical in {setting}. "
                f"{plot.rstrip('.')} was just beginning, and they could hardly contain their excitement."
            )
        elif number == 3:
            text = (
                f"As {characters} ventured deeper into their quest, they faced their first "
                f"challenge. But with courage and friendship, they knew they could overcome anything."
            )
        else:
            text = (
                f"{characters} continued their amazing adventure in {setting}. "
                f"Every step brought new surprises and helped them grow stronger and wiser."
            )

        if age_group == "3-5":
            text = _first_sentences(text, 2)
        pages.append({"page_number": number, "text": text})

    return {"title": title, "pages": pages}


def demo_core_image_url(setting: str, characters: str) -> str:
    return _placeholder_url("4F46E5", f"Core Image: {characters} in {_setting_tail(setting)}")


def demo_page_image_url(page_number: int, page_text: str) -> str:
    short_text = " ".join(page_text.split()[:3])
    return _placeholder_url("EC4899", f"Page {page_number}: {short_text}...")


def demo_character_image_url(character: Character) -> str:
    return _placeholder_url("10B981", f"Character: {character.name}")
