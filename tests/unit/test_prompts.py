"""Tests for prompt builders and response parsers."""

import json

import pytest

from src.core.models import Character
from src.core.prompts import (
    DEFAULT_REGENERATION_REQUEST,
    MalformedOutput,
    build_character_image_prompt,
    build_page_image_prompt,
    build_regeneration_prompt,
    build_story_text_prompt,
    format_character_list,
    get_story_text_response_format,
    parse_character_extraction_response,
    parse_setting_expansion_response,
    parse_story_text_response,
)


class TestStoryTextPrompt:
    def test_includes_inputs_and_page_count(self):
        prompt = build_story_text_prompt("A harbor town", "Luna - a bunny", "Relight the lantern", "3-5", 8)
        assert "exactly 8 pages" in prompt
        assert "ages 3-5" in prompt
        assert "very short, simple sentences" in prompt
        assert "Luna - a bunny" in prompt

    def test_unknown_age_group_uses_default_guidance(self):
        prompt = build_story_text_prompt("harbor", "Luna", "plot", "13-15", 5)
        assert "short paragraphs" in prompt

    def test_response_format(self):
        fmt = get_story_text_response_format()
        assert fmt["type"] == "json_schema"
        assert fmt["json_schema"]["schema"]["required"] == ["title", "pages"]


class TestParseStoryText:
    def test_renumbers_pages(self):
        response = json.dumps({
            "title": " Luna's Lantern ",
            "pages": [{"page_number": 4, "text": "First."}, {"page_number": 9, "text": "Second."}],
        })
        result = parse_story_text_response(response)
        assert result == {
            "title": "Luna's Lantern",
            "pages": [{"page_number": 1, "text": "First."}, {"page_number": 2, "text": "Second."}],
        }

    def test_tolerates_markdown_fences(self):
        response = '```json\n{"title": "T", "pages": ["One.", "Two."]}\n```'
        result = parse_story_text_response(response)
        assert [p["text"] for p in result["pages"]] == ["One.", "Two."]

    @pytest.mark.parametrize(
        "response",
        [
            "no json here",
            '{"title": "", "pages": []}',
            '{"title": "T", "pages": "one"}',
            '{"title": "T", "pages": [{"text": "  "}]}',
            "[1, 2, 3]",
        ],
    )
    def test_malformed(self, response):
        with pytest.raises(MalformedOutput):
            parse_story_text_response(response)


class TestParseCharacters:
    def test_skips_incomplete_entries(self):
        response = json.dumps({
            "characters": [
                {"name": "Luna", "description": "A brave bunny"},
                {"name": "Nobody"},
                "junk",
            ]
        })
        assert parse_character_extraction_response(response) == [
            Character(name="Luna", description="A brave bunny")
        ]

    def test_no_usable_characters(self):
        with pytest.raises(MalformedOutput):
            parse_character_extraction_response('{"characters": []}')

    def test_setting_must_not_be_empty(self):
        with pytest.raises(MalformedOutput):
            parse_setting_expansion_response("   ")


class TestImagePrompts:
    def test_page_prompt_context(self):
        prompt = build_page_image_prompt("Luna hops.", setting="harbor", characters="Luna - bunny")
        assert "Setting: harbor" in prompt
        assert "previous page" not in prompt

    def test_page_prompt_continuity(self):
        assert "previous page" in build_page_image_prompt("Luna hops.", has_previous_page=True)

    def test_character_prompt(self):
        prompt = build_character_image_prompt(Character(name="Max", description="A wise owl"), "harbor")
        assert "Character: Max" in prompt
        assert "No text or words" in prompt

    def test_format_character_list(self):
        characters = [Character(name="Luna", description="bunny"), Character(name="Max", description="owl")]
        assert format_character_list(characters) == "Luna - bunny, Max - owl"
        assert format_character_list([], "fallback") == "fallback"


class TestRegenerationPrompt:
    def test_base_only(self):
        assert build_regeneration_prompt("base") == "base"

    def test_custom_instructions(self):
        assert build_regeneration_prompt("base", "make it night") == (
            "base\n\nAdditional instructions: make it night"
        )

    def test_current_image_reference_adds_consistency_rules(self):
        prompt = build_regeneration_prompt("base", None, use_current_image_as_reference=True)
        assert DEFAULT_REGENERATION_REQUEST in prompt
        assert "CRITICAL REGENERATION INSTRUCTIONS" in prompt

        custom = build_regeneration_prompt("base", "add a rainbow", use_current_image_as_reference=True)
        assert "add a rainbow" in custom
        assert DEFAULT_REGENERATION_REQUEST not in custom
