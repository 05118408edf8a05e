"""Tests for the lore extractor and its misplaced-entry detectors."""

import pytest

from storyteller.extraction.lore import (
    classify_misplaced,
    extract_lore,
    is_likely_character,
    is_likely_faction,
    is_likely_item,
)
from tests.conftest import completion


class TestDetectors:
    @pytest.mark.parametrize("title, content", [
        ("The Flaming Sword", "Forged in dragonfire."),
        ("A Silver Ring", "Worn by the queen."),
        ("The Wanderer", "A battered ship that crossed the sea."),
    ])
    def test_named_items(self, title, content):
        assert is_likely_item(title, content)

    def test_item_needs_a_named_title(self):
        assert not is_likely_item("sword techniques", "The art of the sword.")
        assert not is_likely_item("Swordsmanship", "How the sword is taught.")

    def test_factions(self):
        assert is_likely_faction("The Thieves Guild", "")
        assert is_likely_faction("The Iron Empire", "")
        assert not is_likely_faction("Guild customs", "")

    def test_characters(self):
        assert is_likely_character("Seamus", "A loyal companion to the hero.")
        assert is_likely_character("Old Friend", "Grimm the beast prowls the moor.")
        assert is_likely_character("Companions", "She owned a dog named Patch.")
        assert not is_likely_character("Seamus", "A word meaning home.")

    def test_real_lore_is_not_misplaced(self):
        assert classify_misplaced("The War of Ash", "A war that burned the eastern plains.") is None
        assert classify_misplaced("Rules of Binding", "Magic requires a spoken name.") is None

    def test_precedence(self):
        assert classify_misplaced("The Knights Blade", "A sword carried by the order.") == "item"
        assert classify_misplaced("The Knights of Dawn", "An order of knights.") == "faction"


class TestExtractLore:
    async def test_misplaced_entries_are_reported_and_dropped(self, fake_llm):
        fake_llm.complete_json.return_value = completion({
            "lore": [
                {"title": "The War of Ash", "content": "A war long ago.", "entry_type": "event",
                 "importance": 90},
                {"title": "The Flaming Sword", "content": "A legendary sword."},
                {"title": "The Thieves Guild", "content": "Rules the docks."},
                {"title": "Seamus", "content": "A loyal hound."},
                "garbage",
            ],
            "extraction_notes": "mostly history",
        }, total_tokens=321)

        result = await extract_lore("Once upon a time...", fake_llm)

        assert result.success
        assert [r.title for r in result.records] == ["The War of Ash"]
        assert result.records[0].entry_type == "event"
        assert result.misplaced_entries == [
            {"type": "item", "title": "The Flaming Sword"},
            {"type": "faction", "title": "The Thieves Guild"},
            {"type": "character", "title": "Seamus"},
        ]
        assert result.tokens_used == 321
        assert result.extraction_notes == "mostly history"
        assert fake_llm.complete_json.call_args.kwargs["apply_budget"] is False

    async def test_provider_failure_becomes_a_failed_result(self, fake_llm):
        fake_llm.complete_json.side_effect = RuntimeError("Invalid API key")
        result = await extract_lore("text", fake_llm)
        assert not result.success
        assert "Invalid API key" in result.error
        assert result.records == []
