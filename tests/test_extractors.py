"""Tests for the category extractors and the story bible orchestrator."""

from unittest.mock import AsyncMock, patch

from storyteller.extraction import pipeline
from storyteller.extraction.base import ExtractionResult, chunk_text
from storyteller.extraction.characters import extract_characters
from storyteller.extraction.factions import extract_factions
from storyteller.extraction.items import extract_items
from storyteller.extraction.locations import extract_locations
from storyteller.extraction.pipeline import (
    deduplicate_across_categories,
    extract_story_bible,
    normalize_entity_name,
    StoryBible,
)
from storyteller.extraction.world import extract_world
from storyteller.schemas.entities import Character, Faction, Item, Location, LoreRecord
from tests.conftest import completion


class TestChunking:
    def test_short_text_is_one_chunk(self):
        assert chunk_text("abc") == ["abc"]

    def test_chunks_overlap(self):
        chunks = chunk_text("x" * 40_000)
        assert len(chunks) == 2
        assert len(chunks[0]) == 30_000
        assert len(chunks[1]) == 12_000


class TestCategoryExtractors:
    async def test_items_are_normalized(self, fake_llm):
        fake_llm.complete_json.return_value = completion({"items": [
            {"name": "Dawnbreaker", "item_type": "WEAPON", "rarity": None},
            {"item_type": "spoon"},
        ]})
        result = await extract_items("text", fake_llm)
        assert [i.name for i in result.records] == ["Dawnbreaker", "Unnamed Item"]
        assert result.records[0].item_type == "weapon"
        assert result.records[0].rarity == "common"
        assert result.records[1].item_type == "misc"

    async def test_factions(self, fake_llm):
        fake_llm.complete_json.return_value = completion({"factions": [
            {"name": "Ashen Hand", "faction_type": "cult", "goals": ["rebirth", "Rebirth"]},
        ]})
        result = await extract_factions("text", fake_llm)
        assert result.records[0].faction_type == "cult"
        assert result.records[0].goals == ["rebirth"]

    async def test_locations_accept_comma_separated_features(self, fake_llm):
        fake_llm.complete_json.return_value = completion({"locations": [
            {"name": "Greyhollow", "location_type": "village", "features": "well, mill, well"},
        ]})
        result = await extract_locations("text", fake_llm)
        assert result.records[0].features == ["well", "mill"]

    async def test_world_is_a_single_record(self, fake_llm):
        fake_llm.complete_json.return_value = completion(
            {"world": {"name": "Eld", "genre": "fantasy"}, "extraction_notes": "n"}
        )
        result = await extract_world("text", fake_llm)
        assert len(result.records) == 1
        assert result.records[0].genre == "fantasy"
        assert result.to_dict()["world"]["name"] == "Eld"

    async def test_world_without_payload_uses_defaults(self, fake_llm):
        fake_llm.complete_json.return_value = completion({"something": "else"})
        result = await extract_world("text", fake_llm)
        assert result.records[0].name == "Unnamed World"

    async def test_failure_is_returned_not_raised(self, fake_llm):
        fake_llm.complete_json.side_effect = RuntimeError("invalid input: document too long")
        result = await extract_items("text", fake_llm)
        assert result.success is False
        assert result.to_dict() == {
            "success": False, "items": [], "tokens_used": 0,
            "error": "invalid input: document too long",
        }


class TestCharacterExtraction:
    async def test_chunks_are_merged(self, fake_llm):
        fake_llm.complete_json.side_effect = [
            completion({"characters": [{"name": "Aria", "role": "protagonist",
                                        "description": "A courier"}]}),
            completion({"characters": [
                {"name": "aria", "role": "minor", "description": "A courier from the north"},
                {"name": "Bram", "role": "supporting"},
            ]}),
        ]
        result = await extract_characters("y" * 40_000, fake_llm)

        assert result.success
        assert result.tokens_used == 200
        assert [c.name for c in result.records] == ["Aria", "Bram"]
        aria = result.records[0]
        assert aria.role == "protagonist"
        assert aria.description == "A courier from the north"
        assert aria.source_chunk_index == 0
        assert result.records[1].source_chunk_index == 1

    async def test_one_failed_chunk_is_tolerated(self, fake_llm):
        fake_llm.complete_json.side_effect = [
            RuntimeError("invalid input: chunk rejected"),
            completion({"characters": [{"name": "Bram"}]}),
        ]
        result = await extract_characters("y" * 40_000, fake_llm)
        assert result.success
        assert [c.name for c in result.records] == ["Bram"]

    async def test_every_chunk_failing_fails_the_category(self, fake_llm):
        fake_llm.complete_json.side_effect = RuntimeError("invalid input: rejected")
        result = await extract_characters("short text", fake_llm)
        assert not result.success
        assert result.error == "invalid input: rejected"


def _result(category, records):
    return AsyncMock(return_value=ExtractionResult(category=category, records=records, tokens_used=10))


class TestCrossCategoryDedup:
    def test_normalize_entity_name(self):
        assert normalize_entity_name("  The   Iron Crown ") == "iron crown"
        assert normalize_entity_name("An Oath") == "oath"
        assert normalize_entity_name(None) == ""

    def test_higher_precedence_keeps_the_entity(self):
        bible = StoryBible(
            characters=[Character(name="Shadowfax")],
            items=[Item(name="The Shadowfax"), Item(name="Lantern")],
            locations=[Location(name="Lantern")],
            lore=[LoreRecord(title="lantern")],
        )
        removed = deduplicate_across_categories(bible)
        assert [i.name for i in bible.items] == ["Lantern"]
        assert bible.locations == []
        assert bible.lore == []
        assert {"name": "The Shadowfax", "dropped_from": "items", "kept_in": "characters"} in removed
        assert len(removed) == 3

    def test_duplicates_within_a_category_are_left_alone(self):
        bible = StoryBible(factions=[Faction(name="Guard"), Faction(name="the guard")])
        assert deduplicate_across_categories(bible) == []
        assert len(bible.factions) == 2


class TestStoryBible:
    async def test_crashing_extractor_does_not_sink_the_rest(self, fake_llm):
        extractors = {
            "characters": _result("characters", [Character(name="Aria")]),
            "items": _result("items", [Item(name="Aria"), Item(name="Lantern")]),
            "factions": AsyncMock(side_effect=RuntimeError("boom")),
            "locations": AsyncMock(return_value=ExtractionResult.failed("locations", "bad json")),
            "lore": _result("lore", []),
            "world": _result("world", []),
        }
        events = []
        with patch.dict(pipeline.EXTRACTORS, extractors):
            bible = await extract_story_bible(
                "text", fake_llm, on_progress=lambda c, s, d: events.append((c, s)),
            )

        assert bible.success
        assert bible.errors == {"factions": "boom", "locations": "bad json"}
        assert [c.name for c in bible.characters] == ["Aria"]
        assert [i.name for i in bible.items] == ["Lantern"]
        assert bible.tokens_used == 40
        assert bible.world is None
        assert ("characters", "complete") in events
        assert ("locations", "failed") in events
        assert events[-1] == ("story_bible", "complete")

        payload = bible.to_dict()
        assert payload["world"] == {}
        assert payload["duplicates_removed"][0]["dropped_from"] == "items"

    async def test_every_extractor_failing_is_a_failure(self, fake_llm):
        failing = {c: AsyncMock(side_effect=RuntimeError("down")) for c in pipeline.EXTRACTORS}
        with patch.dict(pipeline.EXTRACTORS, failing):
            bible = await extract_story_bible("text", fake_llm)
        assert not bible.success
        assert len(bible.errors) == 6

    async def test_progress_callback_errors_are_ignored(self, fake_llm):
        extractors = {c: _result(c, []) for c in pipeline.EXTRACTORS}

        async def on_progress(category, status, detail):
            raise RuntimeError("client went away")

        with patch.dict(pipeline.EXTRACTORS, extractors):
            bible = await extract_story_bible("text", fake_llm, on_progress=on_progress)
        assert bible.errors == {}
