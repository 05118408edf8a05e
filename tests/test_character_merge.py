"""Tests for folding repeated character sightings into one record."""

from storyteller.extraction.characters import (
    dedupe_characters,
    longer_string,
    merge_arrays,
    merge_character_data,
    prioritize_role,
)
from storyteller.schemas.entities import Character


def character(**fields):
    return Character.model_validate({"name": "Aria", **fields})


class TestHelpers:
    def test_longer_string_prefers_first_on_tie(self):
        assert longer_string("abc", "xyz") == "abc"
        assert longer_string("ab", "xyz") == "xyz"
        assert longer_string(None, "x") == "x"
        assert longer_string("x", "") == "x"

    def test_merge_arrays_is_lowercased_union(self):
        assert merge_arrays(["Ari", "Red"], ["ari", "The Wanderer"]) == ["ari", "red", "the wanderer"]
        assert merge_arrays([], []) == []

    def test_role_priority(self):
        assert prioritize_role("minor", "protagonist") == "protagonist"
        assert prioritize_role("antagonist", "supporting") == "antagonist"
        assert prioritize_role("mentioned", "mentioned") == "mentioned"


class TestMergeCharacterData:
    def test_self_merge_is_idempotent(self):
        raw = character(role="supporting", aliases=["Ari"], description="A courier")
        once = merge_character_data(raw, raw)
        assert merge_character_data(once, once).model_dump() == once.model_dump()

    def test_merging_the_same_sighting_twice_changes_nothing(self):
        a = character(description="A courier", traits=["brave"], importance=40)
        b = character(description="A courier from the northern passes", traits=["Brave", "quiet"],
                      importance=70)
        merged = merge_character_data(a, b)
        assert merge_character_data(merged, b).model_dump() == merged.model_dump()

    def test_detail_is_preferred(self):
        a = character(description="A courier", gender="unknown", role="minor", confidence="low",
                      source_chunk_index=0)
        b = character(description="A courier from the north", gender="female", role="protagonist",
                      confidence="medium", source_chunk_index=1)
        merged = merge_character_data(a, b)
        assert merged.description == "A courier from the north"
        assert merged.gender == "female"
        assert merged.role == "protagonist"
        assert merged.confidence == "medium"
        assert merged.source_chunk_index == 0

    def test_death_in_any_sighting_sets_deceased(self):
        alive = character(is_alive=True, death_details=None)
        dead = character(is_deceased=True, death_details={"cause": "poison", "killer": "Vane"})
        merged = merge_character_data(alive, dead)
        assert merged.is_deceased is True
        assert merged.is_alive is True
        assert merged.vital_status_summary == "DECEASED"
        assert merged.death_details.cause == "poison"
        assert merged.death_details.killer == "Vane"

    def test_first_known_alive_flag_is_kept(self):
        assert merge_character_data(character(is_alive=False), character(is_alive=True)).is_alive is False
        assert merge_character_data(character(), character(is_alive=False)).is_alive is False
        # is_deceased alone never flips the alive flag.
        assert merge_character_data(character(), character(is_deceased=True)).is_alive is True

    def test_unknown_death_cause_yields_to_known(self):
        a = character(is_deceased=True, death_details={"cause": "unknown", "body_status": "buried"})
        b = character(is_deceased=True, death_details={"cause": "fell", "body_status": "lost"})
        details = merge_character_data(a, b).death_details
        assert details.cause == "fell"
        assert details.body_status == "buried"

    def test_missing_vital_status_defaults_to_alive(self):
        merged = merge_character_data(character(), character())
        assert merged.is_alive is True
        assert merged.vital_status_summary == "ALIVE"

    def test_relationships_and_family_are_unioned(self):
        a = character(relationships=[{"to": "Bram", "type": "ally"}],
                      family=[{"name": "Tess", "relation": "sister"}])
        b = character(relationships_mentioned=[{"to": "bram", "type": "ally"},
                                               {"to": "Vane", "type": "enemy"}],
                      family=[{"name": "tess"}, {"name": "Orin", "relation": "father"}])
        merged = merge_character_data(a, b)
        assert [(r.to, r.type) for r in merged.relationships] == [("Bram", "ally"), ("Vane", "enemy")]
        assert [m.name for m in merged.family] == ["Tess", "Orin"]


class TestDedupeCharacters:
    def test_groups_by_case_insensitive_name(self):
        records = [
            character(name="Aria", role="minor"),
            character(name="Bram"),
            character(name=" aria ", role="antagonist", aliases=["The Red"]),
            character(name=""),
        ]
        unique = dedupe_characters(records)
        assert [c.name for c in unique] == ["Aria", "Bram"]
        assert unique[0].role == "antagonist"
        assert unique[0].aliases == ["the red"]
