"""Tests for the truncation-tolerant JSON decoder."""

import json

from storyteller.utils.json_recovery import (
    detect_truncation,
    parse_json_object,
    recover_json_array,
)


class TestDirectParse:
    def test_valid_document_matches_json_loads(self):
        doc = {"items": [{"name": "Sword", "tags": ["a", "b"]}, {"name": "Shield"}], "notes": "x"}
        text = json.dumps(doc)
        assert recover_json_array(text, "items") == json.loads(text)

    def test_code_fence_is_stripped(self):
        text = 'Here you go:\n```json\n{"lore": [{"title": "The Fall"}]}\n```'
        assert recover_json_array(text, "lore") == {"lore": [{"title": "The Fall"}]}

    def test_missing_key_becomes_empty_list(self):
        assert recover_json_array('{"other": 1}', "items") == {"other": 1, "items": []}

    def test_bare_array(self):
        assert recover_json_array('[{"name": "A"}]', "items") == {"items": [{"name": "A"}]}


class TestTruncationRepair:
    def test_truncated_second_element_keeps_first(self):
        text = '{"items": [{"name":"Sword"},{"name":"Shield"'
        assert recover_json_array(text, "items") == {"items": [{"name": "Sword"}]}

    def test_brackets_inside_strings_are_ignored(self):
        text = '{"characters": [{"name": "A [the first]", "notes": "{odd}"}, {"name": "B", "desc": "cut'
        result = recover_json_array(text, "characters")
        assert result["characters"] == [{"name": "A [the first]", "notes": "{odd}"}]

    def test_truncated_never_exceeds_original(self):
        elements = [{"name": f"Entity {i}", "description": "x" * 40} for i in range(6)]
        full = json.dumps({"items": elements})
        for cut in range(len(full) // 2, len(full), 17):
            recovered = recover_json_array(full[:cut], "items")["items"]
            assert len(recovered) <= len(elements)
            assert recovered == elements[:len(recovered)]

    def test_recovers_at_least_one_when_one_element_closed(self):
        text = '{"factions": [{"name": "Guild"}, {"name": "Ord'
        assert len(recover_json_array(text, "factions")["factions"]) == 1


class TestWorstCase:
    def test_never_raises_on_garbage(self):
        for text in (None, "", "   ", "not json", '{"items": ', '{"items": [', "}{]["):
            assert recover_json_array(text, "items") == {"items": []}

    def test_key_without_array(self):
        assert recover_json_array('{"items": "nope"', "items") == {"items": []}


class TestParseJsonObject:
    def test_object_embedded_in_prose(self):
        assert parse_json_object('Sure! {"name": "Aldoria"} Hope this helps.') == {"name": "Aldoria"}

    def test_unparseable_returns_none(self):
        assert parse_json_object("no braces here") is None
        assert parse_json_object(None) is None


class TestDetectTruncation:
    def test_balanced_text_is_not_truncated(self):
        assert detect_truncation('{"a": [1, 2]}').truncated is False

    def test_unterminated_string(self):
        report = detect_truncation('{"a": "half')
        assert report.truncated and report.in_string
        assert report.reason == "unterminated string"

    def test_unbalanced_brackets(self):
        report = detect_truncation('{"a": [1, 2')
        assert report.truncated
        assert report.open_brackets == 1 and report.open_braces == 1
