"""Tests for director persona lookup and guidance compilation."""

from storyteller.prompts.directors import (
    DEFAULT_PERSONA_KEY,
    PERSONAS,
    build_guidance,
    get_for_genres,
    list_personas,
    resolve,
)


class TestResolve:
    def test_by_key_with_loose_separators(self):
        assert resolve("wes-anderson").key == "wes_anderson"
        assert resolve("Michael Bay").key == "michael_bay"

    def test_by_partial_display_name(self):
        assert resolve("hitch").key == "hitchcock"

    def test_unknown_falls_back_to_default(self):
        assert resolve("kubrick").key == DEFAULT_PERSONA_KEY

    def test_empty_key(self):
        assert resolve("") is None
        assert resolve(None) is None


class TestGenreRecommendation:
    def test_weighted_genres(self):
        assert get_for_genres({"thriller": 80, "romance": 10}) == "hitchcock"

    def test_plain_genre_list(self):
        assert get_for_genres(["fantasy", "ya"]) == "ghibli"

    def test_no_overlap(self):
        assert get_for_genres({"romance": 90}) is None
        assert get_for_genres({}) is None
        assert get_for_genres({"horror": 0}) is None

    def test_listing(self):
        listed = list_personas()
        assert len(listed) == len(PERSONAS)
        assert {"key", "name", "description", "best_for"} <= set(listed[0])


class TestBuildGuidance:
    def test_disabled_without_multi_voice(self):
        assert build_guidance({"multi_voice": False}) == ""
        assert build_guidance(None) == ""

    def test_hidden_speech_tags_use_minimal_attribution(self):
        text = build_guidance({"multi_voice": True, "hide_speech_tags": True}, resolve("lynch"))
        assert "MINIMIZE SPEECH ATTRIBUTION" in text
        assert "David Lynch Direction" in text
        assert "RICH DELIVERY DESCRIPTORS" not in text

    def test_default_persona_and_rich_tags(self):
        text = build_guidance({"multi_voice": True})
        assert "RICH DELIVERY DESCRIPTORS" in text
        assert "Steven Spielberg" in text
