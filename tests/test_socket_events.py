"""Tests for socket event payload validation."""

import uuid

from storyteller.schemas.socket_events import is_uuid_v4, sanitize_text, validate_event

SESSION = str(uuid.uuid4())


class TestHelpers:
    def test_uuid_v4(self):
        assert is_uuid_v4(SESSION)
        assert not is_uuid_v4(str(uuid.uuid1()))
        assert not is_uuid_v4("not-a-uuid")
        assert not is_uuid_v4(None)

    def test_sanitize_text(self):
        assert sanitize_text("  <b>go</b> north<script>  ", 100) == "go north"
        assert sanitize_text("abcdef", 3) == "abc"
        assert sanitize_text(None, 10) == ""


class TestValidateEvent:
    def test_unknown_event(self):
        outcome = validate_event("launch-rockets", {})
        assert not outcome.valid
        assert outcome.error == "Unknown event: launch-rockets"

    def test_payload_must_be_an_object(self):
        assert validate_event("check-ready", ["x"]).error == "Data must be an object"

    def test_camel_case_session_id_is_accepted(self):
        outcome = validate_event("check-ready", {"sessionId": SESSION})
        assert outcome.valid
        assert outcome.data == {"session_id": SESSION}

    def test_bad_session_id(self):
        outcome = validate_event("confirm-ready", {"session_id": "1234"})
        assert not outcome.valid
        assert "Invalid session_id format" in outcome.error

    def test_join_session_drops_invalid_user(self):
        outcome = validate_event("join-session", {"session_id": SESSION, "userId": "bob"})
        assert outcome.valid
        assert outcome.data["user_id"] is None

    def test_voice_input_is_sanitized_and_clamped(self):
        outcome = validate_event("voice-input", {
            "session_id": SESSION,
            "transcript": "<i>open</i> the door" + "!" * 6000,
            "confidence": 1.7,
        })
        assert outcome.valid
        assert outcome.data["transcript"].startswith("open the door")
        assert len(outcome.data["transcript"]) == 5000
        assert outcome.data["confidence"] == 1.0

    def test_non_numeric_confidence_becomes_none(self):
        outcome = validate_event("voice-input", {"session_id": SESSION, "confidence": "0.5"})
        assert outcome.data["confidence"] is None

    def test_continue_story_defaults(self):
        outcome = validate_event("continue-story", {"session_id": SESSION, "autoplay": "yes"})
        assert outcome.data["direction"] is None
        assert outcome.data["autoplay"] is False

    def test_submit_choice_normalizes_key(self):
        outcome = validate_event("submit-choice", {"session_id": SESSION, "choiceKey": "b"})
        assert outcome.valid
        assert outcome.data["choice_key"] == "B"

    def test_submit_choice_needs_a_choice(self):
        outcome = validate_event("submit-choice", {"session_id": SESSION})
        assert not outcome.valid
        assert "choice_key or choice_id required" in outcome.error

    def test_submit_choice_rejects_bad_key(self):
        outcome = validate_event("submit-choice", {"session_id": SESSION, "choice_key": "E"})
        assert "Must be A, B, C, or D" in outcome.error

    def test_retry_stage(self):
        assert validate_event("retry-stage", {"session_id": SESSION, "stage": "cover"}).valid
        outcome = validate_event("retry-stage", {"session_id": SESSION, "stage": "rendering"})
        assert "Invalid stage" in outcome.error

    def test_picture_book_needs_scene(self):
        assert not validate_event("request-picture-book-images", {"session_id": SESSION}).valid
        outcome = validate_event("request-picture-book-images",
                                 {"session_id": SESSION, "sceneId": str(uuid.uuid4())})
        assert outcome.valid
