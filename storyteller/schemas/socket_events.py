"""
Socket event validation schemas.

Every inbound socket message must match the ``SocketMessage`` envelope.
The ``payload`` dict is then validated against the event-specific model via
``validate_event()``.  Clients send either ``session_id`` or ``sessionId``;
validated payloads always come back snake_case.
"""
from __future__ import annotations

import dataclasses
import math
import re
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

from storyteller.state.registry import LAUNCH_STAGES
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.socket_events")

# ---------------------------------------------------------------------------
# Hard limits
# ---------------------------------------------------------------------------
MAX_MESSAGE_BYTES = 65_536  # reject raw text before JSON parsing
MAX_TRANSCRIPT_CHARS = 5000
MAX_DIRECTION_CHARS = 1000

UUID_V4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)
_TAG_RE = re.compile(r"<[^>]*>")


def is_uuid_v4(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_V4_RE.match(value))


def sanitize_text(value: Any, max_length: int) -> str:
    """Strip markup, trim, truncate."""
    if value is None:
        return ""
    return _TAG_RE.sub("", str(value)).strip()[:max_length]


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

class SocketMessage(BaseModel):
    """Top-level socket message envelope."""
    action: str = Field(..., description="Inbound event name")
    payload: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Per-event payloads
# ---------------------------------------------------------------------------

class SessionPayload(BaseModel):
    session_id: str = Field(validation_alias=AliasChoices("session_id", "sessionId"))

    @field_validator("session_id", mode="before")
    @classmethod
    def _session_uuid(cls, v: Any) -> str:
        if not is_uuid_v4(v):
            raise ValueError("Invalid session_id format")
        return v


class JoinSessionPayload(SessionPayload):
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))

    @field_validator("user_id", mode="before")
    @classmethod
    def _optional_user(cls, v: Any) -> Optional[str]:
        # An invalid user id is dropped, not rejected.
        return v if is_uuid_v4(v) else None


class VoiceInputPayload(SessionPayload):
    transcript: str = ""
    confidence: Optional[float] = None

    @field_validator("transcript", mode="before")
    @classmethod
    def _transcript(cls, v: Any) -> str:
        return sanitize_text(v, MAX_TRANSCRIPT_CHARS) if v else ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> Optional[float]:
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            return None
        return max(0.0, min(1.0, float(v)))


class ContinueStoryPayload(SessionPayload):
    direction: Optional[str] = None
    voice_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("voice_id", "voiceId"))
    autoplay: bool = False

    @field_validator("direction", mode="before")
    @classmethod
    def _direction(cls, v: Any) -> Optional[str]:
        return sanitize_text(v, MAX_DIRECTION_CHARS) if v else None

    @field_validator("voice_id", mode="before")
    @classmethod
    def _voice(cls, v: Any) -> Optional[str]:
        return str(v) if v else None

    @field_validator("autoplay", mode="before")
    @classmethod
    def _autoplay(cls, v: Any) -> bool:
        return v is True


class SubmitChoicePayload(SessionPayload):
    choice_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("choice_key", "choiceKey"))
    choice_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("choice_id", "choiceId"))
    from_recording: bool = False
    diverge_at_segment: Optional[int] = None

    @field_validator("choice_key", mode="before")
    @classmethod
    def _choice_key(cls, v: Any) -> Optional[str]:
        if not v:
            return None
        if not isinstance(v, str) or v.upper() not in ("A", "B", "C", "D"):
            raise ValueError("Invalid choice_key. Must be A, B, C, or D")
        return v.upper()

    @field_validator("choice_id", mode="before")
    @classmethod
    def _choice_id(cls, v: Any) -> Optional[str]:
        if not v:
            return None
        if not is_uuid_v4(v):
            raise ValueError("Invalid choice_id format")
        return v

    @field_validator("from_recording", mode="before")
    @classmethod
    def _from_recording(cls, v: Any) -> bool:
        return v is True

    @field_validator("diverge_at_segment", mode="before")
    @classmethod
    def _segment(cls, v: Any) -> Optional[int]:
        return v if isinstance(v, int) and not isinstance(v, bool) else None

    @model_validator(mode="after")
    def _one_choice(self) -> "SubmitChoicePayload":
        if self.choice_key is None and self.choice_id is None:
            raise ValueError("choice_key or choice_id required")
        return self


class RetryStagePayload(SessionPayload):
    stage: str

    @field_validator("stage", mode="before")
    @classmethod
    def _stage(cls, v: Any) -> str:
        if v not in LAUNCH_STAGES:
            raise ValueError(f"Invalid stage. Must be one of: {', '.join(LAUNCH_STAGES)}")
        return v


class PictureBookImagesPayload(SessionPayload):
    scene_id: str = Field(validation_alias=AliasChoices("scene_id", "sceneId"))

    @field_validator("scene_id", mode="before")
    @classmethod
    def _scene_uuid(cls, v: Any) -> str:
        if not is_uuid_v4(v):
            raise ValueError("Invalid scene_id format")
        return v


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------
EVENT_SCHEMAS: dict[str, type[BaseModel]] = {
    "join-session": JoinSessionPayload,
    "voice-input": VoiceInputPayload,
    "continue-story": ContinueStoryPayload,
    "submit-choice": SubmitChoicePayload,
    "check-ready": SessionPayload,
    "confirm-ready": SessionPayload,
    "cancel-launch-sequence": SessionPayload,
    "retry-stage": RetryStagePayload,
    "request-picture-book-images": PictureBookImagesPayload,
}

VALID_EVENTS = frozenset(EVENT_SCHEMAS)


@dataclasses.dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_event(event: str, raw: Any) -> ValidationOutcome:
    """Validate *raw* against the schema for *event*.

    Unknown events and non-object payloads are rejected; nothing raises.
    """
    schema = EVENT_SCHEMAS.get(event)
    if schema is None:
        return ValidationOutcome(valid=False, error=f"Unknown event: {event}")
    if not isinstance(raw, dict):
        return ValidationOutcome(valid=False, error="Data must be an object")

    try:
        model = schema.model_validate(raw)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(l) for l in e['loc']) or 'payload'}: {e['msg']}"
            for e in exc.errors()
        )
        logger.info("socket_validation_failed | event=%s | errors=%s", event, errors)
        return ValidationOutcome(valid=False, error=f"Invalid payload for '{event}': {errors}")
    return ValidationOutcome(valid=True, data=model.model_dump())
