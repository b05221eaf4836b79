"""Request/response schemas for the chat and speech endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from src.companion.schemas.conversation import Language
from src.companion.schemas.generation import UsageMetadata

MAX_MESSAGE_CHARS = 2000


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("Required non-empty string")
    return value


class ChatRequest(BaseModel):
    """POST /api/v1/chat body."""

    message: str = Field(..., max_length=MAX_MESSAGE_CHARS)
    session_id: str = Field(..., max_length=100)
    language: Language
    mood_before: int | None = Field(default=None, ge=1, le=5)

    @field_validator("message", "session_id")
    @classmethod
    def non_empty(cls, value: str) -> str:
        return _require_text(value)


class SessionEndRequest(BaseModel):
    """POST /api/v1/chat/end body."""

    session_id: str = Field(..., max_length=100)
    mood_after: int | None = Field(default=None, ge=1, le=5)

    @field_validator("session_id")
    @classmethod
    def non_empty(cls, value: str) -> str:
        return _require_text(value)


class TurnResult(BaseModel):
    """Outcome of one submitted turn.

    Escalated turns carry ``escalation=True``, the tier, the fixed safety
    text and ``should_disable_input``. Generated turns carry the session id,
    updated turn count and provider usage.
    """

    escalation: bool = False
    tier: int | None = None
    response_text: str
    should_disable_input: bool = False
    session_id: str | None = None
    turn_count: int | None = None
    usage: UsageMetadata | None = None


class SessionEndResponse(BaseModel):
    ended: bool = True
    session_id: str


class SpeechSynthesisRequest(BaseModel):
    """POST /api/v1/speech body."""

    text: str = Field(..., max_length=MAX_MESSAGE_CHARS)
    language: Language

    @field_validator("text")
    @classmethod
    def non_empty(cls, value: str) -> str:
        return _require_text(value)


class SpeechSynthesisResponse(BaseModel):
    audio: str
    cached: bool = False
