"""Pydantic models for in-memory conversation state.

Defines the conversation entry shape shared by the session store, the
context compactor and prompt assembly, plus the per-session state object
and the metadata record written when a session ends.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Language(str, Enum):
    """Supported conversation languages."""

    AMHARIC = "am"
    OROMO = "om"


class EntryRole(str, Enum):
    """Role tag of a single conversation entry.

    SUMMARY entries hold the rolling summary and are never sent to the
    provider under that role. SYSTEM entries are instructional and are
    re-injected fresh on every request.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SUMMARY = "summary"
    SYSTEM = "system"


class SessionType(str, Enum):
    CHAT = "chat"
    VOICE = "voice"
    EXERCISE = "exercise"


class ConversationEntry(BaseModel):
    """One entry in a session's history."""

    role: EntryRole
    content: str

    @property
    def is_turn(self) -> bool:
        """True for user/assistant entries (the raw conversation)."""
        return self.role in (EntryRole.USER, EntryRole.ASSISTANT)

    def to_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    """Per-(user, session) conversation state held in memory.

    Mutated only while holding the store's lock for the session key.
    """

    history: list[ConversationEntry] = Field(default_factory=list)
    session_type: SessionType = SessionType.CHAT
    language: Language = Language.AMHARIC
    started_at: datetime = Field(default_factory=_utcnow)
    last_activity: datetime = Field(default_factory=_utcnow)
    turn_count: int = 0
    summary: str | None = None
    escalation_occurred: bool = False
    mood_before: int | None = Field(default=None, ge=1, le=5)
    mood_after: int | None = Field(default=None, ge=1, le=5)

    def raw_entries(self) -> list[ConversationEntry]:
        return [entry for entry in self.history if entry.is_turn]


class ConversationMetadataRecord(BaseModel):
    """Session metadata persisted on end. Never carries message content."""

    user_id: str
    session_type: SessionType
    language: Language
    turn_count: int
    duration_seconds: int
    summary: str | None = None
    mood_before: int | None = None
    mood_after: int | None = None
    had_escalation: bool = False
    started_at: datetime
    ended_at: datetime
