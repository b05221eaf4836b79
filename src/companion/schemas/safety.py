"""Pydantic models for the escalation (crisis detection) layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field

from src.companion.schemas.conversation import Language

MAX_EVENT_TEXT_CHARS = 500


class EscalationTier(IntEnum):
    """Severity of a user message with respect to crisis risk."""

    NONE = 0
    IMMEDIATE = 1       # immediate crisis, input disabled client-side
    HIGH_DISTRESS = 2   # fixed response with hotline
    MILD_DISTRESS = 3   # generation proceeds with a gentle check-in


class EscalationResult(BaseModel):
    """Outcome of classifying one message.

    Tiers 1 and 2 carry a fixed localized ``message`` and stop the turn
    before generation. Tier 3 carries only ``additional_instruction``.
    """

    model_config = ConfigDict(frozen=True)

    tier: EscalationTier = EscalationTier.NONE
    message: str | None = None
    should_disable_input: bool = False
    additional_instruction: str | None = None

    @property
    def triggered(self) -> bool:
        """True when the turn must short-circuit with the safety response."""
        return self.tier in (EscalationTier.IMMEDIATE, EscalationTier.HIGH_DISTRESS)


class EscalationEventRecord(BaseModel):
    """Write-only, privacy-truncated record of a triggered safety tier."""

    user_id: str
    session_id: str | None = None
    tier: EscalationTier
    language: Language
    user_message: str = Field(max_length=MAX_EVENT_TEXT_CHARS)
    triggered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
