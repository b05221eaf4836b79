"""Crisis escalation classification and event logging.

Classifies raw user text into a safety tier using compiled, ordered rules
per language (first match wins):

1. Tier-1 keyword (immediate crisis)
2. Universal English crisis pattern (mapped to tier 1)
3. Tier-2 keyword (high distress)
4. Tier-3 keyword (mild distress signal)

Tiers 1 and 2 short-circuit the turn with a fixed localized response.
Tier 3 lets generation proceed with an extra gentle check-in instruction.
The classifier is pure: it holds no per-call state and never does I/O.

Exports:
    EscalationClassifier: Ordered rule evaluation over compiled keyword sets.
    EscalationEventLogger: Best-effort persistence of triggered events.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

from src.companion.safety.keywords import (
    TIER1_KEYWORDS,
    TIER1_RESPONSES,
    TIER2_KEYWORDS,
    TIER2_RESPONSES,
    TIER3_INSTRUCTIONS,
    TIER3_KEYWORDS,
    UNIVERSAL_PATTERNS,
)
from src.companion.schemas.conversation import Language
from src.companion.schemas.safety import (
    MAX_EVENT_TEXT_CHARS,
    EscalationEventRecord,
    EscalationResult,
    EscalationTier,
)

logger = structlog.get_logger(__name__)

DEFAULT_LANGUAGE = Language.AMHARIC

_NO_ESCALATION = EscalationResult()


def resolve_language(language: Language | str | None) -> Language:
    """Map a language code to a supported Language, defaulting to Amharic."""
    if isinstance(language, Language):
        return language
    try:
        return Language(language)
    except ValueError:
        return DEFAULT_LANGUAGE


@dataclass(frozen=True)
class _Rule:
    """One step of the ordered evaluation."""

    name: str
    result: EscalationResult
    keywords: tuple[str, ...] = ()
    patterns: tuple[re.Pattern, ...] = ()

    def matches(self, normalized: str) -> bool:
        if any(keyword in normalized for keyword in self.keywords):
            return True
        return any(pattern.search(normalized) for pattern in self.patterns)


class EscalationClassifier:
    """Classifies messages into escalation tiers.

    Rules and responses are compiled once per language at construction, so
    ``classify`` is a plain ordered scan with no allocation beyond
    normalization.

    Args:
        hotline: Crisis hotline display string embedded in tier 1/2 messages.
    """

    def __init__(self, hotline: str) -> None:
        self._hotline = hotline
        self._rules: dict[Language, list[_Rule]] = {
            language: self._compile(language) for language in Language
        }

    def _compile(self, language: Language) -> list[_Rule]:
        immediate = EscalationResult(
            tier=EscalationTier.IMMEDIATE,
            message=TIER1_RESPONSES[language].format(hotline=self._hotline),
            should_disable_input=True,
        )
        high_distress = EscalationResult(
            tier=EscalationTier.HIGH_DISTRESS,
            message=TIER2_RESPONSES[language].format(hotline=self._hotline),
        )
        mild_distress = EscalationResult(
            tier=EscalationTier.MILD_DISTRESS,
            additional_instruction=TIER3_INSTRUCTIONS[language],
        )
        return [
            _Rule(
                name="tier1_keyword",
                result=immediate,
                keywords=tuple(kw.casefold() for kw in TIER1_KEYWORDS[language]),
            ),
            _Rule(
                name="universal_pattern",
                result=immediate,
                patterns=tuple(UNIVERSAL_PATTERNS),
            ),
            _Rule(
                name="tier2_keyword",
                result=high_distress,
                keywords=tuple(kw.casefold() for kw in TIER2_KEYWORDS[language]),
            ),
            _Rule(
                name="tier3_keyword",
                result=mild_distress,
                keywords=tuple(kw.casefold() for kw in TIER3_KEYWORDS[language]),
            ),
        ]

    def classify(
        self, text: str | None, language: Language | str = DEFAULT_LANGUAGE
    ) -> EscalationResult:
        """Classify text into an escalation tier.

        Args:
            text: Raw user message.
            language: Conversation language; unknown codes use Amharic rules.

        Returns:
            EscalationResult for the first matching rule, or tier NONE.
        """
        if not text or not text.strip():
            return _NO_ESCALATION

        normalized = text.casefold().strip()
        for rule in self._rules[resolve_language(language)]:
            if rule.matches(normalized):
                return rule.result
        return _NO_ESCALATION


class EscalationEventLogger:
    """Writes triggered escalation events through the persistence layer.

    Callers run ``log`` as a background task; the turn's response never
    depends on it.

    Args:
        repository: Object exposing ``insert_escalation_event(record)``.
    """

    def __init__(self, repository: object) -> None:
        self._repository = repository

    async def log(
        self,
        user_id: str,
        session_id: str | None,
        text: str,
        tier: EscalationTier,
        language: Language | str,
    ) -> EscalationEventRecord:
        record = EscalationEventRecord(
            user_id=user_id,
            session_id=session_id,
            tier=tier,
            language=resolve_language(language),
            user_message=text[:MAX_EVENT_TEXT_CHARS],
        )
        await self._repository.insert_escalation_event(record)
        logger.info(
            "escalation.event_recorded",
            user_id=user_id,
            session_id=session_id,
            tier=int(tier),
            language=record.language.value,
        )
        return record
