"""Bounded history and rolling summaries.

Stored history holds at most one SUMMARY entry (always first) followed by
raw user/assistant entries. ``compact`` enforces that shape and the
``max_turns`` bound; ``trim`` turns the stored form into the context sent
to the provider, where the summary travels as a leading SYSTEM entry.

Summaries are produced by one low-temperature provider call over the raw
turns and wrapped with a localized label.
"""

from __future__ import annotations

import structlog

from src.companion.schemas.conversation import ConversationEntry, EntryRole, Language
from src.companion.schemas.generation import GenerationConfig, GenerationRequest

logger = structlog.get_logger(__name__)

SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_OUTPUT_TOKENS = 200

SUMMARY_PROMPTS: dict[Language, str] = {
    Language.AMHARIC: "ይህን ውይይት በ2-3 ዓረፍተ ነገር ብቻ አጠቃልለው። ዋና ስሜቶች እና ርዕሶች ብቻ:",
    Language.OROMO: (
        "Dubbii kana gababsuudhaan ibsi, odeeffannoo ijoo fi yaada murtoo qofa ibsi:"
    ),
}

SUMMARY_LABELS: dict[Language, str] = {
    Language.AMHARIC: "[ቀደምት ውይይት ማጠቃለያ]",
    Language.OROMO: "[Walgahii darbee cuunfaa]",
}


class ContextCompactor:
    """Keeps session history within budget and builds rolling summaries.

    Args:
        client: GenerationClient used for summary requests.
        max_turns: Raw user/assistant pairs kept before trimming.
        summary_trigger: Summarize whenever completed pairs reach a
            positive multiple of this value.
        summary_keep: Raw entries kept after a summary is applied.
    """

    def __init__(
        self,
        client: object,
        max_turns: int = 10,
        summary_trigger: int = 8,
        summary_keep: int = 12,
    ) -> None:
        self._client = client
        self.max_turns = max_turns
        self.summary_trigger = summary_trigger
        self.summary_keep = summary_keep

    def compact(self, history: list[ConversationEntry]) -> list[ConversationEntry]:
        """Return the stored form of ``history``.

        Drops SYSTEM entries, keeps the first SUMMARY entry at the head, and
        once raw entries exceed ``2 * max_turns`` keeps only the most recent
        ``2 * (max_turns - 2)`` of them.
        """
        summary = next((e for e in history if e.role == EntryRole.SUMMARY), None)
        raw = [e for e in history if e.is_turn]

        if len(raw) > self.max_turns * 2:
            keep = max(self.max_turns - 2, 0) * 2
            raw = raw[-keep:] if keep else []

        return [summary, *raw] if summary is not None else raw

    def trim(self, history: list[ConversationEntry]) -> list[ConversationEntry]:
        """Return the provider-facing context for ``history``."""
        compacted = self.compact(history)
        return [
            ConversationEntry(role=EntryRole.SYSTEM, content=entry.content)
            if entry.role == EntryRole.SUMMARY
            else entry
            for entry in compacted
        ]

    def should_summarize(self, history: list[ConversationEntry]) -> bool:
        completed_pairs = sum(1 for e in history if e.is_turn) // 2
        return completed_pairs > 0 and completed_pairs % self.summary_trigger == 0

    async def generate_summary(
        self, turns: list[ConversationEntry], language: Language
    ) -> ConversationEntry:
        """Ask the provider for a short summary of ``turns``.

        Args:
            turns: Raw user/assistant entries to summarize.
            language: Conversation language; selects prompt and label.

        Returns:
            A SUMMARY entry whose content is ``"<label>: <summary text>"``.

        Raises:
            GenerationError: The provider call failed.
        """
        request = GenerationRequest(
            prompt=SUMMARY_PROMPTS[language],
            target_language=language,
            conversation_history=[e for e in turns if e.is_turn],
            generation_config=GenerationConfig(
                temperature=SUMMARY_TEMPERATURE,
                max_output_tokens=SUMMARY_MAX_OUTPUT_TOKENS,
            ),
        )
        response = await self._client.generate(request)
        logger.info(
            "context.summary_generated",
            language=language.value,
            turns=len(request.conversation_history),
        )
        return ConversationEntry(
            role=EntryRole.SUMMARY,
            content=f"{SUMMARY_LABELS[language]}: {response.response_text}",
        )

    def apply_summary(
        self, history: list[ConversationEntry], summary: ConversationEntry
    ) -> list[ConversationEntry]:
        """Replace any previous summary and keep the newest raw entries."""
        raw = [e for e in history if e.is_turn]
        return [summary, *raw[-self.summary_keep:]] if self.summary_keep else [summary]
