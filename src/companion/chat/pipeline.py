"""Turn pipeline: safety check, context, generation, session update.

Per inbound message:

1. Classify the text. Tiers 1 and 2 return the fixed safety response
   immediately. In the background the session is flagged (created empty if
   needed) and the event is logged; the provider and the session history
   are never touched.
2. Under the session lock: fetch or create the session, compact stored
   history, add the tier-3 check-in instruction when present, assemble the
   persona prompt and call the provider. A session created by a turn whose
   generation fails is discarded again.
3. Append the turn, bump the counter, save the session (re-arming idle
   eviction) and, on the summary cadence, spawn a rolling summary that is
   applied later under the same lock.

Background work (event logging, summaries) never blocks the response. Its
failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

from src.companion.context.compactor import ContextCompactor
from src.companion.context.prompts import build_conversation_history
from src.companion.context.session import SessionStore
from src.companion.core.monitoring import record_escalation
from src.companion.safety.escalation import (
    EscalationClassifier,
    EscalationEventLogger,
    resolve_language,
)
from src.companion.schemas.chat import TurnResult
from src.companion.schemas.conversation import (
    ConversationEntry,
    EntryRole,
    Language,
    Session,
)
from src.companion.schemas.generation import GenerationConfig, GenerationRequest
from src.companion.schemas.safety import EscalationResult, EscalationTier

logger = structlog.get_logger(__name__)


class TurnPipeline:
    """Orchestrates one conversational turn end to end.

    Args:
        classifier: Escalation classifier, consulted before anything else.
        event_logger: Background writer for triggered escalation events.
        store: Session store owning per-session state and locks.
        compactor: History bounds and rolling summaries.
        client: GenerationClient for the reply.
        chat_temperature: Sampling temperature for replies.
    """

    def __init__(
        self,
        classifier: EscalationClassifier,
        event_logger: EscalationEventLogger,
        store: SessionStore,
        compactor: ContextCompactor,
        client: Any,
        chat_temperature: float = 0.6,
    ) -> None:
        self._classifier = classifier
        self._event_logger = event_logger
        self._store = store
        self._compactor = compactor
        self._client = client
        self._chat_temperature = chat_temperature
        self._background: set[asyncio.Task] = set()

    # ── Public API ───────────────────────────────────────────────────────────

    async def submit_turn(
        self,
        user_id: str,
        message: str,
        session_id: str,
        language: Language | str,
        mood_before: int | None = None,
    ) -> TurnResult:
        """Process one user message.

        Args:
            user_id: Verified caller id.
            message: Raw user text.
            session_id: Client-supplied session identifier.
            language: Conversation language code.
            mood_before: Pre-session mood, recorded on the opening turn only.

        Returns:
            TurnResult with either the safety response or the generated reply.

        Raises:
            GenerationError: The provider call failed; the session is unchanged.
        """
        language = resolve_language(language)
        escalation = self._classifier.classify(message, language)

        if escalation.triggered:
            return self._escalate(user_id, session_id, message, escalation, language)

        async with self._store.lock(user_id, session_id):
            created = self._store.get(user_id, session_id) is None
            session = await self._store.get_or_create(user_id, session_id)
            opening_turn = session.turn_count == 0
            if opening_turn:
                session.language = language
                if mood_before is not None:
                    session.mood_before = mood_before

            session.history = self._compactor.compact(session.history)
            context = self._compactor.trim(session.history)
            if escalation.additional_instruction:
                context.append(
                    ConversationEntry(
                        role=EntryRole.SYSTEM,
                        content=escalation.additional_instruction,
                    )
                )

            request = GenerationRequest(
                prompt=message,
                target_language=language,
                conversation_history=build_conversation_history(
                    language,
                    context,
                    mood_before=session.mood_before if opening_turn else None,
                ),
                generation_config=GenerationConfig(temperature=self._chat_temperature),
            )
            try:
                response = await self._client.generate(request)
            except Exception:
                if created:
                    self._store.discard(user_id, session_id)
                raise

            session.history.extend(
                [
                    ConversationEntry(role=EntryRole.USER, content=message),
                    ConversationEntry(role=EntryRole.ASSISTANT, content=response.response_text),
                ]
            )
            session.turn_count += 1
            self._store.save(user_id, session_id, session)

            if self._compactor.should_summarize(session.history):
                self._spawn(
                    self._summarize(user_id, session_id, session, session.raw_entries()),
                    name=f"summary:{session_id}",
                )

            logger.info(
                "chat.turn_completed",
                user_id=user_id,
                session_id=session_id,
                turn_count=session.turn_count,
                tier=int(escalation.tier),
            )
            return TurnResult(
                response_text=response.response_text,
                tier=int(escalation.tier) if escalation.tier else None,
                session_id=session_id,
                turn_count=session.turn_count,
                usage=response.usage_metadata,
            )

    async def end_session(
        self, user_id: str, session_id: str, mood_after: int | None = None
    ) -> dict:
        """End a session and persist its metadata.

        Ending an unknown or already ended session is not an error.

        Raises:
            SessionPersistenceError: The metadata write failed.
        """
        async with self._store.lock(user_id, session_id):
            ended = await self._store.end(user_id, session_id, mood_after=mood_after)
        if not ended:
            logger.debug("chat.end_no_session", user_id=user_id, session_id=session_id)
        return {"ended": True}

    async def drain(self) -> None:
        """Wait for all in-flight background work."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Escalation ───────────────────────────────────────────────────────────

    def _escalate(
        self,
        user_id: str,
        session_id: str,
        message: str,
        escalation: EscalationResult,
        language: Language,
    ) -> TurnResult:
        record_escalation(int(escalation.tier), language.value)
        logger.warning(
            "escalation.triggered",
            user_id=user_id,
            session_id=session_id,
            tier=int(escalation.tier),
            language=language.value,
        )
        self._spawn(
            self._record_escalation(user_id, session_id, message, escalation.tier, language),
            name=f"escalation:{session_id}",
        )
        return TurnResult(
            escalation=True,
            tier=int(escalation.tier),
            response_text=escalation.message or "",
            should_disable_input=escalation.tier == EscalationTier.IMMEDIATE,
        )

    async def _record_escalation(
        self,
        user_id: str,
        session_id: str,
        message: str,
        tier: EscalationTier,
        language: Language,
    ) -> None:
        async with self._store.lock(user_id, session_id):
            session = await self._store.get_or_create(user_id, session_id)
            if session.turn_count == 0:
                session.language = language
            session.escalation_occurred = True
        await self._event_logger.log(user_id, session_id, message, tier, language)

    # ── Rolling summary ──────────────────────────────────────────────────────

    async def _summarize(
        self,
        user_id: str,
        session_id: str,
        session: Session,
        turns: list[ConversationEntry],
    ) -> None:
        summary = await self._compactor.generate_summary(turns, session.language)

        async with self._store.lock(user_id, session_id):
            if self._store.get(user_id, session_id) is not session:
                logger.info("context.summary_dropped", user_id=user_id, session_id=session_id)
                return
            session.history = self._compactor.apply_summary(session.history, summary)
            session.summary = summary.content
            self._store.save(user_id, session_id, session)

        logger.info(
            "context.summary_applied",
            user_id=user_id,
            session_id=session_id,
            history_entries=len(session.history),
        )

    # ── Background tasks ─────────────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "chat.background_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )
