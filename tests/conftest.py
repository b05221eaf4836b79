"""Shared fixtures for companion tests.

Provides:
- FakeClock: Manually advanced time source for TTL behaviour
- InMemoryConversationRepository: Records inserts without a database
- Generation client double returning canned replies
- Wired SessionStore, ContextCompactor and TurnPipeline
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.companion.chat.pipeline import TurnPipeline
from src.companion.context.compactor import ContextCompactor
from src.companion.context.session import SessionStore
from src.companion.safety.escalation import EscalationClassifier, EscalationEventLogger
from src.companion.schemas.conversation import ConversationMetadataRecord
from src.companion.schemas.generation import GenerationResponse, UsageMetadata
from src.companion.schemas.safety import EscalationEventRecord

HOTLINE = "+251-111-550-909"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryConversationRepository:
    """ConversationRepository double that keeps records in lists."""

    def __init__(self) -> None:
        self.escalation_events: list[EscalationEventRecord] = []
        self.conversations: list[ConversationMetadataRecord] = []
        self.fail_conversation_writes = False
        self.fail_escalation_writes = False

    async def insert_escalation_event(self, record: EscalationEventRecord) -> str:
        if self.fail_escalation_writes:
            raise RuntimeError("database unavailable")
        self.escalation_events.append(record)
        return f"event-{len(self.escalation_events)}"

    async def insert_conversation_metadata(self, record: ConversationMetadataRecord) -> str:
        if self.fail_conversation_writes:
            raise RuntimeError("database unavailable")
        self.conversations.append(record)
        return f"conversation-{len(self.conversations)}"


def make_response(text: str = "ሰላም፣ እንዴት ነህ?") -> GenerationResponse:
    return GenerationResponse(
        response_text=text,
        finish_reason="STOP",
        usage_metadata=UsageMetadata(
            prompt_token_count=12, candidates_token_count=8, total_token_count=20
        ),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryConversationRepository:
    return InMemoryConversationRepository()


@pytest.fixture
def generation_client() -> MagicMock:
    client = MagicMock()
    client.generate = AsyncMock(return_value=make_response())
    return client


@pytest.fixture
def store(repository, clock):
    session_store = SessionStore(repository, ttl_seconds=30 * 60, clock=clock)
    yield session_store
    session_store.close()


@pytest.fixture
def compactor(generation_client) -> ContextCompactor:
    return ContextCompactor(generation_client, max_turns=10, summary_trigger=8, summary_keep=12)


@pytest.fixture
def classifier() -> EscalationClassifier:
    return EscalationClassifier(hotline=HOTLINE)


@pytest.fixture
def pipeline(classifier, repository, store, compactor, generation_client) -> TurnPipeline:
    return TurnPipeline(
        classifier=classifier,
        event_logger=EscalationEventLogger(repository),
        store=store,
        compactor=compactor,
        client=generation_client,
        chat_temperature=0.6,
    )
