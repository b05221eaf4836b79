"""Write-side repository for escalation events and conversation metadata.

Uses the session_factory callable pattern: each method opens its own
AsyncSession via ``async for session in self._session_factory()``, so the
repository can be exercised with any async generator in tests.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.companion.persistence.models import ConversationModel, EscalationEventModel
from src.companion.schemas.conversation import ConversationMetadataRecord
from src.companion.schemas.safety import EscalationEventRecord

logger = structlog.get_logger(__name__)


class ConversationRepository:
    """Inserts companion records.

    Args:
        session_factory: Async generator yielding AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def insert_escalation_event(self, record: EscalationEventRecord) -> str:
        """Persist one escalation event and return its id."""
        async for session in self._session_factory():
            model = EscalationEventModel(
                id=uuid.uuid4(),
                user_id=record.user_id,
                session_id=record.session_id,
                tier=int(record.tier),
                language=record.language.value,
                user_message=record.user_message,
                triggered_at=record.triggered_at,
            )
            session.add(model)
            await session.commit()
            return str(model.id)

    async def insert_conversation_metadata(self, record: ConversationMetadataRecord) -> str:
        """Persist the metadata of an ended session and return its id.

        Args:
            record: Session metadata. Carries no message content.

        Returns:
            The new conversation row id.
        """
        async for session in self._session_factory():
            model = ConversationModel(
                id=uuid.uuid4(),
                user_id=record.user_id,
                session_type=record.session_type.value,
                language=record.language.value,
                turn_count=record.turn_count,
                duration_seconds=record.duration_seconds,
                summary=record.summary,
                mood_before=record.mood_before,
                mood_after=record.mood_after,
                had_escalation=record.had_escalation,
                started_at=record.started_at,
                ended_at=record.ended_at,
            )
            session.add(model)
            await session.commit()
            logger.info(
                "conversation.metadata_saved",
                conversation_id=str(model.id),
                user_id=record.user_id,
                turn_count=record.turn_count,
            )
            return str(model.id)
