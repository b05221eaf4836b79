"""Relational persistence for escalation events and conversation metadata.

Provides:
- ConversationRepository: Async inserts via the session_factory pattern
- EscalationEventModel, ConversationModel: SQLAlchemy tables
"""

from src.companion.persistence.models import ConversationModel, EscalationEventModel
from src.companion.persistence.repository import ConversationRepository

__all__ = [
    "ConversationModel",
    "ConversationRepository",
    "EscalationEventModel",
]
