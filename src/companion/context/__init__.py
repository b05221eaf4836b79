"""Conversation context management.

Provides:
- SessionStore: Process-local session map with idle eviction
- SessionPersistenceError: Raised when ending a session cannot be persisted
- ContextCompactor: History bounds and rolling summaries
- build_conversation_history: Persona prompt assembly
"""

from src.companion.context.compactor import ContextCompactor
from src.companion.context.prompts import build_conversation_history
from src.companion.context.session import SessionPersistenceError, SessionStore

__all__ = [
    "ContextCompactor",
    "SessionPersistenceError",
    "SessionStore",
    "build_conversation_history",
]
