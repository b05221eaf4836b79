"""In-memory session store with idle eviction.

Holds one authoritative Session per (user_id, session_id) for the lifetime
of the process. Sessions are created atomically on first access, re-stamped
on every save, and reclaimed either by a one-shot idle timer armed on save
or by the periodic ``sweep_expired`` pass. Ending a session writes its
metadata (never message content) through the repository.

All state transitions for a key run under ``lock(user_id, session_id)``;
the store methods themselves do not take that lock, so callers must hold it.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from src.companion.core.monitoring import active_sessions
from src.companion.schemas.conversation import ConversationMetadataRecord, Session

logger = structlog.get_logger(__name__)

SessionKey = tuple[str, str]


class SessionPersistenceError(Exception):
    """Ending a session failed to write its metadata record."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Process-local map of active sessions.

    Args:
        repository: Object exposing ``insert_conversation_metadata(record)``.
        ttl_seconds: Idle time after which a session is evicted.
        clock: Returns the current time (injectable for tests).
    """

    def __init__(
        self,
        repository: object,
        ttl_seconds: float = 30 * 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[SessionKey, Session] = {}
        self._timers: dict[SessionKey, asyncio.TimerHandle] = {}
        self._locks: weakref.WeakValueDictionary[SessionKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._create_lock = asyncio.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def lock(self, user_id: str, session_id: str) -> asyncio.Lock:
        """Return the lock serializing every mutation of one session."""
        key = (user_id, session_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get_or_create(self, user_id: str, session_id: str) -> Session:
        """Return the cached session, inserting a fresh one if absent.

        Two concurrent first turns for the same key receive the same instance.
        """
        key = (user_id, session_id)
        async with self._create_lock:
            session = self._sessions.get(key)
            if session is None:
                now = self._clock()
                session = Session(started_at=now, last_activity=now)
                self._sessions[key] = session
                self._arm(key)
                self._update_gauge()
                logger.debug("session.created", user_id=user_id, session_id=session_id)
            return session

    def get(self, user_id: str, session_id: str) -> Session | None:
        return self._sessions.get((user_id, session_id))

    def save(self, user_id: str, session_id: str, session: Session) -> None:
        """Stamp activity, store the session and re-arm its idle timer."""
        key = (user_id, session_id)
        session.last_activity = self._clock()
        self._sessions[key] = session
        self._arm(key)
        self._update_gauge()

    async def end(
        self, user_id: str, session_id: str, mood_after: int | None = None
    ) -> bool:
        """Persist session metadata and drop the cached entry.

        Args:
            user_id: Owner of the session.
            session_id: Client-supplied session identifier.
            mood_after: Optional post-session mood score (1-5).

        Returns:
            True if a session was ended, False if none was cached.

        Raises:
            SessionPersistenceError: The metadata write failed. The session
                stays cached so the caller may retry.
        """
        key = (user_id, session_id)
        session = self._sessions.get(key)
        if session is None:
            return False

        if mood_after is not None:
            session.mood_after = mood_after

        ended_at = self._clock()
        record = ConversationMetadataRecord(
            user_id=user_id,
            session_type=session.session_type,
            language=session.language,
            turn_count=session.turn_count,
            duration_seconds=max(int((ended_at - session.started_at).total_seconds()), 0),
            summary=session.summary,
            mood_before=session.mood_before,
            mood_after=session.mood_after,
            had_escalation=session.escalation_occurred,
            started_at=session.started_at,
            ended_at=ended_at,
        )

        try:
            await self._repository.insert_conversation_metadata(record)
        except Exception as exc:
            logger.error(
                "session.end_persist_failed",
                user_id=user_id,
                session_id=session_id,
                error=str(exc),
            )
            raise SessionPersistenceError(
                f"Failed to persist metadata for session {session_id}"
            ) from exc

        self._remove(key)
        logger.info(
            "session.ended",
            user_id=user_id,
            session_id=session_id,
            turn_count=record.turn_count,
            duration_seconds=record.duration_seconds,
        )
        return True

    def discard(self, user_id: str, session_id: str) -> None:
        """Drop a cached session without persisting anything."""
        self._remove((user_id, session_id))
        logger.debug("session.discarded", user_id=user_id, session_id=session_id)

    def active_count(self) -> int:
        return len(self._sessions)

    def sweep_expired(self) -> int:
        """Evict every session idle for at least the TTL. Returns the count."""
        now = self._clock()
        expired = [
            key
            for key, session in self._sessions.items()
            if self._idle_seconds(session, now) >= self._ttl_seconds
        ]
        for key in expired:
            self._remove(key)
        if expired:
            logger.info("session.sweep_completed", evicted=len(expired))
        return len(expired)

    def close(self) -> None:
        """Cancel every pending idle timer."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    # ── Internals ──────────────────────────────────────────────────────────

    def _arm(self, key: SessionKey, delay: float | None = None) -> None:
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(
            self._ttl_seconds if delay is None else delay,
            self._evict_if_idle,
            key,
        )

    def _evict_if_idle(self, key: SessionKey) -> None:
        """Timer callback: evict only if the session is still idle."""
        self._timers.pop(key, None)
        session = self._sessions.get(key)
        if session is None:
            return
        idle = self._idle_seconds(session, self._clock())
        if idle < self._ttl_seconds:
            self._arm(key, delay=self._ttl_seconds - idle)
            return
        self._remove(key)
        logger.info("session.evicted", user_id=key[0], session_id=key[1], idle_seconds=int(idle))

    def _remove(self, key: SessionKey) -> None:
        self._sessions.pop(key, None)
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()
        self._update_gauge()

    @staticmethod
    def _idle_seconds(session: Session, now: datetime) -> float:
        return (now - session.last_activity).total_seconds()

    def _update_gauge(self) -> None:
        active_sessions.set(len(self._sessions))
