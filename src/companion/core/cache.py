"""In-memory TTL caches.

TTLCache keeps values with an absolute expiry, checks expiry lazily on
read, and evicts the oldest insertion once ``max_entries`` is reached.
``purge_expired`` is driven by the maintenance loop.

TtsCache specializes it for synthesized speech: the same text in the same
language always produces the same audio.
"""

from __future__ import annotations

import hashlib
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Generic, TypeVar

import structlog

from src.companion.schemas.conversation import Language

logger = structlog.get_logger(__name__)

V = TypeVar("V")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry(Generic[V]):
    value: V
    expires_at: datetime


class TTLCache(Generic[V]):
    """Bounded insertion-ordered cache with per-entry expiry.

    Args:
        ttl_seconds: Default lifetime of an entry.
        max_entries: Capacity; the oldest entry is dropped on overflow.
        clock: Returns the current time (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheEntry[V]] = OrderedDict()

    def get(self, key: str) -> V | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._store[key]
            return None
        return entry.value

    def set(self, key: str, value: V, ttl_seconds: float | None = None) -> None:
        if key in self._store:
            del self._store[key]
        elif len(self._store) >= self._max_entries:
            self._store.popitem(last=False)

        ttl = self._ttl if ttl_seconds is None else timedelta(seconds=ttl_seconds)
        self._store[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if now > entry.expires_at]
        for key in expired:
            del self._store[key]
        return len(expired)

    def size(self) -> int:
        return len(self._store)

    def __len__(self) -> int:
        return len(self._store)


class TtsCache(TTLCache[str]):
    """Base64 audio keyed by language and normalized text."""

    @staticmethod
    def build_key(language: Language | str, text: str) -> str:
        code = language.value if isinstance(language, Language) else str(language)
        digest = hashlib.sha256(text.strip().casefold().encode("utf-8")).hexdigest()
        return f"tts:{code}:{digest}"

    def get_audio(self, language: Language | str, text: str) -> str | None:
        return self.get(self.build_key(language, text))

    def set_audio(self, language: Language | str, text: str, audio: str) -> None:
        self.set(self.build_key(language, text), audio)

    def purge_expired(self) -> int:
        purged = super().purge_expired()
        if purged:
            logger.info("tts_cache.purged", purged=purged, remaining=self.size())
        return purged
