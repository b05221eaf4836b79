"""Background maintenance loops.

Runs periodic housekeeping as plain asyncio background loops:
- purge_tts_cache: drop expired synthesized audio
- sweep_sessions: evict sessions idle past the TTL that missed their timer

Tasks are defined separately from the loop runner so tests can call them
directly.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.companion.context.session import SessionStore
from src.companion.core.cache import TtsCache

logger = structlog.get_logger(__name__)


def build_maintenance_tasks(store: SessionStore, tts_cache: TtsCache) -> dict:
    """Return a dict mapping task name to async callable.

    Each task logs its own failure and returns 0, so one bad run never
    stops the loop.
    """

    async def purge_tts_cache_task() -> int:
        try:
            purged = tts_cache.purge_expired()
            logger.info("maintenance.tts_cache_purged", purged=purged)
            return purged
        except Exception:
            logger.warning("maintenance.tts_cache_purge_failed", exc_info=True)
            return 0

    async def sweep_sessions_task() -> int:
        try:
            evicted = store.sweep_expired()
            logger.info(
                "maintenance.sessions_swept",
                evicted=evicted,
                active=store.active_count(),
            )
            return evicted
        except Exception:
            logger.warning("maintenance.session_sweep_failed", exc_info=True)
            return 0

    return {
        "purge_tts_cache": purge_tts_cache_task,
        "sweep_sessions": sweep_sessions_task,
    }


async def _run_periodically(
    name: str, task_fn: Callable[[], Awaitable[int]], interval_seconds: float
) -> None:
    """Await ``task_fn`` every ``interval_seconds`` until cancelled."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            await task_fn()
        except asyncio.CancelledError:
            logger.info("maintenance.task_cancelled", task=name)
            break
        except Exception:
            logger.warning("maintenance.task_loop_error", task=name, exc_info=True)


def start_maintenance_background(tasks: dict, interval_seconds: float, app_state) -> None:
    """Start one loop per task and keep the task handles on app_state.

    Args:
        tasks: Dict mapping task name to async callable.
        interval_seconds: Sleep between runs.
        app_state: FastAPI app.state; receives ``maintenance_tasks``.
    """
    app_state.maintenance_tasks = [
        asyncio.create_task(
            _run_periodically(name, task_fn, interval_seconds),
            name=f"maintenance_{name}",
        )
        for name, task_fn in tasks.items()
    ]
    logger.info(
        "maintenance.background_tasks_started",
        task_count=len(app_state.maintenance_tasks),
        interval_seconds=interval_seconds,
    )
