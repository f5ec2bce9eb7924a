"""Periodic eviction of abandoned sessions."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from relay.session.session_store import SessionStore

logger = structlog.get_logger()


class SessionJanitor:
    """Sweep the store for sessions nobody is using.

    A session is evicted once all its players are offline and it has seen no
    activity for ``idle_seconds``. The task is owned by the application
    lifespan; an interval of 0 disables it.
    """

    def __init__(self, store: SessionStore, *, interval_seconds: float, idle_seconds: float) -> None:
        self._store = store
        self._interval_seconds = interval_seconds
        self._idle_seconds = idle_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic sweep. Idempotent."""
        if self._interval_seconds <= 0:
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._janitor_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def sweep_once(self) -> list[str]:
        evicted = await self._store.sweep(self._store.now(), self._idle_seconds)
        if evicted:
            logger.info("janitor sweep finished", evicted=len(evicted), remaining=self._store.session_count)
        return evicted

    async def _janitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("session janitor encountered an error")
