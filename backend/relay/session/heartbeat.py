"""Close connections that have gone silent."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from relay.session.bindings import ConnectionRegistry
    from relay.session.models import ConnectionBinding

HEARTBEAT_CHECK_INTERVAL = 5  # seconds between checks

logger = structlog.get_logger()


class HeartbeatMonitor:
    """Monitor client liveness and disconnect stale connections.

    Any inbound message counts as a sign of life; clients that have nothing
    to say send ``heartbeat``. Closing a connection ends its receive loop,
    which runs the normal disconnect path and marks the player offline.
    """

    def __init__(self, bindings: ConnectionRegistry, *, timeout_seconds: float) -> None:
        self._bindings = bindings
        self._timeout_seconds = timeout_seconds
        self._task: asyncio.Task[None] | None = None

    @staticmethod
    def record_activity(binding: ConnectionBinding) -> None:
        binding.last_seen = time.monotonic()

    def start(self) -> None:
        """Start the liveness check loop. Idempotent; a timeout of 0 disables it."""
        if self._timeout_seconds <= 0:
            return
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._check_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def close_stale(self) -> int:
        """Close every connection silent beyond the timeout. Return how many were closed."""
        now = time.monotonic()
        stale = [b for b in self._bindings if now - b.last_seen > self._timeout_seconds]
        for binding in stale:
            logger.info(
                "heartbeat timeout, disconnecting",
                connection_id=binding.connection_id,
                silent_seconds=round(now - binding.last_seen),
            )
            with contextlib.suppress(RuntimeError, OSError):
                await binding.connection.close(code=1000, reason="heartbeat_timeout")
        return len(stale)

    async def _check_loop(self) -> None:
        while True:
            await asyncio.sleep(HEARTBEAT_CHECK_INTERVAL)
            try:
                await self.close_stale()
            except Exception:
                logger.exception("heartbeat monitor encountered an error")
