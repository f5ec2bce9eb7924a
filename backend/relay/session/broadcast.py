"""Fan events out to the connections in a room."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from relay.messaging.protocol import build_frame

if TYPE_CHECKING:
    from pydantic import BaseModel

    from relay.messaging.protocol import ConnectionProtocol
    from relay.session.models import ConnectionBinding


@dataclass
class _Delivery:
    recipients: list[ConnectionProtocol]
    frame: dict[str, Any]
    best_effort: bool


@dataclass
class Outbox:
    """Messages captured inside a session lock and sent after it is released.

    Frames and recipient lists are fixed when queued, so what a client
    receives describes the state at that moment even if the room changes
    before ``flush``. Used as an async context manager it flushes on a clean
    exit; enter it before the session lock so the lock is released first.

    Room deliveries skip recipients whose socket is going away. A failure
    on a direct send to the requesting client propagates.
    """

    _deliveries: list[_Delivery] = field(default_factory=list)

    async def __aenter__(self) -> Outbox:
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, *_exc: object) -> None:
        if exc_type is None:
            await self.flush()

    def __len__(self) -> int:
        return len(self._deliveries)

    def send(self, connection: ConnectionProtocol, event: str, data: BaseModel | dict[str, Any] | None = None) -> None:
        self._deliveries.append(_Delivery([connection], build_frame(event, data), best_effort=False))

    def broadcast(
        self,
        members: dict[str, ConnectionBinding],
        event: str,
        data: BaseModel | dict[str, Any] | None,
        exclude_connection_id: str | None = None,
    ) -> None:
        recipients = [b.connection for b in members.values() if b.connection_id != exclude_connection_id]
        self._deliveries.append(_Delivery(recipients, build_frame(event, data), best_effort=True))

    async def flush(self) -> None:
        deliveries, self._deliveries = self._deliveries, []
        for delivery in deliveries:
            for connection in delivery.recipients:
                if not delivery.best_effort:
                    await connection.send_message(delivery.frame)
                    continue
                with contextlib.suppress(RuntimeError, OSError):
                    await connection.send_message(delivery.frame)
