import asyncio
from typing import Any
from uuid import uuid4

from relay.messaging.encoder import decode, encode
from relay.messaging.protocol import ConnectionProtocol


class MockConnection(ConnectionProtocol):
    def __init__(self, connection_id: str | None = None) -> None:
        self._connection_id = connection_id or str(uuid4())
        self._inbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._outbox: list[dict[str, Any]] = []
        self._closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def sent_messages(self) -> list[dict[str, Any]]:
        return self._outbox.copy()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def events(self, name: str) -> list[dict[str, Any]]:
        """Payloads of every sent frame carrying the given event name."""
        return [m["data"] for m in self._outbox if m.get("event") == name]

    def event_names(self) -> list[str]:
        return [m["event"] for m in self._outbox]

    def clear(self) -> None:
        self._outbox.clear()

    async def send_bytes(self, data: bytes) -> None:
        if self._closed:
            raise RuntimeError("Connection is closed")
        # decode and store for test inspection
        self._outbox.append(decode(data))

    async def receive_bytes(self) -> bytes:
        if self._closed:
            raise RuntimeError("Connection is closed")
        return await self._inbox.get()

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self._closed = True
        self.close_code = code
        self.close_reason = reason

    def simulate_receive_nowait(self, data: dict[str, Any]) -> None:
        """Queue a message as if the client had sent it."""
        self._inbox.put_nowait(encode(data))
