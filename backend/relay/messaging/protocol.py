"""Abstract connection protocol for the MessagePack event relay."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from relay.messaging.encoder import decode, encode

ACK_EVENT = "ack"


def build_frame(event: str, data: BaseModel | dict[str, Any] | None = None) -> dict[str, Any]:
    """Wrap an outbound payload into the ``{event, data}`` envelope."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return {"event": str(event), "data": data if data is not None else {}}


class ConnectionProtocol(ABC):
    """
    Abstract interface for a client connection.

    Lets the relay engine run against in-memory connections in tests
    and against Starlette WebSockets in production.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique identifier for this connection."""
        ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None: ...

    @abstractmethod
    async def receive_bytes(self) -> bytes: ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    async def send_message(self, data: dict[str, Any]) -> None:
        await self.send_bytes(encode(data))

    async def receive_message(self) -> dict[str, Any]:
        raw = await self.receive_bytes()
        return decode(raw)

    async def send_event(self, event: str, data: BaseModel | dict[str, Any] | None = None) -> None:
        """Send a named event to this client."""
        await self.send_message(build_frame(event, data))

    async def send_ack(self, ack_id: int, data: BaseModel | dict[str, Any]) -> None:
        """Answer a request that carried a callback id."""
        frame = build_frame(ACK_EVENT, data)
        frame["ack"] = ack_id
        await self.send_message(frame)
