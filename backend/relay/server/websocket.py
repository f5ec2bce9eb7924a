from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

from relay.messaging.encoder import DecodeError, decode
from relay.messaging.protocol import ConnectionProtocol
from relay.messaging.types import ErrorMessage, ServerEvent, SessionErrorCode
from relay.server.rate_limit import TokenBucket

logger = structlog.get_logger()

if TYPE_CHECKING:
    from relay.messaging.router import MessageRouter

# 50 messages/sec sustained, burst of 80. Dice animations and character
# sheet edits arrive in short bursts from a single client.
RATE_LIMIT_RATE = 50.0
RATE_LIMIT_BURST = 80

# Disconnect after this many consecutive decode errors
MAX_DECODE_ERRORS = 5
DECODE_ERROR_CLOSE_CODE = 4004


class WebSocketConnection(ConnectionProtocol):
    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._connection_id = connection_id or str(uuid4())

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self._websocket.send_bytes(data)
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def receive_bytes(self) -> bytes:
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise ConnectionError("WebSocket already disconnected")
        # text frames are passed on as bytes and fail decoding like any other malformed frame
        if message.get("bytes") is not None:
            return message["bytes"]
        return (message.get("text") or "").encode()

    async def close(self, code: int = 1000, reason: str = "") -> None:
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


async def websocket_endpoint(websocket: WebSocket, router: MessageRouter) -> None:
    await websocket.accept()

    connection = WebSocketConnection(websocket)
    structlog.contextvars.bind_contextvars(connection_id=connection.connection_id)
    logger.info("websocket connected")
    await router.handle_connect(connection)

    bucket = TokenBucket(rate=RATE_LIMIT_RATE, burst=RATE_LIMIT_BURST)
    decode_errors = 0

    try:
        while True:
            raw = await connection.receive_bytes()

            # Decode before throttling so the malformed-frame strike counter stays accurate.
            try:
                data = decode(raw)
            except DecodeError as e:
                decode_errors += 1
                logger.warning("decode error", error=str(e), strikes=decode_errors)
                await connection.send_event(
                    ServerEvent.SESSION_ERROR,
                    ErrorMessage(code=SessionErrorCode.INVALID_MESSAGE, message=str(e)),
                )
                if decode_errors >= MAX_DECODE_ERRORS:
                    logger.info("too many decode errors, disconnecting")
                    await connection.close(code=DECODE_ERROR_CLOSE_CODE, reason="too_many_decode_errors")
                    return
                continue

            decode_errors = 0

            if not bucket.consume():
                logger.warning("session error sent to client", error_code=SessionErrorCode.RATE_LIMITED)
                await connection.send_event(
                    ServerEvent.SESSION_ERROR,
                    ErrorMessage(code=SessionErrorCode.RATE_LIMITED, message="Too many messages"),
                )
                continue
            await router.handle_message(connection, data)
    except (WebSocketDisconnect, RuntimeError, ConnectionError):
        pass
    finally:
        logger.info("websocket disconnected")
        await router.handle_disconnect(connection)
        structlog.contextvars.clear_contextvars()
