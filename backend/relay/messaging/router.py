from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from pydantic import ValidationError

from relay.messaging.types import (
    LEGACY_EVENTS,
    CharacterUpdatePayload,
    ClientEvent,
    ClientMessage,
    ErrorMessage,
    GmNotesPayload,
    JoinSessionPayload,
    JoinWithRolePayload,
    LegacyErrorResponse,
    LegacyJoinSessionPayload,
    MessageAckPayload,
    RejoinSessionPayload,
    ServerEvent,
    SessionErrorCode,
    UnknownEventError,
    describe_validation_error,
    parse_client_message,
)
from relay.session.legacy import LegacyAdapter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from relay.messaging.protocol import ConnectionProtocol
    from relay.session.engine import RelayEngine
    from relay.session.heartbeat import HeartbeatMonitor
    from relay.session.models import ConnectionBinding

    Handler = Callable[[ConnectionBinding, ClientMessage], Awaitable[dict[str, Any] | None]]

logger = structlog.get_logger()

T = TypeVar("T")

SERVER_ERROR_TEXT = "Server error"


class MessageRouter:
    """
    Routes inbound events to the relay engine or the legacy adapter.

    Owns the connection side table through the engine's registry: the
    transport reports connects and disconnects here and never touches
    session state itself. Contains no transport code and can be tested
    with in-memory connections.
    """

    def __init__(
        self,
        engine: RelayEngine,
        *,
        legacy: LegacyAdapter | None = None,
        heartbeat: HeartbeatMonitor | None = None,
    ) -> None:
        self._engine = engine
        self._legacy = legacy if legacy is not None else LegacyAdapter(engine)
        self._heartbeat = heartbeat
        self._handlers: dict[ClientEvent, Handler] = {
            ClientEvent.CREATE_SESSION: self._on_create_session,
            ClientEvent.JOIN_SESSION: self._on_join_session,
            ClientEvent.JOIN_AS_GAME_MASTER: self._on_join_as_game_master,
            ClientEvent.JOIN_AS_PLAYER: self._on_join_as_player,
            ClientEvent.REJOIN_SESSION: self._on_rejoin_session,
            ClientEvent.CHARACTER_UPDATE: self._on_character_update,
            ClientEvent.GAME_STATE_UPDATE: self._on_game_state_update,
            ClientEvent.GET_ACTIVE_SESSIONS: self._on_get_active_sessions,
            ClientEvent.GM_NOTES_UPDATE: self._on_gm_notes_update,
            ClientEvent.MESSAGE_ACK: self._on_message_ack,
            ClientEvent.PING: self._on_ping,
            ClientEvent.HEARTBEAT: self._on_heartbeat,
            ClientEvent.LEGACY_CREATE_SESSION: self._on_legacy_create_session,
            ClientEvent.LEGACY_JOIN_SESSION: self._on_legacy_join_session,
            ClientEvent.LEGACY_GAME_MESSAGE: self._on_legacy_game_message,
            ClientEvent.LEGACY_UPDATE_PLAYER: self._on_legacy_update_player,
        }

    async def handle_connect(self, connection: ConnectionProtocol) -> ConnectionBinding:
        return self._engine.bindings.register(connection)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        binding = self._engine.bindings.get(connection.connection_id)
        if binding is None:
            return
        try:
            await self._engine.disconnect(binding)
        finally:
            self._engine.bindings.unregister(connection.connection_id)

    async def handle_message(self, connection: ConnectionProtocol, raw_message: dict[str, Any]) -> None:
        binding = self._engine.bindings.get(connection.connection_id)
        if binding is None:
            binding = await self.handle_connect(connection)
        if self._heartbeat is not None:
            self._heartbeat.record_activity(binding)

        try:
            message = parse_client_message(raw_message)
        except UnknownEventError as e:
            logger.debug("ignoring unknown event", event=e.event)
            return
        except ValidationError as e:
            await self._reject_invalid(connection, raw_message, describe_validation_error(e))
            return

        try:
            response = await self._handlers[message.event](binding, message)
        except ConnectionError:
            raise
        except Exception:
            logger.exception("unexpected error while handling event", client_event=message.event)
            await connection.send_event(
                ServerEvent.ERROR,
                ErrorMessage(code=SessionErrorCode.SERVER_ERROR, message=SERVER_ERROR_TEXT),
            )
            return

        if response is not None and message.ack is not None:
            await connection.send_ack(message.ack, response)

    async def _reject_invalid(self, connection: ConnectionProtocol, raw_message: dict[str, Any], reason: str) -> None:
        logger.warning("invalid message", reason=reason)
        ack = raw_message.get("ack")
        if raw_message.get("event") in LEGACY_EVENTS and isinstance(ack, int):
            await connection.send_ack(ack, LegacyErrorResponse(error=reason))
            return
        await connection.send_event(
            ServerEvent.SESSION_ERROR,
            ErrorMessage(code=SessionErrorCode.INVALID_MESSAGE, message=reason),
        )

    # --- Modern events ---

    async def _on_create_session(self, binding: ConnectionBinding, _message: ClientMessage) -> None:
        await self._engine.create_session(binding)

    async def _on_join_session(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        payload = _expect(message, JoinSessionPayload)
        await self._engine.join_session(binding, payload.session_id)

    async def _on_join_as_game_master(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        payload = _expect(message, JoinWithRolePayload)
        await self._engine.join_as_game_master(binding, payload.session_id, payload.player_data)

    async def _on_join_as_player(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        payload = _expect(message, JoinWithRolePayload)
        await self._engine.join_as_player(binding, payload.session_id, payload.player_data)

    async def _on_rejoin_session(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        payload = _expect(message, RejoinSessionPayload)
        await self._engine.rejoin_session(binding, payload.session_id, payload.player_id)

    async def _on_character_update(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        payload = _expect(message, CharacterUpdatePayload)
        await self._engine.character_update(binding, payload.character)

    async def _on_game_state_update(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        # relayed verbatim, so the raw payload is used rather than the parsed model
        await self._engine.game_state_update(binding, message.data)

    async def _on_get_active_sessions(self, binding: ConnectionBinding, _message: ClientMessage) -> None:
        await self._engine.get_active_sessions(binding)

    async def _on_gm_notes_update(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        payload = _expect(message, GmNotesPayload)
        await self._engine.gm_notes_update(binding, payload.notes)

    async def _on_message_ack(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        payload = _expect(message, MessageAckPayload)
        await self._engine.message_ack(binding, payload.message_id)

    async def _on_ping(self, binding: ConnectionBinding, _message: ClientMessage) -> None:
        await self._engine.ping(binding)

    async def _on_heartbeat(self, binding: ConnectionBinding, _message: ClientMessage) -> None:
        await self._engine.heartbeat(binding)

    # --- Legacy events ---

    async def _on_legacy_create_session(self, binding: ConnectionBinding, _message: ClientMessage) -> dict[str, Any]:
        return await self._legacy.create_session(binding)

    async def _on_legacy_join_session(self, binding: ConnectionBinding, message: ClientMessage) -> dict[str, Any]:
        payload = _expect(message, LegacyJoinSessionPayload)
        return await self._legacy.join_session(binding, payload.session_id, payload.player_data)

    async def _on_legacy_game_message(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        await self._legacy.game_message(binding, message.data)

    async def _on_legacy_update_player(self, binding: ConnectionBinding, message: ClientMessage) -> None:
        await self._legacy.update_player(binding, message.data)


def _expect(message: ClientMessage, model: type[T]) -> T:
    """Narrow the parsed payload to the model registered for the event."""
    if not isinstance(message.payload, model):
        raise TypeError(f"{message.event} carried {type(message.payload).__name__}, expected {model.__name__}")
    return message.payload
