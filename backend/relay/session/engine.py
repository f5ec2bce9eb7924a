"""Modern event handlers: session join/rejoin, presence and game-state relay."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

import structlog

from relay.messaging.types import (
    ActiveSessionsMessage,
    CharacterUpdateMessage,
    ErrorMessage,
    JoinedSessionMessage,
    LegacyPlayerDisconnectedMessage,
    MessageAckMessage,
    PlayerJoinedMessage,
    PlayerUpdateMessage,
    ServerEvent,
    SessionCreatedMessage,
    SessionErrorCode,
)
from relay.session.broadcast import Outbox
from relay.session.models import SYSTEM_AUTHOR, LogEntry, LogEntryType, PlayerRecord

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pydantic import BaseModel

    from relay.messaging.types import PlayerData
    from relay.session.bindings import ConnectionRegistry
    from relay.session.models import ConnectionBinding, Session
    from relay.session.session_store import SessionStore

logger = structlog.get_logger()

SESSION_NOT_FOUND_TEXT = "Sessione non trovata"
MASTER_ALREADY_PRESENT_TEXT = "C'è già un Game Master in questa sessione"
REJOIN_FAILED_TEXT = "Impossibile riconnettersi alla sessione"

_LOGGED_STATE_TYPES = {
    LogEntryType.DICE_ROLL.value: LogEntryType.DICE_ROLL,
    LogEntryType.GM_NOTE.value: LogEntryType.GM_NOTE,
}
_LOG_TYPE_LABELS = {
    LogEntryType.DICE_ROLL: "Tiro dadi",
    LogEntryType.GM_NOTE: "Nota del master",
}


def summarize_game_state(entry_type: LogEntryType, payload: dict[str, Any]) -> str:
    """Human-readable log line for a game-state payload.

    An explicit note wins; otherwise a roll total is reported when present.
    """
    note = payload.get("note")
    if note:
        return str(note)
    roll = payload.get("roll")
    label = _LOG_TYPE_LABELS[entry_type]
    if isinstance(roll, dict) and roll.get("total") is not None:
        return f"{label}: {roll['total']}"
    return label


class RelayEngine:
    """Apply client events to session state and fan the results out.

    Every mutation of a Session happens while holding its lock. The messages
    describing a mutation are queued in an Outbox inside the lock and sent
    once it is released, so room members never see an update ahead of the
    state change and a slow socket cannot stall other handlers.

    Handlers that need a bound session or player return silently when the
    binding is stale: a disconnected or racing client is not a user error.
    """

    def __init__(self, store: SessionStore, bindings: ConnectionRegistry) -> None:
        self._store = store
        self._bindings = bindings

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def bindings(self) -> ConnectionRegistry:
        return self._bindings

    # --- Shared primitives (also used by the legacy adapter) ---

    @contextlib.asynccontextmanager
    async def locked_session(self, session_id: str | None) -> AsyncIterator[Session | None]:
        """Hold the lock of a session for the duration of the block.

        Yields None if the session does not exist, or was evicted while we
        waited for the lock.
        """
        session = self._store.get(session_id) if session_id else None
        if session is None:
            yield None
            return
        async with session.lock:
            yield session if self._store.get(session.id) is session else None

    def attach(self, binding: ConnectionBinding, session: Session) -> None:
        """Put a connection in the session room and record activity."""
        self._bindings.join_room(binding, session.id)
        self._store.touch(session.id)

    def broadcast(
        self,
        outbox: Outbox,
        session_id: str,
        event: ServerEvent,
        data: BaseModel | dict[str, Any] | None,
        *,
        exclude: ConnectionBinding | None = None,
    ) -> None:
        """Queue an event for the current members of a session room."""
        outbox.broadcast(
            self._bindings.room_members(session_id),
            event,
            data,
            exclude_connection_id=exclude.connection_id if exclude is not None else None,
        )

    def new_player(self, binding: ConnectionBinding, **fields: Any) -> PlayerRecord:
        """Build a record whose id is derived from the creating connection."""
        return PlayerRecord(id=binding.connection_id, joined_at=self._store.now(), **fields)

    async def release_replaced(self, binding: ConnectionBinding, previous: tuple[str, str] | None) -> None:
        """Take the player a connection used to speak for offline.

        ``previous`` is the ``(session_id, player_id)`` the binding held
        before a join or rejoin; nothing happens if it still holds it. Called
        once the new session's lock is released, so two session locks are
        never held at once.
        """
        if previous is None:
            return
        session_id, player_id = previous
        if binding.session_id == session_id and binding.player_id == player_id:
            return

        async with Outbox() as outbox, self.locked_session(session_id) as session:
            record = session.players.get(player_id) if session is not None else None
            if session is None or record is None or not record.online:
                return
            # another socket rejoined as this player in the meantime
            if self._bindings.bindings_for_player(session_id, player_id):
                return
            self._mark_offline(outbox, session, record, exclude=binding)

        logger.info("player released by its connection", session_id=session_id, player_id=player_id)

    @staticmethod
    def current_identity(binding: ConnectionBinding) -> tuple[str, str] | None:
        if binding.session_id is None or binding.player_id is None:
            return None
        return binding.session_id, binding.player_id

    def queue_error(self, outbox: Outbox, binding: ConnectionBinding, code: SessionErrorCode, message: str) -> None:
        logger.warning("session error sent to client", error_code=code.value, error_message=message)
        outbox.send(binding.connection, ServerEvent.SESSION_ERROR, ErrorMessage(code=code, message=message))

    # --- Session lifecycle ---

    async def create_session(self, binding: ConnectionBinding) -> None:
        session_id = self._store.create()
        await binding.connection.send_event(
            ServerEvent.SESSION_CREATED,
            SessionCreatedMessage(session_id=session_id),
        )

    async def join_session(self, binding: ConnectionBinding, session_id: str) -> None:
        """Attach as a spectator: the connection sees the room but has no player.

        Moving to another session takes the player held in the previous one
        offline.
        """
        previous = self.current_identity(binding)
        async with Outbox() as outbox, self.locked_session(session_id) as session:
            if session is None:
                self.queue_error(outbox, binding, SessionErrorCode.SESSION_NOT_FOUND, SESSION_NOT_FOUND_TEXT)
                return
            self.attach(binding, session)
            outbox.send(
                binding.connection,
                ServerEvent.JOINED_SESSION,
                JoinedSessionMessage(
                    session_id=session.id,
                    players=session.get_player_info(),
                    game_log=session.get_log_info(),
                    game_state=dict(session.game_state),
                ),
            )
        logger.info("connection joined session", session_id=session_id)
        await self.release_replaced(binding, previous)

    async def join_as_game_master(self, binding: ConnectionBinding, session_id: str, player_data: PlayerData) -> None:
        await self._join_with_role(binding, session_id, player_data, as_master=True)

    async def join_as_player(self, binding: ConnectionBinding, session_id: str, player_data: PlayerData) -> None:
        await self._join_with_role(binding, session_id, player_data, as_master=False)

    async def _join_with_role(
        self,
        binding: ConnectionBinding,
        session_id: str,
        player_data: PlayerData,
        *,
        as_master: bool,
    ) -> None:
        previous = self.current_identity(binding)
        async with Outbox() as outbox, self.locked_session(session_id) as session:
            if session is None:
                self.queue_error(outbox, binding, SessionErrorCode.SESSION_NOT_FOUND, SESSION_NOT_FOUND_TEXT)
                return

            if as_master and self._master_held_elsewhere(session, binding):
                self.queue_error(
                    outbox,
                    binding,
                    SessionErrorCode.MASTER_ALREADY_PRESENT,
                    MASTER_ALREADY_PRESENT_TEXT,
                )
                return

            record = self.new_player(
                binding,
                name=player_data.name,
                character_name=player_data.character_name,
                character_concept=player_data.character_concept,
            )
            session.add_player(record)
            if as_master:
                session.claim_master(record)

            self.attach(binding, session)
            binding.bind_player(session.id, record.id, is_master=as_master)

            info = record.to_info()
            outbox.send(
                binding.connection,
                ServerEvent.PLAYER_JOINED,
                PlayerJoinedMessage(player_id=record.id, player_data=info, is_master=as_master),
            )
            self.broadcast(outbox, session.id, ServerEvent.PLAYER_UPDATE, PlayerUpdateMessage(player=info), exclude=binding)

        logger.info("player joined", session_id=session_id, player_id=record.id, is_master=as_master)
        await self.release_replaced(binding, previous)

    async def rejoin_session(self, binding: ConnectionBinding, session_id: str, player_id: str) -> None:
        """Bring an existing player back online on this connection.

        Idempotent: repeating it with the same identity never adds players.
        """
        previous = self.current_identity(binding)
        async with Outbox() as outbox, self.locked_session(session_id) as session:
            record = session.players.get(player_id) if session is not None else None
            if session is None or record is None:
                self.queue_error(outbox, binding, SessionErrorCode.REJOIN_FAILED, REJOIN_FAILED_TEXT)
                return

            # A superseded socket keeps watching the room but no longer speaks for the player.
            for stale in self._bindings.bindings_for_player(session.id, player_id):
                if stale is not binding:
                    stale.unbind_player()

            record.online = True
            self.attach(binding, session)
            binding.bind_player(session.id, record.id, is_master=record.is_master)

            info = record.to_info()
            outbox.send(
                binding.connection,
                ServerEvent.PLAYER_JOINED,
                PlayerJoinedMessage(player_id=record.id, player_data=info, is_master=record.is_master),
            )
            self.broadcast(outbox, session.id, ServerEvent.PLAYER_UPDATE, PlayerUpdateMessage(player=info), exclude=binding)

        logger.info("player rejoined", session_id=session_id, player_id=player_id)
        await self.release_replaced(binding, previous)

    async def disconnect(self, binding: ConnectionBinding) -> None:
        """Mark the bound player offline. The record and the session are kept."""
        if not binding.has_player:
            return
        async with Outbox() as outbox, self.locked_session(binding.session_id) as session:
            record = session.players.get(binding.player_id) if session is not None else None
            if session is None or record is None:
                return
            self._mark_offline(outbox, session, record, exclude=binding)

        logger.info("player went offline", session_id=session.id, player_id=record.id)

    # --- Game traffic ---

    async def character_update(self, binding: ConnectionBinding, character: dict[str, Any] | None) -> None:
        if not binding.has_player:
            logger.debug("ignoring character update from unbound connection", connection_id=binding.connection_id)
            return
        async with Outbox() as outbox, self.locked_session(binding.session_id) as session:
            record = session.players.get(binding.player_id) if session is not None else None
            if session is None or record is None:
                return

            if character:
                record.merge_character(character)
            self._store.touch(session.id)

            self.broadcast(
                outbox,
                session.id,
                ServerEvent.GAME_STATE_UPDATE,
                CharacterUpdateMessage(player_id=record.id, player_name=record.name, character=character),
                exclude=binding,
            )

    async def game_state_update(self, binding: ConnectionBinding, payload: dict[str, Any]) -> None:
        """Relay a game-state blob to the whole room, sender included.

        Dice rolls and GM notes also land in the session log. Other types are
        kept as the latest value for their type so late joiners can catch up.
        """
        async with Outbox() as outbox, self.locked_session(binding.session_id) as session:
            if session is None:
                return

            self._store.touch(session.id)
            state_type = payload.get("type")
            entry_type = _LOGGED_STATE_TYPES.get(state_type) if isinstance(state_type, str) else None
            if entry_type is not None:
                session.append_log(
                    LogEntry(
                        timestamp=self._store.now(),
                        type=entry_type,
                        author=str(payload.get("playerName") or SYSTEM_AUTHOR),
                        content=summarize_game_state(entry_type, payload),
                        data=payload,
                    ),
                )
            elif isinstance(state_type, str):
                session.game_state[state_type] = payload

            self.broadcast(outbox, session.id, ServerEvent.GAME_STATE_UPDATE, payload)

    async def gm_notes_update(self, binding: ConnectionBinding, notes: Any) -> None:  # noqa: ANN401
        """Overwrite the master's private notes. Non-masters are ignored."""
        if not binding.is_master:
            logger.debug("ignoring gm notes from non-master", connection_id=binding.connection_id)
            return
        async with self.locked_session(binding.session_id) as session:
            if session is None:
                return
            record = session.players.get(binding.player_id) if binding.player_id else None
            if record is None or not record.is_master:
                return
            session.gm_notes = notes
            self._store.touch(session.id)

        await binding.connection.send_event(ServerEvent.GM_NOTES_SAVED)

    async def get_active_sessions(self, binding: ConnectionBinding) -> None:
        await binding.connection.send_event(
            ServerEvent.ACTIVE_SESSIONS,
            ActiveSessionsMessage(sessions=self._store.list_summaries()),
        )

    # --- Connection utilities ---

    async def message_ack(self, binding: ConnectionBinding, message_id: Any) -> None:  # noqa: ANN401
        # empty ids (None, "", 0, False) are not acknowledged
        if not message_id:
            return
        await binding.connection.send_event(ServerEvent.MESSAGE_ACK, MessageAckMessage(message_id=message_id))

    async def ping(self, binding: ConnectionBinding) -> None:
        await binding.connection.send_event(ServerEvent.PONG)

    async def heartbeat(self, binding: ConnectionBinding) -> None:
        await binding.connection.send_event(ServerEvent.HEARTBEAT_ACK)

    # --- Internal helpers ---

    def _mark_offline(
        self,
        outbox: Outbox,
        session: Session,
        record: PlayerRecord,
        *,
        exclude: ConnectionBinding,
    ) -> None:
        record.online = False
        self._store.touch(session.id)
        self.broadcast(
            outbox,
            session.id,
            ServerEvent.PLAYER_UPDATE,
            PlayerUpdateMessage(player=record.to_info()),
            exclude=exclude,
        )
        self.broadcast(
            outbox,
            session.id,
            ServerEvent.LEGACY_PLAYER_DISCONNECTED,
            LegacyPlayerDisconnectedMessage(player_id=record.id, player_name=record.name),
            exclude=exclude,
        )

    @staticmethod
    def _master_held_elsewhere(session: Session, binding: ConnectionBinding) -> bool:
        """True if a live master exists that this connection does not speak for."""
        master = session.live_master()
        if master is None:
            return False
        return not (binding.session_id == session.id and binding.player_id == master.id)
