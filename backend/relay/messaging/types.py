from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay.messaging.wire import WireModel
from relay.session.models import LogEntryInfo, PlayerInfo
from relay.session.types import SessionSummary

_ID_FIELD = Field(min_length=1, max_length=100)


class ClientEvent(StrEnum):
    CREATE_SESSION = "createSession"
    JOIN_SESSION = "joinSession"
    JOIN_AS_GAME_MASTER = "joinAsGameMaster"
    JOIN_AS_PLAYER = "joinAsPlayer"
    REJOIN_SESSION = "rejoinSession"
    CHARACTER_UPDATE = "characterUpdate"
    GAME_STATE_UPDATE = "gameStateUpdate"
    GET_ACTIVE_SESSIONS = "getActiveSessions"
    GM_NOTES_UPDATE = "gmNotesUpdate"
    MESSAGE_ACK = "messageAck"
    PING = "ping"
    HEARTBEAT = "heartbeat"
    # request/response events kept for clients that have not migrated
    LEGACY_CREATE_SESSION = "create_session"
    LEGACY_JOIN_SESSION = "join_session"
    LEGACY_GAME_MESSAGE = "game_message"
    LEGACY_UPDATE_PLAYER = "update_player"


class ServerEvent(StrEnum):
    SESSION_CREATED = "sessionCreated"
    JOINED_SESSION = "joinedSession"
    PLAYER_JOINED = "playerJoined"
    PLAYER_UPDATE = "playerUpdate"
    SESSION_ERROR = "sessionError"
    GAME_STATE_UPDATE = "gameStateUpdate"
    ACTIVE_SESSIONS = "activeSessions"
    GM_NOTES_SAVED = "gmNotesSaved"
    MESSAGE_ACK = "messageAck"
    PONG = "pong"
    HEARTBEAT_ACK = "heartbeat-ack"
    ERROR = "error"
    LEGACY_PLAYER_JOINED = "player_joined"
    LEGACY_PLAYER_UPDATED = "player_updated"
    LEGACY_PLAYER_DISCONNECTED = "player_disconnected"
    LEGACY_GAME_MESSAGE = "game_message"


class SessionErrorCode(StrEnum):
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    MASTER_ALREADY_PRESENT = "MASTER_ALREADY_PRESENT"
    REJOIN_FAILED = "REJOIN_FAILED"
    INVALID_MESSAGE = "INVALID_MESSAGE"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"


# --- Inbound payloads ---


class _Payload(WireModel):
    model_config = ConfigDict(extra="ignore")


class ClientEnvelope(BaseModel):
    event: str = Field(min_length=1, max_length=64)
    data: dict[str, Any] | None = None
    ack: int | None = None


class PlayerData(_Payload):
    name: str = Field(min_length=1, max_length=100)
    character_name: str = Field(default="", max_length=200)
    character_concept: str = Field(default="", max_length=2000)


class JoinSessionPayload(_Payload):
    session_id: str = _ID_FIELD


class JoinWithRolePayload(_Payload):
    session_id: str = _ID_FIELD
    player_data: PlayerData


class RejoinSessionPayload(_Payload):
    session_id: str = _ID_FIELD
    player_id: str = _ID_FIELD


class CharacterUpdatePayload(_Payload):
    character: dict[str, Any] | None = None


class GameStatePayload(_Payload):
    """Opaque game-state blob; only the fields the log needs are typed."""

    model_config = ConfigDict(extra="allow")

    type: str | None = None


class GmNotesPayload(_Payload):
    notes: Any = None


class MessageAckPayload(_Payload):
    message_id: Any = None


class LegacyJoinSessionPayload(_Payload):
    session_id: str = _ID_FIELD
    player_data: dict[str, Any] = Field(default_factory=dict)


class OpaquePayload(_Payload):
    """Legacy payloads copied field by field; any map is accepted."""

    model_config = ConfigDict(extra="allow")


# Events without an entry carry no payload.
_PAYLOAD_MODELS: dict[ClientEvent, type[_Payload]] = {
    ClientEvent.JOIN_SESSION: JoinSessionPayload,
    ClientEvent.JOIN_AS_GAME_MASTER: JoinWithRolePayload,
    ClientEvent.JOIN_AS_PLAYER: JoinWithRolePayload,
    ClientEvent.REJOIN_SESSION: RejoinSessionPayload,
    ClientEvent.CHARACTER_UPDATE: CharacterUpdatePayload,
    ClientEvent.GAME_STATE_UPDATE: GameStatePayload,
    ClientEvent.GM_NOTES_UPDATE: GmNotesPayload,
    ClientEvent.MESSAGE_ACK: MessageAckPayload,
    ClientEvent.LEGACY_JOIN_SESSION: LegacyJoinSessionPayload,
    ClientEvent.LEGACY_GAME_MESSAGE: OpaquePayload,
    ClientEvent.LEGACY_UPDATE_PLAYER: OpaquePayload,
}

LEGACY_EVENTS = frozenset(
    {
        ClientEvent.LEGACY_CREATE_SESSION,
        ClientEvent.LEGACY_JOIN_SESSION,
        ClientEvent.LEGACY_GAME_MESSAGE,
        ClientEvent.LEGACY_UPDATE_PLAYER,
    },
)


class UnknownEventError(ValueError):
    def __init__(self, event: str) -> None:
        super().__init__(f"unknown event {event!r}")
        self.event = event


@dataclass(frozen=True)
class ClientMessage:
    """One parsed inbound frame.

    ``data`` is the payload exactly as the client sent it, for handlers
    that relay it verbatim.
    """

    event: ClientEvent
    payload: _Payload | None
    data: dict[str, Any]
    ack: int | None = None


def parse_client_message(raw: dict[str, Any]) -> ClientMessage:
    """Parse a decoded frame into a typed ClientMessage.

    Raises ValidationError for a malformed envelope or payload and
    UnknownEventError for an event name this server does not handle.
    """
    envelope = ClientEnvelope.model_validate(raw)
    try:
        event = ClientEvent(envelope.event)
    except ValueError:
        raise UnknownEventError(envelope.event) from None
    data = envelope.data or {}
    model = _PAYLOAD_MODELS.get(event)
    payload = model.model_validate(data) if model is not None else None
    return ClientMessage(event=event, payload=payload, data=data, ack=envelope.ack)


def describe_validation_error(error: ValidationError) -> str:
    """Condense a ValidationError into one line for clients."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "payload"
    return f"{location}: {first['msg']}"


# --- Outbound events ---


class SessionCreatedMessage(WireModel):
    session_id: str
    success: bool = True


class JoinedSessionMessage(WireModel):
    session_id: str
    players: list[PlayerInfo]
    game_log: list[LogEntryInfo]
    game_state: dict[str, Any]


class PlayerJoinedMessage(WireModel):
    player_id: str
    player_data: PlayerInfo
    is_master: bool


class PlayerUpdateMessage(WireModel):
    player: PlayerInfo


class ErrorMessage(WireModel):
    message: str
    code: SessionErrorCode


class CharacterUpdateMessage(WireModel):
    """Relayed to the rest of the room as a ``gameStateUpdate``."""

    type: Literal["characterUpdate"] = "characterUpdate"
    player_id: str
    player_name: str
    character: dict[str, Any] | None


class ActiveSessionsMessage(WireModel):
    sessions: list[SessionSummary]


class MessageAckMessage(WireModel):
    message_id: Any


class LegacyPlayerJoinedMessage(WireModel):
    player: PlayerInfo


class LegacyPlayerUpdatedMessage(WireModel):
    player_id: str
    player_data: PlayerInfo


class LegacyPlayerDisconnectedMessage(WireModel):
    player_id: str
    player_name: str


# --- Legacy callback responses ---


class LegacyCreateSessionResponse(WireModel):
    success: Literal[True] = True
    session_id: str


class LegacySessionView(WireModel):
    id: str
    players: list[PlayerInfo]
    game_log: list[LogEntryInfo]
    master_id: str | None


class LegacyJoinSessionResponse(WireModel):
    success: Literal[True] = True
    session: LegacySessionView


class LegacyErrorResponse(WireModel):
    success: Literal[False] = False
    error: str
