from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import ConfigDict

from relay.messaging.wire import WireModel

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol

SYSTEM_AUTHOR = "Sistema"

# Legacy clients send arbitrary player fields; these map onto typed attributes.
_LEGACY_PROFILE_FIELDS = {
    "name": "name",
    "characterName": "character_name",
    "characterConcept": "character_concept",
}
# Identity, role and presence are owned by the relay, never by client payloads.
_PROTECTED_FIELDS = frozenset({"id", "isMaster", "online", "joinedAt", "wantsToBeMaster"})


def to_millis(timestamp: float) -> int:
    """Convert epoch seconds to the integer milliseconds clients expect."""
    return int(timestamp * 1000)


class LogEntryType(StrEnum):
    DICE_ROLL = "diceRoll"
    GM_NOTE = "gmNote"
    LEGACY_MESSAGE = "legacyMessage"


class PlayerInfo(WireModel):
    """Player record as sent to clients. Legacy extra fields ride along."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    character_name: str
    character_concept: str
    character: dict[str, Any] | None = None
    is_master: bool
    online: bool
    joined_at: int


class LogEntryInfo(WireModel):
    timestamp: int
    type: LogEntryType
    author: str
    content: str
    data: dict[str, Any]


@dataclass
class PlayerRecord:
    """A participant within one session.

    Created on join and never removed: disconnects only flip ``online``,
    and a rejoin with the same id brings the same record back.
    """

    id: str
    name: str
    character_name: str = ""
    character_concept: str = ""
    character: dict[str, Any] | None = None
    is_master: bool = False
    online: bool = True
    joined_at: float = field(default_factory=time.time)
    extra: dict[str, Any] = field(default_factory=dict)

    def merge_character(self, patch: dict[str, Any]) -> None:
        """Shallow-merge attributes; keys absent from the patch are kept."""
        self.character = {**(self.character or {}), **patch}

    def apply_fields(self, fields: dict[str, Any]) -> None:
        """Overwrite profile fields one by one, as legacy ``update_player`` does."""
        for key, value in fields.items():
            if key in _PROTECTED_FIELDS:
                continue
            if key == "character":
                if isinstance(value, dict):
                    self.character = value
                continue
            attr = _LEGACY_PROFILE_FIELDS.get(key)
            if attr is None:
                self.extra[key] = value
            else:
                setattr(self, attr, "" if value is None else str(value))

    def to_info(self) -> PlayerInfo:
        return PlayerInfo.model_validate(
            {
                **self.extra,
                "id": self.id,
                "name": self.name,
                "character_name": self.character_name,
                "character_concept": self.character_concept,
                "character": self.character,
                "is_master": self.is_master,
                "online": self.online,
                "joined_at": to_millis(self.joined_at),
            },
        )


@dataclass(frozen=True)
class LogEntry:
    timestamp: float
    type: LogEntryType
    content: str
    data: dict[str, Any]
    author: str = SYSTEM_AUTHOR

    def to_info(self) -> LogEntryInfo:
        return LogEntryInfo(
            timestamp=to_millis(self.timestamp),
            type=self.type,
            author=self.author,
            content=self.content,
            data=self.data,
        )


@dataclass
class Session:
    """One shared game room.

    ``master_id`` is a lookup key into ``players``, not an owning reference.
    All mutation happens while holding ``lock``.
    """

    id: str
    created_at: float
    last_activity: float
    master_id: str | None = None
    players: dict[str, PlayerRecord] = field(default_factory=dict)  # player_id -> PlayerRecord
    game_log: list[LogEntry] = field(default_factory=list)
    game_state: dict[str, Any] = field(default_factory=dict)
    gm_notes: Any = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def online_count(self) -> int:
        return sum(1 for p in self.players.values() if p.online)

    @property
    def total_players(self) -> int:
        return len(self.players)

    @property
    def all_offline(self) -> bool:
        return self.online_count == 0

    def live_master(self) -> PlayerRecord | None:
        """Return the master if one is assigned and online."""
        master = self._master_record()
        if master is None or not master.is_master or not master.online:
            return None
        return master

    @property
    def master_name(self) -> str | None:
        master = self._master_record()
        return master.name if master is not None else None

    def add_player(self, record: PlayerRecord) -> None:
        self.players[record.id] = record

    def claim_master(self, record: PlayerRecord) -> None:
        """Give the master slot to ``record``.

        A previous holder keeps its record but loses the role, so it comes
        back as a regular player if it ever rejoins.
        """
        previous = self._master_record()
        if previous is not None and previous is not record:
            previous.is_master = False
        record.is_master = True
        self.master_id = record.id

    def append_log(self, entry: LogEntry) -> None:
        self.game_log.append(entry)

    def get_player_info(self) -> list[PlayerInfo]:
        return [p.to_info() for p in self.players.values()]

    def get_log_info(self) -> list[LogEntryInfo]:
        return [entry.to_info() for entry in self.game_log]

    def _master_record(self) -> PlayerRecord | None:
        if self.master_id is None:
            return None
        master = self.players.get(self.master_id)
        if master is None:
            # stale weak reference
            self.master_id = None
        return master


@dataclass
class ConnectionBinding:
    """What one live connection is attached to.

    Lifecycle:
    - Created unbound when the transport accepts a connection
    - ``joinSession`` sets ``session_id`` only (spectator)
    - joining as master/player or rejoining sets the player identity and role
    - Dropped when the connection closes; the PlayerRecord survives
    """

    connection: ConnectionProtocol
    session_id: str | None = None
    player_id: str | None = None
    is_master: bool | None = None
    last_seen: float = field(default_factory=time.monotonic)  # last inbound message

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def has_player(self) -> bool:
        return self.session_id is not None and self.player_id is not None

    def bind_player(self, session_id: str, player_id: str, *, is_master: bool) -> None:
        self.session_id = session_id
        self.player_id = player_id
        self.is_master = is_master

    def unbind_player(self) -> None:
        self.player_id = None
        self.is_master = None
