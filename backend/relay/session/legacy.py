"""Request/response handlers for clients still on the old event names.

Each handler returns the dict the client receives through its callback.
State changes go through the same Session and PlayerRecord operations as
the modern handlers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from relay.messaging.types import (
    LegacyCreateSessionResponse,
    LegacyErrorResponse,
    LegacyJoinSessionResponse,
    LegacyPlayerJoinedMessage,
    LegacyPlayerUpdatedMessage,
    LegacySessionView,
    ServerEvent,
)
from relay.session.broadcast import Outbox
from relay.session.engine import SESSION_NOT_FOUND_TEXT
from relay.session.models import SYSTEM_AUTHOR, LogEntry, LogEntryType, to_millis

if TYPE_CHECKING:
    from relay.session.engine import RelayEngine
    from relay.session.models import ConnectionBinding

logger = structlog.get_logger()

SESSION_CREATED_TEXT = "Sessione creata."


class LegacyAdapter:
    def __init__(self, engine: RelayEngine) -> None:
        self._engine = engine

    async def create_session(self, binding: ConnectionBinding) -> dict[str, Any]:
        session_id = self._engine.store.create()
        async with self._engine.locked_session(session_id) as session:
            if session is not None:
                session.append_log(
                    LogEntry(
                        timestamp=session.created_at,
                        type=LogEntryType.LEGACY_MESSAGE,
                        content=SESSION_CREATED_TEXT,
                        data={"author": SYSTEM_AUTHOR, "text": SESSION_CREATED_TEXT},
                    ),
                )
        logger.info("legacy session created", session_id=session_id, connection_id=binding.connection_id)
        return LegacyCreateSessionResponse(session_id=session_id).model_dump()

    async def join_session(
        self,
        binding: ConnectionBinding,
        session_id: str,
        player_data: dict[str, Any],
    ) -> dict[str, Any]:
        """Join and create a player in one step.

        ``wantsToBeMaster`` is honored only while no live master exists, the
        same rule the modern master join enforces.
        """
        previous = self._engine.current_identity(binding)
        async with Outbox() as outbox, self._engine.locked_session(session_id) as session:
            if session is None:
                return LegacyErrorResponse(error=SESSION_NOT_FOUND_TEXT).model_dump()

            self._engine.attach(binding, session)
            record = self._engine.new_player(binding, name="")
            record.apply_fields(player_data)
            session.add_player(record)

            if player_data.get("wantsToBeMaster") and session.live_master() is None:
                session.claim_master(record)
            binding.bind_player(session.id, record.id, is_master=record.is_master)

            response = LegacyJoinSessionResponse(
                session=LegacySessionView(
                    id=session.id,
                    players=session.get_player_info(),
                    game_log=session.get_log_info(),
                    master_id=session.master_id,
                ),
            )
            self._engine.broadcast(
                outbox,
                session.id,
                ServerEvent.LEGACY_PLAYER_JOINED,
                LegacyPlayerJoinedMessage(player=record.to_info()),
                exclude=binding,
            )

        logger.info("legacy player joined", session_id=session_id, player_id=record.id, is_master=record.is_master)
        await self._engine.release_replaced(binding, previous)
        return response.model_dump()

    async def game_message(self, binding: ConnectionBinding, data: dict[str, Any]) -> None:
        async with Outbox() as outbox, self._engine.locked_session(binding.session_id) as session:
            if session is None:
                return
            now = self._engine.store.now()
            session.append_log(
                LogEntry(
                    timestamp=now,
                    type=LogEntryType.LEGACY_MESSAGE,
                    author=str(data.get("author") or SYSTEM_AUTHOR),
                    content=str(data.get("text") or data.get("message") or ""),
                    data=data,
                ),
            )
            self._engine.store.touch(session.id)
            self._engine.broadcast(
                outbox,
                session.id,
                ServerEvent.LEGACY_GAME_MESSAGE,
                {**data, "timestamp": to_millis(now)},
            )

    async def update_player(self, binding: ConnectionBinding, data: dict[str, Any]) -> None:
        if not binding.has_player:
            logger.debug("ignoring update_player from unbound connection", connection_id=binding.connection_id)
            return
        async with Outbox() as outbox, self._engine.locked_session(binding.session_id) as session:
            record = session.players.get(binding.player_id) if session is not None else None
            if session is None or record is None:
                return
            record.apply_fields(data)
            self._engine.store.touch(session.id)
            self._engine.broadcast(
                outbox,
                session.id,
                ServerEvent.LEGACY_PLAYER_UPDATED,
                LegacyPlayerUpdatedMessage(player_id=record.id, player_data=record.to_info()),
                exclude=binding,
            )
