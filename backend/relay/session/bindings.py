"""Per-connection bindings and room membership."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relay.session.models import ConnectionBinding

if TYPE_CHECKING:
    from collections.abc import Iterator

    from relay.messaging.protocol import ConnectionProtocol


class ConnectionRegistry:
    """Track which session room each live connection belongs to.

    The transport registers a binding when a socket is accepted and drops it
    when the socket closes. Rooms are the broadcast targets for a session.
    """

    def __init__(self) -> None:
        self._bindings: dict[str, ConnectionBinding] = {}  # connection_id -> binding
        self._rooms: dict[str, dict[str, ConnectionBinding]] = {}  # session_id -> {connection_id -> binding}

    def register(self, connection: ConnectionProtocol) -> ConnectionBinding:
        binding = ConnectionBinding(connection=connection)
        self._bindings[connection.connection_id] = binding
        return binding

    def unregister(self, connection_id: str) -> ConnectionBinding | None:
        """Drop a binding and its room membership. Return the binding if it existed."""
        binding = self._bindings.pop(connection_id, None)
        if binding is not None and binding.session_id is not None:
            self._leave_room(binding.session_id, connection_id)
        return binding

    def get(self, connection_id: str) -> ConnectionBinding | None:
        return self._bindings.get(connection_id)

    def __iter__(self) -> Iterator[ConnectionBinding]:
        return iter(list(self._bindings.values()))

    def __len__(self) -> int:
        return len(self._bindings)

    def join_room(self, binding: ConnectionBinding, session_id: str) -> None:
        """Attach a connection to a session room, leaving any previous one."""
        if binding.session_id is not None and binding.session_id != session_id:
            self._leave_room(binding.session_id, binding.connection_id)
            binding.unbind_player()
        binding.session_id = session_id
        self._rooms.setdefault(session_id, {})[binding.connection_id] = binding

    def room_members(self, session_id: str) -> dict[str, ConnectionBinding]:
        return self._rooms.get(session_id, {})

    def bindings_for_player(self, session_id: str, player_id: str) -> list[ConnectionBinding]:
        return [b for b in self.room_members(session_id).values() if b.player_id == player_id]

    def _leave_room(self, session_id: str, connection_id: str) -> None:
        members = self._rooms.get(session_id)
        if members is None:
            return
        members.pop(connection_id, None)
        if not members:
            del self._rooms[session_id]
