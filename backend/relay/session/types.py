"""
Pydantic models for session listings.
"""

from relay.messaging.wire import WireModel


class SessionSummary(WireModel):
    """Active session entry for the ``activeSessions`` event."""

    session_id: str
    player_count: int
    has_master: bool
    created_at: int


class SessionInfo(WireModel):
    """Session entry for the HTTP ``/sessions`` listing."""

    id: str
    player_count: int
    total_players: int
    created_at: int
    has_master: bool
    master_name: str | None
