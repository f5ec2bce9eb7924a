import secrets
import string
import time
from collections.abc import Callable

import structlog

from relay.session.models import Session, to_millis
from relay.session.types import SessionInfo, SessionSummary

logger = structlog.get_logger()

DEFAULT_SESSION_ID_PREFIX = "rinascimento"
_SESSION_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_SESSION_SUFFIX_LENGTH = 6


class SessionStore:
    """In-memory table of live sessions.

    Owned by the application and handed to the relay engine and the janitor.
    Nothing here survives a restart.
    """

    def __init__(
        self,
        *,
        id_prefix: str = DEFAULT_SESSION_ID_PREFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._id_prefix = id_prefix
        self._clock = clock
        self._sessions: dict[str, Session] = {}  # session_id -> Session

    def now(self) -> float:
        return self._clock()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def create(self) -> str:
        """Create an empty session and return its id."""
        session_id = self._new_session_id()
        now = self.now()
        self._sessions[session_id] = Session(id=session_id, created_at=now, last_activity=now)
        logger.info("session created", session_id=session_id)
        return session_id

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def touch(self, session_id: str) -> None:
        """Record activity on a session."""
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_activity = self.now()

    async def sweep(self, now: float, idle_threshold: float) -> list[str]:
        """Evict sessions whose players are all offline and that have been idle too long.

        Candidates are snapshotted first, then each one is re-checked while
        holding its lock so a handler that got in first wins.
        """
        candidates = [session for session in list(self._sessions.values()) if self._is_idle(session, now, idle_threshold)]
        evicted: list[str] = []
        for session in candidates:
            async with session.lock:
                if self._sessions.get(session.id) is not session:
                    continue
                if not self._is_idle(session, now, idle_threshold):
                    continue
                del self._sessions[session.id]
            evicted.append(session.id)
            logger.info(
                "evicted idle session",
                session_id=session.id,
                idle_seconds=round(now - session.last_activity),
            )
        return evicted

    def list_summaries(self) -> list[SessionSummary]:
        """Return sessions that have at least one online player, newest first."""
        sessions = [s for s in self._sessions.values() if s.online_count > 0]
        return [
            SessionSummary(
                session_id=s.id,
                player_count=s.online_count,
                has_master=s.live_master() is not None,
                created_at=to_millis(s.created_at),
            )
            for s in self._newest_first(sessions)
        ]

    def list_sessions(self) -> list[SessionInfo]:
        """Return every session, online or not, newest first."""
        return [
            SessionInfo(
                id=s.id,
                player_count=s.online_count,
                total_players=s.total_players,
                created_at=to_millis(s.created_at),
                has_master=s.live_master() is not None,
                master_name=s.master_name,
            )
            for s in self._newest_first(list(self._sessions.values()))
        ]

    @staticmethod
    def _is_idle(session: Session, now: float, idle_threshold: float) -> bool:
        return session.all_offline and now - session.last_activity > idle_threshold

    @staticmethod
    def _newest_first(sessions: list[Session]) -> list[Session]:
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def _new_session_id(self) -> str:
        while True:
            suffix = "".join(secrets.choice(_SESSION_SUFFIX_ALPHABET) for _ in range(_SESSION_SUFFIX_LENGTH))
            session_id = f"{self._id_prefix}-{suffix}"
            if session_id not in self._sessions:
                return session_id
