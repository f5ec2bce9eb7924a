import pytest

from relay.messaging.router import MessageRouter
from relay.server.app import create_app
from relay.server.settings import RelayServerSettings
from relay.session.bindings import ConnectionRegistry
from relay.session.engine import RelayEngine
from relay.session.legacy import LegacyAdapter
from relay.session.session_store import SessionStore
from relay.tests.mocks import MockConnection


class FakeClock:
    """Manually advanced clock for deterministic timestamps and eviction."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(clock=clock)


@pytest.fixture
def bindings():
    return ConnectionRegistry()


@pytest.fixture
def engine(store, bindings):
    return RelayEngine(store, bindings)


@pytest.fixture
def legacy(engine):
    return LegacyAdapter(engine)


@pytest.fixture
def message_router(engine, legacy):
    return MessageRouter(engine, legacy=legacy)


@pytest.fixture
def mock_connection():
    return MockConnection()


@pytest.fixture
def settings():
    return RelayServerSettings(
        cors_origins=["*"],
        janitor_interval_seconds=0,
        heartbeat_timeout_seconds=0,
    )


@pytest.fixture
def app(settings):
    return create_app(settings=settings, store=SessionStore())
