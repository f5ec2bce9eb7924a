"""Root conftest: test environment and log capture shared by every suite."""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

# Loaded before any relay module is imported so build metadata picks it up.
load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

from shared.logging import configure_structlog  # noqa: E402

# Records reach caplog as raw event dicts; no handler renders them.
configure_structlog()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Connection ids bound by one test must not leak into the next."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
