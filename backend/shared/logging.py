"""Structured logging configuration with structlog.

The relay logs through the stdlib root logger so uvicorn and starlette share
its handlers. Records are rendered as colored console lines for development
or as one JSON object per line for log aggregation, optionally mirrored to a
timestamped file.
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any, TextIO

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

VALID_LOG_FORMATS = frozenset({"json", "console"})
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Log enum fields (event names, error codes) by value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def configure_structlog() -> None:
    """Point structlog at stdlib logging; rendering is left to handler formatters."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _serialize_enums,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def resolve_log_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    name = level.upper()
    if name not in VALID_LOG_LEVELS:
        msg = f"Invalid log level {level!r}. Must be one of {', '.join(sorted(VALID_LOG_LEVELS))}."
        raise ValueError(msg)
    return logging.getLevelNamesMapping()[name]


def _make_formatter(log_format: str, *, colors: bool) -> logging.Formatter:
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colors)
    # tracebacks are formatted here, once per handler, rather than in the shared chain
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def _stream_handler(stream: TextIO, log_format: str) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(_make_formatter(log_format, colors=stream.isatty()))
    return handler


def _file_handler(log_dir: Path | str, log_format: str) -> tuple[logging.Handler, Path]:
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"
    handler = logging.FileHandler(path)
    handler.setFormatter(_make_formatter(log_format, colors=False))
    return handler, path


def setup_logging(
    level: str | int = "INFO",
    log_format: str = "console",
    log_dir: Path | str | None = None,
) -> Path | None:
    """Configure structlog and the root logger.

    Returns the path of the log file when ``log_dir`` is given, None
    otherwise. No file is written while running under pytest.
    """
    if log_format not in VALID_LOG_FORMATS:
        msg = f"Invalid log format {log_format!r}. Must be 'json' or 'console'."
        raise ValueError(msg)
    numeric_level = resolve_log_level(level)

    configure_structlog()

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_stream_handler(sys.stdout, log_format))

    if log_dir is None or "pytest" in sys.modules:
        return None
    handler, path = _file_handler(log_dir, log_format)
    root_logger.addHandler(handler)
    return path
