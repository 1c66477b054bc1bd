"""Console logging for the capture bridge.

One line per record: UTC timestamp, level, logger, the correlation id of the
callback request being handled (``-`` outside a request) and the record's
``extra`` fields as ``key=value`` pairs. Callback bodies are logged through
``extra``, so values containing whitespace are JSON-quoted to keep each record
on a single line.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from .settings import Settings

_CORRELATION_ID: ContextVar[str | None] = ContextVar("feed_capture_correlation_id", default=None)

# Everything a bare LogRecord carries, plus what Formatter.format adds to it.
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "correlation_id",
    "color_message",
}

_CONFIGURED_FLAG = "_feed_capture_configured"

# Third-party loggers that should share the bridge's single handler.
_ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "httpx")


class ConsoleLogFormatter(logging.Formatter):
    """Render records as ``<time> <LEVEL> <logger> [cid=<id>] <event> k=v ...``."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)-5s %(name)s [cid=%(correlation_id)s] %(message)s")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")
        return stamp.replace("+00:00", "Z")

    def format(self, record: logging.LogRecord) -> str:
        record.correlation_id = _CORRELATION_ID.get() or "-"
        line = super().format(record)
        fields = [
            f"{key}={_render(value)}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        ]
        return " ".join([line, *fields]) if fields else line


def setup_logging(settings: Settings) -> None:
    """Install the console handler on the root logger at ``settings.log_level``.

    Safe to call more than once; later calls only adjust the level.
    """
    root = logging.getLogger()
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO

    root.setLevel(level)
    if getattr(root, _CONFIGURED_FLAG, False):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(ConsoleLogFormatter())
    root.handlers = [handler]

    for name in _ROUTED_LOGGERS:
        routed = logging.getLogger(name)
        routed.handlers.clear()
        routed.propagate = True
    # httpx logs every request at INFO; the client logs its own outcome lines.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    setattr(root, _CONFIGURED_FLAG, True)


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Tag every record logged inside the block with ``correlation_id``."""
    token = _CORRELATION_ID.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _CORRELATION_ID.reset(token)


def log_context(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` payload, leaving out fields whose value is ``None``."""
    return {key: value for key, value in fields.items() if value is not None}


def truncate(text: str, limit: int) -> str:
    """Clip long payloads for log lines; ``limit <= 0`` disables clipping."""
    if limit <= 0 or len(text) <= limit:
        return text
    return f"{text[:limit]}...(+{len(text) - limit} chars)"


def _render(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text):
        return json.dumps(text, ensure_ascii=False)
    return text


__all__ = [
    "ConsoleLogFormatter",
    "correlation_scope",
    "log_context",
    "setup_logging",
    "truncate",
]
