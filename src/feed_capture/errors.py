"""Error taxonomy and the recoverable/fatal policy for the bridge."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from .logging import log_context

logger = logging.getLogger(__name__)


class FeedCaptureError(Exception):
    """Base class for bridge errors; ``kind`` keys the error policy."""

    kind: str = "internal"


class TransportError(FeedCaptureError):
    """Raised when an outbound call to the feed API cannot complete."""

    kind = "transport"


class ServerError(FeedCaptureError):
    """Raised when the feed API answers with a non-success status."""

    kind = "server"

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ParseError(FeedCaptureError):
    """Raised when an inbound or outbound JSON document is malformed."""

    kind = "parse"


class FilesystemError(FeedCaptureError):
    """Raised when the output directory or a category file cannot be written."""

    kind = "filesystem"


class ListenerStartupError(FeedCaptureError):
    """Raised when the callback listener fails to bind or become ready."""

    kind = "listener"


class FatalBridgeError(FeedCaptureError):
    """Raised by the orchestrator after a fatal error has stopped the bridge."""

    kind = "fatal"


class ErrorPolicy:
    """Decide whether a bridge error is logged-and-continued or fatal.

    Every handled error is logged with structured context. Kinds listed in
    ``fatal_kinds`` additionally trigger ``on_fatal`` so the orchestrator can
    shut down and exit non-zero.
    """

    def __init__(
        self,
        fatal_kinds: Iterable[str] = (),
        *,
        on_fatal: Callable[[FeedCaptureError], None] | None = None,
    ) -> None:
        self._fatal_kinds = frozenset(fatal_kinds)
        self._on_fatal = on_fatal

    def bind(self, on_fatal: Callable[[FeedCaptureError], None]) -> None:
        self._on_fatal = on_fatal

    def is_fatal(self, exc: FeedCaptureError) -> bool:
        return exc.kind in self._fatal_kinds

    def handle(self, exc: FeedCaptureError, *, event: str, **extra: Any) -> bool:
        """Log ``exc`` under ``event``; return True when it was fatal."""
        fatal = self.is_fatal(exc)
        ctx = log_context(
            error_kind=exc.kind,
            error=str(exc),
            fatal=fatal,
            **extra,
        )
        if isinstance(exc, ServerError):
            ctx.setdefault("status_code", exc.status_code)
        if fatal:
            logger.critical(event, extra=ctx)
            if self._on_fatal is not None:
                self._on_fatal(exc)
        else:
            logger.error(event, extra=ctx)
        return fatal


__all__ = [
    "ErrorPolicy",
    "FatalBridgeError",
    "FeedCaptureError",
    "FilesystemError",
    "ListenerStartupError",
    "ParseError",
    "ServerError",
    "TransportError",
]
