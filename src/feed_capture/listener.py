"""HTTP listener that receives pushed feed events and hands them to the store."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from .errors import ErrorPolicy, FilesystemError, ParseError
from .logging import correlation_scope, log_context, truncate
from .schemas import CallbackEvent
from .settings import CALLBACK_PATH

logger = logging.getLogger(__name__)
_REQUEST_LOGGER = logging.getLogger("feed_capture.request")

CALLBACK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class EventSink(Protocol):
    def write(self, category: str, raw: bytes) -> Any: ...


@dataclass(slots=True)
class CallbackStats:
    """Thread-safe counters describing what the listener has seen."""

    received: int = 0
    parse_failures: int = 0
    writes: int = 0
    write_failures: int = 0
    last_event_at: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(
        self,
        *,
        parsed: bool,
        writes: int = 0,
        write_failures: int = 0,
    ) -> None:
        with self._lock:
            self.received += 1
            if not parsed:
                self.parse_failures += 1
            self.writes += writes
            self.write_failures += write_failures
            self.last_event_at = datetime.now(tz=UTC).isoformat()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "received": self.received,
                "parse_failures": self.parse_failures,
                "writes": self.writes,
                "write_failures": self.write_failures,
                "last_event_at": self.last_event_at,
            }


@dataclass(slots=True)
class CallbackOutcome:
    categories: list[str]
    written: list[str]
    failed: list[str]
    parsed: bool


class CallbackDispatcher:
    """Parse callback bodies and fan each category out to the sink.

    Each category key triggers one write carrying the *full* raw body. Parse and
    write failures go through the error policy and never reach the caller.
    """

    def __init__(
        self,
        sink: EventSink,
        *,
        policy: ErrorPolicy | None = None,
        stats: CallbackStats | None = None,
        log_body_limit: int = 4096,
    ) -> None:
        self._sink = sink
        self._policy = policy or ErrorPolicy()
        self._stats = stats or CallbackStats()
        self._log_body_limit = log_body_limit

    @property
    def stats(self) -> CallbackStats:
        return self._stats

    def handle(self, raw: bytes) -> CallbackOutcome:
        logger.info(
            "callback.received",
            extra=log_context(
                bytes=len(raw),
                body=truncate(raw.decode("utf-8", errors="replace"), self._log_body_limit),
            ),
        )

        try:
            event = CallbackEvent.parse(raw)
        except ParseError as exc:
            self._policy.handle(exc, event="callback.parse_failed", bytes=len(raw))
            self._stats.record(parsed=False)
            return CallbackOutcome(categories=[], written=[], failed=[], parsed=False)

        categories = event.category_names
        written: list[str] = []
        failed: list[str] = []
        for category in categories:
            try:
                self._sink.write(category, raw)
            except FilesystemError as exc:
                failed.append(category)
                self._policy.handle(exc, event="callback.write_failed", category=category)
            else:
                written.append(category)

        self._stats.record(parsed=True, writes=len(written), write_failures=len(failed))
        logger.info(
            "callback.handled",
            extra=log_context(
                identity_chain_id=event.identity_chain_id or None,
                stream_source=event.stream_source,
                categories=",".join(categories) or "-",
                writes=len(written),
                write_failures=len(failed),
            ),
        )
        return CallbackOutcome(categories=categories, written=written, failed=failed, parsed=True)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request's log records with a correlation id and log its outcome."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or uuid4().hex[:12]

        with correlation_scope(correlation_id):
            start = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception:
                _REQUEST_LOGGER.exception(
                    "request.error",
                    extra=log_context(path=request.url.path, method=request.method),
                )
                raise
            _REQUEST_LOGGER.debug(
                "request.complete",
                extra=log_context(
                    path=request.url.path,
                    method=request.method,
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                ),
            )

        response.headers["X-Request-ID"] = correlation_id
        return response


def create_app(dispatcher: CallbackDispatcher) -> FastAPI:
    """Return the callback FastAPI application bound to ``dispatcher``."""

    app = FastAPI(
        title="feed-capture listener",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(RequestContextMiddleware)

    @app.api_route(CALLBACK_PATH, methods=CALLBACK_METHODS, include_in_schema=False)
    async def callback(request: Request) -> Response:
        try:
            body = await request.body()
        except ClientDisconnect:
            logger.warning("callback.client_disconnected")
            return Response(status_code=200)
        await run_in_threadpool(dispatcher.handle, body)
        return Response(status_code=200)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, Any]:
        return {"status": "ok", "callbacks": dispatcher.stats.snapshot()}

    return app


__all__ = [
    "CALLBACK_METHODS",
    "CallbackDispatcher",
    "CallbackOutcome",
    "CallbackStats",
    "EventSink",
    "RequestContextMiddleware",
    "create_app",
]
