"""Process orchestration: output directory, listener, subscription lifecycle."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

import httpx

from .client import SubscriptionClient
from .errors import (
    ErrorPolicy,
    FatalBridgeError,
    FeedCaptureError,
    FilesystemError,
    ParseError,
    ServerError,
    TransportError,
)
from .listener import CallbackDispatcher, CallbackStats, create_app
from .logging import log_context
from .schemas import default_categories
from .server import ListenerServer
from .settings import CALLBACK_PATH, Settings
from .store import OutputStore

logger = logging.getLogger(__name__)


class CaptureBridge:
    """Wire the store, listener and subscription client together.

    :meth:`run` blocks until :meth:`stop` is called (or a fatal error stops the
    bridge) and always attempts to unregister the subscription on the way out.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.Client | None = None,
        store: OutputStore | None = None,
    ) -> None:
        self._settings = settings
        self._stop = threading.Event()
        self._fatal: FeedCaptureError | None = None
        self._policy = ErrorPolicy(settings.fatal_error_kinds, on_fatal=self._on_fatal)
        self._store = store or OutputStore.from_settings(settings)
        self._stats = CallbackStats()
        self._dispatcher = CallbackDispatcher(
            self._store,
            policy=self._policy,
            stats=self._stats,
            log_body_limit=settings.log_body_limit,
        )
        self._app = create_app(self._dispatcher)
        self._server = ListenerServer(
            self._app,
            host=settings.listener_host,
            port=settings.listener_port,
        )
        self._http_client = http_client
        self._client: SubscriptionClient | None = None
        self._ready = threading.Event()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def stats(self) -> CallbackStats:
        return self._stats

    @property
    def store(self) -> OutputStore:
        return self._store

    @property
    def server(self) -> ListenerServer:
        return self._server

    @property
    def client(self) -> SubscriptionClient | None:
        return self._client

    @property
    def categories(self) -> Sequence[str]:
        if self._settings.categories:
            return tuple(self._settings.categories)
        return default_categories(self._settings.feed_api_version or "v0.1")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Start everything, block until stopped, then clean up."""
        try:
            self.start()
            self._stop.wait()
        finally:
            self.shutdown()

        if self._fatal is not None:
            raise FatalBridgeError(f"bridge stopped after fatal error: {self._fatal}") from self._fatal

    def start(self) -> None:
        """Directory, listener, readiness, subscription. Returns once subscribed."""
        try:
            self._store.ensure_directory()
        except FilesystemError as exc:
            path = str(self._store.output_dir)
            if self._policy.handle(exc, event="store.directory.failed", path=path):
                return

        self._server.start()
        self._server.wait_ready(self._settings.readiness_timeout)

        self._client = SubscriptionClient.from_settings(
            self._settings,
            callback_url=self._callback_url(),
            client=self._http_client,
        )
        self._subscribe()
        self._ready.set()

    def wait_until_started(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def stop(self) -> None:
        self._stop.set()

    def shutdown(self) -> None:
        if self._client is not None:
            self._unsubscribe()
            self._client.close()
        self._server.stop()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _callback_url(self) -> str:
        if self._settings.listener_port == 0 and self._settings.callback_url.endswith(
            f":0{CALLBACK_PATH}"
        ):
            return f"http://{self._settings.callback_host}:{self._server.port}{CALLBACK_PATH}"
        return self._settings.callback_url

    def _subscribe(self) -> None:
        assert self._client is not None
        categories = list(self.categories)
        try:
            subscription_id = self._client.register(categories)
        except (TransportError, ServerError, ParseError) as exc:
            self._policy.handle(
                exc,
                event="subscription.register.failed",
                url=self._settings.feed_api_url,
                categories=len(categories),
            )
            return
        logger.info(
            "subscription.active",
            extra=log_context(
                subscription_id=subscription_id,
                categories=",".join(categories),
                callback_url=self._client.subscription.callback_url,
            ),
        )

    def _unsubscribe(self) -> None:
        assert self._client is not None
        subscription_id = self._client.subscription_id
        if not subscription_id:
            logger.info("subscription.delete.skipped", extra=log_context(reason="no_active_subscription"))
            return
        try:
            self._client.unregister(subscription_id)
        except (TransportError, ServerError) as exc:
            logger.error(
                "subscription.delete.failed",
                extra=log_context(subscription_id=subscription_id, error=str(exc)),
            )

    def _on_fatal(self, exc: FeedCaptureError) -> None:
        if self._fatal is None:
            self._fatal = exc
        self._stop.set()


__all__ = ["CaptureBridge"]
