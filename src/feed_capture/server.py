"""Run the callback listener on a background thread with a readiness signal."""

from __future__ import annotations

import logging
import threading

import uvicorn
from fastapi import FastAPI

from .errors import ListenerStartupError
from .logging import log_context

logger = logging.getLogger(__name__)


class _SignallingServer(uvicorn.Server):
    """uvicorn server that sets ``ready`` once its sockets accept connections."""

    def __init__(self, config: uvicorn.Config, ready: threading.Event) -> None:
        super().__init__(config)
        self._ready = ready

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self._ready.set()


class ListenerServer:
    """Background uvicorn server for the callback application.

    :meth:`start` returns immediately; :meth:`wait_ready` blocks until the
    listener is bound or raises :class:`ListenerStartupError` when binding fails.
    """

    def __init__(self, app: FastAPI, *, host: str, port: int) -> None:
        self._host = host
        self._port = port
        self._ready = threading.Event()
        self._failure: BaseException | None = None
        self._bound_port: int | None = None
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = _SignallingServer(config, self._ready)
        self._thread = threading.Thread(
            target=self._run,
            name="feed-capture-listener",
            daemon=True,
        )

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        """Bound port; resolves an ephemeral ``0`` once the server is ready."""
        if self._bound_port is not None:
            return self._bound_port
        for server in getattr(self._server, "servers", []) or []:
            for sock in server.sockets:
                return int(sock.getsockname()[1])
        return self._port

    def start(self) -> None:
        logger.info("listener.starting", extra=log_context(host=self._host, port=self._port))
        self._thread.start()

    def wait_ready(self, timeout: float) -> None:
        if not self._ready.wait(timeout):
            self.stop()
            raise ListenerStartupError(
                f"listener on {self._host}:{self._port} not ready after {timeout:.1f}s"
            )
        if self._failure is not None or not self._server.started:
            detail = f": {self._failure}" if self._failure is not None else ""
            raise ListenerStartupError(
                f"listener failed to bind {self._host}:{self._port}{detail}"
            )
        self._bound_port = self.port
        logger.info("listener.ready", extra=log_context(host=self._host, port=self.port))

    def stop(self, *, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("listener.stopped", extra=log_context(host=self._host, port=self.port))

    def _run(self) -> None:
        try:
            self._server.run()
        except BaseException as exc:  # uvicorn calls sys.exit(1) when bind fails
            self._failure = exc
            logger.error(
                "listener.crashed",
                extra=log_context(host=self._host, port=self._port, error=repr(exc)),
            )
        finally:
            self._ready.set()


__all__ = ["ListenerServer"]
