from __future__ import annotations

import asyncio
import contextlib
import socket
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import uvicorn

from driftgate.core.models import ServerSettings
from driftgate.serving.app import create_app
from driftgate.utils.diagnostics import ListenerError


class _ManagedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the runtime controller."""

    def install_signal_handlers(self) -> None:
        return

    @contextlib.contextmanager
    def capture_signals(self):
        yield


@dataclass
class ListenerHandle:
    """A bound, running listener for one generation."""

    generation_id: int
    host: str
    port: int
    server: uvicorn.Server = field(repr=False)
    task: asyncio.Task = field(repr=False)
    sock: socket.socket = field(repr=False)
    stopped: bool = False

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening socket that a successor generation can bind again while this one drains."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            with contextlib.suppress(OSError):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    return sock


class UvicornServingInstance:
    """Serves a generation's ASGI app with uvicorn on a background task."""

    def __init__(
        self,
        settings: ServerSettings,
        production: bool = False,
        log_level: str = "INFO",
        startup_timeout_s: float = 10.0,
        app_factory: Callable[..., Any] = create_app,
    ) -> None:
        self.settings = settings
        self.production = production
        self.log_level = log_level
        self.startup_timeout_s = startup_timeout_s
        self.app_factory = app_factory

    async def start(self, schema: Any, connection: Any, port: int, generation_id: int = 0) -> ListenerHandle:
        host = self.settings.host
        app = self.app_factory(
            schema,
            connection,
            settings=self.settings,
            production=self.production,
            generation_id=generation_id,
        )

        try:
            sock = bind_socket(host, port)
        except OSError as exc:
            raise ListenerError(f"Unable to bind {host}:{port}: {exc}", step="bind_listener") from exc

        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            lifespan="off",
            log_level=self.log_level.lower(),
            timeout_graceful_shutdown=self.settings.drain_timeout_s or None,
        )
        server = _ManagedServer(config)
        loop = asyncio.get_running_loop()
        task = loop.create_task(server.serve(sockets=[sock]), name=f"uvicorn-generation-{generation_id}")

        deadline = loop.time() + self.startup_timeout_s
        try:
            while not server.started and not task.done() and loop.time() < deadline:
                await asyncio.sleep(0.02)
        except BaseException:
            await self._abandon(server, task, sock)
            raise

        if not server.started:
            cause = await self._abandon(server, task, sock)
            detail = f": {cause}" if cause is not None else ""
            raise ListenerError(f"Listener on {host}:{port} failed to start{detail}", step="bind_listener")

        return ListenerHandle(
            generation_id=generation_id,
            host=host,
            port=port,
            server=server,
            task=task,
            sock=sock,
        )

    async def stop(self, handle: ListenerHandle) -> None:
        if handle.stopped:
            return
        handle.stopped = True
        handle.server.should_exit = True
        try:
            await handle.task
        finally:
            handle.sock.close()

    async def _abandon(self, server: uvicorn.Server, task: asyncio.Task, sock: socket.socket) -> Optional[BaseException]:
        server.should_exit = True
        if not task.done():
            await asyncio.wait({task}, timeout=self.settings.drain_timeout_s or None)

        cause: Optional[BaseException] = None
        if not task.done():
            task.cancel()
        elif not task.cancelled():
            cause = task.exception()
        sock.close()
        return cause
