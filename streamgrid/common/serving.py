"""Running uvicorn servers inside an event loop the caller already owns."""
from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import socket
import sys

import uvicorn

LOG = logging.getLogger("sg.serving")


class PortInUse(RuntimeError):
    def __init__(self, port: int):
        super().__init__(f"Port {port} is already in use")
        self.port = port


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the process owner."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    if sys.platform != "win32":
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        if e.errno in (errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", None)):
            raise PortInUse(port) from e
        raise
    sock.set_inheritable(True)
    return sock


async def serve_in_background(app, sock: socket.socket, *, log_level: str = "warning",
                              startup_timeout_s: float = 10.0) -> tuple[EmbeddedServer, asyncio.Task]:
    config = uvicorn.Config(app, log_config=None, log_level=log_level, access_log=False)
    server = EmbeddedServer(config)
    task = asyncio.create_task(server.serve(sockets=[sock]))

    loop = asyncio.get_running_loop()
    deadline = loop.time() + startup_timeout_s
    while not server.started:
        if task.done():
            sock.close()
            # serve() returned or raised before it came up
            exc = task.exception()
            raise exc or RuntimeError("Server exited during startup")
        if loop.time() > deadline:
            server.should_exit = True
            await task
            raise TimeoutError("Server did not start in time")
        await asyncio.sleep(0.01)
    return server, task


async def shutdown_server(server: EmbeddedServer, task: asyncio.Task, timeout_s: float) -> None:
    server.should_exit = True
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout_s)
    except asyncio.TimeoutError:
        LOG.warning("Server did not stop within %.1fs, forcing", timeout_s)
        server.force_exit = True
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
