from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from streamgrid.common.serving import EmbeddedServer, bind_socket, serve_in_background, shutdown_server
from streamgrid.store.bridge import StateBridge

from .auth import AuthGate
from .config import ControlApiSettings
from .main import create_app
from .ratelimit import SlidingWindowLimiter

LOG = logging.getLogger("sg.api")


class ApiServer:
    """Start/stop/restart the control API at runtime, e.g. from a settings screen."""

    def __init__(self, bridge: StateBridge, gate: AuthGate, *, stop_timeout_s: float = 5.0):
        self.bridge = bridge
        self.gate = gate
        self.stop_timeout_s = stop_timeout_s
        self._server: Optional[EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None
        self._settings: Optional[ControlApiSettings] = None

    @property
    def running(self) -> bool:
        return self._server is not None

    async def start(self, settings: ControlApiSettings) -> None:
        if self._server is not None:
            LOG.info("API server already running")
            return
        if not settings.enabled:
            LOG.info("API server is disabled")
            return

        self.gate.update(api_key=settings.api_key, enabled=settings.enabled)
        sock = bind_socket(settings.host, settings.port)
        app = create_app(self.bridge, self.gate, SlidingWindowLimiter(settings.rate_limit, settings.rate_window_s))
        self._server, self._task = await serve_in_background(app, sock)
        self._settings = settings
        LOG.info("%s running on http://%s:%d", settings.service_name, settings.host, settings.port)
        LOG.info("Health check: http://%s:%d/health", settings.host, settings.port)

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            LOG.info("API server is not running")
            return
        try:
            await shutdown_server(self._server, self._task, self.stop_timeout_s)
        finally:
            self._server = self._task = None
            self._settings = None
        LOG.info("API server stopped")

    async def restart(self, settings: ControlApiSettings) -> None:
        await self.stop()
        if settings.enabled:
            await self.start(settings)

    def status(self) -> dict[str, Any]:
        return {
            "running": self._server is not None,
            "config": self._settings.model_dump(exclude={"api_key"}) if self._settings else None,
        }
