#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
"""StreamGrid backend process.

Runs, in one event loop: the in-memory stream store, the RTSP transcoder
supervisor with its segment server, and (when enabled) the control API.

Config file (YAML, all keys optional):

    grids_dir: ~/.streamgrid/grids
    rtsp:  {base_port: 8100, segment_duration: 2, ...}   # TranscoderSettings
    api:   {enabled: true, port: 3737, api_key: ...}      # ControlApiSettings

Environment variables with the ``SG_RTSP_`` / ``SG_API_`` prefixes fill in
whatever the file leaves out.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from streamgrid.common.cfg import load_yaml, section
from streamgrid.common.serving import PortInUse, bind_socket, serve_in_background, shutdown_server
from streamgrid.control_api.app.auth import AuthGate, generate_api_key
from streamgrid.control_api.app.config import ControlApiSettings
from streamgrid.control_api.app.server import ApiServer
from streamgrid.store.bridge import StateBridge
from streamgrid.store.persistence import JsonGridRepository
from streamgrid.store.store import StreamStore
from streamgrid.transcoder.app.config import TranscoderSettings
from streamgrid.transcoder.app.main import create_app as create_segment_app
from streamgrid.transcoder.app.reconcile import TranscodeReconciler
from streamgrid.transcoder.app.supervisor import TranscodeSupervisor

LOG = logging.getLogger("sg.runner")

DEFAULT_GRIDS_DIR = Path.home() / ".streamgrid" / "grids"


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))


async def run(rtsp_settings: TranscoderSettings, api_settings: ControlApiSettings,
              grids_dir: Path, stop: Optional[asyncio.Event] = None) -> int:
    stop = stop or asyncio.Event()
    _install_signal_handlers(stop)

    store = StreamStore(JsonGridRepository(grids_dir))
    supervisor = TranscodeSupervisor(rtsp_settings)
    reconciler = TranscodeReconciler(supervisor)
    store.subscribe(reconciler.on_change)

    bridge = StateBridge(timeout_s=api_settings.bridge_timeout_s)
    bridge.attach(store, asyncio.get_running_loop())
    api = ApiServer(bridge, AuthGate())

    await supervisor.prepare()
    tool = await supervisor.check_tool_availability()
    if tool.available:
        LOG.info("FFmpeg %s at %s", tool.version or "(unknown version)", tool.path)
    else:
        LOG.warning("FFmpeg not found; RTSP streams will not play")

    try:
        sock = bind_socket(rtsp_settings.host, rtsp_settings.base_port)
    except PortInUse:
        bridge.detach()
        await supervisor.shutdown()
        raise
    seg_server, seg_task = await serve_in_background(create_segment_app(supervisor, manage_lifecycle=False), sock)
    LOG.info("%s listening on http://%s:%d/rtsp", rtsp_settings.service_name, rtsp_settings.host, rtsp_settings.base_port)

    try:
        current = store.require_repository().manifest().current_grid_id
        if current and store.load_grid(current):
            LOG.info("Restored grid %s (%s)", current, store.current_grid_name)

        await api.start(api_settings)
        await stop.wait()
    finally:
        LOG.info("Shutting down")
        bridge.detach()
        await api.stop()
        await reconciler.close()
        await shutdown_server(seg_server, seg_task, rtsp_settings.shutdown_grace_s)
        await supervisor.shutdown()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="StreamGrid backend: RTSP transcoding, segment server and control API")
    ap.add_argument("--config", help="YAML config file")
    ap.add_argument("--grids-dir", help=f"Saved grids directory (default {DEFAULT_GRIDS_DIR})")
    ap.add_argument("--log-level", default="INFO")
    ap.add_argument("--generate-key", action="store_true", help="Print a new API key and exit")
    args = ap.parse_args(argv)

    if args.generate_key:
        print(generate_api_key())
        return 0

    _setup_logging(args.log_level)

    data = load_yaml(args.config) if args.config else {}
    rtsp_settings = TranscoderSettings(**section(data, "rtsp"))
    api_settings = ControlApiSettings(**section(data, "api"))
    grids_dir = Path(args.grids_dir or data.get("grids_dir") or DEFAULT_GRIDS_DIR).expanduser()

    try:
        return asyncio.run(run(rtsp_settings, api_settings, grids_dir))
    except PortInUse as e:
        LOG.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
