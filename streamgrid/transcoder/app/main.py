# SPDX-License-Identifier: Apache-2.0
"""sg-rtsp HTTP API: serves the HLS output of the transcoder sessions.

Endpoints:
  GET /healthz                      -> ok
  GET /rtsp/debug/streams           -> active session table
  GET /rtsp/{stream_id}/health      -> {status, uptime, errorCount}
  GET /rtsp/{stream_id}/{file}      -> playlist.m3u8 / segment_NNN.ts

Only GET/OPTIONS are exposed and any origin may read.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse

from .models import STREAM_NOT_FOUND
from .supervisor import TranscodeSupervisor

LOG = logging.getLogger("sg.rtsp.http")

APP_NAME = "sg-rtsp"

_MEDIA = {
    ".m3u8": ("application/vnd.apple.mpegurl", "no-cache, no-store, must-revalidate"),
    ".ts": ("video/mp2t", "public, max-age=3600"),
}


def _resolve(output_dir: Path, file: str) -> Optional[Path]:
    """Path of ``file`` inside ``output_dir``, or None if it escapes it or is missing."""
    root = output_dir.resolve()
    try:
        path = (root / file).resolve()
    except (OSError, RuntimeError):
        return None
    if path.parent != root or not path.is_file():
        return None
    return path


def create_app(supervisor: TranscodeSupervisor, *, manage_lifecycle: bool = True) -> FastAPI:
    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        if manage_lifecycle:
            await supervisor.prepare()
        try:
            yield
        finally:
            if manage_lifecycle:
                await supervisor.shutdown()

    app = FastAPI(title=APP_NAME, version="0.1.0", lifespan=_lifespan)
    app.state.supervisor = supervisor
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        LOG.debug("%s %s", request.method, request.url.path)
        return await call_next(request)

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz() -> str:
        return "ok"

    router = APIRouter(prefix="/rtsp")

    # ── Diagnostics (registered before the file route so they win) ────────

    @router.get("/debug/streams")
    def debug_streams():
        sessions = supervisor.sessions()
        return {
            "activeStreams": len(sessions),
            "streams": [s.model_dump(by_alias=True) for s in sessions],
        }

    @router.get("/{stream_id}/health")
    def stream_health(stream_id: str):
        health = supervisor.health(stream_id)
        if health is None:
            return JSONResponse({"status": "not_found"}, status_code=404)
        return health.model_dump(by_alias=True)

    # ── HLS files ─────────────────────────────────────────────────────────

    @router.get("/{stream_id}/{file}")
    def stream_file(stream_id: str, file: str):
        session = supervisor.get(stream_id)
        if session is None:
            LOG.warning("Stream not found: %s", stream_id)
            return PlainTextResponse(STREAM_NOT_FOUND, status_code=404)

        path = _resolve(session.output_dir, file)
        if path is None:
            LOG.debug("File not found: %s/%s", stream_id, file)
            return PlainTextResponse("File not found", status_code=404)

        media_type, cache = _MEDIA.get(path.suffix, (None, None))
        headers = {"Cache-Control": cache} if cache else None
        return FileResponse(path, media_type=media_type, headers=headers)

    app.include_router(router)
    return app
