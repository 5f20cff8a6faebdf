# SPDX-License-Identifier: Apache-2.0
"""sg-api: REST control surface for the running dashboard.

Endpoints (all but the health probes need an API key):
  GET    /health, /api/health     -> {status, apiEnabled, timestamp}
  GET    /api/streams             -> {streams}
  POST   /api/streams             -> 201 {success, stream}
  PUT    /api/streams/{id}        -> {success, id, updates}
  DELETE /api/streams/{id}        -> {success, id}
  GET    /api/grids               -> {grids}
  POST   /api/grids               -> 201 {success, grid}
  PUT    /api/grids/{id}/load     -> {success, id}

Every mutation goes through ``StateBridge`` into the same ``StreamStore``
operations the UI uses. Errors are ``{"error": ...}`` JSON bodies.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Optional

import pydantic
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from streamgrid.store.bridge import (
    AddStream,
    AppNotReady,
    ListGrids,
    ListStreams,
    LoadGrid,
    RemoveStream,
    SaveGrid,
    StateBridge,
    UpdateStream,
)
from streamgrid.store.ids import new_grid_id, new_stream_id, now_iso
from streamgrid.store.models import SavedGrid, StreamRecord

from .auth import AuthGate, require_api_key
from .errors import ApiError, NotFoundError, RateLimited, ServiceUnavailable, ValidationError
from .ratelimit import SlidingWindowLimiter

LOG = logging.getLogger("sg.api")

APP_NAME = "sg-api"

_NOT_FOUND = {"stream_not_found": "Stream not found", "grid_not_found": "Grid not found"}


@contextmanager
def _failure(message: str):
    """Turn anything the shared handlers do not cover into a 500 ``message``."""
    try:
        yield
    except (ApiError, AppNotReady, KeyError, pydantic.ValidationError):
        raise
    except Exception:
        LOG.exception(message)
        raise ApiError(500, message) from None


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _first_error(exc: pydantic.ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"Invalid field {loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def create_app(bridge: StateBridge, gate: AuthGate, limiter: Optional[SlidingWindowLimiter] = None) -> FastAPI:
    app = FastAPI(title=APP_NAME, version="0.1.0")
    app.state.bridge = bridge
    app.state.auth_gate = gate
    app.state.limiter = limiter = limiter or SlidingWindowLimiter()

    # ── Error rendering ───────────────────────────────────────────────────

    @app.exception_handler(ApiError)
    async def _api_error(_: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(exc.body(), status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(AppNotReady)
    async def _not_ready(_: Request, exc: AppNotReady) -> JSONResponse:
        return JSONResponse(ServiceUnavailable().body(), status_code=503)

    @app.exception_handler(KeyError)
    async def _keyerror_handler(_: Request, exc: KeyError) -> JSONResponse:
        key = exc.args[0] if exc.args and isinstance(exc.args[0], str) else ""
        err = NotFoundError(_NOT_FOUND.get(key, "Not found"))
        return JSONResponse(err.body(), status_code=err.status_code)

    @app.exception_handler(pydantic.ValidationError)
    async def _invalid_model(_: Request, exc: pydantic.ValidationError) -> JSONResponse:
        return JSONResponse({"error": _first_error(exc)}, status_code=400)

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": "Invalid request"}, status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return JSONResponse({"error": "Endpoint not found"}, status_code=404)
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        LOG.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    # ── Rate limit (ahead of auth, every /api path) ───────────────────────

    @app.middleware("http")
    async def _rate_limit(request: Request, call_next):
        if not request.url.path.startswith("/api"):
            return await call_next(request)
        caller = request.client.host if request.client else "unknown"
        status = limiter.hit(caller)
        if not status.allowed:
            LOG.warning("Rate limit exceeded for %s", caller)
            exc = RateLimited(status.reset_s)
            return JSONResponse(exc.body(), status_code=429, headers={**status.headers(), **exc.headers})
        response = await call_next(request)
        response.headers.update(status.headers())
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "X-API-Key", "Authorization"],
    )

    # ── Health ────────────────────────────────────────────────────────────

    @app.get("/health")
    @app.get("/api/health")
    def health():
        return {"status": "ok", "apiEnabled": gate.config().enabled, "timestamp": now_iso()}

    # ── Streams ───────────────────────────────────────────────────────────

    @app.get("/api/streams", dependencies=[Depends(require_api_key)])
    async def list_streams():
        with _failure("Failed to get streams"):
            streams = await bridge.call(ListStreams())
        return {"streams": [s.wire() for s in streams]}

    @app.post("/api/streams", status_code=201, dependencies=[Depends(require_api_key)])
    async def add_stream(request: Request):
        body = await _json_body(request)
        if not body.get("name") or not body.get("streamUrl"):
            raise ValidationError("Missing required fields: name, streamUrl")
        with _failure("Failed to add stream"):
            stream = StreamRecord(
                id=new_stream_id(),
                name=body["name"],
                stream_url=body["streamUrl"],
                logo_url=body.get("logoUrl") or "",
                is_muted=body["isMuted"] if body.get("isMuted") is not None else False,
                fit_mode=body.get("fitMode") or "contain",
            )
            stream = await bridge.call(AddStream(stream))
        LOG.info("Added stream %s (%s)", stream.id, stream.name)
        return {"success": True, "stream": stream.wire()}

    @app.put("/api/streams/", dependencies=[Depends(require_api_key)])
    @app.delete("/api/streams/", dependencies=[Depends(require_api_key)])
    def missing_stream_id():
        raise ValidationError("Missing stream ID")

    @app.put("/api/streams/{stream_id}", dependencies=[Depends(require_api_key)])
    async def update_stream(stream_id: str, request: Request):
        updates = await _json_body(request)
        with _failure("Failed to update stream"):
            await bridge.call(UpdateStream(stream_id, updates))
        return {"success": True, "id": stream_id, "updates": updates}

    @app.delete("/api/streams/{stream_id}", dependencies=[Depends(require_api_key)])
    async def remove_stream(stream_id: str):
        with _failure("Failed to remove stream"):
            await bridge.call(RemoveStream(stream_id))
        LOG.info("Removed stream %s", stream_id)
        return {"success": True, "id": stream_id}

    # ── Grids ─────────────────────────────────────────────────────────────

    @app.get("/api/grids", dependencies=[Depends(require_api_key)])
    async def list_grids():
        with _failure("Failed to get grids"):
            grids = await bridge.call(ListGrids())
        return {"grids": [g.wire() for g in grids or []]}

    @app.post("/api/grids", status_code=201, dependencies=[Depends(require_api_key)])
    async def create_grid(request: Request):
        body = await _json_body(request)
        if not body.get("name"):
            raise ValidationError("Missing required field: name")
        with _failure("Failed to create grid"):
            now = now_iso()
            grid = SavedGrid(
                id=new_grid_id(),
                name=body["name"],
                created_at=now,
                last_modified=now,
                streams=body.get("streams") or [],
                layout=body.get("layout") or [],
                chats=body.get("chats") or [],
            )
            grid = await bridge.call(SaveGrid(grid))
        LOG.info("Created grid %s (%s)", grid.id, grid.name)
        return {"success": True, "grid": grid.wire()}

    @app.put("/api/grids//load", dependencies=[Depends(require_api_key)])
    def missing_grid_id():
        raise ValidationError("Missing grid ID")

    @app.put("/api/grids/{grid_id}/load", dependencies=[Depends(require_api_key)])
    async def load_grid(grid_id: str):
        with _failure("Failed to load grid"):
            await bridge.call(LoadGrid(grid_id))
        LOG.info("Loaded grid %s", grid_id)
        return {"success": True, "id": grid_id}

    return app
