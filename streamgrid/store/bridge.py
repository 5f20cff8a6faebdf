# SPDX-License-Identifier: Apache-2.0
"""Command/query channel into the state owner.

The control API never touches ``StreamStore`` directly. It sends typed
commands through a ``StateBridge``; the bridge runs them on the owner's event
loop (which may live on another thread, e.g. a UI thread) and hands the
result back. With no owner attached every call fails with ``AppNotReady``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .models import GridSummary, SavedGrid, StreamRecord
from .store import StreamStore

LOG = logging.getLogger("sg.bridge")


class AppNotReady(RuntimeError):
    """No state owner is attached to the bridge."""


# ── Commands ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ListStreams:
    pass


@dataclass(frozen=True)
class AddStream:
    stream: StreamRecord


@dataclass(frozen=True)
class UpdateStream:
    stream_id: str
    updates: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RemoveStream:
    stream_id: str


@dataclass(frozen=True)
class ListGrids:
    pass


@dataclass(frozen=True)
class SaveGrid:
    grid: SavedGrid


@dataclass(frozen=True)
class LoadGrid:
    grid_id: str


# ── Handlers (run on the owner side) ──────────────────────────────────────

def _list_streams(store: StreamStore, _: ListStreams) -> list[StreamRecord]:
    return list(store.streams)


def _add_stream(store: StreamStore, cmd: AddStream) -> StreamRecord:
    return store.add_stream(cmd.stream)


def _update_stream(store: StreamStore, cmd: UpdateStream) -> StreamRecord:
    return store.update_stream(cmd.stream_id, cmd.updates)


def _remove_stream(store: StreamStore, cmd: RemoveStream) -> None:
    store.remove_stream(cmd.stream_id)


def _list_grids(store: StreamStore, _: ListGrids) -> list[GridSummary]:
    return store.require_repository().list()


def _save_grid(store: StreamStore, cmd: SaveGrid) -> SavedGrid:
    store.require_repository().save(cmd.grid)
    return cmd.grid


def _load_grid(store: StreamStore, cmd: LoadGrid) -> None:
    if not store.load_grid(cmd.grid_id):
        raise KeyError("grid_not_found")


_HANDLERS: dict[type, Callable[[StreamStore, Any], Any]] = {
    ListStreams: _list_streams,
    AddStream: _add_stream,
    UpdateStream: _update_stream,
    RemoveStream: _remove_stream,
    ListGrids: _list_grids,
    SaveGrid: _save_grid,
    LoadGrid: _load_grid,
}


class StateBridge:
    def __init__(self, timeout_s: float = 5.0):
        self.timeout_s = timeout_s
        self._store: Optional[StreamStore] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def ready(self) -> bool:
        return self._store is not None

    def attach(self, store: StreamStore, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Register the state owner. ``loop`` is the loop its state lives on."""
        self._store = store
        self._loop = loop
        LOG.info("State owner attached")

    def detach(self) -> None:
        self._store = None
        self._loop = None
        LOG.info("State owner detached")

    async def call(self, command: Any) -> Any:
        store = self._store
        if store is None:
            raise AppNotReady("Application not ready")
        handler = _HANDLERS.get(type(command))
        if handler is None:
            raise TypeError(f"Unknown command: {type(command).__name__}")

        async def _run() -> Any:
            return handler(store, command)

        owner = self._loop
        if owner is not None and owner is not asyncio.get_running_loop():
            fut = asyncio.run_coroutine_threadsafe(_run(), owner)
            return await asyncio.wait_for(asyncio.wrap_future(fut), self.timeout_s)
        return await asyncio.wait_for(_run(), self.timeout_s)
