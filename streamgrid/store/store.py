# SPDX-License-Identifier: Apache-2.0
"""In-memory stream/grid state.

``StreamStore`` is the single owner of the live dashboard state: streams,
their chat overlays, the tile layout and the saved-grid bookkeeping. The UI
and the control API both mutate it through these methods only. Any change to
the tile set recomputes the whole layout.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from streamgrid.layout.solver import MAX_ROWS, GridPlacement, compute_layout

from .ids import new_chat_id, new_grid_id, now_iso
from .models import AppSettings, ChatItem, SavedGrid, StreamRecord
from .persistence import GridRepository

LOG = logging.getLogger("sg.store")

RECENT_GRIDS = 5
UNTITLED = "Untitled Grid"

Listener = Callable[["StreamStore", str], None]


def chat_platform(stream_url: str) -> Optional[str]:
    if "youtube.com" in stream_url or "youtu.be" in stream_url:
        return "YouTube"
    if "twitch.tv" in stream_url:
        return "Twitch"
    return None


class StreamStore:
    def __init__(self, repository: Optional[GridRepository] = None, *,
                 settings: Optional[AppSettings] = None, max_rows: int = MAX_ROWS):
        self.repository = repository
        self.settings = settings or AppSettings()
        self.max_rows = max_rows
        self._listeners: list[Listener] = []
        self._reset()

    def _reset(self) -> None:
        self.streams: list[StreamRecord] = []
        self.layout: list[GridPlacement] = []
        self.chats: list[ChatItem] = []
        self.current_grid_id: Optional[str] = None
        self.current_grid_name: str = UNTITLED
        self.has_unsaved_changes = False
        self.recent_grid_ids: list[str] = getattr(self, "recent_grid_ids", [])

    # ── Subscriptions ─────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _commit(self, action: str) -> None:
        LOG.debug("%s: %d streams, %d chats, %d tiles",
                  action, len(self.streams), len(self.chats), len(self.layout))
        for cb in list(self._listeners):
            try:
                cb(self, action)
            except Exception as e:
                LOG.error("Listener error on %s: %s", action, e)

    # ── Queries ───────────────────────────────────────────────────────────

    def tile_ids(self) -> list[str]:
        return [s.id for s in self.streams] + [c.id for c in self.chats]

    def get_stream(self, stream_id: str) -> Optional[StreamRecord]:
        return next((s for s in self.streams if s.id == stream_id), None)

    def export_data(self) -> dict[str, Any]:
        return {
            "streams": [s.wire() for s in self.streams],
            "layout": [p.model_dump(by_alias=True) for p in self.layout],
            "chats": [c.wire() for c in self.chats],
        }

    def _relayout(self) -> None:
        self.layout = compute_layout(self.tile_ids(), max_rows=self.max_rows)

    def _with_mute_default(self, stream: StreamRecord) -> StreamRecord:
        if stream.is_muted is not None:
            return stream
        return stream.model_copy(update={"is_muted": self.settings.default_mute_new_streams})

    # ── Streams ───────────────────────────────────────────────────────────

    def add_stream(self, stream: StreamRecord) -> StreamRecord:
        if self.get_stream(stream.id) is not None:
            raise ValueError(f"Stream already exists: {stream.id}")
        stream = self._with_mute_default(stream)
        self.streams.append(stream)
        self._relayout()
        self.has_unsaved_changes = True
        self._commit("ADD_STREAM")
        return stream

    def add_streams(self, streams: Iterable[StreamRecord]) -> list[StreamRecord]:
        added: list[StreamRecord] = []
        known = {s.id for s in self.streams}
        for s in streams:
            if s.id in known:
                raise ValueError(f"Stream already exists: {s.id}")
            known.add(s.id)
            added.append(self._with_mute_default(s))
        self.streams.extend(added)
        self._relayout()
        self.has_unsaved_changes = True
        self._commit("ADD_MULTIPLE_STREAMS")
        return added

    def update_stream(self, stream_id: str, updates: dict[str, Any]) -> StreamRecord:
        idx = next((i for i, s in enumerate(self.streams) if s.id == stream_id), None)
        if idx is None:
            raise KeyError("stream_not_found")
        merged = self.streams[idx].wire()
        merged.update({k: v for k, v in updates.items() if k != "id"})
        updated = StreamRecord.model_validate(merged)
        self.streams[idx] = updated

        new_name = updates.get("name")
        if new_name:
            self.chats = [
                c.model_copy(update={"stream_name": new_name}) if c.stream_id == stream_id else c
                for c in self.chats
            ]
        self.has_unsaved_changes = True
        self._commit("UPDATE_STREAM")
        return updated

    def remove_stream(self, stream_id: str) -> None:
        if self.get_stream(stream_id) is None:
            raise KeyError("stream_not_found")
        self.streams = [s for s in self.streams if s.id != stream_id]
        self.chats = [c for c in self.chats if c.stream_id != stream_id]
        self._relayout()
        self.has_unsaved_changes = True
        self._commit("REMOVE_STREAM")

    def set_layout(self, layout: Iterable[GridPlacement]) -> None:
        """Accept a layout edited by hand (drag/resize)."""
        items = list(layout)
        ids = [p.tile_id for p in items]
        if len(ids) != len(set(ids)):
            raise ValueError("Layout has duplicate tile ids")
        self.layout = items
        self.has_unsaved_changes = True
        self._commit("UPDATE_LAYOUT")

    def auto_arrange(self) -> None:
        if not self.streams and not self.chats:
            return
        self._relayout()
        self.has_unsaved_changes = True
        self._commit("AUTO_ARRANGE_STREAMS")

    # ── Chats ─────────────────────────────────────────────────────────────

    def add_chat(self, stream_identifier: str, stream_id: str, stream_name: str) -> Optional[str]:
        """Open a chat overlay for a YouTube or Twitch stream. Returns its id."""
        stream = self.get_stream(stream_id)
        if stream is None:
            return None
        platform = chat_platform(stream.stream_url)
        if platform is None:
            return None
        chat = ChatItem(
            id=new_chat_id(),
            stream_id=stream_id,
            stream_type=platform,
            stream_name=stream_name,
            stream_identifier=stream_identifier,
        )
        self.chats.append(chat)
        self._relayout()
        self.has_unsaved_changes = True
        self._commit("ADD_CHAT")
        return chat.id

    def remove_chat(self, chat_id: str) -> None:
        self.chats = [c for c in self.chats if c.id != chat_id]
        self._relayout()
        self.has_unsaved_changes = True
        self._commit("REMOVE_CHAT")

    # ── Audio ─────────────────────────────────────────────────────────────

    def _mute_all(self, muted: bool, action: str) -> None:
        self.settings = self.settings.model_copy(update={"global_muted": muted})
        self.streams = [s.model_copy(update={"is_muted": muted}) for s in self.streams]
        self._commit(action)

    def toggle_global_mute(self) -> None:
        self._mute_all(not self.settings.global_muted, "TOGGLE_GLOBAL_MUTE")

    def mute_all(self) -> None:
        self._mute_all(True, "MUTE_ALL_STREAMS")

    def unmute_all(self) -> None:
        self._mute_all(False, "UNMUTE_ALL_STREAMS")

    # ── Saved grids ───────────────────────────────────────────────────────

    def require_repository(self) -> GridRepository:
        if self.repository is None:
            raise RuntimeError("No grid repository configured")
        return self.repository

    def _touch_recent(self, grid_id: str) -> None:
        rest = [g for g in self.recent_grid_ids if g != grid_id]
        self.recent_grid_ids = [grid_id, *rest][:RECENT_GRIDS]

    def save_current_grid(self, name: Optional[str] = None) -> SavedGrid:
        """Save the live state. Passing ``name`` saves a copy under a new id."""
        repo = self.require_repository()
        is_new = self.current_grid_id is None or bool(name)
        grid_id = new_grid_id() if is_new else self.current_grid_id
        grid_name = name or self.current_grid_name

        created_at = now_iso()
        if not is_new:
            existing = repo.load(grid_id)
            if existing is not None:
                created_at = existing.created_at

        grid = SavedGrid(
            id=grid_id,
            name=grid_name,
            created_at=created_at,
            last_modified=now_iso(),
            streams=list(self.streams),
            layout=list(self.layout),
            chats=list(self.chats),
        )
        repo.save(grid)
        self.current_grid_id = grid_id
        self.current_grid_name = grid_name
        self.has_unsaved_changes = False
        self._touch_recent(grid_id)
        self._commit("SAVE_GRID")
        return grid

    def load_grid(self, grid_id: str) -> bool:
        """Switch the live state to a saved grid. False if it does not exist."""
        grid = self.require_repository().load(grid_id)
        if grid is None:
            LOG.warning("Grid not found: %s", grid_id)
            return False
        self.streams = list(grid.streams)
        self.chats = list(grid.chats)
        self.layout = list(grid.layout)
        # grids created over the API may carry no (or a stale) layout
        if sorted(p.tile_id for p in self.layout) != sorted(self.tile_ids()):
            self._relayout()
        self.current_grid_id = grid.id
        self.current_grid_name = grid.name
        self.has_unsaved_changes = False
        self._touch_recent(grid.id)
        self._commit("LOAD_GRID")
        return True

    def delete_grid(self, grid_id: str) -> None:
        self.require_repository().delete(grid_id)
        self.recent_grid_ids = [g for g in self.recent_grid_ids if g != grid_id]
        if self.current_grid_id == grid_id:
            self._reset()
        self._commit("DELETE_GRID")

    def rename_grid(self, grid_id: str, new_name: str) -> None:
        self.require_repository().rename(grid_id, new_name)
        if self.current_grid_id == grid_id:
            self.current_grid_name = new_name
        self._commit("RENAME_GRID")

    def create_new_grid(self, name: str) -> None:
        self._reset()
        self.current_grid_name = name
        self._commit("CREATE_NEW_GRID")

    def mark_saved(self) -> None:
        self.has_unsaved_changes = False

    def mark_unsaved(self) -> None:
        self.has_unsaved_changes = True
