# SPDX-License-Identifier: Apache-2.0
"""Saved-grid storage.

One ``<grid id>.json`` file per grid plus a ``manifest.json`` index:

    {"version": "1.0.0", "currentGridId": "grid-...", "grids": [GridSummary, ...]}

Writes go through a temp file and ``os.replace`` so a crash never leaves a
half-written grid or manifest behind.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from .ids import now_iso
from .models import GridManifest, GridSummary, SavedGrid

LOG = logging.getLogger("sg.grids")


class GridRepository(Protocol):
    def save(self, grid: SavedGrid) -> None: ...
    def load(self, grid_id: str) -> Optional[SavedGrid]: ...
    def delete(self, grid_id: str) -> None: ...
    def rename(self, grid_id: str, new_name: str) -> SavedGrid: ...
    def manifest(self) -> GridManifest: ...
    def list(self) -> list[GridSummary]: ...


def _atomic_write(path: Path, data: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(data, encoding="utf-8")
    os.replace(tmp, path)


def _safe_name(grid_id: str) -> str:
    if not grid_id or "/" in grid_id or "\\" in grid_id or grid_id in (".", ".."):
        raise KeyError("grid_not_found")
    return f"{grid_id}.json"


class JsonGridRepository:
    def __init__(self, grids_dir: str | Path):
        self.grids_dir = Path(grids_dir)
        self.manifest_path = self.grids_dir / "manifest.json"
        self.grids_dir.mkdir(parents=True, exist_ok=True)
        if not self.manifest_path.exists():
            self._write_manifest(GridManifest())

    def _write_manifest(self, manifest: GridManifest) -> None:
        _atomic_write(self.manifest_path, json.dumps(manifest.wire(), indent=2))

    def manifest(self) -> GridManifest:
        try:
            return GridManifest.model_validate_json(self.manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            LOG.error("Failed to read grid manifest %s: %s", self.manifest_path, e)
            return GridManifest()

    def list(self) -> list[GridSummary]:
        return self.manifest().grids

    def save(self, grid: SavedGrid) -> None:
        file_name = _safe_name(grid.id)
        _atomic_write(self.grids_dir / file_name, json.dumps(grid.wire(), indent=2))

        manifest = self.manifest()
        info = GridSummary(
            id=grid.id,
            name=grid.name,
            created_at=grid.created_at,
            last_modified=grid.last_modified,
            stream_count=len(grid.streams),
            file_name=file_name,
        )
        for idx, g in enumerate(manifest.grids):
            if g.id == grid.id:
                manifest.grids[idx] = info
                break
        else:
            manifest.grids.append(info)
        manifest.current_grid_id = grid.id
        self._write_manifest(manifest)
        LOG.info("Saved grid %s (%s, %d streams)", grid.id, grid.name, len(grid.streams))

    def load(self, grid_id: str) -> Optional[SavedGrid]:
        try:
            path = self.grids_dir / _safe_name(grid_id)
        except KeyError:
            return None
        if not path.exists():
            return None
        try:
            return SavedGrid.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            LOG.error("Failed to load grid %s: %s", grid_id, e)
            return None

    def delete(self, grid_id: str) -> None:
        path = self.grids_dir / _safe_name(grid_id)
        if not path.exists():
            raise KeyError("grid_not_found")
        path.unlink()

        manifest = self.manifest()
        manifest.grids = [g for g in manifest.grids if g.id != grid_id]
        if manifest.current_grid_id == grid_id:
            manifest.current_grid_id = None
        self._write_manifest(manifest)
        LOG.info("Deleted grid %s", grid_id)

    def rename(self, grid_id: str, new_name: str) -> SavedGrid:
        grid = self.load(grid_id)
        if grid is None:
            raise KeyError("grid_not_found")
        grid.name = new_name
        grid.last_modified = now_iso()
        _atomic_write(self.grids_dir / _safe_name(grid_id), json.dumps(grid.wire(), indent=2))

        manifest = self.manifest()
        for g in manifest.grids:
            if g.id == grid_id:
                g.name = new_name
                g.last_modified = grid.last_modified
        self._write_manifest(manifest)
        return grid
