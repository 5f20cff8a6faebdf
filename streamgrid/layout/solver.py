# SPDX-License-Identifier: Apache-2.0
"""Grid auto-arrange.

Maps an ordered set of tile ids (streams and chat overlays) onto a fixed
24-column integer grid. Every candidate tile width is a divisor of the grid
width; tile height approximates 16:9 in grid units. The candidate with the
best weighted score that fits the row budget wins. When nothing fits, the
narrowest width is used so the grid is as short as it can be.

The solver is pure: the same id sequence and budget always give the same
placement.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

GRID_COLS = 24
MAX_ROWS = 24
TARGET_ASPECT = 16 / 9
ALLOWED_WIDTHS: tuple[int, ...] = (12, 8, 6, 4, 3, 2)

# Score weights. Tile size dominates; the rest break ties between sizes.
W_SIZE = 0.5
W_WASTE = 0.25
W_BALANCE = 0.15
W_HEIGHT = 0.10


class GridPlacement(BaseModel):
    """One tile on the grid. Wire names match the layout items the UI consumes."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tile_id: str = Field(alias="i")
    x: int
    y: int
    width: int = Field(alias="w")
    height: int = Field(alias="h")


@dataclass(frozen=True)
class Candidate:
    w: int
    h: int
    cols: int
    rows: int
    waste: int
    total_height: int
    score: float


def tile_height(w: int) -> int:
    # half rounds up (8 -> 4.5 -> 5); builtin round() would give 4
    return max(2, math.floor(w / TARGET_ASPECT + 0.5))


def score_candidates(n: int, widths: Sequence[int] = ALLOWED_WIDTHS) -> list[Candidate]:
    """Evaluate every allowed width for ``n`` tiles, in the order given."""
    out: list[Candidate] = []
    for w in widths:
        cols = GRID_COLS // w
        if cols < 1:
            continue
        rows = math.ceil(n / cols)
        h = tile_height(w)
        total_height = rows * h
        waste = cols * rows - n

        size_score = w * h
        waste_score = 1 / (waste + 1)
        balance_score = 1 / (abs(cols - rows) + 1)
        # shorter grids score higher
        height_score = 1 / (total_height + 1)
        score = (
            size_score * W_SIZE
            + waste_score * W_WASTE
            + balance_score * W_BALANCE
            + height_score * W_HEIGHT
        )
        out.append(Candidate(w=w, h=h, cols=cols, rows=rows, waste=waste,
                             total_height=total_height, score=score))
    return out


def _best(cands: Iterable[Candidate]) -> Candidate:
    best: Optional[Candidate] = None
    for c in cands:
        # strict comparison: the earlier candidate wins a tie
        if best is None or c.score > best.score:
            best = c
    assert best is not None
    return best


def choose_candidate(n: int, max_rows: int = MAX_ROWS,
                     widths: Sequence[int] = ALLOWED_WIDTHS) -> Candidate:
    cands = score_candidates(n, widths)
    if not cands:
        raise ValueError(f"no usable tile width in {list(widths)} for a {GRID_COLS}-column grid")
    feasible = [c for c in cands if c.total_height <= max_rows]
    if feasible:
        return _best(feasible)
    # Nothing fits the budget: force-fit with the narrowest tiles.
    return min(cands, key=lambda c: c.w)


def _unique(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def compute_layout(tile_ids: Sequence[str], max_rows: int = MAX_ROWS,
                   widths: Sequence[int] = ALLOWED_WIDTHS) -> list[GridPlacement]:
    """Place ``tile_ids`` row by row, left to right, each row centered."""
    ids = _unique(tile_ids)
    n = len(ids)
    if n == 0:
        return []

    best = choose_candidate(n, max_rows, widths)

    res: list[GridPlacement] = []
    k = 0
    for r in range(best.rows):
        if k >= n:
            break
        count = min(best.cols, n - k)
        offset = (GRID_COLS - count * best.w) // 2
        for c in range(count):
            res.append(GridPlacement(
                tile_id=ids[k],
                x=offset + c * best.w,
                y=r * best.h,
                width=best.w,
                height=best.h,
            ))
            k += 1
    return res
