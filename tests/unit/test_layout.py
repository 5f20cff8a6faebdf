"""Tests for the grid auto-arrange solver."""

from __future__ import annotations

import pytest

from streamgrid.layout.solver import (
    GRID_COLS,
    GridPlacement,
    choose_candidate,
    compute_layout,
    score_candidates,
    tile_height,
)


def _ids(n: int) -> list[str]:
    return [f"s{i}" for i in range(n)]


# ── tile_height ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("w,h", [(12, 7), (8, 5), (6, 3), (4, 2), (3, 2), (2, 2)])
def test_tile_height(w, h):
    assert tile_height(w) == h


# ── Candidate choice ─────────────────────────────────────────────────────

class TestChooseCandidate:

    @pytest.mark.parametrize("n,w", [(1, 12), (4, 12), (5, 12), (9, 8), (24, 6), (25, 6), (100, 2)])
    def test_chosen_width(self, n, w):
        assert choose_candidate(n).w == w

    def test_four_tiles_fit_budget(self):
        best = choose_candidate(4)
        assert best.total_height <= 24
        assert (best.cols, best.rows) == (2, 2)

    def test_over_budget_falls_back_to_narrowest(self):
        best = choose_candidate(200)
        assert best.w == 2
        assert best.total_height > 24

    def test_scores_in_width_order(self):
        cands = score_candidates(9)
        assert [c.w for c in cands] == [12, 8, 6, 4, 3, 2]
        assert all(c.waste >= 0 for c in cands)

    def test_custom_widths(self):
        assert choose_candidate(4, widths=(6, 4)).w == 6

    def test_no_usable_width(self):
        with pytest.raises(ValueError):
            choose_candidate(3, widths=(48,))


# ── compute_layout ───────────────────────────────────────────────────────

class TestComputeLayout:

    def test_empty(self):
        assert compute_layout([]) == []

    def test_single_tile_centered(self):
        (p,) = compute_layout(["a"])
        assert (p.tile_id, p.x, p.y, p.width, p.height) == ("a", 6, 0, 12, 7)

    def test_two_by_two(self):
        out = compute_layout(_ids(4))
        assert [(p.x, p.y) for p in out] == [(0, 0), (12, 0), (0, 7), (12, 7)]

    def test_short_last_row_is_centered(self):
        out = compute_layout(_ids(5))
        assert out[-1].x == 6
        assert out[-1].y == 14

    def test_nine_is_three_by_three(self):
        out = compute_layout(_ids(9))
        assert {p.width for p in out} == {8}
        assert max(p.y + p.height for p in out) == 15

    @pytest.mark.parametrize("n", [0, 1, 2, 3, 4, 5, 9, 24, 25, 100])
    def test_coverage(self, n):
        ids = _ids(n)
        out = compute_layout(ids)
        assert [p.tile_id for p in out] == ids

    @pytest.mark.parametrize("n", [1, 5, 9, 25, 100, 200])
    def test_tiles_stay_inside_columns_and_do_not_overlap(self, n):
        out = compute_layout(_ids(n))
        cells = set()
        for p in out:
            assert 0 <= p.x and p.x + p.width <= GRID_COLS
            for cx in range(p.x, p.x + p.width):
                for cy in range(p.y, p.y + p.height):
                    assert (cx, cy) not in cells
                    cells.add((cx, cy))

    def test_deterministic(self):
        ids = _ids(17)
        assert compute_layout(ids) == compute_layout(ids)

    def test_over_budget_still_places_everything(self):
        out = compute_layout(_ids(200))
        assert len(out) == 200
        assert max(p.y + p.height for p in out) == 34

    def test_duplicates_collapse_to_first(self):
        out = compute_layout(["a", "b", "a"])
        assert [p.tile_id for p in out] == ["a", "b"]

    def test_max_rows_budget(self):
        # 4 tiles at width 12 need 14 rows; a budget of 10 forces 8-wide tiles
        out = compute_layout(_ids(4), max_rows=10)
        assert {p.width for p in out} == {8}
        assert max(p.y + p.height for p in out) <= 10

    def test_wire_names(self):
        (p,) = compute_layout(["a"])
        assert p.model_dump(by_alias=True) == {"i": "a", "x": 6, "y": 0, "w": 12, "h": 7}
        assert GridPlacement.model_validate({"i": "a", "x": 6, "y": 0, "w": 12, "h": 7}) == p
