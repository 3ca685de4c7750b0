"""Behavioural tests for the bounded Life grid."""

from __future__ import annotations

import numpy as np
import pytest
from scipy import ndimage

from life_grid import (
    MIN_GRID_SIZE,
    CellState,
    Classification,
    Grid,
    NewbornReport,
    classify,
    offsets,
)

MOORE = np.array([[1, 1, 1], [1, 0, 1], [1, 1, 1]], dtype=np.int16)


def grid_with(width: int, height: int, live: list[tuple[int, int]]) -> Grid:
    grid = Grid(width, height)
    for row, col in live:
        grid.set_cell(row, col, CellState.LIVE)
    return grid


def live_cells(grid: Grid) -> set[tuple[int, int]]:
    rs, cs = np.nonzero(grid.as_array())
    return set(zip(rs.tolist(), cs.tolist()))


# ── Classification ─────────────────────────────────────────────────────

@pytest.mark.parametrize("width,height", [(2, 2), (2, 5), (5, 2), (3, 3), (7, 4)])
def test_every_position_offsets_stay_in_bounds(width: int, height: int) -> None:
    grid = Grid(width, height)
    for row in range(height):
        for col in range(width):
            kind = classify(row, col, width, height)
            assert kind in Classification
            assert grid.classification[row * width + col] == kind
            for dcol, drow in offsets(kind):
                assert grid.is_valid(row + drow, col + dcol)


def test_corners_take_precedence_over_edges() -> None:
    assert classify(0, 0, 4, 4) is Classification.TOP_LEFT
    assert classify(0, 3, 4, 4) is Classification.TOP_RIGHT
    assert classify(3, 0, 4, 4) is Classification.BOTTOM_LEFT
    assert classify(3, 3, 4, 4) is Classification.BOTTOM_RIGHT
    assert classify(0, 1, 4, 4) is Classification.TOP
    assert classify(3, 1, 4, 4) is Classification.BOTTOM
    assert classify(1, 0, 4, 4) is Classification.LEFT
    assert classify(1, 3, 4, 4) is Classification.RIGHT
    assert classify(1, 1, 4, 4) is Classification.CENTER


def test_offset_counts_per_classification() -> None:
    counts = [len(offsets(kind)) for kind in Classification]
    assert counts == [3, 3, 3, 3, 5, 5, 5, 5, 8]


def test_offsets_are_distinct_and_exclude_self() -> None:
    for kind in Classification:
        cells = offsets(kind)
        assert len(set(cells)) == len(cells)
        assert (0, 0) not in cells


# ── Construction and cell access ───────────────────────────────────────

@pytest.mark.parametrize("width,height", [(1, 5), (5, 1), (0, 3), (-2, 4)])
def test_rejects_grids_below_minimum(width: int, height: int) -> None:
    with pytest.raises(ValueError):
        Grid(width, height)


def test_minimum_grid_is_accepted() -> None:
    grid = Grid(MIN_GRID_SIZE, MIN_GRID_SIZE)
    assert grid.population() == 0


def test_get_cell_out_of_range_is_invalid() -> None:
    grid = Grid(4, 3)
    assert grid.get_cell(-1, 0) is CellState.INVALID
    assert grid.get_cell(0, 4) is CellState.INVALID
    assert grid.get_cell(3, 0) is CellState.INVALID
    assert grid.get_cell(2, 3) is CellState.DEAD


def test_set_cell_out_of_range_leaves_buffer_untouched() -> None:
    grid = grid_with(5, 4, [(1, 1), (2, 3)])
    before = grid.cells.copy()
    for row, col in [(-1, 0), (0, -1), (4, 0), (0, 5), (100, 100)]:
        grid.set_cell(row, col, CellState.LIVE)
    assert grid.cells.tobytes() == before.tobytes()


def test_set_cell_rejects_invalid_state() -> None:
    grid = Grid(3, 3)
    with pytest.raises(ValueError):
        grid.set_cell(1, 1, CellState.INVALID)


def test_stamp_counts_only_cells_that_land() -> None:
    grid = Grid(4, 4)
    placed = grid.stamp(3, 2, [(0, 0), (1, 0), (2, 0), (0, 1)])
    assert placed == 2
    assert live_cells(grid) == {(3, 2), (3, 3)}


def test_as_array_is_read_only() -> None:
    grid = Grid(3, 3)
    view = grid.as_array()
    assert view.shape == (3, 3)
    with pytest.raises(ValueError):
        view[0, 0] = 1


# ── Generations ────────────────────────────────────────────────────────

def test_fresh_grid_stays_dead_with_empty_report() -> None:
    grid = Grid(6, 5)
    report = grid.update()
    assert grid.population() == 0
    assert not report
    assert report.count == 0
    assert len(report.rows) == 5


def test_block_is_still_life() -> None:
    block = [(2, 2), (2, 3), (3, 2), (3, 3)]
    grid = grid_with(6, 6, block)
    report = grid.update()
    assert live_cells(grid) == set(block)
    assert not report


def test_blinker_oscillates() -> None:
    horizontal = {(2, 1), (2, 2), (2, 3)}
    vertical = {(1, 2), (2, 2), (3, 2)}
    grid = grid_with(5, 5, sorted(horizontal))

    report = grid.update()
    assert live_cells(grid) == vertical
    assert set(report.cells()) == {(1, 2), (3, 2)}

    report = grid.update()
    assert live_cells(grid) == horizontal
    assert set(report.cells()) == {(2, 1), (2, 3)}


def test_isolated_cell_dies() -> None:
    grid = grid_with(5, 5, [(2, 2)])
    grid.update()
    assert grid.get_cell(2, 2) is CellState.DEAD


def test_overcrowded_cell_dies() -> None:
    grid = grid_with(5, 5, [(2, 2), (1, 2), (3, 2), (2, 1), (2, 3)])
    assert grid.count_live_neighbors(2, 2) == 4
    grid.update()
    assert grid.get_cell(2, 2) is CellState.DEAD


def test_birth_is_reported_under_its_row() -> None:
    grid = grid_with(5, 5, [(0, 0), (0, 2), (2, 0)])
    assert grid.count_live_neighbors(1, 1) == 3
    report = grid.update()
    assert grid.get_cell(1, 1) is CellState.LIVE
    assert 1 in report[1]
    assert report.width == 5 and report.height == 5


def test_update_ignores_scratch_buffer_contents() -> None:
    rng = np.random.default_rng(7)
    soup = (rng.random(12 * 9) < 0.4).astype(np.int8)

    clean = Grid(12, 9)
    dirty = Grid(12, 9)
    clean.cells[:] = soup
    dirty.cells[:] = soup
    dirty.next[:] = 1

    assert clean.update() == dirty.update()
    np.testing.assert_array_equal(clean.cells, dirty.cells)


def test_update_swaps_buffers_by_reference() -> None:
    grid = grid_with(5, 5, [(2, 1), (2, 2), (2, 3)])
    current, scratch = grid.cells, grid.next
    grid.update()
    assert grid.cells is scratch
    assert grid.next is current


def test_edges_do_not_wrap() -> None:
    # A full right-hand column would give (1, 0) three neighbours on a torus
    grid = grid_with(5, 5, [(0, 4), (1, 4), (2, 4)])
    assert grid.count_live_neighbors(1, 0) == 0
    grid.update()
    assert grid.get_cell(1, 0) is CellState.DEAD

    grid = grid_with(5, 5, [(4, 0), (4, 1), (4, 2)])
    assert grid.count_live_neighbors(0, 1) == 0


def test_corner_sees_only_three_neighbours() -> None:
    grid = grid_with(4, 4, [(0, 1), (1, 0), (1, 1)])
    assert grid.count_live_neighbors(0, 0) == 3
    report = grid.update()
    assert grid.get_cell(0, 0) is CellState.LIVE
    assert 0 in report[0]


@pytest.mark.parametrize("width,height,seed", [(2, 2, 0), (3, 7, 1), (31, 17, 2), (64, 48, 3)])
def test_neighbor_counts_match_convolution(width: int, height: int, seed: int) -> None:
    rng = np.random.default_rng(seed)
    grid = Grid(width, height)
    grid.cells[:] = rng.random(width * height) < 0.35

    expected = ndimage.convolve(
        grid.as_array().astype(np.int16), MOORE, mode="constant", cval=0
    )
    np.testing.assert_array_equal(
        grid.neighbor_counts().reshape(height, width), expected
    )
    for row, col in [(0, 0), (height - 1, width - 1), (height // 2, width // 2)]:
        assert grid.count_live_neighbors(row, col) == expected[row, col]


def test_update_matches_rule_applied_to_convolution() -> None:
    rng = np.random.default_rng(11)
    grid = Grid(40, 25)
    grid.cells[:] = rng.random(40 * 25) < 0.3

    for _ in range(5):
        alive = grid.as_array().astype(bool)
        counts = ndimage.convolve(alive.astype(np.int16), MOORE, mode="constant", cval=0)
        expected = (counts == 3) | (alive & (counts == 2))
        born = expected & ~alive

        report = grid.update()
        np.testing.assert_array_equal(grid.as_array().astype(bool), expected)
        assert set(report.cells()) == set(zip(*(a.tolist() for a in np.nonzero(born))))


# ── Newborn report ─────────────────────────────────────────────────────

def test_report_from_mask_groups_by_row() -> None:
    mask = np.zeros(3 * 4, dtype=bool)
    mask[[1, 3, 9]] = True  # (0,1), (0,3), (2,1)
    report = NewbornReport.from_mask(mask, width=4, height=3)
    assert report.rows == (frozenset({1, 3}), frozenset(), frozenset({1}))
    assert report.count == 3
    assert list(report.cells()) == [(0, 1), (0, 3), (2, 1)]


def test_empty_report() -> None:
    report = NewbornReport.empty(5, 2)
    assert not report
    assert list(report) == [frozenset(), frozenset()]
