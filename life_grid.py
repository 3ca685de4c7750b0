"""
Bounded Game of Life grid.

Two flat, row-major cell buffers (current + next) whose roles swap after
every generation, and a per-position classification computed once at
construction. The classification says which of the eight Moore
neighbours actually exist for a position, so the update never has to
bounds-check a neighbour: edges are walls, not wrap-around.

Counting is vectorised. For every classification the grid keeps the flat
indices of its positions and of each of their neighbours (the "gather
tables"), so one generation is a few numpy gathers plus the B3/S23 masks.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import IntEnum

import numpy as np
from numpy.typing import NDArray


# ═══════════════════════════════════════════════════════════════════════
#  Cell states and position classes
# ═══════════════════════════════════════════════════════════════════════

class CellState(IntEnum):
    """State of one grid position. INVALID is only ever reported, never stored."""
    INVALID = -1
    DEAD = 0
    LIVE = 1


class Classification(IntEnum):
    """Where a position sits relative to the four grid edges."""
    TOP_LEFT = 0
    TOP_RIGHT = 1
    BOTTOM_LEFT = 2
    BOTTOM_RIGHT = 3
    TOP = 4
    BOTTOM = 5
    LEFT = 6
    RIGHT = 7
    CENTER = 8


# Smallest side for which every classification's offsets stay in bounds
MIN_GRID_SIZE: int = 2

# ── Neighbour offset tables, (Δcol, Δrow), indexed by Classification ──
NEIGHBOR_OFFSETS: tuple[tuple[tuple[int, int], ...], ...] = (
    # TOP_LEFT
    ((1, 0), (1, 1), (0, 1)),
    # TOP_RIGHT
    ((-1, 0), (-1, 1), (0, 1)),
    # BOTTOM_LEFT
    ((1, 0), (1, -1), (0, -1)),
    # BOTTOM_RIGHT
    ((-1, 0), (-1, -1), (0, -1)),
    # TOP
    ((-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0)),
    # BOTTOM
    ((-1, 0), (-1, -1), (0, -1), (1, -1), (1, 0)),
    # LEFT
    ((0, -1), (1, -1), (1, 0), (1, 1), (0, 1)),
    # RIGHT
    ((0, -1), (-1, -1), (-1, 0), (-1, 1), (0, 1)),
    # CENTER
    ((-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1)),
)


def classify(row: int, col: int, width: int, height: int) -> Classification:
    """Classify a valid position. Corners win over edges, edges over interior."""
    top = row == 0
    bottom = row == height - 1
    left = col == 0
    right = col == width - 1

    if top and left:
        return Classification.TOP_LEFT
    if top and right:
        return Classification.TOP_RIGHT
    if bottom and left:
        return Classification.BOTTOM_LEFT
    if bottom and right:
        return Classification.BOTTOM_RIGHT
    if top:
        return Classification.TOP
    if bottom:
        return Classification.BOTTOM
    if left:
        return Classification.LEFT
    if right:
        return Classification.RIGHT
    return Classification.CENTER


def offsets(classification: Classification | int) -> tuple[tuple[int, int], ...]:
    """Relative (Δcol, Δrow) neighbour positions for a classification."""
    return NEIGHBOR_OFFSETS[classification]


def _classify_all(width: int, height: int) -> NDArray[np.uint8]:
    """Flat classification array, equivalent to calling classify() everywhere."""
    kinds = np.full((height, width), Classification.CENTER, dtype=np.uint8)
    kinds[:, width - 1] = Classification.RIGHT
    kinds[:, 0] = Classification.LEFT
    kinds[height - 1, :] = Classification.BOTTOM
    kinds[0, :] = Classification.TOP
    kinds[height - 1, width - 1] = Classification.BOTTOM_RIGHT
    kinds[height - 1, 0] = Classification.BOTTOM_LEFT
    kinds[0, width - 1] = Classification.TOP_RIGHT
    kinds[0, 0] = Classification.TOP_LEFT
    return kinds.ravel()


GatherTable = tuple[NDArray[np.intp], tuple[NDArray[np.intp], ...]]


def _build_gather_tables(
    classification: NDArray[np.uint8], width: int
) -> tuple[GatherTable, ...]:
    tables: list[GatherTable] = []
    for kind in Classification:
        positions = np.flatnonzero(classification == kind).astype(np.intp)
        if positions.size == 0:
            continue
        neighbors = tuple(
            positions + (drow * width + dcol) for dcol, drow in NEIGHBOR_OFFSETS[kind]
        )
        tables.append((positions, neighbors))
    return tuple(tables)


# ═══════════════════════════════════════════════════════════════════════
#  Newborn report
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NewbornReport:
    """Cells born in one update: one set of columns per grid row, top to bottom."""
    rows: tuple[frozenset[int], ...]
    width: int
    height: int

    @classmethod
    def empty(cls, width: int, height: int) -> NewbornReport:
        return cls(rows=(frozenset(),) * height, width=width, height=height)

    @classmethod
    def from_mask(cls, births: NDArray[np.bool_], width: int, height: int) -> NewbornReport:
        """Build a report from a flat boolean birth mask."""
        buckets: list[set[int]] = [set() for _ in range(height)]
        rs, cs = np.nonzero(births.reshape(height, width))
        for r, c in zip(rs.tolist(), cs.tolist()):
            buckets[r].add(c)
        return cls(
            rows=tuple(frozenset(b) for b in buckets), width=width, height=height
        )

    @property
    def count(self) -> int:
        return sum(len(cols) for cols in self.rows)

    def __bool__(self) -> bool:
        return any(self.rows)

    def __iter__(self) -> Iterator[frozenset[int]]:
        return iter(self.rows)

    def __getitem__(self, row: int) -> frozenset[int]:
        return self.rows[row]

    def cells(self) -> Iterator[tuple[int, int]]:
        """Yield (row, col) for every newborn, in row-major order."""
        for r, cols in enumerate(self.rows):
            for c in sorted(cols):
                yield r, c


# ═══════════════════════════════════════════════════════════════════════
#  The grid
# ═══════════════════════════════════════════════════════════════════════

class Grid:
    """
    A bounded, double-buffered Life grid.

    `cells` is the current generation and the only buffer anything outside
    update() reads or writes. `next` is scratch: update() fills it from
    `cells` alone and then the two swap roles.
    """

    def __init__(self, width: int, height: int) -> None:
        width, height = int(width), int(height)
        if width < MIN_GRID_SIZE or height < MIN_GRID_SIZE:
            raise ValueError(
                f"grid must be at least {MIN_GRID_SIZE}x{MIN_GRID_SIZE} cells, "
                f"got {width}x{height}"
            )
        self.width: int = width
        self.height: int = height

        size = width * height
        self.cells: NDArray[np.int8] = np.zeros(size, dtype=np.int8)
        self.next: NDArray[np.int8] = np.zeros(size, dtype=np.int8)
        self.classification: NDArray[np.uint8] = _classify_all(width, height)

        self._gather = _build_gather_tables(self.classification, width)
        # Pre-allocated neighbour count buffer for update()
        self._counts: NDArray[np.int8] = np.zeros(size, dtype=np.int8)

    # ── Cell access ─────────────────────────────────────────────────

    def is_valid(self, row: int, col: int) -> bool:
        return 0 <= row < self.height and 0 <= col < self.width

    def set_cell(self, row: int, col: int, state: CellState | int) -> None:
        """Write the current buffer. Out-of-range positions are ignored."""
        if state not in (CellState.DEAD, CellState.LIVE):
            raise ValueError(f"cannot store cell state {state!r}")
        if not self.is_valid(row, col):
            return
        self.cells[row * self.width + col] = state

    def get_cell(self, row: int, col: int) -> CellState:
        if not self.is_valid(row, col):
            return CellState.INVALID
        return CellState(int(self.cells[row * self.width + col]))

    def stamp(
        self, origin_row: int, origin_col: int, cell_offsets: Iterable[tuple[int, int]]
    ) -> int:
        """Set LIVE at origin + each (Δcol, Δrow). Returns how many landed on the grid."""
        placed = 0
        for dcol, drow in cell_offsets:
            row, col = origin_row + drow, origin_col + dcol
            if self.is_valid(row, col):
                self.cells[row * self.width + col] = CellState.LIVE
                placed += 1
        return placed

    def population(self) -> int:
        return int(np.count_nonzero(self.cells))

    def as_array(self) -> NDArray[np.int8]:
        """Read-only (height, width) view of the current generation."""
        view = self.cells.reshape(self.height, self.width)
        view.flags.writeable = False
        return view

    # ── Simulation ──────────────────────────────────────────────────

    def count_live_neighbors(self, row: int, col: int) -> int:
        """Live neighbours of a valid position. No bounds checks: the
        classification only ever points inside the grid."""
        base = row * self.width + col
        cells = self.cells
        width = self.width
        total = 0
        for dcol, drow in NEIGHBOR_OFFSETS[int(self.classification[base])]:
            total += int(cells[base + drow * width + dcol])
        return total

    def neighbor_counts(self) -> NDArray[np.int8]:
        """Live-neighbour count for every position of the current buffer."""
        cells = self.cells
        counts = self._counts
        for positions, neighbors in self._gather:
            acc = cells[neighbors[0]]
            for idx in neighbors[1:]:
                acc += cells[idx]
            counts[positions] = acc
        return counts

    def update(self) -> NewbornReport:
        """Advance one generation and report the cells born in it."""
        counts = self.neighbor_counts()

        alive = self.cells.view(np.bool_)
        n_is_3 = counts == 3
        births = ~alive & n_is_3
        survivors = alive & (n_is_3 | (counts == 2))

        # births and survivors are disjoint, so their sum is the new state
        np.add(births.view(np.int8), survivors.view(np.int8), out=self.next)
        self.cells, self.next = self.next, self.cells

        return NewbornReport.from_mask(births, self.width, self.height)

    def __repr__(self) -> str:
        return f"Grid({self.width}×{self.height}, alive={self.population()})"
