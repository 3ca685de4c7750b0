"""
Patterns the user can stamp into the grid.

A pattern is an ordered list of (Δcol, Δrow) offsets from the click
position. Patterns come from the built-in library below or from image
files, where every pixel whose R, G and B are all below 255 is a live
cell. Images are decoded in an explicit asynchronous load step, so by
the time a PatternStamper exists every pattern it holds is already
resolved to offsets.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from loguru import logger
from PIL import Image, UnidentifiedImageError

from life_grid import Grid


# ═══════════════════════════════════════════════════════════════════════
#  Pattern type + library
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Pattern:
    """A named, resolved set of live-cell offsets."""
    name: str
    offsets: tuple[tuple[int, int], ...]

    @property
    def size(self) -> tuple[int, int]:
        """(width, height) of the pattern's bounding box."""
        if not self.offsets:
            return 0, 0
        cols = [dc for dc, _ in self.offsets]
        rows = [dr for _, dr in self.offsets]
        return max(cols) - min(cols) + 1, max(rows) - min(rows) + 1


# ── Built-in library, offsets are (Δcol, Δrow) ────────────────────────
BUILTIN_PATTERNS: dict[str, tuple[tuple[int, int], ...]] = {
    "glider": ((1, 0), (2, 1), (0, 2), (1, 2), (2, 2)),
    "lwss": (
        (1, 0), (4, 0), (0, 1), (0, 2), (4, 2),
        (0, 3), (1, 3), (2, 3), (3, 3),
    ),
    "blinker": ((0, 0), (1, 0), (2, 0)),
    "block": ((0, 0), (1, 0), (0, 1), (1, 1)),
    "beacon": (
        (0, 0), (1, 0), (0, 1), (1, 1),
        (2, 2), (3, 2), (2, 3), (3, 3),
    ),
    "toad": ((1, 0), (2, 0), (3, 0), (0, 1), (1, 1), (2, 1)),
    "r_pentomino": ((1, 0), (2, 0), (0, 1), (1, 1), (1, 2)),
    "acorn": ((1, 0), (3, 1), (0, 2), (1, 2), (4, 2), (5, 2), (6, 2)),
    "diehard": ((6, 0), (0, 1), (1, 1), (1, 2), (5, 2), (6, 2), (7, 2)),
    "gosper_gun": (
        (24, 0),
        (22, 1), (24, 1),
        (12, 2), (13, 2), (20, 2), (21, 2), (34, 2), (35, 2),
        (11, 3), (15, 3), (20, 3), (21, 3), (34, 3), (35, 3),
        (0, 4), (1, 4), (10, 4), (16, 4), (20, 4), (21, 4),
        (0, 5), (1, 5), (10, 5), (14, 5), (16, 5), (17, 5), (22, 5), (24, 5),
        (10, 6), (16, 6), (24, 6),
        (11, 7), (15, 7),
        (12, 8), (13, 8),
    ),
}

IMAGE_SUFFIXES: tuple[str, ...] = (".png", ".gif", ".bmp", ".pbm", ".ppm")

# Decoders raise ValueError/SyntaxError on corrupt data; oversized images
# raise DecompressionBombError, which is not an OSError
UNREADABLE_IMAGE_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    UnidentifiedImageError,
    Image.DecompressionBombError,
    ValueError,
    SyntaxError,
)


def builtin_patterns() -> list[Pattern]:
    return [Pattern(name, cells) for name, cells in BUILTIN_PATTERNS.items()]


# ═══════════════════════════════════════════════════════════════════════
#  Image patterns
# ═══════════════════════════════════════════════════════════════════════

def pattern_from_image(image: Image.Image, name: str) -> Pattern:
    """Every pixel whose R, G and B are all below 255 becomes a live cell.

    Offsets are (x, y) in row-major pixel order; alpha is ignored.
    """
    rgb = np.asarray(image.convert("RGB"))
    live = np.all(rgb < 255, axis=2)
    ys, xs = np.nonzero(live)
    return Pattern(name, tuple(zip(xs.tolist(), ys.tolist())))


def read_pattern_image(path: Path) -> Pattern:
    with Image.open(path) as img:
        return pattern_from_image(img, path.stem)


async def load_pattern_images(paths: Iterable[Path]) -> list[Pattern]:
    """Decode image patterns concurrently. Unreadable files are skipped."""
    paths = list(paths)
    results = await asyncio.gather(
        *(asyncio.to_thread(read_pattern_image, p) for p in paths),
        return_exceptions=True,
    )
    patterns: list[Pattern] = []
    for path, result in zip(paths, results):
        if isinstance(result, UNREADABLE_IMAGE_ERRORS):
            logger.warning(f"Skipping pattern image {path}: {result}")
            continue
        if isinstance(result, BaseException):
            raise result
        if not result.offsets:
            logger.warning(f"Skipping pattern image {path}: no live pixels")
            continue
        logger.debug(f"Loaded pattern {result.name!r} ({len(result.offsets)} cells)")
        patterns.append(result)
    return patterns


def load_pattern_dir(directory: Path) -> list[Pattern]:
    """Resolve every image pattern in a directory, sorted by file name."""
    if not directory.is_dir():
        logger.warning(f"Pattern directory {directory} does not exist")
        return []
    paths = sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
    )
    return asyncio.run(load_pattern_images(paths))


# ═══════════════════════════════════════════════════════════════════════
#  Stamper
# ═══════════════════════════════════════════════════════════════════════

class PatternStamper:
    """Holds the resolved patterns and which one a click will place."""

    def __init__(self, patterns: Sequence[Pattern]) -> None:
        if not patterns:
            raise ValueError("PatternStamper needs at least one pattern")
        self.patterns: list[Pattern] = list(patterns)
        self.index: int = 0

    @property
    def selected(self) -> Pattern:
        return self.patterns[self.index]

    def names(self) -> list[str]:
        return [p.name for p in self.patterns]

    def next(self) -> Pattern:
        self.index = (self.index + 1) % len(self.patterns)
        return self.selected

    def previous(self) -> Pattern:
        self.index = (self.index - 1) % len(self.patterns)
        return self.selected

    def select(self, name: str) -> Pattern:
        for i, pattern in enumerate(self.patterns):
            if pattern.name == name:
                self.index = i
                return pattern
        raise KeyError(name)

    def stamp(self, grid: Grid, pixel_y: int, pixel_x: int, cell_length: int) -> int:
        """Place the selected pattern with its origin under a surface pixel."""
        row = pixel_y // cell_length
        col = pixel_x // cell_length
        return grid.stamp(row, col, self.selected.offsets)
