#!/usr/bin/env python3
"""
  S E A W O L F   L I F E
  Conway's Game of Life on a bounded grid, in your terminal, with sound.

  Every cell that is born plays into a 32-band histogram that becomes a
  chord of short tones: left columns are low, right columns are high,
  and births near the top ring louder than births near the bottom.
  Click anywhere to stamp the selected pattern; zoom changes the cell
  size and starts a fresh grid.

  Controls:
    q         quit               SPACE     play / pause
    r         reset (clear)      +/-       ticks per second (1..30)
    x/z       zoom in / out      p/n       previous / next pattern
    mouse     stamp pattern      m         mute / unmute
    [ / ]     volume down / up (10% steps)

  Stats are logged to life_stats.csv and diagnostics to life.log,
  beside this script unless configured otherwise.
"""

from __future__ import annotations

import argparse
import curses
import time
import tomllib
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import IO, ClassVar

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from life_grid import MIN_GRID_SIZE, Grid, NewbornReport
from life_music import DEFAULT_SCALE, SCALES, LifeMusicEngine
from life_patterns import PatternStamper, builtin_patterns, load_pattern_dir

# ── Frame rate ──────────────────────────────────────────────────────────
MILLISECONDS_IN_ONE_SECOND: int = 1000
MIN_FPS: int = 1
MAX_FPS: int = 30
FPS_INC: int = 1

# ── Zoom (surface pixels per cell side) ────────────────────────────────
MIN_CELL_LENGTH: int = 1
MAX_CELL_LENGTH: int = 32
CELL_LENGTH_INC: int = 2
CELL_LENGTHS: tuple[int, ...] = (1, 2, 4, 8, 16, 32)
GRID_LINE_THRESHOLD: int = 8

# ── Palette (xterm-256 colour numbers) ─────────────────────────────────
LIVE_COLOR: int = 196         # red
GRID_LINES_COLOR: int = 250   # light grey
TEXT_COLOR: int = 104         # slate blue
PALETTE: list[int] = [LIVE_COLOR, GRID_LINES_COLOR]

# Palette indices used in composed frames; EMPTY draws nothing
EMPTY: int = -1
LIVE: int = 0
LINE: int = 1

# ── Half-block characters ───────────────────────────────────────────────
UPPER_HALF = "▀"  # ▀  top pixel drawn
LOWER_HALF = "▄"  # ▄  bottom pixel drawn

# Longest the main loop sleeps while waiting for input or the next tick
IDLE_SLEEP: float = 1.0 / 60.0

STATS_LOG_EVERY: int = 10

HERE = Path(__file__).resolve().parent
LOG_PATH = HERE / "life.log"
STATS_PATH = HERE / "life_stats.csv"


# ═══════════════════════════════════════════════════════════════════════
#  Configuration
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class LifeConfig:
    """Start-up settings. Loaded from a TOML `[life]` table, then CLI flags."""

    fps: int = MAX_FPS
    cell_length: int = MIN_CELL_LENGTH
    scale: str = DEFAULT_SCALE
    volume: float = 0.5
    audio: bool = True
    pattern_dir: Path | None = None
    log_path: Path = LOG_PATH
    stats_path: Path = STATS_PATH
    log_level: str = "INFO"

    PATH_FIELDS: ClassVar[tuple[str, ...]] = ("pattern_dir", "log_path", "stats_path")

    def validate(self) -> None:
        if not MIN_FPS <= self.fps <= MAX_FPS:
            raise ValueError(f"fps must be in {MIN_FPS}..{MAX_FPS}, got {self.fps}")
        if self.cell_length not in CELL_LENGTHS:
            raise ValueError(
                f"cell_length must be one of {CELL_LENGTHS}, got {self.cell_length}"
            )
        if self.scale not in SCALES:
            raise ValueError(f"unknown scale {self.scale!r}")
        if not 0.0 <= self.volume <= 1.0:
            raise ValueError(f"volume must be in 0..1, got {self.volume}")
        try:
            logger.level(self.log_level)
        except (ValueError, TypeError):
            raise ValueError(f"unknown log level {self.log_level!r}") from None


def load_config(path: Path) -> LifeConfig:
    """Read a TOML config file. Unknown keys are an error."""
    with open(path, "rb") as f:
        data = tomllib.load(f)
    table = dict(data.get("life", {}))

    known = {f.name for f in fields(LifeConfig)}
    unknown = sorted(set(table) - known)
    if unknown:
        raise ValueError(f"{path}: unknown [life] keys: {', '.join(unknown)}")

    for name in LifeConfig.PATH_FIELDS:
        if table.get(name) is not None:
            table[name] = Path(table[name]).expanduser()

    config = LifeConfig(**table)
    config.validate()
    return config


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Conway's Game of Life with sound, in the terminal.")
    p.add_argument("--config", type=Path, help="TOML file with a [life] table")
    p.add_argument("--fps", type=int, help=f"ticks per second ({MIN_FPS}..{MAX_FPS})")
    p.add_argument("--cell-length", type=int, help=f"pixels per cell, one of {CELL_LENGTHS}")
    p.add_argument("--patterns", type=Path, dest="pattern_dir",
                   help="directory of pattern images "
                        "(pixels with R, G and B all below 255 are live)")
    p.add_argument("--no-audio", action="store_false", dest="audio", default=None,
                   help="do not open an audio stream")
    p.add_argument("--volume", type=float, help="master volume, 0..1")
    p.add_argument("--log-file", type=Path, dest="log_path")
    p.add_argument("--stats-file", type=Path, dest="stats_path")
    p.add_argument("--log-level", help="loguru level for the log file (DEBUG, INFO, ...)")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> LifeConfig:
    """Config file values, overridden by any flag given on the command line."""
    config = load_config(args.config) if args.config else LifeConfig()
    for name in ("fps", "cell_length", "pattern_dir", "audio", "volume",
                 "log_path", "stats_path", "log_level"):
        value = getattr(args, name, None)
        if value is not None:
            setattr(config, name, value)
    config.validate()
    return config


def configure_logging(log_path: Path, level: str = "INFO") -> None:
    """Send loguru output to a rotating file; stderr would corrupt the screen."""
    logger.remove()
    logger.add(log_path, rotation="10 MB", retention="30 days", level=level)


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes per-generation telemetry to CSV."""

    HEADER: ClassVar[str] = (
        "gen,time_s,population,newborns,fps,cell_length,width,height,event\n"
    )

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError as e:
            logger.warning(f"Stats logging disabled, cannot open {self._path}: {e}")
            self._fh = None

    def log(
        self,
        gen: int,
        pop: int,
        newborns: int,
        fps: int,
        cell_length: int,
        width: int,
        height: int,
        event: str = "",
    ) -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        self._fh.write(
            f"{gen},{t:.1f},{pop},{newborns},{fps},{cell_length},{width},{height},{event}\n"
        )
        # Flush on events or periodically
        if event or gen % 50 == 0:
            try:
                self._fh.flush()
            except OSError as e:
                logger.warning(f"Stats flush failed: {e}")

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError as e:
                logger.warning(f"Stats close failed: {e}")
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Scheduling
# ═══════════════════════════════════════════════════════════════════════

class SimulationClock:
    """
    Decides when the next generation is due.

    The main loop polls tick_due(); nothing runs in the background, so a
    tick always runs to completion before the next key is handled. A new
    rate applies from the next deadline on: the pending one is kept.
    """

    def __init__(self, fps: int = MAX_FPS, now: Callable[[], float] = time.monotonic) -> None:
        if not MIN_FPS <= fps <= MAX_FPS:
            raise ValueError(f"fps must be in {MIN_FPS}..{MAX_FPS}, got {fps}")
        self.fps: int = fps
        self._now = now
        self._deadline: float | None = None

    @property
    def period(self) -> float:
        """Seconds between ticks."""
        return 1.0 / self.fps

    @property
    def interval_ms(self) -> float:
        return MILLISECONDS_IN_ONE_SECOND / self.fps

    @property
    def running(self) -> bool:
        return self._deadline is not None

    def start(self) -> None:
        self._deadline = self._now() + self.period

    def stop(self) -> None:
        self._deadline = None

    def toggle(self) -> bool:
        if self.running:
            self.stop()
        else:
            self.start()
        return self.running

    def faster(self) -> bool:
        if self.fps < MAX_FPS:
            self.fps += FPS_INC
            return True
        return False

    def slower(self) -> bool:
        if self.fps > MIN_FPS:
            self.fps -= FPS_INC
            return True
        return False

    def tick_due(self) -> bool:
        """True once per elapsed period while running."""
        if self._deadline is None:
            return False
        now = self._now()
        if now < self._deadline:
            return False
        self._deadline += self.period
        if self._deadline <= now:
            # Fell behind by more than a period: don't replay missed ticks
            self._deadline = now + self.period
        return True

    def seconds_until_tick(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._now())


# ═══════════════════════════════════════════════════════════════════════
#  The session
# ═══════════════════════════════════════════════════════════════════════

class LifeSession:
    """
    Everything one run of the simulation owns: the grid, its clock, the
    zoom level, the pattern stamper and the optional audio/stats sinks.

    The surface is measured in pixels; the grid is the surface divided by
    the cell length, floored. Any change of cell length or surface size
    builds a new, empty grid.
    """

    def __init__(
        self,
        surface_h: int,
        surface_w: int,
        stamper: PatternStamper,
        *,
        clock: SimulationClock | None = None,
        cell_length: int = MIN_CELL_LENGTH,
        music: LifeMusicEngine | None = None,
        stats: StatsLogger | None = None,
    ) -> None:
        if cell_length not in CELL_LENGTHS:
            raise ValueError(f"cell_length must be one of {CELL_LENGTHS}, got {cell_length}")
        self.surface_h: int = surface_h
        self.surface_w: int = surface_w
        self.stamper = stamper
        self.clock: SimulationClock = clock if clock is not None else SimulationClock()
        self.cell_length: int = cell_length
        self.music = music
        self.stats = stats

        while self.cell_length > MIN_CELL_LENGTH and not self.fits(self.cell_length):
            self.cell_length //= CELL_LENGTH_INC

        self.generation: int = 0
        self.last_newborns: int = 0
        self.grid: Grid = self._new_grid()

    # ── Grid lifecycle ──────────────────────────────────────────────

    def grid_shape(self, cell_length: int | None = None) -> tuple[int, int]:
        """(height, width) in cells for a cell length on the current surface."""
        length = self.cell_length if cell_length is None else cell_length
        return self.surface_h // length, self.surface_w // length

    def fits(self, cell_length: int) -> bool:
        h, w = self.grid_shape(cell_length)
        return h >= MIN_GRID_SIZE and w >= MIN_GRID_SIZE

    def _new_grid(self) -> Grid:
        h, w = self.grid_shape()
        return Grid(w, h)

    def reset(self) -> None:
        """Start over with an all-dead grid at the current zoom."""
        self.grid = self._new_grid()
        self.generation = 0
        self.last_newborns = 0
        self._log_event("reset")

    def zoom_in(self) -> bool:
        """Double the cell length. Refused at the limit or if the grid would vanish."""
        bigger = self.cell_length * CELL_LENGTH_INC
        if bigger > MAX_CELL_LENGTH or not self.fits(bigger):
            return False
        self.cell_length = bigger
        self.reset()
        return True

    def zoom_out(self) -> bool:
        if self.cell_length <= MIN_CELL_LENGTH:
            return False
        self.cell_length //= CELL_LENGTH_INC
        self.reset()
        return True

    def resize(self, surface_h: int, surface_w: int) -> bool:
        """Adopt a new surface size, zooming out if the grid no longer fits."""
        old = self.surface_h, self.surface_w
        self.surface_h, self.surface_w = surface_h, surface_w
        if not self.fits(MIN_CELL_LENGTH):
            logger.warning(f"Surface {surface_w}x{surface_h} too small; keeping {old[1]}x{old[0]}")
            self.surface_h, self.surface_w = old
            return False
        while not self.fits(self.cell_length):
            self.cell_length //= CELL_LENGTH_INC
        self.reset()
        return True

    # ── Controls ────────────────────────────────────────────────────

    def toggle_running(self) -> bool:
        running = self.clock.toggle()
        logger.debug(f"Simulation {'running' if running else 'paused'} at {self.clock.fps} fps")
        return running

    def faster(self) -> bool:
        return self.clock.faster()

    def slower(self) -> bool:
        return self.clock.slower()

    def stamp_at(self, pixel_y: int, pixel_x: int) -> int:
        placed = self.stamper.stamp(self.grid, pixel_y, pixel_x, self.cell_length)
        self._log_event(f"stamp:{self.stamper.selected.name}")
        return placed

    # ── Simulation ──────────────────────────────────────────────────

    def step(self) -> NewbornReport:
        """One generation: update, hand births to audio, log."""
        report = self.grid.update()
        self.generation += 1
        self.last_newborns = report.count

        if self.music is not None:
            try:
                self.music.update(report)
            except Exception:
                # Never let music take the simulation down with it
                logger.exception("Music update failed; continuing without sound")
                self.music.stop()
                self.music = None

        if self.generation % STATS_LOG_EVERY == 0:
            self._log_event("")
        return report

    def tick(self) -> NewbornReport | None:
        """Run a generation if the clock says one is due."""
        if self.clock.tick_due():
            return self.step()
        return None

    def _log_event(self, event: str) -> None:
        if event:
            logger.debug(f"gen {self.generation}: {event}")
        if self.stats is None:
            return
        self.stats.log(
            gen=self.generation,
            pop=self.grid.population(),
            newborns=self.last_newborns,
            fps=self.clock.fps,
            cell_length=self.cell_length,
            width=self.grid.width,
            height=self.grid.height,
            event=event,
        )


# ═══════════════════════════════════════════════════════════════════════
#  Color management
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ColorMap:
    """Manages curses color pairs for half-block dual-color rendering."""

    _fg_pairs: dict[int, int] = field(default_factory=dict)
    _dual_pairs: dict[tuple[int, int], int] = field(default_factory=dict)
    _text_pair: int = 0

    def setup(self) -> None:
        curses.start_color()
        curses.use_default_colors()

        n = len(PALETTE)
        max_pairs = curses.COLOR_PAIRS - 1
        pair_id = 1

        for i in range(n):
            if pair_id > max_pairs:
                break
            curses.init_pair(pair_id, PALETTE[i], -1)
            self._fg_pairs[i] = pair_id
            pair_id += 1

        for i in range(n):
            for j in range(n):
                if pair_id > max_pairs:
                    break
                curses.init_pair(pair_id, PALETTE[i], PALETTE[j])
                self._dual_pairs[(i, j)] = pair_id
                pair_id += 1

        if pair_id <= max_pairs:
            curses.init_pair(pair_id, TEXT_COLOR, -1)
            self._text_pair = pair_id

    def fg(self, color_idx: int) -> int:
        return self._fg_pairs.get(color_idx, 0)

    def dual(self, top_idx: int, bot_idx: int) -> int:
        return self._dual_pairs.get((top_idx, bot_idx), 0)

    def text(self) -> int:
        return self._text_pair


# ═══════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Frame:
    """Palette index (or EMPTY) of the top and bottom pixel of every character cell."""
    top: NDArray[np.int8]
    bottom: NDArray[np.int8]


def compose_frame(grid: Grid, cell_length: int, rows: int, cols: int) -> Frame:
    """Scale the current generation to a rows x cols half-block frame."""
    pix_h, pix_w = rows * 2, cols
    image = np.full((pix_h, pix_w), EMPTY, dtype=np.int8)

    gh = min(grid.height * cell_length, pix_h)
    gw = min(grid.width * cell_length, pix_w)
    area = image[:gh, :gw]

    if cell_length >= GRID_LINE_THRESHOLD:
        ys = np.arange(gh)[:, None]
        xs = np.arange(gw)[None, :]
        area[(ys % cell_length == 0) | (xs % cell_length == 0)] = LINE

    cells = grid.as_array()
    pixels = np.repeat(np.repeat(cells, cell_length, axis=0), cell_length, axis=1)
    area[pixels[:gh, :gw] > 0] = LIVE

    return Frame(top=image[0::2], bottom=image[1::2])


def status_text(session: LifeSession, music_status: str = "") -> tuple[str, str]:
    """Left (simulation state) and right (audio + key help) parts of the status bar."""
    state = "running" if session.clock.running else "paused"
    left = (
        f"  FPS: {session.clock.fps}  Cell Length: {session.cell_length}"
        f"  gen {session.generation:,}  pop {session.grid.population():,}"
        f"  births {session.last_newborns:,}"
        f"  [{session.stamper.selected.name}]  {state}"
    )
    music = f"{music_status}  " if music_status else ""
    right = f"{music}q spc r +/- z/x p/n m []  "
    return left, right


def render(stdscr: curses.window, session: LifeSession, cmap: ColorMap) -> None:
    """Half-block rendering of the grid plus a one-line status bar."""
    max_y, max_x = stdscr.getmaxyx()
    frame = compose_frame(session.grid, session.cell_length, max_y - 1, max_x)
    top, bot = frame.top, frame.bottom

    active_ys, active_xs = np.nonzero((top != EMPTY) | (bot != EMPTY))
    ys = active_ys.tolist()
    xs = active_xs.tolist()
    tops = top[active_ys, active_xs].tolist()
    bots = bot[active_ys, active_xs].tolist()

    # Local references (avoid attribute lookups in tight loop)
    _addstr = stdscr.addstr
    _color_pair = curses.color_pair
    _dual = cmap.dual
    _fg = cmap.fg

    for y, x, t, b in zip(ys, xs, tops, bots):
        try:
            if t != EMPTY and b != EMPTY:
                _addstr(y, x, UPPER_HALF, _color_pair(_dual(t, b)))
            elif t != EMPTY:
                _addstr(y, x, UPPER_HALF, _color_pair(_fg(t)))
            else:
                _addstr(y, x, LOWER_HALF, _color_pair(_fg(b)))
        except curses.error:
            pass  # writing the bottom-right cell always raises

    music_status = session.music.status_string() if session.music is not None else ""
    left, right = status_text(session, music_status)
    attr = _color_pair(cmap.text())
    if len(left) + len(right) >= max_x:
        status = (left + "  " + right)[: max_x - 1]
        right = ""
    else:
        status = left
    try:
        stdscr.addstr(max_y - 1, 0, status, attr)
        if right:
            stdscr.addstr(max_y - 1, max_x - len(right) - 1, right, attr | curses.A_DIM)
    except curses.error:
        pass


# ═══════════════════════════════════════════════════════════════════════
#  Main loop
# ═══════════════════════════════════════════════════════════════════════

def surface_size(stdscr: curses.window) -> tuple[int, int]:
    """Pixel (height, width) of the drawable area: half-blocks above a status line."""
    max_y, max_x = stdscr.getmaxyx()
    return (max_y - 1) * 2, max_x


def handle_key(session: LifeSession, key: int, stdscr: curses.window) -> bool:
    """Apply one key press. Returns False when the user quits."""
    music = session.music

    if key in (ord("q"), ord("Q")):
        return False
    elif key == ord(" "):
        session.toggle_running()
    elif key in (ord("r"), ord("R")):
        session.reset()
    elif key in (ord("+"), ord("=")):
        session.faster()
    elif key in (ord("-"), ord("_")):
        session.slower()
    elif key in (ord("x"), ord("X")):
        session.zoom_in()
    elif key in (ord("z"), ord("Z")):
        session.zoom_out()
    elif key in (ord("n"), ord("N"), ord("\t")):
        session.stamper.next()
    elif key in (ord("p"), ord("P")):
        session.stamper.previous()
    elif key in (ord("m"), ord("M")):
        if music is not None:
            music.toggle_mute()
    elif key == ord("["):
        if music is not None:
            music.adjust_volume(-0.1)
    elif key == ord("]"):
        if music is not None:
            music.adjust_volume(0.1)
    elif key == curses.KEY_MOUSE:
        try:
            _, mx, my, _, bstate = curses.getmouse()
        except curses.error:
            return True
        if bstate & (curses.BUTTON1_CLICKED | curses.BUTTON1_PRESSED):
            session.stamp_at(my * 2, mx)
    elif key == curses.KEY_RESIZE:
        session.resize(*surface_size(stdscr))
    return True


def main(stdscr: curses.window, config: LifeConfig, stamper: PatternStamper) -> None:
    surface_h, surface_w = surface_size(stdscr)
    if min(surface_h, surface_w) < MIN_GRID_SIZE:
        rows, cols = stdscr.getmaxyx()
        # Half-blocks above one status line
        min_rows = (MIN_GRID_SIZE + 1) // 2 + 1
        logger.error(f"Terminal {cols}x{rows} cannot hold a {MIN_GRID_SIZE}x{MIN_GRID_SIZE} grid")
        raise SystemExit(
            f"Terminal too small ({cols}x{rows}): need at least "
            f"{MIN_GRID_SIZE} columns and {min_rows} rows"
        )

    curses.curs_set(0)
    stdscr.nodelay(True)
    stdscr.timeout(0)
    curses.mousemask(curses.ALL_MOUSE_EVENTS)

    cmap = ColorMap()
    cmap.setup()

    stats = StatsLogger(config.stats_path)
    stats.open()

    music: LifeMusicEngine | None = None
    if config.audio:
        music = LifeMusicEngine(config.scale, config.volume)
        if not music.start():
            music = None

    session = LifeSession(
        surface_h,
        surface_w,
        stamper,
        clock=SimulationClock(config.fps),
        cell_length=config.cell_length,
        music=music,
        stats=stats,
    )
    logger.info(
        f"Grid {session.grid.width}x{session.grid.height} at cell length "
        f"{session.cell_length}, {session.clock.fps} fps"
    )

    dirty = True
    try:
        while True:
            # ── Input ──────────────────────────────────────────────
            try:
                key = stdscr.getch()
            except curses.error:
                key = -1
            if key != -1:
                if not handle_key(session, key, stdscr):
                    break
                dirty = True

            # ── Simulate ───────────────────────────────────────────
            if session.tick() is not None:
                dirty = True

            # ── Render ─────────────────────────────────────────────
            if dirty:
                stdscr.erase()
                render(stdscr, session, cmap)
                stdscr.refresh()
                dirty = False

            wait = session.clock.seconds_until_tick()
            time.sleep(IDLE_SLEEP if wait is None else min(wait, IDLE_SLEEP))

    finally:
        if session.music is not None:
            session.music.stop()
        stats.close()
        logger.info(f"Stopped after {session.generation} generations")


def run(argv: Sequence[str] | None = None) -> None:
    config = build_config(parse_args(argv))
    configure_logging(config.log_path, config.log_level)

    patterns = builtin_patterns()
    if config.pattern_dir is not None:
        patterns += load_pattern_dir(config.pattern_dir)
    stamper = PatternStamper(patterns)
    logger.info(f"{len(patterns)} patterns available: {', '.join(stamper.names())}")

    try:
        curses.wrapper(main, config, stamper)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
