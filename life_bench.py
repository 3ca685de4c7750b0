#!/usr/bin/env python3
"""
Profiling harness for the Life grid.

Seeds a random grid, then runs update + sonification + frame composition
headlessly under cProfile and prints a ranked breakdown of where time is
spent.

Usage:
  python3 life_bench.py                  # 500 generations, summary
  python3 life_bench.py -n 1000          # 1000 generations
  python3 life_bench.py --size 400x200   # grid width x height
  python3 life_bench.py --line-timing    # per-generation component timing
  python3 life_bench.py --dump prof.out  # dump cProfile binary for snakeviz etc.
"""

from __future__ import annotations

import argparse
import cProfile
import pstats
import time
from io import StringIO

import numpy as np

from life import MAX_FPS, compose_frame
from life_grid import Grid
from life_music import newborn_histogram, select_tones


def seeded_grid(width: int, height: int, density: float = 0.3, seed: int = 0) -> Grid:
    """A grid with roughly `density` of its cells alive."""
    rng = np.random.default_rng(seed)
    grid = Grid(width, height)
    grid.cells[:] = rng.random(width * height) < density
    return grid


def parse_size(text: str) -> tuple[int, int]:
    """'WxH' -> (width, height)."""
    try:
        w, h = text.lower().split("x")
        return int(w), int(h)
    except ValueError:
        raise argparse.ArgumentTypeError(f"size must look like 200x120, got {text!r}")


def time_generation(grid: Grid, cell_length: int = 1) -> dict[str, float]:
    """
    One generation through the hot path, timing each component.

    Returns a dict of component → seconds.
    """
    timings: dict[str, float] = {}

    t0 = time.perf_counter()
    report = grid.update()
    timings["update"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    tones = select_tones(newborn_histogram(report))
    timings["tones"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    rows = (grid.height * cell_length + 1) // 2
    frame = compose_frame(grid, cell_length, rows, grid.width * cell_length)
    timings["compose_frame"] = time.perf_counter() - t0

    timings["_newborns"] = float(report.count)
    timings["_tones"] = float(len(tones))
    timings["_chars"] = float(np.count_nonzero((frame.top >= 0) | (frame.bottom >= 0)))
    return timings


def run_benchmark(
    n_gens: int,
    width: int = 200,
    height: int = 120,
    density: float = 0.3,
    line_timing: bool = False,
    dump_path: str | None = None,
) -> None:
    """Run the benchmark for n_gens generations and report results."""

    grid = seeded_grid(width, height, density)

    print(f"Grid: {width}x{height}  Density: {density:.2f}  Generations: {n_gens}")
    print()

    # ── Per-generation component timing ──────────────────────────
    if line_timing:
        component_times: dict[str, list[float]] = {}
        total_times: list[float] = []

        for gen in range(n_gens):
            gen_t0 = time.perf_counter()
            for k, v in time_generation(grid).items():
                component_times.setdefault(k, []).append(v)
            total_times.append(time.perf_counter() - gen_t0)

            if (gen + 1) % 100 == 0:
                avg_ms = sum(total_times[-100:]) / 100 * 1000
                print(f"  gen {gen + 1}/{n_gens}  "
                      f"avg {avg_ms:.2f}ms/gen  "
                      f"pop {grid.population():,}")

        print()
        print("=== Per-Generation Component Breakdown (ms) ===")
        print(f"{'Component':<25} {'Mean':>8} {'P50':>8} {'P95':>8} {'P99':>8} {'Max':>8}")
        print("-" * 73)

        def stats_line(name: str, data: list[float]) -> str:
            arr = np.array(data) * 1000  # to ms
            return (f"{name:<25} {arr.mean():8.2f} {np.median(arr):8.2f} "
                    f"{np.percentile(arr, 95):8.2f} {np.percentile(arr, 99):8.2f} "
                    f"{arr.max():8.2f}")

        for k in sorted(component_times.keys()):
            if k.startswith("_"):
                continue
            print(stats_line(k, component_times[k]))
        print(stats_line("TOTAL", total_times))

        for k, label in (("_newborns", "newborns"), ("_tones", "tones"), ("_chars", "chars")):
            arr = np.array(component_times[k])
            print(f"{label}/gen: mean={arr.mean():.0f}  max={arr.max():.0f}")

        budget_ms = 1000.0 / MAX_FPS
        total_arr = np.array(total_times) * 1000
        over_budget = (total_arr > budget_ms).sum()
        print(f"\n{MAX_FPS}fps budget: {budget_ms:.1f}ms/gen")
        print(f"Generations over budget: {over_budget}/{n_gens} "
              f"({100 * over_budget / n_gens:.1f}%)")
        print(f"Headroom (mean): {budget_ms - total_arr.mean():.1f}ms")
        return

    # ── cProfile run ───────────────────────────────────────────────
    def profiled_run() -> None:
        for _ in range(n_gens):
            time_generation(grid)

    profiler = cProfile.Profile()
    wall_t0 = time.perf_counter()
    profiler.runctx("profiled_run()", globals(), locals())
    wall_dt = time.perf_counter() - wall_t0

    print(f"Wall time: {wall_dt:.2f}s  ({wall_dt / n_gens * 1000:.2f}ms/gen)")
    print(f"Effective rate: {n_gens / wall_dt:.1f} gen/s")
    print()

    if dump_path:
        profiler.dump_stats(dump_path)
        print(f"Profile data saved to: {dump_path}")
        print(f"  View with: python3 -m pstats {dump_path}")
        print()

    buf = StringIO()
    ps = pstats.Stats(profiler, stream=buf)
    ps.sort_stats("cumulative")
    ps.print_stats(30)
    print(buf.getvalue())


def main() -> None:
    parser = argparse.ArgumentParser(description="Profile the bounded Life grid")
    parser.add_argument("-n", "--gens", type=int, default=500,
                        help="Number of generations to run (default: 500)")
    parser.add_argument("--size", type=parse_size, default=(200, 120),
                        help="Grid size as WIDTHxHEIGHT (default: 200x120)")
    parser.add_argument("--density", type=float, default=0.3,
                        help="Initial live fraction (default: 0.3)")
    parser.add_argument("--line-timing", action="store_true",
                        help="Per-generation component timing instead of cProfile")
    parser.add_argument("--dump", type=str, default=None,
                        help="Dump cProfile binary to this path")
    args = parser.parse_args()

    width, height = args.size
    run_benchmark(
        n_gens=args.gens,
        width=width,
        height=height,
        density=args.density,
        line_timing=args.line_timing,
        dump_path=args.dump,
    )


if __name__ == "__main__":
    main()
