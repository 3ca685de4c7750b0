"""Smoke tests for the profiling harness."""

from __future__ import annotations

import argparse

import pytest

from life_bench import parse_size, run_benchmark, seeded_grid, time_generation


def test_seeded_grid_density() -> None:
    grid = seeded_grid(100, 50, density=0.3, seed=1)
    assert 0.25 < grid.population() / (100 * 50) < 0.35
    assert seeded_grid(100, 50, density=0.3, seed=1).cells.tobytes() == grid.cells.tobytes()


def test_parse_size() -> None:
    assert parse_size("200x120") == (200, 120)
    assert parse_size("64X32") == (64, 32)
    with pytest.raises(argparse.ArgumentTypeError):
        parse_size("big")


def test_time_generation_reports_components() -> None:
    grid = seeded_grid(40, 30)
    timings = time_generation(grid)
    assert {"update", "tones", "compose_frame"} <= timings.keys()
    assert all(v >= 0.0 for v in timings.values())
    assert timings["_tones"] <= 16


def test_line_timing_run_prints_breakdown(capsys: pytest.CaptureFixture[str]) -> None:
    run_benchmark(5, width=20, height=10, line_timing=True)
    out = capsys.readouterr().out
    assert "Grid: 20x10" in out
    assert "update" in out
    assert "TOTAL" in out
