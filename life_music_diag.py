#!/usr/bin/env python3
"""Offline diagnostic renderer for the newborn sonification.

Feeds crafted streams of newborn reports (or a real headless simulation)
through LifeMusicEngine at the simulation rate, writes the result to WAV
and reports level and spectral characteristics for tuning.

Usage:
    python3 life_music_diag.py                          # all crafted scenarios
    python3 life_music_diag.py --scenarios sweep scatter
    python3 life_music_diag.py --no-wav                 # report only
    python3 life_music_diag.py --duration 2.0           # shorter renders
    python3 life_music_diag.py --simulate 10            # headless sim for 10 seconds
    python3 life_music_diag.py --simulate 10 --pattern gosper_gun --fps 15
"""
from __future__ import annotations

import argparse
import math
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import numpy as np
from numpy.typing import NDArray
from scipy.io import wavfile

from life_grid import Grid, NewbornReport
from life_music import BUFFER_SIZE, SAMPLE_RATE, TONE_LENGTH, LifeMusicEngine
from life_patterns import BUILTIN_PATTERNS


# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

DEFAULT_DURATION: float = 4.0
DEFAULT_FPS: int = 30
DEFAULT_OUTPUT_DIR: str = "diag_output"
GRID_W: int = 128
GRID_H: int = 64

# Frequency band boundaries for spectral analysis (Hz)
BANDS: dict[str, tuple[float, float]] = {
    "low": (20.0, 200.0),
    "mid": (200.0, 1000.0),
    "high": (1000.0, 4000.0),
    "presence": (4000.0, 10000.0),
}


# ═══════════════════════════════════════════════════════════════════════
#  Scenario Definitions
# ═══════════════════════════════════════════════════════════════════════

# (generation, rng, width, height) -> (height, width) birth mask
BirthFn = Callable[[int, np.random.Generator, int, int], NDArray[np.bool_]]


@dataclass(frozen=True)
class ScenarioDefinition:
    """A named stream of newborns for diagnostic rendering."""
    name: str
    description: str
    births: BirthFn


def _silence(gen: int, rng: np.random.Generator, w: int, h: int) -> NDArray[np.bool_]:
    return np.zeros((h, w), dtype=bool)


def _single(gen: int, rng: np.random.Generator, w: int, h: int) -> NDArray[np.bool_]:
    mask = np.zeros((h, w), dtype=bool)
    mask[h // 2, 0] = True
    return mask


def _sweep(gen: int, rng: np.random.Generator, w: int, h: int) -> NDArray[np.bool_]:
    mask = np.zeros((h, w), dtype=bool)
    col = gen % w
    mask[h // 4 : h // 2, col] = True
    return mask


def _top_row(gen: int, rng: np.random.Generator, w: int, h: int) -> NDArray[np.bool_]:
    mask = np.zeros((h, w), dtype=bool)
    mask[0, :] = True
    return mask


def _scatter(gen: int, rng: np.random.Generator, w: int, h: int) -> NDArray[np.bool_]:
    return rng.random((h, w)) < 0.02


def _burst(gen: int, rng: np.random.Generator, w: int, h: int) -> NDArray[np.bool_]:
    if gen % 15:
        return np.zeros((h, w), dtype=bool)
    return rng.random((h, w)) < 0.2


SCENARIOS: dict[str, ScenarioDefinition] = {
    "silence": ScenarioDefinition(
        "silence", "No births at all; output must be digital silence", _silence,
    ),
    "single": ScenarioDefinition(
        "single", "One newborn, far left, mid height, every generation", _single,
    ),
    "sweep": ScenarioDefinition(
        "sweep", "A vertical run of births sweeping left to right", _sweep,
    ),
    "top_row": ScenarioDefinition(
        "top_row", "Whole top row born every generation, tone cap reached", _top_row,
    ),
    "scatter": ScenarioDefinition(
        "scatter", "Sparse random births everywhere (2%)", _scatter,
    ),
    "burst": ScenarioDefinition(
        "burst", "Dense random births twice a second, silence between", _burst,
    ),
}


def generate_report_sequence(
    scenario: ScenarioDefinition,
    duration_secs: float,
    fps: float = DEFAULT_FPS,
    width: int = GRID_W,
    height: int = GRID_H,
) -> list[NewbornReport]:
    """One newborn report per simulated generation."""
    n_gens = max(1, int(duration_secs * fps))
    rng = np.random.default_rng(seed=42)
    return [
        NewbornReport.from_mask(
            scenario.births(gen, rng, width, height).ravel(), width, height
        )
        for gen in range(n_gens)
    ]


# ═══════════════════════════════════════════════════════════════════════
#  Offline Renderer
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RenderResult:
    audio: NDArray[np.float32]
    generations: int
    tones: int


def render_reports(reports: list[NewbornReport], fps: float = DEFAULT_FPS) -> RenderResult:
    """Drive the engine without PyAudio, one update per generation.

    Updates happen at the callback cadence the live loop would produce:
    whenever a generation's worth of samples has been rendered. The last
    tones are allowed to ring out.
    """
    engine = LifeMusicEngine()
    samples_per_update = SAMPLE_RATE / fps
    total_samples = int(len(reports) * samples_per_update + TONE_LENGTH * SAMPLE_RATE)
    total_buffers = (total_samples + BUFFER_SIZE - 1) // BUFFER_SIZE

    report_idx = 0
    samples_since_update = 0.0
    bufs: list[NDArray[np.float32]] = []

    for buf_idx in range(total_buffers):
        if buf_idx == 0 and reports:
            engine.update(reports[0])
            report_idx = 1
        while report_idx < len(reports) and samples_since_update >= samples_per_update:
            engine.update(reports[report_idx])
            report_idx += 1
            samples_since_update -= samples_per_update

        bufs.append(engine.render_buffer(BUFFER_SIZE))
        samples_since_update += BUFFER_SIZE

    audio = np.concatenate(bufs)[:total_samples] if bufs else np.zeros(0, dtype=np.float32)
    return RenderResult(audio=audio, generations=report_idx, tones=engine.tones_started)


# ═══════════════════════════════════════════════════════════════════════
#  Headless Simulation
# ═══════════════════════════════════════════════════════════════════════

def run_headless_simulation(
    duration_secs: float,
    pattern: str = "r_pentomino",
    fps: float = DEFAULT_FPS,
    width: int = GRID_W,
    height: int = GRID_H,
) -> list[NewbornReport]:
    """Stamp a built-in pattern in the middle of a fresh grid and run it.

    Returns one report per generation, as the live loop would produce them.
    """
    try:
        cells = BUILTIN_PATTERNS[pattern]
    except KeyError:
        raise ValueError(
            f"unknown pattern {pattern!r}; choose from {', '.join(BUILTIN_PATTERNS)}"
        ) from None

    grid = Grid(width, height)
    grid.stamp(height // 2, width // 2, cells)
    n_gens = int(duration_secs * fps)
    return [grid.update() for _ in range(n_gens)]


# ═══════════════════════════════════════════════════════════════════════
#  Audio Analysis
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SignalMetrics:
    """Analysis metrics for one rendered signal."""
    peak: float
    rms: float
    rms_db: float
    spectral_centroid_hz: float
    crest_factor: float
    band_energy: dict[str, float]  # band name → dB


@dataclass(frozen=True)
class ScenarioMetrics:
    name: str
    description: str
    generations: int
    tones: int
    signal: SignalMetrics


class AudioAnalyzer:
    """Compute diagnostic metrics from rendered audio arrays."""

    def __init__(self, sample_rate: int = SAMPLE_RATE) -> None:
        self.sample_rate = sample_rate

    def analyze(self, signal: NDArray[np.float32]) -> SignalMetrics:
        rms = self._rms(signal)
        return SignalMetrics(
            peak=float(np.max(np.abs(signal))) if len(signal) else 0.0,
            rms=rms,
            rms_db=20.0 * math.log10(max(rms, 1e-10)),
            spectral_centroid_hz=self._spectral_centroid(signal),
            crest_factor=self._crest_factor(signal, rms),
            band_energy=self._band_energy(signal),
        )

    @staticmethod
    def _rms(signal: NDArray[np.float32]) -> float:
        """Root mean square of the signal."""
        if len(signal) == 0:
            return 0.0
        return float(np.sqrt(np.mean(signal.astype(np.float64) ** 2)))

    def _spectral_centroid(self, signal: NDArray[np.float32]) -> float:
        """Frequency-domain brightness: weighted mean of frequency bins."""
        if len(signal) < 2:
            return 0.0
        windowed = signal * np.hanning(len(signal)).astype(np.float32)
        fft_mag = np.abs(np.fft.rfft(windowed))
        freqs = np.fft.rfftfreq(len(signal), d=1.0 / self.sample_rate)
        total = float(np.sum(fft_mag))
        if total < 1e-10:
            return 0.0
        return float(np.sum(freqs * fft_mag) / total)

    @staticmethod
    def _crest_factor(signal: NDArray[np.float32], rms: float) -> float:
        """Peak / RMS."""
        if len(signal) == 0 or rms < 1e-10:
            return 0.0
        return float(np.max(np.abs(signal))) / rms

    def _band_energy(self, signal: NDArray[np.float32]) -> dict[str, float]:
        """Energy in frequency bands, reported in dB."""
        if len(signal) < 2:
            return {name: -100.0 for name in BANDS}

        fft_mag = np.abs(np.fft.rfft(signal.astype(np.float64)))
        freqs = np.fft.rfftfreq(len(signal), d=1.0 / self.sample_rate)

        result: dict[str, float] = {}
        for name, (lo, hi) in BANDS.items():
            mask = (freqs >= lo) & (freqs < hi)
            energy = float(np.sum(fft_mag[mask] ** 2))
            result[name] = 10.0 * math.log10(max(energy, 1e-10))
        return result


# ═══════════════════════════════════════════════════════════════════════
#  Report Formatting
# ═══════════════════════════════════════════════════════════════════════

def format_report(all_metrics: list[ScenarioMetrics], fps: float = DEFAULT_FPS) -> str:
    """Format analysis results into a text report."""
    lines: list[str] = []
    sep = "=" * 79

    lines.append(sep)
    lines.append("LIFE MUSIC DIAGNOSTIC REPORT")
    lines.append(f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}")
    lines.append(f"{SAMPLE_RATE} Hz, {fps:g} generations/s, tone length {TONE_LENGTH}s")
    lines.append(sep)
    lines.append("")
    lines.append(
        f"  {'Scenario':<12s}  {'Gens':>5s}  {'Tones':>6s}  {'Peak':>6s}  "
        f"{'RMS dB':>7s}  {'Centroid':>9s}  {'Crest':>5s}"
    )
    lines.append("  " + "-" * 63)
    for m in all_metrics:
        s = m.signal
        clip = " [!]" if s.peak > 1.0 else ""
        lines.append(
            f"  {m.name:<12s}  {m.generations:5d}  {m.tones:6d}  {s.peak:6.2f}  "
            f"{s.rms_db:7.1f}  {s.spectral_centroid_hz:6.0f} Hz  {s.crest_factor:5.1f}{clip}"
        )

    lines.append("")
    lines.append("  Band Energy (dB):")
    lines.append(f"  {'Scenario':<12s}  {'Low':>7s}  {'Mid':>7s}  {'High':>7s}  {'Presence':>8s}")
    lines.append("  " + "-" * 50)
    for m in all_metrics:
        be = m.signal.band_energy
        lines.append(
            f"  {m.name:<12s}  {be.get('low', -100):7.1f}  {be.get('mid', -100):7.1f}"
            f"  {be.get('high', -100):7.1f}  {be.get('presence', -100):8.1f}"
        )

    lines.append("")
    for m in all_metrics:
        lines.append(f"  {m.name}: {m.description}")
    lines.append("")
    lines.append("[!] = peak above 1.0 before master volume (soft clip will engage)")
    lines.append(sep)
    return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════
#  WAV Output
# ═══════════════════════════════════════════════════════════════════════

def write_wav(output_dir: Path, name: str, audio: NDArray[np.float32]) -> Path:
    """Write a peak-normalised float WAV and return its path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{name}.wav"

    peak = float(np.max(np.abs(audio))) if len(audio) else 0.0
    if peak > 1e-8:
        normalized = (audio / peak * 0.95).astype(np.float32)
    else:
        normalized = audio.astype(np.float32)

    wavfile.write(str(path), SAMPLE_RATE, normalized)
    return path


# ═══════════════════════════════════════════════════════════════════════
#  Main
# ═══════════════════════════════════════════════════════════════════════

def main() -> None:
    """Run the full diagnostic pipeline."""
    parser = argparse.ArgumentParser(
        description="Newborn sonification diagnostic renderer and analyzer",
    )
    parser.add_argument(
        "--scenarios", nargs="*", default=None,
        help=f"Specific scenarios to run (default: all). Choices: {', '.join(SCENARIOS)}",
    )
    parser.add_argument(
        "--output-dir", type=Path, default=Path(DEFAULT_OUTPUT_DIR),
        help=f"Directory for WAV output (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument("--no-wav", action="store_true", help="Skip WAV output, only print report")
    parser.add_argument(
        "--duration", type=float, default=DEFAULT_DURATION,
        help=f"Seconds per scenario (default: {DEFAULT_DURATION})",
    )
    parser.add_argument(
        "--fps", type=float, default=DEFAULT_FPS,
        help=f"Generations per second (default: {DEFAULT_FPS})",
    )
    parser.add_argument(
        "--simulate", type=float, default=None, metavar="SECONDS",
        help="Run a headless simulation for N seconds and analyze the real output",
    )
    parser.add_argument(
        "--pattern", default="r_pentomino",
        help=f"Pattern seeded for --simulate. Choices: {', '.join(BUILTIN_PATTERNS)}",
    )
    args = parser.parse_args()

    analyzer = AudioAnalyzer()
    all_metrics: list[ScenarioMetrics] = []
    jobs: list[tuple[str, str, list[NewbornReport]]] = []

    # ── Headless simulation ──────────────────────────────────────
    if args.simulate is not None:
        print(f"Running headless simulation for {args.simulate:.1f}s...", end="", flush=True)
        try:
            reports = run_headless_simulation(args.simulate, args.pattern, args.fps)
        except ValueError as e:
            print(f"\nError: {e}", file=sys.stderr)
            sys.exit(1)
        print(f" {len(reports)} generations.")
        jobs.append(("simulate", f"{args.pattern} on a {GRID_W}x{GRID_H} grid", reports))

    # ── Crafted scenarios ────────────────────────────────────────
    # Skipped when only --simulate was asked for
    if args.scenarios is not None or args.simulate is None:
        names: list[str] = args.scenarios if args.scenarios else list(SCENARIOS)
        for name in names:
            if name not in SCENARIOS:
                print(f"Error: unknown scenario '{name}'. Choose from: {', '.join(SCENARIOS)}",
                      file=sys.stderr)
                sys.exit(1)
        for name in names:
            scenario = SCENARIOS[name]
            jobs.append((
                name,
                scenario.description,
                generate_report_sequence(scenario, args.duration, args.fps),
            ))

    for name, description, reports in jobs:
        print(f"  Rendering: {name}...", end="", flush=True)
        result = render_reports(reports, args.fps)
        print(" analyzing...", end="", flush=True)
        all_metrics.append(ScenarioMetrics(
            name=name,
            description=description,
            generations=result.generations,
            tones=result.tones,
            signal=analyzer.analyze(result.audio),
        ))
        if not args.no_wav:
            path = write_wav(args.output_dir, name, result.audio)
            print(f" wrote {path}.", flush=True)
        else:
            print(" done.", flush=True)

    print()
    report = format_report(all_metrics, fps=args.fps)
    print(report)

    if not args.no_wav:
        report_path = args.output_dir / "analysis_report.txt"
        try:
            report_path.write_text(report)
            print(f"\nReport saved to: {report_path}")
        except OSError as e:
            print(f"\nFailed to save report: {e}", file=sys.stderr)


if __name__ == "__main__":
    main()
