"""Tests for the offline sonification diagnostics."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from scipy.io import wavfile

from life_music import SAMPLE_RATE, TONE_LENGTH
from life_music_diag import (
    SCENARIOS,
    AudioAnalyzer,
    ScenarioMetrics,
    format_report,
    generate_report_sequence,
    render_reports,
    run_headless_simulation,
    write_wav,
)


def test_silence_scenario_renders_silence() -> None:
    reports = generate_report_sequence(SCENARIOS["silence"], duration_secs=1.0, fps=10)
    assert len(reports) == 10
    assert not any(reports)

    result = render_reports(reports, fps=10)
    assert result.tones == 0
    assert result.generations == 10
    assert len(result.audio) == int(1.0 * SAMPLE_RATE + TONE_LENGTH * SAMPLE_RATE)
    assert not result.audio.any()


def test_sweep_scenario_produces_sound() -> None:
    reports = generate_report_sequence(SCENARIOS["sweep"], duration_secs=0.5, fps=30)
    result = render_reports(reports, fps=30)
    assert result.generations == len(reports)
    assert result.tones >= len(reports)
    assert np.abs(result.audio).max() > 0.0


def test_headless_simulation_of_blinker() -> None:
    reports = run_headless_simulation(1.0, pattern="blinker", fps=10)
    assert len(reports) == 10
    assert all(r.count == 2 for r in reports)


def test_headless_simulation_unknown_pattern() -> None:
    with pytest.raises(ValueError):
        run_headless_simulation(1.0, pattern="nope")


def test_analyzer_on_a_sine() -> None:
    t = np.arange(SAMPLE_RATE) / SAMPLE_RATE
    sine = (0.5 * np.sin(2 * np.pi * 1000.0 * t)).astype(np.float32)
    m = AudioAnalyzer().analyze(sine)
    assert m.peak == pytest.approx(0.5, abs=1e-3)
    assert m.rms == pytest.approx(0.5 / np.sqrt(2), rel=1e-3)
    assert m.spectral_centroid_hz == pytest.approx(1000.0, abs=50.0)
    assert m.band_energy["mid"] < m.band_energy["high"]


def test_write_wav_round_trip(tmp_path: Path) -> None:
    audio = np.linspace(-0.2, 0.2, 1000, dtype=np.float32)
    path = write_wav(tmp_path / "out", "ramp", audio)
    rate, data = wavfile.read(path)
    assert rate == SAMPLE_RATE
    assert np.abs(data).max() == pytest.approx(0.95, abs=1e-4)


def test_format_report_lists_scenarios() -> None:
    analyzer = AudioAnalyzer()
    metrics = [
        ScenarioMetrics("silence", "nothing", 3, 0, analyzer.analyze(np.zeros(64, np.float32))),
        ScenarioMetrics("burst", "loud", 3, 9, analyzer.analyze(np.full(64, 2.0, np.float32))),
    ]
    report = format_report(metrics)
    assert "silence" in report
    assert "burst: loud" in report
    assert "[!]" in report.split("Band Energy")[0]
