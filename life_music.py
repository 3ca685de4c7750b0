"""
Newborn sonification for the Life grid.

Every generation the cells that were just born are folded into a 32-bucket
histogram: the bucket is the newborn's column (left = low, right = high)
and its weight grows towards the top of the grid. Up to 16 non-empty
buckets each trigger a short tone drawn from a seven-note scale, shifted
up one octave per seven buckets.

Architecture:
  The main thread calls update(report) once per tick; it only computes
  frozen ToneSpecs and appends them to a deque. The PyAudio callback
  drains that deque into its own voice list and renders the mix, so the
  two threads never share mutable state.

Audio: 44100 Hz, mono, float32, 1024 frames/buffer (~23ms latency).
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass

import numpy as np
from loguru import logger
from numpy.typing import NDArray
from scipy.signal import lfilter

from life_grid import NewbornReport

try:
    import pyaudio
except ImportError:
    pyaudio = None  # type: ignore[assignment]


# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

SAMPLE_RATE: int = 44100
BUFFER_SIZE: int = 1024
TWO_PI: float = 2.0 * math.pi

NUM_BINS: int = 32          # histogram buckets across the grid width
MAX_TONES: int = 16         # tones started per generation
MAX_VOICES: int = 256       # tones sounding at once (30 fps × 16 × 0.5 s fits)
TONE_LENGTH: float = 0.5    # seconds; held for the first half, faded over the second

# ── Scales (Hz of each degree in the lowest octave) ───────────────────
SCALES: dict[str, tuple[float, ...]] = {
    "default": (65.41, 69.30, 77.78, 82.41, 92.50, 103.83, 116.54),
}
DEFAULT_SCALE: str = "default"

# ── Periodic wave ──────────────────────────────────────────────────────
# Fourier series coefficients of x / (1 + (x + 1)^2); index 0 is DC.
WAVE_REAL: tuple[float, ...] = (
    0, 261.2,
    0.09739212651,
    0.032786739527,
    0.001225904321,
    0.024426840957,
    0.005598166791,
    0.000367453175,
    0.000774904557,
    0.000547045919,
    0.00075175028,
    0.000362975393,
    0.000125426575,
    0.000306903942,
    0.000141571806,
    0.000111883553,
    0.000185059163,
    0.000160757309,
    0.000246832455,
    0.000214639664,
    0.000100450696,
    0.000074958519,
    0.000068590463,
    0.000090672429,
    0.000082255047,
    0.000058066823,
    0.00006300047,
    0.000053690592,
    0.000046301069,
    0.000049790923,
    0.000043165567,
    0.000040338032,
)
WAVE_IMAG: tuple[float, ...] = (
    0, 261.2,
    0.022020916788,
    0.353879760022,
    0.041728783158,
    0.016857566899,
    0.020900439633,
    0.011706270946,
    0.017277870526,
    0.018527552753,
    0.014431274941,
    0.012933574842,
    0.006878993083,
    0.010609891054,
    0.007308195516,
    0.006497471587,
    0.0083491277,
    0.007794246837,
    0.009735680393,
    0.008991505601,
    0.006155999112,
    0.00531749803,
    0.005086530636,
    0.005848598127,
    0.005570425525,
    0.004679955432,
    0.004874784042,
    0.00450009594,
    0.004178878133,
    0.004333544822,
    0.004034868033,
    0.003900450138,
)
WAVETABLE_SIZE: int = 2048


# ═══════════════════════════════════════════════════════════════════════
#  Data transfer: frozen tone description from sim → audio
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ToneSpec:
    """One tone to start: which bucket fired, at what pitch and loudness."""
    bucket: int
    frequency: float
    cutoff: float
    gain: float


# ═══════════════════════════════════════════════════════════════════════
#  Newborns → tones
# ═══════════════════════════════════════════════════════════════════════

def newborn_histogram(report: NewbornReport, bins: int = NUM_BINS) -> NDArray[np.int64]:
    """Weighted column histogram of one generation's births.

    A newborn at (row, col) adds floor((height - row) / height * bins) to
    bucket floor(col / width * bins).
    """
    hist = np.zeros(bins, dtype=np.int64)
    width, height = report.width, report.height
    for row, cols in enumerate(report.rows):
        if not cols:
            continue
        weight = (height - row) * bins // height
        buckets = np.fromiter(cols, dtype=np.int64, count=len(cols)) * bins // width
        np.add.at(hist, buckets, weight)
    return hist


def bucket_frequency(bucket: int, scale: tuple[float, ...]) -> tuple[float, float]:
    """(pitch, filter cutoff) for a bucket: scale degree, raised an octave per lap."""
    base = scale[bucket % len(scale)]
    return base * 2.0 ** (bucket // len(scale)), base


def select_tones(
    hist: NDArray[np.int64],
    scale: tuple[float, ...] = SCALES[DEFAULT_SCALE],
    max_tones: int = MAX_TONES,
) -> list[ToneSpec]:
    """The first max_tones non-empty buckets, lowest first."""
    tones: list[ToneSpec] = []
    for bucket in np.flatnonzero(hist > 0).tolist():
        if len(tones) >= max_tones:
            break
        weight = int(hist[bucket])
        freq, cutoff = bucket_frequency(bucket, scale)
        tones.append(ToneSpec(
            bucket=bucket,
            frequency=freq,
            cutoff=cutoff,
            gain=math.log2(weight) / weight,
        ))
    return tones


# ═══════════════════════════════════════════════════════════════════════
#  Utility functions
# ═══════════════════════════════════════════════════════════════════════

def build_wavetable(
    real: tuple[float, ...], imag: tuple[float, ...], size: int = WAVETABLE_SIZE
) -> NDArray[np.float32]:
    """One cycle of sum(real[k] cos(k x) + imag[k] sin(k x)), peak-normalised."""
    k = np.arange(1, len(real), dtype=np.float64)[:, None]
    x = TWO_PI * np.arange(size, dtype=np.float64)[None, :] / size
    a = np.asarray(real[1:], dtype=np.float64)[:, None]
    b = np.asarray(imag[1:], dtype=np.float64)[:, None]
    wave = (a * np.cos(k * x) + b * np.sin(k * x)).sum(axis=0)
    peak = np.abs(wave).max()
    if peak > 0:
        wave /= peak
    return wave.astype(np.float32)


def tone_envelope(t: NDArray[np.float64], gain: float) -> NDArray[np.float32]:
    """Hold `gain` for half the tone, then ramp linearly to silence."""
    half = TONE_LENGTH / 2.0
    fade = np.clip((TONE_LENGTH - t) / half, 0.0, 1.0)
    return (gain * np.where(t < half, 1.0, fade)).astype(np.float32)


def soft_clip(x: NDArray[np.float32]) -> NDArray[np.float32]:
    """Soft clipping (tanh-based), in place."""
    np.tanh(x, out=x)
    return x


class CachedLPF:
    """One-pole low-pass filter with cached coefficients and persistent state.

    Carries filter state (zi) across audio buffers so a tone stays
    continuous from one callback to the next.
    """

    def __init__(self, cutoff_hz: float, sample_rate: int = SAMPLE_RATE) -> None:
        rc = 1.0 / (TWO_PI * cutoff_hz)
        dt = 1.0 / sample_rate
        alpha = dt / (rc + dt)
        self._b = np.array([alpha], dtype=np.float64)
        self._a = np.array([1.0, -(1.0 - alpha)], dtype=np.float64)
        self._zi = np.zeros(1, dtype=np.float64)

    def apply(self, signal: NDArray[np.float32]) -> NDArray[np.float32]:
        out, self._zi = lfilter(self._b, self._a, signal.astype(np.float64), zi=self._zi)
        return out.astype(np.float32)


# ═══════════════════════════════════════════════════════════════════════
#  Voice: one sounding tone
# ═══════════════════════════════════════════════════════════════════════

class Tone:
    """Wavetable oscillator + low-pass + fixed-length envelope."""

    def __init__(self, spec: ToneSpec, table: NDArray[np.float32]) -> None:
        self.spec = spec
        self._table = table
        self._phase: float = 0.0  # in table samples
        self._elapsed: int = 0    # in output samples
        self._length: int = int(TONE_LENGTH * SAMPLE_RATE)
        self._lpf = CachedLPF(spec.cutoff)

    @property
    def finished(self) -> bool:
        return self._elapsed >= self._length

    def render(self, n_samples: int) -> NDArray[np.float32]:
        if self.finished:
            return np.zeros(n_samples, dtype=np.float32)

        size = len(self._table)
        inc = self.spec.frequency * size / SAMPLE_RATE
        steps = np.arange(n_samples, dtype=np.float64)
        idx = (self._phase + inc * steps).astype(np.int64) % size
        self._phase = (self._phase + inc * n_samples) % size

        t = (self._elapsed + steps) / SAMPLE_RATE
        self._elapsed += n_samples

        osc = self._lpf.apply(self._table[idx])
        return osc * tone_envelope(t, self.spec.gain)


# ═══════════════════════════════════════════════════════════════════════
#  The Music Engine
# ═══════════════════════════════════════════════════════════════════════

class LifeMusicEngine:
    """
    Plays the births of each generation.

    Call start() to begin audio output, update(report) once per tick from
    the main thread, and stop() on shutdown. render_buffer() is also usable
    offline, without PyAudio.
    """

    def __init__(self, scale: str = DEFAULT_SCALE, volume: float = 0.5) -> None:
        if scale not in SCALES:
            raise ValueError(f"unknown scale {scale!r}; choose from {sorted(SCALES)}")
        self._scale: tuple[float, ...] = SCALES[scale]
        self._muted: bool = False
        self._master_volume: float = max(0.0, min(1.0, volume))
        self._table: NDArray[np.float32] = build_wavetable(WAVE_REAL, WAVE_IMAG)

        # Main thread appends, audio thread pops
        self._pending: deque[ToneSpec] = deque()
        # Owned by whichever thread renders
        self._voices: list[Tone] = []

        self._pa: pyaudio.PyAudio | None = None  # type: ignore[name-defined]
        self._stream: pyaudio.Stream | None = None  # type: ignore[name-defined]
        self._running: bool = False

        self._underrun_count: int = 0
        self.tones_started: int = 0

    # ── Public properties ──────────────────────────────────────────────

    @property
    def is_muted(self) -> bool:
        return self._muted

    @property
    def running(self) -> bool:
        return self._running

    @property
    def volume_percent(self) -> int:
        return round(self._master_volume * 100)

    @property
    def active_voices(self) -> int:
        return len(self._voices)

    # ── Controls ───────────────────────────────────────────────────────

    def toggle_mute(self) -> None:
        self._muted = not self._muted

    def adjust_volume(self, delta: float) -> None:
        self._master_volume = max(0.0, min(1.0, self._master_volume + delta))

    # ── Lifecycle ──────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start audio output. Returns True on success, False on failure."""
        if pyaudio is None:
            logger.warning("PyAudio is not installed; running without sound")
            return False

        try:
            self._pa = pyaudio.PyAudio()
            self._stream = self._pa.open(
                format=pyaudio.paFloat32,
                channels=1,
                rate=SAMPLE_RATE,
                output=True,
                frames_per_buffer=BUFFER_SIZE,
                stream_callback=self._audio_callback,
            )
            self._running = True
            self._stream.start_stream()
        except Exception:
            logger.exception("Could not open an audio output stream")
            self._running = False
            self._cleanup_audio()
            return False
        logger.info(f"Audio started: {SAMPLE_RATE} Hz, {BUFFER_SIZE} frames/buffer")
        return True

    def stop(self) -> None:
        """Stop audio output and clean up resources."""
        self._running = False
        self._cleanup_audio()

    def _cleanup_audio(self) -> None:
        """Tear down PyAudio resources, logging anything that goes wrong."""
        try:
            if self._stream is not None:
                if self._stream.is_active():
                    self._stream.stop_stream()
                self._stream.close()
        except Exception:
            logger.opt(exception=True).debug("Error closing audio stream")
        self._stream = None
        try:
            if self._pa is not None:
                self._pa.terminate()
        except Exception:
            logger.opt(exception=True).debug("Error terminating PyAudio")
        self._pa = None

    # ── State update (called from main thread each tick) ───────────────

    def update(self, report: NewbornReport) -> list[ToneSpec]:
        """Queue the tones for one generation's newborns. Main thread only."""
        tones = select_tones(newborn_histogram(report), self._scale)
        self._pending.extend(tones)
        self.tones_started += len(tones)
        return tones

    # ── Audio callback (runs on PyAudio thread) ────────────────────────

    def _audio_callback(
        self,
        in_data: bytes | None,
        frame_count: int,
        time_info: dict[str, float],
        status_flags: int,
    ) -> tuple[bytes, int]:
        """PyAudio stream callback. Generates audio samples."""
        if not self._running:
            silence = b'\x00' * (frame_count * 4)
            return (silence, pyaudio.paComplete)

        if status_flags & pyaudio.paOutputUnderflow:
            self._underrun_count += 1

        try:
            samples = self.render_buffer(frame_count)
        except Exception:
            logger.opt(exception=True).error("Audio render failed; emitting silence")
            samples = np.zeros(frame_count, dtype=np.float32)

        if self._muted:
            samples[:] = 0.0
        else:
            samples *= self._master_volume

        samples = soft_clip(samples)

        return (samples.tobytes(), pyaudio.paContinue)

    def render_buffer(self, n_samples: int) -> NDArray[np.float32]:
        """Start queued tones and mix every sounding voice (pre master volume)."""
        while self._pending:
            self._voices.append(Tone(self._pending.popleft(), self._table))
        if len(self._voices) > MAX_VOICES:
            del self._voices[: len(self._voices) - MAX_VOICES]

        mix = np.zeros(n_samples, dtype=np.float32)
        for voice in self._voices:
            mix += voice.render(n_samples)
        self._voices = [v for v in self._voices if not v.finished]
        return mix

    # ── Status string for display ──────────────────────────────────────

    def status_string(self) -> str:
        """Return a short status string for the status bar."""
        if self._muted:
            return "[MUTE]"
        base = f"VOL {self.volume_percent}%"
        if self._underrun_count > 0:
            base += f" XR:{self._underrun_count}"
        return base
