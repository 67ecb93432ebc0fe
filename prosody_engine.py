"""
Prosody Insight: Prosody Analysis Engine
========================================
Core DSP logic: turns a recorded utterance into prosodic features.

This module provides:
1. Data structures shared by every analyzer (windows, pauses, segments)
2. Windowed energy analysis via Librosa (50ms windows, 25ms hop)
3. YIN pitch estimation (difference function, CMND, parabolic refinement)
4. Speaker baselines (median pitch/energy) and pause detection

The result is computed once per utterance and then read by the
hesitation, emotion and formatting analyzers.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

import librosa
import numpy as np
import soundfile as sf

from config import config


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class TranscriptSegment:
    """A timestamped span of transcript text (seconds)."""
    start: float
    end: float
    text: str = ""
    id: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptSegment:
        """Build a segment from a transcription-client dict ({"start","end","text"})."""
        return cls(
            start=float(data.get("start", 0.0)),
            end=float(data.get("end", 0.0)),
            text=str(data.get("text") or ""),
            id=int(data.get("id", 0)),
        )


@dataclass(frozen=True)
class RawWindow:
    """Acoustic features of one window before the speaker baseline is known."""
    start_time: float
    end_time: float
    pitch_hz: float
    energy_db: float
    is_silence: bool
    is_whisper: bool


@dataclass(frozen=True)
class ProsodyWindow:
    """Prosodic features for a single analysis window.

    Attributes:
        start_time: Window start in seconds.
        end_time: Window end in seconds.
        pitch_hz: Fundamental frequency (0 if unvoiced or silent).
        pitch_delta: Pitch vs. speaker baseline, normalized to [-1, 1]
                     (+1 = doubled pitch).
        energy_db: RMS energy in dB relative to full scale.
        energy_delta: Energy vs. speaker baseline in dB.
        is_silence: Window is below the silence threshold.
        is_whisper: Window is voiced but very quiet.
    """
    start_time: float
    end_time: float
    pitch_hz: float = 0.0
    pitch_delta: float = 0.0
    energy_db: float = -100.0
    energy_delta: float = 0.0
    is_silence: bool = False
    is_whisper: bool = False

    @classmethod
    def from_raw(cls, raw: RawWindow, pitch_delta: float, energy_delta: float) -> ProsodyWindow:
        return cls(
            start_time=raw.start_time,
            end_time=raw.end_time,
            pitch_hz=raw.pitch_hz,
            pitch_delta=pitch_delta,
            energy_db=raw.energy_db,
            energy_delta=energy_delta,
            is_silence=raw.is_silence,
            is_whisper=raw.is_whisper,
        )


@dataclass(frozen=True)
class PauseEvent:
    """A detected silence gap."""
    start_time: float
    end_time: float

    @property
    def duration_ms(self) -> float:
        return (self.end_time - self.start_time) * 1000.0


@dataclass(frozen=True)
class ProsodyResult:
    """Result of prosodic analysis on one recorded utterance.

    Use the `success`, `failure` and `cancel` constructors. A cancelled run
    carries `cancelled=True` so callers can tell it apart from bad input.
    """
    is_success: bool
    windows: tuple[ProsodyWindow, ...] = ()
    pauses: tuple[PauseEvent, ...] = ()
    baseline_pitch_hz: float = 0.0
    baseline_energy_db: float = 0.0
    error: Optional[str] = None
    cancelled: bool = False

    @classmethod
    def success(
        cls,
        windows: tuple[ProsodyWindow, ...],
        pauses: tuple[PauseEvent, ...],
        baseline_pitch_hz: float,
        baseline_energy_db: float,
    ) -> ProsodyResult:
        return cls(
            is_success=True,
            windows=tuple(windows),
            pauses=tuple(pauses),
            baseline_pitch_hz=baseline_pitch_hz,
            baseline_energy_db=baseline_energy_db,
        )

    @classmethod
    def failure(cls, error: str) -> ProsodyResult:
        return cls(is_success=False, error=error)

    @classmethod
    def cancel(cls) -> ProsodyResult:
        return cls(is_success=False, error="Analysis cancelled", cancelled=True)

    def overlapping_windows(self, start: float, end: float) -> list[ProsodyWindow]:
        """Non-silent windows whose span overlaps [start, end)."""
        return [
            w for w in self.windows
            if w.start_time < end and w.end_time > start and not w.is_silence
        ]

    def to_dict(self) -> dict:
        """Convert to dictionary format for JSON serialization."""
        return {
            "is_success": self.is_success,
            "error": self.error,
            "cancelled": self.cancelled,
            "baseline_pitch_hz": round(self.baseline_pitch_hz, 2),
            "baseline_energy_db": round(self.baseline_energy_db, 2),
            "pauses": [
                {
                    "start_time": round(p.start_time, 3),
                    "end_time": round(p.end_time, 3),
                    "duration_ms": round(p.duration_ms, 1),
                }
                for p in self.pauses
            ],
            "windows": [
                {
                    "start_time": round(w.start_time, 3),
                    "end_time": round(w.end_time, 3),
                    "pitch_hz": round(w.pitch_hz, 2),
                    "pitch_delta": round(w.pitch_delta, 4),
                    "energy_db": round(w.energy_db, 2),
                    "energy_delta": round(w.energy_delta, 2),
                    "is_silence": w.is_silence,
                    "is_whisper": w.is_whisper,
                }
                for w in self.windows
            ],
        }


class CancelToken(Protocol):
    """Anything with an `is_set()` method, e.g. `threading.Event`."""

    def is_set(self) -> bool:
        ...


PcmInput = Union[bytes, bytearray, memoryview, np.ndarray]


# =============================================================================
# DSP UTILITIES
# =============================================================================

def pcm16_to_float(pcm: PcmInput) -> np.ndarray:
    """
    Convert 16-bit signed PCM to float samples normalized to [-1, 1].

    Args:
        pcm: Little-endian PCM bytes, or a 1-D int16 array.

    Returns:
        float64 sample array.
    """
    if isinstance(pcm, np.ndarray):
        raw = pcm
    else:
        raw = np.frombuffer(bytes(pcm), dtype="<i2")
    return raw.astype(np.float64) / 32768.0


def energy_to_db(rms: float) -> float:
    """RMS amplitude to dBFS, floored at -100 dB for digital silence."""
    if rms < 1e-10:
        return -100.0
    return float(20.0 * np.log10(rms))


def cumulative_mean_normalized_difference(diff: np.ndarray) -> np.ndarray:
    """
    Normalize a squared-difference function into YIN's CMND.

    CMND[0] is 1 by convention; CMND[tau] = d[tau] * tau / sum(d[1..tau]).
    Lags whose running sum is zero stay at 1.
    """
    cmnd = np.ones(len(diff), dtype=np.float64)
    if len(diff) < 2:
        return cmnd
    taus = np.arange(1, len(diff), dtype=np.float64)
    running = np.cumsum(diff[1:])
    np.divide(diff[1:] * taus, running, out=cmnd[1:], where=running > 0)
    return cmnd


def detect_pitch_yin(
    window: np.ndarray,
    sample_rate: int,
    min_pitch_hz: float = 60.0,
    max_pitch_hz: float = 500.0,
    threshold: float = 0.15,
) -> float:
    """
    Estimate the fundamental frequency of a window with the YIN algorithm.

    Steps:
    1. Squared difference function over lags up to the longest period
    2. Cumulative mean normalized difference (CMND)
    3. First dip below `threshold` from the shortest period, walked forward
       to its local minimum
    4. Parabolic interpolation over the three neighbouring CMND values

    Reference: de Cheveigné & Kawahara (2002), "YIN, a fundamental
    frequency estimator for speech and music".

    Args:
        window: Float samples of one analysis window.
        sample_rate: Sample rate in Hz.
        min_pitch_hz: Lowest pitch searched.
        max_pitch_hz: Highest pitch searched.
        threshold: CMND dip threshold.

    Returns:
        Frequency in Hz, or 0.0 when no pitch is found or it falls outside
        [min_pitch_hz, max_pitch_hz].
    """
    min_lag = int(sample_rate / max_pitch_hz)
    max_lag = int(sample_rate / min_pitch_hz)

    if max_lag >= len(window) // 2:
        max_lag = len(window) // 2 - 1
    if min_lag >= max_lag or min_lag < 1:
        return 0.0

    length = max_lag + 1
    span = len(window) - max_lag

    # Row tau holds window[tau:tau + span]
    lagged = np.lib.stride_tricks.sliding_window_view(window, span)[:length]
    diff = np.sum(np.square(lagged[0] - lagged), axis=1)
    cmnd = cumulative_mean_normalized_difference(diff)

    dips = np.nonzero(cmnd[min_lag:length - 1] < threshold)[0]
    if len(dips) == 0:
        return 0.0

    best_tau = min_lag + int(dips[0])
    while best_tau + 1 < length and cmnd[best_tau + 1] < cmnd[best_tau]:
        best_tau += 1

    refined = float(best_tau)
    if 0 < best_tau < length - 1:
        a, b, c = cmnd[best_tau - 1], cmnd[best_tau], cmnd[best_tau + 1]
        denom = 2.0 * (a - 2.0 * b + c)
        if abs(denom) > 1e-6:
            refined = best_tau + (a - c) / denom

    if refined < 1.0:
        return 0.0

    frequency = sample_rate / refined
    if min_pitch_hz <= frequency <= max_pitch_hz:
        return float(frequency)
    return 0.0


def detect_pauses(windows: list[RawWindow], min_pause_ms: float = 200.0) -> list[PauseEvent]:
    """
    Collapse runs of consecutive silent windows into pause events.

    A run closed by a non-silent window ends at that window's start; a run
    still open at the end of the buffer ends at the last window's end.
    Runs shorter than `min_pause_ms` are dropped.
    """
    pauses = []
    pause_start: Optional[float] = None

    for w in windows:
        if w.is_silence:
            if pause_start is None:
                pause_start = w.start_time
        elif pause_start is not None:
            if (w.start_time - pause_start) * 1000.0 >= min_pause_ms:
                pauses.append(PauseEvent(start_time=pause_start, end_time=w.start_time))
            pause_start = None

    # Trailing silence
    if pause_start is not None and windows:
        last_end = windows[-1].end_time
        if (last_end - pause_start) * 1000.0 >= min_pause_ms:
            pauses.append(PauseEvent(start_time=pause_start, end_time=last_end))

    return pauses


# =============================================================================
# PROSODY ANALYZER
# =============================================================================

class ProsodyAnalyzer:
    """
    Windowed prosody analysis of a complete, already-recorded utterance.

    Extracts pitch (F0), energy (RMS/dB), silence and whisper flags per
    window, then derives speaker baselines, per-window deltas and pauses.

    Usage:
        analyzer = ProsodyAnalyzer()
        result = analyzer.analyze(pcm_bytes, sample_rate=16000)
        if result.is_success:
            print(result.baseline_pitch_hz, len(result.pauses))
    """

    def __init__(
        self,
        window_ms: int = None,
        hop_ms: int = None,
        silence_threshold_db: float = None,
        whisper_threshold_db: float = None,
        min_pitch_hz: float = None,
        max_pitch_hz: float = None,
        yin_threshold: float = None,
        min_pause_ms: float = None,
    ):
        """
        Initialize the analyzer. Any argument left as None is read from config.

        Args:
            window_ms: Analysis window length (default: 50ms).
            hop_ms: Hop between windows (default: 25ms).
            silence_threshold_db: Silence threshold in dBFS (default: -40).
            whisper_threshold_db: Whisper threshold in dBFS (default: -28).
            min_pitch_hz: Lowest pitch searched (default: 60Hz).
            max_pitch_hz: Highest pitch searched (default: 500Hz).
            yin_threshold: CMND dip threshold (default: 0.15).
            min_pause_ms: Minimum pause duration (default: 200ms).
        """
        self.window_ms = window_ms if window_ms is not None else config.PROSODY_WINDOW_MS
        self.hop_ms = hop_ms if hop_ms is not None else config.PROSODY_HOP_MS
        self.silence_threshold_db = (
            silence_threshold_db if silence_threshold_db is not None else config.SILENCE_THRESHOLD_DB
        )
        self.whisper_threshold_db = (
            whisper_threshold_db if whisper_threshold_db is not None else config.WHISPER_THRESHOLD_DB
        )
        self.min_pitch_hz = min_pitch_hz if min_pitch_hz is not None else config.MIN_PITCH_HZ
        self.max_pitch_hz = max_pitch_hz if max_pitch_hz is not None else config.MAX_PITCH_HZ
        self.yin_threshold = yin_threshold if yin_threshold is not None else config.YIN_THRESHOLD
        self.min_pause_ms = min_pause_ms if min_pause_ms is not None else config.MIN_PAUSE_MS

    def analyze_file(self, wav_path: str, cancel_event: Optional[CancelToken] = None) -> ProsodyResult:
        """
        Analyze prosody from a WAV file (16-bit PCM, mono).

        Args:
            wav_path: Path to the WAV file.
            cancel_event: Optional cancellation token.

        Returns:
            ProsodyResult (failure if the file is missing, unreadable,
            not 16-bit mono, or empty).
        """
        wav_path = Path(wav_path)
        print(f"[ProsodyAnalyzer] Analyzing WAV file: {wav_path}")

        if not wav_path.exists():
            return ProsodyResult.failure(f"WAV file not found: {wav_path}")

        try:
            info = sf.info(str(wav_path))
            if info.subtype != "PCM_16" or info.channels != 1:
                return ProsodyResult.failure(
                    f"Expected 16-bit mono WAV, got {info.subtype} {info.channels}-channel"
                )
            samples, sample_rate = sf.read(str(wav_path), dtype="int16")
        except RuntimeError as e:
            # soundfile.LibsndfileError is a RuntimeError
            return ProsodyResult.failure(f"Unreadable audio file: {e}")

        if samples.size == 0:
            return ProsodyResult.failure("WAV file is empty")

        return self.analyze(samples, sample_rate, cancel_event=cancel_event)

    def analyze(
        self,
        pcm: PcmInput,
        sample_rate: int,
        cancel_event: Optional[CancelToken] = None,
    ) -> ProsodyResult:
        """
        Analyze prosody from raw PCM samples (16-bit signed, mono).

        Args:
            pcm: Little-endian PCM bytes or a 1-D int16 array.
            sample_rate: Sample rate in Hz.
            cancel_event: Optional token checked at every window boundary.

        Returns:
            ProsodyResult. Bad input yields `ProsodyResult.failure`, a
            cancellation yields `ProsodyResult.cancel()`.
        """
        error = self._validate_input(pcm, sample_rate)
        if error:
            return ProsodyResult.failure(error)

        samples = pcm16_to_float(pcm)
        window_samples = sample_rate * self.window_ms // 1000
        hop_samples = sample_rate * self.hop_ms // 1000

        if window_samples < 1 or hop_samples < 1:
            return ProsodyResult.failure("Sample rate too low for the analysis window")
        if len(samples) < window_samples:
            return ProsodyResult.failure("Audio too short for analysis")

        raw_windows = self._compute_raw_windows(
            samples, sample_rate, window_samples, hop_samples, cancel_event
        )
        if raw_windows is None:
            print("[ProsodyAnalyzer] Analysis cancelled")
            return ProsodyResult.cancel()

        voiced = [w for w in raw_windows if not w.is_silence and w.pitch_hz > 0]
        baseline_pitch = float(np.median([w.pitch_hz for w in voiced])) if voiced else 0.0
        baseline_energy = float(np.median([w.energy_db for w in voiced])) if voiced else 0.0

        windows = self._attach_deltas(raw_windows, baseline_pitch, baseline_energy, has_voiced=bool(voiced))
        pauses = detect_pauses(raw_windows, self.min_pause_ms)

        print(
            f"[ProsodyAnalyzer] {len(windows)} windows, {len(voiced)} voiced, "
            f"{len(pauses)} pauses, baseline pitch={baseline_pitch:.1f}Hz, "
            f"baseline energy={baseline_energy:.1f}dB"
        )

        return ProsodyResult.success(tuple(windows), tuple(pauses), baseline_pitch, baseline_energy)

    def _validate_input(self, pcm: PcmInput, sample_rate: int) -> Optional[str]:
        """Return an error message for unusable input, else None."""
        if pcm is None:
            return "No audio data provided"
        if not isinstance(sample_rate, (int, np.integer)) or sample_rate <= 0:
            return f"Invalid sample rate: {sample_rate}"

        if isinstance(pcm, np.ndarray):
            if pcm.dtype != np.int16 or pcm.ndim != 1:
                return f"Expected 16-bit mono PCM, got {pcm.dtype} array with shape {pcm.shape}"
            size = pcm.size
        elif isinstance(pcm, (bytes, bytearray, memoryview)):
            size = len(bytes(pcm))
            if size % 2 != 0:
                return "Expected 16-bit mono PCM, got an odd number of bytes"
        else:
            return f"Unsupported audio buffer type: {type(pcm).__name__}"

        if size == 0:
            return "Audio buffer is empty"
        return None

    def _compute_raw_windows(
        self,
        samples: np.ndarray,
        sample_rate: int,
        window_samples: int,
        hop_samples: int,
        cancel_event: Optional[CancelToken],
    ) -> Optional[list[RawWindow]]:
        """
        First pass: per-window energy, pitch, silence and whisper flags.

        Returns None if cancellation was requested.
        """
        # Trailing partial window is dropped by both calls
        frames = librosa.util.frame(samples, frame_length=window_samples, hop_length=hop_samples, axis=0)
        rms = librosa.feature.rms(
            y=samples, frame_length=window_samples, hop_length=hop_samples, center=False
        )[0]

        raw_windows = []
        for i, frame in enumerate(frames):
            if cancel_event is not None and cancel_event.is_set():
                return None

            offset = i * hop_samples
            energy_db = energy_to_db(float(rms[i]))
            is_silence = energy_db < self.silence_threshold_db

            pitch_hz = 0.0
            is_whisper = False
            if not is_silence:
                pitch_hz = detect_pitch_yin(
                    frame,
                    sample_rate,
                    min_pitch_hz=self.min_pitch_hz,
                    max_pitch_hz=self.max_pitch_hz,
                    threshold=self.yin_threshold,
                )
                is_whisper = pitch_hz > 0 and energy_db < self.whisper_threshold_db

            raw_windows.append(RawWindow(
                start_time=offset / sample_rate,
                end_time=(offset + window_samples) / sample_rate,
                pitch_hz=pitch_hz,
                energy_db=energy_db,
                is_silence=bool(is_silence),
                is_whisper=bool(is_whisper),
            ))

        return raw_windows

    @staticmethod
    def _attach_deltas(
        raw_windows: list[RawWindow],
        baseline_pitch: float,
        baseline_energy: float,
        has_voiced: bool,
    ) -> list[ProsodyWindow]:
        """Second pass: derive windows with pitch/energy deltas vs. baseline."""
        windows = []
        for raw in raw_windows:
            pitch_delta = 0.0
            energy_delta = 0.0
            if has_voiced:
                if not raw.is_silence and raw.pitch_hz > 0 and baseline_pitch > 0:
                    pitch_delta = float(np.clip((raw.pitch_hz - baseline_pitch) / baseline_pitch, -1.0, 1.0))
                energy_delta = raw.energy_db - baseline_energy
            windows.append(ProsodyWindow.from_raw(raw, pitch_delta, energy_delta))
        return windows


# =============================================================================
# CLI TESTING
# =============================================================================

if __name__ == "__main__":
    import json
    import sys

    print("Prosody Insight: Prosody Engine Test")
    print("=" * 50)

    if len(sys.argv) < 2:
        print("Usage: python prosody_engine.py <audio_file.wav>")
        sys.exit(1)

    result = ProsodyAnalyzer().analyze_file(sys.argv[1])
    if not result.is_success:
        print(f"Error: {result.error}")
        sys.exit(1)

    summary = result.to_dict()
    summary["windows"] = summary["windows"][:10]
    print(json.dumps(summary, indent=2))
