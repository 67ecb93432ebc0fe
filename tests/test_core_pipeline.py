"""
Prosody Insight: Core Pipeline Tests
====================================
Integration tests for the session orchestrator: one prosody pass fanned
out to formatting, hesitation and emotion, then summary footers.

Run with: pytest tests/test_core_pipeline.py -v
"""

import json
import sys
import threading
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core_pipeline import SessionReport, SpeechAnalysisPipeline, normalize_segments
from prosody_engine import ProsodyAnalyzer, ProsodyResult, ProsodyWindow, TranscriptSegment


SR = 16000

SEGMENTS = [
    {"id": 0, "start": 0.0, "end": 1.0, "text": "um hello there"},
    {"id": 1, "start": 3.0, "end": 4.0, "text": " second part"},
]
TEXT = "um hello there second part"


def make_tone(duration: float, freq: float = 200.0) -> np.ndarray:
    t = np.arange(int(SR * duration)) / SR
    return (0.5 * np.sin(2 * np.pi * freq * t) * 32767).astype(np.int16)


def make_session_audio() -> np.ndarray:
    """1s tone, 2s silence, 1s tone."""
    return np.concatenate([make_tone(1.0), np.zeros(2 * SR, dtype=np.int16), make_tone(1.0)])


def make_pipeline(**toggles) -> SpeechAnalysisPipeline:
    params = dict(formatting_enabled=True, hesitation_enabled=True, emotion_enabled=True)
    params.update(toggles)
    analyzer = ProsodyAnalyzer(
        window_ms=50, hop_ms=25, silence_threshold_db=-40.0, whisper_threshold_db=-28.0,
        min_pitch_hz=60.0, max_pitch_hz=500.0, yin_threshold=0.15, min_pause_ms=200.0,
    )
    return SpeechAnalysisPipeline(prosody_analyzer=analyzer, **params)


# =============================================================================
# TEST: FULL SESSION
# =============================================================================

def test_full_session():
    """Test a complete session with every analyzer enabled."""
    print("\n🚀 Testing full session...")

    report = make_pipeline().run(make_session_audio(), SR, TEXT, SEGMENTS, detected_language="en")

    assert isinstance(report, SessionReport)
    assert report.prosody.is_success
    assert len(report.prosody.pauses) == 1

    print(f"   Formatted: {report.formatted_text!r}")
    assert report.formatted_text.startswith("um hello there")
    assert "\n\n" in report.formatted_text
    assert report.formatted_text.endswith("second part")

    assert report.hesitation is not None
    assert report.hesitation.filler_count == 1
    assert report.emotion is not None
    assert len(report.emotion.segments) == 2

    assert report.final_text.startswith(report.formatted_text)
    assert "[Hesitation Analysis]" in report.final_text
    assert "[Emotion] Mood:" in report.final_text
    print("   ✓ Session report complete")


def test_run_file_matches_run(tmp_path):
    pcm = make_session_audio()
    wav_path = tmp_path / "session.wav"
    sf.write(str(wav_path), pcm, SR, subtype="PCM_16")

    pipeline = make_pipeline()
    from_file = pipeline.run_file(str(wav_path), TEXT, SEGMENTS, detected_language="en")
    in_memory = pipeline.run(pcm, SR, TEXT, SEGMENTS, detected_language="en")

    assert from_file.final_text == in_memory.final_text
    assert from_file.prosody == in_memory.prosody


def test_fluent_text_has_no_hesitation_footer():
    report = make_pipeline().run(
        make_session_audio(), SR, "hello there second part",
        [{"start": 0.0, "end": 1.0, "text": "hello there"}, {"start": 3.0, "end": 4.0, "text": "second part"}],
        detected_language="en",
    )

    assert report.hesitation is not None
    assert report.hesitation.fluency_score == 1.0
    assert "[Hesitation Analysis]" not in report.final_text
    assert "[Emotion]" in report.final_text


# =============================================================================
# TEST: TOGGLES / DEGRADATION
# =============================================================================

def test_all_features_disabled():
    pipeline = make_pipeline(formatting_enabled=False, hesitation_enabled=False, emotion_enabled=False)
    report = pipeline.run(make_session_audio(), SR, TEXT, SEGMENTS)

    assert report.prosody.is_success
    assert report.formatted_text == TEXT
    assert report.final_text == TEXT
    assert report.hesitation is None
    assert report.emotion is None


def test_toggles_read_from_config(monkeypatch):
    monkeypatch.setenv("PROSODY_FORMATTING", "false")
    monkeypatch.setenv("EMOTIONAL_WATERMARKING", "false")
    monkeypatch.setenv("HESITATION_ANALYSIS", "true")

    pipeline = SpeechAnalysisPipeline()

    assert pipeline.formatting_enabled is False
    assert pipeline.emotion_enabled is False
    assert pipeline.hesitation_enabled is True


def test_failed_prosody_keeps_text_analysis():
    """Test bad audio still yields text-only hesitation analysis."""
    report = make_pipeline().run(b"", SR, TEXT, SEGMENTS, detected_language="en")

    assert not report.prosody.is_success
    assert report.formatted_text == TEXT
    assert report.emotion is None
    assert report.hesitation is not None
    assert report.hesitation.filler_count == 1
    assert report.final_text.startswith(TEXT + "\n---\n[Hesitation Analysis]")


def test_cancelled_session():
    cancel = threading.Event()
    cancel.set()

    report = make_pipeline().run(make_session_audio(), SR, TEXT, SEGMENTS, cancel_event=cancel)

    assert report.prosody.cancelled
    assert report.emotion is None
    assert report.formatted_text == TEXT


def test_missing_segments():
    report = make_pipeline().run(make_session_audio(), SR, "um okay", None, detected_language="en")

    assert report.prosody.is_success
    assert report.formatted_text == "um okay"
    assert report.emotion is not None
    assert report.emotion.segments == ()


def test_enrich_shares_one_prosody_result():
    """Test that downstream analyzers read the supplied prosody result."""
    prosody = ProsodyResult.success(
        (ProsodyWindow(0.0, 0.5, energy_delta=8.0), ProsodyWindow(0.5, 1.0, energy_delta=8.0)),
        (), 150.0, -20.0,
    )
    segments = [TranscriptSegment(0.0, 1.0, "listen")]

    report = make_pipeline().enrich("listen", segments, prosody)

    assert report.prosody is prosody
    assert report.formatted_text == "**listen**"


# =============================================================================
# TEST: SERIALIZATION
# =============================================================================

def test_normalize_segments_accepts_dicts_and_objects():
    mixed = [TranscriptSegment(0.0, 1.0, "a"), {"start": 1.0, "end": 2.0, "text": "b"}]
    normalized = normalize_segments(mixed)

    assert normalized == [TranscriptSegment(0.0, 1.0, "a"), TranscriptSegment(1.0, 2.0, "b")]
    assert normalize_segments(None) == []


def test_report_to_dict_is_json_serializable():
    report = make_pipeline().run(make_session_audio(), SR, TEXT, SEGMENTS, detected_language="en")
    data = json.loads(json.dumps(report.to_dict()))

    assert data["final_text"] == report.final_text
    assert data["prosody"]["is_success"] is True
    assert data["prosody"]["window_count"] == len(report.prosody.windows)
    assert len(data["prosody"]["pauses"]) == 1
    assert data["hesitation"]["filler_count"] == 1
    assert data["emotion"]["dominant_emotion"] in {
        "Neutral", "Angry", "Confident", "Uncertain", "Excited", "Calm", "Sad", "Stressed",
    }


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
