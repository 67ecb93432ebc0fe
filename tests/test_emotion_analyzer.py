"""
Prosody Insight: Emotion Analyzer Tests
=======================================
Tests for the ordered emotion rules, per-segment classification and the
session-level mood (dominant emotion, valence, arousal, warning).

Run with: pytest tests/test_emotion_analyzer.py -v
"""

import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from emotion_analyzer import (
    ANGRY_WARNING,
    EMOTION_RULES,
    EmotionAnalyzer,
    EmotionTag,
    EmotionThresholds,
    SegmentFeatures,
    classify_features,
)
from prosody_engine import ProsodyResult, ProsodyWindow, TranscriptSegment


def windows_for(start: float, pitch_deltas, energy_delta: float, step: float = 0.1) -> list:
    """Consecutive non-silent windows starting at `start`."""
    return [
        ProsodyWindow(start + i * step, start + (i + 1) * step, pitch_delta=p, energy_delta=energy_delta)
        for i, p in enumerate(pitch_deltas)
    ]


def make_prosody(windows) -> ProsodyResult:
    return ProsodyResult.success(tuple(windows), (), 180.0, -20.0)


# =============================================================================
# TEST: FEATURES / RULES
# =============================================================================

def test_segment_features():
    """Test mean, population std and half-vs-half trend."""
    features = SegmentFeatures.from_windows(windows_for(0.0, [0.0, 0.0, 0.2, 0.2], energy_delta=2.0))

    assert features.energy_delta == pytest.approx(2.0)
    assert features.pitch_delta == pytest.approx(0.1)
    assert features.pitch_std == pytest.approx(0.1)
    assert features.pitch_trend == pytest.approx(0.2)

    single = SegmentFeatures.from_windows(windows_for(0.0, [0.4], energy_delta=1.0))
    assert single.pitch_std == 0.0
    assert single.pitch_trend == 0.0


@pytest.mark.parametrize("features,expected", [
    (SegmentFeatures(8.0, 0.3, 0.0, 0.0), EmotionTag.ANGRY),
    (SegmentFeatures(1.0, 0.0, 0.3, 0.0), EmotionTag.STRESSED),
    (SegmentFeatures(6.0, 0.1, 0.1, 0.2), EmotionTag.EXCITED),
    (SegmentFeatures(-10.0, 0.0, 0.1, -0.2), EmotionTag.SAD),
    (SegmentFeatures(-5.0, 0.0, 0.2, 0.0), EmotionTag.UNCERTAIN),
    (SegmentFeatures(0.0, 0.0, 0.02, 0.0), EmotionTag.CONFIDENT),
    (SegmentFeatures(-3.0, 0.0, 0.05, 0.0), EmotionTag.CALM),
    (SegmentFeatures(6.0, 0.0, 0.1, 0.0), EmotionTag.NEUTRAL),
])
def test_rules_in_order(features, expected):
    tag, confidence = classify_features(features)
    assert tag == expected
    assert 0.0 < confidence <= 0.95


def test_angry_confidence_formula():
    """Test +8dB / +0.3 pitch lands on Angry inside [0.4, 0.95]."""
    print("\n😠 Testing Angry classification...")

    tag, confidence = classify_features(SegmentFeatures(8.0, 0.3, 0.0, 0.0))

    assert tag == EmotionTag.ANGRY
    assert 0.4 <= confidence <= 0.95
    assert confidence == pytest.approx((8.0 / 10.0 + 0.3) * 0.8)
    print(f"   ✓ Angry at {confidence:.2f}")


def test_confidence_clamping():
    _, high = classify_features(SegmentFeatures(30.0, 1.0, 0.0, 0.0))
    assert high == 0.95

    _, low = classify_features(SegmentFeatures(4.5, 0.21, 0.0, 0.0))
    assert low == pytest.approx((0.45 + 0.21) * 0.8)


def test_thresholds_are_tunable():
    """Test that custom thresholds change the decision."""
    features = SegmentFeatures(8.0, 0.3, 0.0, 0.0)
    strict = EmotionThresholds(high_pitch_delta=0.5)

    tag, _ = classify_features(features, strict)
    assert tag != EmotionTag.ANGRY


def test_rule_table_shape():
    tags = [tag for _, tag, _ in EMOTION_RULES]
    assert tags[0] == EmotionTag.ANGRY
    assert tags[-1] == EmotionTag.CALM
    assert EmotionTag.NEUTRAL not in tags


# =============================================================================
# TEST: ANALYZER
# =============================================================================

def test_angry_segment_and_warning():
    """Test an angry session triggers the frustration warning."""
    segments = [TranscriptSegment(0.0, 0.5, "This is unacceptable")]
    prosody = make_prosody(windows_for(0.0, [0.3] * 5, energy_delta=8.0))

    result = EmotionAnalyzer().analyze(segments, prosody)

    assert len(result.segments) == 1
    assert result.segments[0].emotion == EmotionTag.ANGRY
    assert result.segments[0].confidence == pytest.approx(0.88)
    assert result.dominant_emotion == EmotionTag.ANGRY
    assert result.dominant_confidence == pytest.approx(0.88)
    assert result.valence == pytest.approx(-0.8 * 0.88)
    assert result.arousal == pytest.approx(0.9 * 0.88)
    assert result.should_warn
    assert result.warning_message == ANGRY_WARNING


def test_segment_without_windows_is_neutral():
    segments = [TranscriptSegment(0.0, 0.5, "hello"), TranscriptSegment(5.0, 6.0, "nothing here")]
    prosody = make_prosody(windows_for(0.0, [0.0] * 5, energy_delta=0.0))

    result = EmotionAnalyzer().analyze(segments, prosody)

    assert result.segments[1].emotion == EmotionTag.NEUTRAL
    assert result.segments[1].confidence == 0.3
    assert result.segments[1].text == "nothing here"


def test_silent_windows_are_ignored():
    segments = [TranscriptSegment(0.0, 0.5, "hello")]
    silent = [
        ProsodyWindow(0.1 * i, 0.1 * (i + 1), pitch_delta=0.3, energy_delta=8.0, is_silence=True)
        for i in range(5)
    ]

    result = EmotionAnalyzer().analyze(segments, make_prosody(silent))

    assert result.segments[0].emotion == EmotionTag.NEUTRAL
    assert result.segments[0].confidence == 0.3


def test_missing_inputs_are_neutral():
    """Test graceful degradation without segments or prosody."""
    analyzer = EmotionAnalyzer()
    for segments, prosody in [
        (None, make_prosody([])),
        ([], make_prosody([])),
        ([TranscriptSegment(0.0, 1.0, "hi")], ProsodyResult.failure("Audio buffer is empty")),
        ([TranscriptSegment(0.0, 1.0, "hi")], None),
    ]:
        result = analyzer.analyze(segments, prosody)
        assert result.dominant_emotion == EmotionTag.NEUTRAL
        assert result.dominant_confidence == 0.5
        assert result.segments == ()
        assert not result.should_warn


def test_dominant_uses_summed_confidence():
    """Test dominance by summed confidence, not by count alone."""
    segments = [
        TranscriptSegment(0.0, 0.5, "calm one"),
        TranscriptSegment(1.0, 1.5, "calm two"),
        TranscriptSegment(2.0, 2.5, "angry"),
        TranscriptSegment(3.0, 3.5, "angry again"),
    ]
    windows = (
        windows_for(0.0, [0.0] * 5, energy_delta=-3.0)
        + windows_for(1.0, [0.0] * 5, energy_delta=-3.0)
        + windows_for(2.0, [0.3] * 5, energy_delta=8.0)
        + windows_for(3.0, [0.3] * 5, energy_delta=8.0)
    )

    result = EmotionAnalyzer().analyze(segments, make_prosody(windows))

    assert [s.emotion for s in result.segments] == [
        EmotionTag.CALM, EmotionTag.CALM, EmotionTag.ANGRY, EmotionTag.ANGRY,
    ]
    # Calm: 2 x 0.5 = 1.0, Angry: 2 x 0.88 = 1.76
    assert result.dominant_emotion == EmotionTag.ANGRY
    assert result.dominant_confidence == pytest.approx(1.76 / 4)
    assert not result.should_warn


def test_summary_footer():
    segments = [TranscriptSegment(0.0, 0.5, "This is unacceptable")]
    prosody = make_prosody(windows_for(0.0, [0.3] * 5, energy_delta=8.0))

    footer = EmotionAnalyzer().analyze(segments, prosody).build_summary_footer()

    assert footer.startswith("\n[Emotion] Mood: Angry (88%)")
    assert "Valence: negative" in footer
    assert "Energy: high" in footer
    assert "Arc: Angry(1)" in footer


def test_analysis_is_deterministic():
    segments = [TranscriptSegment(0.0, 0.5, "a"), TranscriptSegment(0.5, 1.0, "b")]
    prosody = make_prosody(windows_for(0.0, [0.1, -0.1, 0.2, 0.0, 0.3, -0.2, 0.1, 0.0, 0.1, 0.2], 1.5))

    assert EmotionAnalyzer().analyze(segments, prosody) == EmotionAnalyzer().analyze(segments, prosody)


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
