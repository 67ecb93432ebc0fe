"""
Prosody Insight: Emotion Analyzer
=================================
Per-segment emotion tags and a session-level mood summary from prosody.

Prosody -> emotion mapping:
- Angry: high energy + high pitch
- Stressed: high pitch variability + elevated energy
- Excited: high energy + rising pitch
- Sad: very low energy + falling pitch
- Uncertain: low energy + variable pitch
- Confident: moderate energy + steady pitch
- Calm: low energy + steady pitch

Session valence/arousal follow a dimensional model: each tag carries a
fixed (valence, arousal) pair, averaged with confidence weights.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

from prosody_engine import ProsodyResult, ProsodyWindow, TranscriptSegment


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class EmotionTag(str, Enum):
    """Basic emotion categories derived from prosodic features."""
    NEUTRAL = "Neutral"
    ANGRY = "Angry"
    CONFIDENT = "Confident"
    UNCERTAIN = "Uncertain"
    EXCITED = "Excited"
    CALM = "Calm"
    SAD = "Sad"
    STRESSED = "Stressed"


# (valence, arousal)
EMOTION_DIMENSIONS: dict[EmotionTag, tuple[float, float]] = {
    EmotionTag.EXCITED: (0.7, 0.85),
    EmotionTag.CONFIDENT: (0.5, 0.5),
    EmotionTag.CALM: (0.3, 0.15),
    EmotionTag.NEUTRAL: (0.0, 0.3),
    EmotionTag.UNCERTAIN: (-0.3, 0.4),
    EmotionTag.SAD: (-0.6, 0.2),
    EmotionTag.STRESSED: (-0.5, 0.8),
    EmotionTag.ANGRY: (-0.8, 0.9),
}

ANGRY_WARNING = "You may have dictated this while frustrated. Review before sending?"
STRESSED_WARNING = "Elevated stress detected in your speech. Consider reviewing the tone."


@dataclass(frozen=True)
class EmotionThresholds:
    """Decision thresholds for the emotion rules (energies in dB vs. baseline).

    Defaults reproduce the shipped behaviour; override to tune.
    """
    high_energy_delta: float = 4.0
    low_energy_delta: float = -4.0
    very_low_energy_delta: float = -8.0
    high_pitch_delta: float = 0.20
    high_pitch_variability: float = 0.25
    steady_pitch_variability: float = 0.08
    rising_trend: float = 0.1
    falling_trend: float = -0.05
    confident_min_energy_delta: float = -2.0
    angry_warning_confidence: float = 0.6
    stressed_warning_confidence: float = 0.7


@dataclass(frozen=True)
class SegmentFeatures:
    """Prosodic summary of the windows under one transcript segment."""
    energy_delta: float
    pitch_delta: float
    pitch_std: float
    pitch_trend: float

    @classmethod
    def from_windows(cls, windows: list[ProsodyWindow]) -> SegmentFeatures:
        pitch = np.array([w.pitch_delta for w in windows], dtype=np.float64)
        energy = np.array([w.energy_delta for w in windows], dtype=np.float64)

        trend = 0.0
        if len(windows) >= 3:
            half = len(windows) // 2
            trend = float(np.mean(pitch[half:]) - np.mean(pitch[:half]))

        return cls(
            energy_delta=float(np.mean(energy)),
            pitch_delta=float(np.mean(pitch)),
            pitch_std=float(np.std(pitch)) if len(windows) > 1 else 0.0,
            pitch_trend=trend,
        )


@dataclass(frozen=True)
class EmotionSegment:
    """Emotion tag for a single transcript segment."""
    start_time: float
    end_time: float
    emotion: EmotionTag
    confidence: float
    text: str = ""

    def to_dict(self) -> dict:
        return {
            "start_time": round(self.start_time, 3),
            "end_time": round(self.end_time, 3),
            "emotion": self.emotion.value,
            "confidence": round(self.confidence, 3),
            "text": self.text,
        }


@dataclass(frozen=True)
class EmotionResult:
    """Per-segment emotions plus session-level mood.

    Attributes:
        segments: Emotion tags aligned 1:1 with transcript segments.
        dominant_emotion: Tag with the highest summed confidence.
        dominant_confidence: That sum divided by the segment count.
        valence: -1 (negative) to +1 (positive).
        arousal: 0 (calm) to 1 (intense).
        should_warn: A strong negative emotion was detected.
        warning_message: User-facing message when should_warn is set.
    """
    segments: tuple[EmotionSegment, ...] = ()
    dominant_emotion: EmotionTag = EmotionTag.NEUTRAL
    dominant_confidence: float = 0.5
    valence: float = 0.0
    arousal: float = 0.0
    should_warn: bool = False
    warning_message: Optional[str] = None

    def build_summary_footer(self) -> str:
        """Build a compact emotion summary for metadata/footer."""
        parts = [f"Mood: {self.dominant_emotion.value} ({self.dominant_confidence:.0%})"]

        if self.valence < -0.3:
            parts.append(f"Valence: negative ({self.valence:.2f})")
        elif self.valence > 0.3:
            parts.append(f"Valence: positive ({self.valence:.2f})")

        if self.arousal > 0.7:
            parts.append("Energy: high")

        counts: dict[EmotionTag, int] = {}
        for seg in self.segments:
            if seg.emotion != EmotionTag.NEUTRAL:
                counts[seg.emotion] = counts.get(seg.emotion, 0) + 1
        top = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:3]
        if top:
            parts.append("Arc: " + " → ".join(f"{tag.value}({n})" for tag, n in top))

        return f"\n[Emotion] {' | '.join(parts)}"

    def to_dict(self) -> dict:
        return {
            "dominant_emotion": self.dominant_emotion.value,
            "dominant_confidence": round(self.dominant_confidence, 3),
            "valence": round(self.valence, 3),
            "arousal": round(self.arousal, 3),
            "should_warn": self.should_warn,
            "warning_message": self.warning_message,
            "segments": [s.to_dict() for s in self.segments],
        }


# =============================================================================
# DECISION RULES
# =============================================================================

Rule = tuple[
    Callable[[SegmentFeatures, EmotionThresholds], bool],
    EmotionTag,
    Callable[[SegmentFeatures, EmotionThresholds], float],
]


def _clamp(value: float, low: float, high: float) -> float:
    return float(np.clip(value, low, high))


# Evaluated in order; first match wins.
EMOTION_RULES: tuple[Rule, ...] = (
    (
        lambda f, t: f.energy_delta > t.high_energy_delta and f.pitch_delta > t.high_pitch_delta,
        EmotionTag.ANGRY,
        lambda f, t: _clamp((f.energy_delta / 10.0 + f.pitch_delta) * 0.8, 0.4, 0.95),
    ),
    (
        lambda f, t: f.pitch_std > t.high_pitch_variability and f.energy_delta > 0,
        EmotionTag.STRESSED,
        lambda f, t: _clamp(f.pitch_std * 2.0, 0.4, 0.9),
    ),
    (
        lambda f, t: f.energy_delta > t.high_energy_delta and f.pitch_trend > t.rising_trend,
        EmotionTag.EXCITED,
        lambda f, t: _clamp((f.energy_delta / 8.0 + f.pitch_trend) * 0.7, 0.4, 0.9),
    ),
    (
        lambda f, t: f.energy_delta < t.very_low_energy_delta and f.pitch_trend < t.falling_trend,
        EmotionTag.SAD,
        lambda f, t: _clamp((abs(f.energy_delta) / 12.0) * 0.8, 0.35, 0.85),
    ),
    (
        lambda f, t: f.energy_delta < t.low_energy_delta and f.pitch_std > t.steady_pitch_variability * 2,
        EmotionTag.UNCERTAIN,
        lambda f, t: _clamp((abs(f.energy_delta) / 8.0 + f.pitch_std) * 0.6, 0.35, 0.85),
    ),
    (
        lambda f, t: (
            t.confident_min_energy_delta < f.energy_delta < t.high_energy_delta
            and f.pitch_std < t.steady_pitch_variability
        ),
        EmotionTag.CONFIDENT,
        lambda f, t: _clamp((1.0 - f.pitch_std / t.steady_pitch_variability) * 0.7, 0.4, 0.85),
    ),
    (
        lambda f, t: f.energy_delta < 0 and f.pitch_std < t.steady_pitch_variability * 1.5,
        EmotionTag.CALM,
        lambda f, t: 0.5,
    ),
)


def classify_features(
    features: SegmentFeatures,
    thresholds: EmotionThresholds = EmotionThresholds(),
    rules: tuple[Rule, ...] = EMOTION_RULES,
) -> tuple[EmotionTag, float]:
    """Run the ordered rules; Neutral at 0.4 when nothing matches."""
    for predicate, tag, confidence in rules:
        if predicate(features, thresholds):
            return tag, confidence(features, thresholds)
    return EmotionTag.NEUTRAL, 0.4


# =============================================================================
# EMOTION ANALYZER
# =============================================================================

class EmotionAnalyzer:
    """
    Detects emotional state per transcript segment from prosody.

    Usage:
        analyzer = EmotionAnalyzer()
        result = analyzer.analyze(segments, prosody)
        if result.should_warn:
            print(result.warning_message)
    """

    def __init__(self, thresholds: EmotionThresholds = None):
        self.thresholds = thresholds or EmotionThresholds()

    def analyze(
        self,
        segments: Optional[list[TranscriptSegment]],
        prosody: Optional[ProsodyResult],
    ) -> EmotionResult:
        """
        Analyze emotions from prosody data aligned to transcript segments.

        Missing segments or an unsuccessful prosody result give a single
        Neutral classification at 0.5.
        """
        if not segments or prosody is None or not prosody.is_success:
            return EmotionResult(dominant_emotion=EmotionTag.NEUTRAL, dominant_confidence=0.5)

        emotion_segments = []
        for seg in segments:
            windows = prosody.overlapping_windows(seg.start, seg.end)
            if not windows:
                tag, confidence = EmotionTag.NEUTRAL, 0.3
            else:
                features = SegmentFeatures.from_windows(windows)
                tag, confidence = classify_features(features, self.thresholds)

            emotion_segments.append(EmotionSegment(
                start_time=seg.start,
                end_time=seg.end,
                emotion=tag,
                confidence=confidence,
                text=seg.text,
            ))

        return self._aggregate(tuple(emotion_segments))

    def _aggregate(self, segments: tuple[EmotionSegment, ...]) -> EmotionResult:
        """Compute session-level dominant emotion, valence, arousal and warning."""
        scores: dict[EmotionTag, float] = {}
        for seg in segments:
            scores[seg.emotion] = scores.get(seg.emotion, 0.0) + seg.confidence

        # max() keeps the first-seen tag on ties
        dominant = max(scores, key=lambda tag: scores[tag])
        dominant_confidence = scores[dominant] / len(segments)

        valence = sum(EMOTION_DIMENSIONS[s.emotion][0] * s.confidence for s in segments) / len(segments)
        arousal = sum(EMOTION_DIMENSIONS[s.emotion][1] * s.confidence for s in segments) / len(segments)

        should_warn = False
        warning = None
        if dominant == EmotionTag.ANGRY and dominant_confidence > self.thresholds.angry_warning_confidence:
            should_warn, warning = True, ANGRY_WARNING
        elif dominant == EmotionTag.STRESSED and dominant_confidence > self.thresholds.stressed_warning_confidence:
            should_warn, warning = True, STRESSED_WARNING

        return EmotionResult(
            segments=segments,
            dominant_emotion=dominant,
            dominant_confidence=float(dominant_confidence),
            valence=_clamp(valence, -1.0, 1.0),
            arousal=_clamp(arousal, 0.0, 1.0),
            should_warn=should_warn,
            warning_message=warning,
        )
