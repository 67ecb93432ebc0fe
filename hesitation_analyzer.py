"""
Prosody Insight: Hesitation Analyzer
====================================
Flags hesitation patterns in transcribed speech and scores fluency.

Detects:
- Filler words ("um", "euh", "genre", ...) in five languages
- Self-corrections ("I mean", "no wait", "en fait", ...)
- Uncertain passages (filler density, boosted by low energy)
- Fatigue (speech rate declining over the session)
- Topic changes (pitch/energy shifts between adjacent segments)

Usage:
    analyzer = HesitationAnalyzer()
    result = analyzer.analyze(text, segments, prosody, detected_language="fr")
    print(result.fluency_score, result.filler_count)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

import numpy as np

from config import config
from prosody_engine import ProsodyResult, TranscriptSegment


# =============================================================================
# LEXICONS
# =============================================================================

# Lower-cased; looked up case-insensitively.
FILLER_WORDS: Mapping[str, frozenset[str]] = MappingProxyType({
    "en": frozenset({
        "um", "uh", "uh huh", "like", "you know", "i mean", "so", "well",
        "actually", "basically", "literally", "okay so",
    }),
    "fr": frozenset({
        "euh", "heu", "genre", "en fait", "du coup", "voilà", "quoi", "bah",
        "bon", "ben", "tu vois", "en gros", "c'est-à-dire",
    }),
    "es": frozenset({
        "eh", "este", "bueno", "o sea", "pues", "digamos", "como que",
        "a ver", "entonces", "mira",
    }),
    "de": frozenset({
        "äh", "ähm", "also", "halt", "sozusagen", "quasi", "na ja",
        "irgendwie", "sag mal", "weißt du",
    }),
    "pt": frozenset({
        "é", "tipo", "então", "né", "bem", "quer dizer", "assim",
        "olha", "sabe", "entendeu",
    }),
})

SELF_CORRECTION_MARKERS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "en": ("I mean", "no wait", "sorry", "actually no", "let me rephrase", "or rather", "well no"),
    "fr": ("en fait", "non attends", "pardon", "je veux dire", "non en fait", "ou plutôt", "enfin"),
    "es": ("o sea", "no espera", "perdón", "quiero decir", "mejor dicho", "bueno no"),
    "de": ("ich meine", "nein warte", "also nein", "beziehungsweise", "anders gesagt"),
    "pt": ("quer dizer", "não espera", "desculpa", "ou melhor", "na verdade não"),
})

_PUNCTUATION = " .,!?;:\"'()[]*"

# Thresholds
UNCERTAINTY_FILLER_DENSITY = 0.25
LOW_CONFIDENCE_ENERGY_DELTA = -3.0
FATIGUE_RATE_THRESHOLD = 0.70
TOPIC_CHANGE_PITCH_SHIFT = 0.30
TOPIC_CHANGE_ENERGY_SHIFT = 8.0
MIN_SEGMENTS_FOR_FATIGUE = 8
MIN_SEGMENTS_FOR_TOPIC_CHANGE = 4
TOPIC_CHANGE_PAUSE_TOLERANCE = 0.2
SUGGESTION_CONTEXT_CHARS = 60


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class HesitationType(str, Enum):
    """Categories of hesitation/fluency events."""
    FILLER_WORD = "filler_word"
    UNCERTAINTY = "uncertainty"
    SELF_CORRECTION = "self_correction"
    TOPIC_CHANGE = "topic_change"
    FATIGUE_WARNING = "fatigue_warning"


@dataclass(frozen=True)
class HesitationAnnotation:
    """A single hesitation event attached to a span of transcribed text."""
    type: HesitationType
    start_time: float
    end_time: float
    text: str = ""
    suggestion: Optional[str] = None
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "start_time": round(self.start_time, 3),
            "end_time": round(self.end_time, 3),
            "text": self.text,
            "suggestion": self.suggestion,
            "confidence": round(self.confidence, 3),
        }


@dataclass(frozen=True)
class HesitationResult:
    """Result of hesitation/fluency analysis.

    Attributes:
        annotations: Ordered hesitation events.
        fluency_score: 0 = constant hesitation, 1 = perfectly fluent.
        fatigue_level: 0 = fresh, 1 = strong speech-rate decline.
        filler_count: Filler words found across all searched languages.
        self_correction_count: Self-correction markers found.
    """
    annotations: tuple[HesitationAnnotation, ...] = ()
    fluency_score: float = 1.0
    fatigue_level: float = 0.0
    filler_count: int = 0
    self_correction_count: int = 0

    def count(self, kind: HesitationType) -> int:
        return sum(1 for a in self.annotations if a.type == kind)

    def build_summary_footer(self) -> str:
        """Build a compact summary footer for appending to transcription output."""
        parts = [f"Fluency: {self.fluency_score:.0%}"]

        if self.filler_count > 0:
            parts.append(f"Fillers: {self.filler_count}")
        if self.self_correction_count > 0:
            parts.append(f"Self-corrections: {self.self_correction_count}")
        if self.fatigue_level > 0.3:
            parts.append(f"Fatigue: {self.fatigue_level:.0%}")

        uncertain = self.count(HesitationType.UNCERTAINTY)
        if uncertain > 0:
            parts.append(f"Uncertain phrases: {uncertain}")

        topic_changes = self.count(HesitationType.TOPIC_CHANGE)
        if topic_changes > 0:
            parts.append(f"Topic shifts: {topic_changes}")

        return f"\n---\n[Hesitation Analysis] {' | '.join(parts)}"

    def to_dict(self) -> dict:
        return {
            "fluency_score": round(self.fluency_score, 3),
            "fatigue_level": round(self.fatigue_level, 3),
            "filler_count": self.filler_count,
            "self_correction_count": self.self_correction_count,
            "annotations": [a.to_dict() for a in self.annotations],
        }


# =============================================================================
# HELPERS
# =============================================================================

def clean_word(word: str) -> str:
    """Strip surrounding punctuation and lower-case a token."""
    return word.strip(_PUNCTUATION).lower()


def resolve_languages(detected_language: Optional[str], multilingual_fallback: bool = True) -> list[str]:
    """
    Decide which lexicons to search, detected language first.

    "fr-FR" is normalized to "fr". With `multilingual_fallback` every other
    supported language follows; without it a recognized language is searched
    alone (an unknown or missing one still searches everything).
    """
    languages = []
    if detected_language:
        primary = detected_language.replace("_", "-").split("-")[0].lower()
        if primary in FILLER_WORDS:
            languages.append(primary)

    if languages and not multilingual_fallback:
        return languages

    for lang in FILLER_WORDS:
        if lang not in languages:
            languages.append(lang)
    return languages


def combined_fillers(languages: list[str]) -> frozenset[str]:
    combined: set[str] = set()
    for lang in languages:
        combined |= FILLER_WORDS.get(lang, frozenset())
    return frozenset(combined)


def _is_letter(ch: str) -> bool:
    return ch.isalpha()


def _transcript_span(segments: Optional[list[TranscriptSegment]]) -> Optional[tuple[float, float]]:
    if not segments:
        return None
    return segments[0].start, segments[-1].end


def estimate_time_for_word(
    word_index: int, total_words: int, segments: Optional[list[TranscriptSegment]]
) -> tuple[float, float]:
    """Map a word's position in the token sequence onto the transcript time span."""
    span = _transcript_span(segments)
    if span is None:
        return 0.0, 0.0
    total_start, total_end = span
    if total_words <= 0:
        return total_start, total_end

    duration = total_end - total_start
    start = total_start + (word_index / total_words) * duration
    end = start + duration / total_words
    return start, min(end, total_end)


def estimate_time_for_chars(
    char_index: int, length: int, text: str, segments: Optional[list[TranscriptSegment]]
) -> tuple[float, float]:
    """Map a character range onto the transcript time span."""
    span = _transcript_span(segments)
    if span is None or not text:
        return 0.0, 0.0
    total_start, total_end = span

    duration = total_end - total_start
    start = total_start + (char_index / len(text)) * duration
    end = start + (length / len(text)) * duration
    return start, min(end, total_end)


def build_correction_suggestion(text: str, marker_index: int, marker_length: int) -> Optional[str]:
    """Quote up to 60 characters following a self-correction marker."""
    after_index = marker_index + marker_length
    if after_index >= len(text):
        return None

    after = text[after_index:after_index + SUGGESTION_CONTEXT_CHARS].strip()
    if not after:
        return None
    return f'Self-correction → "{after}"'


def speech_rate(segments: list[TranscriptSegment]) -> float:
    """Words per second over a contiguous run of segments."""
    if not segments:
        return 0.0
    total_words = sum(len(s.text.split()) for s in segments)
    total_time = segments[-1].end - segments[0].start
    return total_words / total_time if total_time > 0 else 0.0


# =============================================================================
# HESITATION ANALYZER
# =============================================================================

class HesitationAnalyzer:
    """
    Analyzes transcribed speech for hesitation patterns, correlating text
    cues with prosodic features for higher-confidence annotations.

    Stateless: one instance can serve concurrent callers.
    """

    def __init__(self, multilingual_fallback: bool = None):
        """
        Args:
            multilingual_fallback: Search every lexicon after the detected
                language. If None, loads from config.
        """
        if multilingual_fallback is None:
            multilingual_fallback = config.HESITATION_MULTILINGUAL_FALLBACK
        self.multilingual_fallback = multilingual_fallback

    def analyze(
        self,
        text: str,
        segments: Optional[list[TranscriptSegment]] = None,
        prosody: Optional[ProsodyResult] = None,
        detected_language: Optional[str] = None,
    ) -> HesitationResult:
        """
        Analyze transcription + prosody for hesitation patterns.

        Args:
            text: Full transcript text.
            segments: Timestamped transcript segments (may be None).
            prosody: Prosody result (may be None or unsuccessful).
            detected_language: Language code from the transcription client.

        Returns:
            HesitationResult. Empty text yields fluency 1.0 and no annotations.
        """
        if not text or not text.strip():
            return HesitationResult(fluency_score=1.0)

        segments = list(segments) if segments else []
        languages = resolve_languages(detected_language, self.multilingual_fallback)
        fillers = combined_fillers(languages)

        filler_annotations = self._detect_fillers(text, segments, fillers)
        correction_annotations = self._detect_self_corrections(text, segments, languages)
        uncertainty_annotations = self._detect_uncertainty(segments, prosody, fillers)
        fatigue_level, fatigue_annotations = self._detect_fatigue(segments)
        topic_annotations = self._detect_topic_changes(segments, prosody)

        fluency = self._compute_fluency_score(
            len(filler_annotations), len(correction_annotations), len(uncertainty_annotations)
        )

        return HesitationResult(
            annotations=tuple(
                filler_annotations
                + correction_annotations
                + uncertainty_annotations
                + fatigue_annotations
                + topic_annotations
            ),
            fluency_score=fluency,
            fatigue_level=fatigue_level,
            filler_count=len(filler_annotations),
            self_correction_count=len(correction_annotations),
        )

    # ------- Detection methods -------

    def _detect_fillers(
        self, text: str, segments: list[TranscriptSegment], fillers: frozenset[str]
    ) -> list[HesitationAnnotation]:
        words = text.split()
        annotations = []

        for i, raw in enumerate(words):
            word = clean_word(raw)
            is_filler = word in fillers

            # Bigrams: "you know", "en fait", "o sea"
            if not is_filler and i < len(words) - 1:
                is_filler = f"{word} {clean_word(words[i + 1])}" in fillers

            if is_filler:
                start, end = estimate_time_for_word(i, len(words), segments)
                annotations.append(HesitationAnnotation(
                    type=HesitationType.FILLER_WORD,
                    start_time=start,
                    end_time=end,
                    text=word,
                    confidence=0.9,
                ))

        return annotations

    def _detect_self_corrections(
        self, text: str, segments: list[TranscriptSegment], languages: list[str]
    ) -> list[HesitationAnnotation]:
        annotations = []

        for lang in languages:
            for marker in SELF_CORRECTION_MARKERS.get(lang, ()):
                # Match on the original text; str.lower() can change its length
                for match in re.finditer(re.escape(marker), text, re.IGNORECASE):
                    idx, after = match.start(), match.end()
                    at_boundary = (
                        (idx == 0 or not _is_letter(text[idx - 1]))
                        and (after >= len(text) or not _is_letter(text[after]))
                    )
                    if not at_boundary:
                        continue

                    length = after - idx
                    start, end = estimate_time_for_chars(idx, length, text, segments)
                    annotations.append(HesitationAnnotation(
                        type=HesitationType.SELF_CORRECTION,
                        start_time=start,
                        end_time=end,
                        text=match.group(0),
                        suggestion=build_correction_suggestion(text, idx, length),
                        confidence=0.8,
                    ))

        return annotations

    def _detect_uncertainty(
        self,
        segments: list[TranscriptSegment],
        prosody: Optional[ProsodyResult],
        fillers: frozenset[str],
    ) -> list[HesitationAnnotation]:
        if len(segments) < 2:
            return []

        annotations: list[HesitationAnnotation] = []
        window_size = min(3, len(segments))

        for i in range(len(segments) - window_size + 1):
            group = segments[i:i + window_size]
            group_start, group_end = group[0].start, group[-1].end
            group_text = " ".join(s.text for s in group)
            words = group_text.split()
            if not words:
                continue

            filler_count = sum(1 for w in words if clean_word(w) in fillers)
            density = filler_count / len(words)
            if density < UNCERTAINTY_FILLER_DENSITY:
                continue

            # Low energy strengthens the signal
            confidence = min(1.0, density * 2.0)
            if prosody is not None and prosody.is_success:
                overlapping = prosody.overlapping_windows(group_start, group_end)
                if overlapping:
                    mean_energy_delta = float(np.mean([w.energy_delta for w in overlapping]))
                    if mean_energy_delta < LOW_CONFIDENCE_ENERGY_DELTA:
                        confidence = min(1.0, confidence + 0.2)

            already_flagged = any(
                a.start_time < group_end and a.end_time > group_start for a in annotations
            )
            if already_flagged:
                continue

            annotations.append(HesitationAnnotation(
                type=HesitationType.UNCERTAINTY,
                start_time=group_start,
                end_time=group_end,
                text=group_text.strip(),
                suggestion="[uncertain]",
                confidence=confidence,
            ))

        return annotations

    def _detect_fatigue(
        self, segments: list[TranscriptSegment]
    ) -> tuple[float, list[HesitationAnnotation]]:
        if len(segments) < MIN_SEGMENTS_FOR_FATIGUE:
            return 0.0, []

        quarter = len(segments) // 4
        first_quarter = segments[:quarter]
        last_quarter = segments[len(segments) - quarter:]

        first_rate = speech_rate(first_quarter)
        last_rate = speech_rate(last_quarter)
        if first_rate <= 0:
            return 0.0, []

        ratio = last_rate / first_rate
        if ratio >= FATIGUE_RATE_THRESHOLD:
            return 0.0, []

        level = float(np.clip(1.0 - ratio, 0.0, 1.0))
        total_minutes = (segments[-1].end - segments[0].start) / 60.0

        annotation = HesitationAnnotation(
            type=HesitationType.FATIGUE_WARNING,
            start_time=last_quarter[0].start,
            end_time=last_quarter[-1].end,
            text="",
            suggestion=f"Fatigue detected: {total_minutes:.0f} min in, speech rate down {1 - ratio:.0%}",
            confidence=float(np.clip((FATIGUE_RATE_THRESHOLD - ratio) * 5.0, 0.3, 1.0)),
        )
        return level, [annotation]

    def _detect_topic_changes(
        self, segments: list[TranscriptSegment], prosody: Optional[ProsodyResult]
    ) -> list[HesitationAnnotation]:
        if len(segments) < MIN_SEGMENTS_FOR_TOPIC_CHANGE or prosody is None or not prosody.is_success:
            return []

        annotations = []
        for prev_seg, curr_seg in zip(segments, segments[1:]):
            prev_windows = prosody.overlapping_windows(prev_seg.start, prev_seg.end)
            curr_windows = prosody.overlapping_windows(curr_seg.start, curr_seg.end)
            if len(prev_windows) < 2 or len(curr_windows) < 2:
                continue

            pitch_shift = abs(
                np.mean([w.pitch_delta for w in curr_windows]) - np.mean([w.pitch_delta for w in prev_windows])
            )
            energy_shift = abs(
                np.mean([w.energy_db for w in curr_windows]) - np.mean([w.energy_db for w in prev_windows])
            )

            if pitch_shift <= TOPIC_CHANGE_PITCH_SHIFT and energy_shift <= TOPIC_CHANGE_ENERGY_SHIFT:
                continue

            has_pause = any(
                p.start_time >= prev_seg.end - TOPIC_CHANGE_PAUSE_TOLERANCE
                and p.end_time <= curr_seg.start + TOPIC_CHANGE_PAUSE_TOLERANCE
                for p in prosody.pauses
            )

            annotations.append(HesitationAnnotation(
                type=HesitationType.TOPIC_CHANGE,
                start_time=prev_seg.end,
                end_time=curr_seg.start,
                text="",
                suggestion="Possible topic change: consider a section break",
                confidence=0.85 if has_pause else 0.6,
            ))

        return annotations

    @staticmethod
    def _compute_fluency_score(filler_count: int, correction_count: int, uncertainty_count: int) -> float:
        filler_penalty = min(0.5, filler_count * 0.05)
        correction_penalty = min(0.3, correction_count * 0.08)
        uncertainty_penalty = min(0.2, uncertainty_count * 0.1)
        return float(np.clip(1.0 - filler_penalty - correction_penalty - uncertainty_penalty, 0.0, 1.0))
