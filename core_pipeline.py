"""
Prosody Insight: Core Pipeline (The Orchestrator)
=================================================
End-to-end session analysis connecting all analyzers.

This module orchestrates:
1. ProsodyAnalyzer -> ProsodyResult (once per utterance)
2. ProsodyFormatter -> formatted text          \
3. HesitationAnalyzer -> fluency annotations    > fanned out concurrently
4. EmotionAnalyzer -> mood + warning           /
5. Summary footers appended to the final text

Usage:
    pipeline = SpeechAnalysisPipeline()
    report = pipeline.run_file("dictation.wav", text, segments, detected_language="en")
    print(report.final_text)
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Union

from config import config
from emotion_analyzer import EmotionAnalyzer, EmotionResult
from hesitation_analyzer import HesitationAnalyzer, HesitationResult
from prosody_engine import CancelToken, PcmInput, ProsodyAnalyzer, ProsodyResult, TranscriptSegment
from prosody_formatter import ProsodyFormatter


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class SessionReport:
    """Everything derived from one dictation session.

    Attributes:
        raw_text: Transcript as received.
        formatted_text: Prosody-formatted transcript (raw text if skipped).
        final_text: Formatted text plus any summary footers.
        prosody: The shared prosody result.
        hesitation: Hesitation result, or None if disabled.
        emotion: Emotion result, or None if disabled or prosody failed.
    """
    raw_text: str
    formatted_text: str
    final_text: str
    prosody: ProsodyResult
    hesitation: Optional[HesitationResult] = None
    emotion: Optional[EmotionResult] = None

    def to_dict(self) -> dict:
        """Convert to dictionary format for JSON serialization."""
        prosody = self.prosody.to_dict()
        return {
            "raw_text": self.raw_text,
            "formatted_text": self.formatted_text,
            "final_text": self.final_text,
            "prosody": {
                "is_success": prosody["is_success"],
                "error": prosody["error"],
                "cancelled": prosody["cancelled"],
                "baseline_pitch_hz": prosody["baseline_pitch_hz"],
                "baseline_energy_db": prosody["baseline_energy_db"],
                "window_count": len(prosody["windows"]),
                "pauses": prosody["pauses"],
            },
            "hesitation": self.hesitation.to_dict() if self.hesitation else None,
            "emotion": self.emotion.to_dict() if self.emotion else None,
        }


SegmentInput = Union[TranscriptSegment, dict]


def normalize_segments(segments: Optional[list[SegmentInput]]) -> list[TranscriptSegment]:
    """Accept TranscriptSegment objects or transcription-client dicts."""
    if not segments:
        return []
    return [
        seg if isinstance(seg, TranscriptSegment) else TranscriptSegment.from_dict(seg)
        for seg in segments
    ]


# =============================================================================
# CORE PIPELINE
# =============================================================================

class SpeechAnalysisPipeline:
    """
    Analyze once, fan out to many readers.

    The prosody result is computed a single time and shared read-only by
    the formatter, hesitation and emotion analyzers, which run in parallel.
    """

    def __init__(
        self,
        formatting_enabled: bool = None,
        hesitation_enabled: bool = None,
        emotion_enabled: bool = None,
        prosody_analyzer: ProsodyAnalyzer = None,
    ):
        """
        Initialize the pipeline with all sub-analyzers.

        Args:
            formatting_enabled: Apply prosody typography. Defaults to config.
            hesitation_enabled: Run hesitation analysis. Defaults to config.
            emotion_enabled: Run emotion analysis. Defaults to config.
            prosody_analyzer: Custom analyzer (e.g. different thresholds).
        """
        self.formatting_enabled = (
            formatting_enabled if formatting_enabled is not None else config.PROSODY_FORMATTING
        )
        self.hesitation_enabled = (
            hesitation_enabled if hesitation_enabled is not None else config.HESITATION_ANALYSIS
        )
        self.emotion_enabled = (
            emotion_enabled if emotion_enabled is not None else config.EMOTIONAL_WATERMARKING
        )

        self.prosody_analyzer = prosody_analyzer or ProsodyAnalyzer()
        self.formatter = ProsodyFormatter()
        self.hesitation_analyzer = HesitationAnalyzer()
        self.emotion_analyzer = EmotionAnalyzer()

    def run(
        self,
        pcm: PcmInput,
        sample_rate: int,
        text: str,
        segments: Optional[list[SegmentInput]] = None,
        detected_language: Optional[str] = None,
        cancel_event: Optional[CancelToken] = None,
    ) -> SessionReport:
        """Analyze raw PCM and enrich the transcript."""
        prosody = self.prosody_analyzer.analyze(pcm, sample_rate, cancel_event=cancel_event)
        return self.enrich(text, segments, prosody, detected_language)

    def run_file(
        self,
        wav_path: str,
        text: str,
        segments: Optional[list[SegmentInput]] = None,
        detected_language: Optional[str] = None,
        cancel_event: Optional[CancelToken] = None,
    ) -> SessionReport:
        """Analyze a 16-bit mono WAV file and enrich the transcript."""
        prosody = self.prosody_analyzer.analyze_file(wav_path, cancel_event=cancel_event)
        return self.enrich(text, segments, prosody, detected_language)

    def enrich(
        self,
        text: str,
        segments: Optional[list[SegmentInput]],
        prosody: ProsodyResult,
        detected_language: Optional[str] = None,
    ) -> SessionReport:
        """
        Fan a finished prosody result out to the downstream analyzers.

        Args:
            text: Transcript text.
            segments: Timestamped segments (objects or dicts).
            prosody: Result of a single ProsodyAnalyzer run.
            detected_language: Language code from the transcription client.

        Returns:
            SessionReport with formatted text, analyses and footers.
        """
        text = text or ""
        segments = normalize_segments(segments)
        print(f"[Pipeline] Prosody={prosody.is_success}, segments={len(segments)}")
        if not prosody.is_success:
            print(f"[Pipeline] Prosody unavailable: {prosody.error}")

        with ThreadPoolExecutor(max_workers=3) as pool:
            formatted_future = None
            hesitation_future = None
            emotion_future = None

            if self.formatting_enabled and prosody.is_success and segments:
                formatted_future = pool.submit(self.formatter.apply_formatting, text, segments, prosody)
            if self.hesitation_enabled:
                hesitation_future = pool.submit(
                    self.hesitation_analyzer.analyze, text, segments, prosody, detected_language
                )
            if self.emotion_enabled and prosody.is_success:
                emotion_future = pool.submit(self.emotion_analyzer.analyze, segments, prosody)

            formatted = formatted_future.result() if formatted_future else text
            hesitation = hesitation_future.result() if hesitation_future else None
            emotion = emotion_future.result() if emotion_future else None

        final_text = formatted

        if hesitation is not None:
            print(
                f"[Pipeline] Hesitation: fluency={hesitation.fluency_score:.0%}, "
                f"fillers={hesitation.filler_count}, corrections={hesitation.self_correction_count}, "
                f"fatigue={hesitation.fatigue_level:.0%}"
            )
            if hesitation.filler_count > 0 or hesitation.self_correction_count > 0 or hesitation.fatigue_level > 0.3:
                final_text += hesitation.build_summary_footer()

        if emotion is not None:
            print(
                f"[Pipeline] Emotion: dominant={emotion.dominant_emotion.value} "
                f"({emotion.dominant_confidence:.0%}), valence={emotion.valence:.2f}, "
                f"arousal={emotion.arousal:.2f}"
            )
            if emotion.should_warn:
                print(f"[Pipeline] Emotion warning: {emotion.warning_message}")
            final_text += emotion.build_summary_footer()

        return SessionReport(
            raw_text=text,
            formatted_text=formatted,
            final_text=final_text,
            prosody=prosody,
            hesitation=hesitation,
            emotion=emotion,
        )


# =============================================================================
# CLI TESTING
# =============================================================================

if __name__ == "__main__":
    import argparse
    import json

    parser = argparse.ArgumentParser(description="Prosody Insight: session analysis")
    parser.add_argument("audio", help="Path to a 16-bit mono WAV file")
    parser.add_argument("segments", help="JSON file with [{'start','end','text'}, ...]")
    parser.add_argument("--lang", default=None, help="Detected language code (e.g. en, fr-FR)")
    parser.add_argument("--out", default="", help="Optional JSON output path")
    args = parser.parse_args()

    with open(args.segments, "r", encoding="utf-8") as f:
        raw_segments = json.load(f)

    transcript = " ".join(str(s.get("text", "")).strip() for s in raw_segments)

    report = SpeechAnalysisPipeline().run_file(args.audio, transcript, raw_segments, detected_language=args.lang)

    if args.out:
        with open(args.out, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)
        print(f"Wrote session report to {args.out}")
    else:
        print("\n" + "=" * 50)
        print(report.final_text)
        print("=" * 50)
