"""
Prosody Insight: Prosody Formatter
==================================
Maps the physical properties of the voice to typography:

- Loud/emphatic speech -> **bold**
- Whispered speech -> *italic*
- Rising pitch at segment end -> question mark
- Loud speech with falling pitch -> exclamation mark
- Long pauses -> paragraph breaks, medium pauses -> line breaks
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from prosody_engine import PauseEvent, ProsodyResult, TranscriptSegment


# Energy thresholds (dB vs. baseline)
BOLD_ENERGY_THRESHOLD = 6.0
WHISPER_ENERGY_THRESHOLD = -8.0

# Pause thresholds (ms)
PARAGRAPH_PAUSE_MS = 1500.0
LINE_PAUSE_MS = 500.0
PAUSE_GAP_TOLERANCE = 0.1

# Pitch thresholds for punctuation
RISING_PITCH_THRESHOLD = 0.15
FALLING_PITCH_WITH_ENERGY = -0.10
END_PITCH_WINDOW_S = 0.3

_TERMINAL_PUNCTUATION = ".!?,;:…"


def wrap_emphasis(text: str, marker: str) -> str:
    """Wrap the trimmed text in `marker`, keeping surrounding whitespace outside."""
    trimmed = text.strip()
    if not trimmed:
        return text
    leading = text[:len(text) - len(text.lstrip())]
    trailing = text[len(text.rstrip()):]
    return f"{leading}{marker}{trimmed}{marker}{trailing}"


def ends_with_punctuation(text: str) -> bool:
    """True if the text ends in punctuation, looking through trailing markdown stars."""
    trimmed = text.rstrip().rstrip("*")
    return bool(trimmed) and trimmed[-1] in _TERMINAL_PUNCTUATION


class ProsodyFormatter:
    """
    Applies prosody-based formatting to transcribed text.

    Usage:
        formatter = ProsodyFormatter()
        text = formatter.apply_formatting(raw_text, segments, prosody)
    """

    def apply_formatting(
        self,
        raw_text: str,
        segments: Optional[list[TranscriptSegment]],
        prosody: Optional[ProsodyResult],
    ) -> str:
        """
        Reformat transcript text using aligned segments and prosody.

        Args:
            raw_text: Transcript as returned by the transcription client.
            segments: Timestamped segments covering the transcript.
            prosody: Prosody result for the same utterance.

        Returns:
            Formatted text, or `raw_text` unchanged when segments are
            missing or prosody failed.
        """
        if not segments or prosody is None or not prosody.is_success:
            return raw_text

        parts: list[str] = []
        for i, seg in enumerate(segments):
            seg_text = seg.text.lstrip()
            if not seg_text:
                continue

            next_seg = segments[i + 1] if i < len(segments) - 1 else None
            windows = prosody.overlapping_windows(seg.start, seg.end)

            if windows:
                parts.append(self._format_segment(seg, seg_text, windows))
            else:
                parts.append(seg_text)

            self._append_separator(parts, seg, next_seg, prosody.pauses)

        return "".join(parts).strip()

    def _format_segment(self, seg: TranscriptSegment, seg_text: str, windows: list) -> str:
        mean_energy_delta = float(np.mean([w.energy_delta for w in windows]))
        is_whisper = all(w.is_whisper for w in windows)

        end_windows = [w for w in windows if w.end_time >= seg.end - END_PITCH_WINDOW_S]
        end_pitch_delta = float(np.mean([w.pitch_delta for w in end_windows])) if end_windows else 0.0

        formatted = seg_text
        if mean_energy_delta > BOLD_ENERGY_THRESHOLD:
            formatted = wrap_emphasis(formatted, "**")
        elif is_whisper or mean_energy_delta < WHISPER_ENERGY_THRESHOLD:
            formatted = wrap_emphasis(formatted, "*")

        if not ends_with_punctuation(formatted):
            if end_pitch_delta > RISING_PITCH_THRESHOLD:
                formatted = formatted.rstrip() + "?"
            elif end_pitch_delta < FALLING_PITCH_WITH_ENERGY and mean_energy_delta > BOLD_ENERGY_THRESHOLD / 2:
                formatted = formatted.rstrip() + "!"

        return formatted

    @staticmethod
    def _append_separator(
        parts: list[str],
        current: TranscriptSegment,
        next_seg: Optional[TranscriptSegment],
        pauses: tuple[PauseEvent, ...],
    ) -> None:
        """Append a paragraph break, line break or space between two segments."""
        if next_seg is None:
            return

        gap_pause = next(
            (
                p for p in pauses
                if p.start_time >= current.end - PAUSE_GAP_TOLERANCE
                and p.end_time <= next_seg.start + PAUSE_GAP_TOLERANCE
            ),
            None,
        )

        if gap_pause is not None:
            if gap_pause.duration_ms >= PARAGRAPH_PAUSE_MS:
                parts.append("\n\n")
                return
            if gap_pause.duration_ms >= LINE_PAUSE_MS:
                parts.append("\n")
                return

        if parts and parts[-1] and not parts[-1][-1].isspace():
            parts.append(" ")
