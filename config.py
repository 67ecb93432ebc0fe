"""
Prosody Insight: Configuration Module
=====================================
Centralizes all application configuration with `.env` file support.

This module provides:
- Environment variable loading from `.env` file
- Type-safe configuration access
- Sensible defaults for all settings

Usage:
    from config import config

    window = config.PROSODY_WINDOW_MS   # e.g., 50
    enabled = config.HESITATION_ANALYSIS
"""

from __future__ import annotations

import os
from pathlib import Path


# =============================================================================
# .ENV FILE LOADING
# =============================================================================

def _load_dotenv():
    """Load environment variables from .env file if it exists."""
    env_path = Path(__file__).parent / ".env"

    if not env_path.exists():
        return

    with open(env_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()

            # Skip comments and empty lines
            if not line or line.startswith("#"):
                continue

            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.split("#")[0].strip()

                if value and value[0] in ('"', "'") and value[-1] == value[0]:
                    value = value[1:-1]

                # Real environment wins over .env
                if key and key not in os.environ:
                    os.environ[key] = value


_load_dotenv()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


# =============================================================================
# CONFIGURATION CLASS
# =============================================================================

class Config:
    """Application configuration with environment variable support.

    All configuration options can be overridden via environment variables
    or a `.env` file in the project root.

    Attributes:
        PROSODY_WINDOW_MS: Analysis window length (default: 50).
        PROSODY_HOP_MS: Hop between windows (default: 25).
        SILENCE_THRESHOLD_DB: Energy below which a window is silent (default: -40).
        WHISPER_THRESHOLD_DB: Energy below which voiced speech is a whisper (default: -28).
        MIN_PITCH_HZ / MAX_PITCH_HZ: Speech pitch search range (default: 60-500).
        YIN_THRESHOLD: CMND dip threshold for the pitch estimator (default: 0.15).
        MIN_PAUSE_MS: Minimum silent run reported as a pause (default: 200).
        PROSODY_FORMATTING / HESITATION_ANALYSIS / EMOTIONAL_WATERMARKING:
            Feature toggles for the session pipeline (default: True).
        HESITATION_MULTILINGUAL_FALLBACK: Search every lexicon, not just the
            detected language (default: True).
        API_HOST / API_PORT / MAX_FILE_SIZE_MB: HTTP server settings.
    """

    # =========================================================================
    # PROSODY ANALYZER
    # =========================================================================

    @property
    def PROSODY_WINDOW_MS(self) -> int:
        """Analysis window length in milliseconds."""
        return _env_int("PROSODY_WINDOW_MS", 50)

    @property
    def PROSODY_HOP_MS(self) -> int:
        """Hop between consecutive windows in milliseconds (50% overlap by default)."""
        return _env_int("PROSODY_HOP_MS", 25)

    @property
    def SILENCE_THRESHOLD_DB(self) -> float:
        """Windows quieter than this (dBFS) are flagged as silence."""
        return _env_float("SILENCE_THRESHOLD_DB", -40.0)

    @property
    def WHISPER_THRESHOLD_DB(self) -> float:
        """Voiced windows quieter than this (dBFS) are flagged as whisper."""
        return _env_float("WHISPER_THRESHOLD_DB", -28.0)

    @property
    def MIN_PITCH_HZ(self) -> float:
        """Lowest fundamental frequency searched by the pitch estimator."""
        return _env_float("MIN_PITCH_HZ", 60.0)

    @property
    def MAX_PITCH_HZ(self) -> float:
        """Highest fundamental frequency searched by the pitch estimator."""
        return _env_float("MAX_PITCH_HZ", 500.0)

    @property
    def YIN_THRESHOLD(self) -> float:
        """CMND dip threshold.

        Lower values are stricter (fewer voiced windows).
        Recommended range: 0.10 to 0.20.
        """
        return _env_float("YIN_THRESHOLD", 0.15)

    @property
    def MIN_PAUSE_MS(self) -> float:
        """Minimum duration of a silent run to be reported as a pause."""
        return _env_float("MIN_PAUSE_MS", 200.0)

    # =========================================================================
    # FEATURE TOGGLES
    # =========================================================================

    @property
    def PROSODY_FORMATTING(self) -> bool:
        """Apply prosody-driven typography (bold, italic, ?, !, breaks)."""
        return _env_bool("PROSODY_FORMATTING", True)

    @property
    def HESITATION_ANALYSIS(self) -> bool:
        """Run filler/self-correction/fatigue analysis."""
        return _env_bool("HESITATION_ANALYSIS", True)

    @property
    def EMOTIONAL_WATERMARKING(self) -> bool:
        """Run emotion classification and append the mood footer."""
        return _env_bool("EMOTIONAL_WATERMARKING", True)

    @property
    def HESITATION_MULTILINGUAL_FALLBACK(self) -> bool:
        """Union every supported lexicon after the detected language.

        When disabled and a supported language is detected, only that
        language's fillers and correction markers are searched.
        """
        return _env_bool("HESITATION_MULTILINGUAL_FALLBACK", True)

    # =========================================================================
    # SERVER CONFIGURATION
    # =========================================================================

    @property
    def API_HOST(self) -> str:
        """API server host."""
        return os.getenv("API_HOST", "0.0.0.0")

    @property
    def API_PORT(self) -> int:
        """API server port."""
        return _env_int("API_PORT", 8000)

    @property
    def MAX_FILE_SIZE_MB(self) -> int:
        """Maximum file upload size in MB."""
        return _env_int("MAX_FILE_SIZE_MB", 100)

    @property
    def MAX_FILE_SIZE(self) -> int:
        """Maximum file upload size in bytes."""
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    def __repr__(self) -> str:
        """Return a string representation showing current config."""
        return (
            f"Config(\n"
            f"  PROSODY_WINDOW_MS={self.PROSODY_WINDOW_MS},\n"
            f"  PROSODY_HOP_MS={self.PROSODY_HOP_MS},\n"
            f"  SILENCE_THRESHOLD_DB={self.SILENCE_THRESHOLD_DB},\n"
            f"  WHISPER_THRESHOLD_DB={self.WHISPER_THRESHOLD_DB},\n"
            f"  MIN_PITCH_HZ={self.MIN_PITCH_HZ},\n"
            f"  MAX_PITCH_HZ={self.MAX_PITCH_HZ},\n"
            f"  YIN_THRESHOLD={self.YIN_THRESHOLD},\n"
            f"  MIN_PAUSE_MS={self.MIN_PAUSE_MS},\n"
            f"  PROSODY_FORMATTING={self.PROSODY_FORMATTING},\n"
            f"  HESITATION_ANALYSIS={self.HESITATION_ANALYSIS},\n"
            f"  EMOTIONAL_WATERMARKING={self.EMOTIONAL_WATERMARKING},\n"
            f"  HESITATION_MULTILINGUAL_FALLBACK={self.HESITATION_MULTILINGUAL_FALLBACK},\n"
            f"  API_HOST={self.API_HOST!r},\n"
            f"  API_PORT={self.API_PORT},\n"
            f"  MAX_FILE_SIZE_MB={self.MAX_FILE_SIZE_MB}\n"
            f")"
        )

    def print_config(self) -> None:
        """Print current configuration to console."""
        print("\n" + "=" * 50)
        print("  🔧 Prosody Insight Configuration")
        print("=" * 50)
        print(f"  Window/Hop:   {self.PROSODY_WINDOW_MS}ms / {self.PROSODY_HOP_MS}ms")
        print(f"  Silence:      < {self.SILENCE_THRESHOLD_DB} dB")
        print(f"  Whisper:      < {self.WHISPER_THRESHOLD_DB} dB")
        print(f"  Pitch Range:  {self.MIN_PITCH_HZ}-{self.MAX_PITCH_HZ} Hz")
        print(f"  YIN:          {self.YIN_THRESHOLD}")
        print(f"  Min Pause:    {self.MIN_PAUSE_MS}ms")
        print(f"  Formatting:   {self.PROSODY_FORMATTING}")
        print(f"  Hesitation:   {self.HESITATION_ANALYSIS}")
        print(f"  Emotion:      {self.EMOTIONAL_WATERMARKING}")
        print(f"  API:          {self.API_HOST}:{self.API_PORT}")
        print(f"  Max Upload:   {self.MAX_FILE_SIZE_MB} MB")
        print("=" * 50 + "\n")


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

config = Config()


# =============================================================================
# CLI TEST
# =============================================================================

if __name__ == "__main__":
    print("🔧 Prosody Insight Configuration Module")
    config.print_config()
    print(repr(config))
