"""
Prosody Insight: API Server
===========================
Speech Analysis Backend

FastAPI application that:
1. Accepts a recorded utterance (16-bit mono WAV) plus its transcript segments
2. Runs prosody analysis once and fans out to formatting, hesitation and emotion
3. Returns the session report as JSON

Configuration:
    All settings are loaded from .env file via config module.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import config
from core_pipeline import SpeechAnalysisPipeline
from prosody_engine import TranscriptSegment


# =============================================================================
# CONFIGURATION
# =============================================================================

ALLOWED_EXTENSIONS = {".wav"}
API_VERSION = "1.0.0"


# =============================================================================
# APPLICATION SETUP
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    print("=" * 60)
    print(f"  Prosody Insight API v{API_VERSION}")
    print("=" * 60)
    print(f"  Formatting: {config.PROSODY_FORMATTING}")
    print(f"  Hesitation Analysis: {config.HESITATION_ANALYSIS}")
    print(f"  Emotional Watermarking: {config.EMOTIONAL_WATERMARKING}")
    print(f"  Max File Size: {config.MAX_FILE_SIZE_MB} MB")
    print("=" * 60)

    yield

    print("Prosody Insight API shutting down...")


app = FastAPI(
    title="Prosody Insight API",
    description="Paralinguistic analysis of dictated speech",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def validate_file_extension(filename: str) -> bool:
    """Check if file has an allowed extension."""
    return Path(filename).suffix.lower() in ALLOWED_EXTENSIONS


def save_upload_file(upload_file: UploadFile, destination: Path) -> None:
    """Save uploaded file to destination."""
    with open(destination, "wb") as buffer:
        shutil.copyfileobj(upload_file.file, buffer)


def parse_segments(raw: str) -> list[TranscriptSegment]:
    """
    Parse the `segments` form field.

    Raises:
        ValueError: Not a JSON list of {"start", "end", "text"} objects.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"segments is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ValueError("segments must be a JSON list")

    segments = []
    for i, item in enumerate(data):
        if not isinstance(item, dict) or "start" not in item or "end" not in item:
            raise ValueError(f"segment {i} must be an object with 'start' and 'end'")
        try:
            segment = TranscriptSegment.from_dict(item)
        except (TypeError, ValueError) as e:
            raise ValueError(f"segment {i} has invalid values: {e}") from e
        if segment.end < segment.start:
            raise ValueError(f"segment {i} ends before it starts")
        segments.append(segment)
    return segments


# =============================================================================
# ROUTES
# =============================================================================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "message": f"Prosody Insight API v{API_VERSION}",
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "version": API_VERSION,
        "prosody_formatting": config.PROSODY_FORMATTING,
        "hesitation_analysis": config.HESITATION_ANALYSIS,
        "emotional_watermarking": config.EMOTIONAL_WATERMARKING,
        "allowed_extensions": sorted(ALLOWED_EXTENSIONS),
        "max_file_size_mb": config.MAX_FILE_SIZE_MB,
    }


@app.post("/analyze")
def analyze_audio(
    file: UploadFile = File(...),
    segments: str = Form(...),
    text: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
):
    """
    Analyze a dictation session.

    Plain `def`: FastAPI runs it in the threadpool, off the event loop.

    Accepts: 16-bit mono WAV, plus a JSON list of transcript segments.
    Returns: Session report with formatted text, hesitation and emotion.

    The pipeline:
    1. Validate the upload and segments
    2. Save the WAV to a temp directory
    3. Run prosody analysis and the downstream analyzers
    4. Clean up temp files
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    if not validate_file_extension(file.filename):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
        )

    try:
        parsed_segments = parse_segments(segments)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if text is None:
        text = " ".join(seg.text.strip() for seg in parsed_segments if seg.text.strip())

    temp_dir = tempfile.mkdtemp(prefix="prosody_insight_")
    temp_file_path = Path(temp_dir) / Path(file.filename).name

    try:
        save_upload_file(file, temp_file_path)
        print(f"[API] Saved upload to: {temp_file_path}")

        file_size = temp_file_path.stat().st_size
        if file_size > config.MAX_FILE_SIZE:
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size: {config.MAX_FILE_SIZE_MB} MB",
            )

        print(f"[API] File size: {file_size / 1024 / 1024:.2f} MB, segments: {len(parsed_segments)}")

        pipeline = SpeechAnalysisPipeline()
        report = pipeline.run_file(
            str(temp_file_path), text, parsed_segments, detected_language=language
        )

        if not report.prosody.is_success:
            raise HTTPException(status_code=400, detail=report.prosody.error)

        result = report.to_dict()
        result["_meta"] = {
            "filename": file.filename,
            "file_size_bytes": file_size,
            "language": language,
        }

        print(f"[API] Processing complete. Pauses: {len(result['prosody']['pauses'])}")

        return JSONResponse(content=result)

    except HTTPException:
        raise

    except Exception as e:
        print(f"[API] Error processing file: {e}")
        raise HTTPException(status_code=500, detail=f"Processing error: {str(e)}")

    finally:
        try:
            shutil.rmtree(temp_dir)
            print(f"[API] Cleaned up temp dir: {temp_dir}")
        except OSError as cleanup_error:
            print(f"[API] Warning: Failed to cleanup temp dir: {cleanup_error}")


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=True,
        log_level="info",
    )
