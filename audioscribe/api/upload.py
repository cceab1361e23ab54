"""
audioscribe/api/upload.py
==========================
API Upload Endpoint — audio transcription for the chat panel

Responsibility:
    - Expose POST /api/v1/transcribe
    - Accept one audio/video file plus the caller identity via
      multipart/form-data, and an optional language hint
    - Run the transcription job off the event loop
    - Return ``{text, language}`` plus per-chunk outcome metadata

Error mapping:
    - Missing identity          → 401
    - Empty / unsupported file  → 422
    - Transcription failed      → 502
    - Anything else             → 500
"""

import asyncio
import logging

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from audioscribe.audio.source import AudioSource
from audioscribe.errors import AudioValidationError, IdentityMissingError, TranscriptionError
from audioscribe.formatting import format_file_size, language_label
from audioscribe.pipeline import transcribe_file

logger = logging.getLogger("audioscribe.api")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="audioscribe",
    description="Chunked audio transcription for the chat panel.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@app.post("/api/v1/transcribe")
async def transcribe_audio(
    audio_file: UploadFile = File(...),
    user_id: str | None = Form(None),
    language: str | None = Form(None),
):
    """
    Transcribe an uploaded audio/video file.

    Args:
        audio_file: The recording (.wav, .mp3, .m4a, .aac, .ogg, .opus,
                    .mp4 or .webm).
        user_id:    Caller identity, forwarded to the transcription service.
        language:   ISO-639-1 hint; empty or ``"auto"`` to auto-detect.

    Returns:
        JSON with ``text``, ``language``, ``language_label``, ``mode`` and
        ``chunks`` (index, start/end time, failed flag).
    """
    if not user_id:
        raise HTTPException(status_code=401, detail="Sign in required")

    if audio_file is None or not audio_file.filename:
        raise HTTPException(status_code=400, detail="Audio file is required.")

    logger.info("Audio file received: %s", audio_file.filename)

    try:
        audio_bytes = await audio_file.read()
    except Exception:
        raise HTTPException(status_code=400, detail="Failed to read uploaded file.")

    logger.info("File size: %s", format_file_size(len(audio_bytes)))

    source = AudioSource(
        name=audio_file.filename,
        data=audio_bytes,
        content_type=audio_file.content_type or "",
    )

    try:
        job = await asyncio.to_thread(transcribe_file, source, user_id, language)
    except IdentityMissingError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except AudioValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except TranscriptionError as exc:
        raise HTTPException(status_code=502, detail=exc.message)
    except Exception as exc:
        logger.error("Transcription unexpected error: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Transcription failed: {exc}")

    result = job.result()
    return JSONResponse(
        status_code=200,
        content={
            "text": result.text,
            "language": result.language,
            "language_label": language_label(result.language),
            "mode": job.mode,
            "chunks": [
                {
                    "index": seg.chunk_index,
                    "start_time": round(seg.start_time, 3),
                    "end_time": round(seg.end_time, 3),
                    "failed": seg.failed,
                }
                for seg in job.segments
            ],
        },
    )
