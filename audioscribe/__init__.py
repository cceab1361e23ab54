# audioscribe/__init__.py
# ========================
# Chunked audio transcription pipeline.
#
# Public API:
#   transcribe_file(source, user_id, language=None) → TranscriptionJob
#   ChunkOrchestrator(client).run(source)           → TranscriptionJob

from audioscribe.audio.source import AudioSource  # noqa: F401
from audioscribe.pipeline import (                 # noqa: F401
    ChunkOrchestrator,
    JobStatus,
    TranscriptionJob,
    TranscriptionResult,
    transcribe_file,
)

__all__ = [
    "AudioSource",
    "ChunkOrchestrator",
    "JobStatus",
    "TranscriptionJob",
    "TranscriptionResult",
    "transcribe_file",
]
