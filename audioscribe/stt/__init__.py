# audioscribe/stt/__init__.py
# ============================
# Speech-to-Text Layer
#
# One upload → one TranscriptionResponse. Backends:
#   client.py         — HTTP proxy (default)
#   whisper_client.py — OpenAI Whisper direct
#
# Public API:
#   get_transcription_client(user_id) → TranscriptionClient

from audioscribe.stt.client import (        # noqa: F401
    ProxyTranscriptionClient,
    TranscriptionClient,
    TranscriptionResponse,
)
from audioscribe.stt.router import get_transcription_client  # noqa: F401

__all__ = [
    "ProxyTranscriptionClient",
    "TranscriptionClient",
    "TranscriptionResponse",
    "get_transcription_client",
]
