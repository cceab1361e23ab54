"""
audioscribe/stt/router.py
==========================
Transcription backend selection.

    TRANSCRIPTION_BACKEND=proxy   → ProxyTranscriptionClient (default)
    TRANSCRIPTION_BACKEND=openai  → WhisperTranscriptionClient
"""

import logging
import os

from dotenv import load_dotenv

from audioscribe.stt.client import ProxyTranscriptionClient, TranscriptionClient
from audioscribe.stt.whisper_client import WhisperTranscriptionClient

load_dotenv()

logger = logging.getLogger("audioscribe.stt.router")

TRANSCRIPTION_BACKEND: str = os.environ.get("TRANSCRIPTION_BACKEND", "proxy").strip().lower()

_BACKENDS = {
    "proxy": ProxyTranscriptionClient,
    "openai": WhisperTranscriptionClient,
}


def get_transcription_client(
    user_id: str | None,
    backend: str | None = None,
) -> TranscriptionClient:
    """
    Build the transcription client for *user_id*.

    Raises:
        ValueError: If the backend name is unknown.
    """
    name = (backend or TRANSCRIPTION_BACKEND).strip().lower()
    try:
        client_cls = _BACKENDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown TRANSCRIPTION_BACKEND '{name}'. "
            f"Expected one of: {', '.join(sorted(_BACKENDS))}"
        ) from None

    logger.info("STT backend selected: %s", name)
    return client_cls(user_id)
