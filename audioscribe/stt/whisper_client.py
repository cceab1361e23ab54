"""
audioscribe/stt/whisper_client.py
==================================
OpenAI Whisper Client — direct backend for the transcription pipeline

Responsibility:
    - Transcribe one payload with the OpenAI audio transcription API
    - Forward the language hint, or let Whisper auto-detect
    - Return the same TranscriptionResponse as the proxy client

Selected with ``TRANSCRIPTION_BACKEND=openai``; the caller identity is sent
as an ``X-User-Id`` header so usage can still be attributed.

This module does NOT:
    - Retry (see audioscribe.retry)
    - Split or re-encode audio
"""

import io
import logging
import os

from dotenv import load_dotenv
from openai import OpenAI

from audioscribe.errors import (
    IdentityMissingError,
    TranscriptionConfigError,
    TranscriptionError,
)
from audioscribe.stt.client import TRANSCRIPTION_MODEL, TranscriptionResponse

load_dotenv()

logger = logging.getLogger("audioscribe.stt.whisper_client")


class WhisperTranscriptionClient:
    """
    Args:
        user_id: Caller identity.
        api_key: OpenAI key (defaults to ``OPENAI_API_KEY``).
        model:   Whisper model name.
        client:  Pre-built ``openai.OpenAI`` instance (mainly for tests).
    """

    def __init__(
        self,
        user_id: str | None,
        api_key: str | None = None,
        model: str = TRANSCRIPTION_MODEL,
        client: OpenAI | None = None,
    ) -> None:
        self.user_id = user_id
        self.model = model
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self._api_key:
                raise TranscriptionConfigError("OPENAI_API_KEY environment variable is not set.")
            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def transcribe(
        self,
        audio_bytes: bytes,
        file_name: str,
        language: str | None = None,
        content_type: str = "audio/wav",
    ) -> TranscriptionResponse:
        """
        Raises:
            IdentityMissingError: No user_id configured.
            TranscriptionError:   Any Whisper API failure.
        """
        if not self.user_id:
            raise IdentityMissingError()

        client = self._get_client()

        audio_file = io.BytesIO(audio_bytes)
        audio_file.name = file_name

        kwargs = {
            "model": self.model,
            "file": audio_file,
            "response_format": "verbose_json",
            "extra_headers": {"X-User-Id": self.user_id},
        }
        if language:
            kwargs["language"] = language

        try:
            response = client.audio.transcriptions.create(**kwargs)
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            raise TranscriptionError(
                f"Whisper transcription failed: {exc}",
                status_code=status if isinstance(status, int) else None,
            ) from exc

        # Handle both dict and object attribute access patterns
        if isinstance(response, dict):
            text = response.get("text") or ""
            lang = response.get("language")
        else:
            text = getattr(response, "text", "") or ""
            lang = getattr(response, "language", None)

        logger.debug("Whisper returned %d chars for %s", len(text), file_name)
        return TranscriptionResponse(
            text=text,
            language=lang if isinstance(lang, str) and lang else None,
        )
