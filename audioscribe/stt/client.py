"""
audioscribe/stt/client.py
==========================
Transcription Proxy Client — one upload, one transcript

Responsibility:
    - Upload one audio payload (a WAV chunk or the whole original file) to
      the speech-to-text proxy as multipart/form-data
    - Attach the caller identity and, when given, a language hint
    - Parse the JSON reply into a TranscriptionResponse

Failure detail comes from the reply's ``error`` or ``message`` field, else
the raw body. A successful reply that is not JSON is taken as plain
transcript text.

This module does NOT:
    - Retry (see audioscribe.retry, applied by the pipeline)
    - Split or re-encode audio
"""

import io
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Protocol

import requests
from dotenv import load_dotenv

from audioscribe.errors import IdentityMissingError, TranscriptionError

load_dotenv()

logger = logging.getLogger("audioscribe.stt.client")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

AUDIO_ENDPOINT: str = os.environ.get("AUDIO_ENDPOINT", "https://openai.vegvisr.org/audio")
TRANSCRIPTION_MODEL: str = os.environ.get("TRANSCRIPTION_MODEL", "whisper-1")
TRANSCRIPTION_TIMEOUT: float = float(os.environ.get("TRANSCRIPTION_TIMEOUT", "300"))

_GENERIC_FAILURE = "Audio transcription failed"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TranscriptionResponse:
    """Text and (optional) detected language returned by the service."""

    text: str
    language: str | None = None


class TranscriptionClient(Protocol):
    def transcribe(
        self,
        audio_bytes: bytes,
        file_name: str,
        language: str | None = None,
        content_type: str = "audio/wav",
    ) -> TranscriptionResponse:
        ...


# ---------------------------------------------------------------------------
# Proxy client
# ---------------------------------------------------------------------------


class ProxyTranscriptionClient:
    """
    Client for the speech-to-text proxy endpoint.

    Args:
        user_id:  Caller identity, sent as the ``userId`` form field.
        endpoint: Proxy URL (defaults to ``AUDIO_ENDPOINT``).
        model:    Model name sent as the ``model`` field.
        timeout:  Request timeout in seconds.
        session:  Optional ``requests.Session`` to reuse connections.
    """

    def __init__(
        self,
        user_id: str | None,
        endpoint: str = AUDIO_ENDPOINT,
        model: str = TRANSCRIPTION_MODEL,
        timeout: float = TRANSCRIPTION_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.user_id = user_id
        self.endpoint = endpoint
        self.model = model
        self.timeout = timeout
        self._http = session or requests

    def transcribe(
        self,
        audio_bytes: bytes,
        file_name: str,
        language: str | None = None,
        content_type: str = "audio/wav",
    ) -> TranscriptionResponse:
        """
        Send one payload for transcription.

        Args:
            audio_bytes:  Payload bytes.
            file_name:    Upload file name, e.g. ``talk_chunk_2.wav``.
            language:     ISO-639-1 hint; None lets the service auto-detect.
            content_type: MIME type of the payload.

        Returns:
            TranscriptionResponse (text untrimmed, language if reported).

        Raises:
            IdentityMissingError: No user_id configured.
            TranscriptionError:   Transport failure or non-2xx reply.
        """
        if not self.user_id:
            raise IdentityMissingError()

        files = {
            "file": (file_name, io.BytesIO(audio_bytes), content_type),
        }
        data = {
            "model": self.model,
            "userId": self.user_id,
        }
        if language:
            data["language"] = language

        try:
            resp = self._http.post(
                self.endpoint,
                files=files,
                data=data,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}") from exc

        payload_text = resp.text or ""
        parsed = _parse_json(payload_text)

        if not resp.ok:
            detail = _error_detail(parsed, payload_text)
            logger.warning(
                "Transcription of %s rejected (HTTP %d): %s",
                file_name, resp.status_code, detail,
            )
            raise TranscriptionError(detail, status_code=resp.status_code)

        if not isinstance(parsed, dict):
            return TranscriptionResponse(text=payload_text)

        text = parsed.get("text")
        lang = parsed.get("language")
        return TranscriptionResponse(
            text=text if isinstance(text, str) else "",
            language=lang if isinstance(lang, str) and lang else None,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_json(payload_text: str) -> Any:
    try:
        return json.loads(payload_text)
    except ValueError:
        return None


def _error_detail(parsed: Any, payload_text: str) -> str:
    """Pick the most useful failure message from an error reply."""
    detail: Any = None
    if isinstance(parsed, dict):
        detail = parsed.get("error") or parsed.get("message")
        # OpenAI-style {"error": {"message": "..."}}
        if isinstance(detail, dict):
            detail = detail.get("message")
    if not detail:
        detail = payload_text
    if not detail or not isinstance(detail, str):
        return _GENERIC_FAILURE
    return detail
