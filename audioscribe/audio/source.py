"""
audioscribe/audio/source.py
============================
Audio Source — input handle and file-type validation

Responsibility:
    - Hold the caller's uploaded file (name, bytes, declared MIME type)
    - Decide whether a file is a supported audio/video upload
    - Infer a MIME type from the extension when none was declared

This module does NOT:
    - Decode, probe or transform audio
    - Touch the network
"""

from dataclasses import dataclass

from audioscribe.errors import AudioValidationError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUPPORTED_MIME_TYPES: frozenset[str] = frozenset({
    "audio/wav",
    "audio/wave",
    "audio/x-wav",
    "audio/mpeg",
    "audio/mp3",
    "audio/mp4",
    "audio/x-m4a",
    "audio/aac",
    "audio/ogg",
    "audio/ogg; codecs=opus",
    "audio/opus",
    "audio/webm",
    "video/mp4",
    "video/webm",
})

SUPPORTED_EXTENSIONS: tuple[str, ...] = (
    ".wav", ".mp3", ".m4a", ".aac", ".ogg", ".opus", ".mp4", ".webm",
)

_EXTENSION_MIME_MAP: dict[str, str] = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".ogg": "audio/ogg",
    ".opus": "audio/opus",
    ".aac": "audio/aac",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}

DEFAULT_MIME_TYPE = "audio/wav"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AudioSource:
    """An uploaded audio/video file. Never mutated by the pipeline."""

    name: str
    data: bytes
    content_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def base_name(self) -> str:
        """File name without its last extension (``"audio"`` if empty)."""
        return strip_extension(self.name) or "audio"

    @property
    def effective_content_type(self) -> str:
        return self.content_type or infer_content_type(self.name)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def is_supported_audio(name: str, content_type: str | None = None) -> bool:
    """
    Return True if the file looks like something we can transcribe.

    The declared MIME type wins when it is recognised; otherwise the file
    extension decides.
    """
    if content_type and content_type.lower() in SUPPORTED_MIME_TYPES:
        return True
    return extract_extension(name) in SUPPORTED_EXTENSIONS


def infer_content_type(name: str) -> str:
    """Guess a MIME type from the file extension, defaulting to WAV."""
    return _EXTENSION_MIME_MAP.get(extract_extension(name), DEFAULT_MIME_TYPE)


def validate_source(source: AudioSource) -> None:
    """
    Check that an upload can enter the pipeline.

    Raises:
        AudioValidationError: Missing name, empty content, or unsupported type.
    """
    if not source.name:
        raise AudioValidationError("Filename is missing.")
    if not source.data:
        raise AudioValidationError("Audio file is empty.")
    if not is_supported_audio(source.name, source.content_type):
        raise AudioValidationError(
            f"Unsupported file type '{extract_extension(source.name) or source.content_type}'. "
            f"Allowed: {', '.join(SUPPORTED_EXTENSIONS)}"
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_extension(name: str) -> str:
    if not name or "." not in name:
        return name or ""
    return name[: name.rfind(".")]


def extract_extension(filename: str) -> str:
    """Return lowercase file extension including the dot, e.g. '.wav'."""
    if not filename:
        return ""
    dot_index = filename.rfind(".")
    if dot_index == -1:
        return ""
    return filename[dot_index:].lower()
