"""
audioscribe/errors.py
======================
Error taxonomy for the transcription pipeline.

Recovery policy (enforced by audioscribe.pipeline):
    - ProbeError:            non-fatal, size heuristic is used instead
    - DecodeError:           fatal to chunking, whole-file fallback
    - EncodeError:           fails one chunk only
    - TranscriptionError:    fails one chunk (chunked) or the job (single)
    - TranscriptionConfigError: as TranscriptionError, never retried
    - IdentityMissingError:  fails the job before any network call
"""


class AudioscribeError(Exception):
    """Base class for every error raised by this package."""
    pass


class AudioValidationError(AudioscribeError):
    """Raised when an uploaded file is empty, unnamed or of an unsupported type."""
    pass


class ProbeError(AudioscribeError):
    """Raised when duration metadata cannot be read from a source."""
    pass


class DecodeError(AudioscribeError):
    """Raised when audio bytes cannot be decoded into samples."""
    pass


class EncodeError(AudioscribeError):
    """Raised when a sample buffer cannot be written as a WAV container."""
    pass


class TranscriptionError(AudioscribeError):
    """
    Raised when the remote speech-to-text service rejects or fails a request.

    ``status_code`` is the HTTP status of the failed response, or None when
    the request never produced one (connection error, timeout).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TranscriptionConfigError(TranscriptionError):
    """Raised when a transcription backend is misconfigured (e.g. no API key)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=None)


class IdentityMissingError(AudioscribeError):
    """Raised when no caller identity is available for a transcription call."""

    def __init__(self, message: str = "Sign in required") -> None:
        super().__init__(message)


class TranscriptionCancelled(AudioscribeError):
    """Raised when a job is cancelled between chunk dispatches."""
    pass
