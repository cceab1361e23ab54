"""
audioscribe/retry.py
=====================
Retry policy for transcription calls.

Wraps a single ``TranscriptionClient.transcribe`` call and retries it on
transient failures (429 rate-limit, 5xx, or a transport error with no HTTP
status) with exponential back-off. Everything else, including a
misconfigured backend, is re-raised at once.

The pipeline applies this per chunk; clients themselves never retry.

Usage::

    from audioscribe.retry import call_with_retry

    response = call_with_retry(
        client.transcribe,
        chunk.encoded_bytes,
        "talk_chunk_1.wav",
        max_retries=2,
    )
"""

import logging
import os
import time
from typing import Any, Callable

from dotenv import load_dotenv

from audioscribe.errors import TranscriptionConfigError, TranscriptionError

load_dotenv()

logger = logging.getLogger("audioscribe.retry")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MAX_RETRIES: int = int(os.environ.get("TRANSCRIPTION_MAX_RETRIES", "0"))
BASE_DELAY: float = 1.0       # seconds, first back-off delay
MAX_DELAY: float = 30.0       # cap so we don't wait forever
BACKOFF_FACTOR: float = 2.0   # exponential multiplier

# HTTP status codes worth retrying on
_RETRYABLE_STATUS_CODES: set[int] = {429, 500, 502, 503, 504}


def is_retryable(exc: Exception) -> bool:
    """Return True if *exc* is a transient transcription failure."""
    if not isinstance(exc, TranscriptionError):
        return False
    if isinstance(exc, TranscriptionConfigError):
        return False
    if exc.status_code is None:
        return True
    return exc.status_code in _RETRYABLE_STATUS_CODES


def call_with_retry(
    fn: Callable[..., Any],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    **kwargs: Any,
) -> Any:
    """
    Call ``fn(*args, **kwargs)``, retrying transient failures.

    Args:
        fn:          The callable to invoke.
        max_retries: Extra attempts after the first (0 disables retrying).

    Returns:
        Whatever *fn* returns.

    Raises:
        The last exception if all attempts fail, or the first
        non-retryable one.
    """
    delay = BASE_DELAY

    for attempt in range(max_retries + 1):
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            if not is_retryable(exc) or attempt >= max_retries:
                if attempt > 0:
                    logger.error(
                        "Transcription failed after %d attempts: %s",
                        attempt + 1, exc,
                    )
                raise

            logger.warning(
                "Transcription failed (attempt %d/%d): %s — retrying in %.1fs",
                attempt + 1,
                max_retries + 1,
                exc,
                delay,
            )
            time.sleep(delay)
            delay = min(delay * BACKOFF_FACTOR, MAX_DELAY)

    raise RuntimeError("unreachable")  # pragma: no cover
