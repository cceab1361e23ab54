"""
audioscribe/formatting.py
==========================
Human-readable labels for durations, file sizes, chunk time ranges and
language codes. Display only; nothing here feeds back into the pipeline.
"""

import math

# Language options offered by the chat panel when auto-detect is off
LANGUAGE_OPTIONS: dict[str, str] = {
    "no": "Norwegian",
    "en": "English",
    "sv": "Swedish",
    "da": "Danish",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
}

_SIZE_UNITS = ("B", "KB", "MB", "GB")


def _clock(total_seconds: int) -> str:
    hours, rem = divmod(total_seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_chunk_timestamp(seconds: float = 0.0) -> str:
    """Format a chunk boundary as ``m:ss`` (``h:mm:ss`` from one hour on)."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "0:00"
    return _clock(int(seconds))


def format_time_range(start: float, end: float) -> str:
    """Return the ``[start - end]`` prefix used for chunk transcripts."""
    return f"[{format_chunk_timestamp(start)} - {format_chunk_timestamp(end)}]"


def format_duration(seconds: float | None) -> str:
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "unknown"
    return _clock(int(seconds))


def format_file_size(num_bytes: int) -> str:
    """
    Format a byte count with binary units, e.g. ``"0 B"``, ``"1.5 KB"``.

    Bytes are shown without decimals; larger units with one decimal.
    """
    if num_bytes is None or num_bytes <= 0:
        return "0 B"
    exponent = 0
    value = float(num_bytes)
    while value >= 1024 and exponent < len(_SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1
    if exponent == 0:
        return f"{value:.0f} {_SIZE_UNITS[0]}"
    return f"{value:.1f} {_SIZE_UNITS[exponent]}"


def language_label(code: str | None) -> str | None:
    """Map a language code to its display name; unknown codes pass through."""
    if not code:
        return None
    return LANGUAGE_OPTIONS.get(code, code)
