"""
audioscribe/audio/probe.py
===========================
Audio Probe — best-effort duration detection

Responsibility:
    - Read the total duration of an uploaded file without decoding it
    - Report the content type the rest of the pipeline should use

WAV files are read from their header. Everything else, including the
extensible, float and 24-bit WAVs the ``wave`` module rejects, is probed
with ffprobe (via pydub) through a temporary file that is always removed.
A failed probe yields ``duration_seconds=None`` so the orchestrator can
fall back to the file-size heuristic; it never raises.

This module does NOT:
    - Decode samples (see decoder.py)
    - Decide whether to chunk (see audioscribe.pipeline)
"""

import logging
import math
import os
import tempfile
import wave
from dataclasses import dataclass

from pydub.utils import mediainfo

from audioscribe.audio.source import AudioSource, extract_extension
from audioscribe.audio.wav import is_wav, wav_duration
from audioscribe.errors import ProbeError

logger = logging.getLogger("audioscribe.audio.probe")


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of probing one source."""

    duration_seconds: float | None
    content_type: str


def probe_audio(source: AudioSource) -> ProbeResult:
    """
    Determine the duration of *source*, or None when it cannot be read.

    Args:
        source: The uploaded file.

    Returns:
        ProbeResult with the duration (seconds) and effective content type.
    """
    content_type = source.effective_content_type
    try:
        duration = _read_duration(source)
    except ProbeError as exc:
        logger.warning("Duration probe failed for %s: %s", source.name, exc)
        return ProbeResult(duration_seconds=None, content_type=content_type)

    logger.info("Probed %s: %.2fs (%s)", source.name, duration, content_type)
    return ProbeResult(duration_seconds=duration, content_type=content_type)


def _read_duration(source: AudioSource) -> float:
    if not source.data:
        raise ProbeError("source is empty")

    try:
        if is_wav(source.data):
            duration = _wav_header_duration(source)
        else:
            duration = _ffprobe_duration(source.data, extract_extension(source.name))
    except ProbeError:
        raise
    except Exception as exc:
        raise ProbeError(str(exc) or type(exc).__name__) from exc

    if duration is None or not math.isfinite(duration) or duration < 0:
        raise ProbeError(f"unusable duration {duration!r}")
    return duration


def _wav_header_duration(source: AudioSource) -> float:
    """WAV header duration, or ffprobe for WAV variants ``wave`` cannot read."""
    try:
        return wav_duration(source.data)
    except (wave.Error, EOFError, ValueError) as exc:
        logger.info(
            "WAV header of %s not readable by wave (%s), asking ffprobe.",
            source.name, exc,
        )
    return _ffprobe_duration(source.data, extract_extension(source.name) or ".wav")


def _ffprobe_duration(data: bytes, suffix: str) -> float:
    """Write *data* to a temp file and ask ffprobe for its duration."""
    fd, path = tempfile.mkstemp(suffix=suffix or ".bin")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        info = mediainfo(path)
    finally:
        try:
            os.remove(path)
        except OSError:
            logger.debug("Temp probe file already gone: %s", path)

    raw = info.get("duration") if info else None
    if raw in (None, "", "N/A"):
        raise ProbeError("ffprobe reported no duration")
    return float(raw)
