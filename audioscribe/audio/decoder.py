"""
audioscribe/audio/decoder.py
=============================
Audio Decoder — compressed bytes to per-channel float samples

Responsibility:
    - Decode an uploaded audio/video file into a DecodedAudio buffer
      (float32, shape (channels, samples), values in [-1, 1])
    - Read PCM WAV directly; hand every other container to ffmpeg via pydub
    - Optionally resample to a fixed rate

Decoding is CPU-bound and only runs when a file needs chunking. The
``AudioDecoder`` protocol lets callers inject a different backend.

This module does NOT:
    - Split audio into chunks (see chunker.py)
    - Mix channels down or apply any processing beyond optional resampling
"""

import io
import logging
from dataclasses import dataclass
from typing import Protocol

import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from audioscribe.audio.source import AudioSource, extract_extension
from audioscribe.audio.wav import decode_wav, is_wav
from audioscribe.errors import DecodeError

logger = logging.getLogger("audioscribe.audio.decoder")


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass
class DecodedAudio:
    """Decoded sample buffer. ``samples`` has shape (channels, total_samples)."""

    sample_rate: int
    samples: np.ndarray

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def total_samples(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.total_samples / self.sample_rate


class AudioDecoder(Protocol):
    def decode(self, source: AudioSource) -> DecodedAudio:
        ...


# ---------------------------------------------------------------------------
# Default implementation
# ---------------------------------------------------------------------------


class PydubAudioDecoder:
    """
    Decode with the standard ``wave`` module for PCM WAV and pydub/ffmpeg
    for everything else.

    Args:
        target_sample_rate: Resample to this rate when set (Hz).
    """

    def __init__(self, target_sample_rate: int | None = None) -> None:
        self.target_sample_rate = target_sample_rate

    def decode(self, source: AudioSource) -> DecodedAudio:
        """
        Raises:
            DecodeError: Unsupported codec, corrupt stream, or missing ffmpeg.
        """
        if not source.data:
            raise DecodeError("Audio file is empty.")

        decoded = None
        if is_wav(source.data) and self.target_sample_rate is None:
            decoded = self._decode_wav(source)
        if decoded is None:
            decoded = self._decode_with_pydub(source)

        if decoded.sample_rate <= 0 or decoded.samples.ndim != 2 or decoded.channels < 1:
            raise DecodeError(
                f"Decoder produced an unusable buffer "
                f"(rate={decoded.sample_rate}, shape={decoded.samples.shape})."
            )

        logger.info(
            "Decoded %s: %.1fs | %d Hz | %d ch | %d samples",
            source.name, decoded.duration, decoded.sample_rate,
            decoded.channels, decoded.total_samples,
        )
        return decoded

    def _decode_wav(self, source: AudioSource) -> DecodedAudio | None:
        # Non-PCM WAV (float, ADPCM, 24-bit) goes to ffmpeg instead
        try:
            samples, sample_rate = decode_wav(source.data)
        except Exception as exc:
            logger.info("Native WAV read failed for %s (%s) — using ffmpeg.", source.name, exc)
            return None
        return DecodedAudio(sample_rate=sample_rate, samples=samples)

    def _decode_with_pydub(self, source: AudioSource) -> DecodedAudio:
        fmt = extract_extension(source.name).lstrip(".") or None
        try:
            audio = AudioSegment.from_file(io.BytesIO(source.data), format=fmt)
        except CouldntDecodeError as exc:
            raise DecodeError(f"Audio file is corrupt or could not be decoded: {exc}") from exc
        except Exception as exc:
            raise DecodeError(f"Unexpected error decoding audio: {exc}") from exc

        if self.target_sample_rate and audio.frame_rate != self.target_sample_rate:
            audio = audio.set_frame_rate(self.target_sample_rate)

        return segment_to_decoded(audio)


def segment_to_decoded(audio: AudioSegment) -> DecodedAudio:
    """Convert a pydub AudioSegment into a float32 (channels, n) buffer."""
    n_channels = audio.channels
    if n_channels < 1:
        raise DecodeError("Decoded audio has no channels.")

    raw = np.array(audio.get_array_of_samples(), dtype=np.float32)
    # pydub exposes signed samples for every width
    raw = raw / float(1 << (8 * audio.sample_width - 1))

    usable = (raw.size // n_channels) * n_channels
    samples = np.ascontiguousarray(raw[:usable].reshape(-1, n_channels).T)
    return DecodedAudio(sample_rate=int(audio.frame_rate), samples=samples)
