"""
audioscribe/audio/chunker.py
=============================
Chunk Slicer — fixed-duration splitting of decoded audio

Responsibility:
    - Split a DecodedAudio buffer into consecutive fixed-duration slices
      (default 120 s; the last slice may be shorter)
    - Copy every channel's sample range unchanged into each slice
    - Wrap a slice as a standalone WAV AudioChunk for upload

Slices are produced lazily, in index order, and cover [0, total_samples)
exactly once: no gaps, no overlap.

This module does NOT:
    - Perform STT or any network calls
    - Look for silence boundaries or add overlap between chunks
    - Mix, resample or otherwise modify samples
"""

import logging
import math
import os
from dataclasses import dataclass
from typing import Iterator

import numpy as np
from dotenv import load_dotenv

from audioscribe.audio.decoder import DecodedAudio
from audioscribe.audio.wav import encode_wav
from audioscribe.errors import EncodeError

load_dotenv()

logger = logging.getLogger("audioscribe.audio.chunker")

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_DURATION_SEC: float = float(
    os.environ.get("CHUNK_DURATION_SECONDS", "120")
)


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass
class ChunkSlice:
    """Raw samples for one chunk, shape (channels, end_sample - start_sample)."""

    index: int
    start_sample: int
    end_sample: int
    sample_rate: int
    samples: np.ndarray

    @property
    def start_time(self) -> float:
        return self.start_sample / self.sample_rate

    @property
    def end_time(self) -> float:
        return self.end_sample / self.sample_rate


@dataclass(frozen=True)
class AudioChunk:
    """A chunk ready for upload: WAV bytes plus its place in the file."""

    index: int
    start_time: float
    end_time: float
    encoded_bytes: bytes


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def samples_per_chunk(sample_rate: int, chunk_duration: float) -> int:
    chunk_samples = int(chunk_duration * sample_rate)
    if chunk_samples <= 0:
        raise ValueError(
            f"Chunk duration {chunk_duration}s at {sample_rate} Hz "
            "gives an empty chunk."
        )
    return chunk_samples


def count_chunks(
    total_samples: int,
    sample_rate: int,
    chunk_duration: float = DEFAULT_CHUNK_DURATION_SEC,
) -> int:
    """Number of chunks for a buffer: ceil(total / chunk), at least 1."""
    chunk_samples = samples_per_chunk(sample_rate, chunk_duration)
    return max(math.ceil(total_samples / chunk_samples), 1)


def iter_chunk_slices(
    decoded: DecodedAudio,
    chunk_duration: float = DEFAULT_CHUNK_DURATION_SEC,
) -> Iterator[ChunkSlice]:
    """
    Lazily yield consecutive slices of *decoded*.

    Chunk *i* covers samples ``[i * chunk_samples,
    min((i + 1) * chunk_samples, total_samples))``. Each slice owns a copy
    of its range, so the caller may drop earlier slices as it goes.

    Raises:
        ValueError: If the chunk duration rounds to zero samples.
    """
    sample_rate = decoded.sample_rate
    total_samples = decoded.total_samples
    chunk_samples = samples_per_chunk(sample_rate, chunk_duration)
    total_chunks = count_chunks(total_samples, sample_rate, chunk_duration)

    logger.info(
        "Slicing %.1fs of audio into %d chunk(s) of %.1fs (%d ch, %d Hz).",
        decoded.duration, total_chunks, chunk_duration,
        decoded.channels, sample_rate,
    )

    for idx in range(total_chunks):
        start = idx * chunk_samples
        end = min(start + chunk_samples, total_samples)
        yield ChunkSlice(
            index=idx,
            start_sample=start,
            end_sample=end,
            sample_rate=sample_rate,
            samples=decoded.samples[:, start:end].copy(),
        )


def encode_chunk(chunk_slice: ChunkSlice) -> AudioChunk:
    """
    Encode one slice as a standalone WAV AudioChunk.

    Raises:
        EncodeError: If the slice cannot be written as WAV.
    """
    try:
        wav_bytes = encode_wav(chunk_slice.samples, chunk_slice.sample_rate)
    except EncodeError:
        raise
    except Exception as exc:
        raise EncodeError(f"Failed to encode chunk {chunk_slice.index}: {exc}") from exc

    return AudioChunk(
        index=chunk_slice.index,
        start_time=chunk_slice.start_time,
        end_time=chunk_slice.end_time,
        encoded_bytes=wav_bytes,
    )
