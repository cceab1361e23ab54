"""
audioscribe/audio/wav.py
=========================
WAV Encoder — PCM16 RIFF/WAVE containers for chunk uploads

Responsibility:
    - Serialize float sample buffers (channels x samples) into a standalone
      44-byte-header WAV file with interleaved little-endian 16-bit PCM
    - Read integer PCM WAV bytes back into float sample buffers

Quantization is clamp to [-1.0, 1.0], scale by 32767, truncate toward zero.
Encoding is a pure function: identical input gives identical bytes.

This module does NOT:
    - Resample, mix channels or apply any gain
    - Handle compressed containers (see decoder.py)
"""

import io
import wave

import numpy as np

from audioscribe.errors import EncodeError

PCM16_SCALE: float = 32767.0
PCM16_SAMPLE_WIDTH: int = 2  # bytes
WAV_HEADER_SIZE: int = 44

_DTYPE_MAP = {1: np.uint8, 2: np.dtype("<i2"), 4: np.dtype("<i4")}
_NORM_MAP = {1: 128.0, 2: 32768.0, 4: 2147483648.0}


def is_wav(data: bytes) -> bool:
    """True if *data* starts with a RIFF/WAVE header."""
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """
    Encode float samples as a PCM16 WAV file.

    Args:
        samples:     Array of shape (channels, n). A 1-D array is mono.
        sample_rate: Samples per second per channel.

    Returns:
        WAV bytes: 44-byte header followed by interleaved int16 samples
        (sample 0 of every channel, then sample 1 of every channel, ...).

    Raises:
        EncodeError: If the buffer shape or sample rate is invalid.
    """
    try:
        buf = np.asarray(samples, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"Samples are not numeric: {exc}") from exc

    if buf.ndim == 1:
        buf = buf[np.newaxis, :]
    if buf.ndim != 2 or buf.shape[0] < 1:
        raise EncodeError(
            f"Expected samples of shape (channels, n), got {buf.shape}."
        )
    if int(sample_rate) <= 0:
        raise EncodeError(f"Invalid sample rate: {sample_rate}")

    n_channels = buf.shape[0]
    pcm = quantize_pcm16(buf)
    # (channels, n) -> (n, channels) row-major == interleaved frames
    frames = np.ascontiguousarray(pcm.T).tobytes()

    out = io.BytesIO()
    try:
        with wave.open(out, "wb") as wf:
            wf.setnchannels(n_channels)
            wf.setsampwidth(PCM16_SAMPLE_WIDTH)
            wf.setframerate(int(sample_rate))
            wf.writeframes(frames)
    except wave.Error as exc:
        raise EncodeError(f"Failed to write WAV container: {exc}") from exc
    return out.getvalue()


def quantize_pcm16(samples: np.ndarray) -> np.ndarray:
    """Clamp, scale and truncate float samples to little-endian int16."""
    clean = np.nan_to_num(np.asarray(samples, dtype=np.float64), nan=0.0)
    clipped = np.clip(clean, -1.0, 1.0)
    # astype truncates toward zero
    return (clipped * PCM16_SCALE).astype("<i2")


def decode_wav(data: bytes) -> tuple[np.ndarray, int]:
    """
    Read integer PCM WAV bytes into float32 samples.

    Returns:
        Tuple of (samples with shape (channels, n), sample_rate).

    Raises:
        wave.Error / EOFError: If the bytes are not a readable PCM WAV file.
        ValueError:            If the sample width is unsupported.
    """
    with wave.open(io.BytesIO(data), "rb") as wf:
        sample_rate = wf.getframerate()
        n_channels = wf.getnchannels()
        sampwidth = wf.getsampwidth()
        raw = wf.readframes(wf.getnframes())

    if sampwidth not in _DTYPE_MAP:
        raise ValueError(f"Unsupported WAV sample width: {sampwidth * 8}-bit")

    pcm = np.frombuffer(raw, dtype=_DTYPE_MAP[sampwidth]).astype(np.float32)
    if sampwidth == 1:
        pcm = pcm - 128.0  # 8-bit WAV is unsigned
    pcm = pcm / _NORM_MAP[sampwidth]

    usable = (pcm.size // n_channels) * n_channels
    samples = pcm[:usable].reshape(-1, n_channels).T
    return np.ascontiguousarray(samples), sample_rate


def wav_duration(data: bytes) -> float:
    """Duration in seconds read from a WAV header."""
    with wave.open(io.BytesIO(data), "rb") as wf:
        rate = wf.getframerate()
        if rate <= 0:
            raise ValueError("WAV header has a zero sample rate.")
        return wf.getnframes() / rate
