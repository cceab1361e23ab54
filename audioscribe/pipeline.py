"""
audioscribe/pipeline.py
========================
Chunked Transcription Orchestrator

Responsibility:
    1. Decide whether a file needs chunking (duration, else size)
    2. Short files: one upload of the original bytes (single-shot)
    3. Long files: decode → slice → encode each chunk as WAV → transcribe
       chunks one at a time, in order
    4. Isolate per-chunk failures: a failed chunk becomes an inline
       ``[Error: ...]`` marker and processing continues
    5. Fall back to single-shot when decoding/slicing fails before the
       first chunk is sent
    6. Merge segments in chunk order with ``[m:ss - m:ss]`` labels and
       settle on a single detected language

Job state machine:
    pending → deciding → single-shot            → done | failed
                       → chunking → transcribing → done | failed | cancelled

Only IdentityMissingError and a failed single-shot upload fail a job. Any
error raised while encoding or uploading one chunk is recorded on that
chunk and processing moves on.

This module does NOT:
    - Talk HTTP itself (see audioscribe.stt)
    - Persist transcripts or cache anything between jobs
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator

from dotenv import load_dotenv

from audioscribe.audio.chunker import (
    DEFAULT_CHUNK_DURATION_SEC,
    ChunkSlice,
    count_chunks,
    encode_chunk,
    iter_chunk_slices,
)
from audioscribe.audio.decoder import AudioDecoder, PydubAudioDecoder
from audioscribe.audio.probe import ProbeResult, probe_audio
from audioscribe.audio.source import AudioSource, validate_source
from audioscribe.errors import (
    DecodeError,
    IdentityMissingError,
    TranscriptionCancelled,
)
from audioscribe.formatting import format_duration, format_file_size, format_time_range
from audioscribe.retry import MAX_RETRIES, call_with_retry
from audioscribe.stt.client import TranscriptionClient
from audioscribe.stt.router import get_transcription_client

load_dotenv()

logger = logging.getLogger("audioscribe.pipeline")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Used only when the duration cannot be probed
DEFAULT_SIZE_THRESHOLD_BYTES: int = int(
    os.environ.get("CHUNK_SIZE_THRESHOLD_BYTES", str(8 * 1024 * 1024))
)

AUTO_LANGUAGE = "auto"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class JobStatus(str, Enum):
    PENDING = "pending"
    DECIDING = "deciding"
    CHUNKING = "chunking"
    TRANSCRIBING = "transcribing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ChunkProgress:
    current: int
    total: int


@dataclass(frozen=True)
class TranscriptionResult:
    """Final output handed back to the chat panel."""

    text: str
    language: str


@dataclass
class TranscriptSegment:
    """
    Outcome of one chunk (or of the whole file in single-shot mode).

    For failed segments ``text`` holds the error message.
    """

    chunk_index: int
    start_time: float
    end_time: float
    text: str
    language: str | None = None
    failed: bool = False
    label: str = ""

    def render(self) -> str:
        body = f"[Error: {self.text}]" if self.failed else self.text
        if not self.label:
            return body
        return f"{self.label} {body}"


@dataclass
class TranscriptionJob:
    """Orchestration state for one file. Mutated only by ChunkOrchestrator."""

    source: AudioSource
    language_hint: str | None = None
    mode: str | None = None  # "single" | "chunked"
    status: JobStatus = JobStatus.PENDING
    status_text: str = ""
    duration: float | None = None
    progress: ChunkProgress = ChunkProgress(0, 0)
    segments: list[TranscriptSegment] = field(default_factory=list)
    detected_languages: set[str] = field(default_factory=set)
    error: Exception | None = None

    @property
    def merged_text(self) -> str:
        """Segments in chunk order, blank-line separated. Empty chunks are left out."""
        ordered = sorted(self.segments, key=lambda s: s.chunk_index)
        return "\n\n".join(s.render() for s in ordered if s.failed or s.text)

    @property
    def final_language(self) -> str:
        """
        The one language every successful segment agreed on, else ``"auto"``.

        Single-shot jobs whose response carried no language report the
        caller's hint instead. Chunked jobs never do: a hinted chunked job
        with no detected language reports ``"auto"``.
        """
        if len(self.detected_languages) == 1:
            return next(iter(self.detected_languages))
        if self.mode == "single" and self.language_hint:
            return self.language_hint
        return AUTO_LANGUAGE

    def result(self) -> TranscriptionResult:
        return TranscriptionResult(text=self.merged_text, language=self.final_language)


@dataclass
class _ChunkPlan:
    total: int
    base_name: str
    slices: Iterator[ChunkSlice]
    dispatched: int = 0


# ---------------------------------------------------------------------------
# Decision rule
# ---------------------------------------------------------------------------


def should_chunk(
    duration: float | None,
    size: int,
    chunk_duration: float = DEFAULT_CHUNK_DURATION_SEC,
    size_threshold: int = DEFAULT_SIZE_THRESHOLD_BYTES,
) -> bool:
    """Duration decides when known; otherwise fall back to the byte size."""
    if duration is not None:
        return duration > chunk_duration
    return size > size_threshold


def normalize_language_hint(language: str | None) -> str | None:
    """Empty or ``"auto"`` means let the service detect the language."""
    if not language:
        return None
    language = language.strip()
    if not language or language.lower() == AUTO_LANGUAGE:
        return None
    return language


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ChunkOrchestrator:
    """
    Drives one transcription job at a time.

    Args:
        client:         TranscriptionClient used for every upload.
        decoder:        AudioDecoder for the chunked path.
        prober:         Duration probe, ``AudioSource -> ProbeResult``.
        chunk_duration: Chunk length in seconds.
        size_threshold: Byte size above which files of unknown duration
                        are chunked.
        max_retries:    Retries per upload for transient failures.
        on_progress:    Called with ChunkProgress before each chunk upload.
        on_status:      Called with a display string on every status change.
    """

    def __init__(
        self,
        client: TranscriptionClient,
        decoder: AudioDecoder | None = None,
        prober: Callable[[AudioSource], ProbeResult] = probe_audio,
        chunk_duration: float = DEFAULT_CHUNK_DURATION_SEC,
        size_threshold: int = DEFAULT_SIZE_THRESHOLD_BYTES,
        max_retries: int = MAX_RETRIES,
        on_progress: Callable[[ChunkProgress], None] | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> None:
        self.client = client
        self.decoder = decoder or PydubAudioDecoder()
        self.prober = prober
        self.chunk_duration = chunk_duration
        self.size_threshold = size_threshold
        self.max_retries = max_retries
        self.on_progress = on_progress
        self.on_status = on_status

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(
        self,
        source: AudioSource,
        language: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> TranscriptionJob:
        """
        Transcribe *source* and return the finished job.

        Raises:
            IdentityMissingError:   No caller identity on the client.
            TranscriptionError:     The single-shot upload failed.
            TranscriptionCancelled: *cancel_event* was set mid-job.
        """
        job = TranscriptionJob(source=source, language_hint=normalize_language_hint(language))
        self._set_status(job, "Preparing audio...")

        try:
            self._execute(job, cancel_event)
        except TranscriptionCancelled:
            job.status = JobStatus.CANCELLED
            self._set_status(job, "Transcription cancelled")
            logger.info(
                "Job for %s cancelled after %d segment(s).",
                source.name, len(job.segments),
            )
            raise
        except Exception as exc:
            job.status = JobStatus.FAILED
            job.error = exc
            self._set_status(job, f"Transcription failed: {exc}")
            logger.error("Transcription of %s failed: %s", source.name, exc)
            raise

        job.status = JobStatus.DONE
        self._set_status(job, "Transcription complete")
        failed = sum(1 for s in job.segments if s.failed)
        logger.info(
            "Transcription of %s done: mode=%s, %d segment(s), %d failed, language=%s",
            source.name, job.mode, len(job.segments), failed, job.final_language,
        )
        return job

    def _execute(self, job: TranscriptionJob, cancel_event: threading.Event | None) -> None:
        if not getattr(self.client, "user_id", True):
            raise IdentityMissingError()

        job.status = JobStatus.DECIDING
        self._set_status(job, "Checking audio duration...")
        probe = self.prober(job.source)
        job.duration = probe.duration_seconds
        chunked = should_chunk(
            job.duration, job.source.size, self.chunk_duration, self.size_threshold,
        )
        logger.info(
            "Job for %s: %s, duration %s → %s",
            job.source.name,
            format_file_size(job.source.size),
            format_duration(job.duration),
            "chunked" if chunked else "single-shot",
        )

        if chunked:
            self._run_chunked(job, probe, cancel_event)
        else:
            self._run_single(job, probe)

    # ------------------------------------------------------------------
    # Single-shot path
    # ------------------------------------------------------------------

    def _run_single(self, job: TranscriptionJob, probe: ProbeResult) -> None:
        job.mode = "single"
        job.status = JobStatus.TRANSCRIBING
        self._set_status(job, "Uploading audio...")

        response = call_with_retry(
            self.client.transcribe,
            job.source.data,
            job.source.name,
            language=job.language_hint,
            content_type=probe.content_type,
            max_retries=self.max_retries,
        )

        job.segments.append(
            TranscriptSegment(
                chunk_index=0,
                start_time=0.0,
                end_time=job.duration or 0.0,
                text=(response.text or "").strip(),
                language=response.language,
            )
        )
        if response.language:
            job.detected_languages.add(response.language)

    # ------------------------------------------------------------------
    # Chunked path
    # ------------------------------------------------------------------

    def _run_chunked(
        self,
        job: TranscriptionJob,
        probe: ProbeResult,
        cancel_event: threading.Event | None,
    ) -> None:
        job.mode = "chunked"
        job.status = JobStatus.CHUNKING
        self._set_status(job, "Chunking audio...")

        try:
            plan = self._plan_chunks(job.source)
        except Exception as exc:
            self._fall_back_to_single(job, probe, exc)
            return

        job.status = JobStatus.TRANSCRIBING
        job.progress = ChunkProgress(0, plan.total)
        try:
            while self.process_next_chunk(job, plan, cancel_event):
                pass
        except (TranscriptionCancelled, IdentityMissingError):
            raise
        except Exception as exc:
            if plan.dispatched:
                raise
            self._fall_back_to_single(job, probe, exc)

    def _fall_back_to_single(
        self,
        job: TranscriptionJob,
        probe: ProbeResult,
        exc: Exception,
    ) -> None:
        logger.warning(
            "Chunking %s failed before any upload (%s) — falling back to single-shot.",
            job.source.name, exc,
        )
        self._set_status(job, "Chunking failed, retrying as a single upload...")
        self._run_single(job, probe)

    def _plan_chunks(self, source: AudioSource) -> _ChunkPlan:
        decoded = self.decoder.decode(source)
        if decoded.total_samples == 0:
            raise DecodeError("Decoded audio contains no samples.")

        total = count_chunks(decoded.total_samples, decoded.sample_rate, self.chunk_duration)
        # The generator holds the only reference to the decoded buffer from here on
        return _ChunkPlan(
            total=total,
            base_name=source.base_name,
            slices=iter_chunk_slices(decoded, self.chunk_duration),
        )

    def process_next_chunk(
        self,
        job: TranscriptionJob,
        plan: _ChunkPlan,
        cancel_event: threading.Event | None = None,
    ) -> bool:
        """
        Encode and transcribe the next chunk of *plan*.

        Returns:
            False once every chunk has been processed, True otherwise.

        Raises:
            TranscriptionCancelled: *cancel_event* is set.
            IdentityMissingError:   Propagated from the client.
        """
        chunk_slice = next(plan.slices, None)
        if chunk_slice is None:
            return False

        if cancel_event is not None and cancel_event.is_set():
            raise TranscriptionCancelled(
                f"Cancelled before chunk {chunk_slice.index + 1}/{plan.total}"
            )

        current = chunk_slice.index + 1
        start, end = chunk_slice.start_time, chunk_slice.end_time
        # A lone chunk reads exactly like a single-shot transcript
        label = format_time_range(start, end) if plan.total > 1 else ""
        file_name = f"{plan.base_name}_chunk_{current}.wav"

        job.progress = ChunkProgress(current, plan.total)
        if self.on_progress is not None:
            self.on_progress(job.progress)
        self._set_status(job, f"Processing chunk {current}/{plan.total}...")
        plan.dispatched += 1

        try:
            chunk = encode_chunk(chunk_slice)
            del chunk_slice
            response = call_with_retry(
                self.client.transcribe,
                chunk.encoded_bytes,
                file_name,
                language=job.language_hint,
                content_type="audio/wav",
                max_retries=self.max_retries,
            )
        except (IdentityMissingError, TranscriptionCancelled):
            raise
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc) or "unknown error"
            logger.warning(
                "Chunk %d/%d (%.1fs–%.1fs) failed: %s — continuing.",
                current, plan.total, start, end, message,
            )
            job.segments.append(
                TranscriptSegment(
                    chunk_index=current - 1,
                    start_time=start,
                    end_time=end,
                    text=message,
                    failed=True,
                    label=label,
                )
            )
            self._set_status(job, f"Chunk {current}/{plan.total} failed")
            return True

        text = (response.text or "").strip()
        job.segments.append(
            TranscriptSegment(
                chunk_index=current - 1,
                start_time=start,
                end_time=end,
                text=text,
                language=response.language,
                label=label,
            )
        )
        if response.language:
            job.detected_languages.add(response.language)

        logger.info(
            "Chunk %d/%d (%.1fs–%.1fs) transcribed: %d chars, language=%s",
            current, plan.total, start, end, len(text), response.language,
        )
        self._set_status(job, f"Chunk {current}/{plan.total} complete")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_status(self, job: TranscriptionJob, text: str) -> None:
        job.status_text = text
        if self.on_status is not None:
            self.on_status(text)


# ---------------------------------------------------------------------------
# Convenience entry point
# ---------------------------------------------------------------------------


def transcribe_file(
    source: AudioSource,
    user_id: str | None,
    language: str | None = None,
    backend: str | None = None,
    cancel_event: threading.Event | None = None,
    on_progress: Callable[[ChunkProgress], None] | None = None,
    on_status: Callable[[str], None] | None = None,
) -> TranscriptionJob:
    """
    Validate *source*, build a client for *user_id* and run one job.

    Raises:
        IdentityMissingError: *user_id* is empty (checked before any I/O).
        AudioValidationError: Empty, unnamed or unsupported upload.
        TranscriptionError:   Single-shot upload failed.
    """
    if not user_id:
        raise IdentityMissingError()
    validate_source(source)

    client = get_transcription_client(user_id, backend=backend)
    orchestrator = ChunkOrchestrator(
        client,
        on_progress=on_progress,
        on_status=on_status,
    )
    return orchestrator.run(source, language=language, cancel_event=cancel_event)
