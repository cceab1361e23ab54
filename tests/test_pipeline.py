"""
tests/test_pipeline.py
=======================
Orchestrator Tests — chunking decision, single-shot, chunked path,
failure isolation, fallback, merge and language consensus

Test categories:
    1. Decision rule (duration authoritative, size fallback)
    2. Single-shot path
    3. Chunked path (ordering, labels, progress, file names)
    4. Partial failure isolation and whole-file fallback
    5. Language consensus
    6. Cancellation and identity
    7. Display formatting

All tests are OFFLINE — the transcription client is a fake; audio is
synthetic WAV at a low sample rate so no ffmpeg is needed.
"""

import os
import sys
import threading
import unittest
from unittest.mock import patch

import numpy as np

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from audioscribe.audio.chunker import encode_chunk
from audioscribe.audio.decoder import DecodedAudio
from audioscribe.audio.probe import ProbeResult
from audioscribe.audio.source import AudioSource
from audioscribe.audio.wav import encode_wav
from audioscribe.errors import (
    AudioValidationError,
    DecodeError,
    EncodeError,
    IdentityMissingError,
    TranscriptionCancelled,
    TranscriptionError,
)
from audioscribe.formatting import (
    format_chunk_timestamp,
    format_duration,
    format_file_size,
    format_time_range,
    language_label,
)
from audioscribe.pipeline import (
    ChunkOrchestrator,
    ChunkProgress,
    JobStatus,
    TranscriptSegment,
    normalize_language_hint,
    should_chunk,
    transcribe_file,
)
from audioscribe.stt.client import TranscriptionResponse

SAMPLE_RATE = 100  # Hz, keeps synthetic files tiny


# ===================================================================
# Test fixtures
# ===================================================================


class FakeClient:
    """
    Scripted TranscriptionClient.

    ``outcomes`` maps a call number (0-based) to a TranscriptionResponse or
    an exception; unscripted calls return ``"text <n>"`` with ``default_language``.
    """

    def __init__(self, outcomes=None, default_language="en", user_id="user-1"):
        self.user_id = user_id
        self.outcomes = outcomes or {}
        self.default_language = default_language
        self.calls = []

    def transcribe(self, audio_bytes, file_name, language=None, content_type="audio/wav"):
        n = len(self.calls)
        self.calls.append({
            "audio_bytes": audio_bytes,
            "file_name": file_name,
            "language": language,
            "content_type": content_type,
        })
        outcome = self.outcomes.get(n)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        return TranscriptionResponse(text=f" text {n} ", language=self.default_language)


class FailingDecoder:
    def __init__(self, exc=None):
        self.exc = exc or DecodeError("unsupported container")
        self.calls = 0

    def decode(self, source):
        self.calls += 1
        raise self.exc


class StaticDecoder:
    def __init__(self, decoded):
        self.decoded = decoded

    def decode(self, source):
        return self.decoded


def _wav_source(seconds: float, name: str = "meeting.wav", channels: int = 1) -> AudioSource:
    n = int(seconds * SAMPLE_RATE)
    t = np.arange(n, dtype=np.float32) / SAMPLE_RATE
    samples = np.stack([0.3 * np.sin(2 * np.pi * (ch + 1) * t) for ch in range(channels)])
    return AudioSource(name=name, data=encode_wav(samples, SAMPLE_RATE), content_type="audio/wav")


def _fixed_probe(duration, content_type="audio/mpeg"):
    return lambda source: ProbeResult(duration_seconds=duration, content_type=content_type)


# ===================================================================
# 1. Decision rule
# ===================================================================


class TestShouldChunk(unittest.TestCase):

    def test_duration_is_authoritative(self):
        self.assertTrue(should_chunk(121.0, 10, 120, 8 * 1024 * 1024))
        self.assertFalse(should_chunk(120.0, 50 * 1024 * 1024, 120, 8 * 1024 * 1024))

    def test_size_fallback_when_duration_unknown(self):
        self.assertFalse(should_chunk(None, 2 * 1024 * 1024, 120, 8 * 1024 * 1024))
        self.assertFalse(should_chunk(None, 8 * 1024 * 1024, 120, 8 * 1024 * 1024))
        self.assertTrue(should_chunk(None, 8 * 1024 * 1024 + 1, 120, 8 * 1024 * 1024))

    def test_language_hint_normalization(self):
        self.assertIsNone(normalize_language_hint(None))
        self.assertIsNone(normalize_language_hint(""))
        self.assertIsNone(normalize_language_hint(" AUTO "))
        self.assertEqual(normalize_language_hint(" no "), "no")


# ===================================================================
# 2. Single-shot path
# ===================================================================


class TestSingleShot(unittest.TestCase):

    def test_small_file_without_duration(self):
        """45 s, 2 MB, duration unknown → one call, one unlabelled segment."""
        source = AudioSource(name="memo.mp3", data=b"\x00" * (2 * 1024 * 1024))
        client = FakeClient()
        decoder = FailingDecoder()
        orchestrator = ChunkOrchestrator(client, decoder=decoder, prober=_fixed_probe(None))

        job = orchestrator.run(source)

        self.assertEqual(len(client.calls), 1)
        self.assertEqual(decoder.calls, 0)
        self.assertEqual(client.calls[0]["file_name"], "memo.mp3")
        self.assertEqual(client.calls[0]["content_type"], "audio/mpeg")
        self.assertIs(client.calls[0]["audio_bytes"], source.data)
        self.assertEqual(job.mode, "single")
        self.assertEqual(job.status, JobStatus.DONE)
        self.assertEqual(len(job.segments), 1)
        self.assertEqual(job.segments[0].label, "")
        self.assertEqual(job.result().text, "text 0")
        self.assertEqual(job.result().language, "en")

    def test_short_wav_by_duration(self):
        client = FakeClient()
        job = ChunkOrchestrator(client).run(_wav_source(45))
        self.assertEqual(job.mode, "single")
        self.assertAlmostEqual(job.segments[0].end_time, 45.0)

    def test_language_falls_back_to_hint_then_auto(self):
        client = FakeClient(default_language=None)
        job = ChunkOrchestrator(client, prober=_fixed_probe(10.0)).run(
            AudioSource(name="a.mp3", data=b"x"), language="no",
        )
        self.assertEqual(client.calls[0]["language"], "no")
        self.assertEqual(job.result().language, "no")

        job = ChunkOrchestrator(FakeClient(default_language=None), prober=_fixed_probe(10.0)).run(
            AudioSource(name="a.mp3", data=b"x"),
        )
        self.assertEqual(job.result().language, "auto")

    def test_status_text_follows_each_phase(self):
        statuses = []
        ChunkOrchestrator(FakeClient(), prober=_fixed_probe(30.0), on_status=statuses.append).run(
            AudioSource(name="a.mp3", data=b"x"),
        )
        self.assertEqual(statuses, [
            "Preparing audio...",
            "Checking audio duration...",
            "Uploading audio...",
            "Transcription complete",
        ])

    def test_single_shot_error_fails_job(self):
        client = FakeClient(outcomes={0: TranscriptionError("quota exceeded", status_code=403)})
        statuses = []
        orchestrator = ChunkOrchestrator(client, prober=_fixed_probe(30.0), on_status=statuses.append)

        with self.assertRaises(TranscriptionError):
            orchestrator.run(AudioSource(name="a.mp3", data=b"x"))
        self.assertEqual(statuses[-1], "Transcription failed: quota exceeded")


# ===================================================================
# 3. Chunked path
# ===================================================================


class TestChunked(unittest.TestCase):

    def test_five_minute_file_gives_three_ordered_chunks(self):
        client = FakeClient()
        job = ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300))

        self.assertEqual(job.mode, "chunked")
        self.assertEqual(job.status, JobStatus.DONE)
        self.assertEqual(
            [(s.start_time, s.end_time) for s in job.segments],
            [(0.0, 120.0), (120.0, 240.0), (240.0, 300.0)],
        )
        self.assertEqual(
            job.result().text,
            "[0:00 - 2:00] text 0\n\n[2:00 - 4:00] text 1\n\n[4:00 - 5:00] text 2",
        )

    def test_chunk_uploads_are_wav_with_derived_names(self):
        client = FakeClient()
        ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300, name="board.meeting.wav"))

        self.assertEqual(
            [c["file_name"] for c in client.calls],
            ["board.meeting_chunk_1.wav", "board.meeting_chunk_2.wav", "board.meeting_chunk_3.wav"],
        )
        for call in client.calls:
            self.assertEqual(call["content_type"], "audio/wav")
            self.assertEqual(call["audio_bytes"][:4], b"RIFF")
        # last chunk: 60 s mono at 100 Hz → 6000 samples → 12000 bytes payload
        self.assertEqual(len(client.calls[2]["audio_bytes"]), 44 + 12000)

    def test_stereo_chunks_keep_both_channels(self):
        client = FakeClient()
        ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(130, channels=2))
        channels = int.from_bytes(client.calls[0]["audio_bytes"][22:24], "little")
        self.assertEqual(channels, 2)

    def test_progress_reported_in_order_before_dispatch(self):
        events = []
        client = FakeClient()
        original = client.transcribe

        def _transcribe(*args, **kwargs):
            events.append(("call", len(client.calls) + 1))
            return original(*args, **kwargs)

        client.transcribe = _transcribe
        ChunkOrchestrator(
            client,
            chunk_duration=120,
            on_progress=lambda p: events.append(("progress", p.current, p.total)),
        ).run(_wav_source(300))

        self.assertEqual(events, [
            ("progress", 1, 3), ("call", 1),
            ("progress", 2, 3), ("call", 2),
            ("progress", 3, 3), ("call", 3),
        ])

    def test_status_text_per_chunk(self):
        statuses = []
        ChunkOrchestrator(FakeClient(), chunk_duration=120, on_status=statuses.append).run(
            _wav_source(250)
        )
        self.assertIn("Chunking audio...", statuses)
        self.assertIn("Processing chunk 1/3...", statuses)
        self.assertIn("Chunk 3/3 complete", statuses)
        self.assertEqual(statuses[-1], "Transcription complete")

    def test_empty_chunk_text_omitted_from_merge(self):
        client = FakeClient(outcomes={1: TranscriptionResponse(text="   ", language="en")})
        job = ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300))
        self.assertEqual(len(job.segments), 3)
        self.assertEqual(job.result().text, "[0:00 - 2:00] text 0\n\n[4:00 - 5:00] text 2")

    def test_hour_long_labels(self):
        decoded = DecodedAudio(sample_rate=10, samples=np.zeros((1, 10 * 3700), dtype=np.float32))
        client = FakeClient()
        job = ChunkOrchestrator(
            client,
            decoder=StaticDecoder(decoded),
            prober=_fixed_probe(3700.0),
            chunk_duration=1800,
        ).run(AudioSource(name="podcast.mp3", data=b"ID3"))

        self.assertEqual(
            [s.label for s in job.segments],
            ["[0:00 - 30:00]", "[30:00 - 1:00:00]", "[1:00:00 - 1:01:40]"],
        )


# ===================================================================
# 4. Failure isolation and fallback
# ===================================================================


class TestFailureIsolation(unittest.TestCase):

    def test_failed_chunk_is_marked_and_processing_continues(self):
        client = FakeClient(outcomes={1: TranscriptionError("upstream 500", status_code=500)})
        statuses = []
        job = ChunkOrchestrator(
            client, chunk_duration=120, max_retries=0, on_status=statuses.append,
        ).run(_wav_source(300))

        self.assertEqual(job.status, JobStatus.DONE)
        self.assertEqual(len(client.calls), 3)
        self.assertEqual([s.failed for s in job.segments], [False, True, False])
        self.assertEqual(
            job.result().text,
            "[0:00 - 2:00] text 0\n\n[2:00 - 4:00] [Error: upstream 500]\n\n[4:00 - 5:00] text 2",
        )
        self.assertIn("Chunk 2/3 failed", statuses)

    def test_every_chunk_failing_still_completes(self):
        client = FakeClient(outcomes={i: TranscriptionError(f"e{i}") for i in range(3)})
        job = ChunkOrchestrator(client, chunk_duration=120, max_retries=0).run(_wav_source(300))
        self.assertEqual(job.status, JobStatus.DONE)
        self.assertTrue(all(s.failed for s in job.segments))
        self.assertEqual(job.result().language, "auto")

    def test_unexpected_chunk_exception_is_isolated(self):
        client = FakeClient(outcomes={1: ConnectionResetError("socket reset mid-upload")})
        job = ChunkOrchestrator(client, chunk_duration=120, max_retries=0).run(_wav_source(300))

        self.assertEqual(job.status, JobStatus.DONE)
        self.assertEqual(len(client.calls), 3)
        self.assertEqual([s.failed for s in job.segments], [False, True, False])
        self.assertEqual(
            job.result().text,
            "[0:00 - 2:00] text 0\n\n[2:00 - 4:00] [Error: socket reset mid-upload]"
            "\n\n[4:00 - 5:00] text 2",
        )

    def test_exception_without_message_is_marked_unknown(self):
        client = FakeClient(outcomes={0: RuntimeError()})
        job = ChunkOrchestrator(client, chunk_duration=120, max_retries=0).run(_wav_source(300))
        self.assertEqual(job.segments[0].render(), "[0:00 - 2:00] [Error: unknown error]")
        self.assertEqual(job.status, JobStatus.DONE)

    def test_identity_loss_mid_job_still_fails(self):
        client = FakeClient(outcomes={1: IdentityMissingError()})
        with self.assertRaises(IdentityMissingError):
            ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300))
        self.assertEqual(len(client.calls), 2)

    def test_encode_error_fails_only_that_chunk(self):
        def _encode(chunk_slice):
            if chunk_slice.index == 0:
                raise EncodeError("bad buffer")
            return encode_chunk(chunk_slice)

        client = FakeClient()
        with patch("audioscribe.pipeline.encode_chunk", side_effect=_encode):
            job = ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300))

        self.assertEqual(len(client.calls), 2)
        self.assertTrue(job.segments[0].failed)
        self.assertEqual(job.segments[0].render(), "[0:00 - 2:00] [Error: bad buffer]")
        self.assertEqual(job.status, JobStatus.DONE)

    def test_decode_failure_falls_back_to_single_shot(self):
        source = AudioSource(name="clip.webm", data=b"\x1aE\xdf\xa3" * 10)
        client = FakeClient()
        statuses = []
        job = ChunkOrchestrator(
            client,
            decoder=FailingDecoder(),
            prober=_fixed_probe(600.0, "video/webm"),
            on_status=statuses.append,
        ).run(source)

        self.assertEqual(job.status, JobStatus.DONE)
        self.assertEqual(job.mode, "single")
        self.assertEqual(len(client.calls), 1)
        self.assertEqual(client.calls[0]["file_name"], "clip.webm")
        self.assertEqual(client.calls[0]["content_type"], "video/webm")
        self.assertEqual(job.result().text, "text 0")
        self.assertIn("Chunking failed, retrying as a single upload...", statuses)

    def test_fallback_failure_fails_job_with_single_shot_error(self):
        client = FakeClient(outcomes={0: TranscriptionError("file too large", status_code=413)})
        orchestrator = ChunkOrchestrator(
            client, decoder=FailingDecoder(), prober=_fixed_probe(600.0),
        )
        with self.assertRaises(TranscriptionError) as ctx:
            orchestrator.run(AudioSource(name="x.ogg", data=b"OggS"))
        self.assertEqual(ctx.exception.message, "file too large")

    def test_failed_job_state(self):
        client = FakeClient(outcomes={0: TranscriptionError("nope")})
        orchestrator = ChunkOrchestrator(client, decoder=FailingDecoder(), prober=_fixed_probe(600.0))
        captured = {}
        real_run = orchestrator._execute

        def _spy(job, cancel_event):
            captured["job"] = job
            return real_run(job, cancel_event)

        orchestrator._execute = _spy
        with self.assertRaises(TranscriptionError):
            orchestrator.run(AudioSource(name="x.ogg", data=b"OggS"))
        self.assertEqual(captured["job"].status, JobStatus.FAILED)
        self.assertIsInstance(captured["job"].error, TranscriptionError)

    def test_zero_samples_falls_back(self):
        empty = DecodedAudio(sample_rate=100, samples=np.zeros((1, 0), dtype=np.float32))
        client = FakeClient()
        job = ChunkOrchestrator(
            client, decoder=StaticDecoder(empty), prober=_fixed_probe(None),
            size_threshold=1,
        ).run(AudioSource(name="a.mp3", data=b"ID3"))
        self.assertEqual(job.mode, "single")
        self.assertEqual(len(client.calls), 1)

    def test_single_chunk_matches_single_shot(self):
        """Chunked path with one chunk merges to the same text as single-shot."""
        source = _wav_source(90)

        single = ChunkOrchestrator(
            FakeClient(outcomes={0: TranscriptionResponse(" Hello world. ", "en")}),
        ).run(source)
        # Unknown duration + low size threshold forces the chunked path
        chunked = ChunkOrchestrator(
            FakeClient(outcomes={0: TranscriptionResponse(" Hello world. ", "en")}),
            prober=_fixed_probe(None),
            size_threshold=1,
        ).run(source)

        self.assertEqual(single.mode, "single")
        self.assertEqual(chunked.mode, "chunked")
        self.assertEqual(len(chunked.segments), 1)
        self.assertEqual(single.result(), chunked.result())


# ===================================================================
# 5. Language consensus
# ===================================================================


class TestLanguageConsensus(unittest.TestCase):

    def test_same_language_everywhere(self):
        job = ChunkOrchestrator(FakeClient(default_language="no"), chunk_duration=120).run(
            _wav_source(300)
        )
        self.assertEqual(job.result().language, "no")

    def test_mixed_languages_are_auto(self):
        client = FakeClient(outcomes={2: TranscriptionResponse("hej", "sv")}, default_language="no")
        job = ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300))
        self.assertEqual(job.detected_languages, {"no", "sv"})
        self.assertEqual(job.result().language, "auto")

    def test_failed_chunks_do_not_vote(self):
        client = FakeClient(outcomes={0: TranscriptionError("x")}, default_language="de")
        job = ChunkOrchestrator(client, chunk_duration=120, max_retries=0).run(_wav_source(300))
        self.assertEqual(job.result().language, "de")

    def test_hint_forwarded_to_every_chunk(self):
        client = FakeClient()
        ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300), language="da")
        self.assertEqual([c["language"] for c in client.calls], ["da", "da", "da"])

    def test_chunked_hint_without_detection_is_auto(self):
        client = FakeClient(default_language=None)
        job = ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300), language="no")
        self.assertEqual(job.result().language, "auto")

    def test_auto_hint_is_not_forwarded(self):
        client = FakeClient()
        ChunkOrchestrator(client, chunk_duration=120).run(_wav_source(300), language="auto")
        self.assertEqual([c["language"] for c in client.calls], [None, None, None])


# ===================================================================
# 6. Cancellation and identity
# ===================================================================


class TestCancellationAndIdentity(unittest.TestCase):

    def test_cancel_between_chunks(self):
        cancel = threading.Event()
        client = FakeClient()
        original = client.transcribe

        def _transcribe(*args, **kwargs):
            result = original(*args, **kwargs)
            cancel.set()  # user abandons after the first chunk
            return result

        client.transcribe = _transcribe
        statuses = []
        orchestrator = ChunkOrchestrator(client, chunk_duration=120, on_status=statuses.append)

        with self.assertRaises(TranscriptionCancelled):
            orchestrator.run(_wav_source(300), cancel_event=cancel)
        self.assertEqual(len(client.calls), 1)
        self.assertEqual(statuses[-1], "Transcription cancelled")

    def test_missing_identity_on_client(self):
        client = FakeClient(user_id=None)
        with self.assertRaises(IdentityMissingError):
            ChunkOrchestrator(client).run(_wav_source(10))
        self.assertEqual(client.calls, [])

    def test_transcribe_file_checks_identity_first(self):
        with patch("audioscribe.pipeline.probe_audio") as mock_probe:
            with self.assertRaises(IdentityMissingError):
                transcribe_file(_wav_source(10), user_id="")
            mock_probe.assert_not_called()

    def test_transcribe_file_validates_source(self):
        with self.assertRaises(AudioValidationError):
            transcribe_file(AudioSource(name="notes.txt", data=b"hello"), user_id="u-1")

    @patch("audioscribe.pipeline.get_transcription_client")
    def test_transcribe_file_runs_job(self, mock_factory):
        client = FakeClient()
        mock_factory.return_value = client
        progress = []

        job = transcribe_file(
            _wav_source(130), user_id="u-1", language="auto", on_progress=progress.append,
        )

        mock_factory.assert_called_once_with("u-1", backend=None)
        self.assertEqual(job.mode, "chunked")
        self.assertEqual(progress, [ChunkProgress(1, 2), ChunkProgress(2, 2)])


# ===================================================================
# 7. Formatting
# ===================================================================


class TestFormatting(unittest.TestCase):

    def test_chunk_timestamps(self):
        self.assertEqual(format_chunk_timestamp(0), "0:00")
        self.assertEqual(format_chunk_timestamp(59.9), "0:59")
        self.assertEqual(format_chunk_timestamp(120), "2:00")
        self.assertEqual(format_chunk_timestamp(3599), "59:59")
        self.assertEqual(format_chunk_timestamp(3600), "1:00:00")
        self.assertEqual(format_chunk_timestamp(-5), "0:00")
        self.assertEqual(format_chunk_timestamp(float("nan")), "0:00")

    def test_time_range(self):
        self.assertEqual(format_time_range(240, 300), "[4:00 - 5:00]")

    def test_duration(self):
        self.assertEqual(format_duration(None), "unknown")
        self.assertEqual(format_duration(75.4), "1:15")
        self.assertEqual(format_duration(3725), "1:02:05")

    def test_file_size(self):
        self.assertEqual(format_file_size(0), "0 B")
        self.assertEqual(format_file_size(512), "512 B")
        self.assertEqual(format_file_size(1536), "1.5 KB")
        self.assertEqual(format_file_size(8 * 1024 * 1024), "8.0 MB")

    def test_language_label(self):
        self.assertEqual(language_label("no"), "Norwegian")
        self.assertEqual(language_label("ja"), "ja")
        self.assertIsNone(language_label(None))

    def test_segment_render(self):
        ok = TranscriptSegment(0, 0.0, 120.0, "hello", label="[0:00 - 2:00]")
        bad = TranscriptSegment(1, 120.0, 240.0, "timeout", failed=True, label="[2:00 - 4:00]")
        bare = TranscriptSegment(0, 0.0, 10.0, "solo")
        self.assertEqual(ok.render(), "[0:00 - 2:00] hello")
        self.assertEqual(bad.render(), "[2:00 - 4:00] [Error: timeout]")
        self.assertEqual(bare.render(), "solo")


if __name__ == "__main__":
    unittest.main()
