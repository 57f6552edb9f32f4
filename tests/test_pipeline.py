#!/usr/bin/env python3
"""
Pipeline tests: ordered transcription, the job state machine, the queue
and the submission service, driven by in-memory providers.
"""

import sys
import tempfile
import threading
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from audiojobs.core.constants import (
    JobStatus, JobStage, ChunkStatus, ErrorCode, MediaKind, BYTES_PER_MB,
)
from audiojobs.core.config import AppConfig
from audiojobs.core.db_sqlite import Database
from audiojobs.core.error_codes import (
    ChunkingError, TranscriptionError, TranscriptionTimeoutError, SummarizationError,
    JobNotFoundError, UnsupportedMediaError, QueueClosedError, ResultNotAvailableError,
)
from audiojobs.core.job_pipeline import JobPipeline
from audiojobs.core.job_queue import WorkQueue, QueueState
from audiojobs.core.job_service import JobService, media_kind_for_mime
from audiojobs.core.models_sqlite import Chunk, WorkItem
from audiojobs.core.output_writer import write_job_results
from audiojobs.core.transcribe_chunks import transcribe_chunks


# ── Fakes ─────────────────────────────────────────────────────────────

class FakeTranscriber:
    """
    Returns texts[n] for the n-th submitted file. Chunks listed in
    fail_on report an error; each job stays 'processing' for `pending_polls`
    polls before it finishes.
    """

    def __init__(self, texts, fail_on=(), pending_polls=1):
        self.texts = list(texts)
        self.fail_on = set(fail_on)
        self.pending_polls = pending_polls
        self.submitted = []
        self._polls = {}

    def submit(self, audio_path):
        self.submitted.append(Path(audio_path))
        transcript_id = f"t{len(self.submitted) - 1}"
        self._polls[transcript_id] = 0
        return transcript_id

    def poll(self, transcript_id):
        n = int(transcript_id[1:])
        self._polls[transcript_id] += 1
        if self._polls[transcript_id] <= self.pending_polls:
            return {'id': transcript_id, 'status': 'processing'}
        if n in self.fail_on:
            return {'id': transcript_id, 'status': 'error', 'error': 'audio too noisy'}
        return {'id': transcript_id, 'status': 'completed', 'text': self.texts[n]}


class FakeSummarizer:
    def __init__(self, summary="S", error=None):
        self.summary = summary
        self.error = error
        self.calls = []

    def summarize(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.summary


class RecordingDatabase(Database):
    """Remembers every status written, in order."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.statuses = []

    def create_job(self, *args, **kwargs):
        job = super().create_job(*args, **kwargs)
        self.statuses.append(job.status)
        return job

    def update_job(self, job_id, **kwargs):
        job = super().update_job(job_id, **kwargs)
        if 'status' in kwargs:
            self.statuses.append(job.status)
        return job


def make_file(path: Path, size: int) -> Path:
    with open(path, 'wb') as f:
        f.truncate(size)
    return path


def fake_slicer(source, start, duration, out):
    Path(out).write_bytes(b"chunk")
    return Path(out)


def no_sleep(seconds):
    pass


# ── Orchestrator ──────────────────────────────────────────────────────

class TestTranscribeChunks(unittest.TestCase):

    def _chunks(self, n):
        return [Chunk(path=Path(f"/tmp/x_chunk{i:03d}.mp3"), idx=i, job_id="j") for i in range(n)]

    def test_concatenates_in_ordinal_order(self):
        provider = FakeTranscriber(["first", "second", "third"])
        chunks = self._chunks(3)

        transcript = transcribe_chunks(list(reversed(chunks)), provider, sleep=no_sleep)

        self.assertEqual(transcript, "first\nsecond\nthird\n")
        self.assertEqual(provider.submitted, [c.path for c in chunks])

    def test_failure_stops_remaining_chunks(self):
        provider = FakeTranscriber(["a", "b", "c"], fail_on={1})

        with self.assertRaises(TranscriptionError) as ctx:
            transcribe_chunks(self._chunks(3), provider, sleep=no_sleep)

        self.assertEqual(len(provider.submitted), 2)
        self.assertEqual(ctx.exception.chunk_index, 1)
        self.assertIn("chunk 1", ctx.exception.message)
        self.assertIn("2 of 3", ctx.exception.message)
        self.assertIn("audio too noisy", ctx.exception.message)

    def test_poll_budget_is_a_distinct_failure(self):
        provider = FakeTranscriber(["a"], pending_polls=10)
        sleeps = []

        with self.assertRaises(TranscriptionTimeoutError) as ctx:
            transcribe_chunks(self._chunks(1), provider, poll_interval=3.0,
                              max_poll_attempts=4, sleep=sleeps.append)

        self.assertEqual(sleeps, [3.0] * 4)
        self.assertEqual(ctx.exception.code, ErrorCode.TRANSCRIBE_TIMEOUT)
        self.assertEqual(ctx.exception.chunk_index, 0)

    def test_polls_at_fixed_interval(self):
        provider = FakeTranscriber(["a"], pending_polls=2)
        sleeps = []
        transcribe_chunks(self._chunks(1), provider, poll_interval=3.0, sleep=sleeps.append)
        self.assertEqual(sleeps, [3.0, 3.0, 3.0])

    def test_transport_errors_are_attributed(self):
        class Broken(FakeTranscriber):
            def submit(self, audio_path):
                raise ConnectionError("connection reset")

        with self.assertRaises(TranscriptionError) as ctx:
            transcribe_chunks(self._chunks(2), Broken([]), sleep=no_sleep)
        self.assertEqual(ctx.exception.chunk_index, 0)
        self.assertIn("connection reset", ctx.exception.message)


# ── Pipeline ──────────────────────────────────────────────────────────

class PipelineTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.db = RecordingDatabase(self.dir / "jobs.db")

    def tearDown(self):
        self.db.close()
        self.tmp.cleanup()

    def make_pipeline(self, transcriber, summarizer, **kwargs):
        kwargs.setdefault('probe', lambda path: 90.0)
        kwargs.setdefault('slicer', fake_slicer)
        return JobPipeline(self.db, transcriber, summarizer, chunk_size_mb=20,
                           poll_interval=3.0, max_poll_attempts=10, sleep=no_sleep,
                           **kwargs)

    def submit(self, name="upload.mp3", size=45 * BYTES_PER_MB, mime="audio/mpeg"):
        source = make_file(self.dir / name, size)
        job = self.db.create_job(str(source), media_kind_for_mime(mime), mime, size)
        return source, WorkItem(job.id, str(source), mime, size)

    def leftover_files(self):
        return sorted(p.name for p in self.dir.iterdir() if p.suffix != ".db"
                      and not p.name.startswith("jobs.db"))


class TestJobPipeline(PipelineTestCase):

    def test_end_to_end_three_chunks(self):
        transcriber = FakeTranscriber(["a", "b", "c"])
        summarizer = FakeSummarizer("S")
        source, item = self.submit()

        view = self.make_pipeline(transcriber, summarizer).process(item)

        self.assertEqual(view.status, "completed")
        self.assertEqual(view.transcript, "a\nb\nc\n")
        self.assertEqual(view.summary, "S")
        self.assertIsNone(view.error_message)
        self.assertEqual(summarizer.calls, ["a\nb\nc\n"])
        self.assertEqual([p.name for p in transcriber.submitted],
                         [f"upload_{item.job_id}_chunk{i:03d}.mp3" for i in range(3)])

        job = self.db.get_job(item.job_id)
        self.assertEqual(job.transcript, "a\nb\nc\n")
        self.assertEqual(job.stage, JobStage.DONE)
        self.assertEqual(job.progress_pct, 100)
        self.assertEqual(self.db.statuses,
                         [JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.COMPLETED])

        chunks = self.db.get_chunks(item.job_id)
        self.assertEqual([c.idx for c in chunks], [0, 1, 2])
        self.assertEqual([c.duration_sec for c in chunks], [30.0, 30.0, 30.0])
        self.assertTrue(all(c.status == ChunkStatus.DONE for c in chunks))

        # derived chunks gone, upload kept
        self.assertEqual(self.leftover_files(), ["upload.mp3"])
        self.assertTrue(source.exists())

    def test_small_upload_is_sent_as_is_and_kept(self):
        transcriber = FakeTranscriber(["whole"])
        source, item = self.submit(size=2 * BYTES_PER_MB)

        view = self.make_pipeline(transcriber, FakeSummarizer()).process(item)

        self.assertEqual(view.status, "completed")
        self.assertEqual(view.transcript, "whole\n")
        self.assertEqual(transcriber.submitted, [source])
        self.assertTrue(source.exists())

    def test_processing_is_written_before_external_calls(self):
        seen = []
        source, item = self.submit(size=BYTES_PER_MB)
        db = self.db

        class Watching(FakeTranscriber):
            def submit(self, audio_path):
                seen.append(db.get_job(item.job_id).status)
                return super().submit(audio_path)

        self.make_pipeline(Watching(["x"]), FakeSummarizer()).process(item)
        self.assertEqual(seen, [JobStatus.PROCESSING])

    def test_transcription_failure_cleans_all_chunks(self):
        transcriber = FakeTranscriber(["a", "b", "c"], fail_on={1})
        summarizer = FakeSummarizer()
        source, item = self.submit()

        with self.assertRaises(TranscriptionError):
            self.make_pipeline(transcriber, summarizer).process(item)

        job = self.db.get_job(item.job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_code, ErrorCode.TRANSCRIBE_FAILED)
        self.assertIn("chunk 1", job.error_message)
        self.assertIsNone(job.transcript)
        self.assertEqual(len(transcriber.submitted), 2)
        self.assertEqual(summarizer.calls, [])

        chunks = self.db.get_chunks(item.job_id)
        self.assertEqual([c.status for c in chunks],
                         [ChunkStatus.DONE, ChunkStatus.FAILED, ChunkStatus.PENDING])
        # the never-transcribed third chunk is removed too
        self.assertEqual(self.leftover_files(), ["upload.mp3"])
        self.assertEqual(self.db.statuses,
                         [JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.FAILED])

    def test_summarization_failure(self):
        summarizer = FakeSummarizer(error=SummarizationError("Gemini API error: 500 {}"))
        source, item = self.submit()

        with self.assertRaises(SummarizationError):
            self.make_pipeline(FakeTranscriber(["a", "b", "c"]), summarizer).process(item)

        job = self.db.get_job(item.job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_code, ErrorCode.SUMMARIZE_FAILED)
        self.assertIn("6-character transcript", job.error_message)
        self.assertIn("Gemini API error: 500", job.error_message)
        self.assertIsNone(job.summary)
        self.assertIsNone(job.transcript)
        self.assertEqual(self.leftover_files(), ["upload.mp3"])

    def test_chunking_failure(self):
        transcriber = FakeTranscriber(["a", "b", "c"])

        def slicer(source, start, duration, out):
            if start >= 60:
                raise ChunkingError(f"ffmpeg slice {Path(out).name} failed: bad frame")
            return fake_slicer(source, start, duration, out)

        source, item = self.submit()
        with self.assertRaises(ChunkingError):
            self.make_pipeline(transcriber, FakeSummarizer(), slicer=slicer).process(item)

        job = self.db.get_job(item.job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_code, ErrorCode.CHUNKING)
        self.assertIn("bad frame", job.error_message)
        self.assertEqual(transcriber.submitted, [])
        self.assertEqual(self.leftover_files(), ["upload.mp3"])

    def test_video_audio_is_extracted_then_removed(self):
        transcriber = FakeTranscriber(["v"])
        source, item = self.submit(name="clip.mp4", size=BYTES_PER_MB, mime="video/mp4")

        view = self.make_pipeline(
            transcriber, FakeSummarizer(),
            extractor=lambda src, out: fake_slicer(src, 0, 0, out),
        ).process(item)

        self.assertEqual(view.status, "completed")
        self.assertEqual([p.name for p in transcriber.submitted], [f"clip_{item.job_id}_audio.mp3"])
        self.assertEqual(self.leftover_files(), ["clip.mp4"])

    def test_unexpected_error_is_recorded(self):
        class Exploding(FakeSummarizer):
            def summarize(self, text):
                raise RuntimeError("kaboom")

        source, item = self.submit(size=BYTES_PER_MB)
        with self.assertRaises(RuntimeError):
            self.make_pipeline(FakeTranscriber(["x"]), Exploding()).process(item)

        job = self.db.get_job(item.job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_code, ErrorCode.UNEXPECTED)
        self.assertEqual(job.error_message, "kaboom")

    def test_terminal_job_is_not_reprocessed(self):
        transcriber = FakeTranscriber(["a", "b", "c"])
        summarizer = FakeSummarizer("S")
        source, item = self.submit()
        pipeline = self.make_pipeline(transcriber, summarizer)
        pipeline.process(item)
        before = self.db.get_job(item.job_id)

        view = pipeline.process(item)

        after = self.db.get_job(item.job_id)
        self.assertEqual(view.status, "completed")
        self.assertEqual(after, before)
        self.assertEqual(len(transcriber.submitted), 3)
        self.assertEqual(len(summarizer.calls), 1)

    def test_failed_job_is_not_reprocessed(self):
        source, item = self.submit(size=BYTES_PER_MB)
        pipeline = self.make_pipeline(FakeTranscriber(["a"], fail_on={0}), FakeSummarizer())
        with self.assertRaises(TranscriptionError):
            pipeline.process(item)
        message = self.db.get_job(item.job_id).error_message

        view = pipeline.process(item)

        self.assertEqual(view.status, "failed")
        self.assertEqual(view.error_message, message)

    def test_jobs_sharing_a_source_keep_separate_chunks(self):
        source, item_a = self.submit(name="talk.mp3")
        job_b = self.db.create_job(str(source), MediaKind.AUDIO, "audio/mpeg", item_a.file_size)
        item_b = WorkItem(job_b.id, str(source), "audio/mpeg", item_a.file_size)
        pipeline_b = self.make_pipeline(FakeTranscriber(["x", "y", "z"]), FakeSummarizer("T"))
        missing = []

        class Interleaved(FakeTranscriber):
            # job B runs to completion while job A's chunks are waiting
            def submit(self, audio_path):
                if not self.submitted:
                    pipeline_b.process(item_b)
                if not Path(audio_path).exists():
                    missing.append(Path(audio_path).name)
                return super().submit(audio_path)

        transcriber_a = Interleaved(["a", "b", "c"])
        view_a = self.make_pipeline(transcriber_a, FakeSummarizer("S")).process(item_a)

        self.assertEqual(missing, [])
        self.assertEqual(view_a.transcript, "a\nb\nc\n")
        self.assertEqual(self.db.get_job(job_b.id).transcript, "x\ny\nz\n")
        self.assertTrue(all(item_a.job_id in p.name for p in transcriber_a.submitted))
        self.assertEqual(self.leftover_files(), ["talk.mp3"])

    def test_unknown_job(self):
        item = WorkItem("missing", str(self.dir / "x.mp3"), "audio/mpeg", 1)
        with self.assertRaises(JobNotFoundError):
            self.make_pipeline(FakeTranscriber([]), FakeSummarizer()).process(item)


# ── Queue ─────────────────────────────────────────────────────────────

class TestWorkQueue(unittest.TestCase):

    def _item(self, job_id):
        return WorkItem(job_id, f"/tmp/{job_id}.mp3", "audio/mpeg", 1)

    def test_handler_result_and_error(self):
        queue = WorkQueue(workers=2)

        def handler(item):
            if item.job_id == "bad":
                raise ValueError("nope")
            return item.job_id.upper()

        queue.process(handler)
        queue.start()
        good = queue.enqueue(self._item("good"))
        bad = queue.enqueue(self._item("bad"))
        self.assertTrue(good.wait(5))
        self.assertTrue(bad.wait(5))
        queue.shutdown()

        self.assertEqual(good.state, QueueState.COMPLETED)
        self.assertEqual(good.result, "GOOD")
        self.assertEqual(bad.state, QueueState.FAILED)
        self.assertIsInstance(bad.error, ValueError)

    def test_same_job_never_runs_concurrently(self):
        queue = WorkQueue(workers=3)
        lock = threading.Lock()
        running = {}
        overlap = []

        def handler(item):
            with lock:
                running[item.job_id] = running.get(item.job_id, 0) + 1
                if running[item.job_id] > 1:
                    overlap.append(item.job_id)
            time.sleep(0.05)
            with lock:
                running[item.job_id] -= 1

        queue.process(handler)
        queue.start()
        handles = [queue.enqueue(self._item("same")) for _ in range(3)]
        handles.append(queue.enqueue(self._item("other")))
        for handle in handles:
            self.assertTrue(handle.wait(5))
        queue.shutdown()

        self.assertEqual(overlap, [])
        self.assertTrue(all(h.state == QueueState.COMPLETED for h in handles))

    def test_done_callbacks(self):
        queue = WorkQueue(workers=1)
        queue.process(lambda item: "ok")
        handle = queue.enqueue(self._item("cb"))
        seen = []
        handle.add_done_callback(lambda h: seen.append(("early", h.state)))

        queue.start()
        self.assertTrue(handle.wait(5))
        queue.shutdown()
        handle.add_done_callback(lambda h: seen.append(("late", h.state)))

        self.assertEqual(seen, [("early", QueueState.COMPLETED), ("late", QueueState.COMPLETED)])

    def test_closed_queue_rejects_work(self):
        queue = WorkQueue(workers=1)
        queue.process(lambda item: None)
        queue.start()
        queue.shutdown()
        with self.assertRaises(QueueClosedError):
            queue.enqueue(self._item("late"))

    def test_unstarted_queue_fails_leftovers_on_shutdown(self):
        queue = WorkQueue(workers=1)
        queue.process(lambda item: None)
        handle = queue.enqueue(self._item("never"))
        queue.shutdown()
        self.assertTrue(handle.done())
        self.assertEqual(handle.state, QueueState.FAILED)
        self.assertIsInstance(handle.error, QueueClosedError)

    def test_handler_required(self):
        with self.assertRaises(RuntimeError):
            WorkQueue(workers=1).start()


# ── Service ───────────────────────────────────────────────────────────

class TestJobService(PipelineTestCase):

    def make_service(self, transcriber, summarizer):
        config = AppConfig(self.dir / "config.json",
                           overrides={'db_path': str(self.dir / "jobs.db"), 'worker_count': 1})
        pipeline = self.make_pipeline(transcriber, summarizer)
        return JobService(config, db=self.db, pipeline=pipeline)

    def test_submit_and_retrieve(self):
        service = self.make_service(FakeTranscriber(["a", "b", "c"]), FakeSummarizer("S"))
        source = make_file(self.dir / "talk.mp3", 45 * BYTES_PER_MB)

        service.start()
        job_id = service.submit_job(source, "audio/mpeg")
        view = service.wait_for_job(job_id, timeout=10)

        self.assertEqual(view.status, "completed")
        self.assertEqual(view.transcript, "a\nb\nc\n")
        self.assertEqual(service.get_result_text(job_id, "summary"), (f"{job_id}_summary.txt", "S"))

        written = write_job_results(service, job_id, self.dir / "out")
        self.assertEqual([p.name for p in written],
                         [f"{job_id}_transcript.txt", f"{job_id}_summary.txt"])
        self.assertEqual(written[0].read_text(encoding='utf-8'), "a\nb\nc\n")
        service.shutdown()

    def test_failed_job_exposes_only_error(self):
        service = self.make_service(FakeTranscriber(["a"], fail_on={0}), FakeSummarizer())
        source = make_file(self.dir / "talk.mp3", BYTES_PER_MB)

        service.start()
        job_id = service.submit_job(source, "audio/mp3")
        view = service.wait_for_job(job_id, timeout=10)

        self.assertEqual(view.status, "failed")
        self.assertIn("audio too noisy", view.error_message)
        self.assertIsNone(view.transcript)
        self.assertIsNone(view.summary)
        with self.assertRaises(ResultNotAvailableError):
            service.get_result_text(job_id, "transcript")
        service.shutdown()

    def test_pending_view_before_start(self):
        service = self.make_service(FakeTranscriber(["a"]), FakeSummarizer())
        source = make_file(self.dir / "talk.mp3", BYTES_PER_MB)

        job_id = service.submit_job(source, "audio/mpeg")
        view = service.get_job_view(job_id)

        self.assertEqual(view.status, "pending")
        self.assertIsNone(view.transcript)
        self.assertIsNotNone(view.created_at)
        service.shutdown()

    def test_rejects_bad_submissions(self):
        service = self.make_service(FakeTranscriber([]), FakeSummarizer())
        source = make_file(self.dir / "doc.pdf", 10)

        with self.assertRaises(UnsupportedMediaError):
            service.submit_job(source, "application/pdf")
        with self.assertRaises(FileNotFoundError):
            service.submit_job(self.dir / "missing.mp3", "audio/mpeg")
        with self.assertRaises(JobNotFoundError):
            service.get_job_view("no-such-job")
        service.shutdown()

    def test_finished_jobs_release_their_handles(self):
        texts = [f"t{n}" for n in range(10)]
        service = self.make_service(FakeTranscriber(texts), FakeSummarizer())
        job_ids = []
        for n in range(10):
            source = make_file(self.dir / f"clip{n}.mp3", BYTES_PER_MB)
            job_ids.append(service.submit_job(source, "audio/mpeg"))
        self.assertEqual(len(service._handles), 10)

        service.start()
        service.shutdown()

        self.assertEqual(service._handles, {})
        self.assertEqual(self.db.statuses.count(JobStatus.COMPLETED), len(job_ids))

    def test_media_kind_for_mime(self):
        self.assertEqual(media_kind_for_mime("audio/mpeg"), MediaKind.AUDIO)
        self.assertEqual(media_kind_for_mime("VIDEO/MP4"), MediaKind.VIDEO)
        with self.assertRaises(UnsupportedMediaError):
            media_kind_for_mime(None)


if __name__ == "__main__":
    unittest.main()
