"""
Job service: the submission and read side used by the HTTP layer.
Owns the store, the queue and the pipeline, and their lifecycle.
"""

import logging
import threading
from pathlib import Path

from audiojobs.core.config import AppConfig
from audiojobs.core.constants import (
    JobStatus, MediaKind, MIME_MEDIA_KINDS, MAX_UPLOAD_BYTES,
)
from audiojobs.core.db_sqlite import Database
from audiojobs.core.error_codes import (
    UnsupportedMediaError, QueueClosedError, ResultNotAvailableError,
)
from audiojobs.core.job_pipeline import JobPipeline
from audiojobs.core.job_queue import WorkQueue, QueueHandle
from audiojobs.core.models_sqlite import JobView, WorkItem
from audiojobs.core.summarize_gemini import GeminiClient
from audiojobs.core.transcribe_assemblyai import AssemblyAIClient

logger = logging.getLogger(__name__)

RESULT_KINDS = ('transcript', 'summary')


def media_kind_for_mime(mime_type: str) -> MediaKind:
    kind = MIME_MEDIA_KINDS.get((mime_type or "").lower())
    if kind is None:
        raise UnsupportedMediaError(f"Unsupported media type: {mime_type!r}")
    return kind


class JobService:
    """
    Wires store, queue and pipeline together.

    Call start() before submitting and shutdown() when done, or use the
    service as a context manager.
    """

    def __init__(self, config: AppConfig | None = None, db: Database | None = None,
                 pipeline: JobPipeline | None = None, queue: WorkQueue | None = None):
        self.config = config or AppConfig()
        self.db = db or Database(self.config.db_path)
        self.pipeline = pipeline or JobPipeline(
            self.db,
            transcriber=AssemblyAIClient(self.config.assemblyai_api_key,
                                         speaker_labels=self.config.get('speaker_labels', True)),
            summarizer=GeminiClient(self.config.gemini_api_key,
                                    model=self.config.get('gemini_model')),
            chunk_size_mb=self.config.chunk_size_mb,
            poll_interval=self.config.poll_interval_sec,
            max_poll_attempts=self.config.max_poll_attempts,
        )
        self.queue = queue or WorkQueue(workers=self.config.worker_count)
        self.queue.process(self.pipeline.process)
        # Handles of queued or running attempts only; finished ones are dropped.
        self._handles: dict[str, QueueHandle] = {}
        self._handles_lock = threading.Lock()

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self):
        self.queue.start()

    def shutdown(self, drain: bool = True, timeout: float | None = None):
        self.queue.shutdown(drain=drain, timeout=timeout)
        self.db.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(drain=exc_type is None)

    # ── Submission ────────────────────────────────────────────────────

    def submit_job(self, source_path: str | Path, mime_type: str) -> str:
        """Create a pending job for an accepted upload and enqueue it."""
        media_kind = media_kind_for_mime(mime_type)
        source = Path(source_path).resolve()
        if not source.is_file():
            raise FileNotFoundError(f"Upload not found: {source}")

        file_size = source.stat().st_size
        if file_size > MAX_UPLOAD_BYTES:
            raise UnsupportedMediaError(
                f"File is {file_size} bytes; the limit is {MAX_UPLOAD_BYTES}")

        if not self.queue.accepting:
            raise QueueClosedError()

        job = self.db.create_job(str(source), media_kind, mime_type=mime_type,
                                 file_size=file_size)
        item = WorkItem(job_id=job.id, source_path=str(source),
                        mime_type=mime_type, file_size=file_size)
        handle = self.queue.enqueue(item)
        with self._handles_lock:
            self._handles[job.id] = handle
        handle.add_done_callback(self._forget_handle)

        logger.info("Submitted job %s (%s, %d bytes)", job.id, media_kind.value, file_size)
        return job.id

    # ── Read side ─────────────────────────────────────────────────────

    def get_job_view(self, job_id: str) -> JobView:
        return JobView.from_job(self.db.get_job(job_id))

    def get_result_text(self, job_id: str, kind: str) -> tuple[str, str]:
        """
        Return (filename, text) for a completed job's transcript or summary.
        """
        if kind not in RESULT_KINDS:
            raise ValueError(f"Unknown result kind: {kind!r}")
        job = self.db.get_job(job_id)
        text = getattr(job, kind)
        if job.status != JobStatus.COMPLETED or not text:
            raise ResultNotAvailableError(
                f"{kind.capitalize()} not found or job not completed")
        return f"{job_id}_{kind}.txt", text

    def wait_for_job(self, job_id: str, timeout: float | None = None) -> JobView:
        """Block until this process's queued attempt for job_id finishes."""
        with self._handles_lock:
            handle = self._handles.get(job_id)
        if handle is not None:
            handle.wait(timeout)
        return self.get_job_view(job_id)

    def _forget_handle(self, handle: QueueHandle):
        with self._handles_lock:
            if self._handles.get(handle.job_id) is handle:
                del self._handles[handle.job_id]
