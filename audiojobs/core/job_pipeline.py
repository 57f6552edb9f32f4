"""
Job pipeline: the worker-side state machine.

pending → processing → completed | failed, one terminal write per
attempt. Stages run in order (prepare/chunk → transcribe → summarize) and
the first failure short-circuits the rest. Derived audio files are
removed once the job is terminal, on both paths; the upload never is.
"""

import logging
import time
from pathlib import Path
from typing import Callable

from audiojobs.core.constants import (
    JobStatus, JobStage, ChunkStatus, ErrorCode,
    CHUNK_SIZE_MB, POLL_INTERVAL_SEC, MAX_POLL_ATTEMPTS, MAX_ERROR_MESSAGE_LEN,
    PROGRESS_PREPARE, PROGRESS_CHUNK, PROGRESS_TRANSCRIBE_START,
    PROGRESS_TRANSCRIBE_END, PROGRESS_SUMMARIZE, PROGRESS_DONE,
)
from audiojobs.core.db_sqlite import Database
from audiojobs.core.models_sqlite import Chunk, JobView, WorkItem
from audiojobs.core.error_codes import (
    JobError, InvalidTransitionError, TranscriptionError, SummarizationError,
)
from audiojobs.core.chunking_sizebased import prepare_audio, split_into_chunks
from audiojobs.core.media_ffmpeg import probe_duration, slice_media, extract_audio
from audiojobs.core.transcribe_chunks import transcribe_chunks
from audiojobs.core.cleanup import cleanup_chunk_files

logger = logging.getLogger(__name__)


class JobPipeline:
    """
    Drives one work item through chunking, transcription and summarization.

    transcriber needs submit(path) / poll(id); summarizer needs summarize(text).
    The ffmpeg collaborators and sleep are injectable for tests.
    """

    def __init__(self, db: Database, transcriber, summarizer,
                 chunk_size_mb: float = CHUNK_SIZE_MB,
                 poll_interval: float = POLL_INTERVAL_SEC,
                 max_poll_attempts: int = MAX_POLL_ATTEMPTS,
                 sleep: Callable[[float], None] = time.sleep,
                 probe=probe_duration, slicer=slice_media, extractor=extract_audio):
        self.db = db
        self.transcriber = transcriber
        self.summarizer = summarizer
        self.chunk_size_mb = chunk_size_mb
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.sleep = sleep
        self.probe = probe
        self.slicer = slicer
        self.extractor = extractor

    def process(self, item: WorkItem) -> JobView:
        """
        Process one attempt for item.job_id.

        A job that is no longer pending is left untouched. Stage failures are
        recorded on the job and then re-raised so the queue marks the item
        failed.
        """
        job_id = item.job_id
        job = self.db.get_job(job_id)
        if job.status != JobStatus.PENDING:
            logger.info("Skipping job %s: already %s", job_id, job.status.value)
            return JobView.from_job(job)

        try:
            job = self.db.update_job_status(job_id, JobStatus.PROCESSING,
                                            stage=JobStage.PREPARING_AUDIO,
                                            progress_pct=PROGRESS_PREPARE)
        except InvalidTransitionError as e:
            logger.info("Skipping job %s: %s", job_id, e.message)
            return JobView.from_job(self.db.get_job(job_id))

        source_path = Path(item.source_path)
        derived: list[Path] = []

        try:
            transcript, summary = self._run_stages(job_id, source_path,
                                                   job.media_kind, derived)
        except JobError as e:
            self._fail(job_id, e)
            raise
        except Exception as e:
            logger.error("Unexpected error processing job %s: %s", job_id, e, exc_info=True)
            self._fail(job_id, JobError(ErrorCode.UNEXPECTED, str(e)))
            raise
        else:
            job = self.db.update_job_status(job_id, JobStatus.COMPLETED,
                                            stage=JobStage.DONE,
                                            progress_pct=PROGRESS_DONE,
                                            transcript=transcript,
                                            summary=summary)
            logger.info("Job %s completed (%d transcript chars)", job_id, len(transcript))
        finally:
            removed = cleanup_chunk_files(derived, source_path)
            if removed:
                logger.info("Removed %d temporary files for job %s", len(removed), job_id)

        return JobView.from_job(job)

    # ── Stages ────────────────────────────────────────────────────────

    def _run_stages(self, job_id: str, source_path: Path, media_kind: str,
                    derived: list[Path]) -> tuple[str, str]:
        # derived is filled in place so cleanup sees files from partial runs
        audio_path, extracted = prepare_audio(source_path, media_kind, job_id, self.extractor)
        derived.extend(extracted)

        self.db.update_job(job_id, stage=JobStage.CHUNKING_AUDIO, progress_pct=PROGRESS_CHUNK)
        chunks = split_into_chunks(audio_path, job_id, self.chunk_size_mb,
                                   probe=self.probe, slicer=self.slicer)
        derived.extend(c.path for c in chunks if c.derived)
        self.db.create_chunks([c.to_record() for c in chunks])

        self.db.update_job(job_id, stage=JobStage.TRANSCRIBING,
                           progress_pct=PROGRESS_TRANSCRIBE_START)
        transcript = self._transcribe(job_id, chunks)

        self.db.update_job(job_id, stage=JobStage.SUMMARIZING, progress_pct=PROGRESS_SUMMARIZE)
        try:
            summary = self.summarizer.summarize(transcript)
        except SummarizationError as e:
            raise SummarizationError(
                f"Summarization of {len(transcript)}-character transcript failed: {e.message}",
                code=e.code,
            ) from e
        return transcript, summary

    def _transcribe(self, job_id: str, chunks: list[Chunk]) -> str:
        progress_range = PROGRESS_TRANSCRIBE_END - PROGRESS_TRANSCRIBE_START
        completed = 0

        def on_chunk_done(chunk: Chunk, total: int):
            nonlocal completed
            completed += 1
            self.db.update_chunk(job_id, chunk.idx, status=ChunkStatus.DONE)
            progress = PROGRESS_TRANSCRIBE_START + int((completed / total) * progress_range)
            self.db.update_job(job_id, progress_pct=progress)

        try:
            return transcribe_chunks(
                chunks, self.transcriber,
                poll_interval=self.poll_interval,
                max_poll_attempts=self.max_poll_attempts,
                sleep=self.sleep,
                on_chunk_done=on_chunk_done,
            )
        except TranscriptionError as e:
            if e.chunk_index is not None:
                self.db.update_chunk(job_id, e.chunk_index,
                                     status=ChunkStatus.FAILED,
                                     error_message=e.message[:MAX_ERROR_MESSAGE_LEN])
            raise

    def _fail(self, job_id: str, error: JobError):
        logger.error("Job %s failed [%s]: %s", job_id, error.code, error.message)
        try:
            self.db.update_job_status(job_id, JobStatus.FAILED,
                                      error_code=error.code,
                                      error_message=error.message[:MAX_ERROR_MESSAGE_LEN])
        except JobError as e:
            logger.error("Could not record failure for job %s: %s", job_id, e)
