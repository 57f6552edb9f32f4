"""
Standardised error handling for AudioSummarizer.

Every pipeline failure is a JobError; its message is what ends up
verbatim in the job's error_message column.
"""

from pathlib import Path

from audiojobs.core.constants import ErrorCode


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class ChunkingError(JobError):
    """Probe, extraction or slicing failed."""

    def __init__(self, message: str, code: str = ErrorCode.CHUNKING):
        super().__init__(code, message)


class TranscriptionError(JobError):
    """Provider or transport failure, attributed to a chunk when known."""

    def __init__(self, message: str, code: str = ErrorCode.TRANSCRIBE_FAILED,
                 chunk_index: int | None = None,
                 chunk_path: Path | None = None,
                 chunk_count: int | None = None):
        self.chunk_index = chunk_index
        self.chunk_path = chunk_path
        self.chunk_count = chunk_count
        super().__init__(code, message)

    def for_chunk(self, chunk_index: int, chunk_path: Path,
                  chunk_count: int) -> "TranscriptionError":
        """Return a copy of this error carrying the failing chunk's identity."""
        message = (f"Transcription failed for chunk {chunk_index} "
                   f"({chunk_index + 1} of {chunk_count}, {Path(chunk_path).name}): "
                   f"{self.message}")
        return type(self)(message, code=self.code, chunk_index=chunk_index,
                          chunk_path=chunk_path, chunk_count=chunk_count)


class TranscriptionTimeoutError(TranscriptionError):
    """The provider never reached a terminal state within the poll budget."""

    def __init__(self, message: str, code: str = ErrorCode.TRANSCRIBE_TIMEOUT,
                 **kwargs):
        super().__init__(message, code=code, **kwargs)


class SummarizationError(JobError):
    def __init__(self, message: str, code: str = ErrorCode.SUMMARIZE_FAILED):
        super().__init__(code, message)


class JobNotFoundError(JobError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(ErrorCode.JOB_NOT_FOUND, f"Job not found: {job_id}")


class InvalidTransitionError(JobError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.INVALID_TRANSITION, message)


class UnsupportedMediaError(JobError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.UNSUPPORTED_MEDIA, message)


class QueueClosedError(JobError):
    def __init__(self, message: str = "Queue is not accepting work"):
        super().__init__(ErrorCode.QUEUE_CLOSED, message)


class ResultNotAvailableError(JobError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.RESULT_NOT_AVAILABLE, message)
