"""
SQLite data models (plain dataclasses) for AudioSummarizer.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from audiojobs.core.constants import JobStatus, ChunkStatus


@dataclass
class Job:
    id: str                          # UUID
    source_path: str
    media_kind: str
    mime_type: Optional[str] = None
    file_size: int = 0
    status: JobStatus = JobStatus.PENDING
    stage: Optional[str] = None
    progress_pct: int = 0
    transcript: Optional[str] = None
    summary: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    def __post_init__(self):
        self.status = JobStatus(self.status)


@dataclass
class JobChunk:
    job_id: str
    idx: int
    path: str
    start_sec: float = 0.0
    duration_sec: float = 0.0
    status: str = ChunkStatus.PENDING
    error_message: Optional[str] = None


@dataclass(frozen=True)
class WorkItem:
    """Queue payload; lives only between enqueue and dequeue completion."""
    job_id: str
    source_path: str
    mime_type: str
    file_size: int


@dataclass
class Chunk:
    path: Path
    idx: int
    job_id: str
    start_sec: float = 0.0
    duration_sec: float = 0.0
    derived: bool = True             # False when the chunk is the upload itself

    def to_record(self) -> JobChunk:
        return JobChunk(
            job_id=self.job_id,
            idx=self.idx,
            path=str(self.path),
            start_sec=self.start_sec,
            duration_sec=self.duration_sec,
        )


@dataclass
class JobView:
    job_id: str
    status: str
    stage: Optional[str]
    progress_pct: int
    transcript: Optional[str]
    summary: Optional[str]
    error_message: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]
    completed_at: Optional[str]

    @classmethod
    def from_job(cls, job: Job) -> "JobView":
        completed = job.status == JobStatus.COMPLETED
        failed = job.status == JobStatus.FAILED
        return cls(
            job_id=job.id,
            status=job.status.value,
            stage=job.stage,
            progress_pct=job.progress_pct,
            transcript=job.transcript if completed else None,
            summary=job.summary if completed else None,
            error_message=job.error_message if failed else None,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )
