"""
SQLite job record store for AudioSummarizer.
Thread-safe via check_same_thread=False + explicit locking.

The store owns the lifecycle rules: status only moves along
ALLOWED_TRANSITIONS, result fields are write-once, terminal records are
frozen and updated_at never goes backwards.
"""

import sqlite3
import threading
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path

from audiojobs.core.constants import (
    DB_PATH, JobStatus, ALLOWED_TRANSITIONS, JobStage,
)
from audiojobs.core.error_codes import JobNotFoundError, InvalidTransitionError
from audiojobs.core.models_sqlite import Job, JobChunk

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    source_path TEXT NOT NULL,
    media_kind TEXT NOT NULL,
    mime_type TEXT,
    file_size INTEGER DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending',
    stage TEXT,
    progress_pct INTEGER DEFAULT 0,
    transcript TEXT,
    summary TEXT,
    error_code TEXT,
    error_message TEXT,
    created_at TEXT,
    updated_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

CREATE TABLE IF NOT EXISTS job_chunks (
    job_id TEXT NOT NULL,
    idx INTEGER NOT NULL,
    path TEXT NOT NULL,
    start_sec REAL,
    duration_sec REAL,
    status TEXT DEFAULT 'pending',
    error_message TEXT,
    PRIMARY KEY (job_id, idx),
    FOREIGN KEY (job_id) REFERENCES jobs(id)
);
"""

_UPDATABLE_FIELDS = frozenset({
    'status', 'stage', 'progress_pct', 'transcript', 'summary',
    'error_code', 'error_message', 'completed_at',
})
_WRITE_ONCE_FIELDS = ('transcript', 'summary', 'error_message')


class Database:
    """SQLite database wrapper for AudioSummarizer."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = Path(db_path or DB_PATH)
        self._lock = threading.RLock()
        self._ensure_dirs()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        cur = self.conn.cursor()
        cur.executescript(_CREATE_TABLES)
        cur.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (_SCHEMA_VERSION,),
        )
        self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        # Fixed width so string order matches time order.
        return datetime.now(timezone.utc).isoformat(timespec="microseconds")

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(**dict(row))

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> JobChunk:
        return JobChunk(**dict(row))

    def _fetch_job(self, job_id: str) -> Job:
        row = self.conn.execute(
            "SELECT * FROM jobs WHERE id = ?", (job_id,)
        ).fetchone()
        if row is None:
            raise JobNotFoundError(job_id)
        return self._row_to_job(row)

    # ── Job CRUD ──────────────────────────────────────────────────────

    def create_job(self, source_path: str, media_kind: str,
                   mime_type: str | None = None, file_size: int = 0,
                   job_id: str | None = None) -> Job:
        now = self._now()
        job = Job(
            id=job_id or str(uuid.uuid4()),
            source_path=str(source_path),
            media_kind=str(getattr(media_kind, 'value', media_kind)),
            mime_type=mime_type,
            file_size=file_size,
            stage=JobStage.QUEUED,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            try:
                self.conn.execute(
                    """INSERT INTO jobs
                       (id, source_path, media_kind, mime_type, file_size,
                        status, stage, progress_pct, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (job.id, job.source_path, job.media_kind, job.mime_type,
                     job.file_size, job.status.value, job.stage,
                     job.progress_pct, job.created_at, job.updated_at),
                )
                self.conn.commit()
            except sqlite3.IntegrityError:
                self.conn.rollback()
                raise InvalidTransitionError(f"Job {job.id} already exists")
        logger.debug("Created job %s for %s", job.id, job.source_path)
        return job

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            return self._fetch_job(job_id)

    def update_job(self, job_id: str, **kwargs) -> Job:
        """
        Partial update of one job record, applied atomically.
        Returns the updated job.
        """
        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

        with self._lock:
            current = self._fetch_job(job_id)
            if current.status.is_terminal:
                raise InvalidTransitionError(
                    f"Job {job_id} is {current.status.value} and cannot be modified")

            if 'status' in kwargs:
                new_status = JobStatus(kwargs['status'])
                if new_status not in ALLOWED_TRANSITIONS[current.status]:
                    raise InvalidTransitionError(
                        f"Illegal transition {current.status.value} -> "
                        f"{new_status.value} for job {job_id}")
                kwargs['status'] = new_status.value

            for field in _WRITE_ONCE_FIELDS:
                if field not in kwargs:
                    continue
                if kwargs[field] is None:
                    del kwargs[field]
                elif getattr(current, field) is not None:
                    raise InvalidTransitionError(f"{field} already set for job {job_id}")

            now = self._now()
            kwargs['updated_at'] = max(now, current.updated_at or now)
            sets = ', '.join(f"{k} = ?" for k in kwargs)
            vals = list(kwargs.values()) + [job_id]
            self.conn.execute(
                f"UPDATE jobs SET {sets} WHERE id = ?", vals
            )
            self.conn.commit()
            return self._fetch_job(job_id)

    def update_job_status(self, job_id: str, status: JobStatus, stage: str | None = None,
                          progress_pct: int | None = None, **extra) -> Job:
        fields = {'status': JobStatus(status)}
        if stage is not None:
            fields['stage'] = stage
        if progress_pct is not None:
            fields['progress_pct'] = progress_pct
        if fields['status'].is_terminal:
            fields['completed_at'] = self._now()
        fields.update(extra)
        return self.update_job(job_id, **fields)

    # ── Chunk CRUD ────────────────────────────────────────────────────

    def create_chunks(self, chunks: list[JobChunk]):
        with self._lock:
            self.conn.executemany(
                """INSERT OR REPLACE INTO job_chunks
                   (job_id, idx, path, start_sec, duration_sec, status)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [(c.job_id, c.idx, c.path, c.start_sec, c.duration_sec, c.status)
                 for c in chunks],
            )
            self.conn.commit()

    def get_chunks(self, job_id: str) -> list[JobChunk]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM job_chunks WHERE job_id = ? ORDER BY idx",
                (job_id,),
            ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def update_chunk(self, job_id: str, idx: int, **kwargs):
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [job_id, idx]
        with self._lock:
            self.conn.execute(
                f"UPDATE job_chunks SET {sets} WHERE job_id = ? AND idx = ?", vals
            )
            self.conn.commit()
