"""
Shared constants for AudioSummarizer.
"""

import os
import pathlib
from enum import Enum

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "AudioSummarizer"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_DATA_DIR = pathlib.Path(os.environ.get("AUDIOJOBS_HOME", HOME / ".audiojobs"))
DB_PATH = APP_DATA_DIR / "jobs.db"
CONFIG_PATH = APP_DATA_DIR / "config.json"
LOG_DIR = APP_DATA_DIR / "logs"
DEFAULT_OUTPUT_ROOT = APP_DATA_DIR / "results"

# ── Job status values ─────────────────────────────────────────────────
class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Every legal edge of the job lifecycle; anything else is rejected by the store.
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

# ── Job stage values (ordered) ────────────────────────────────────────
class JobStage:
    QUEUED = "QUEUED"
    PREPARING_AUDIO = "PREPARING_AUDIO"
    CHUNKING_AUDIO = "CHUNKING_AUDIO"
    TRANSCRIBING = "TRANSCRIBING"
    SUMMARIZING = "SUMMARIZING"
    DONE = "DONE"

# ── Chunk status ──────────────────────────────────────────────────────
class ChunkStatus:
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"

# ── Media kinds ───────────────────────────────────────────────────────
class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


MIME_MEDIA_KINDS = {
    "audio/mp3": MediaKind.AUDIO,
    "audio/mpeg": MediaKind.AUDIO,
    "audio/mp4": MediaKind.AUDIO,
    "audio/x-m4a": MediaKind.AUDIO,
    "audio/wav": MediaKind.AUDIO,
    "audio/x-wav": MediaKind.AUDIO,
    "video/mp4": MediaKind.VIDEO,
}

EXTENSION_MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/x-m4a",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
}

MAX_UPLOAD_BYTES = 200 * 1024 * 1024   # 200 MB

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    UNSUPPORTED_MEDIA = "ERR_UNSUPPORTED_MEDIA"
    JOB_NOT_FOUND = "ERR_JOB_NOT_FOUND"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    QUEUE_CLOSED = "ERR_QUEUE_CLOSED"
    RESULT_NOT_AVAILABLE = "ERR_RESULT_NOT_AVAILABLE"

    # Pipeline stages
    AUDIO_EXTRACT = "ERR_AUDIO_EXTRACT"
    PROBE = "ERR_PROBE"
    CHUNKING = "ERR_CHUNKING"
    TRANSCRIBE_FAILED = "ERR_TRANSCRIBE_FAILED"
    TRANSCRIBE_TIMEOUT = "ERR_TRANSCRIBE_TIMEOUT"
    SUMMARIZE_FAILED = "ERR_SUMMARIZE_FAILED"
    UNEXPECTED = "ERR_UNEXPECTED"

# ── Audio pipeline defaults ───────────────────────────────────────────
CHUNK_SIZE_MB = 20
BYTES_PER_MB = 1024 * 1024
# Derived names carry the job id; jobs may share a source path.
CHUNK_NAME_TEMPLATE = "{stem}_{job_id}_chunk{idx:03d}{ext}"
EXTRACTED_AUDIO_TEMPLATE = "{stem}_{job_id}_audio.mp3"
DEFAULT_AUDIO_EXT = ".mp3"

# ── Polling ───────────────────────────────────────────────────────────
POLL_INTERVAL_SEC = 3.0
MAX_POLL_ATTEMPTS = 1200       # 1 hour at the default interval

# ── Worker pool ───────────────────────────────────────────────────────
WORKER_COUNT = 2

# ── Progress mapping ─────────────────────────────────────────────────
PROGRESS_PREPARE = 5
PROGRESS_CHUNK = 10
PROGRESS_TRANSCRIBE_START = 10
PROGRESS_TRANSCRIBE_END = 85
PROGRESS_SUMMARIZE = 90
PROGRESS_DONE = 100

# ── AssemblyAI ────────────────────────────────────────────────────────
ASSEMBLYAI_API_BASE = "https://api.assemblyai.com/v2"

# ── Gemini ────────────────────────────────────────────────────────────
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_MODEL = "gemini-2.0-flash-exp"
SUMMARY_PROMPT = (
    "Summarize the following transcript in 200-300 words, capturing the "
    "main topics, key points, and conclusions.\n\n"
)
SUMMARY_TIMEOUT_SEC = 120

# ── Misc ──────────────────────────────────────────────────────────────
MAX_ERROR_MESSAGE_LEN = 2000
