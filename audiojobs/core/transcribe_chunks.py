"""
Ordered multi-chunk transcription.

Chunks are transcribed one at a time in ordinal order, so the merged
transcript needs no reordering. Do not parallelise these calls without
adding a reorder buffer.
"""

import logging
import time
from typing import Callable, Optional, Sequence

from audiojobs.core.constants import POLL_INTERVAL_SEC, MAX_POLL_ATTEMPTS
from audiojobs.core.error_codes import TranscriptionError
from audiojobs.core.models_sqlite import Chunk
from audiojobs.core.transcribe_assemblyai import wait_for_transcript, extract_transcript_text

logger = logging.getLogger(__name__)


def merge_transcripts(texts: Sequence[str]) -> str:
    """Concatenate chunk texts in order, each followed by a newline."""
    return ''.join(f"{text}\n" for text in texts)


def transcribe_chunks(chunks: Sequence[Chunk], provider,
                      poll_interval: float = POLL_INTERVAL_SEC,
                      max_poll_attempts: int = MAX_POLL_ATTEMPTS,
                      sleep: Callable[[float], None] = time.sleep,
                      on_chunk_done: Optional[Callable[[Chunk, int], None]] = None) -> str:
    """
    Transcribe every chunk through provider and return the merged transcript.

    provider needs submit(path) -> transcript_id and poll(transcript_id) -> dict.
    The first failing chunk aborts the run; later chunks are never submitted.
    """
    ordered = sorted(chunks, key=lambda c: c.idx)
    total = len(ordered)
    texts = []

    for position, chunk in enumerate(ordered):
        logger.info("Transcribing chunk %d/%d: %s", position + 1, total, chunk.path)
        try:
            transcript_id = provider.submit(chunk.path)
            result = wait_for_transcript(
                provider, transcript_id,
                poll_interval=poll_interval,
                max_poll_attempts=max_poll_attempts,
                sleep=sleep,
            )
        except TranscriptionError as e:
            logger.error("Chunk %d of job %s failed: %s", chunk.idx, chunk.job_id, e.message)
            raise e.for_chunk(chunk.idx, chunk.path, total) from e
        except Exception as e:
            logger.error("Chunk %d of job %s failed: %s", chunk.idx, chunk.job_id, e)
            raise TranscriptionError(str(e)).for_chunk(chunk.idx, chunk.path, total) from e

        texts.append(extract_transcript_text(result))
        if on_chunk_done:
            on_chunk_done(chunk, total)

    return merge_transcripts(texts)
