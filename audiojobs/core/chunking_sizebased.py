"""
Size-based audio chunking using ffmpeg.
Chunks only when the file exceeds the per-request size ceiling.

The split is uniform in time: num_chunks = ceil(size_mb / ceiling_mb) and
every chunk covers duration / num_chunks seconds. Variable-bitrate input
can therefore still produce a chunk above the ceiling; chunks are not
re-split.
"""

import math
import logging
from pathlib import Path
from typing import Callable

from audiojobs.core.error_codes import ChunkingError
from audiojobs.core.constants import (
    CHUNK_SIZE_MB, BYTES_PER_MB, CHUNK_NAME_TEMPLATE, EXTRACTED_AUDIO_TEMPLATE,
    DEFAULT_AUDIO_EXT, MediaKind,
)
from audiojobs.core.media_ffmpeg import probe_duration, slice_media, extract_audio
from audiojobs.core.models_sqlite import Chunk
from audiojobs.core.cleanup import cleanup_chunk_files

logger = logging.getLogger(__name__)

Probe = Callable[[Path], float]
Slicer = Callable[[Path, float, float, Path], Path]
Extractor = Callable[[Path, Path], Path]


def needs_chunking(file_size: int, chunk_size_mb: float = CHUNK_SIZE_MB) -> bool:
    """Check if a file needs chunking based on its size in bytes."""
    return file_size > chunk_size_mb * BYTES_PER_MB


def create_chunk_manifest(duration_sec: float, file_size: int,
                          chunk_size_mb: float = CHUNK_SIZE_MB) -> list[dict]:
    """
    Create chunk manifest entries for a file that needs chunking.
    Returns list of dicts with idx, start_sec, duration_sec.
    """
    size_mb = file_size / BYTES_PER_MB
    num_chunks = math.ceil(size_mb / chunk_size_mb)
    chunk_duration = duration_sec / num_chunks

    return [
        {
            'idx': idx,
            'start_sec': idx * chunk_duration,
            'duration_sec': chunk_duration,
        }
        for idx in range(num_chunks)
    ]


def chunk_path_for(source_path: Path, job_id: str, idx: int) -> Path:
    """Deterministic per-job chunk file name, next to the source."""
    source_path = Path(source_path)
    ext = source_path.suffix or DEFAULT_AUDIO_EXT
    return source_path.with_name(
        CHUNK_NAME_TEMPLATE.format(stem=source_path.stem, job_id=job_id, idx=idx, ext=ext)
    )


def prepare_audio(source_path: Path, media_kind: str, job_id: str,
                  extractor: Extractor = extract_audio) -> tuple[Path, list[Path]]:
    """
    Return the audio file to chunk plus any derived files created for it.
    Video uploads get their audio track extracted first.
    """
    source_path = Path(source_path)
    if not source_path.exists():
        raise ChunkingError(f"Source file not found: {source_path}")

    if MediaKind(media_kind) != MediaKind.VIDEO:
        return source_path, []

    audio_path = source_path.with_name(
        EXTRACTED_AUDIO_TEMPLATE.format(stem=source_path.stem, job_id=job_id)
    )
    try:
        extractor(source_path, audio_path)
    except ChunkingError:
        cleanup_chunk_files([audio_path], source_path)
        raise
    return audio_path, [audio_path]


def split_into_chunks(source_path: Path, job_id: str,
                      chunk_size_mb: float = CHUNK_SIZE_MB,
                      probe: Probe = probe_duration,
                      slicer: Slicer = slice_media) -> list[Chunk]:
    """
    Split source_path into time-ordered chunks at or below chunk_size_mb.
    A file already under the ceiling is returned as its own single chunk.
    """
    source_path = Path(source_path)
    try:
        file_size = source_path.stat().st_size
    except OSError as e:
        raise ChunkingError(f"Cannot read source file {source_path}: {e}")

    if not needs_chunking(file_size, chunk_size_mb):
        return [Chunk(path=source_path, idx=0, job_id=job_id, derived=False)]

    try:
        duration = probe(source_path)
    except ChunkingError:
        raise
    except Exception as e:
        raise ChunkingError(f"Duration probe failed for {source_path.name}: {e}")
    if not duration or duration <= 0:
        raise ChunkingError(f"Could not determine duration of {source_path.name}")

    manifest = create_chunk_manifest(duration, file_size, chunk_size_mb)
    chunks: list[Chunk] = []

    for entry in manifest:
        chunk_file = chunk_path_for(source_path, job_id, entry['idx'])
        try:
            slicer(source_path, entry['start_sec'], entry['duration_sec'], chunk_file)
        except Exception as e:
            # Drop everything produced so far, including a partial write.
            cleanup_chunk_files([c.path for c in chunks] + [chunk_file], source_path)
            if isinstance(e, ChunkingError):
                raise
            raise ChunkingError(f"Chunk {entry['idx']} creation failed: {e}")

        chunks.append(Chunk(
            path=chunk_file,
            idx=entry['idx'],
            job_id=job_id,
            start_sec=entry['start_sec'],
            duration_sec=entry['duration_sec'],
        ))

    logger.info("Created %d chunks of %.1fs for job %s",
                len(chunks), manifest[0]['duration_sec'], job_id)
    return chunks
