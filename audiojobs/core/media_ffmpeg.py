"""
ffmpeg / ffprobe wrappers: duration probe, time-range slicing and
audio-track extraction for video uploads.
"""

import logging
from pathlib import Path

from audiojobs.core.security_utils import run_subprocess_capture
from audiojobs.core.error_codes import ChunkingError
from audiojobs.core.constants import ErrorCode

logger = logging.getLogger(__name__)


def probe_duration(media_path: Path) -> float:
    """Get media duration in seconds using ffprobe."""
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(media_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=30)
    except Exception as e:
        raise ChunkingError(f"ffprobe failed for {Path(media_path).name}: {e}",
                            code=ErrorCode.PROBE)

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise ChunkingError(f"ffprobe failed (rc={result.returncode}): {stderr[:300]}",
                            code=ErrorCode.PROBE)

    try:
        return float(result.stdout.strip())
    except ValueError:
        raise ChunkingError(f"ffprobe returned no duration for {Path(media_path).name}",
                            code=ErrorCode.PROBE)


def slice_media(source_path: Path, start_sec: float, duration_sec: float,
                output_path: Path) -> Path:
    """Copy [start_sec, start_sec + duration_sec) of the audio stream into output_path."""
    args = [
        "ffmpeg",
        "-y",
        "-i", str(source_path),
        "-ss", f"{start_sec:.3f}",
        "-t", f"{duration_sec:.3f}",
        "-vn",
        "-codec:a", "copy",
        str(output_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=300)
    except Exception as e:
        raise ChunkingError(f"Slice {Path(output_path).name} failed: {e}")

    if result.returncode != 0:
        raise ChunkingError(
            f"ffmpeg slice {Path(output_path).name} failed: "
            f"{result.stderr[:200] if result.stderr else 'unknown error'}")

    if not Path(output_path).exists():
        raise ChunkingError(f"Chunk file {Path(output_path).name} not created")

    return Path(output_path)


def extract_audio(video_path: Path, output_path: Path) -> Path:
    """
    Extract the audio track of a video to MP3.
    Returns path to the extracted file.
    """
    args = [
        "ffmpeg",
        "-y",
        "-i", str(video_path),
        "-vn",
        "-codec:a", "libmp3lame",
        "-q:a", "4",
        str(output_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=600)
    except Exception as e:
        raise ChunkingError(f"ffmpeg audio extraction failed: {e}",
                            code=ErrorCode.AUDIO_EXTRACT)

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise ChunkingError(f"ffmpeg failed (rc={result.returncode}): {stderr[:300]}",
                            code=ErrorCode.AUDIO_EXTRACT)

    if not Path(output_path).exists():
        raise ChunkingError("Extracted audio file not created", code=ErrorCode.AUDIO_EXTRACT)

    logger.info("Extracted audio: %s", output_path)
    return Path(output_path)
