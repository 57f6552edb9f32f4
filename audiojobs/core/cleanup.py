"""
Cleanup: delete derived audio files after a job reaches a terminal state.
"""

import logging
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


def cleanup_chunk_files(paths: Iterable[Path], source_path: Path | None = None) -> list[Path]:
    """
    Best-effort deletion of derived files (chunks, extracted audio).

    The original upload is never deleted, even if it appears in paths.
    Returns the paths that were actually removed.
    """
    protected = Path(source_path).resolve() if source_path else None
    removed = []

    for path in paths:
        path = Path(path)
        if protected is not None and path.resolve() == protected:
            continue
        if not path.exists():
            continue
        try:
            path.unlink()
            removed.append(path)
            logger.debug("Deleted: %s", path)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)

    return removed
