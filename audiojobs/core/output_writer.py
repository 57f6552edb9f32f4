"""
Output writer: writes a completed job's transcript and summary as TXT files.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def write_job_results(service, job_id: str, output_root: Path) -> list[Path]:
    """
    Write <job_id>_transcript.txt and <job_id>_summary.txt under output_root.
    Returns the paths written.
    """
    output_root = Path(output_root)
    output_root.mkdir(parents=True, exist_ok=True)

    written = []
    for kind in ('transcript', 'summary'):
        filename, text = service.get_result_text(job_id, kind)
        output_file = output_root / filename
        output_file.write_text(text, encoding='utf-8')
        written.append(output_file)
        logger.info("Wrote %s: %s", kind, output_file)

    return written
