#!/usr/bin/env python3
"""
AudioSummarizer v1.0.0 — command-line entry point.
Transcribes and summarizes local audio/video files through the job queue.

Usage:
    python3 main.py talk.mp3 interview.mp4 --output-dir ./results
"""

import sys
import json
import argparse
import logging
import mimetypes
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from audiojobs.core.config import AppConfig
from audiojobs.core.constants import APP_VERSION, LOG_DIR, EXTENSION_MIME_TYPES, JobStatus
from audiojobs.core.diagnostics import missing_tools, check_api_keys, collect_diagnostics
from audiojobs.core.error_codes import JobError
from audiojobs.core.job_service import JobService
from audiojobs.core.output_writer import write_job_results

logger = logging.getLogger("audiojobs")


def setup_logging(level: str = "INFO") -> Path:
    """Log to <app data>/logs/app.log and stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "app.log"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )
    return log_file


def guess_mime_type(path: Path) -> str | None:
    mime = EXTENSION_MIME_TYPES.get(path.suffix.lower())
    if mime is None:
        mime, _ = mimetypes.guess_type(path.name)
    return mime


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="audiojobs",
        description="Transcribe and summarize audio/video files.",
    )
    parser.add_argument("files", nargs="*", type=Path, help="audio or video files")
    parser.add_argument("--mime", help="MIME type for every file (default: from extension)")
    parser.add_argument("--output-dir", type=Path,
                        help="where to write transcript/summary files")
    parser.add_argument("--timeout", type=float, default=None,
                        help="seconds to wait for each job")
    parser.add_argument("--config", type=Path, help="config JSON path")
    parser.add_argument("--diagnostics", action="store_true",
                        help="print tool and key checks, then exit")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.diagnostics:
        print(json.dumps(collect_diagnostics(), indent=2))
        return 0
    if not args.files:
        print("audiojobs: no input files", file=sys.stderr)
        return 2

    config = AppConfig(args.config)
    log_file = setup_logging(config.get('log_level', 'INFO'))

    logger.info("=" * 60)
    logger.info("AudioSummarizer v%s starting at %s", APP_VERSION, datetime.now().isoformat())
    logger.info("Log file: %s", log_file)
    logger.info("=" * 60)

    missing = missing_tools()
    if missing:
        logger.error("Missing required tools: %s", ", ".join(missing))
        return 2
    for name in check_api_keys():
        logger.warning("%s is not set; jobs will fail at that stage", name)

    output_root = args.output_dir or config.output_root
    failures = 0

    with JobService(config) as service:
        job_ids = []
        for path in args.files:
            mime = args.mime or guess_mime_type(path)
            try:
                job_ids.append((path, service.submit_job(path, mime)))
            except (JobError, FileNotFoundError) as e:
                print(f"{path}: rejected: {e}")
                failures += 1

        for path, job_id in job_ids:
            view = service.wait_for_job(job_id, args.timeout)
            if view.status == JobStatus.COMPLETED.value:
                written = write_job_results(service, job_id, output_root)
                print(f"{path}: completed ({job_id}) -> {', '.join(str(p) for p in written)}")
            else:
                failures += 1
                detail = view.error_message or f"still {view.status}"
                print(f"{path}: {view.status} ({job_id}): {detail}")

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
