"""
Diagnostics: tool version detection and system checks.
"""

import os
import shutil
import logging

from audiojobs.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("ffmpeg", "ffprobe")


def get_tool_version(tool: str) -> str:
    """Return the first line of `<tool> -version`, or an error message."""
    try:
        result = run_subprocess_capture([tool, "-version"], timeout=10)
        if result.returncode == 0:
            return result.stdout.strip().splitlines()[0]
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def missing_tools() -> list[str]:
    """Required media tools not found on PATH."""
    return [tool for tool in REQUIRED_TOOLS if not shutil.which(tool)]


def check_api_keys() -> list[str]:
    """Names of provider key variables that are not set."""
    return [name for name in ("ASSEMBLYAI_API_KEY", "GEMINI_API_KEY")
            if not os.environ.get(name)]


def collect_diagnostics() -> dict:
    return {
        'ffmpeg': get_tool_version("ffmpeg"),
        'ffprobe': get_tool_version("ffprobe"),
        'missing_tools': missing_tools(),
        'missing_api_keys': check_api_keys(),
    }
