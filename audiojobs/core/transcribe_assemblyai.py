"""
AssemblyAI Speech-to-Text integration.
Upload → submit (speaker labels on) → poll until completed or error.

No retries here: a provider error is a hard failure of the chunk.
"""

import logging
import time
import requests
from pathlib import Path
from typing import Callable

from audiojobs.core.error_codes import TranscriptionError, TranscriptionTimeoutError
from audiojobs.core.constants import (
    ASSEMBLYAI_API_BASE,
    POLL_INTERVAL_SEC, MAX_POLL_ATTEMPTS,
)

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT_SEC = 30


class AssemblyAIClient:
    """Thin AssemblyAI REST client: submit(audio_path) and poll(transcript_id)."""

    def __init__(self, api_key: str | None, speaker_labels: bool = True,
                 base_url: str = ASSEMBLYAI_API_BASE):
        self.api_key = api_key
        self.speaker_labels = speaker_labels
        self.base_url = base_url.rstrip('/')

    @property
    def _headers(self) -> dict:
        return {"authorization": self.api_key}

    def _require_key(self):
        if not self.api_key:
            raise TranscriptionError("AssemblyAI API key not set")

    def _request(self, method: str, url: str, action: str, **kwargs) -> dict:
        try:
            resp = requests.request(method, url, headers=self._headers, **kwargs)
        except requests.exceptions.Timeout:
            raise TranscriptionError(f"AssemblyAI {action} timed out")
        except requests.exceptions.RequestException as e:
            raise TranscriptionError(f"AssemblyAI {action} failed: {e}")

        if resp.status_code != 200:
            error_body = resp.text[:300] if resp.text else "No response body"
            raise TranscriptionError(
                f"AssemblyAI {action} returned {resp.status_code}: {error_body}")

        try:
            return resp.json()
        except ValueError:
            raise TranscriptionError(f"Failed to parse AssemblyAI {action} response JSON")

    def upload(self, audio_path: Path) -> str:
        """Upload raw audio bytes; returns the provider-side upload URL."""
        self._require_key()
        audio_path = Path(audio_path)
        file_size = audio_path.stat().st_size
        # Adaptive timeout: ~1 min per 10MB, minimum 120s
        timeout_sec = max(120, int(file_size / (10 * 1024 * 1024) * 60) + 60)

        with open(audio_path, 'rb') as f:
            data = self._request(
                "POST", f"{self.base_url}/upload", "upload",
                data=f, timeout=timeout_sec,
            )

        upload_url = data.get('upload_url')
        if not upload_url:
            raise TranscriptionError("AssemblyAI upload returned no upload_url")
        return upload_url

    def submit(self, audio_path: Path) -> str:
        """Upload audio and start a transcript; returns the transcript id."""
        upload_url = self.upload(audio_path)
        data = self._request(
            "POST", f"{self.base_url}/transcript", "submit",
            json={"audio_url": upload_url, "speaker_labels": self.speaker_labels},
            timeout=_REQUEST_TIMEOUT_SEC,
        )
        transcript_id = data.get('id')
        if not transcript_id:
            raise TranscriptionError("AssemblyAI submit returned no transcript id")
        logger.info("Submitted %s as transcript %s", Path(audio_path).name, transcript_id)
        return transcript_id

    def poll(self, transcript_id: str) -> dict:
        """Fetch the current transcript state."""
        self._require_key()
        return self._request(
            "GET", f"{self.base_url}/transcript/{transcript_id}", "poll",
            timeout=_REQUEST_TIMEOUT_SEC,
        )


def wait_for_transcript(provider, transcript_id: str,
                        poll_interval: float = POLL_INTERVAL_SEC,
                        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
                        sleep: Callable[[float], None] = time.sleep) -> dict:
    """
    Poll until the provider reports completed or error.
    Raises TranscriptionTimeoutError once max_poll_attempts polls are spent.
    """
    for attempt in range(1, max_poll_attempts + 1):
        sleep(poll_interval)
        result = provider.poll(transcript_id)
        status = result.get('status')

        if status == 'completed':
            logger.debug("Transcript %s completed after %d polls", transcript_id, attempt)
            return result
        if status == 'error':
            raise TranscriptionError(
                f"AssemblyAI transcription failed: {result.get('error') or 'unknown error'}")
        if status not in ('queued', 'processing'):
            logger.warning("Transcript %s reported unexpected status %r", transcript_id, status)

    raise TranscriptionTimeoutError(
        f"Transcript {transcript_id} not finished after {max_poll_attempts} polls "
        f"({max_poll_attempts * poll_interval:.0f}s)")


def extract_transcript_text(response: dict) -> str:
    """
    Render a completed transcript.
    Uses speaker-labelled utterances if present, falls back to plain text.
    """
    utterances = response.get('utterances') or []
    if utterances:
        return '\n'.join(f"Speaker {u.get('speaker')}: {u.get('text', '')}"
                         for u in utterances)
    return response.get('text') or ""
