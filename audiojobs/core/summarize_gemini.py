"""
Google Gemini summarization.
One generateContent call per transcript, no chunking, no retries.
"""

import logging
import requests

from audiojobs.core.error_codes import SummarizationError
from audiojobs.core.security_utils import redact_secret
from audiojobs.core.constants import (
    GEMINI_API_BASE, GEMINI_MODEL, SUMMARY_PROMPT, SUMMARY_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)


class GeminiClient:
    def __init__(self, api_key: str | None, model: str = GEMINI_MODEL,
                 base_url: str = GEMINI_API_BASE,
                 timeout_sec: int = SUMMARY_TIMEOUT_SEC):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout_sec = timeout_sec

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def summarize(self, text: str) -> str:
        """Return a 200-300 word prose summary of text."""
        if not self.api_key:
            raise SummarizationError("Gemini API key not set")

        payload = {
            "contents": [
                {"parts": [{"text": f"{SUMMARY_PROMPT}{text}"}]}
            ]
        }

        try:
            resp = requests.post(
                self.endpoint,
                params={"key": self.api_key},
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_sec,
            )
        except requests.exceptions.RequestException as e:
            # Transport errors echo the URL, which carries the key.
            raise SummarizationError(
                "Gemini API request failed: " + redact_secret(str(e), self.api_key))

        if resp.status_code != 200:
            body = redact_secret(resp.text[:500] if resp.text else "No response body",
                                 self.api_key)
            logger.error("Gemini API error: %s %s", resp.status_code, body)
            raise SummarizationError(f"Gemini API error: {resp.status_code} {body}")

        try:
            data = resp.json()
        except ValueError:
            raise SummarizationError("Failed to parse Gemini response JSON")

        summary = extract_summary_text(data)
        if not summary.strip():
            reason = _block_reason(data)
            raise SummarizationError(
                "Gemini returned no summary text" + (f" ({reason})" if reason else ""))
        return summary


def extract_summary_text(response: dict) -> str:
    """First candidate's text parts, joined."""
    try:
        parts = response['candidates'][0]['content']['parts']
    except (KeyError, IndexError, TypeError):
        return ""
    return ''.join(p.get('text', '') for p in parts if isinstance(p, dict))


def _block_reason(response) -> str:
    if not isinstance(response, dict):
        return ""
    feedback = response.get('promptFeedback') or {}
    if isinstance(feedback, dict) and feedback.get('blockReason'):
        return f"blocked: {feedback['blockReason']}"
    candidates = response.get('candidates') or []
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict) \
            and candidates[0].get('finishReason'):
        return f"finishReason: {candidates[0]['finishReason']}"
    return ""
