"""
Application configuration manager.
Stores settings in a JSON file under the app data directory; API keys
come from the environment and are never written to disk.
"""

import json
import logging
import os
from pathlib import Path

from audiojobs.core.constants import (
    CONFIG_PATH, DB_PATH, DEFAULT_OUTPUT_ROOT, CHUNK_SIZE_MB,
    POLL_INTERVAL_SEC, MAX_POLL_ATTEMPTS, WORKER_COUNT, GEMINI_MODEL,
)

# Validation bounds
_CHUNK_SIZE_MIN = 1
_CHUNK_SIZE_MAX = 200
_POLL_INTERVAL_MIN = 0.5
_POLL_INTERVAL_MAX = 60
_POLL_ATTEMPTS_MIN = 1
_POLL_ATTEMPTS_MAX = 100000
_WORKERS_MIN = 1
_WORKERS_MAX = 16

_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'db_path': str(DB_PATH),
    'output_root': str(DEFAULT_OUTPUT_ROOT),
    'chunk_size_mb': CHUNK_SIZE_MB,
    'poll_interval_sec': POLL_INTERVAL_SEC,
    'max_poll_attempts': MAX_POLL_ATTEMPTS,
    'worker_count': WORKER_COUNT,
    'speaker_labels': True,
    'gemini_model': GEMINI_MODEL,
    'log_level': 'INFO',
}

# Secrets: environment only
_ENV_SECRETS = {
    'assemblyai_api_key': 'ASSEMBLYAI_API_KEY',
    'gemini_api_key': 'GEMINI_API_KEY',
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, overrides: dict | None = None):
        self.path = Path(config_path or CONFIG_PATH)
        self._data: dict = {}
        self.load()
        for key, value in (overrides or {}).items():
            self._data[key] = self._validate(key, value)

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    if key in _ENV_SECRETS:
                        logger.warning("Ignoring %s in config file; set %s instead",
                                       key, _ENV_SECRETS[key])
                        continue
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {k: v for k, v in self._data.items() if k not in _ENV_SECRETS}
        with open(self.path, 'w') as f:
            json.dump(data, f, indent=2)

    def get(self, key: str, default=None):
        if key in _ENV_SECRETS:
            return os.environ.get(_ENV_SECRETS[key]) or default
        return self._data.get(key, default)

    def set(self, key: str, value):
        if key in _ENV_SECRETS:
            raise ValueError(f"{key} is read from {_ENV_SECRETS[key]}, not the config file")
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'chunk_size_mb':
            return _clamp(value, float, _CHUNK_SIZE_MIN, _CHUNK_SIZE_MAX, CHUNK_SIZE_MB, key)

        if key == 'poll_interval_sec':
            return _clamp(value, float, _POLL_INTERVAL_MIN, _POLL_INTERVAL_MAX,
                          POLL_INTERVAL_SEC, key)

        if key == 'max_poll_attempts':
            return _clamp(value, int, _POLL_ATTEMPTS_MIN, _POLL_ATTEMPTS_MAX,
                          MAX_POLL_ATTEMPTS, key)

        if key == 'worker_count':
            return _clamp(value, int, _WORKERS_MIN, _WORKERS_MAX, WORKER_COUNT, key)

        if key == 'speaker_labels':
            return bool(value)

        if key == 'log_level':
            level = str(value).upper()
            if level not in _LOG_LEVELS:
                logger.warning("Invalid log_level %r — using INFO", value)
                return 'INFO'
            return level

        return value

    @property
    def db_path(self) -> Path:
        return Path(self._data['db_path'])

    @property
    def output_root(self) -> Path:
        return Path(self._data['output_root'])

    @property
    def chunk_size_mb(self) -> float:
        return self._data['chunk_size_mb']

    @property
    def poll_interval_sec(self) -> float:
        return self._data['poll_interval_sec']

    @property
    def max_poll_attempts(self) -> int:
        return self._data['max_poll_attempts']

    @property
    def worker_count(self) -> int:
        return self._data['worker_count']

    @property
    def assemblyai_api_key(self) -> str | None:
        return self.get('assemblyai_api_key')

    @property
    def gemini_api_key(self) -> str | None:
        return self.get('gemini_api_key')


def _clamp(value, cast, low, high, default, key):
    try:
        value = cast(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r — using default", key, value)
        return default
    return max(low, min(high, value))
