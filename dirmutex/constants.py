"""Shared constants for dirmutex.

Tunable values are read from environment variables so a deployment can change
retry cadence or the scratch area without touching code. They are kept as raw
strings here; :meth:`dirmutex.models.LockSettings.from_env` parses and validates
them.
"""

from __future__ import annotations

import os


NAME_PATTERN = '^[a-z]+[a-z0-9.-]*$'
NONCE_SIZE = 20
HELD_FILE = 'held'
DIR_MODE = 0o755
HELD_FILE_MODE = 0o644


def _read_env(key: str) -> str | None:
    """Read an environment variable, returning *None* when it is unset or blank."""
    raw = os.environ.get(key, '').strip()
    return raw or None


WAIT_DELAY = _read_env('DIRMUTEX_WAIT_DELAY') or '1.0'
TEMP_DIR = _read_env('DIRMUTEX_TEMP_DIR')
TIMEOUT = _read_env('DIRMUTEX_TIMEOUT')
