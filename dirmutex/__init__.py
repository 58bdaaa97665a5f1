"""Cross-process mutex backed by an atomic directory rename."""

from dirmutex.constants import HELD_FILE, NAME_PATTERN, NONCE_SIZE
from dirmutex.lock import InvalidLockName, Lock, LockNotHeld, LockTimeout
from dirmutex.models import LockSettings


__all__ = [
    'HELD_FILE',
    'NAME_PATTERN',
    'NONCE_SIZE',
    'InvalidLockName',
    'Lock',
    'LockNotHeld',
    'LockSettings',
    'LockTimeout',
]
