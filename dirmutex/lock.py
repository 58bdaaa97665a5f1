"""On-disk mutex protecting a resource.

A held lock is a directory named after the lock inside its parent directory,
containing a ``held`` file with the owner's nonce. Taking the lock renames a
private temporary directory into place: for every filesystem we support, exactly
one of several concurrent renames onto the same path succeeds and the others fail.
"""

from __future__ import annotations

import errno
import logging
import os
import queue
import re
import secrets
import shutil
import tempfile
import threading
import time
from datetime import timedelta
from pathlib import Path

from dirmutex.constants import HELD_FILE, NAME_PATTERN, NONCE_SIZE
from dirmutex.models import LockSettings


logger = logging.getLogger(__name__)

_VALID_NAME = re.compile(NAME_PATTERN)

# rename(2) onto a non-empty directory fails with either of these
_CLAIM_TAKEN_ERRNOS = frozenset({errno.EEXIST, errno.ENOTEMPTY})


class InvalidLockName(ValueError):
    """Raised when a lock name does not match :data:`~dirmutex.constants.NAME_PATTERN`."""


class LockNotHeld(RuntimeError):
    """Raised when releasing a lock this instance does not own."""


class LockTimeout(TimeoutError):
    """Raised by ``with lock:`` when ``settings.timeout`` elapses before acquisition."""


class Lock:
    """A named lock living in ``parent``.

    Constructing a Lock does not acquire it. Ownership is never cached in memory:
    every check re-reads the ``held`` file, so an instance notices when the lock
    has been released and taken by someone else.

    Args:
        parent: Directory that holds the claim directory. Created if missing.
        name: Lock name, must match ``^[a-z]+[a-z0-9.-]*$``.
        settings: Retry cadence and filesystem options. Defaults to
            :meth:`LockSettings.from_env`.
    """

    def __init__(self, parent: str | os.PathLike[str], name: str, *, settings: LockSettings | None = None):
        if not isinstance(name, str) or not _VALID_NAME.fullmatch(name):
            raise InvalidLockName(f'Invalid lock name {name!r}.  Names must match {NAME_PATTERN!r}')
        self._name = name
        self._parent = Path(parent)
        self._nonce = secrets.token_bytes(NONCE_SIZE)
        self.settings = settings if settings is not None else LockSettings.from_env()
        self._parent.mkdir(mode=self.settings.dir_mode, parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return f'Lock(parent={str(self._parent)!r}, name={self._name!r})'

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> Path:
        return self._parent

    @property
    def path(self) -> Path:
        """The claim directory; it exists while anyone holds the lock."""
        return self._parent / self._name

    @property
    def held_file(self) -> Path:
        return self.path / HELD_FILE

    @property
    def nonce(self) -> bytes:
        return self._nonce

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def acquire(self) -> bool:
        """Try once to take the lock.

        Returns ``False`` when someone else holds it, including when a concurrent
        claimant wins the rename race. Any other filesystem failure raises
        ``OSError``.
        """
        try:
            os.stat(self.path)
        except FileNotFoundError:
            pass
        else:
            logger.debug('Lock %s is held by another owner', self.path)
            return False

        temp_dir = tempfile.mkdtemp(prefix=self._nonce.hex(), dir=self.settings.temp_dir)
        try:
            os.chmod(temp_dir, self.settings.dir_mode)
            # The marker goes in before the rename so the claim directory is
            # never visible empty.
            self._write_held(Path(temp_dir) / HELD_FILE)
            os.rename(temp_dir, self.path)
        except OSError as e:
            shutil.rmtree(temp_dir, ignore_errors=True)
            if e.errno in _CLAIM_TAKEN_ERRNOS:
                logger.debug('Lost the race to claim %s', self.path)
                return False
            raise

        logger.debug('Acquired lock %s', self.path)
        return True

    def lock(self) -> None:
        """Block until the lock is acquired. There is no timeout; see :meth:`try_lock`."""
        while not self.acquire():
            time.sleep(self.settings.wait_delay)

    def try_lock(self, duration: float | timedelta) -> bool:
        """Keep trying to acquire the lock for at most ``duration``.

        Returns ``True`` once the lock is acquired and ``False`` if the deadline
        passes first. An ``OSError`` from any attempt is raised, even one that
        happens while the deadline is being signalled.
        """
        if isinstance(duration, timedelta):
            duration = duration.total_seconds()
        # Durations the platform cannot wait on mean "no deadline".
        deadline = None if duration >= threading.TIMEOUT_MAX else max(duration, 0.0)

        cancel: queue.Queue[None] = queue.Queue(maxsize=1)
        outcome: queue.Queue[tuple[bool, Exception | None]] = queue.Queue(maxsize=1)
        worker = threading.Thread(
            target=self._retry_until_cancelled,
            args=(cancel, outcome),
            name=f'dirmutex-{self._name}',
            daemon=True,
        )
        worker.start()

        try:
            acquired, error = outcome.get(timeout=deadline)
        except queue.Empty:
            cancel.put(None)
            # The worker may have been mid-attempt when the deadline passed;
            # whatever it reports last is authoritative.
            acquired, error = outcome.get()
        except BaseException:
            # The caller will never see a result, so a claim the worker made
            # in the meantime must not outlive this call.
            cancel.put(None)
            acquired, _ = outcome.get()
            worker.join()
            if acquired:
                self.unlock()
            raise
        worker.join()

        if error is not None:
            raise error
        return acquired

    def _retry_until_cancelled(
        self,
        cancel: queue.Queue[None],
        outcome: queue.Queue[tuple[bool, Exception | None]],
    ) -> None:
        """Worker body for :meth:`try_lock`. Posts exactly one outcome."""
        try:
            while not self.acquire():
                try:
                    cancel.get(timeout=self.settings.wait_delay)
                except queue.Empty:
                    continue
                outcome.put((False, None))
                return
        except Exception as e:
            outcome.put((False, e))
            return
        outcome.put((True, None))

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def is_held(self) -> bool:
        """True if and only if the ``held`` file exists and contains this instance's nonce."""
        try:
            held_nonce = self.held_file.read_bytes()
        except OSError:
            return False
        return held_nonce == self._nonce

    def unlock(self) -> None:
        """Release the lock. Raises :class:`LockNotHeld` if this instance does not own it.

        The claim directory is renamed aside within ``parent`` and then removed. If
        the rename fails the lock is still held; if the removal fails the lock is
        already free and the detached directory is left behind.
        """
        if not self.is_held():
            raise LockNotHeld(f'Lock {self.path} is not held by this instance')
        # Detach first: a claim directory emptied in place could be replaced by
        # a contender's rename before it is removed.
        released = self._parent / f'.{self._name}.{secrets.token_hex(8)}.released'
        os.rename(self.path, released)
        logger.debug('Released lock %s', self.path)
        shutil.rmtree(released)

    def _write_held(self, held_path: Path) -> None:
        fd = os.open(held_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, self.settings.held_file_mode)
        with open(fd, 'wb') as f:
            f.write(self._nonce)

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> Lock:
        timeout = self.settings.timeout
        if timeout is None:
            self.lock()
        elif not self.try_lock(timeout):
            raise LockTimeout(f'Could not acquire lock {self.path} within {timeout}s')
        return self

    def __exit__(self, *exc) -> None:
        self.unlock()
