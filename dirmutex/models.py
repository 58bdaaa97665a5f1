"""Pydantic models for lock configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

from dirmutex import constants


class LockSettings(BaseModel):
    """Tunables shared by every acquisition path of a :class:`~dirmutex.lock.Lock`.

    ``wait_delay`` is the pause between claim attempts in seconds and must be
    positive; there is no busy-polling mode. ``timeout`` only bounds the
    context-manager form; ``lock()`` and ``try_lock()`` take their bound from the
    caller.
    """

    model_config = ConfigDict(frozen=True)

    wait_delay: float = 1.0
    temp_dir: str | None = None
    timeout: float | None = None
    dir_mode: int = constants.DIR_MODE
    held_file_mode: int = constants.HELD_FILE_MODE

    @field_validator('wait_delay')
    @classmethod
    def wait_delay_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f'must be positive, got: {v}')
        return v

    @field_validator('timeout')
    @classmethod
    def timeout_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError(f'must be positive, got: {v}')
        return v

    @field_validator('dir_mode', 'held_file_mode')
    @classmethod
    def mode_in_range(cls, v: int) -> int:
        if not 0 <= v <= 0o7777:
            raise ValueError(f'must be a permission mode between 0 and 0o7777, got: {oct(v)}')
        return v

    @classmethod
    def from_env(cls) -> LockSettings:
        """Build settings from the ``DIRMUTEX_*`` environment defaults.

        Malformed values raise ``ValidationError`` naming the offending field.
        """
        return cls(
            wait_delay=constants.WAIT_DELAY,
            temp_dir=constants.TEMP_DIR,
            timeout=constants.TIMEOUT,
        )
