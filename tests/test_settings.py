"""Tests for LockSettings and the DIRMUTEX_* environment defaults."""

from __future__ import annotations

import importlib

import pytest
from pydantic import ValidationError

from dirmutex.models import LockSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure DIRMUTEX_* env vars are unset and the constants module is reloaded cleanly."""
    monkeypatch.delenv('DIRMUTEX_WAIT_DELAY', raising=False)
    monkeypatch.delenv('DIRMUTEX_TEMP_DIR', raising=False)
    monkeypatch.delenv('DIRMUTEX_TIMEOUT', raising=False)
    import dirmutex.constants

    importlib.reload(dirmutex.constants)
    yield
    monkeypatch.undo()
    importlib.reload(dirmutex.constants)


class TestLockSettings:
    def test_defaults(self):
        settings = LockSettings()
        assert settings.wait_delay == 1.0
        assert settings.temp_dir is None
        assert settings.timeout is None
        assert settings.dir_mode == 0o755
        assert settings.held_file_mode == 0o644

    @pytest.mark.parametrize('wait_delay', [0, -1])
    def test_non_positive_wait_delay_rejected(self, wait_delay):
        with pytest.raises(ValidationError, match='must be positive'):
            LockSettings(wait_delay=wait_delay)

    def test_numeric_strings_coerced(self):
        settings = LockSettings(wait_delay='0.5', timeout='2')
        assert settings.wait_delay == 0.5
        assert settings.timeout == 2.0

    @pytest.mark.parametrize('timeout', [0, -0.5])
    def test_non_positive_timeout_rejected(self, timeout):
        with pytest.raises(ValidationError, match='must be positive'):
            LockSettings(timeout=timeout)

    @pytest.mark.parametrize('field', ['dir_mode', 'held_file_mode'])
    def test_mode_out_of_range_rejected(self, field):
        with pytest.raises(ValidationError, match='permission mode'):
            LockSettings(**{field: 0o17777})

    def test_frozen(self):
        settings = LockSettings()
        with pytest.raises(ValidationError):
            settings.wait_delay = 2.0


class TestFromEnv:
    def test_defaults_without_env(self):
        settings = LockSettings.from_env()
        assert settings == LockSettings()

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv('DIRMUTEX_WAIT_DELAY', '0.25')
        monkeypatch.setenv('DIRMUTEX_TEMP_DIR', str(tmp_path))
        monkeypatch.setenv('DIRMUTEX_TIMEOUT', '3')
        import dirmutex.constants

        importlib.reload(dirmutex.constants)

        settings = LockSettings.from_env()
        assert settings.wait_delay == 0.25
        assert settings.temp_dir == str(tmp_path)
        assert settings.timeout == 3.0

    def test_blank_values_mean_unset(self, monkeypatch):
        monkeypatch.setenv('DIRMUTEX_TEMP_DIR', '')
        monkeypatch.setenv('DIRMUTEX_TIMEOUT', '  ')
        import dirmutex.constants

        importlib.reload(dirmutex.constants)

        settings = LockSettings.from_env()
        assert settings.temp_dir is None
        assert settings.timeout is None

    def test_invalid_env_value_rejected(self, monkeypatch):
        monkeypatch.setenv('DIRMUTEX_WAIT_DELAY', '-3')
        import dirmutex.constants

        importlib.reload(dirmutex.constants)

        with pytest.raises(ValidationError):
            LockSettings.from_env()

    @pytest.mark.parametrize(
        ('key', 'field'),
        [('DIRMUTEX_WAIT_DELAY', 'wait_delay'), ('DIRMUTEX_TIMEOUT', 'timeout')],
    )
    def test_malformed_env_value_reported_by_field(self, monkeypatch, key, field):
        monkeypatch.setenv(key, 'abc')
        import dirmutex.constants

        # Importing must not fail; the value is only parsed when settings are built.
        importlib.reload(dirmutex.constants)
        importlib.reload(importlib.import_module('dirmutex'))

        with pytest.raises(ValidationError, match=field):
            LockSettings.from_env()

    def test_lock_uses_env_when_no_settings_given(self, monkeypatch, tmp_path):
        monkeypatch.setenv('DIRMUTEX_WAIT_DELAY', '0.05')
        import dirmutex.constants

        importlib.reload(dirmutex.constants)
        from dirmutex.lock import Lock

        lock = Lock(tmp_path, 'env-lock')
        assert lock.settings.wait_delay == 0.05

    def test_explicit_settings_win(self, monkeypatch, tmp_path):
        monkeypatch.setenv('DIRMUTEX_WAIT_DELAY', '9')
        import dirmutex.constants

        importlib.reload(dirmutex.constants)
        from dirmutex.lock import Lock

        lock = Lock(tmp_path, 'env-lock', settings=LockSettings(wait_delay=0.01))
        assert lock.settings.wait_delay == 0.01
