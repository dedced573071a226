"""Regression coverage for development master key handling."""

from __future__ import annotations

import importlib
import json
import sys

import pytest
from cryptography.fernet import Fernet
from django.core.exceptions import ImproperlyConfigured


def _reload_base_settings():
    for module in [
        "shift_biometrics.settings.base",
        "shift_biometrics.settings",
    ]:
        sys.modules.pop(module, None)
    return importlib.import_module("shift_biometrics.settings.base")


@pytest.fixture(autouse=True)
def _reset_environment(monkeypatch):
    """Ensure encryption-specific environment variables do not leak between tests."""

    for env_var in ["BIOMETRICS_KEY_ENCRYPTION_KEYS", "DJANGO_DEBUG"]:
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("DJANGO_DEBUG", "1")
    yield


def test_dev_keys_are_persisted_and_reusable(tmp_path, monkeypatch):
    cache_path = tmp_path / "dev_keys.json"
    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(cache_path))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(tmp_path / ".env"))

    settings_base = _reload_base_settings()

    (first_key,) = settings_base.BIOMETRICS_KEY_ENCRYPTION_KEYS
    wrapped = Fernet(first_key).encrypt(b"profile-key")

    assert cache_path.exists()
    cache = json.loads(cache_path.read_text())
    assert cache["BIOMETRICS_KEY_ENCRYPTION_KEYS"] == first_key.decode()

    settings_base = _reload_base_settings()

    assert settings_base.BIOMETRICS_KEY_ENCRYPTION_KEYS == (first_key,)
    assert Fernet(first_key).decrypt(wrapped) == b"profile-key"


def test_dotenv_values_are_respected(tmp_path, monkeypatch):
    cache_path = tmp_path / "dev_keys.json"
    dotenv_path = tmp_path / ".env"
    newest, oldest = Fernet.generate_key(), Fernet.generate_key()
    dotenv_path.write_text(
        f"BIOMETRICS_KEY_ENCRYPTION_KEYS='{newest.decode()},{oldest.decode()}'\n"
    )

    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(cache_path))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(dotenv_path))

    settings_base = _reload_base_settings()

    assert settings_base.BIOMETRICS_KEY_ENCRYPTION_KEYS == (newest, oldest)
    assert not cache_path.exists()


def test_invalid_master_key_is_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(tmp_path / "dev_keys.json"))
    monkeypatch.setenv("BIOMETRICS_KEY_ENCRYPTION_KEYS", "not-a-fernet-key")

    with pytest.raises(ImproperlyConfigured):
        _reload_base_settings()
