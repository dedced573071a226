"""Smoke tests for the production settings module."""

from __future__ import annotations

import importlib
import sys

import pytest
from cryptography.fernet import Fernet
from django.core.exceptions import ImproperlyConfigured

from shift_biometrics.settings.sentry import scrub_event


def _reload_production_settings():
    """Force a reload of the production settings module for isolation."""

    for module in [
        "shift_biometrics.settings.production",
        "shift_biometrics.settings.sentry",
        "shift_biometrics.settings.base",
        "shift_biometrics.settings",
    ]:
        sys.modules.pop(module, None)
    return importlib.import_module("shift_biometrics.settings.production")


@pytest.fixture
def production_env(monkeypatch):
    monkeypatch.setenv("DJANGO_SETTINGS_MODULE", "shift_biometrics.settings.production")
    monkeypatch.setenv("DJANGO_SECRET_KEY", "ci-secret-key-that-is-long-enough")
    monkeypatch.setenv("DJANGO_ALLOWED_HOSTS", "shifts.example.com")
    monkeypatch.setenv("BIOMETRICS_KEY_ENCRYPTION_KEYS", Fernet.generate_key().decode())
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    return monkeypatch


def test_production_database_configuration(production_env):
    production_env.setenv("DB_NAME", "ci_db")
    production_env.setenv("DB_USER", "ci_user")
    production_env.setenv("DB_PASSWORD", "ci_password")
    production_env.setenv("DB_HOST", "postgres")
    production_env.setenv("DB_PORT", "6543")
    production_env.setenv("DB_CONN_MAX_AGE", "120")

    settings = _reload_production_settings()

    database = settings.DATABASES["default"]
    assert database["ENGINE"] == "django.db.backends.postgresql"
    assert database["NAME"] == "ci_db"
    assert database["USER"] == "ci_user"
    assert database["PASSWORD"] == "ci_password"
    assert database["HOST"] == "postgres"
    assert database["PORT"] == "6543"
    assert database["CONN_MAX_AGE"] == 120


def test_production_hardens_security_settings(production_env):
    settings = _reload_production_settings()

    assert settings.DEBUG is False
    assert settings.CELERY_TASK_ALWAYS_EAGER is False
    assert settings.ALLOWED_HOSTS == ["shifts.example.com"]
    assert settings.SESSION_COOKIE_SECURE is True
    assert settings.CSRF_COOKIE_SECURE is True
    assert settings.SECURE_HSTS_SECONDS == 3600


def test_production_requires_master_keys(production_env):
    production_env.delenv("BIOMETRICS_KEY_ENCRYPTION_KEYS")

    with pytest.raises(ImproperlyConfigured, match="BIOMETRICS_KEY_ENCRYPTION_KEYS"):
        _reload_production_settings()


def test_production_requires_secret_key(production_env):
    production_env.delenv("DJANGO_SECRET_KEY")

    with pytest.raises(ImproperlyConfigured, match="DJANGO_SECRET_KEY"):
        _reload_production_settings()


def test_master_keys_keep_configured_order(production_env):
    newest, oldest = Fernet.generate_key(), Fernet.generate_key()
    production_env.setenv("BIOMETRICS_KEY_ENCRYPTION_KEYS", f"{newest.decode()}, {oldest.decode()}")

    settings = _reload_production_settings()

    assert settings.BIOMETRICS_KEY_ENCRYPTION_KEYS == (newest, oldest)


def test_scrub_event_filters_biometric_payloads():
    event = {
        "request": {
            "headers": {"Authorization": "Bearer abc", "Accept": "application/json"},
            "data": {"template": [0.1, 0.2], "code": "123456", "verification_type": "start"},
        },
        "user": {"id": 7, "email": "worker@example.com"},
    }

    scrubbed = scrub_event(event, send_default_pii=False)

    assert scrubbed["request"]["headers"] == {"Authorization": "[Filtered]", "Accept": "application/json"}
    assert scrubbed["request"]["data"]["template"] == "[Filtered]"
    assert scrubbed["request"]["data"]["code"] == "[Filtered]"
    assert scrubbed["request"]["data"]["verification_type"] == "start"
    assert "user" not in scrubbed


def test_scrub_event_keeps_user_when_pii_allowed():
    scrubbed = scrub_event({"user": {"id": 7}}, send_default_pii=True)

    assert scrubbed["user"] == {"id": 7}
