"""Production settings overriding the defaults with hardened options."""

from __future__ import annotations

import os

from django.core.exceptions import ImproperlyConfigured

from .base import *  # noqa: F401,F403
from .base import (
    DATABASES,
    DEFAULT_SECRET_KEY,
    SECRET_KEY,
    build_postgres_database_config,
    configure_environment,
)
from .sentry import initialize_sentry

DEBUG = False
CELERY_TASK_ALWAYS_EAGER = False

if SECRET_KEY == DEFAULT_SECRET_KEY:
    raise ImproperlyConfigured("DJANGO_SECRET_KEY must be set in production environments.")

if not os.environ.get("BIOMETRICS_KEY_ENCRYPTION_KEYS"):
    raise ImproperlyConfigured(
        "BIOMETRICS_KEY_ENCRYPTION_KEYS must be set in production environments."
    )

if DATABASES["default"].get("ENGINE") == "django.db.backends.sqlite3":
    DATABASES["default"] = build_postgres_database_config()

if DATABASES["default"].get("ENGINE") == "django.db.backends.sqlite3":
    raise ImproperlyConfigured(
        "Production deployments must configure a PostgreSQL database via DATABASE_URL or DB_* environment variables."
    )


configure_environment(
    secure_defaults=True,
    default_allowed_hosts=(),
    require_allowed_hosts=True,
)

# configure_environment rebinds names inside the base module; pull them in again.
from .base import (  # noqa: E402
    ALLOWED_HOSTS,
    CSRF_COOKIE_SECURE,
    SECURE_HSTS_INCLUDE_SUBDOMAINS,
    SECURE_HSTS_SECONDS,
    SECURE_SSL_REDIRECT,
    SESSION_COOKIE_AGE,
    SESSION_COOKIE_HTTPONLY,
    SESSION_COOKIE_SECURE,
)


initialize_sentry()
