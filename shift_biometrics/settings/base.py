"""
Django settings for the Shift Biometrics service.

This file holds the configuration shared by every environment: installed
applications, database parsing, REST framework and JWT defaults, Celery
schedules, and the thresholds that drive face verification and the OTP
second factor. Sensitive values are read from environment variables.
"""

import json
import os
import sys
import warnings
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any

from django.core.exceptions import ImproperlyConfigured

import dj_database_url
from cryptography.fernet import Fernet

# `BASE_DIR` points to the repository root.
BASE_DIR = Path(__file__).resolve().parent.parent.parent
LOCAL_ENV_PATH = Path(os.environ.get("LOCAL_ENV_PATH", BASE_DIR / ".env"))
DEV_KEY_CACHE_PATH = Path(
    os.environ.get("DEV_ENCRYPTION_KEY_FILE", BASE_DIR / ".dev_encryption_keys.json")
)


# --- Environment Helpers ---


def _get_bool_env(var_name: str, default: bool = False) -> bool:
    """Return a boolean from an environment variable."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default
    return raw_value.lower() in {"1", "true", "yes", "on"}


def _parse_int_env(var_name: str, default: int, *, minimum: int | None = None) -> int:
    """Return an integer from the environment, enforcing an optional minimum."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    try:
        value = int(raw_value)
    except ValueError as exc:  # pragma: no cover - defensive programming
        raise ImproperlyConfigured(f"{var_name} must be an integer if provided.") from exc

    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum} if provided.")

    return value


def _get_float_env(
    var_name: str,
    default: float,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    """Return a float from the environment with optional bounds enforcement."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError as exc:  # pragma: no cover - defensive programming
        raise ImproperlyConfigured(f"{var_name} must be a float if provided.") from exc

    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum} if provided.")
    if maximum is not None and value > maximum:
        raise ImproperlyConfigured(f"{var_name} must be <= {maximum} if provided.")

    return value


# --- Security Settings ---

# Detect if we're running tests
TESTING = "test" in sys.argv or (len(sys.argv) > 0 and "pytest" in sys.argv[0])

DEFAULT_SECRET_KEY = "a-secure-default-key-for-development-only"

# DEBUG defaults to on for local work; the production module forces it off.
DEBUG = _get_bool_env("DJANGO_DEBUG", default=True)

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", DEFAULT_SECRET_KEY)
if SECRET_KEY == DEFAULT_SECRET_KEY and not DEBUG:
    raise ImproperlyConfigured(
        "DJANGO_SECRET_KEY must be set to a secure value when DJANGO_DEBUG is not enabled."
    )


def _validate_fernet_key(key: str | bytes, setting_name: str) -> bytes:
    """Ensure the provided key material is a valid Fernet key."""

    key_bytes = key.encode() if isinstance(key, str) else key
    try:
        Fernet(key_bytes)
    except (ValueError, TypeError) as exc:
        raise ImproperlyConfigured(
            f"{setting_name} must contain valid 32-byte base64-encoded Fernet keys."
        ) from exc
    return key_bytes


def _read_local_env_value(var_name: str) -> str | None:
    """Return a value from a local ``.env`` file if present."""

    if not LOCAL_ENV_PATH.exists():
        return None

    try:
        for raw_line in LOCAL_ENV_PATH.read_text().splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            if key.strip() != var_name:
                continue
            return value.strip().strip("\"").strip("'")
    except OSError as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Unable to read {LOCAL_ENV_PATH}: {exc}")

    return None


def _load_cached_dev_key(var_name: str) -> bytes | None:
    """Load a previously generated development key from disk."""

    if not DEV_KEY_CACHE_PATH.exists():
        return None

    try:
        cache = json.loads(DEV_KEY_CACHE_PATH.read_text())
    except (OSError, json.JSONDecodeError) as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Ignoring invalid dev key cache file: {exc}")
        return None

    cached_value = cache.get(var_name)
    if not cached_value:
        return None

    try:
        return _validate_fernet_key(cached_value, var_name)
    except ImproperlyConfigured:
        warnings.warn(f"Ignoring invalid cached {var_name}; regenerating.")
        return None


def _persist_dev_key(var_name: str, key: bytes) -> None:
    """Persist generated development keys so they survive restarts."""

    try:
        existing = (
            json.loads(DEV_KEY_CACHE_PATH.read_text())
            if DEV_KEY_CACHE_PATH.exists()
            else {}
        )
    except (OSError, json.JSONDecodeError):  # pragma: no cover - defensive programming
        existing = {}

    existing[var_name] = key.decode()

    try:
        DEV_KEY_CACHE_PATH.write_text(json.dumps(existing, indent=2))
    except OSError as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Unable to persist dev encryption key cache: {exc}")


def _deterministic_dev_key(var_name: str) -> bytes:
    """Return a stable key for DEBUG/TESTING sessions, persisting when generated."""

    cached_key = _load_cached_dev_key(var_name)
    if cached_key:
        return cached_key

    key_bytes = Fernet.generate_key()
    _persist_dev_key(var_name, key_bytes)
    return key_bytes


def _load_key_encryption_keys() -> tuple[bytes, ...]:
    """Load the master keys that wrap every per-profile template key.

    The variable holds a comma separated list, newest key first, so a
    rotation can stage the new key in front of the old one.
    """

    var_name = "BIOMETRICS_KEY_ENCRYPTION_KEYS"
    raw_value = os.environ.get(var_name)
    if not raw_value and (DEBUG or TESTING):
        raw_value = _read_local_env_value(var_name)

    if raw_value:
        keys = tuple(
            _validate_fernet_key(candidate.strip(), var_name)
            for candidate in raw_value.split(",")
            if candidate.strip()
        )
        if keys:
            return keys

    if DEBUG or TESTING:
        return (_deterministic_dev_key(var_name),)

    raise ImproperlyConfigured(
        f"{var_name} environment variable must be set in production environments."
    )


BIOMETRICS_KEY_ENCRYPTION_KEYS = _load_key_encryption_keys()

LOCALHOST_ALIASES: tuple[str, ...] = ("localhost", "127.0.0.1", "[::1]", "testserver")


def _resolve_allowed_hosts(
    *,
    default_allowed_hosts: Sequence[str],
    require_explicit_hosts: bool,
) -> list[str]:
    """Return the allowed host list based on deployment defaults."""

    allowed_hosts_env = os.environ.get("DJANGO_ALLOWED_HOSTS")
    if allowed_hosts_env:
        return [host.strip() for host in allowed_hosts_env.split(",") if host.strip()]

    if require_explicit_hosts:
        raise ImproperlyConfigured(
            "DJANGO_ALLOWED_HOSTS must be provided (comma separated) when secure defaults are enforced."
        )

    return list(default_allowed_hosts)


def configure_environment(
    *,
    secure_defaults: bool,
    default_allowed_hosts: Sequence[str],
    require_allowed_hosts: bool,
) -> None:
    """Populate security-sensitive settings for the active environment."""

    global ALLOWED_HOSTS
    global SECURE_SSL_REDIRECT
    global SECURE_HSTS_SECONDS
    global SECURE_HSTS_INCLUDE_SUBDOMAINS
    global SESSION_COOKIE_SECURE
    global SESSION_COOKIE_HTTPONLY
    global SESSION_COOKIE_AGE
    global CSRF_COOKIE_SECURE

    ALLOWED_HOSTS = _resolve_allowed_hosts(
        default_allowed_hosts=default_allowed_hosts,
        require_explicit_hosts=require_allowed_hosts,
    )

    SECURE_SSL_REDIRECT = _get_bool_env("DJANGO_SECURE_SSL_REDIRECT", default=secure_defaults)
    SECURE_HSTS_SECONDS = _parse_int_env(
        "DJANGO_SECURE_HSTS_SECONDS",
        default=3600 if secure_defaults else 0,
        minimum=0,
    )
    SECURE_HSTS_INCLUDE_SUBDOMAINS = _get_bool_env(
        "DJANGO_SECURE_HSTS_INCLUDE_SUBDOMAINS",
        default=secure_defaults,
    )
    SESSION_COOKIE_SECURE = _get_bool_env("DJANGO_SESSION_COOKIE_SECURE", default=secure_defaults)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_AGE = _parse_int_env("DJANGO_SESSION_COOKIE_AGE", default=1800, minimum=1)
    CSRF_COOKIE_SECURE = _get_bool_env("DJANGO_CSRF_COOKIE_SECURE", default=secure_defaults)

    require_database_ssl = _get_bool_env("DATABASE_SSL_REQUIRE", default=secure_defaults)
    db_options = DATABASES["default"].setdefault("OPTIONS", {})
    if require_database_ssl and DATABASES["default"].get("ENGINE") != "django.db.backends.sqlite3":
        db_options["sslmode"] = os.environ.get("DATABASE_SSLMODE", "require")
    else:
        db_options.pop("sslmode", None)


# --- Application Configuration ---

INSTALLED_APPS = [
    # Custom applications for this project
    "users.apps.UsersConfig",
    "biometrics.apps.BiometricsConfig",
    # Third-party packages
    "rest_framework",
    "django_ratelimit",
    # Core Django applications
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "shift_biometrics.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "shift_biometrics.wsgi.application"


# --- Database Configuration ---

default_db_url = os.environ.get("DATABASE_URL", f"sqlite:///{(BASE_DIR / 'db.sqlite3').as_posix()}")

DATABASES = {
    "default": dj_database_url.parse(
        default_db_url,
        conn_max_age=_parse_int_env("DATABASE_CONN_MAX_AGE", 0, minimum=0),
    ),
}


def build_postgres_database_config() -> dict[str, Any]:
    """Return a PostgreSQL configuration derived from discrete environment variables."""

    return {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME", "shift_biometrics"),
        "USER": os.environ.get("DB_USER", "shift_biometrics"),
        "PASSWORD": os.environ.get("DB_PASSWORD", "shift_biometrics"),
        "HOST": os.environ.get("DB_HOST", "localhost"),
        "PORT": os.environ.get("DB_PORT", "5432"),
        "CONN_MAX_AGE": _parse_int_env("DB_CONN_MAX_AGE", 600, minimum=0),
    }


configure_environment(
    secure_defaults=not DEBUG,
    default_allowed_hosts=LOCALHOST_ALIASES,
    require_allowed_hosts=not DEBUG,
)


# --- Cache Configuration ---
# django-ratelimit and the OTP sweep lease use the default cache. LocMemCache
# only works for single-process deployments; configure Redis in production.
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "shift-biometrics",
    }
}

SILENCED_SYSTEM_CHECKS = [
    "django_ratelimit.E003",  # LocMemCache not a shared cache
    "django_ratelimit.W001",  # LocMemCache not officially supported
]

RATELIMIT_USE_CACHE = "default"


# --- Password Validation ---

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]


# --- Internationalization ---

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = Path(os.environ.get("DJANGO_STATIC_ROOT", BASE_DIR / "staticfiles"))

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# --- REST Framework & JWT ---

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.IsAuthenticated",),
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(
        minutes=_parse_int_env("JWT_ACCESS_TOKEN_MINUTES", 15, minimum=1)
    ),
    "REFRESH_TOKEN_LIFETIME": timedelta(
        days=_parse_int_env("JWT_REFRESH_TOKEN_DAYS", 1, minimum=1)
    ),
}


# --- Email (OTP delivery) ---

EMAIL_BACKEND = os.environ.get(
    "DJANGO_EMAIL_BACKEND",
    "django.core.mail.backends.locmem.EmailBackend"
    if TESTING
    else "django.core.mail.backends.smtp.EmailBackend",
)
EMAIL_HOST = os.environ.get("EMAIL_HOST", "localhost")
EMAIL_PORT = _parse_int_env("EMAIL_PORT", 25, minimum=1)
EMAIL_HOST_USER = os.environ.get("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.environ.get("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = _get_bool_env("EMAIL_USE_TLS", default=False)
DEFAULT_FROM_EMAIL = os.environ.get("DEFAULT_FROM_EMAIL", "no-reply@localhost")


# --- Celery ---

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_TASK_ALWAYS_EAGER = _get_bool_env("CELERY_TASK_ALWAYS_EAGER", default=TESTING)

CELERY_BEAT_SCHEDULE = {
    "sweep-expired-otp-challenges": {
        "task": "biometrics.tasks.sweep_expired_otp_challenges",
        "schedule": _parse_int_env("CELERY_OTP_SWEEP_SCHEDULE", 300, minimum=1),
        "kwargs": {},
    },
    "cleanup-verification-attempts": {
        "task": "biometrics.tasks.cleanup_verification_attempts",
        "schedule": _parse_int_env("CELERY_ATTEMPT_CLEANUP_SCHEDULE", 86400, minimum=1),
        "kwargs": {},
    },
    "apply-audit-retention": {
        "task": "biometrics.tasks.apply_audit_retention",
        "schedule": _parse_int_env("CELERY_AUDIT_RETENTION_SCHEDULE", 86400, minimum=1),
        "kwargs": {},
    },
}


# --- Logging ---

BIOMETRICS_LOG_LEVEL = os.environ.get("BIOMETRICS_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "standard"},
    },
    "loggers": {
        "biometrics": {"handlers": ["console"], "level": BIOMETRICS_LOG_LEVEL},
        "users": {"handlers": ["console"], "level": BIOMETRICS_LOG_LEVEL},
        "src": {"handlers": ["console"], "level": BIOMETRICS_LOG_LEVEL},
    },
}


# --- Biometric Verification ---

BIOMETRICS_MATCH_THRESHOLD = _get_float_env(
    "BIOMETRICS_MATCH_THRESHOLD", default=0.75, minimum=0.0, maximum=1.0
)
BIOMETRICS_HIGH_CONFIDENCE_THRESHOLD = _get_float_env(
    "BIOMETRICS_HIGH_CONFIDENCE_THRESHOLD", default=0.85, minimum=0.0, maximum=1.0
)
if BIOMETRICS_HIGH_CONFIDENCE_THRESHOLD < BIOMETRICS_MATCH_THRESHOLD:
    raise ImproperlyConfigured(
        "BIOMETRICS_HIGH_CONFIDENCE_THRESHOLD must not be lower than BIOMETRICS_MATCH_THRESHOLD."
    )
BIOMETRICS_LIVENESS_THRESHOLD = _get_float_env(
    "BIOMETRICS_LIVENESS_THRESHOLD", default=0.70, minimum=0.0, maximum=1.0
)
BIOMETRICS_MIN_QUALITY_SCORE = _get_float_env(
    "BIOMETRICS_MIN_QUALITY_SCORE", default=0.0, minimum=0.0, maximum=1.0
)

BIOMETRICS_RATE_LIMIT_WINDOW_SECONDS = _parse_int_env(
    "BIOMETRICS_RATE_LIMIT_WINDOW_SECONDS", 60, minimum=1
)
BIOMETRICS_RATE_LIMIT_MAX_ATTEMPTS = _parse_int_env(
    "BIOMETRICS_RATE_LIMIT_MAX_ATTEMPTS", 10, minimum=1
)
BIOMETRICS_LOCKOUT_THRESHOLD = _parse_int_env("BIOMETRICS_LOCKOUT_THRESHOLD", 3, minimum=1)
BIOMETRICS_LOCKOUT_MINUTES = _parse_int_env("BIOMETRICS_LOCKOUT_MINUTES", 15, minimum=1)
BIOMETRICS_UNSEEN_DEVICE_RISK = _parse_int_env("BIOMETRICS_UNSEEN_DEVICE_RISK", 50, minimum=0)

BIOMETRICS_OTP_LENGTH = _parse_int_env("BIOMETRICS_OTP_LENGTH", 6, minimum=4)
BIOMETRICS_OTP_TTL_MINUTES = _parse_int_env("BIOMETRICS_OTP_TTL_MINUTES", 10, minimum=1)
BIOMETRICS_OTP_MAX_ATTEMPTS = _parse_int_env("BIOMETRICS_OTP_MAX_ATTEMPTS", 5, minimum=1)
BIOMETRICS_OTP_ISSUE_RATE_LIMIT = os.environ.get("BIOMETRICS_OTP_ISSUE_RATE_LIMIT", "5/h")
BIOMETRICS_OTP_SWEEP_LOCK_ID = _parse_int_env("BIOMETRICS_OTP_SWEEP_LOCK_ID", 1234567890)

BIOMETRICS_AUDIT_RETENTION_DAYS = _parse_int_env(
    "BIOMETRICS_AUDIT_RETENTION_DAYS", 2555, minimum=1
)
BIOMETRICS_LOG_RETENTION_DAYS = _parse_int_env("BIOMETRICS_LOG_RETENTION_DAYS", 90, minimum=1)

# Proxies whose X-Forwarded-For header is honoured when recording client addresses.
BIOMETRICS_TRUSTED_PROXIES = [
    address.strip()
    for address in os.environ.get("BIOMETRICS_TRUSTED_PROXIES", "").split(",")
    if address.strip()
]
