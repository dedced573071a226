import numpy as np
import pytest
from cryptography.fernet import Fernet


class RecordingOtpDelivery:
    """Collect delivered codes instead of sending email."""

    def __init__(self):
        self.sent = []

    def send_code(self, email, code, expires_at, purpose):
        self.sent.append({"email": email, "code": code, "expires_at": expires_at, "purpose": purpose})


class RecordingAlertNotifier:
    def __init__(self):
        self.locked = []

    def account_locked(self, user_id, locked_until):
        self.locked.append((user_id, locked_until))


@pytest.fixture(scope="session", autouse=True)
def close_database_connections():
    """Ensure all database connections are properly closed after tests.

    This fixture runs at the end of the test session to prevent the
    'database is being accessed by other users' error during teardown.
    """
    yield
    # Import inside the fixture to avoid issues if Django is not configured
    from django.db import connections

    for conn in connections.all():
        conn.close()


@pytest.fixture(autouse=True)
def _clear_cache():
    """Rate limit counters and sweep leases live in the cache; isolate tests."""

    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def master_key():
    return Fernet.generate_key()


@pytest.fixture
def custodian(master_key):
    from src.common.crypto import WrappedKeyCustodian

    return WrappedKeyCustodian(keys_override=[master_key])


@pytest.fixture
def otp_delivery():
    return RecordingOtpDelivery()


@pytest.fixture
def alerts():
    return RecordingAlertNotifier()


@pytest.fixture
def orchestrator(custodian, otp_delivery, alerts):
    from biometrics.services import build_orchestrator

    return build_orchestrator(custodian=custodian, delivery=otp_delivery, alerts=alerts)


@pytest.fixture
def make_user(django_user_model):
    """Create users with an attached account in one call."""

    counter = {"value": 0}

    def _make_user(username=None, *, role="employee", company_id="acme", **extra):
        from users.models import Account

        counter["value"] += 1
        username = username or f"worker{counter['value']}"
        user = django_user_model.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password="s3cure-pass!",
            **extra,
        )
        Account.objects.create(user=user, role=role, company_id=company_id)
        return user

    return _make_user


@pytest.fixture
def template_factory():
    """Return deterministic unit-length templates keyed by an integer seed."""

    def _factory(seed=0, size=128):
        vector = np.random.default_rng(seed).normal(size=size)
        return vector / np.linalg.norm(vector)

    return _factory
