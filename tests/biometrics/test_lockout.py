"""Tests for the consecutive-failure lockout policy."""

from datetime import timedelta

import pytest
from django.utils import timezone

from biometrics.audit import AuditLedger
from biometrics.lockout import LockoutPolicy
from biometrics.models import AuditEntry
from biometrics.results import ErrorCode
from users.models import Account

pytestmark = pytest.mark.django_db


@pytest.fixture
def policy():
    return LockoutPolicy(AuditLedger(), threshold=3, lock_minutes=15)


def test_lock_is_set_on_the_third_failure(make_user, policy):
    account = Account.for_user(make_user())

    assert policy.register_failure(account) is False
    assert policy.register_failure(account) is False
    assert policy.register_failure(account) is True

    account.refresh_from_db()
    assert account.face_failure_count == 3
    assert account.is_locked()
    assert policy.is_locked(account.user_id)
    remaining = account.face_locked_until - timezone.now()
    assert timedelta(minutes=14) < remaining <= timedelta(minutes=15)


def test_locking_writes_a_security_audit_entry(make_user, policy):
    account = Account.for_user(make_user())

    for _ in range(3):
        policy.register_failure(account)

    entries = AuditEntry.objects.filter(
        user_id=account.user_id, action=AuditEntry.Action.SECURITY_BREACH_DETECTED
    )
    assert entries.count() == 1
    assert entries.get().details["failures"] == 3


def test_failures_while_locked_do_not_extend_the_lock(make_user, policy):
    account = Account.for_user(make_user())
    for _ in range(3):
        policy.register_failure(account)
    locked_until = account.face_locked_until

    assert policy.register_failure(account) is False
    assert account.face_locked_until == locked_until


def test_success_resets_counter_but_keeps_active_lock(make_user, policy):
    account = Account.for_user(make_user())
    for _ in range(3):
        policy.register_failure(account)

    policy.register_success(account)

    account.refresh_from_db()
    assert account.face_failure_count == 0
    assert account.face_success_count == 1
    assert account.last_face_verification_at is not None
    assert account.is_locked()


def test_lock_expires_on_its_own(make_user, policy):
    account = Account.for_user(make_user())
    for _ in range(3):
        policy.register_failure(account)

    later = timezone.now() + timedelta(minutes=16)

    assert not policy.is_locked(account.user_id, now=later)


def test_unlock_clears_state_and_is_audited(make_user, policy):
    admin = make_user(role="management")
    account = Account.for_user(make_user())
    for _ in range(3):
        policy.register_failure(account)

    result = policy.unlock(account.user_id, admin.pk)

    assert result.ok
    account.refresh_from_db()
    assert account.face_failure_count == 0
    assert account.face_locked_until is None
    entry = AuditEntry.objects.get(user_id=account.user_id, action=AuditEntry.Action.ACCOUNT_UNLOCKED)
    assert entry.performed_by_id == admin.pk


def test_unlock_unknown_account(policy):
    result = policy.unlock(999_999, None)

    assert result.code is ErrorCode.USER_NOT_FOUND
