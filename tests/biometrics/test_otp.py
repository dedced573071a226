"""Tests for the one-time code second factor."""

from datetime import timedelta

import pytest
from django.utils import timezone

from biometrics.audit import AuditLedger
from biometrics.models import AuditEntry, OtpChallenge
from biometrics.notifications import EmailOtpDelivery
from biometrics.otp import OtpIssuer, hash_code
from biometrics.results import ErrorCode
from users.models import Account

pytestmark = pytest.mark.django_db


@pytest.fixture
def issuer(otp_delivery):
    return OtpIssuer(AuditLedger(), otp_delivery, length=6, ttl_minutes=10, max_attempts=5)


def test_generated_codes_have_fixed_length(issuer):
    codes = {issuer.generate_code() for _ in range(50)}

    assert all(len(code) == 6 and code.isdigit() for code in codes)


def test_issue_stores_hash_and_delivers_after_commit(
    make_user, issuer, otp_delivery, django_capture_on_commit_callbacks
):
    user = make_user()

    with django_capture_on_commit_callbacks(execute=True):
        result = issuer.issue(user.email)

    assert result.ok
    challenge = OtpChallenge.objects.get(user=user)
    assert challenge.code_hash == hash_code(result.value.code)
    assert challenge.code_hash != result.value.code
    assert otp_delivery.sent[0]["code"] == result.value.code
    assert otp_delivery.sent[0]["email"] == user.email
    assert AuditEntry.objects.filter(user=user, action=AuditEntry.Action.OTP_ISSUED).exists()


def test_issue_for_unknown_email(issuer):
    assert issuer.issue("nobody@example.com").code is ErrorCode.USER_NOT_FOUND


def test_correct_code_verifies_once(make_user, issuer):
    user = make_user()
    code = issuer.issue(user.email).value.code

    assert issuer.verify(user.email, code).ok
    second = issuer.verify(user.email, code)

    assert second.code is ErrorCode.NO_ACTIVE_CHALLENGE
    assert Account.objects.get(user=user).mfa_last_used_at is not None
    assert AuditEntry.objects.filter(user=user, action=AuditEntry.Action.OTP_VERIFIED).count() == 1


def test_email_lookup_is_case_insensitive(make_user, issuer):
    user = make_user()
    code = issuer.issue(user.email.upper()).value.code

    assert issuer.verify(user.email, code).ok


def test_wrong_code_counts_attempts_until_exhausted(make_user, issuer):
    user = make_user()
    code = issuer.issue(user.email).value.code
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(5):
        assert issuer.verify(user.email, wrong).code is ErrorCode.INVALID_CODE

    assert issuer.verify(user.email, code).code is ErrorCode.TOO_MANY_ATTEMPTS
    assert issuer.status(user.email).attempts_remaining == 0


def test_expired_code_is_rejected_and_consumed(make_user, issuer):
    user = make_user()
    code = issuer.issue(user.email).value.code
    OtpChallenge.objects.filter(user=user).update(expires_at=timezone.now() - timedelta(seconds=1))

    assert issuer.verify(user.email, code).code is ErrorCode.OTP_EXPIRED
    assert not OtpChallenge.objects.filter(user=user).exists()


def test_reissue_replaces_previous_code(make_user, issuer):
    user = make_user()
    first = issuer.issue(user.email).value.code
    second = issuer.issue(user.email).value.code

    assert OtpChallenge.objects.filter(user=user).count() == 1
    if first != second:
        assert issuer.verify(user.email, first).code is ErrorCode.INVALID_CODE
    assert issuer.verify(user.email, second).ok


def test_purposes_are_independent(make_user, issuer):
    user = make_user()
    login_code = issuer.issue(user.email, OtpChallenge.Purpose.LOGIN).value.code
    issuer.issue(user.email, OtpChallenge.Purpose.SHIFT_START)

    assert issuer.verify(user.email, login_code, OtpChallenge.Purpose.LOGIN).ok
    assert issuer.status(user.email, OtpChallenge.Purpose.SHIFT_START).active


def test_purge_expired_removes_only_stale_challenges(make_user, issuer):
    stale = make_user()
    fresh = make_user()
    issuer.issue(stale.email)
    issuer.issue(fresh.email)
    OtpChallenge.objects.filter(user=stale).update(expires_at=timezone.now() - timedelta(minutes=1))

    assert issuer.purge_expired() == 1
    assert OtpChallenge.objects.filter(user=fresh).exists()


def test_invalidate_drops_pending_challenge(make_user, issuer):
    user = make_user()
    issuer.issue(user.email)

    assert issuer.invalidate(user.email) == 1
    assert not issuer.status(user.email).active
    entry = AuditEntry.objects.get(user=user, action=AuditEntry.Action.OTP_INVALIDATED)
    assert entry.details == {"purpose": "login", "deleted": 1}


def test_invalidate_without_challenge_writes_no_audit_entry(make_user, issuer):
    user = make_user()

    assert issuer.invalidate(user.email) == 0
    assert not AuditEntry.objects.filter(user=user, action=AuditEntry.Action.OTP_INVALIDATED).exists()


def test_email_delivery_uses_django_mail(mailoutbox):
    expires_at = timezone.now() + timedelta(minutes=10)

    EmailOtpDelivery().send_code("worker@example.com", "123456", expires_at, "login")

    assert len(mailoutbox) == 1
    assert "123456" in mailoutbox[0].body
    assert mailoutbox[0].to == ["worker@example.com"]


def test_failed_delivery_does_not_break_issue(make_user, django_capture_on_commit_callbacks, caplog):
    class BrokenDelivery:
        def send_code(self, *args):
            raise ConnectionError("smtp down")

    user = make_user()
    issuer = OtpIssuer(AuditLedger(), BrokenDelivery())

    with django_capture_on_commit_callbacks(execute=True):
        result = issuer.issue(user.email)

    assert result.ok
    assert OtpChallenge.objects.filter(user=user).exists()
    assert "Failed to deliver one-time code" in caplog.text
