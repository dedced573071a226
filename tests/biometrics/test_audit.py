from datetime import timedelta

import pytest
from django.test import RequestFactory
from django.utils import timezone

from biometrics.audit import AuditLedger, RequestContext
from biometrics.models import AuditEntry, VerificationAttempt

pytestmark = pytest.mark.django_db


def test_record_persists_context(make_user):
    user = make_user()
    context = RequestContext(ip_address="10.0.0.8", user_agent="ShiftApp", device_fingerprint="ab" * 32)

    entry = AuditLedger().record(
        user.pk, AuditEntry.Action.PROFILE_ACCESSED, {"reason": "support"}, context=context
    )

    entry.refresh_from_db()
    assert entry.ip_address == "10.0.0.8"
    assert entry.user_agent == "ShiftApp"
    assert entry.details == {"reason": "support"}
    assert entry.retention_until > timezone.now() + timedelta(days=2000)


def test_entries_are_append_only(make_user):
    entry = AuditLedger().record(make_user().pk, AuditEntry.Action.CONSENT_GIVEN)
    entry.details = {"tampered": True}

    with pytest.raises(ValueError):
        entry.save()


def test_attempts_are_append_only(make_user):
    attempt = VerificationAttempt.objects.create(
        user=make_user(), attempt_type=VerificationAttempt.AttemptType.TEST
    )
    attempt.success = True

    with pytest.raises(ValueError):
        attempt.save()


def test_request_context_ignores_forwarded_header_from_untrusted_peer(settings):
    settings.BIOMETRICS_TRUSTED_PROXIES = []
    request = RequestFactory().post(
        "/",
        REMOTE_ADDR="198.51.100.20",
        HTTP_X_FORWARDED_FOR="203.0.113.7",
        HTTP_USER_AGENT="ShiftApp/2.1",
    )

    context = RequestContext.from_request(request)

    assert context.ip_address == "198.51.100.20"
    assert context.user_agent == "ShiftApp/2.1"


def test_request_context_follows_forwarded_header_through_trusted_proxies(settings):
    settings.BIOMETRICS_TRUSTED_PROXIES = ["10.0.0.1", "10.0.0.2"]
    request = RequestFactory().post(
        "/", REMOTE_ADDR="10.0.0.2", HTTP_X_FORWARDED_FOR="198.51.100.99, 203.0.113.7, 10.0.0.1"
    )

    assert RequestContext.from_request(request).ip_address == "203.0.113.7"


def test_recent_returns_newest_first(make_user):
    user = make_user()
    ledger = AuditLedger()
    ledger.record(user.pk, AuditEntry.Action.CONSENT_GIVEN)
    ledger.record(user.pk, AuditEntry.Action.PROFILE_CREATED)

    actions = [entry.action for entry in ledger.recent(user.pk)]

    assert actions == [AuditEntry.Action.PROFILE_CREATED, AuditEntry.Action.CONSENT_GIVEN]


def test_apply_retention_erases_expired_entries_and_notes_it(make_user):
    user = make_user()
    ledger = AuditLedger()
    expired = ledger.record(user.pk, AuditEntry.Action.PROFILE_ACCESSED)
    AuditEntry.objects.filter(pk=expired.pk).update(retention_until=timezone.now() - timedelta(days=1))
    kept = ledger.record(user.pk, AuditEntry.Action.CONSENT_GIVEN)

    deleted = ledger.apply_retention()

    assert deleted == 1
    assert not AuditEntry.objects.filter(pk=expired.pk).exists()
    assert AuditEntry.objects.filter(pk=kept.pk).exists()
    marker = AuditEntry.objects.get(user=user, action=AuditEntry.Action.DATA_RETENTION_APPLIED)
    assert marker.details["deleted_entries"] == 1


def test_apply_retention_without_expired_rows_is_a_no_op(make_user):
    AuditLedger().record(make_user().pk, AuditEntry.Action.CONSENT_GIVEN)

    assert AuditLedger().apply_retention() == 0
    assert not AuditEntry.objects.filter(action=AuditEntry.Action.DATA_RETENTION_APPLIED).exists()
