"""HTTP-level tests for the biometrics REST API."""

from __future__ import annotations

import base64

import numpy as np
import pytest
from django.apps import apps
from django.urls import reverse
from rest_framework.test import APIClient

from biometrics.models import AuditEntry, ClientAuditTrail, OtpChallenge
from users.models import Account

pytestmark = pytest.mark.django_db


@pytest.fixture(autouse=True)
def _use_test_orchestrator(orchestrator, monkeypatch):
    monkeypatch.setattr(apps.get_app_config("biometrics"), "orchestrator", orchestrator)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def worker(make_user):
    return make_user("alice", company_id="acme")


@pytest.fixture
def auth_client(api_client, worker):
    api_client.force_authenticate(worker)
    return api_client


def _register(client, template, **extra):
    payload = {"template": list(template), "consent_given": True, "quality_score": 0.9}
    payload.update(extra)
    return client.post(reverse("biometrics:face-register"), payload, format="json")


def _verify(client, template, **extra):
    payload = {
        "template": list(template),
        "verification_type": "start",
        "liveness_detected": True,
        "liveness_score": 0.9,
    }
    payload.update(extra)
    return client.post(reverse("biometrics:face-verify"), payload, format="json")


def test_endpoints_require_authentication(api_client, template_factory):
    response = _verify(api_client, template_factory(1))

    assert response.status_code == 401


def test_register_and_verify(auth_client, template_factory):
    template = template_factory(1)

    registered = _register(
        auth_client,
        template,
        device_info={"platform": "android", "device_model": "Pixel 8"},
    )
    verified = _verify(auth_client, template, location={"latitude": 52.52, "longitude": 13.4})

    assert registered.status_code == 201
    assert registered.json()["profile_id"]
    assert verified.status_code == 200
    body = verified.json()
    assert body["success"] is True
    assert body["confidence"] >= 0.85
    assert body["high_confidence"] is True
    assert body["verification_id"]


def test_register_accepts_base64_float32_template(auth_client, template_factory):
    template = template_factory(2)
    encoded = base64.b64encode(template.astype("<f4").tobytes()).decode()

    response = auth_client.post(
        reverse("biometrics:face-register"),
        {"template": encoded, "consent_given": True},
        format="json",
    )

    assert response.status_code == 201
    assert _verify(auth_client, template).status_code == 200


def test_register_without_consent(auth_client, template_factory):
    response = _register(auth_client, template_factory(1), consent_given=False)

    assert response.status_code == 400
    assert response.json()["code"] == "CONSENT_REQUIRED"


@pytest.mark.parametrize(
    ("payload", "code"),
    [
        ({"template": "not base64!!", "consent_given": True}, "INVALID_TEMPLATE"),
        ({"template": [0, 0, 0], "consent_given": True}, "INVALID_TEMPLATE"),
        ({"template": ["0.1", "0.2"], "consent_given": True}, "INVALID_TEMPLATE"),
        ({"template": [0.1, 0.2], "consent_given": True, "quality_score": 3}, "INVALID_QUALITY_SCORE"),
        ({"consent_given": True}, "INVALID_TEMPLATE"),
    ],
)
def test_register_validation_errors(auth_client, payload, code):
    response = auth_client.post(reverse("biometrics:face-register"), payload, format="json")

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["code"] == code


def test_duplicate_registration_conflicts(auth_client, template_factory):
    _register(auth_client, template_factory(1))

    response = _register(auth_client, template_factory(1))

    assert response.status_code == 409
    assert response.json()["code"] == "PROFILE_EXISTS"


def test_verify_without_profile(auth_client, template_factory):
    response = _verify(auth_client, template_factory(1))

    assert response.status_code == 404
    assert response.json()["code"] == "PROFILE_NOT_FOUND"


def test_verify_validation_codes(auth_client, template_factory):
    bad_type = _verify(auth_client, template_factory(1), verification_type="break")
    bad_liveness = _verify(auth_client, template_factory(1), liveness_score=2)

    assert bad_type.json()["code"] == "INVALID_VERIFICATION_TYPE"
    assert bad_liveness.json()["code"] == "INVALID_LIVENESS_SCORE"


def test_failed_then_locked_verification(auth_client, template_factory):
    _register(auth_client, template_factory(1))

    failures = [_verify(auth_client, template_factory(90)) for _ in range(3)]
    locked = _verify(auth_client, template_factory(1))

    assert [response.status_code for response in failures] == [401, 401, 401]
    assert failures[0].json()["code"] == "VERIFICATION_FAILED"
    assert failures[0].json()["success"] is False
    assert failures[0].json()["failure_reason"]
    assert locked.status_code == 423
    assert locked.json()["code"] == "ACCOUNT_LOCKED"


def test_rotate_and_delete_profile(auth_client, template_factory):
    _register(auth_client, template_factory(1))
    url = reverse("biometrics:face-profile")

    rotated = auth_client.put(url, {"template": list(template_factory(2)), "reason": "update"}, format="json")
    deleted = auth_client.delete(url)
    missing = auth_client.delete(url)

    assert rotated.status_code == 200
    assert rotated.json()["updated_at"]
    assert deleted.status_code == 200
    assert deleted.json()["deleted_at"]
    assert missing.status_code == 404


def test_status_endpoint(auth_client, template_factory):
    _register(auth_client, template_factory(1))
    _verify(auth_client, template_factory(1))

    response = auth_client.get(reverse("biometrics:face-status"))

    assert response.status_code == 200
    body = response.json()
    assert body["profile"]["registered"] is True
    assert body["locked"] is False
    assert body["success_count"] == 1
    assert body["statistics"]["total"] == 1


def test_security_report(auth_client, template_factory):
    _register(auth_client, template_factory(1), device_info={"platform": "ios"})

    ok = auth_client.get(reverse("biometrics:face-security-report"), {"days": 14})
    bad = auth_client.get(reverse("biometrics:face-security-report"), {"days": 400})
    garbage = auth_client.get(reverse("biometrics:face-security-report"), {"days": "week"})

    assert ok.status_code == 200
    assert ok.json()["days"] == 14
    assert len(ok.json()["devices"]) == 1
    assert bad.json()["code"] == "INVALID_DAYS"
    assert garbage.status_code == 400


def test_unlock_permissions(api_client, make_user, worker, template_factory, orchestrator):
    from biometrics.orchestrator import RegistrationRequest, VerificationRequest

    orchestrator.register(worker, RegistrationRequest(template=template_factory(1), consent_given=True))
    for _ in range(3):
        orchestrator.verify(
            worker, VerificationRequest(template=template_factory(77), verification_type="start")
        )
    url = reverse("biometrics:face-unlock", args=[worker.pk])

    api_client.force_authenticate(make_user(company_id="acme"))
    assert api_client.post(url).status_code == 403

    api_client.force_authenticate(make_user(role="management", company_id="globex"))
    denied = api_client.post(url)
    assert denied.status_code == 403
    assert denied.json()["code"] == "CROSS_TENANT_DENIED"

    api_client.force_authenticate(make_user(role="management", company_id="acme"))
    unlocked = api_client.post(url)
    assert unlocked.status_code == 200
    assert unlocked.json()["unlocked_at"]
    assert not Account.objects.get(user=worker).is_locked()

    missing = api_client.post(reverse("biometrics:face-unlock", args=[999999]))
    assert missing.status_code == 404


def test_device_trust_endpoint(api_client, make_user, worker, template_factory, orchestrator):
    device = {"platform": "android", "device_model": "Pixel 8"}
    api_client.force_authenticate(worker)
    _register(api_client, template_factory(1), device_info=device)
    fingerprint = worker.device_fingerprints.get().fingerprint
    url = reverse("biometrics:device-trust", args=[fingerprint])

    api_client.force_authenticate(make_user(role="super_admin"))
    trusted = api_client.post(url, {"user_id": worker.pk, "trusted": True}, format="json")
    unknown = api_client.post(
        reverse("biometrics:device-trust", args=["0" * 64]),
        {"user_id": worker.pk, "trusted": True},
        format="json",
    )
    empty = api_client.post(url, {"user_id": worker.pk}, format="json")

    assert trusted.status_code == 200
    assert trusted.json()["risk_score"] == 10
    assert unknown.status_code == 404
    assert empty.json()["code"] == "MISSING_FIELDS"


def test_otp_issue_and_verify(api_client, worker, otp_delivery, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        issued = api_client.post(
            reverse("biometrics:otp-issue"), {"email": worker.email}, format="json"
        )
    code = otp_delivery.sent[0]["code"]
    verified = api_client.post(
        reverse("biometrics:otp-verify"), {"email": worker.email, "code": code}, format="json"
    )
    replayed = api_client.post(
        reverse("biometrics:otp-verify"), {"email": worker.email, "code": code}, format="json"
    )

    assert issued.status_code == 200
    assert "code" not in issued.json()
    assert issued.json()["expires_at"]
    assert verified.status_code == 200
    assert verified.json()["success"] is True
    assert replayed.json()["code"] == "NO_ACTIVE_CHALLENGE"


def test_otp_issue_unknown_email(api_client):
    response = api_client.post(
        reverse("biometrics:otp-issue"), {"email": "ghost@example.com"}, format="json"
    )

    assert response.status_code == 404
    assert response.json()["code"] == "USER_NOT_FOUND"


def test_otp_too_many_attempts_is_429(api_client, worker):
    api_client.post(reverse("biometrics:otp-issue"), {"email": worker.email}, format="json")
    OtpChallenge.objects.filter(user=worker).update(attempts=5)

    response = api_client.post(
        reverse("biometrics:otp-verify"), {"email": worker.email, "code": "123456"}, format="json"
    )

    assert response.status_code == 429
    assert response.json()["code"] == "TOO_MANY_ATTEMPTS"


def test_otp_issue_is_rate_limited_per_ip(api_client, worker, settings):
    settings.BIOMETRICS_OTP_ISSUE_RATE_LIMIT = "2/m"
    url = reverse("biometrics:otp-issue")

    statuses = [
        api_client.post(url, {"email": worker.email}, format="json").status_code for _ in range(3)
    ]

    assert statuses == [200, 200, 429]


def test_client_audit_log_endpoint(auth_client, worker, make_user):
    payload = {
        "session_id": "sess-9",
        "user_id": worker.pk,
        "shift_action": "start",
        "status": "completed",
        "steps": [{"name": "liveness", "status": "ok", "latency_ms": 80}],
        "events": [{"event": "fallback_offered"}],
    }

    created = auth_client.post(reverse("biometrics:face-audit-log"), payload, format="json")
    foreign = auth_client.post(
        reverse("biometrics:face-audit-log"),
        {**payload, "user_id": make_user().pk},
        format="json",
    )
    missing = auth_client.post(reverse("biometrics:face-audit-log"), {"session_id": "x"}, format="json")

    assert created.status_code == 201
    assert ClientAuditTrail.objects.get(pk=created.json()["audit_id"]).steps.count() == 1
    assert foreign.status_code == 403
    assert foreign.json()["code"] == "ACCESS_DENIED"
    assert missing.status_code == 400
    assert missing.json()["code"] == "MISSING_FIELDS"
    assert not AuditEntry.objects.filter(user=worker).exists()


def test_offline_sync_endpoint(auth_client, worker):
    payload = {
        "offline_id": "off-77",
        "user_id": worker.pk,
        "captured_at": "2026-03-01T07:55:00Z",
        "shift_action": "start",
        "face_verification": {"success": True, "confidence": 0.9},
    }
    url = reverse("biometrics:face-sync-offline")

    first = auth_client.post(url, payload, format="json")
    second = auth_client.post(url, payload, format="json")

    assert first.status_code == 200
    assert first.json()["offline_id"] == "off-77"
    assert second.json()["sync_attempts"] == 2
    assert auth_client.post(url, {"offline_id": "x"}, format="json").json()["code"] == "MISSING_FIELDS"


def test_jwt_login_grants_api_access(api_client, worker):
    tokens = api_client.post(
        "/api/v1/auth/login/",
        {"username": worker.username, "password": "s3cure-pass!"},
        format="json",
    )
    assert tokens.status_code == 200

    api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens.json()['access']}")
    response = api_client.get(reverse("biometrics:face-status"))

    assert response.status_code == 200
    assert response.json()["profile"]["registered"] is False


def test_template_dimension_limit(auth_client):
    response = _register(auth_client, np.ones(5000))

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_TEMPLATE"
