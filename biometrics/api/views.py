"""REST endpoints for face registration, verification, OTP and administration."""

from __future__ import annotations

import dataclasses
import logging

from django.conf import settings
from django.utils import timezone
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from biometrics.audit import RequestContext
from biometrics.devices import DeviceInfo
from biometrics.orchestrator import (
    ClientAuditSubmission,
    OfflineSubmission,
    RegistrationRequest,
    RotationRequest,
    VerificationRequest,
)
from biometrics.results import Err, ErrorCode
from biometrics.services import get_orchestrator

from .serializers import (
    ClientAuditTrailSerializer,
    DeviceTrustSerializer,
    FaceRegistrationSerializer,
    FaceRotationSerializer,
    FaceVerificationSerializer,
    OfflineSyncSerializer,
    OtpIssueSerializer,
    OtpVerifySerializer,
)

logger = logging.getLogger(__name__)

HTTP_423_LOCKED = 423

ERROR_STATUS = {
    ErrorCode.CONSENT_REQUIRED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_QUALITY_SCORE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_TEMPLATE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_VERIFICATION_TYPE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_LIVENESS_SCORE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_DAYS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.MISSING_FIELDS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.ACCOUNT_LOCKED: HTTP_423_LOCKED,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.VERIFICATION_FAILED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.DECRYPTION_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.TEMPLATE_DIMENSION_MISMATCH: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.PROFILE_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.PROFILE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.DEVICE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INSUFFICIENT_PERMISSIONS: status.HTTP_403_FORBIDDEN,
    ErrorCode.CROSS_TENANT_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorCode.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorCode.NO_ACTIVE_CHALLENGE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.OTP_EXPIRED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.TOO_MANY_ATTEMPTS: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.INVALID_CODE: status.HTTP_400_BAD_REQUEST,
}


def _otp_issue_rate(group, request):
    return settings.BIOMETRICS_OTP_ISSUE_RATE_LIMIT


class BiometricAPIView(APIView):
    """Shared plumbing: orchestrator lookup, request context and error bodies.

    ``field_error_codes`` maps a serializer field to the error code reported
    when that field fails validation; other validation errors fall back to
    ``validation_error_code``.
    """

    orchestrator = None
    field_error_codes: dict = {}
    validation_error_code = ErrorCode.INVALID_REQUEST

    def get_orchestrator(self):
        return self.orchestrator or get_orchestrator()

    @staticmethod
    def request_context(request) -> RequestContext:
        return RequestContext.from_request(request)

    @staticmethod
    def error_response(error: Err, **extra) -> Response:
        body = {"status": "error", "code": error.code.value, "message": error.message}
        body.update(extra)
        return Response(body, status=ERROR_STATUS.get(error.code, status.HTTP_400_BAD_REQUEST))

    def validation_error(self, serializer) -> Response:
        code = self.validation_error_code
        for field_name, field_code in self.field_error_codes.items():
            if field_name in serializer.errors:
                code = field_code
                break
        return self.error_response(Err(code), errors=serializer.errors)


class FaceRegisterView(BiometricAPIView):
    field_error_codes = {
        "template": ErrorCode.INVALID_TEMPLATE,
        "quality_score": ErrorCode.INVALID_QUALITY_SCORE,
    }

    def post(self, request):
        serializer = FaceRegistrationSerializer(data=request.data)
        if not serializer.is_valid():
            return self.validation_error(serializer)
        data = serializer.validated_data

        result = self.get_orchestrator().register(
            request.user,
            RegistrationRequest(
                template=data["template"],
                consent_given=data["consent_given"],
                device_info=DeviceInfo.from_mapping(data.get("device_info")),
                quality_score=data.get("quality_score"),
            ),
            context=self.request_context(request),
        )
        if not result.ok:
            return self.error_response(result)

        profile = result.value
        return Response(
            {
                "status": "success",
                "message": "Face profile registered successfully.",
                "profile_id": profile.pk,
                "registration_date": profile.updated_at,
            },
            status=status.HTTP_201_CREATED,
        )


class FaceVerifyView(BiometricAPIView):
    field_error_codes = {
        "template": ErrorCode.INVALID_TEMPLATE,
        "verification_type": ErrorCode.INVALID_VERIFICATION_TYPE,
        "liveness_score": ErrorCode.INVALID_LIVENESS_SCORE,
        "quality_score": ErrorCode.INVALID_QUALITY_SCORE,
    }

    def post(self, request):
        serializer = FaceVerificationSerializer(data=request.data)
        if not serializer.is_valid():
            return self.validation_error(serializer)
        data = serializer.validated_data

        result = self.get_orchestrator().verify(
            request.user,
            VerificationRequest(
                template=data["template"],
                verification_type=data["verification_type"],
                liveness_detected=data["liveness_detected"],
                liveness_score=data.get("liveness_score"),
                device_info=DeviceInfo.from_mapping(data.get("device_info")),
                quality_score=data.get("quality_score"),
                shift_id=data.get("shift_id", ""),
                lighting_conditions=data.get("lighting_conditions", ""),
                location_data=data.get("location"),
            ),
            context=self.request_context(request),
        )

        outcome = result.value if result.ok else result.payload
        if outcome is None:
            return self.error_response(result)

        body = {
            "success": outcome.success,
            "confidence": round(outcome.confidence, 4),
            "high_confidence": outcome.high_confidence,
            "liveness_detected": outcome.liveness_detected,
            "liveness_score": outcome.liveness_score,
            "verification_id": outcome.verification_id,
        }
        if result.ok:
            return Response({"status": "success", **body})
        return self.error_response(result, failure_reason=outcome.failure_reason, **body)


class FaceProfileView(BiometricAPIView):
    field_error_codes = {
        "template": ErrorCode.INVALID_TEMPLATE,
        "quality_score": ErrorCode.INVALID_QUALITY_SCORE,
    }

    def put(self, request):
        serializer = FaceRotationSerializer(data=request.data)
        if not serializer.is_valid():
            return self.validation_error(serializer)
        data = serializer.validated_data

        result = self.get_orchestrator().rotate(
            request.user,
            RotationRequest(
                template=data["template"],
                device_info=DeviceInfo.from_mapping(data.get("device_info")),
                quality_score=data.get("quality_score"),
                reason=data.get("reason", ""),
            ),
            context=self.request_context(request),
        )
        if not result.ok:
            return self.error_response(result)
        return Response(
            {
                "status": "success",
                "message": "Face profile updated successfully.",
                "updated_at": result.value.updated_at,
            }
        )

    def delete(self, request):
        result = self.get_orchestrator().delete(
            request.user, performed_by=request.user, context=self.request_context(request)
        )
        if not result.ok:
            return self.error_response(result)
        return Response(
            {
                "status": "success",
                "message": "Face profile deleted successfully.",
                "deleted_at": result.value.deactivated_at,
            }
        )


class FaceStatusView(BiometricAPIView):
    def get(self, request):
        result = self.get_orchestrator().status(request.user.pk)
        if not result.ok:
            return self.error_response(result)
        return Response({"status": "success", **dataclasses.asdict(result.value)})


class FaceUnlockView(BiometricAPIView):
    def post(self, request, user_id: int):
        result = self.get_orchestrator().unlock(
            request.user, user_id, context=self.request_context(request)
        )
        if not result.ok:
            return self.error_response(result)
        return Response(
            {
                "status": "success",
                "message": "Face verification unlocked.",
                "user_id": user_id,
                "unlocked_at": result.value,
            }
        )


class SecurityReportView(BiometricAPIView):
    def get(self, request):
        try:
            days = int(request.query_params.get("days", 30))
        except (TypeError, ValueError):
            return self.error_response(Err(ErrorCode.INVALID_DAYS))

        result = self.get_orchestrator().security_report(request.user.pk, days)
        if not result.ok:
            return self.error_response(result)

        report = dict(result.value)
        report["statistics"] = dataclasses.asdict(report["statistics"])
        report["status"] = dataclasses.asdict(report["status"])
        return Response({"status": "success", "generated_at": timezone.now(), **report})


class DeviceTrustView(BiometricAPIView):
    validation_error_code = ErrorCode.MISSING_FIELDS

    def post(self, request, fingerprint: str):
        serializer = DeviceTrustSerializer(data=request.data)
        if not serializer.is_valid():
            return self.validation_error(serializer)
        data = serializer.validated_data

        result = self.get_orchestrator().set_device_trust(
            request.user,
            data["user_id"],
            fingerprint,
            trusted=data.get("trusted"),
            blocked=data.get("blocked"),
            reason=data.get("reason", ""),
            context=self.request_context(request),
        )
        if not result.ok:
            return self.error_response(result)

        device = result.value
        return Response(
            {
                "status": "success",
                "fingerprint": device.fingerprint,
                "trusted": device.is_trusted,
                "blocked": device.is_blocked,
                "risk_score": device.risk_score,
            }
        )


class ClientAuditLogView(BiometricAPIView):
    validation_error_code = ErrorCode.MISSING_FIELDS

    def post(self, request):
        serializer = ClientAuditTrailSerializer(data=request.data)
        if not serializer.is_valid():
            return self.validation_error(serializer)

        submission = ClientAuditSubmission(**serializer.validated_data)
        result = self.get_orchestrator().append_client_audit_trail(request.user, submission)
        if not result.ok:
            logger.warning(
                "User %s tried to submit an audit trail for user %s",
                request.user.pk,
                submission.user_id,
            )
            return self.error_response(result)
        return Response(
            {"status": "success", "audit_id": result.value.pk},
            status=status.HTTP_201_CREATED,
        )


class OfflineSyncView(BiometricAPIView):
    validation_error_code = ErrorCode.MISSING_FIELDS

    def post(self, request):
        serializer = OfflineSyncSerializer(data=request.data)
        if not serializer.is_valid():
            return self.validation_error(serializer)

        submission = OfflineSubmission(**serializer.validated_data)
        result = self.get_orchestrator().sync_offline_attempt(request.user, submission)
        if not result.ok:
            return self.error_response(result)

        record = result.value
        return Response(
            {
                "status": "success",
                "offline_id": record.offline_id,
                "sync_attempts": record.sync_attempts,
                "synced_at": record.synced_at,
            }
        )


@method_decorator(
    ratelimit(key="ip", rate=_otp_issue_rate, method="POST", block=False),
    name="post",
)
class OtpIssueView(BiometricAPIView):
    """Email a one-time code; throttled per client address."""

    permission_classes = [permissions.AllowAny]

    def post(self, request):
        if getattr(request, "limited", False):
            logger.warning("OTP issue rate limit triggered for %s", request.META.get("REMOTE_ADDR"))
            return self.error_response(
                Err(ErrorCode.RATE_LIMIT_EXCEEDED, "Too many code requests. Try again later.")
            )

        serializer = OtpIssueSerializer(data=request.data)
        if not serializer.is_valid():
            return self.validation_error(serializer)
        data = serializer.validated_data

        result = self.get_orchestrator().otp.issue(
            data["email"], data["purpose"], context=self.request_context(request)
        )
        if not result.ok:
            return self.error_response(result)
        return Response(
            {
                "status": "success",
                "message": "A verification code has been sent.",
                "expires_at": result.value.expires_at,
            }
        )


class OtpVerifyView(BiometricAPIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = OtpVerifySerializer(data=request.data)
        if not serializer.is_valid():
            return self.validation_error(serializer)
        data = serializer.validated_data

        result = self.get_orchestrator().otp.verify(
            data["email"], data["code"], data["purpose"], context=self.request_context(request)
        )
        if not result.ok:
            return self.error_response(result)
        return Response({"status": "success", "success": True})
