"""Facade composing the biometric components into the public operations.

Every operation that changes state runs in one ``transaction.atomic()``
block with the subject's :class:`~users.models.Account` row locked, so
attempts for the same user serialize while different users proceed in
parallel. Expected outcomes come back as :class:`~biometrics.results.Ok` or
:class:`~biometrics.results.Err`; any exception rolls the whole attempt back.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

import numpy as np
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Avg, Count, Q
from django.utils import timezone

from src.common.crypto import DecryptionFailure
from users.models import Account, Role

from .audit import EMPTY_CONTEXT, AuditLedger, RequestContext
from .credentials import CredentialStore, ProfileStatus
from .devices import DeviceFingerprintRegistry, DeviceInfo
from .liveness import LivenessGate, Verdict, decide
from .lockout import LockoutPolicy
from .matcher import MatchThresholds, TemplateDimensionMismatch, as_template, compare
from .models import (
    AuditEntry,
    ClientAuditEvent,
    ClientAuditStep,
    ClientAuditTrail,
    FaceProfile,
    OfflineVerification,
    VerificationAttempt,
)
from .notifications import SecurityAlertNotifier, deliver_safely
from .otp import OtpIssuer
from .ratelimit import AttemptRateLimiter
from .results import Err, ErrorCode, Ok, Result

logger = logging.getLogger(__name__)

VERIFICATION_TYPES = (
    VerificationAttempt.AttemptType.START,
    VerificationAttempt.AttemptType.END,
    VerificationAttempt.AttemptType.TEST,
)
RECENT_EVENT_LIMIT = 20
MAX_REPORT_DAYS = 365


@dataclass(frozen=True)
class RegistrationRequest:
    template: Any
    consent_given: bool
    device_info: DeviceInfo = field(default_factory=DeviceInfo)
    quality_score: Optional[float] = None


@dataclass(frozen=True)
class VerificationRequest:
    template: Any
    verification_type: str
    liveness_detected: bool = False
    liveness_score: Optional[float] = None
    device_info: DeviceInfo = field(default_factory=DeviceInfo)
    quality_score: Optional[float] = None
    shift_id: str = ""
    lighting_conditions: str = ""
    location_data: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class RotationRequest:
    template: Any
    device_info: DeviceInfo = field(default_factory=DeviceInfo)
    quality_score: Optional[float] = None
    reason: str = ""


@dataclass(frozen=True)
class VerificationOutcome:
    success: bool
    confidence: float
    liveness_detected: bool
    liveness_score: Optional[float]
    verification_id: int
    failure_reason: Optional[str] = None
    device_fingerprint: str = ""
    high_confidence: bool = False


@dataclass(frozen=True)
class VerificationStatistics:
    total: int = 0
    successful: int = 0
    failed: int = 0
    average_confidence: Optional[float] = None
    average_success_confidence: Optional[float] = None
    liveness_detected: int = 0


@dataclass(frozen=True)
class AccountStatus:
    profile: ProfileStatus
    locked: bool
    locked_until: Optional[datetime]
    failure_count: int
    success_count: int
    last_verification_at: Optional[datetime]
    statistics: VerificationStatistics


@dataclass(frozen=True)
class ClientAuditSubmission:
    session_id: str
    user_id: int
    shift_action: str
    status: str
    confidence_score: Optional[float] = None
    total_latency_ms: Optional[int] = None
    fallback_mode: bool = False
    override_reason: str = ""
    steps: list[dict[str, Any]] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class OfflineSubmission:
    offline_id: str
    user_id: int
    captured_at: datetime
    shift_action: str
    face_verification: dict[str, Any] = field(default_factory=dict)
    location_verification: dict[str, Any] = field(default_factory=dict)


def _check_score(score: Optional[float], minimum: float = 0.0) -> bool:
    return score is None or (0.0 <= score <= 1.0 and score >= minimum)


class VerificationOrchestrator:
    """Single entry point for registration, verification and administration."""

    def __init__(
        self,
        *,
        credentials: CredentialStore,
        rate_limiter: AttemptRateLimiter,
        lockout: LockoutPolicy,
        devices: DeviceFingerprintRegistry,
        ledger: AuditLedger,
        otp: OtpIssuer,
        alerts: SecurityAlertNotifier,
        thresholds: MatchThresholds = MatchThresholds(),
        liveness_gate: LivenessGate = LivenessGate(),
        min_quality_score: float = 0.0,
    ) -> None:
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.lockout = lockout
        self.devices = devices
        self.ledger = ledger
        self.otp = otp
        self.alerts = alerts
        self.thresholds = thresholds
        self.liveness_gate = liveness_gate
        self.min_quality_score = min_quality_score

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _lock_account(user_id: int) -> Account:
        account, _ = Account.objects.select_for_update().get_or_create(user_id=user_id)
        return account

    def _fingerprint(self, device_info: DeviceInfo) -> str:
        return "" if device_info.is_empty() else self.devices.derive(device_info)

    def _validate_template(self, template: Any) -> Result[np.ndarray]:
        try:
            return Ok(as_template(template))
        except ValueError:
            return Err(ErrorCode.INVALID_TEMPLATE)

    # -- registration ------------------------------------------------------

    def register(
        self, user, request: RegistrationRequest, *, context: RequestContext = EMPTY_CONTEXT
    ) -> Result[FaceProfile]:
        if not request.consent_given:
            return Err(ErrorCode.CONSENT_REQUIRED)
        if not _check_score(request.quality_score, self.min_quality_score):
            return Err(ErrorCode.INVALID_QUALITY_SCORE)
        parsed = self._validate_template(request.template)
        if not parsed.ok:
            return parsed

        fingerprint = self._fingerprint(request.device_info)
        context = RequestContext(context.ip_address, context.user_agent, fingerprint)
        with transaction.atomic():
            account = self._lock_account(user.pk)
            if account.is_locked():
                return Err(ErrorCode.ACCOUNT_LOCKED)

            reactivating = FaceProfile.objects.filter(user_id=user.pk, is_active=False).exists()
            result = self.credentials.register(
                account,
                parsed.value,
                quality=request.quality_score,
                device_fingerprint=fingerprint,
            )
            if not result.ok:
                return result

            now = timezone.now()
            account.biometric_consent = True
            account.biometric_consent_at = now
            account.save(update_fields=["biometric_consent", "biometric_consent_at", "updated_at"])

            self._log_attempt(
                user.pk,
                VerificationAttempt.AttemptType.REGISTRATION,
                success=True,
                confidence=1.0,
                quality_score=request.quality_score,
                fingerprint=fingerprint,
                context=context,
            )
            if fingerprint:
                self.devices.record_sighting(user.pk, fingerprint, request.device_info)
            self.ledger.record(
                user.pk,
                AuditEntry.Action.PROFILE_CREATED,
                {
                    "profile_id": result.value.pk,
                    "quality_score": request.quality_score,
                    "consent_given": True,
                    "reactivated": reactivating,
                },
                context=context,
            )
        logger.info("Registered face profile %s for user %s", result.value.pk, user.pk)
        return result

    # -- verification ------------------------------------------------------

    def verify(
        self, user, request: VerificationRequest, *, context: RequestContext = EMPTY_CONTEXT
    ) -> Result[VerificationOutcome]:
        started = time.monotonic()
        if request.verification_type not in VERIFICATION_TYPES:
            return Err(ErrorCode.INVALID_VERIFICATION_TYPE)
        if not _check_score(request.liveness_score):
            return Err(ErrorCode.INVALID_LIVENESS_SCORE)
        if not _check_score(request.quality_score):
            return Err(ErrorCode.INVALID_QUALITY_SCORE)
        parsed = self._validate_template(request.template)
        if not parsed.ok:
            return parsed

        fingerprint = self._fingerprint(request.device_info)
        context = RequestContext(context.ip_address, context.user_agent, fingerprint)
        with transaction.atomic():
            account = self._lock_account(user.pk)

            limit = self.rate_limiter.check_limit(user.pk)
            if not limit.ok:
                return limit
            if account.is_locked():
                return Err(ErrorCode.ACCOUNT_LOCKED)

            profile = self.credentials.load_active(user.pk, for_update=True)
            if profile is None:
                return Err(ErrorCode.PROFILE_NOT_FOUND)

            try:
                stored = self.credentials.decrypt_template(profile)
                confidence = compare(stored, parsed.value)
            except DecryptionFailure:
                logger.exception("Stored template for user %s could not be decrypted", user.pk)
                return Err(ErrorCode.DECRYPTION_FAILURE)
            except TemplateDimensionMismatch:
                logger.exception("Template dimension mismatch for user %s", user.pk)
                return Err(ErrorCode.TEMPLATE_DIMENSION_MISMATCH)

            risk = (
                self.devices.assess_risk(user.pk, fingerprint) if fingerprint else None
            )
            verdict = decide(
                confidence,
                liveness_detected=request.liveness_detected,
                liveness_score=request.liveness_score,
                thresholds=self.thresholds,
                gate=self.liveness_gate,
                device_blocked=bool(risk and risk.blocked),
            )
            outcome, locked = self._record_verdict(
                user.pk, account, profile, request, verdict, fingerprint, context, started
            )

        if locked:
            locked_until = account.face_locked_until
            transaction.on_commit(
                lambda: deliver_safely(
                    self.alerts.account_locked, user.pk, locked_until, description="lockout alert"
                )
            )
        if outcome.success:
            return Ok(outcome)
        return Err(ErrorCode.VERIFICATION_FAILED, payload=outcome)

    def _record_verdict(
        self,
        user_id: int,
        account: Account,
        profile: FaceProfile,
        request: VerificationRequest,
        verdict: Verdict,
        fingerprint: str,
        context: RequestContext,
        started: float,
    ) -> tuple[VerificationOutcome, bool]:
        reason = verdict.failure_reason.value if verdict.failure_reason else ""
        attempt = self._log_attempt(
            user_id,
            request.verification_type,
            success=verdict.success,
            confidence=verdict.confidence,
            liveness_detected=request.liveness_detected,
            liveness_score=request.liveness_score,
            quality_score=request.quality_score,
            lighting_conditions=request.lighting_conditions,
            failure_reason=reason,
            shift_id=request.shift_id,
            location_data=request.location_data,
            fingerprint=fingerprint,
            context=context,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        locked = False
        if verdict.success:
            self.credentials.record_success(profile)
            self.lockout.register_success(account)
        else:
            locked = self.lockout.register_failure(account, context=context)

        if fingerprint:
            self.devices.record_sighting(user_id, fingerprint, request.device_info)

        high_confidence = verdict.success and self.thresholds.is_high_confidence(verdict.confidence)
        self.ledger.record(
            user_id,
            AuditEntry.Action.VERIFICATION_ATTEMPT,
            {
                "verification_id": attempt.pk,
                "verification_type": request.verification_type,
                "success": verdict.success,
                "confidence": round(verdict.confidence, 4),
                "high_confidence": high_confidence,
                "liveness_passed": verdict.liveness_passed,
                "failure_reason": reason or None,
            },
            context=context,
        )
        if not verdict.success:
            logger.info("Face verification failed for user %s: %s", user_id, reason)

        outcome = VerificationOutcome(
            success=verdict.success,
            confidence=verdict.confidence,
            liveness_detected=request.liveness_detected,
            liveness_score=request.liveness_score,
            verification_id=attempt.pk,
            failure_reason=reason or None,
            device_fingerprint=fingerprint,
            high_confidence=high_confidence,
        )
        return outcome, locked

    # -- rotation and deletion ----------------------------------------------

    def rotate(
        self, user, request: RotationRequest, *, context: RequestContext = EMPTY_CONTEXT
    ) -> Result[FaceProfile]:
        if not _check_score(request.quality_score, self.min_quality_score):
            return Err(ErrorCode.INVALID_QUALITY_SCORE)
        parsed = self._validate_template(request.template)
        if not parsed.ok:
            return parsed

        fingerprint = self._fingerprint(request.device_info)
        context = RequestContext(context.ip_address, context.user_agent, fingerprint)
        with transaction.atomic():
            account = self._lock_account(user.pk)
            if account.is_locked():
                return Err(ErrorCode.ACCOUNT_LOCKED)

            result = self.credentials.rotate(user.pk, parsed.value, quality=request.quality_score)
            if not result.ok:
                return result

            self._log_attempt(
                user.pk,
                VerificationAttempt.AttemptType.UPDATE,
                success=True,
                confidence=1.0,
                quality_score=request.quality_score,
                fingerprint=fingerprint,
                context=context,
            )
            if fingerprint:
                self.devices.record_sighting(user.pk, fingerprint, request.device_info)
            self.ledger.record(
                user.pk,
                AuditEntry.Action.PROFILE_UPDATED,
                {
                    "profile_id": result.value.pk,
                    "quality_score": request.quality_score,
                    "reason": request.reason or None,
                },
                context=context,
            )
        logger.info("Rotated face profile for user %s", user.pk)
        return result

    def delete(
        self, user, *, performed_by=None, context: RequestContext = EMPTY_CONTEXT
    ) -> Result[FaceProfile]:
        actor_id = getattr(performed_by, "pk", None)
        with transaction.atomic():
            account = self._lock_account(user.pk)
            result = self.credentials.deactivate(account)
            if not result.ok:
                return result
            self.ledger.record(
                user.pk,
                AuditEntry.Action.PROFILE_DELETED,
                {"profile_id": result.value.pk, "soft_delete": True},
                performed_by=actor_id if actor_id != user.pk else None,
                context=context,
            )
        logger.info("Deactivated face profile for user %s", user.pk)
        return result

    # -- status and reporting ----------------------------------------------

    def status(self, user_id: int) -> Result[AccountStatus]:
        if not get_user_model().objects.filter(pk=user_id).exists():
            return Err(ErrorCode.USER_NOT_FOUND)

        account = Account.objects.filter(user_id=user_id).first()
        return Ok(
            AccountStatus(
                profile=self.credentials.status(user_id),
                locked=bool(account and account.is_locked()),
                locked_until=account.face_locked_until if account else None,
                failure_count=account.face_failure_count if account else 0,
                success_count=account.face_success_count if account else 0,
                last_verification_at=account.last_face_verification_at if account else None,
                statistics=self.verification_statistics(user_id),
            )
        )

    def verification_statistics(self, user_id: int, days: int = 30) -> VerificationStatistics:
        since = timezone.now() - timedelta(days=days)
        checks = VerificationAttempt.objects.for_user(user_id).since(since).filter(
            attempt_type__in=VERIFICATION_TYPES
        )
        row = checks.aggregate(
            total=Count("id"),
            successful=Count("id", filter=Q(success=True)),
            average_confidence=Avg("confidence"),
            average_success_confidence=Avg("confidence", filter=Q(success=True)),
            liveness_detected=Count("id", filter=Q(liveness_detected=True)),
        )
        return VerificationStatistics(
            total=row["total"],
            successful=row["successful"],
            failed=row["total"] - row["successful"],
            average_confidence=row["average_confidence"],
            average_success_confidence=row["average_success_confidence"],
            liveness_detected=row["liveness_detected"],
        )

    def security_report(self, user_id: int, days: int = 30) -> Result[dict[str, Any]]:
        if not 1 <= days <= MAX_REPORT_DAYS:
            return Err(ErrorCode.INVALID_DAYS)
        status = self.status(user_id)
        if not status.ok:
            return status

        devices = [
            {
                "fingerprint": device.fingerprint,
                "device_info": device.device_info,
                "first_seen_at": device.first_seen_at,
                "last_seen_at": device.last_seen_at,
                "trusted": device.is_trusted,
                "risk_score": device.risk_score,
                "blocked": device.is_blocked,
            }
            for device in self.devices.list_devices(user_id)
        ]
        events = [
            {
                "action": entry.action,
                "details": entry.details,
                "performed_by": entry.performed_by_id,
                "created_at": entry.created_at,
            }
            for entry in self.ledger.recent(user_id, RECENT_EVENT_LIMIT)
        ]
        return Ok(
            {
                "days": days,
                "statistics": self.verification_statistics(user_id, days),
                "devices": devices,
                "recent_events": events,
                "status": status.value,
            }
        )

    # -- administration ----------------------------------------------------

    @staticmethod
    def _authorize_admin(actor, target_user_id: int) -> Result[None]:
        actor_account = Account.objects.filter(user_id=actor.pk).first()
        if not actor.is_superuser and (actor_account is None or not actor_account.can_unlock_others):
            return Err(ErrorCode.INSUFFICIENT_PERMISSIONS)

        if not get_user_model().objects.filter(pk=target_user_id).exists():
            return Err(ErrorCode.USER_NOT_FOUND)

        if actor.is_superuser or actor_account.role == Role.SUPER_ADMIN:
            return Ok(None)
        target_account = Account.objects.filter(user_id=target_user_id).first()
        target_company = target_account.company_id if target_account else ""
        if not actor_account.company_id or actor_account.company_id != target_company:
            logger.warning(
                "User %s denied cross-company access to user %s", actor.pk, target_user_id
            )
            return Err(ErrorCode.CROSS_TENANT_DENIED)
        return Ok(None)

    def unlock(
        self, actor, target_user_id: int, *, context: RequestContext = EMPTY_CONTEXT
    ) -> Result[datetime]:
        allowed = self._authorize_admin(actor, target_user_id)
        if not allowed.ok:
            return allowed
        with transaction.atomic():
            self._lock_account(target_user_id)
            result = self.lockout.unlock(target_user_id, actor.pk, context=context)
            if not result.ok:
                return result
        return Ok(timezone.now())

    def set_device_trust(
        self,
        actor,
        target_user_id: int,
        fingerprint: str,
        *,
        trusted: Optional[bool] = None,
        blocked: Optional[bool] = None,
        reason: str = "",
        context: RequestContext = EMPTY_CONTEXT,
    ) -> Result[Any]:
        allowed = self._authorize_admin(actor, target_user_id)
        if not allowed.ok:
            return allowed
        if blocked is True:
            return self.devices.block(
                target_user_id, fingerprint, reason, performed_by=actor.pk, context=context
            )
        if blocked is False:
            return self.devices.unblock(
                target_user_id, fingerprint, performed_by=actor.pk, context=context
            )
        return self.devices.set_trust(
            target_user_id, fingerprint, bool(trusted), performed_by=actor.pk, context=context
        )

    # -- client telemetry and offline replay --------------------------------

    def append_client_audit_trail(
        self, submitter, submission: ClientAuditSubmission
    ) -> Result[ClientAuditTrail]:
        if submitter.pk != submission.user_id:
            return Err(ErrorCode.ACCESS_DENIED)

        with transaction.atomic():
            trail = ClientAuditTrail.objects.create(
                session_id=submission.session_id,
                user_id=submission.user_id,
                shift_action=submission.shift_action,
                status=submission.status,
                confidence_score=submission.confidence_score,
                total_latency_ms=submission.total_latency_ms,
                fallback_mode=submission.fallback_mode,
                override_reason=submission.override_reason,
            )
            ClientAuditStep.objects.bulk_create(
                ClientAuditStep(
                    trail=trail,
                    name=step.get("name", ""),
                    status=step.get("status", ""),
                    started_at=step.get("started_at"),
                    completed_at=step.get("completed_at"),
                    latency_ms=step.get("latency_ms"),
                    error=step.get("error") or "",
                    metadata=step.get("metadata") or {},
                )
                for step in submission.steps
            )
            ClientAuditEvent.objects.bulk_create(
                ClientAuditEvent(
                    trail=trail,
                    event=event.get("event", ""),
                    occurred_at=event.get("occurred_at"),
                    details=event.get("details") or {},
                )
                for event in submission.events
            )
        return Ok(trail)

    def sync_offline_attempt(
        self, submitter, submission: OfflineSubmission
    ) -> Result[OfflineVerification]:
        if submitter.pk != submission.user_id:
            return Err(ErrorCode.ACCESS_DENIED)

        with transaction.atomic():
            record = (
                OfflineVerification.objects.select_for_update()
                .filter(offline_id=submission.offline_id)
                .first()
            )
            if record is None:
                record = OfflineVerification.objects.create(
                    offline_id=submission.offline_id,
                    user_id=submission.user_id,
                    captured_at=submission.captured_at,
                    shift_action=submission.shift_action,
                    face_verification=submission.face_verification,
                    location_verification=submission.location_verification,
                )
                return Ok(record)

            if record.user_id != submission.user_id:
                return Err(ErrorCode.ACCESS_DENIED)
            record.sync_attempts += 1
            record.synced_at = timezone.now()
            record.face_verification = submission.face_verification
            record.location_verification = submission.location_verification
            record.save(
                update_fields=[
                    "sync_attempts",
                    "synced_at",
                    "face_verification",
                    "location_verification",
                ]
            )
        return Ok(record)

    # -- maintenance -------------------------------------------------------

    def cleanup_old_attempts(self, retention_days: int) -> int:
        return VerificationAttempt.prune_older_than(retention_days)

    def _log_attempt(
        self,
        user_id: int,
        attempt_type: str,
        *,
        success: bool,
        confidence: Optional[float],
        fingerprint: str,
        context: RequestContext,
        liveness_detected: bool = False,
        liveness_score: Optional[float] = None,
        quality_score: Optional[float] = None,
        lighting_conditions: str = "",
        failure_reason: str = "",
        shift_id: str = "",
        location_data: Optional[dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
    ) -> VerificationAttempt:
        return VerificationAttempt.objects.create(
            user_id=user_id,
            attempt_type=attempt_type,
            success=success,
            confidence=confidence,
            liveness_detected=liveness_detected,
            liveness_score=liveness_score,
            quality_score=quality_score,
            lighting_conditions=lighting_conditions,
            failure_reason=failure_reason,
            shift_id=shift_id,
            location_data=location_data,
            device_fingerprint=fingerprint,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            duration_ms=duration_ms,
        )
