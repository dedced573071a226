"""Build the orchestrator and its components from Django settings."""

from __future__ import annotations

from django.apps import apps
from django.conf import settings

from src.common.crypto import KeyCustodian, TemplateCodec, WrappedKeyCustodian

from .audit import AuditLedger
from .credentials import CredentialStore
from .devices import DeviceFingerprintRegistry
from .liveness import LivenessGate
from .lockout import LockoutPolicy
from .matcher import MatchThresholds
from .notifications import EmailOtpDelivery, LoggingAlertNotifier, OtpDelivery, SecurityAlertNotifier
from .orchestrator import VerificationOrchestrator
from .otp import OtpIssuer
from .ratelimit import AttemptRateLimiter


def build_orchestrator(
    *,
    custodian: KeyCustodian | None = None,
    delivery: OtpDelivery | None = None,
    alerts: SecurityAlertNotifier | None = None,
) -> VerificationOrchestrator:
    """Wire every component with the values configured in settings.

    Collaborators that talk to the outside world can be swapped in, which is
    how tests and alternative deployments replace email or key custody.
    """

    ledger = AuditLedger()
    return VerificationOrchestrator(
        credentials=CredentialStore(TemplateCodec(), custodian or WrappedKeyCustodian()),
        rate_limiter=AttemptRateLimiter(
            window_seconds=settings.BIOMETRICS_RATE_LIMIT_WINDOW_SECONDS,
            max_attempts=settings.BIOMETRICS_RATE_LIMIT_MAX_ATTEMPTS,
        ),
        lockout=LockoutPolicy(
            ledger,
            threshold=settings.BIOMETRICS_LOCKOUT_THRESHOLD,
            lock_minutes=settings.BIOMETRICS_LOCKOUT_MINUTES,
        ),
        devices=DeviceFingerprintRegistry(ledger, unseen_risk=settings.BIOMETRICS_UNSEEN_DEVICE_RISK),
        ledger=ledger,
        otp=OtpIssuer(
            ledger,
            delivery or EmailOtpDelivery(),
            length=settings.BIOMETRICS_OTP_LENGTH,
            ttl_minutes=settings.BIOMETRICS_OTP_TTL_MINUTES,
            max_attempts=settings.BIOMETRICS_OTP_MAX_ATTEMPTS,
        ),
        alerts=alerts or LoggingAlertNotifier(),
        thresholds=MatchThresholds(
            match=settings.BIOMETRICS_MATCH_THRESHOLD,
            high_confidence=settings.BIOMETRICS_HIGH_CONFIDENCE_THRESHOLD,
        ),
        liveness_gate=LivenessGate(threshold=settings.BIOMETRICS_LIVENESS_THRESHOLD),
        min_quality_score=settings.BIOMETRICS_MIN_QUALITY_SCORE,
    )


def get_orchestrator() -> VerificationOrchestrator:
    """Return the process-wide orchestrator built when the app loaded."""

    return apps.get_app_config("biometrics").orchestrator
