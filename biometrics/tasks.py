"""Scheduled Celery tasks for OTP expiry and ledger retention."""

from __future__ import annotations

import logging

from django.conf import settings

from celery import shared_task

from .locks import advisory_lock
from .services import get_orchestrator

logger = logging.getLogger(__name__)


def sweep_expired_otps() -> dict:
    """Delete expired OTP challenges unless another worker is already sweeping."""

    with advisory_lock(settings.BIOMETRICS_OTP_SWEEP_LOCK_ID) as acquired:
        if not acquired:
            logger.info("OTP sweep skipped; another worker holds the lock")
            return {"skipped": True, "deleted": 0}
        deleted = get_orchestrator().otp.purge_expired()

    if deleted:
        logger.info("Swept %d expired OTP challenges", deleted)
    return {"skipped": False, "deleted": deleted}


@shared_task(bind=True, name="biometrics.tasks.sweep_expired_otp_challenges")
def sweep_expired_otp_challenges(self) -> dict:
    """Periodic OTP cleanup; runs every few minutes from celery beat."""

    logger.debug("Starting OTP sweep (task_id=%s)", self.request.id or "")
    return sweep_expired_otps()


@shared_task(bind=True, name="biometrics.tasks.cleanup_verification_attempts")
def cleanup_verification_attempts(self, retention_days: int | None = None) -> dict:
    """
    Prune verification attempts older than the log retention window.

    Args:
        retention_days: Override for ``BIOMETRICS_LOG_RETENTION_DAYS``.

    Returns:
        Dictionary with the retention window and the number of rows removed.
    """
    days = retention_days or settings.BIOMETRICS_LOG_RETENTION_DAYS
    deleted = get_orchestrator().cleanup_old_attempts(days)
    logger.info(
        "Verification attempt cleanup removed %d rows (task_id=%s, retention_days=%d)",
        deleted,
        self.request.id or "",
        days,
    )
    return {"retention_days": days, "deleted": deleted}


@shared_task(bind=True, name="biometrics.tasks.apply_audit_retention")
def apply_audit_retention(self) -> dict:
    """Erase audit entries whose retention deadline has passed."""

    deleted = get_orchestrator().ledger.apply_retention()
    logger.info("Audit retention removed %d entries (task_id=%s)", deleted, self.request.id or "")
    return {"deleted": deleted}


__all__ = [
    "apply_audit_retention",
    "cleanup_verification_attempts",
    "sweep_expired_otp_challenges",
    "sweep_expired_otps",
]
