"""Models for biometric profiles, the attempt log, devices, OTPs and the audit ledger."""

from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

logger = logging.getLogger(__name__)


class AppendOnlyModel(models.Model):
    """Abstract base for ledger tables whose rows are never updated."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(f"{type(self).__name__} rows are append-only.")
        return super().save(*args, **kwargs)


class FaceProfile(models.Model):
    """Encrypted face template registered by a user."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="face_profile",
        help_text="Owner of the template.",
    )
    template_hash = models.CharField(
        max_length=64, help_text="sha256 of the plaintext template bytes."
    )
    encrypted_template = models.BinaryField(help_text="Fernet token holding the template.")
    key_reference = models.TextField(
        help_text="Per-profile key sealed by the configured key custodian."
    )
    quality_score = models.FloatField(
        null=True, blank=True, help_text="Capture quality reported at registration."
    )
    is_active = models.BooleanField(default=True, db_index=True)
    verification_count = models.PositiveIntegerField(
        default=0, help_text="Successful verifications since the last rotation."
    )
    last_verification_at = models.DateTimeField(null=True, blank=True)
    registration_device_fingerprint = models.CharField(max_length=64, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        """Return a human readable representation."""
        state = "active" if self.is_active else "inactive"
        return f"Face profile for {self.user} ({state})"


class VerificationAttemptQuerySet(models.QuerySet):
    """Query helpers for the attempt log."""

    def for_user(self, user_id: int) -> "VerificationAttemptQuerySet":
        return self.filter(user_id=user_id)

    def since(self, moment) -> "VerificationAttemptQuerySet":
        return self.filter(created_at__gte=moment)


class VerificationAttempt(AppendOnlyModel):
    """Immutable record of one registration, rotation or verification."""

    class AttemptType(models.TextChoices):
        REGISTRATION = "registration", "Registration"
        UPDATE = "update", "Update"
        START = "start", "Shift start"
        END = "end", "Shift end"
        TEST = "test", "Test"

    class Lighting(models.TextChoices):
        POOR = "poor", "Poor"
        FAIR = "fair", "Fair"
        GOOD = "good", "Good"
        EXCELLENT = "excellent", "Excellent"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="verification_attempts",
    )
    shift_id = models.CharField(max_length=64, blank=True)
    attempt_type = models.CharField(max_length=16, choices=AttemptType.choices)
    success = models.BooleanField(default=False)
    confidence = models.FloatField(null=True, blank=True)
    liveness_detected = models.BooleanField(default=False)
    liveness_score = models.FloatField(null=True, blank=True)
    quality_score = models.FloatField(null=True, blank=True)
    lighting_conditions = models.CharField(max_length=16, choices=Lighting.choices, blank=True)
    failure_reason = models.CharField(max_length=255, blank=True)
    device_fingerprint = models.CharField(max_length=64, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=512, blank=True)
    location_data = models.JSONField(null=True, blank=True)
    duration_ms = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    objects = VerificationAttemptQuerySet.as_manager()

    class Meta:
        ordering = ("-created_at",)
        indexes = [
            models.Index(fields=["user", "created_at"], name="bio_attempt_user_created_idx"),
        ]

    def __str__(self) -> str:
        """Return a human readable representation."""
        outcome = "success" if self.success else "failure"
        return f"{self.user} {self.attempt_type} {outcome} at {self.created_at:%Y-%m-%d %H:%M:%S}"

    @classmethod
    def prune_older_than(cls, days: int, *, now=None) -> int:
        """Delete attempts older than ``days`` and return how many went."""

        cutoff = (now or timezone.now()) - timedelta(days=days)
        deleted, _ = cls.objects.filter(created_at__lt=cutoff).delete()
        if deleted:
            logger.debug("Pruned %s verification attempts older than %s", deleted, cutoff)
        return deleted


class DeviceFingerprint(models.Model):
    """Device a user has verified from, with its trust and risk state."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="device_fingerprints",
    )
    fingerprint = models.CharField(max_length=64, help_text="sha256 over device characteristics.")
    device_info = models.JSONField(default=dict, blank=True)
    first_seen_at = models.DateTimeField(default=timezone.now)
    last_seen_at = models.DateTimeField(default=timezone.now)
    sighting_count = models.PositiveIntegerField(default=1)
    is_trusted = models.BooleanField(default=False)
    risk_score = models.PositiveSmallIntegerField(default=50)
    is_blocked = models.BooleanField(default=False)
    block_reason = models.CharField(max_length=255, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["user", "fingerprint"], name="bio_device_user_fingerprint_uniq"
            ),
        ]

    def __str__(self) -> str:
        """Return a human readable representation."""
        return f"{self.user} device {self.fingerprint[:12]}"


class OtpChallenge(models.Model):
    """Pending one-time code for a user and purpose; only the hash is kept."""

    class Purpose(models.TextChoices):
        LOGIN = "login", "Login"
        SHIFT_START = "shift_start", "Shift start"
        SHIFT_END = "shift_end", "Shift end"
        FACE_VERIFICATION = "face_verification", "Face verification"
        SETTINGS_ACCESS = "settings_access", "Settings access"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="otp_challenges",
    )
    purpose = models.CharField(max_length=32, choices=Purpose.choices, default=Purpose.LOGIN)
    code_hash = models.CharField(max_length=64)
    expires_at = models.DateTimeField(db_index=True)
    attempts = models.PositiveSmallIntegerField(default=0)
    max_attempts = models.PositiveSmallIntegerField(default=5)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "purpose"], name="bio_otp_user_purpose_uniq"),
        ]

    def __str__(self) -> str:
        """Return a human readable representation."""
        return f"OTP for {self.user} ({self.purpose}) until {self.expires_at:%H:%M:%S}"

    def is_expired(self, now=None) -> bool:
        return (now or timezone.now()) >= self.expires_at


def default_audit_retention():
    return timezone.now() + timedelta(days=settings.BIOMETRICS_AUDIT_RETENTION_DAYS)


class AuditEntry(AppendOnlyModel):
    """One compliance ledger row per sensitive action."""

    class Action(models.TextChoices):
        PROFILE_CREATED = "profile_created", "Profile created"
        PROFILE_UPDATED = "profile_updated", "Profile updated"
        PROFILE_DELETED = "profile_deleted", "Profile deleted"
        PROFILE_ACCESSED = "profile_accessed", "Profile accessed"
        VERIFICATION_ATTEMPT = "verification_attempt", "Verification attempt"
        SETTINGS_ACCESSED = "settings_accessed", "Settings accessed"
        DATA_EXPORTED = "data_exported", "Data exported"
        CONSENT_GIVEN = "consent_given", "Consent given"
        CONSENT_REVOKED = "consent_revoked", "Consent revoked"
        DATA_RETENTION_APPLIED = "data_retention_applied", "Data retention applied"
        SECURITY_BREACH_DETECTED = "security_breach_detected", "Security breach detected"
        ACCOUNT_UNLOCKED = "account_unlocked", "Account unlocked"
        DEVICE_TRUST_CHANGED = "device_trust_changed", "Device trust changed"
        OTP_ISSUED = "otp_issued", "OTP issued"
        OTP_VERIFIED = "otp_verified", "OTP verified"
        OTP_INVALIDATED = "otp_invalidated", "OTP invalidated"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="biometric_audit_entries",
        help_text="Subject of the action.",
    )
    action = models.CharField(max_length=32, choices=Action.choices, db_index=True)
    details = models.JSONField(default=dict, blank=True)
    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Actor when different from the subject.",
    )
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=512, blank=True)
    device_fingerprint = models.CharField(max_length=64, blank=True)
    retention_until = models.DateTimeField(default=default_audit_retention, db_index=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ("-created_at",)
        verbose_name_plural = "audit entries"
        indexes = [
            models.Index(fields=["user", "created_at"], name="bio_audit_user_created_idx"),
        ]

    def __str__(self) -> str:
        """Return a human readable representation."""
        return f"{self.action} for {self.user} at {self.created_at:%Y-%m-%d %H:%M:%S}"


class ClientAuditTrail(models.Model):
    """Telemetry a device submits about one verification session."""

    session_id = models.CharField(max_length=128, db_index=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="client_audit_trails",
    )
    shift_action = models.CharField(max_length=16)
    status = models.CharField(max_length=32)
    confidence_score = models.FloatField(null=True, blank=True)
    total_latency_ms = models.PositiveIntegerField(null=True, blank=True)
    fallback_mode = models.BooleanField(default=False)
    override_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        """Return a human readable representation."""
        return f"Audit trail {self.session_id} ({self.status})"


class ClientAuditStep(models.Model):
    trail = models.ForeignKey(ClientAuditTrail, on_delete=models.CASCADE, related_name="steps")
    name = models.CharField(max_length=64)
    status = models.CharField(max_length=32)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    latency_ms = models.PositiveIntegerField(null=True, blank=True)
    error = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)


class ClientAuditEvent(models.Model):
    trail = models.ForeignKey(ClientAuditTrail, on_delete=models.CASCADE, related_name="events")
    event = models.CharField(max_length=64)
    occurred_at = models.DateTimeField(null=True, blank=True)
    details = models.JSONField(default=dict, blank=True)


class OfflineVerification(models.Model):
    """Attempt captured while the device was offline and replayed later."""

    offline_id = models.CharField(max_length=128, unique=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="offline_verifications",
    )
    captured_at = models.DateTimeField()
    shift_action = models.CharField(max_length=16)
    face_verification = models.JSONField(default=dict, blank=True)
    location_verification = models.JSONField(default=dict, blank=True)
    sync_attempts = models.PositiveIntegerField(default=1)
    synced_at = models.DateTimeField(default=timezone.now)

    def __str__(self) -> str:
        """Return a human readable representation."""
        return f"Offline {self.shift_action} {self.offline_id} for {self.user}"
