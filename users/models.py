"""
Database models for the users app.

The :class:`Account` model extends Django's built-in user with the data the
biometric flow needs on the user record itself: the worker's role and
company, the face registration and consent flags, and the embedded lock
state driven by repeated failed verifications.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone


class Role(models.TextChoices):
    """Roles that decide who may administer another worker's account."""

    EMPLOYEE = "employee", "Employee"
    GROUP_ADMIN = "group_admin", "Group Admin"
    MANAGEMENT = "management", "Management"
    SUPER_ADMIN = "super_admin", "Super Admin"


class Account(models.Model):
    """Per-user security state for face verification and the OTP factor."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="account",
        help_text="The user this account state belongs to.",
    )
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.EMPLOYEE,
        help_text="Role used to authorise administrative actions.",
    )
    company_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Tenant identifier; administrators only act inside their own company.",
    )
    face_registered = models.BooleanField(
        default=False, help_text="Whether an active face profile exists for the user."
    )
    face_enabled = models.BooleanField(
        default=False, help_text="Whether face verification is enabled for the user."
    )
    face_failure_count = models.PositiveIntegerField(
        default=0, help_text="Consecutive failed face verifications."
    )
    face_locked_until = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Face verification is refused until this moment.",
    )
    face_success_count = models.PositiveIntegerField(
        default=0, help_text="Total successful face verifications."
    )
    last_face_verification_at = models.DateTimeField(
        null=True, blank=True, help_text="When the user last passed face verification."
    )
    biometric_consent = models.BooleanField(
        default=False, help_text="Whether the user consented to biometric processing."
    )
    biometric_consent_at = models.DateTimeField(
        null=True, blank=True, help_text="When biometric consent was given."
    )
    mfa_last_used_at = models.DateTimeField(
        null=True, blank=True, help_text="When the user last completed an OTP challenge."
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["company_id", "role"], name="users_account_company_role_idx"),
        ]

    def __str__(self) -> str:
        """Return a human readable representation."""
        return f"{self.user} ({self.get_role_display()})"

    def is_locked(self, now=None) -> bool:
        """Return ``True`` while the face verification lock is active."""
        now = now or timezone.now()
        return self.face_locked_until is not None and self.face_locked_until > now

    @property
    def can_unlock_others(self) -> bool:
        return self.user.is_superuser or self.role in {Role.MANAGEMENT, Role.SUPER_ADMIN}

    @classmethod
    def for_user(cls, user) -> "Account":
        """Return the account for ``user``, creating the row on first use."""
        account, _ = cls.objects.get_or_create(user=user)
        return account
