"""Lifecycle of encrypted face profiles: register, rotate, deactivate, status."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np
from django.db import transaction
from django.utils import timezone

from src.common.crypto import (
    KeyCustodian,
    TemplateCodec,
    encode_template,
    generate_profile_key,
    template_digest,
)
from users.models import Account

from .models import AuditEntry, FaceProfile
from .results import Err, ErrorCode, Ok, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileStatus:
    registered: bool
    active: bool
    verification_count: int = 0
    quality_score: Optional[float] = None
    last_verification_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CredentialStore:
    """Sole writer of :class:`FaceProfile` rows.

    Each profile gets a fresh key. The key is sealed by the injected
    :class:`KeyCustodian` and only the sealed reference is stored.
    """

    def __init__(self, codec: TemplateCodec, custodian: KeyCustodian) -> None:
        self.codec = codec
        self.custodian = custodian

    def load_active(self, user_id: int, *, for_update: bool = False) -> Optional[FaceProfile]:
        queryset = FaceProfile.objects.filter(user_id=user_id, is_active=True)
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.first()

    def decrypt_template(self, profile: FaceProfile) -> np.ndarray:
        """Return the stored template; raises ``DecryptionFailure`` on any integrity fault."""

        key = self.custodian.unseal(profile.key_reference)
        return self.codec.decrypt_template(bytes(profile.encrypted_template), key)

    def _seal_template(self, template: np.ndarray) -> tuple[bytes, str, str]:
        plaintext = encode_template(template)
        key = generate_profile_key()
        return self.codec.encrypt(plaintext, key), self.custodian.seal(key), template_digest(plaintext)

    @transaction.atomic
    def register(
        self,
        account: Account,
        template: np.ndarray,
        *,
        quality: Optional[float],
        device_fingerprint: str = "",
    ) -> Result[FaceProfile]:
        """Create the profile, or reactivate a soft-deleted one, for ``account``."""

        existing = FaceProfile.objects.select_for_update().filter(user_id=account.user_id).first()
        if existing is not None and existing.is_active:
            return Err(ErrorCode.PROFILE_EXISTS)

        ciphertext, key_reference, digest = self._seal_template(template)
        if existing is None:
            profile = FaceProfile.objects.create(
                user_id=account.user_id,
                template_hash=digest,
                encrypted_template=ciphertext,
                key_reference=key_reference,
                quality_score=quality,
                registration_device_fingerprint=device_fingerprint,
            )
        else:
            profile = existing
            self._replace_material(profile, ciphertext, key_reference, digest, quality)
            profile.is_active = True
            profile.deactivated_at = None
            profile.registration_device_fingerprint = device_fingerprint
            profile.save()
            logger.info("Reactivated face profile for user %s", account.user_id)

        account.face_registered = True
        account.face_enabled = True
        account.save(update_fields=["face_registered", "face_enabled", "updated_at"])
        return Ok(profile)

    @transaction.atomic
    def rotate(
        self,
        user_id: int,
        template: np.ndarray,
        *,
        quality: Optional[float],
    ) -> Result[FaceProfile]:
        """Replace the template and key of the active profile and reset its counters."""

        profile = self.load_active(user_id, for_update=True)
        if profile is None:
            return Err(ErrorCode.PROFILE_NOT_FOUND)

        ciphertext, key_reference, digest = self._seal_template(template)
        self._replace_material(profile, ciphertext, key_reference, digest, quality)
        profile.save()
        return Ok(profile)

    @transaction.atomic
    def deactivate(self, account: Account) -> Result[FaceProfile]:
        """Soft delete the active profile and clear the account's biometric flags."""

        profile = self.load_active(account.user_id, for_update=True)
        if profile is None:
            return Err(ErrorCode.PROFILE_NOT_FOUND)

        profile.is_active = False
        profile.deactivated_at = timezone.now()
        profile.save(update_fields=["is_active", "deactivated_at", "updated_at"])

        # Lock state is left alone; only the lockout policy may lift it.
        account.face_registered = False
        account.face_enabled = False
        account.save(update_fields=["face_registered", "face_enabled", "updated_at"])
        return Ok(profile)

    @transaction.atomic
    def rewrap_key(self, profile_pk: int, ledger) -> Result[FaceProfile]:
        """Re-seal one profile key under the newest master key.

        The row is locked and re-read first, so a template rotation that
        committed in the meantime is re-wrapped rather than overwritten.
        Raises ``DecryptionFailure`` when no configured master key opens the
        stored reference.
        """

        profile = FaceProfile.objects.select_for_update().filter(pk=profile_pk).first()
        if profile is None:
            return Err(ErrorCode.PROFILE_NOT_FOUND)

        profile.key_reference = self.custodian.rewrap(profile.key_reference)
        profile.save(update_fields=["key_reference", "updated_at"])
        ledger.record(
            profile.user_id,
            AuditEntry.Action.PROFILE_UPDATED,
            {"profile_id": profile.pk, "key_rewrapped": True},
        )
        return Ok(profile)

    def record_success(self, profile: FaceProfile, now=None) -> None:
        profile.verification_count += 1
        profile.last_verification_at = now or timezone.now()
        profile.save(update_fields=["verification_count", "last_verification_at", "updated_at"])

    def status(self, user_id: int) -> ProfileStatus:
        profile = FaceProfile.objects.filter(user_id=user_id).first()
        if profile is None:
            return ProfileStatus(registered=False, active=False)
        return ProfileStatus(
            registered=profile.is_active,
            active=profile.is_active,
            verification_count=profile.verification_count,
            quality_score=profile.quality_score,
            last_verification_at=profile.last_verification_at,
            created_at=profile.created_at,
        )

    @staticmethod
    def _replace_material(
        profile: FaceProfile,
        ciphertext: bytes,
        key_reference: str,
        digest: str,
        quality: Optional[float],
    ) -> None:
        profile.encrypted_template = ciphertext
        profile.key_reference = key_reference
        profile.template_hash = digest
        profile.quality_score = quality
        profile.verification_count = 0
        profile.last_verification_at = None
