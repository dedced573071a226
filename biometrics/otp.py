"""Six-digit one-time codes used as the second authentication factor."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from users.models import Account

from .audit import EMPTY_CONTEXT, AuditLedger, RequestContext
from .models import AuditEntry, OtpChallenge
from .notifications import OtpDelivery, deliver_safely
from .results import Err, ErrorCode, Ok, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedOtp:
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class OtpStatus:
    active: bool
    expires_at: Optional[datetime] = None
    attempts_remaining: int = 0


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


class OtpIssuer:
    """Issue, verify and expire hashed one-time codes keyed by user email and purpose."""

    def __init__(
        self,
        ledger: AuditLedger,
        delivery: OtpDelivery,
        *,
        length: int = 6,
        ttl_minutes: int = 10,
        max_attempts: int = 5,
    ) -> None:
        self.ledger = ledger
        self.delivery = delivery
        self.length = length
        self.ttl = timedelta(minutes=ttl_minutes)
        self.max_attempts = max_attempts

    def generate_code(self) -> str:
        lower = 10 ** (self.length - 1)
        return str(lower + secrets.randbelow(9 * lower))

    @staticmethod
    def _find_user(email: str):
        return get_user_model().objects.filter(email__iexact=email.strip(), is_active=True).first()

    def issue(
        self,
        email: str,
        purpose: str = OtpChallenge.Purpose.LOGIN,
        *,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> Result[IssuedOtp]:
        user = self._find_user(email)
        if user is None:
            return Err(ErrorCode.USER_NOT_FOUND)

        code = self.generate_code()
        expires_at = timezone.now() + self.ttl
        with transaction.atomic():
            OtpChallenge.objects.update_or_create(
                user=user,
                purpose=purpose,
                defaults={
                    "code_hash": hash_code(code),
                    "expires_at": expires_at,
                    "attempts": 0,
                    "max_attempts": self.max_attempts,
                    "created_at": timezone.now(),
                },
            )
            self.ledger.record(
                user.pk,
                AuditEntry.Action.OTP_ISSUED,
                {"purpose": purpose, "expires_at": expires_at.isoformat()},
                context=context,
            )
            transaction.on_commit(
                lambda: deliver_safely(
                    self.delivery.send_code,
                    user.email,
                    code,
                    expires_at,
                    purpose,
                    description="one-time code",
                )
            )
        logger.info("Issued %s OTP for user %s", purpose, user.pk)
        return Ok(IssuedOtp(code=code, expires_at=expires_at))

    def verify(
        self,
        email: str,
        code: str,
        purpose: str = OtpChallenge.Purpose.LOGIN,
        *,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> Result[None]:
        user = self._find_user(email)
        if user is None:
            return Err(ErrorCode.NO_ACTIVE_CHALLENGE)

        with transaction.atomic():
            challenge = (
                OtpChallenge.objects.select_for_update()
                .filter(user=user, purpose=purpose)
                .first()
            )
            if challenge is None:
                return Err(ErrorCode.NO_ACTIVE_CHALLENGE)

            if challenge.is_expired():
                challenge.delete()
                return Err(ErrorCode.OTP_EXPIRED)

            if challenge.attempts >= challenge.max_attempts:
                return Err(ErrorCode.TOO_MANY_ATTEMPTS)

            if not hmac.compare_digest(challenge.code_hash, hash_code(str(code).strip())):
                challenge.attempts += 1
                challenge.save(update_fields=["attempts"])
                logger.info("Incorrect %s OTP for user %s", purpose, user.pk)
                return Err(ErrorCode.INVALID_CODE)

            challenge.delete()
            account = Account.for_user(user)
            account.mfa_last_used_at = timezone.now()
            account.save(update_fields=["mfa_last_used_at", "updated_at"])
            self.ledger.record(
                user.pk,
                AuditEntry.Action.OTP_VERIFIED,
                {"purpose": purpose},
                context=context,
            )
        return Ok(None)

    def invalidate(self, email: str, purpose: str = OtpChallenge.Purpose.LOGIN) -> int:
        user = self._find_user(email)
        if user is None:
            return 0
        with transaction.atomic():
            deleted, _ = OtpChallenge.objects.filter(user=user, purpose=purpose).delete()
            if deleted:
                self.ledger.record(
                    user.pk, AuditEntry.Action.OTP_INVALIDATED, {"purpose": purpose, "deleted": deleted}
                )
        return deleted

    def status(self, email: str, purpose: str = OtpChallenge.Purpose.LOGIN) -> OtpStatus:
        user = self._find_user(email)
        challenge = (
            OtpChallenge.objects.filter(user=user, purpose=purpose).first() if user else None
        )
        if challenge is None or challenge.is_expired():
            return OtpStatus(active=False)
        return OtpStatus(
            active=True,
            expires_at=challenge.expires_at,
            attempts_remaining=max(0, challenge.max_attempts - challenge.attempts),
        )

    def purge_expired(self, now=None) -> int:
        deleted, _ = OtpChallenge.objects.filter(expires_at__lte=now or timezone.now()).delete()
        return deleted
