"""Progressive lockout after consecutive failed face verifications."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from django.db import transaction
from django.utils import timezone

from users.models import Account

from .audit import EMPTY_CONTEXT, AuditLedger, RequestContext
from .models import AuditEntry
from .results import Err, ErrorCode, Ok, Result

logger = logging.getLogger(__name__)


class LockoutPolicy:
    """Own every mutation of the lock state embedded in :class:`Account`.

    Callers pass an account row they already locked with
    ``select_for_update`` so concurrent failures for one user are counted
    one after the other.
    """

    def __init__(self, ledger: AuditLedger, *, threshold: int = 3, lock_minutes: int = 15) -> None:
        self.ledger = ledger
        self.threshold = threshold
        self.lock_duration = timedelta(minutes=lock_minutes)

    def is_locked(self, user_id: int, now=None) -> bool:
        now = now or timezone.now()
        return Account.objects.filter(user_id=user_id, face_locked_until__gt=now).exists()

    def register_failure(
        self, account: Account, *, context: RequestContext = EMPTY_CONTEXT, now=None
    ) -> bool:
        """Count a failure; return ``True`` when it triggered a new lock."""

        now = now or timezone.now()
        account.face_failure_count += 1
        fields = ["face_failure_count", "updated_at"]
        locked = False
        if account.face_failure_count >= self.threshold and not account.is_locked(now):
            account.face_locked_until = now + self.lock_duration
            fields.append("face_locked_until")
            locked = True
        account.save(update_fields=fields)

        if locked:
            self.ledger.record(
                account.user_id,
                AuditEntry.Action.SECURITY_BREACH_DETECTED,
                {
                    "reason": "consecutive_face_verification_failures",
                    "failures": account.face_failure_count,
                    "locked_until": account.face_locked_until.isoformat(),
                },
                context=context,
            )
            logger.warning(
                "Face verification locked for user %s until %s",
                account.user_id,
                account.face_locked_until,
            )
        return locked

    def register_success(self, account: Account, now=None) -> None:
        """Reset the failure counter; an active lock is left to expire on its own."""

        now = now or timezone.now()
        account.face_failure_count = 0
        account.face_success_count += 1
        account.last_face_verification_at = now
        account.save(
            update_fields=[
                "face_failure_count",
                "face_success_count",
                "last_face_verification_at",
                "updated_at",
            ]
        )

    def clear(self, account: Account) -> None:
        account.face_failure_count = 0
        account.face_locked_until = None

    @transaction.atomic
    def unlock(
        self,
        user_id: int,
        performed_by: Optional[int],
        *,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> Result[Account]:
        account = Account.objects.select_for_update().filter(user_id=user_id).first()
        if account is None:
            return Err(ErrorCode.USER_NOT_FOUND)

        previous = account.face_locked_until
        self.clear(account)
        account.save(update_fields=["face_failure_count", "face_locked_until", "updated_at"])
        self.ledger.record(
            user_id,
            AuditEntry.Action.ACCOUNT_UNLOCKED,
            {"previous_locked_until": previous.isoformat() if previous else None},
            performed_by=performed_by,
            context=context,
        )
        logger.info("Face verification unlocked for user %s by %s", user_id, performed_by)
        return Ok(account)
