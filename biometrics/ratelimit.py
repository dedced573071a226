"""Per-user ceiling on verification attempts within a trailing window."""

from __future__ import annotations

import logging
from datetime import timedelta

from django.utils import timezone

from .models import VerificationAttempt
from .results import Err, ErrorCode, Ok, Result

logger = logging.getLogger(__name__)


class AttemptRateLimiter:
    """Count recorded attempts for a user; reject once the ceiling is reached.

    The count comes from the attempt log itself, so the check costs one
    indexed query and runs before any profile is loaded or decrypted.
    """

    def __init__(self, *, window_seconds: int = 60, max_attempts: int = 10) -> None:
        self.window = timedelta(seconds=window_seconds)
        self.max_attempts = max_attempts

    def attempts_in_window(self, user_id: int, now=None) -> int:
        since = (now or timezone.now()) - self.window
        return VerificationAttempt.objects.for_user(user_id).since(since).count()

    def check_limit(self, user_id: int, now=None) -> Result[None]:
        if self.attempts_in_window(user_id, now) >= self.max_attempts:
            logger.warning("Verification rate limit reached for user %s", user_id)
            return Err(ErrorCode.RATE_LIMIT_EXCEEDED)
        return Ok(None)
