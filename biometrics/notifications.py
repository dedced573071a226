"""Out-of-band channels the core hands messages to after a commit.

Delivery is best effort: failures are logged and never propagate into the
transaction that decided to send.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


class OtpDelivery(Protocol):
    def send_code(self, email: str, code: str, expires_at: datetime, purpose: str) -> None:
        """Deliver ``code`` to the address behind ``email``."""


class SecurityAlertNotifier(Protocol):
    def account_locked(self, user_id: int, locked_until: datetime) -> None:
        """Tell the worker and their administrators about a lockout."""


class EmailOtpDelivery:
    """Send one-time codes through Django's configured email backend."""

    subject = "Your verification code"

    def send_code(self, email: str, code: str, expires_at: datetime, purpose: str) -> None:
        minutes = max(1, int(round((expires_at - datetime.now(expires_at.tzinfo)).total_seconds() / 60)))
        body = (
            f"Your verification code is {code}.\n\n"
            f"It expires in {minutes} minutes. If you did not request it, ignore this email."
        )
        send_mail(self.subject, body, settings.DEFAULT_FROM_EMAIL, [email], fail_silently=False)


class LoggingAlertNotifier:
    """Default alert channel; deployments plug in their push provider instead."""

    def account_locked(self, user_id: int, locked_until: datetime) -> None:
        logger.warning("Security alert: user %s locked until %s", user_id, locked_until)


def deliver_safely(callback, *args, description: str = "notification") -> None:
    """Invoke ``callback`` and log, rather than raise, any delivery error."""

    try:
        callback(*args)
    except Exception:
        logger.exception("Failed to deliver %s", description)
