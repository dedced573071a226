"""Delete expired one-time codes outside the celery beat schedule."""

from __future__ import annotations

from django.core.management.base import BaseCommand

from biometrics.tasks import sweep_expired_otps


class Command(BaseCommand):
    help = "Remove expired OTP challenges, skipping when another sweep is running."

    def handle(self, *args, **options) -> None:
        summary = sweep_expired_otps()
        if summary["skipped"]:
            self.stdout.write(self.style.WARNING("Another sweep holds the lock; nothing done."))
            return
        self.stdout.write(self.style.SUCCESS(f"Deleted {summary['deleted']} expired challenges."))
