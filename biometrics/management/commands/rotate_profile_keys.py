"""Re-wrap every stored profile key under the newest master key."""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from biometrics.audit import AuditLedger
from biometrics.credentials import CredentialStore
from biometrics.models import FaceProfile
from src.common.crypto import DecryptionFailure, TemplateCodec, WrappedKeyCustodian


class Command(BaseCommand):
    """Rotate master keys for face profiles without touching template ciphertext."""

    help = (
        "Re-seal the per-profile keys of all face profiles with the first key in "
        "BIOMETRICS_KEY_ENCRYPTION_KEYS. Stage the new key at the front of the list, "
        "keep the old keys behind it, run this command, then retire the old keys."
    )

    def add_arguments(self, parser) -> None:  # pragma: no cover - argparse wiring
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Check that every key reference unwraps without writing changes.",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            default=500,
            help="Number of profiles fetched per query.",
        )

    def handle(self, *args, **options) -> None:
        dry_run: bool = options["dry_run"]
        batch_size: int = options["batch_size"]
        custodian = WrappedKeyCustodian()
        store = CredentialStore(TemplateCodec(), custodian)
        ledger = AuditLedger()

        profiles = FaceProfile.objects.order_by("pk")
        total = profiles.count()
        self.stdout.write(self.style.NOTICE(f"Found {total} face profiles to re-wrap."))

        rotated = 0
        for profile_pk in profiles.values_list("pk", flat=True).iterator(chunk_size=batch_size):
            try:
                if dry_run:
                    reference = profiles.values_list("key_reference", flat=True).get(pk=profile_pk)
                    custodian.unseal(reference)
                    continue
                result = store.rewrap_key(profile_pk, ledger)
            except DecryptionFailure as exc:
                raise CommandError(
                    f"Failed to unwrap the key of face profile {profile_pk} with the "
                    f"configured master keys: {exc}"
                ) from exc
            if result.ok:
                rotated += 1

        if dry_run:
            self.stdout.write(self.style.SUCCESS("Dry-run complete; no profiles modified."))
            return

        self.stdout.write(self.style.SUCCESS(f"Re-wrapped {rotated} profile keys."))
