"""Append-only compliance ledger for sensitive biometric actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from .models import AuditEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Network origin of the request that triggered an action."""

    ip_address: Optional[str] = None
    user_agent: str = ""
    device_fingerprint: str = ""

    @classmethod
    def from_request(cls, request, device_fingerprint: str = "") -> "RequestContext":
        return cls(
            ip_address=client_address(request),
            user_agent=request.META.get("HTTP_USER_AGENT", "")[:512],
            device_fingerprint=device_fingerprint,
        )


def client_address(request) -> Optional[str]:
    """Return the peer address, following X-Forwarded-For only through trusted proxies.

    The header is read right to left and the first hop that is not listed in
    ``BIOMETRICS_TRUSTED_PROXIES`` wins. The header is ignored unless
    the direct peer is itself a trusted proxy.
    """

    ip_address = request.META.get("REMOTE_ADDR") or None
    trusted = set(getattr(settings, "BIOMETRICS_TRUSTED_PROXIES", ()))
    if ip_address not in trusted:
        return ip_address
    forwarded = [hop.strip() for hop in request.META.get("HTTP_X_FORWARDED_FOR", "").split(",") if hop.strip()]
    for hop in reversed(forwarded):
        if hop not in trusted:
            return hop
    return ip_address


EMPTY_CONTEXT = RequestContext()


class AuditLedger:
    """Write one :class:`AuditEntry` per state change, inside the caller's transaction."""

    def record(
        self,
        user_id: int,
        action: str,
        details: Optional[Mapping[str, Any]] = None,
        *,
        performed_by: Optional[int] = None,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> AuditEntry:
        entry = AuditEntry.objects.create(
            user_id=user_id,
            action=action,
            details=dict(details or {}),
            performed_by_id=performed_by,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            device_fingerprint=context.device_fingerprint,
        )
        logger.debug("Audit %s recorded for user %s", action, user_id)
        return entry

    def recent(self, user_id: int, limit: int = 20):
        return AuditEntry.objects.filter(user_id=user_id).order_by("-created_at", "-id")[:limit]

    @transaction.atomic
    def apply_retention(self, now=None) -> int:
        """Delete entries whose retention deadline has passed.

        Each affected subject gets one ``data_retention_applied`` entry
        naming how many rows were erased.
        """

        now = now or timezone.now()
        expired = AuditEntry.objects.filter(retention_until__lte=now)
        per_user = list(
            expired.values("user_id").annotate(total=Count("id")).order_by("user_id")
        )
        if not per_user:
            return 0

        deleted, _ = expired.delete()
        for row in per_user:
            self.record(
                row["user_id"],
                AuditEntry.Action.DATA_RETENTION_APPLIED,
                {"deleted_entries": row["total"], "applied_at": now.isoformat()},
            )
        logger.info("Audit retention removed %s entries for %s users", deleted, len(per_user))
        return deleted
