"""Device fingerprint derivation, sighting history and risk assessment."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from .audit import EMPTY_CONTEXT, AuditLedger, RequestContext
from .models import AuditEntry, DeviceFingerprint
from .results import Err, ErrorCode, Ok, Result

logger = logging.getLogger(__name__)

TRUSTED_RISK_SCORE = 10
UNTRUSTED_RISK_SCORE = 80

# Characteristics that identify a device; version strings change on upgrade
# and are kept only in the snapshot.
_IDENTITY_FIELDS = (
    "user_agent",
    "platform",
    "screen_resolution",
    "timezone",
    "language",
    "device_model",
)


@dataclass(frozen=True)
class DeviceInfo:
    """Structured description of the device submitting a request."""

    user_agent: Optional[str] = None
    platform: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    device_model: Optional[str] = None
    app_version: Optional[str] = None
    os_version: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "DeviceInfo":
        if not data:
            return cls()
        known = {name: data.get(name) for name in cls.__dataclass_fields__}
        return cls(**{key: (str(value) if value is not None else None) for key, value in known.items()})

    def is_empty(self) -> bool:
        return not any(asdict(self).values())

    def snapshot(self) -> dict[str, Optional[str]]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class RiskAssessment:
    risk_score: int
    trusted: bool
    blocked: bool
    block_reason: str = ""


def derive(device_info: DeviceInfo) -> str:
    """Return a stable sha256 hex fingerprint over the identifying characteristics."""

    canonical = {name: getattr(device_info, name) for name in _IDENTITY_FIELDS}
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DeviceFingerprintRegistry:
    """Track sightings per (user, fingerprint) and answer risk questions."""

    def __init__(self, ledger: AuditLedger, *, unseen_risk: int = 50) -> None:
        self.ledger = ledger
        self.unseen_risk = unseen_risk

    derive = staticmethod(derive)

    def record_sighting(
        self, user_id: int, fingerprint: str, device_info: DeviceInfo
    ) -> DeviceFingerprint:
        """Create the device row on first sight, otherwise bump its last-seen data."""

        now = timezone.now()
        with transaction.atomic():
            device = (
                DeviceFingerprint.objects.select_for_update()
                .filter(user_id=user_id, fingerprint=fingerprint)
                .first()
            )
            if device is None:
                device = DeviceFingerprint.objects.create(
                    user_id=user_id,
                    fingerprint=fingerprint,
                    device_info=device_info.snapshot(),
                    first_seen_at=now,
                    last_seen_at=now,
                    risk_score=self.unseen_risk,
                )
                logger.info("New device %s seen for user %s", fingerprint[:12], user_id)
                return device

            device.last_seen_at = now
            device.sighting_count += 1
            if not device_info.is_empty():
                device.device_info = device_info.snapshot()
            device.save(update_fields=["last_seen_at", "sighting_count", "device_info"])
            return device

    def assess_risk(self, user_id: int, fingerprint: str) -> RiskAssessment:
        device = DeviceFingerprint.objects.filter(user_id=user_id, fingerprint=fingerprint).first()
        if device is None:
            return RiskAssessment(risk_score=self.unseen_risk, trusted=False, blocked=False)
        return RiskAssessment(
            risk_score=device.risk_score,
            trusted=device.is_trusted,
            blocked=device.is_blocked,
            block_reason=device.block_reason,
        )

    def list_devices(self, user_id: int):
        return DeviceFingerprint.objects.filter(user_id=user_id).order_by("-last_seen_at")

    @transaction.atomic
    def set_trust(
        self,
        user_id: int,
        fingerprint: str,
        trusted: bool,
        *,
        performed_by: Optional[int] = None,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> Result[DeviceFingerprint]:
        device = self._locked_device(user_id, fingerprint)
        if device is None:
            return Err(ErrorCode.DEVICE_NOT_FOUND)

        device.is_trusted = trusted
        device.risk_score = TRUSTED_RISK_SCORE if trusted else UNTRUSTED_RISK_SCORE
        device.save(update_fields=["is_trusted", "risk_score"])
        self.ledger.record(
            user_id,
            AuditEntry.Action.DEVICE_TRUST_CHANGED,
            {"fingerprint": fingerprint, "trusted": trusted, "risk_score": device.risk_score},
            performed_by=performed_by,
            context=context,
        )
        return Ok(device)

    @transaction.atomic
    def block(
        self,
        user_id: int,
        fingerprint: str,
        reason: str,
        *,
        performed_by: Optional[int] = None,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> Result[DeviceFingerprint]:
        return self._set_blocked(user_id, fingerprint, True, reason, performed_by, context)

    @transaction.atomic
    def unblock(
        self,
        user_id: int,
        fingerprint: str,
        *,
        performed_by: Optional[int] = None,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> Result[DeviceFingerprint]:
        return self._set_blocked(user_id, fingerprint, False, "", performed_by, context)

    def _set_blocked(
        self,
        user_id: int,
        fingerprint: str,
        blocked: bool,
        reason: str,
        performed_by: Optional[int],
        context: RequestContext,
    ) -> Result[DeviceFingerprint]:
        device = self._locked_device(user_id, fingerprint)
        if device is None:
            return Err(ErrorCode.DEVICE_NOT_FOUND)

        device.is_blocked = blocked
        device.block_reason = reason
        device.save(update_fields=["is_blocked", "block_reason"])
        self.ledger.record(
            user_id,
            AuditEntry.Action.DEVICE_TRUST_CHANGED,
            {"fingerprint": fingerprint, "blocked": blocked, "reason": reason},
            performed_by=performed_by,
            context=context,
        )
        if blocked:
            logger.warning("Device %s blocked for user %s", fingerprint[:12], user_id)
        return Ok(device)

    @staticmethod
    def _locked_device(user_id: int, fingerprint: str) -> Optional[DeviceFingerprint]:
        return (
            DeviceFingerprint.objects.select_for_update()
            .filter(user_id=user_id, fingerprint=fingerprint)
            .first()
        )
