"""Liveness gating and verdict assembly for face verification.

The capture pipeline on the device computes the liveness flag and score;
this module only gates on them. They are an upstream contract, not values
re-verified on the server.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .matcher import MatchThresholds

# Below this confidence the face is treated as a different person rather
# than a poor capture of the registered one.
MISMATCH_CONFIDENCE = 0.5


class FailureReason(str, Enum):
    """Generic reasons shown to the caller after a failed verification."""

    FACE_MISMATCH = "Face does not match registered profile"
    LOW_CONFIDENCE = "Face match confidence too low"
    LIVENESS_FAILED = "Liveness detection failed - please ensure you are looking at the camera"
    DEVICE_BLOCKED = "Device is blocked"


@dataclass(frozen=True)
class LivenessGate:
    """Pass only when the flag is set and the score reaches ``threshold``."""

    threshold: float = 0.70

    def passes(self, detected: bool, score: Optional[float]) -> bool:
        if not detected or score is None:
            return False
        return score >= self.threshold


@dataclass(frozen=True)
class Verdict:
    """Outcome of matching and liveness for one attempt."""

    success: bool
    confidence: float
    liveness_passed: bool
    failure_reason: Optional[FailureReason] = None


def failure_reason(
    confidence: float,
    liveness_ok: bool,
    thresholds: MatchThresholds,
    *,
    device_blocked: bool = False,
) -> Optional[FailureReason]:
    """Return why an attempt failed, or ``None`` when it passed."""

    if device_blocked:
        return FailureReason.DEVICE_BLOCKED
    if not thresholds.is_match(confidence):
        if confidence < MISMATCH_CONFIDENCE:
            return FailureReason.FACE_MISMATCH
        return FailureReason.LOW_CONFIDENCE
    if not liveness_ok:
        return FailureReason.LIVENESS_FAILED
    return None


def decide(
    confidence: float,
    *,
    liveness_detected: bool,
    liveness_score: Optional[float],
    thresholds: MatchThresholds,
    gate: LivenessGate,
    device_blocked: bool = False,
) -> Verdict:
    """Combine match confidence, liveness and device state into a verdict.

    Both the match and the liveness gate must pass; a blocked device fails
    the attempt regardless of either.
    """

    liveness_ok = gate.passes(liveness_detected, liveness_score)
    reason = failure_reason(confidence, liveness_ok, thresholds, device_blocked=device_blocked)
    return Verdict(
        success=reason is None,
        confidence=confidence,
        liveness_passed=liveness_ok,
        failure_reason=reason,
    )
