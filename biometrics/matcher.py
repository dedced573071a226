"""Pure similarity scoring between two face templates.

Nothing in this module touches the database or settings at call time, so
the scoring can be exercised with synthetic vectors in fast unit tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

TemplateLike = Union[np.ndarray, Sequence[float]]


class TemplateDimensionMismatch(ValueError):
    """Raised when two templates do not share the same dimensionality."""


@dataclass(frozen=True)
class MatchThresholds:
    """Confidence cut-offs for an identity match and for sensitive operations."""

    match: float = 0.75
    high_confidence: float = 0.85

    def __post_init__(self) -> None:
        if not 0.0 <= self.match <= 1.0 or not 0.0 <= self.high_confidence <= 1.0:
            raise ValueError("Thresholds must lie within [0, 1].")
        if self.high_confidence < self.match:
            raise ValueError("high_confidence must not be lower than match.")

    def is_match(self, confidence: float) -> bool:
        return confidence >= self.match

    def is_high_confidence(self, confidence: float) -> bool:
        return confidence >= self.high_confidence


def as_template(values: TemplateLike) -> np.ndarray:
    """Coerce ``values`` into a finite, non-zero, one-dimensional float vector.

    Raises:
        ValueError: If the vector is empty, multi-dimensional, non-finite or
            has zero magnitude.
    """

    try:
        vector = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ValueError("Template values must be numeric.") from exc

    if vector.ndim != 1 or vector.size == 0:
        raise ValueError("Templates must be non-empty one-dimensional vectors.")
    if not np.all(np.isfinite(vector)):
        raise ValueError("Templates must only contain finite values.")
    if not np.any(vector):
        raise ValueError("Templates must have a non-zero magnitude.")
    return vector


def compare(stored: TemplateLike, candidate: TemplateLike) -> float:
    """Return the confidence in ``[0, 1]`` that both templates show the same face.

    Cosine similarity in ``[-1, 1]`` is rescaled with ``(cos + 1) / 2``.

    Raises:
        TemplateDimensionMismatch: If the vectors differ in length.
        ValueError: If either vector is malformed.
    """

    stored_vector = as_template(stored)
    candidate_vector = as_template(candidate)
    if stored_vector.shape != candidate_vector.shape:
        raise TemplateDimensionMismatch(
            f"Template dimensions differ: {stored_vector.size} != {candidate_vector.size}"
        )

    cosine = float(
        np.dot(stored_vector, candidate_vector)
        / (np.linalg.norm(stored_vector) * np.linalg.norm(candidate_vector))
    )
    # Floating point noise can push the cosine a hair outside [-1, 1].
    confidence = (min(1.0, max(-1.0, cosine)) + 1.0) / 2.0
    return round(confidence, 12)
