import math

import numpy as np
import pytest

from biometrics.matcher import MatchThresholds, TemplateDimensionMismatch, as_template, compare


def test_identical_templates_score_one(template_factory):
    template = template_factory(1)

    assert compare(template, template) == 1.0


def test_opposite_templates_score_zero():
    assert compare([1.0, 0.0], [-1.0, 0.0]) == 0.0


def test_orthogonal_templates_score_one_half():
    assert math.isclose(compare([1.0, 0.0], [0.0, 1.0]), 0.5)


def test_scaling_does_not_change_confidence():
    assert compare([1.0, 2.0, 3.0], [10.0, 20.0, 30.0]) == 1.0


@pytest.mark.parametrize("seed", range(5))
def test_confidence_stays_within_unit_interval(template_factory, seed):
    confidence = compare(template_factory(seed), template_factory(seed + 100))

    assert 0.0 <= confidence <= 1.0


def test_dimension_mismatch_raises():
    with pytest.raises(TemplateDimensionMismatch):
        compare([1.0, 2.0], [1.0, 2.0, 3.0])


@pytest.mark.parametrize(
    "values",
    [
        [],
        [[1.0, 2.0]],
        [0.0, 0.0, 0.0],
        [1.0, float("nan")],
        [1.0, float("inf")],
        ["a", "b"],
    ],
)
def test_malformed_templates_are_rejected(values):
    with pytest.raises(ValueError):
        as_template(values)


def test_as_template_returns_float_vector():
    vector = as_template([1, 2, 3])

    assert vector.dtype == np.float64
    assert vector.shape == (3,)


def test_thresholds_classify_confidence():
    thresholds = MatchThresholds()

    assert thresholds.is_match(0.75)
    assert not thresholds.is_match(0.7499)
    assert thresholds.is_high_confidence(0.85)
    assert not thresholds.is_high_confidence(0.84)


def test_thresholds_reject_inverted_configuration():
    with pytest.raises(ValueError):
        MatchThresholds(match=0.9, high_confidence=0.8)
    with pytest.raises(ValueError):
        MatchThresholds(match=1.5, high_confidence=1.5)
