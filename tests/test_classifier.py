"""
tests/test_classifier.py

Unit tests for engine/services/evaluator.py and engine/services/classifier.py.
Covers precedence, tie-break, confidence, activity context and the degraded
rule set used when thresholds are malformed.
"""

import math

import pytest

from engine.constants import (
    AUDIO_LEVEL,
    BATTERY_LEVEL,
    BODY_TEMPERATURE,
    HEART_RATE,
    LIGHT_LEVEL,
    LOCATION_AVAILABLE,
    MOTION_MAGNITUDE,
    STRESS_SCORE,
)
from engine.schemas import MetricBound, MetricClass, ThreatLevel
from engine.services.classifier import ThreatClassifier
from engine.services.evaluator import ThresholdEvaluator
from tests.fixtures import build_config, build_reading


def assess(reading, config=None):
    config = config or build_config()
    evaluation = ThresholdEvaluator().evaluate(reading, config)
    return ThreatClassifier().classify(reading, evaluation, config)


# ── Scenarios ────────────────────────────────────────────────

def test_no_breach_is_safe() -> None:
    assessment = assess(build_reading())

    assert assessment.level == ThreatLevel.SAFE
    assert assessment.reasons == []
    assert assessment.recommendations[0] == "Continue normal activities"
    assert assessment.confidence == pytest.approx(0.8)


def test_motion_spike_is_critical_with_fall_reason() -> None:
    """Motion 18.2 against a bound of 15 forces critical."""
    assessment = assess(build_reading(**{MOTION_MAGNITUDE: 18.2}))

    assert assessment.level == ThreatLevel.CRITICAL
    assert assessment.confidence >= 0.85
    assert any("fall" in reason or "impact" in reason for reason in assessment.reasons)
    assert "Consider activating emergency alert" in assessment.recommendations
    assert "Assess for fall or impact injury" in assessment.recommendations


def test_low_battery_alone_is_caution() -> None:
    assessment = assess(build_reading(**{BATTERY_LEVEL: 15.0}))

    assert assessment.level == ThreatLevel.CAUTION
    assert "reduced emergency-response capability" in assessment.reasons[0]
    assert any("capability may be impaired" in r for r in assessment.recommendations)


def test_exercise_heart_rate_within_exercise_bound_is_safe() -> None:
    assessment = assess(build_reading(activity="running", **{HEART_RATE: 145.0}))

    assert assessment.level == ThreatLevel.SAFE


def test_exercise_heart_rate_above_exercise_bound_is_caution_not_critical() -> None:
    config = build_config(exercise_heart_rate_max=140.0)

    assessment = assess(build_reading(activity="running", **{HEART_RATE: 145.0}), config)

    assert assessment.level == ThreatLevel.CAUTION
    assert assessment.reasons[0].endswith("during running")


def test_resting_heart_rate_145_is_caution() -> None:
    assessment = assess(build_reading(activity="resting", **{HEART_RATE: 145.0}))

    assert assessment.level == ThreatLevel.CAUTION


def test_low_heart_rate_is_warning() -> None:
    assessment = assess(build_reading(**{HEART_RATE: 42.0}))

    assert assessment.level == ThreatLevel.WARNING
    assert "below normal range" in assessment.reasons[0]


# ── Precedence and ordering ──────────────────────────────────

def test_highest_weight_wins_over_many_lower_breaches() -> None:
    reading = build_reading(
        **{
            MOTION_MAGNITUDE: 16.0,
            BATTERY_LEVEL: 10.0,
            AUDIO_LEVEL: 95.0,
            LIGHT_LEVEL: 2.0,
        }
    )

    assessment = assess(reading)

    assert assessment.level == ThreatLevel.CRITICAL
    assert assessment.primary_cause == MOTION_MAGNITUDE
    weights = [breach.weight for breach in assessment.breaches]
    assert weights == sorted(weights, reverse=True)
    assert len(assessment.reasons) == 4


def test_equal_weight_tie_breaks_on_metric_name() -> None:
    """body_temperature sorts before stress_score, so its warning level wins."""
    reading = build_reading(**{STRESS_SCORE: 85.0, BODY_TEMPERATURE: 39.2})

    assessment = assess(reading)

    assert [b.metric for b in assessment.breaches] == [BODY_TEMPERATURE, STRESS_SCORE]
    assert assessment.level == ThreatLevel.WARNING
    assert assessment.reasons[0].startswith("Body temperature")


def test_tie_break_ignores_config_insertion_order() -> None:
    base = build_config()
    reordered = base.model_copy(
        update={"bounds": dict(reversed(list(base.bounds.items())))}
    )
    reading = build_reading(**{STRESS_SCORE: 85.0, BODY_TEMPERATURE: 39.2})

    assert assess(reading, base).reasons == assess(reading, reordered).reasons


def test_location_rule_is_opt_in() -> None:
    reading = build_reading(**{LOCATION_AVAILABLE: 0.0})

    assert assess(reading).level == ThreatLevel.SAFE

    config = build_config(bounds={LOCATION_AVAILABLE: MetricBound(min=1.0)})
    assessment = assess(reading, config)
    assert assessment.level == ThreatLevel.CAUTION
    assert assessment.breaches[0].category == MetricClass.DEVICE_HEALTH


# ── Confidence ───────────────────────────────────────────────

def test_missing_required_sensor_lowers_confidence() -> None:
    complete = assess(build_reading(**{MOTION_MAGNITUDE: 18.2}))
    degraded = assess(build_reading(missing=(HEART_RATE,), **{MOTION_MAGNITUDE: 18.2}))

    assert degraded.confidence == pytest.approx(complete.confidence - 0.1)


def test_stale_required_sensor_lowers_confidence_less_than_missing() -> None:
    stale = assess(build_reading(stale=(BATTERY_LEVEL,)))
    missing = assess(build_reading(missing=(BATTERY_LEVEL,)))

    assert missing.confidence < stale.confidence < assess(build_reading()).confidence


def test_corroborating_breaches_raise_confidence() -> None:
    single = assess(build_reading(**{HEART_RATE: 130.0}))
    corroborated = assess(
        build_reading(**{HEART_RATE: 130.0, STRESS_SCORE: 80.0, BODY_TEMPERATURE: 39.0})
    )

    assert corroborated.confidence > single.confidence
    assert corroborated.confidence == pytest.approx(0.9)


@pytest.mark.parametrize(
    "overrides, missing",
    [
        ({}, (HEART_RATE, MOTION_MAGNITUDE, BATTERY_LEVEL)),
        ({MOTION_MAGNITUDE: 30.0, HEART_RATE: 150.0, STRESS_SCORE: 95.0}, ()),
        ({BATTERY_LEVEL: 1.0, AUDIO_LEVEL: 120.0}, (HEART_RATE, MOTION_MAGNITUDE)),
    ],
)
def test_confidence_stays_within_unit_interval(overrides, missing) -> None:
    assessment = assess(build_reading(missing=missing, **overrides))

    assert 0.0 <= assessment.confidence <= 1.0


# ── Degraded configuration ───────────────────────────────────

def test_malformed_bound_falls_back_to_vitals_and_motion() -> None:
    config = build_config(bounds={HEART_RATE: MetricBound(min=130.0, max=100.0)})

    motion = assess(build_reading(**{MOTION_MAGNITUDE: 18.2}), config)
    battery = assess(build_reading(**{BATTERY_LEVEL: 5.0}), config)

    assert motion.degraded is True
    assert motion.level == ThreatLevel.CRITICAL
    assert battery.degraded is True
    assert battery.level == ThreatLevel.SAFE


@pytest.mark.parametrize(
    "bound_key, bound",
    [
        ("barometer", MetricBound(max=1.0)),
        (HEART_RATE, MetricBound()),
        (HEART_RATE, MetricBound(max=math.inf)),
    ],
)
def test_invalid_bounds_never_raise(bound_key, bound) -> None:
    config = build_config(bounds={bound_key: bound})

    assessment = assess(build_reading(**{HEART_RATE: 44.0}), config)

    assert assessment.degraded is True
    assert assessment.level == ThreatLevel.WARNING


def test_non_finite_exercise_bound_degrades() -> None:
    config = build_config(exercise_heart_rate_max=math.nan)

    assessment = assess(build_reading(activity="running", **{HEART_RATE: 145.0}), config)

    assert assessment.degraded is True
    assert assessment.level == ThreatLevel.SAFE


# ── ThreatLevel display mapping ──────────────────────────────

def test_every_level_has_color_icon_and_rank() -> None:
    ranks = [level.rank for level in ThreatLevel]

    assert ranks == sorted(ranks)
    assert {level.color for level in ThreatLevel} == {"green", "yellow", "orange", "red"}
    assert all(level.icon for level in ThreatLevel)
