"""
engine/services/evaluator.py

Threshold evaluation: compares a Reading against a ThresholdConfig and
produces one Breach per metric outside its bound.

Breaches are ordered by severity weight descending; equal weights are
ordered by metric name so the winner never depends on dict iteration order.

If the configured bounds are malformed the evaluator logs a warning and
evaluates the reduced vitals-and-motion rule set from engine/constants.py.
"""

import math
from dataclasses import dataclass, field

import structlog

from engine.constants import (
    AIR_QUALITY,
    ALL_METRICS,
    AUDIO_LEVEL,
    BATTERY_LEVEL,
    BODY_TEMPERATURE,
    EXERCISE_ACTIVITIES,
    EXERCISE_HEART_RATE_MAX,
    FALLBACK_BOUNDS,
    HEART_RATE,
    LIGHT_LEVEL,
    LOCATION_AVAILABLE,
    MOTION_MAGNITUDE,
    SIGNAL_STRENGTH,
    STRESS_SCORE,
    WEIGHT_DEVICE_HEALTH,
    WEIGHT_ENVIRONMENTAL,
    WEIGHT_MOTION_SPIKE,
    WEIGHT_VITALS,
)
from engine.errors import ConfigurationError
from engine.schemas import (
    Breach,
    MetricBound,
    MetricClass,
    Reading,
    ThreatLevel,
    ThresholdConfig,
)

logger = structlog.get_logger(__name__)

_METRIC_CLASS: dict[str, MetricClass] = {
    MOTION_MAGNITUDE: MetricClass.MOTION_SPIKE,
    HEART_RATE: MetricClass.VITALS,
    BODY_TEMPERATURE: MetricClass.VITALS,
    STRESS_SCORE: MetricClass.VITALS,
    AUDIO_LEVEL: MetricClass.ENVIRONMENTAL,
    LIGHT_LEVEL: MetricClass.ENVIRONMENTAL,
    AIR_QUALITY: MetricClass.ENVIRONMENTAL,
    BATTERY_LEVEL: MetricClass.DEVICE_HEALTH,
    SIGNAL_STRENGTH: MetricClass.DEVICE_HEALTH,
    LOCATION_AVAILABLE: MetricClass.DEVICE_HEALTH,
}

CLASS_WEIGHT: dict[MetricClass, int] = {
    MetricClass.MOTION_SPIKE: WEIGHT_MOTION_SPIKE,
    MetricClass.VITALS: WEIGHT_VITALS,
    MetricClass.ENVIRONMENTAL: WEIGHT_ENVIRONMENTAL,
    MetricClass.DEVICE_HEALTH: WEIGHT_DEVICE_HEALTH,
}

# Level per (metric, direction); anything not listed uses the class default
_LEVEL_RULES: dict[tuple[str, str], ThreatLevel] = {
    (MOTION_MAGNITUDE, "high"): ThreatLevel.CRITICAL,
    (MOTION_MAGNITUDE, "low"): ThreatLevel.CAUTION,
    (HEART_RATE, "high"): ThreatLevel.CAUTION,
    (HEART_RATE, "low"): ThreatLevel.WARNING,
    (STRESS_SCORE, "high"): ThreatLevel.CAUTION,
}

_CLASS_DEFAULT_LEVEL: dict[MetricClass, ThreatLevel] = {
    MetricClass.MOTION_SPIKE: ThreatLevel.CRITICAL,
    MetricClass.VITALS: ThreatLevel.WARNING,
    MetricClass.ENVIRONMENTAL: ThreatLevel.CAUTION,
    MetricClass.DEVICE_HEALTH: ThreatLevel.CAUTION,
}

_REASONS: dict[tuple[str, str], str] = {
    (MOTION_MAGNITUDE, "high"): (
        "Sudden motion {value:.1f} m/s² above {bound:g}: possible fall or impact"
    ),
    (MOTION_MAGNITUDE, "low"): "Motion {value:.1f} m/s² below {bound:g}: prolonged stillness",
    (HEART_RATE, "high"): "Elevated heart rate {value:.0f} bpm above {bound:g}",
    (HEART_RATE, "low"): "Heart rate {value:.0f} bpm below normal range ({bound:g})",
    (BODY_TEMPERATURE, "high"): "Body temperature {value:.1f} °C above {bound:g}",
    (BODY_TEMPERATURE, "low"): "Body temperature {value:.1f} °C below {bound:g}",
    (STRESS_SCORE, "high"): "Stress score {value:.0f} above {bound:g}",
    (AUDIO_LEVEL, "high"): "Loud noise detected: {value:.0f} dB above {bound:g}",
    (LIGHT_LEVEL, "low"): "Very low light conditions: {value:.0f}% below {bound:g}",
    (AIR_QUALITY, "low"): "Poor air quality: index {value:.0f} below {bound:g}",
    (BATTERY_LEVEL, "low"): (
        "Battery at {value:.0f}% below {bound:g}%: reduced emergency-response capability"
    ),
    (SIGNAL_STRENGTH, "low"): (
        "Signal strength {value:.0f} below {bound:g}: emergency calls may not connect"
    ),
    (LOCATION_AVAILABLE, "low"): "Location unavailable: responders may not find the subject",
}


@dataclass(frozen=True)
class Evaluation:
    """Evaluator output: breaches ordered winner-first."""

    breaches: list[Breach] = field(default_factory=list)
    degraded: bool = False


def metric_class(metric: str) -> MetricClass:
    return _METRIC_CLASS[metric]


class ThresholdEvaluator:
    """Stateless comparison of a Reading against configured bounds."""

    def evaluate(self, reading: Reading, config: ThresholdConfig) -> Evaluation:
        try:
            bounds = self._validated_bounds(config)
            exercise_max = self._validated_exercise_max(config)
            breaches = self._collect(
                reading, bounds, config.exercise_activities, exercise_max
            )
            return Evaluation(breaches=breaches, degraded=False)
        except ConfigurationError as exc:
            logger.warning(
                "threshold_config_invalid",
                error=str(exc),
                fallback="vitals_and_motion",
            )
        except Exception as exc:
            logger.error(
                "threshold_evaluation_failed",
                error=str(exc),
                fallback="vitals_and_motion",
            )

        fallback = {
            metric: MetricBound(min=low, max=high)
            for metric, (low, high) in FALLBACK_BOUNDS.items()
        }
        breaches = self._collect(
            reading, fallback, EXERCISE_ACTIVITIES, EXERCISE_HEART_RATE_MAX
        )
        return Evaluation(breaches=breaches, degraded=True)

    @staticmethod
    def _validated_bounds(config: ThresholdConfig) -> dict[str, MetricBound]:
        for metric, bound in config.bounds.items():
            if metric not in ALL_METRICS:
                raise ConfigurationError(f"unknown metric {metric!r}")
            if bound.min is None and bound.max is None:
                raise ConfigurationError(f"{metric}: bound has neither min nor max")
            for edge in (bound.min, bound.max):
                if edge is not None and not math.isfinite(edge):
                    raise ConfigurationError(f"{metric}: non-finite bound {edge}")
            if bound.min is not None and bound.max is not None and bound.min > bound.max:
                raise ConfigurationError(
                    f"{metric}: min {bound.min} greater than max {bound.max}"
                )
        return dict(config.bounds)

    @staticmethod
    def _validated_exercise_max(config: ThresholdConfig) -> float:
        if not math.isfinite(config.exercise_heart_rate_max):
            raise ConfigurationError("exercise_heart_rate_max must be finite")
        return config.exercise_heart_rate_max

    def _collect(
        self,
        reading: Reading,
        bounds: dict[str, MetricBound],
        exercise_activities: tuple[str, ...],
        exercise_max: float,
    ) -> list[Breach]:
        exercising = reading.activity is not None and reading.activity in exercise_activities
        breaches: list[Breach] = []

        for metric, bound in bounds.items():
            value = reading.value(metric)
            if value is None:
                continue

            upper = bound.max
            if metric == HEART_RATE and exercising and upper is not None:
                upper = max(upper, exercise_max)

            if bound.min is not None and value < bound.min:
                breaches.append(self._breach(metric, "low", value, bound.min, reading))
            elif upper is not None and value > upper:
                breaches.append(self._breach(metric, "high", value, upper, reading))

        breaches.sort(key=lambda b: (-b.weight, b.metric))
        return breaches

    @staticmethod
    def _breach(
        metric: str,
        direction: str,
        value: float,
        bound: float,
        reading: Reading,
    ) -> Breach:
        category = _METRIC_CLASS[metric]
        level = _LEVEL_RULES.get((metric, direction), _CLASS_DEFAULT_LEVEL[category])
        template = _REASONS.get(
            (metric, direction),
            "{metric} {value:g} outside bound {bound:g}",
        )
        reason = template.format(metric=metric, value=value, bound=bound)
        if metric == HEART_RATE and reading.activity:
            reason = f"{reason} during {reading.activity}"
        return Breach(
            metric=metric,
            reason=reason,
            weight=CLASS_WEIGHT[category],
            level=level,
            category=category,
            direction=direction,
        )
