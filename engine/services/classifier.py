"""
engine/services/classifier.py

Combines evaluator breaches into a single ThreatAssessment.

Level selection is highest-weight-wins, not accumulation: the first breach
in evaluator order decides the level. Confidence starts from a base tied to
the winning breach, loses a fixed penalty per missing or stale required
sensor, and gains a small bonus when independent metrics breach in the same
direction. Level and reasons are final before recommendations are derived.
"""

from engine.constants import (
    BATTERY_LEVEL,
    CONFIDENCE_BASE_GENERIC,
    CONFIDENCE_BASE_MOTION,
    CORROBORATION_BONUS,
    CORROBORATION_BONUS_CAP,
    LOCATION_AVAILABLE,
    MISSING_SENSOR_PENALTY,
    SIGNAL_STRENGTH,
    STALE_SENSOR_PENALTY,
)
from engine.schemas import (
    Breach,
    MetricClass,
    Reading,
    ThreatAssessment,
    ThreatLevel,
    ThresholdConfig,
)
from engine.services.evaluator import Evaluation

LEVEL_RECOMMENDATIONS: dict[ThreatLevel, tuple[str, ...]] = {
    ThreatLevel.SAFE: ("Continue normal activities",),
    ThreatLevel.CAUTION: ("Stay alert and keep monitoring conditions",),
    ThreatLevel.WARNING: (
        "Check in with a trusted contact",
        "Pause current activity until readings settle",
    ),
    ThreatLevel.CRITICAL: (
        "Consider activating emergency alert",
        "Move to a safe location if possible",
    ),
}

CATEGORY_RECOMMENDATIONS: dict[MetricClass, str] = {
    MetricClass.MOTION_SPIKE: "Assess for fall or impact injury",
    MetricClass.VITALS: "Try slow breathing and seek medical attention if symptoms persist",
    MetricClass.ENVIRONMENTAL: "Move to a well-lit, quieter area with fresh air",
    MetricClass.DEVICE_HEALTH: "Restore device power or connectivity",
}

METRIC_RECOMMENDATIONS: dict[str, str] = {
    BATTERY_LEVEL: "Charge the device: emergency-response capability may be impaired",
    SIGNAL_STRENGTH: "Move to an area with better signal: capability may be impaired",
    LOCATION_AVAILABLE: "Enable location services so responders can find you",
}


class ThreatClassifier:
    """Turns an Evaluation into an immutable ThreatAssessment."""

    def classify(
        self,
        reading: Reading,
        evaluation: Evaluation,
        config: ThresholdConfig,
    ) -> ThreatAssessment:
        breaches = evaluation.breaches
        level = breaches[0].level if breaches else ThreatLevel.SAFE
        reasons = [breach.reason for breach in breaches]
        confidence = self._confidence(reading, breaches, config)
        recommendations = self._recommendations(level, breaches)

        return ThreatAssessment(
            timestamp=reading.timestamp,
            level=level,
            confidence=confidence,
            reasons=reasons,
            recommendations=recommendations,
            breaches=list(breaches),
            degraded=evaluation.degraded,
        )

    @staticmethod
    def _confidence(
        reading: Reading,
        breaches: list[Breach],
        config: ThresholdConfig,
    ) -> float:
        winner = breaches[0] if breaches else None
        if winner is not None and winner.category == MetricClass.MOTION_SPIKE:
            confidence = CONFIDENCE_BASE_MOTION
        else:
            confidence = CONFIDENCE_BASE_GENERIC

        for sensor in config.required_sensors:
            if sensor in reading.missing:
                confidence -= MISSING_SENSOR_PENALTY
            elif sensor in reading.stale:
                confidence -= STALE_SENSOR_PENALTY

        if winner is not None:
            agreeing = sum(1 for b in breaches if b.direction == winner.direction)
            confidence += min(
                CORROBORATION_BONUS_CAP,
                CORROBORATION_BONUS * (agreeing - 1),
            )

        return round(min(1.0, max(0.0, confidence)), 4)

    @staticmethod
    def _recommendations(level: ThreatLevel, breaches: list[Breach]) -> list[str]:
        recommendations = list(LEVEL_RECOMMENDATIONS[level])
        for breach in breaches:
            text = METRIC_RECOMMENDATIONS.get(
                breach.metric, CATEGORY_RECOMMENDATIONS[breach.category]
            )
            if text not in recommendations:
                recommendations.append(text)
        return recommendations
