"""
engine/services/patterns.py

Predictive pattern analysis over recent reading history.
- Each rule inspects the rolling window and emits at most one PredictiveAlert
- Trend rules need at least MIN_READINGS_FOR_TREND readings
- Purely advisory: the analyzer never touches escalation state or incidents

Uses constants from engine/constants.py; no magic numbers allowed.
"""

import collections
from datetime import datetime, timedelta
from typing import Optional, Sequence

import numpy as np
import structlog

from engine.constants import (
    AIR_QUALITY,
    BATTERY_LEVEL,
    BATTERY_PROJECTION_MIN,
    DATA_GAP_ALERT_MIN,
    DEFAULT_BOUNDS,
    HEART_RATE,
    HEART_RATE_TREND_SLOPE,
    LIGHT_LEVEL,
    MIN_READINGS_FOR_TREND,
    MOTION_MAGNITUDE,
    NIGHT_END_HOUR,
    NIGHT_START_HOUR,
    PATTERN_CONFIDENCE_BATTERY,
    PATTERN_CONFIDENCE_DATA_GAP,
    PATTERN_CONFIDENCE_ENVIRONMENT,
    PATTERN_CONFIDENCE_HEART_RATE_TREND,
    PATTERN_CONFIDENCE_LATE_NIGHT,
    PATTERN_CONFIDENCE_RECURRING,
    PATTERN_CONFIDENCE_STRESS,
    PATTERN_INCIDENT_LOOKBACK,
    RECURRING_INCIDENT_COUNT,
    RESTING_MOTION_BAND,
    STRESS_SCORE,
    SUSTAINED_STRESS_MEAN,
)
from engine.schemas import (
    AlertPriority,
    Incident,
    PredictiveAlert,
    PredictiveCategory,
    Reading,
    ThresholdConfig,
)

logger = structlog.get_logger(__name__)


def is_night(moment: datetime) -> bool:
    return moment.hour >= NIGHT_START_HOUR or moment.hour < NIGHT_END_HOUR


def _series(readings: Sequence[Reading], metric: str) -> tuple[list[float], list[float]]:
    """(minutes since first reading, value) pairs, skipping defaulted gaps."""
    if not readings:
        return [], []
    start = readings[0].timestamp
    minutes: list[float] = []
    values: list[float] = []
    for reading in readings:
        if metric in reading.missing:
            continue
        value = reading.value(metric)
        if value is None:
            continue
        minutes.append((reading.timestamp - start).total_seconds() / 60.0)
        values.append(value)
    return minutes, values


def _slope(minutes: list[float], values: list[float]) -> Optional[float]:
    """Least-squares slope per minute, or None when the window is too short."""
    if len(values) < MIN_READINGS_FOR_TREND or minutes[-1] - minutes[0] <= 0:
        return None
    return float(np.polyfit(minutes, values, 1)[0])


def _lower_bound(config: ThresholdConfig, metric: str) -> Optional[float]:
    bound = config.bounds.get(metric)
    if bound is not None and bound.min is not None:
        return bound.min
    return DEFAULT_BOUNDS[metric][0]


class PatternAnalyzer:
    """Applies a fixed set of heuristic rules to recent history."""

    def analyze(
        self,
        readings: Sequence[Reading],
        incidents: Sequence[Incident],
        now: datetime,
        config: ThresholdConfig,
    ) -> list[PredictiveAlert]:
        readings = sorted(readings, key=lambda r: r.timestamp)
        candidates = [
            self._late_night_activity(readings, now, config),
            self._heart_rate_trend(readings, now),
            self._sustained_stress(readings, now),
            self._battery_depletion(readings, now, config),
            self._data_gap(readings, now),
            self._recurring_incidents(incidents, now),
            self._poor_environment(readings, now, config),
        ]
        alerts = [alert for alert in candidates if alert is not None]

        logger.info(
            "pattern_analysis_completed",
            readings=len(readings),
            incidents=len(incidents),
            alerts=[alert.prediction for alert in alerts],
        )
        return alerts

    # ── Health rules ─────────────────────────────────────────

    def _late_night_activity(
        self,
        readings: Sequence[Reading],
        now: datetime,
        config: ThresholdConfig,
    ) -> Optional[PredictiveAlert]:
        if len(readings) < MIN_READINGS_FOR_TREND or not is_night(now):
            return None

        night = [r for r in readings if is_night(r.timestamp)]
        if not night:
            return None

        _, motion = _series(night, MOTION_MAGNITUDE)
        mean_motion = float(np.mean(motion)) if motion else 0.0
        exercising = any(
            r.activity is not None and r.activity in config.exercise_activities
            for r in night
        )
        if mean_motion <= RESTING_MOTION_BAND and not exercising:
            return None

        return PredictiveAlert(
            generated_at=now,
            category=PredictiveCategory.HEALTH,
            prediction="High activity late at night: sleep disruption likely",
            confidence=PATTERN_CONFIDENCE_LATE_NIGHT,
            timeframe="tonight",
            suggested_actions=[
                "Wind down with a relaxing routine",
                "Avoid screens and strenuous activity before bed",
            ],
            priority=AlertPriority.MEDIUM,
        )

    def _heart_rate_trend(
        self,
        readings: Sequence[Reading],
        now: datetime,
    ) -> Optional[PredictiveAlert]:
        minutes, values = _series(readings, HEART_RATE)
        slope = _slope(minutes, values)
        if slope is None or slope <= HEART_RATE_TREND_SLOPE:
            return None

        return PredictiveAlert(
            generated_at=now,
            category=PredictiveCategory.HEALTH,
            prediction=f"Heart rate rising steadily ({slope:.1f} bpm/min)",
            confidence=PATTERN_CONFIDENCE_HEART_RATE_TREND,
            timeframe="next 30 minutes",
            suggested_actions=[
                "Pause and rest for a few minutes",
                "Hydrate and check how you feel",
            ],
            priority=AlertPriority.MEDIUM,
        )

    def _sustained_stress(
        self,
        readings: Sequence[Reading],
        now: datetime,
    ) -> Optional[PredictiveAlert]:
        _, values = _series(readings, STRESS_SCORE)
        if len(values) < MIN_READINGS_FOR_TREND:
            return None
        mean_stress = float(np.mean(values))
        if mean_stress <= SUSTAINED_STRESS_MEAN:
            return None

        return PredictiveAlert(
            generated_at=now,
            category=PredictiveCategory.HEALTH,
            prediction=f"Sustained stress (average {mean_stress:.0f}): burnout risk rising",
            confidence=PATTERN_CONFIDENCE_STRESS,
            timeframe="next few hours",
            suggested_actions=[
                "Take a short break",
                "Try a breathing exercise",
                "Reach out to someone you trust",
            ],
            priority=AlertPriority.HIGH,
        )

    # ── Safety rules ─────────────────────────────────────────

    def _battery_depletion(
        self,
        readings: Sequence[Reading],
        now: datetime,
        config: ThresholdConfig,
    ) -> Optional[PredictiveAlert]:
        minutes, values = _series(readings, BATTERY_LEVEL)
        slope = _slope(minutes, values)
        floor = _lower_bound(config, BATTERY_LEVEL)
        if slope is None or slope >= 0 or floor is None:
            return None

        latest = values[-1]
        if latest <= floor:
            return None
        minutes_left = (latest - floor) / -slope
        if minutes_left > BATTERY_PROJECTION_MIN:
            return None

        return PredictiveAlert(
            generated_at=now,
            category=PredictiveCategory.SAFETY,
            prediction=(
                f"Battery projected to drop below {floor:g}% "
                f"in about {minutes_left:.0f} minutes"
            ),
            confidence=PATTERN_CONFIDENCE_BATTERY,
            timeframe="next hour",
            suggested_actions=[
                "Charge the device soon",
                "Enable battery saver mode",
            ],
            priority=AlertPriority.HIGH,
        )

    def _data_gap(
        self,
        readings: Sequence[Reading],
        now: datetime,
    ) -> Optional[PredictiveAlert]:
        if not readings:
            return None
        gap = now - readings[-1].timestamp
        if gap <= timedelta(minutes=DATA_GAP_ALERT_MIN):
            return None

        return PredictiveAlert(
            generated_at=now,
            category=PredictiveCategory.SAFETY,
            prediction=(
                f"No sensor data for {gap.total_seconds() / 60.0:.0f} minutes: "
                "monitoring is blind"
            ),
            confidence=PATTERN_CONFIDENCE_DATA_GAP,
            timeframe="now",
            suggested_actions=[
                "Check that the wearable is worn and connected",
                "Restart the companion app",
            ],
            priority=AlertPriority.HIGH,
        )

    def _recurring_incidents(
        self,
        incidents: Sequence[Incident],
        now: datetime,
    ) -> Optional[PredictiveAlert]:
        recent = list(incidents)[-PATTERN_INCIDENT_LOOKBACK:]
        counts = collections.Counter(incident.cause for incident in recent)
        if not counts:
            return None
        cause, count = counts.most_common(1)[0]
        if count < RECURRING_INCIDENT_COUNT:
            return None

        return PredictiveAlert(
            generated_at=now,
            category=PredictiveCategory.SAFETY,
            prediction=f"Recurring incidents for {cause} ({count} recently)",
            confidence=PATTERN_CONFIDENCE_RECURRING,
            timeframe="ongoing",
            suggested_actions=[
                "Review recent incidents with a trusted contact",
                "Consider adjusting routines that precede these events",
            ],
            priority=AlertPriority.HIGH,
        )

    # ── Environmental rules ──────────────────────────────────

    def _poor_environment(
        self,
        readings: Sequence[Reading],
        now: datetime,
        config: ThresholdConfig,
    ) -> Optional[PredictiveAlert]:
        if len(readings) < MIN_READINGS_FOR_TREND:
            return None

        findings: list[str] = []
        _, air = _series(readings, AIR_QUALITY)
        air_floor = _lower_bound(config, AIR_QUALITY)
        if air and air_floor is not None and float(np.mean(air)) < air_floor:
            findings.append(f"air quality averaging {float(np.mean(air)):.0f}")

        light_floor = _lower_bound(config, LIGHT_LEVEL)
        latest = readings[-1]
        light = latest.value(LIGHT_LEVEL)
        if (
            is_night(now)
            and LIGHT_LEVEL not in latest.missing
            and light is not None
            and light_floor is not None
            and light < light_floor
        ):
            findings.append("dark surroundings at night")

        if not findings:
            return None

        return PredictiveAlert(
            generated_at=now,
            category=PredictiveCategory.ENVIRONMENTAL,
            prediction="Poor surroundings: " + ", ".join(findings),
            confidence=PATTERN_CONFIDENCE_ENVIRONMENT,
            timeframe="next hour",
            suggested_actions=[
                "Move to a well-lit, ventilated area",
                "Share your location with a trusted contact",
            ],
            priority=AlertPriority.LOW,
        )
