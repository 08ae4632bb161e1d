"""
tests/fixtures.py

Shared test data and helper functions for constructing engine inputs.
All tests must use these fixtures instead of hardcoding test values.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from engine.constants import (
    AIR_QUALITY,
    AUDIO_LEVEL,
    BATTERY_LEVEL,
    BODY_TEMPERATURE,
    HEART_RATE,
    LIGHT_LEVEL,
    LOCATION_AVAILABLE,
    MOTION_MAGNITUDE,
    SIGNAL_STRENGTH,
    STRESS_SCORE,
)
from engine.schemas import (
    Breach,
    Contact,
    EscalationTier,
    Incident,
    IncidentSource,
    MetricClass,
    RawReading,
    Reading,
    ThreatAssessment,
    ThreatLevel,
    ThresholdConfig,
    TransitionEvent,
    Urgency,
)

BASE_TIME: datetime = datetime(2024, 6, 15, 13, 30, 0, tzinfo=timezone.utc)
NIGHT_TIME: datetime = datetime(2024, 6, 15, 23, 15, 0, tzinfo=timezone.utc)

# Every sensor within its default bound
NORMAL_VALUES: dict[str, float] = {
    HEART_RATE: 75.0,
    BODY_TEMPERATURE: 36.8,
    STRESS_SCORE: 30.0,
    MOTION_MAGNITUDE: 9.8,
    AUDIO_LEVEL: 45.0,
    LIGHT_LEVEL: 60.0,
    AIR_QUALITY: 70.0,
    BATTERY_LEVEL: 80.0,
    SIGNAL_STRENGTH: 4.0,
    LOCATION_AVAILABLE: 1.0,
}


def at(seconds: float = 0.0, start: datetime = BASE_TIME) -> datetime:
    return start + timedelta(seconds=seconds)


def build_raw_reading(
    timestamp: Optional[datetime] = None,
    activity: Optional[str] = None,
    motion_vector: Optional[tuple[float, float, float]] = None,
    omit: tuple[str, ...] = (),
    **overrides: float,
) -> RawReading:
    """Build a RawReading with every sensor normal unless overridden or omitted."""
    samples = {
        metric: value
        for metric, value in {**NORMAL_VALUES, **overrides}.items()
        if metric not in omit
    }
    return RawReading(
        timestamp=timestamp or BASE_TIME,
        samples=samples,
        motion_vector=motion_vector,
        activity=activity,
    )


def build_reading(
    timestamp: Optional[datetime] = None,
    activity: Optional[str] = None,
    missing: tuple[str, ...] = (),
    stale: tuple[str, ...] = (),
    **overrides: float,
) -> Reading:
    """Build a normalized Reading directly, bypassing the normalizer."""
    values = {**NORMAL_VALUES, **overrides}
    return Reading(
        timestamp=timestamp or BASE_TIME,
        values=values,
        activity=activity,
        missing=missing,
        stale=stale,
    )


def build_config(**overrides) -> ThresholdConfig:
    """Default ThresholdConfig with knob overrides; bounds override per metric."""
    bounds = overrides.pop("bounds", None)
    config = ThresholdConfig(**overrides)
    if bounds:
        merged = dict(config.bounds)
        merged.update(bounds)
        config = config.model_copy(update={"bounds": merged})
    return config


def build_assessment(
    level: ThreatLevel = ThreatLevel.WARNING,
    confidence: float = 0.8,
    timestamp: Optional[datetime] = None,
    metric: str = HEART_RATE,
    category: MetricClass = MetricClass.VITALS,
) -> ThreatAssessment:
    """Build a ThreatAssessment with one breach (none when level is safe)."""
    breaches = []
    reasons = []
    if level != ThreatLevel.SAFE:
        reason = f"{metric} out of range"
        breaches.append(
            Breach(
                metric=metric,
                reason=reason,
                weight=3,
                level=level,
                category=category,
                direction="high",
            )
        )
        reasons.append(reason)
    return ThreatAssessment(
        timestamp=timestamp or BASE_TIME,
        level=level,
        confidence=confidence,
        reasons=reasons,
        recommendations=["Stay alert"],
        breaches=breaches,
    )


def build_incident(
    cause: str = HEART_RATE,
    timestamp: Optional[datetime] = None,
    source: IncidentSource = IncidentSource.ANOMALY,
    severity: ThreatLevel = ThreatLevel.WARNING,
    resolved: bool = False,
) -> Incident:
    return Incident(
        timestamp=timestamp or BASE_TIME,
        source=source,
        severity=severity,
        cause=cause,
        description=f"{cause} incident",
        resolved=resolved,
    )


def build_transition(
    urgency: Urgency = Urgency.HIGH,
    incident_id: Optional[str] = None,
) -> TransitionEvent:
    return TransitionEvent(
        occurred_at=BASE_TIME,
        from_tier=EscalationTier.MONITORING,
        to_tier=EscalationTier.CRITICAL,
        reason="critical assessment",
        urgency=urgency,
        incident_id=incident_id,
    )


def build_contacts() -> list[Contact]:
    return [
        Contact(name="Sam", phone="+15550002", relationship="friend", priority=2),
        Contact(name="Alex", phone="+15550001", relationship="sibling", priority=1),
    ]


class ManualClock:
    """Settable clock for engine tests."""

    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now
