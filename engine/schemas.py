"""
engine/schemas.py

Pydantic data models for the threat engine.
- RawReading / SensorSample: heterogeneous sensor input before normalization
- Reading: complete, immutable record consumed by the evaluator
- ThresholdConfig: externally supplied bounds and engine knobs
- ThreatAssessment, Incident, EscalationState, TransitionEvent, PredictiveAlert:
  the engine's outputs
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from engine.constants import (
    CONFIDENCE_THRESHOLD,
    COOLDOWN_SEC,
    CRITICAL_COUNTDOWN_SEC,
    DEESCALATION_DWELL_CYCLES,
    DEFAULT_BOUNDS,
    EVALUATION_INTERVAL_SEC,
    EXERCISE_ACTIVITIES,
    EXERCISE_HEART_RATE_MAX,
    REQUIRED_SENSORS,
)


def _new_id() -> str:
    return uuid4().hex


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive device timestamps are taken to be UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Enumerations ─────────────────────────────────────────────

class ThreatLevel(str, Enum):
    """Closed set of safety classifications, ordered by severity."""

    SAFE = "safe"
    CAUTION = "caution"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @property
    def color(self) -> str:
        return _LEVEL_COLOR[self]

    @property
    def icon(self) -> str:
        return _LEVEL_ICON[self]


_LEVEL_RANK: dict[ThreatLevel, int] = {
    ThreatLevel.SAFE: 0,
    ThreatLevel.CAUTION: 1,
    ThreatLevel.WARNING: 2,
    ThreatLevel.CRITICAL: 3,
}

_LEVEL_COLOR: dict[ThreatLevel, str] = {
    ThreatLevel.SAFE: "green",
    ThreatLevel.CAUTION: "yellow",
    ThreatLevel.WARNING: "orange",
    ThreatLevel.CRITICAL: "red",
}

_LEVEL_ICON: dict[ThreatLevel, str] = {
    ThreatLevel.SAFE: "shield",
    ThreatLevel.CAUTION: "eye",
    ThreatLevel.WARNING: "alert-triangle",
    ThreatLevel.CRITICAL: "zap",
}


class MetricClass(str, Enum):
    """Breach categories; each carries a fixed severity weight."""

    MOTION_SPIKE = "motion_spike"
    VITALS = "vitals"
    ENVIRONMENTAL = "environmental"
    DEVICE_HEALTH = "device_health"


class EscalationTier(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    ELEVATED = "elevated"
    CRITICAL = "critical"
    AUTO_TRIGGERED = "auto_triggered"
    COOLING_DOWN = "cooling_down"


class IncidentSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    ANOMALY = "anomaly"


class Urgency(str, Enum):
    INFO = "info"
    LOW = "low"
    HIGH = "high"
    EMERGENCY = "emergency"


class PredictiveCategory(str, Enum):
    HEALTH = "health"
    SAFETY = "safety"
    ENVIRONMENTAL = "environmental"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ── Sensor input ─────────────────────────────────────────────

class SensorSample(BaseModel):
    """One raw sample; recorded_at is None when the device gave no time."""

    value: float
    recorded_at: Optional[datetime] = None

    @field_validator("recorded_at")
    @classmethod
    def _utc_recorded_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class RawReading(BaseModel):
    """Incoming sensor samples for one evaluation tick; any subset may be absent."""

    timestamp: datetime
    samples: dict[str, SensorSample] = Field(default_factory=dict)
    motion_vector: Optional[tuple[float, float, float]] = None
    activity: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("samples", mode="before")
    @classmethod
    def _wrap_bare_values(cls, value: Any) -> Any:
        """Accept {"heart_rate": 80} as shorthand for {"heart_rate": {"value": 80}}."""
        if not isinstance(value, dict):
            return value
        wrapped = {}
        for name, sample in value.items():
            if isinstance(sample, (int, float)):
                wrapped[name] = {"value": float(sample)}
            else:
                wrapped[name] = sample
        return wrapped


class Reading(BaseModel):
    """Normalized, complete reading. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    values: dict[str, float]
    activity: Optional[str] = None
    missing: tuple[str, ...] = ()  # filled from neutral defaults
    stale: tuple[str, ...] = ()  # carried forward from last-known value

    def value(self, metric: str) -> Optional[float]:
        return self.values.get(metric)


# ── Configuration ────────────────────────────────────────────

class MetricBound(BaseModel):
    """Inclusive acceptable range for one metric; either end may be open."""

    min: Optional[float] = None
    max: Optional[float] = None


def _default_bounds() -> dict[str, MetricBound]:
    return {
        metric: MetricBound(min=low, max=high)
        for metric, (low, high) in DEFAULT_BOUNDS.items()
    }


class ThresholdConfig(BaseModel):
    """
    Externally supplied thresholds and engine knobs.

    Bounds are not cross-validated here: a malformed bound is detected by the
    evaluator, which then falls back to its reduced rule set.
    """

    model_config = ConfigDict(frozen=True)

    bounds: dict[str, MetricBound] = Field(default_factory=_default_bounds)
    confidence_threshold: float = Field(default=CONFIDENCE_THRESHOLD, ge=0.0, le=1.0)
    auto_trigger_enabled: bool = True
    evaluation_interval_seconds: float = Field(default=EVALUATION_INTERVAL_SEC, gt=0)
    cooldown_seconds: float = Field(default=COOLDOWN_SEC, ge=0)
    deescalation_dwell_cycles: int = Field(default=DEESCALATION_DWELL_CYCLES, ge=1)
    critical_countdown_seconds: float = Field(default=CRITICAL_COUNTDOWN_SEC, gt=0)
    required_sensors: tuple[str, ...] = REQUIRED_SENSORS
    exercise_activities: tuple[str, ...] = EXERCISE_ACTIVITIES
    exercise_heart_rate_max: float = EXERCISE_HEART_RATE_MAX


# ── Assessment ───────────────────────────────────────────────

class Breach(BaseModel):
    """A single metric outside its configured bound."""

    model_config = ConfigDict(frozen=True)

    metric: str
    reason: str
    weight: int
    level: ThreatLevel
    category: MetricClass
    direction: str  # "high" | "low"


class ThreatAssessment(BaseModel):
    """Per-cycle classification. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    level: ThreatLevel
    confidence: float = Field(ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    breaches: list[Breach] = Field(default_factory=list)
    degraded: bool = False

    @property
    def primary_cause(self) -> Optional[str]:
        """Metric of the winning breach; breaches are stored winner-first."""
        return self.breaches[0].metric if self.breaches else None


# ── Incidents and escalation ─────────────────────────────────

class Incident(BaseModel):
    """Audit record; only resolved and action_taken change after creation."""

    id: str = Field(default_factory=_new_id)
    timestamp: datetime
    source: IncidentSource
    severity: ThreatLevel
    cause: str
    description: str
    reading: Optional[Reading] = None
    action_taken: Optional[str] = None
    resolved: bool = False


class EscalationState(BaseModel):
    """Live escalation state for one monitored subject."""

    tier: EscalationTier = EscalationTier.IDLE
    last_transition_at: Optional[datetime] = None
    last_level: Optional[ThreatLevel] = None
    safe_streak: int = 0
    cooldown_until: Optional[datetime] = None


class TransitionEvent(BaseModel):
    """Escalation decision handed to the notification dispatcher."""

    id: str = Field(default_factory=_new_id)
    occurred_at: datetime
    from_tier: EscalationTier
    to_tier: EscalationTier
    reason: str
    assessment: Optional[ThreatAssessment] = None
    urgency: Urgency = Urgency.INFO
    incident_id: Optional[str] = None


class PredictiveAlert(BaseModel):
    """Forward-looking advisory; never affects escalation state."""

    id: str = Field(default_factory=_new_id)
    generated_at: datetime
    category: PredictiveCategory
    prediction: str
    confidence: float = Field(ge=0.0, le=1.0)
    timeframe: str
    suggested_actions: list[str] = Field(default_factory=list)
    priority: AlertPriority = AlertPriority.MEDIUM


# ── Notification collaborator ────────────────────────────────

class Contact(BaseModel):
    """Emergency contact; priority 1 is notified first."""

    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    relationship: Optional[str] = None
    priority: int = 1


class DispatchReceipt(BaseModel):
    """Acknowledgment returned by a dispatcher."""

    event_id: str
    delivered: bool
    contacts_notified: int = 0
    attempts: int = 1
    detail: str = ""
