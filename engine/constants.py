"""
engine/constants.py

Threshold, weighting and heuristic constants used by the threat engine.
All numeric values in business logic must be referenced from this module.
"""

# ── Metric names ─────────────────────────────────────────────
HEART_RATE: str = "heart_rate"
BODY_TEMPERATURE: str = "body_temperature"
STRESS_SCORE: str = "stress_score"
MOTION_MAGNITUDE: str = "motion_magnitude"
AUDIO_LEVEL: str = "audio_level"
LIGHT_LEVEL: str = "light_level"
AIR_QUALITY: str = "air_quality"
BATTERY_LEVEL: str = "battery_level"
SIGNAL_STRENGTH: str = "signal_strength"
LOCATION_AVAILABLE: str = "location_available"

ALL_METRICS: tuple[str, ...] = (
    HEART_RATE,
    BODY_TEMPERATURE,
    STRESS_SCORE,
    MOTION_MAGNITUDE,
    AUDIO_LEVEL,
    LIGHT_LEVEL,
    AIR_QUALITY,
    BATTERY_LEVEL,
    SIGNAL_STRENGTH,
    LOCATION_AVAILABLE,
)

# ── Neutral defaults for absent sensors ──────────────────────
# Motion defaults to the resting baseline (gravity only); air quality
# defaults to the middle of the 0-100 scale, not to "good".
NEUTRAL_DEFAULTS: dict[str, float] = {
    HEART_RATE: 72.0,
    BODY_TEMPERATURE: 36.8,
    STRESS_SCORE: 30.0,
    MOTION_MAGNITUDE: 9.8,
    AUDIO_LEVEL: 45.0,
    LIGHT_LEVEL: 65.0,
    AIR_QUALITY: 50.0,
    BATTERY_LEVEL: 50.0,
    SIGNAL_STRENGTH: 3.0,
    LOCATION_AVAILABLE: 0.0,
}

# Samples older than this are carried forward instead of trusted as fresh
SAMPLE_STALE_AFTER_SEC: float = 60.0

# Last-known values older than this are dropped in favour of the neutral default
CARRY_FORWARD_MAX_SEC: float = 180.0

# Transient sensors are never carried forward; a spike describes one instant
TRANSIENT_SENSORS: tuple[str, ...] = (MOTION_MAGNITUDE,)

# ── Default threshold bounds (min, max) ──────────────────────
DEFAULT_BOUNDS: dict[str, tuple[float | None, float | None]] = {
    HEART_RATE: (50.0, 120.0),
    BODY_TEMPERATURE: (35.0, 38.5),
    STRESS_SCORE: (None, 70.0),
    MOTION_MAGNITUDE: (None, 15.0),
    AUDIO_LEVEL: (None, 80.0),
    LIGHT_LEVEL: (10.0, None),
    AIR_QUALITY: (30.0, None),
    BATTERY_LEVEL: (20.0, None),
    SIGNAL_STRENGTH: (1.0, None),
}

# Reduced rule set used when the configured thresholds are malformed
FALLBACK_BOUNDS: dict[str, tuple[float | None, float | None]] = {
    HEART_RATE: (50.0, 120.0),
    BODY_TEMPERATURE: (35.0, 38.5),
    MOTION_MAGNITUDE: (None, 15.0),
}

# ── Engine knobs ─────────────────────────────────────────────
CONFIDENCE_THRESHOLD: float = 0.85
EVALUATION_INTERVAL_SEC: float = 10.0
COOLDOWN_SEC: float = 300.0
DEESCALATION_DWELL_CYCLES: int = 3
CRITICAL_COUNTDOWN_SEC: float = 180.0
REQUIRED_SENSORS: tuple[str, ...] = (HEART_RATE, MOTION_MAGNITUDE, BATTERY_LEVEL)
EXERCISE_ACTIVITIES: tuple[str, ...] = (
    "running",
    "cycling",
    "exercise",
    "workout",
    "hiking",
)
EXERCISE_HEART_RATE_MAX: float = 160.0

# ── Severity weights per metric class ────────────────────────
# motion-spike > vitals > environmental > device-health
WEIGHT_MOTION_SPIKE: int = 4
WEIGHT_VITALS: int = 3
WEIGHT_ENVIRONMENTAL: int = 2
WEIGHT_DEVICE_HEALTH: int = 1

# ── Confidence model ─────────────────────────────────────────
CONFIDENCE_BASE_MOTION: float = 0.9
CONFIDENCE_BASE_GENERIC: float = 0.8
MISSING_SENSOR_PENALTY: float = 0.1
STALE_SENSOR_PENALTY: float = 0.05
CORROBORATION_BONUS: float = 0.05
CORROBORATION_BONUS_CAP: float = 0.1

# ── Incident log ─────────────────────────────────────────────
INCIDENT_LOG_CAPACITY: int = 50

# ── Pattern analyzer ─────────────────────────────────────────
NIGHT_START_HOUR: int = 22
NIGHT_END_HOUR: int = 6
RESTING_MOTION_BAND: float = 11.0  # m/s², gravity plus everyday movement
MIN_READINGS_FOR_TREND: int = 3
HEART_RATE_TREND_SLOPE: float = 1.0  # bpm per minute
SUSTAINED_STRESS_MEAN: float = 70.0
BATTERY_PROJECTION_MIN: float = 60.0
DATA_GAP_ALERT_MIN: float = 15.0
RECURRING_INCIDENT_COUNT: int = 3
PATTERN_INCIDENT_LOOKBACK: int = 20

# Confidence attached to each predictive rule
PATTERN_CONFIDENCE_LATE_NIGHT: float = 0.7
PATTERN_CONFIDENCE_HEART_RATE_TREND: float = 0.65
PATTERN_CONFIDENCE_STRESS: float = 0.75
PATTERN_CONFIDENCE_BATTERY: float = 0.85
PATTERN_CONFIDENCE_DATA_GAP: float = 0.9
PATTERN_CONFIDENCE_RECURRING: float = 0.8
PATTERN_CONFIDENCE_ENVIRONMENT: float = 0.6
