"""
engine/services/normalizer.py

Converts heterogeneous raw sensor samples into a complete Reading.
Absent sensors are filled from the last-known value while it is younger
than the carry-forward limit, then from the neutral defaults in
engine/constants.py. Transient sensors (motion) always fall back to the
neutral default. Normalization never raises; gaps are reported on the
Reading so the classifier can lower its confidence.
"""

import math
from datetime import datetime
from typing import Optional

import structlog

from engine.constants import (
    ALL_METRICS,
    CARRY_FORWARD_MAX_SEC,
    LOCATION_AVAILABLE,
    MOTION_MAGNITUDE,
    NEUTRAL_DEFAULTS,
    SAMPLE_STALE_AFTER_SEC,
    TRANSIENT_SENSORS,
)
from engine.schemas import RawReading, Reading, SensorSample

logger = structlog.get_logger(__name__)

# (value, observed_at, arrived_in_this_reading)
_Observation = tuple[float, datetime, bool]


class ReadingNormalizer:
    """Stateful normalizer; remembers the newest observation per sensor."""

    def __init__(
        self,
        stale_after_seconds: float = SAMPLE_STALE_AFTER_SEC,
        carry_forward_seconds: float = CARRY_FORWARD_MAX_SEC,
    ) -> None:
        self._stale_after = stale_after_seconds
        self._carry_forward = carry_forward_seconds
        self._last_known: dict[str, tuple[float, datetime]] = {}

    def normalize(self, raw: RawReading) -> Reading:
        values: dict[str, float] = {}
        missing: list[str] = []
        stale: list[str] = []

        samples = dict(raw.samples)
        if raw.motion_vector is not None and MOTION_MAGNITUDE not in samples:
            samples[MOTION_MAGNITUDE] = SensorSample(
                value=math.hypot(*raw.motion_vector),
                recorded_at=raw.timestamp,
            )

        location = samples.get(LOCATION_AVAILABLE)
        if location is not None:
            samples[LOCATION_AVAILABLE] = location.model_copy(
                update={"value": 1.0 if location.value else 0.0}
            )

        for metric in ALL_METRICS:
            observation = self._observe(metric, samples.get(metric), raw.timestamp)
            if observation is None:
                values[metric] = NEUTRAL_DEFAULTS[metric]
                missing.append(metric)
                continue
            value, observed_at, incoming = observation
            age = (raw.timestamp - observed_at).total_seconds()
            if incoming and age <= self._stale_after:
                values[metric] = value
            elif metric in TRANSIENT_SENSORS or age > self._carry_forward:
                values[metric] = NEUTRAL_DEFAULTS[metric]
                missing.append(metric)
            else:
                values[metric] = value
                stale.append(metric)

        unknown = sorted(set(samples) - set(ALL_METRICS))
        if unknown:
            logger.warning("unknown_sensors_ignored", sensors=unknown)

        if missing or stale:
            logger.info(
                "reading_gaps_filled",
                timestamp=str(raw.timestamp),
                missing=missing,
                stale=stale,
            )

        return Reading(
            timestamp=raw.timestamp,
            values=values,
            activity=raw.activity.strip().lower() if raw.activity else None,
            missing=tuple(missing),
            stale=tuple(stale),
        )

    def reset(self) -> None:
        self._last_known.clear()

    def _observe(
        self,
        metric: str,
        sample: Optional[SensorSample],
        reference: datetime,
    ) -> Optional[_Observation]:
        """Newest usable observation: the incoming sample or the remembered one."""
        previous = self._last_known.get(metric)
        if sample is None or not math.isfinite(sample.value):
            return None if previous is None else (*previous, False)
        observed_at = sample.recorded_at or reference
        if previous is not None and previous[1] > observed_at:
            return (*previous, False)
        self._last_known[metric] = (sample.value, observed_at)
        return sample.value, observed_at, True
