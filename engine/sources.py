"""
engine/sources.py

Injected reading sources. The engine polls one source per evaluation cycle;
production and tests share the same interface.
- QueueReadingSource: fed by the gateway (or any producer) via submit()
- SimulatedReadingSource: seeded, deterministic demo data
"""

import asyncio
import random
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import structlog

from engine.constants import (
    AIR_QUALITY,
    AUDIO_LEVEL,
    BATTERY_LEVEL,
    BODY_TEMPERATURE,
    HEART_RATE,
    LIGHT_LEVEL,
    LOCATION_AVAILABLE,
    NIGHT_END_HOUR,
    NIGHT_START_HOUR,
    SIGNAL_STRENGTH,
    STRESS_SCORE,
)
from engine.schemas import RawReading, SensorSample

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadingSource(Protocol):
    async def poll(self) -> list[RawReading]:
        """Return every reading that arrived since the previous poll."""
        ...


class QueueReadingSource:
    """Bounded in-memory queue of raw readings."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[RawReading] = asyncio.Queue(maxsize=maxsize)

    def submit(self, reading: RawReading) -> bool:
        """Enqueue without blocking; returns False when the queue is full."""
        try:
            self._queue.put_nowait(reading)
        except asyncio.QueueFull:
            logger.warning("reading_queue_full", timestamp=str(reading.timestamp))
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    async def poll(self) -> list[RawReading]:
        readings: list[RawReading] = []
        while True:
            try:
                readings.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return readings


class SimulatedReadingSource:
    """
    Seeded demo data: resting vitals with occasional stress spikes, lower
    activity at night and a slowly draining battery.
    """

    def __init__(self, seed: int = 0, clock: Optional[Clock] = None) -> None:
        self._random = random.Random(seed)
        self._clock = clock or utcnow
        self._battery = 100.0

    async def poll(self) -> list[RawReading]:
        return [self.generate()]

    def generate(self) -> RawReading:
        rnd = self._random
        now = self._clock()
        night = now.hour >= NIGHT_START_HOUR or now.hour < NIGHT_END_HOUR

        stress_multiplier = 1.4 if rnd.random() > 0.9 else 1.0
        heart_rate = (72 + rnd.random() * 15) * stress_multiplier
        stress = 20 + rnd.random() * 30 + (30 if rnd.random() > 0.85 else 0)
        jitter = rnd.random() * (0.5 if night else 2.0)
        light = 5 + rnd.random() * 10 if night else 40 + rnd.random() * 50
        self._battery = max(0.0, self._battery - rnd.random() * 0.2)

        samples = {
            HEART_RATE: SensorSample(value=round(heart_rate, 1), recorded_at=now),
            BODY_TEMPERATURE: SensorSample(value=round(36.5 + rnd.random() * 0.6, 2)),
            STRESS_SCORE: SensorSample(value=round(stress, 1)),
            AUDIO_LEVEL: SensorSample(value=round(35 + rnd.random() * 25, 1)),
            LIGHT_LEVEL: SensorSample(value=round(light, 1)),
            AIR_QUALITY: SensorSample(value=round(55 + rnd.random() * 40, 1)),
            BATTERY_LEVEL: SensorSample(value=round(self._battery, 1)),
            SIGNAL_STRENGTH: SensorSample(value=float(rnd.randint(2, 5))),
            LOCATION_AVAILABLE: SensorSample(value=1.0),
        }
        return RawReading(
            timestamp=now,
            samples=samples,
            motion_vector=(
                rnd.gauss(0, jitter),
                rnd.gauss(0, jitter),
                9.81 + rnd.gauss(0, jitter),
            ),
            activity="resting" if night else "walking",
        )
