"""
gateway/routers/readings.py

Sensor ingestion and assessment read-out.
POST /readings enqueues a RawReading for the next evaluation cycle.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from engine.monitor import GuardianEngine
from engine.schemas import PredictiveAlert, RawReading, ThreatAssessment
from engine.sources import QueueReadingSource
from gateway.dependencies import get_engine
from gateway.schemas import ReadingAccepted

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/readings",
    response_model=ReadingAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_reading(
    reading: RawReading,
    engine: GuardianEngine = Depends(get_engine),
) -> ReadingAccepted:
    """Queue a raw reading; it is assessed on the next evaluation cycle."""
    source = engine.source
    if not isinstance(source, QueueReadingSource):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="engine is running on a simulated sensor source",
        )
    if not source.submit(reading):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="reading queue is full",
        )
    logger.info(
        "reading_received",
        timestamp=str(reading.timestamp),
        sensors=sorted(reading.samples),
    )
    return ReadingAccepted(pending=source.pending())


@router.get("/assessment", response_model=ThreatAssessment)
async def latest_assessment(
    engine: GuardianEngine = Depends(get_engine),
) -> ThreatAssessment:
    assessment = engine.latest_assessment
    if assessment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="no assessment yet",
        )
    return assessment


@router.get("/alerts", response_model=list[PredictiveAlert])
async def predictive_alerts(
    engine: GuardianEngine = Depends(get_engine),
) -> list[PredictiveAlert]:
    return engine.predictive_alerts
