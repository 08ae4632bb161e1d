"""
engine/services/persistence.py

Persists incidents and escalation transitions to the MySQL database.
Uses SQLAlchemy 2.0 async sessions. Storage failures are logged and
swallowed: persistence must never block or revert an escalation.
"""

from decimal import Decimal

import structlog

from db.models import AsyncSessionLocal, IncidentRecord, TransitionLog
from engine.schemas import Incident, TransitionEvent

logger = structlog.get_logger(__name__)


class SqlIncidentStore:
    """Write-only audit store backed by db/models.py."""

    def __init__(self, session_factory=AsyncSessionLocal) -> None:
        self._session_factory = session_factory

    async def save_incident(self, incident: Incident) -> bool:
        """Insert or update an incident row (merge on primary key)."""
        try:
            async with self._session_factory() as session:
                record = IncidentRecord(
                    id=incident.id,
                    occurred_at=incident.timestamp,
                    source=incident.source.value,
                    severity=incident.severity.value,
                    cause=incident.cause,
                    description=incident.description,
                    reading_json=(
                        incident.reading.model_dump_json()
                        if incident.reading is not None
                        else None
                    ),
                    action_taken=incident.action_taken,
                    resolved=incident.resolved,
                )
                await session.merge(record)
                await session.commit()
                logger.info(
                    "incident_persisted",
                    incident_id=incident.id,
                    resolved=incident.resolved,
                )
                return True
        except Exception as exc:
            logger.error(
                "incident_persist_failed",
                incident_id=incident.id,
                error=str(exc),
            )
            return False

    async def save_transition(self, event: TransitionEvent) -> bool:
        """Insert one transition row."""
        assessment = event.assessment
        try:
            async with self._session_factory() as session:
                record = TransitionLog(
                    id=event.id,
                    occurred_at=event.occurred_at,
                    from_tier=event.from_tier.value,
                    to_tier=event.to_tier.value,
                    reason=event.reason,
                    urgency=event.urgency.value,
                    level=assessment.level.value if assessment else None,
                    confidence=(
                        Decimal(str(assessment.confidence)) if assessment else None
                    ),
                    incident_id=event.incident_id,
                )
                session.add(record)
                await session.commit()
                logger.info(
                    "transition_persisted",
                    event_id=event.id,
                    to_tier=event.to_tier.value,
                )
                return True
        except Exception as exc:
            logger.error(
                "transition_persist_failed",
                event_id=event.id,
                error=str(exc),
            )
            return False
