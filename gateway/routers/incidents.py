"""
gateway/routers/incidents.py

Incident audit endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from engine.monitor import GuardianEngine
from engine.schemas import Incident
from gateway.constants import DEFAULT_INCIDENT_LIMIT, MAX_INCIDENT_LIMIT
from gateway.dependencies import get_engine

router = APIRouter(prefix="/incidents")


@router.get("", response_model=list[Incident])
async def list_incidents(
    limit: int = Query(DEFAULT_INCIDENT_LIMIT, ge=1, le=MAX_INCIDENT_LIMIT),
    engine: GuardianEngine = Depends(get_engine),
) -> list[Incident]:
    """Most recent incidents, oldest first."""
    return engine.recent_incidents(limit)


@router.post("/{incident_id}/resolve", response_model=Incident)
async def resolve_incident(
    incident_id: str,
    engine: GuardianEngine = Depends(get_engine),
) -> Incident:
    incident = await engine.resolve_incident(incident_id)
    if incident is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"incident {incident_id} not found",
        )
    return incident
