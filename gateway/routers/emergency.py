"""
gateway/routers/emergency.py

Escalation state and operator emergency actions.
- POST /emergency/manual: panic button, always records an incident
- POST /emergency/clear: clears an active emergency and starts the cooldown
"""

import structlog
from fastapi import APIRouter, Depends, status

from engine.monitor import GuardianEngine
from engine.schemas import EscalationState, Incident
from gateway.dependencies import get_engine
from gateway.schemas import ClearRequest, EscalationView, ManualTriggerRequest

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/escalation", response_model=EscalationView)
async def escalation_state(
    engine: GuardianEngine = Depends(get_engine),
) -> EscalationView:
    return EscalationView(
        state=engine.escalation_state,
        latest_assessment=engine.latest_assessment,
    )


@router.post(
    "/emergency/manual",
    response_model=Incident,
    status_code=status.HTTP_201_CREATED,
)
async def manual_trigger(
    body: ManualTriggerRequest,
    engine: GuardianEngine = Depends(get_engine),
) -> Incident:
    incident = await engine.manual_trigger(body.description)
    logger.info("manual_trigger_received", incident_id=incident.id)
    return incident


@router.post("/emergency/clear", response_model=EscalationState)
async def clear_emergency(
    body: ClearRequest,
    engine: GuardianEngine = Depends(get_engine),
) -> EscalationState:
    return await engine.clear_emergency(body.note)
