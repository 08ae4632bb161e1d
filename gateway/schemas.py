"""
gateway/schemas.py

Request and response bodies for the gateway layer.
Engine messages (assessment, incident, transition, predictive alert) are
returned as-is from engine/schemas.py.
"""

from pydantic import BaseModel

from engine.schemas import EscalationState, ThreatAssessment


class ReadingAccepted(BaseModel):
    status: str = "accepted"
    pending: int


class ManualTriggerRequest(BaseModel):
    """Panic-button payload."""

    description: str = ""


class ClearRequest(BaseModel):
    note: str = ""


class EscalationView(BaseModel):
    """Current escalation state plus the assessment that produced it."""

    state: EscalationState
    latest_assessment: ThreatAssessment | None = None
