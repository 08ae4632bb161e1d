"""
engine/services/escalation.py

Tiered escalation state machine with hysteresis.

Tiers: idle → monitoring → elevated → critical → auto_triggered → cooling_down → idle.
- A single elevated assessment is enough to advance a tier.
- De-escalation from elevated/critical needs deescalation_dwell_cycles
  consecutive safe assessments, then the machine cools down.
- auto_triggered is entered only for a critical assessment whose confidence
  meets confidence_threshold while auto_trigger_enabled is set, and stays
  until manually cleared.
- While cooling down, assessments are still recorded as last_level but no
  transition or incident is produced.

All windows (cooldown, countdown, dedup) are measured against the now the
caller supplies, so one clock drives every decision.

Transitions are local and always succeed. Notification side effects are the
caller's concern; the machine only returns the events and incidents it made.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import structlog

from engine.errors import EscalationInvariantError
from engine.schemas import (
    EscalationState,
    EscalationTier,
    Incident,
    IncidentSource,
    Reading,
    ThreatAssessment,
    ThreatLevel,
    ThresholdConfig,
    TransitionEvent,
    Urgency,
)
from engine.services.incident_log import IncidentLog

logger = structlog.get_logger(__name__)

MANUAL_CAUSE: str = "manual"
UNSPECIFIED_CAUSE: str = "unspecified"
COUNTDOWN_EXPIRED: str = "countdown_expired"

_DEESCALATING_TIERS = (EscalationTier.ELEVATED, EscalationTier.CRITICAL)
_CLEARABLE_TIERS = (
    EscalationTier.ELEVATED,
    EscalationTier.CRITICAL,
    EscalationTier.AUTO_TRIGGERED,
)


@dataclass
class EscalationOutcome:
    """Events, new incidents and resolved incidents from one state machine call."""

    transitions: list[TransitionEvent] = field(default_factory=list)
    incidents: list[Incident] = field(default_factory=list)
    resolved: list[Incident] = field(default_factory=list)


def qualifies_for_auto_trigger(
    assessment: ThreatAssessment,
    config: ThresholdConfig,
) -> bool:
    return (
        config.auto_trigger_enabled
        and assessment.level == ThreatLevel.CRITICAL
        and assessment.confidence >= config.confidence_threshold
    )


class EscalationStateMachine:
    """Owns the single live EscalationState for one monitored subject."""

    def __init__(self, incident_log: IncidentLog) -> None:
        self._state = EscalationState()
        self._log = incident_log
        self._critical_since: Optional[datetime] = None
        self._critical_incident_id: Optional[str] = None
        self._countdown_fired: bool = False

    @property
    def state(self) -> EscalationState:
        """Snapshot of the current state; callers never get the live object."""
        return self._state.model_copy()

    @property
    def tier(self) -> EscalationTier:
        return self._state.tier

    # ── Periodic inputs ──────────────────────────────────────

    def tick(self, now: datetime) -> EscalationOutcome:
        """Advance time-based transitions (cooldown expiry) without an assessment."""
        outcome = EscalationOutcome()
        state = self._state
        if (
            state.tier == EscalationTier.COOLING_DOWN
            and state.cooldown_until is not None
            and now >= state.cooldown_until
        ):
            state.cooldown_until = None
            self._transition(
                EscalationTier.IDLE, now, "cooldown elapsed", None, Urgency.INFO, outcome
            )
        return outcome

    def process(
        self,
        assessment: ThreatAssessment,
        reading: Optional[Reading],
        config: ThresholdConfig,
        now: Optional[datetime] = None,
    ) -> EscalationOutcome:
        """Apply one assessment; now defaults to the assessment timestamp."""
        now = now or assessment.timestamp
        outcome = self.tick(now)
        state = self._state

        if state.tier == EscalationTier.COOLING_DOWN:
            if assessment.level.rank >= ThreatLevel.WARNING.rank:
                logger.warning(
                    "assessment_suppressed_during_cooldown",
                    level=assessment.level.value,
                    confidence=assessment.confidence,
                    cooldown_until=str(state.cooldown_until),
                )
            state.last_level = assessment.level
            return outcome

        if state.tier == EscalationTier.AUTO_TRIGGERED:
            state.last_level = assessment.level
            return outcome

        if state.tier == EscalationTier.IDLE:
            self._transition(
                EscalationTier.MONITORING,
                now,
                "monitoring started",
                assessment,
                Urgency.INFO,
                outcome,
            )

        if assessment.level == ThreatLevel.CRITICAL:
            self._on_critical(assessment, reading, config, now, outcome)
        elif assessment.level == ThreatLevel.WARNING:
            self._on_warning(assessment, reading, config, now, outcome)
        else:
            self._on_calm(assessment, config, now, outcome)

        state.last_level = assessment.level
        return outcome

    # ── Collaborator requests ────────────────────────────────

    def request_auto_trigger(
        self,
        assessment: ThreatAssessment,
        reading: Optional[Reading],
        config: ThresholdConfig,
        now: Optional[datetime] = None,
    ) -> EscalationOutcome:
        """Enter auto_triggered on explicit request; rejected unless the assessment qualifies."""
        if self._state.tier in (EscalationTier.AUTO_TRIGGERED, EscalationTier.COOLING_DOWN):
            self._reject(
                f"auto trigger not allowed from {self._state.tier.value}",
                assessment,
            )
        if not qualifies_for_auto_trigger(assessment, config):
            self._reject("assessment does not qualify for auto trigger", assessment)
        now = now or assessment.timestamp
        outcome = EscalationOutcome()
        if self._state.tier == EscalationTier.IDLE:
            self._transition(
                EscalationTier.MONITORING,
                now,
                "monitoring started",
                assessment,
                Urgency.INFO,
                outcome,
            )
        self._enter_auto_triggered(assessment, reading, config, now, outcome)
        self._state.last_level = assessment.level
        return outcome

    def manual_trigger(
        self,
        description: str,
        now: datetime,
        reading: Optional[Reading] = None,
    ) -> EscalationOutcome:
        """
        User-initiated emergency. Always records an incident, raises the tier
        to critical, and never enters auto_triggered.
        """
        outcome = EscalationOutcome()
        incident = self._record_incident(
            IncidentSource.MANUAL,
            ThreatLevel.CRITICAL,
            MANUAL_CAUSE,
            description or "Manual emergency trigger",
            reading,
            now,
            outcome,
        )
        state = self._state
        state.safe_streak = 0
        if state.tier in (EscalationTier.CRITICAL, EscalationTier.AUTO_TRIGGERED):
            self._transition(
                state.tier, now, "manual trigger", None, Urgency.EMERGENCY, outcome, incident
            )
        else:
            state.cooldown_until = None
            self._start_critical_episode(now, incident)
            self._transition(
                EscalationTier.CRITICAL,
                now,
                "manual trigger",
                None,
                Urgency.EMERGENCY,
                outcome,
                incident,
            )
        return outcome

    def clear(self, now: datetime, note: str, config: ThresholdConfig) -> EscalationOutcome:
        """Manual clear: resolve open incidents and cool down."""
        outcome = EscalationOutcome()
        state = self._state
        if state.tier not in _CLEARABLE_TIERS:
            logger.warning("escalation_clear_ignored", tier=state.tier.value)
            return outcome

        for incident in self._log.open_incidents():
            self._log.mark_resolved(incident.id)
            self._log.annotate(incident.id, f"cleared: {note or 'manual clear'}")
            outcome.resolved.append(incident)
        reason = f"manually cleared: {note}" if note else "manually cleared"
        self._enter_cooldown(now, reason, None, config, outcome)
        return outcome

    # ── Level handlers ───────────────────────────────────────

    def _on_critical(
        self,
        assessment: ThreatAssessment,
        reading: Optional[Reading],
        config: ThresholdConfig,
        now: datetime,
        outcome: EscalationOutcome,
    ) -> None:
        state = self._state
        state.safe_streak = 0

        if qualifies_for_auto_trigger(assessment, config):
            self._enter_auto_triggered(assessment, reading, config, now, outcome)
            return

        if state.tier != EscalationTier.CRITICAL:
            incident = self._record_incident(
                IncidentSource.AUTO,
                ThreatLevel.CRITICAL,
                assessment.primary_cause or UNSPECIFIED_CAUSE,
                self._describe(assessment),
                reading,
                now,
                outcome,
            )
            self._start_critical_episode(now, incident)
            self._transition(
                EscalationTier.CRITICAL,
                now,
                self._reason(assessment),
                assessment,
                Urgency.HIGH,
                outcome,
                incident,
            )
            return

        if (
            not self._countdown_fired
            and self._critical_since is not None
            and now - self._critical_since
            >= timedelta(seconds=config.critical_countdown_seconds)
        ):
            self._countdown_fired = True
            logger.warning(
                "critical_countdown_expired",
                critical_since=str(self._critical_since),
                confidence=assessment.confidence,
            )
            self._transition(
                EscalationTier.CRITICAL,
                now,
                COUNTDOWN_EXPIRED,
                assessment,
                Urgency.EMERGENCY,
                outcome,
                incident_id=self._critical_incident_id,
            )

    def _on_warning(
        self,
        assessment: ThreatAssessment,
        reading: Optional[Reading],
        config: ThresholdConfig,
        now: datetime,
        outcome: EscalationOutcome,
    ) -> None:
        state = self._state
        state.safe_streak = 0
        if state.tier == EscalationTier.CRITICAL:
            return

        incident = self._record_deduplicated(assessment, reading, config, now, outcome)
        if state.tier == EscalationTier.MONITORING:
            self._transition(
                EscalationTier.ELEVATED,
                now,
                self._reason(assessment),
                assessment,
                Urgency.LOW,
                outcome,
                incident,
            )

    def _on_calm(
        self,
        assessment: ThreatAssessment,
        config: ThresholdConfig,
        now: datetime,
        outcome: EscalationOutcome,
    ) -> None:
        state = self._state
        if state.tier not in _DEESCALATING_TIERS:
            return
        if assessment.level != ThreatLevel.SAFE:
            state.safe_streak = 0
            return

        state.safe_streak += 1
        if state.safe_streak >= config.deescalation_dwell_cycles:
            self._enter_cooldown(
                now,
                f"{state.safe_streak} consecutive safe assessments",
                assessment,
                config,
                outcome,
            )

    # ── Tier entry helpers ───────────────────────────────────

    def _enter_auto_triggered(
        self,
        assessment: ThreatAssessment,
        reading: Optional[Reading],
        config: ThresholdConfig,
        now: datetime,
        outcome: EscalationOutcome,
    ) -> None:
        if not qualifies_for_auto_trigger(assessment, config):
            self._reject("assessment does not qualify for auto trigger", assessment)

        incident = self._record_incident(
            IncidentSource.AUTO,
            ThreatLevel.CRITICAL,
            assessment.primary_cause or UNSPECIFIED_CAUSE,
            self._describe(assessment),
            reading,
            now,
            outcome,
        )
        self._state.safe_streak = 0
        self._transition(
            EscalationTier.AUTO_TRIGGERED,
            now,
            self._reason(assessment),
            assessment,
            Urgency.EMERGENCY,
            outcome,
            incident,
        )

    def _enter_cooldown(
        self,
        now: datetime,
        reason: str,
        assessment: Optional[ThreatAssessment],
        config: ThresholdConfig,
        outcome: EscalationOutcome,
    ) -> None:
        state = self._state
        state.safe_streak = 0
        state.cooldown_until = now + timedelta(seconds=config.cooldown_seconds)
        self._critical_since = None
        self._critical_incident_id = None
        self._countdown_fired = False
        self._transition(
            EscalationTier.COOLING_DOWN, now, reason, assessment, Urgency.INFO, outcome
        )

    def _start_critical_episode(self, now: datetime, incident: Incident) -> None:
        self._critical_since = now
        self._critical_incident_id = incident.id
        self._countdown_fired = False

    # ── Incidents ────────────────────────────────────────────

    def _record_deduplicated(
        self,
        assessment: ThreatAssessment,
        reading: Optional[Reading],
        config: ThresholdConfig,
        now: datetime,
        outcome: EscalationOutcome,
    ) -> Incident:
        """Reuse an open incident for the same cause inside the cooldown window."""
        cause = assessment.primary_cause or UNSPECIFIED_CAUSE
        since = now - timedelta(seconds=config.cooldown_seconds)
        existing = self._log.find_open(cause, since=since)
        if existing is not None:
            logger.info(
                "incident_deduplicated",
                incident_id=existing.id,
                cause=cause,
            )
            return existing
        return self._record_incident(
            IncidentSource.ANOMALY,
            assessment.level,
            cause,
            self._describe(assessment),
            reading,
            now,
            outcome,
        )

    def _record_incident(
        self,
        source: IncidentSource,
        severity: ThreatLevel,
        cause: str,
        description: str,
        reading: Optional[Reading],
        now: datetime,
        outcome: EscalationOutcome,
    ) -> Incident:
        incident = Incident(
            timestamp=now,
            source=source,
            severity=severity,
            cause=cause,
            description=description,
            reading=reading,
        )
        self._log.append(incident)
        outcome.incidents.append(incident)
        logger.info(
            "incident_created",
            incident_id=incident.id,
            source=source.value,
            severity=severity.value,
            cause=cause,
        )
        return incident

    # ── Internals ────────────────────────────────────────────

    def _transition(
        self,
        to_tier: EscalationTier,
        now: datetime,
        reason: str,
        assessment: Optional[ThreatAssessment],
        urgency: Urgency,
        outcome: EscalationOutcome,
        incident: Optional[Incident] = None,
        incident_id: Optional[str] = None,
    ) -> None:
        state = self._state
        event = TransitionEvent(
            occurred_at=now,
            from_tier=state.tier,
            to_tier=to_tier,
            reason=reason,
            assessment=assessment,
            urgency=urgency,
            incident_id=incident.id if incident is not None else incident_id,
        )
        state.tier = to_tier
        state.last_transition_at = now
        outcome.transitions.append(event)
        logger.info(
            "escalation_transition",
            from_tier=event.from_tier.value,
            to_tier=event.to_tier.value,
            reason=reason,
            urgency=urgency.value,
        )

    def _reject(self, message: str, assessment: ThreatAssessment) -> None:
        logger.error(
            "escalation_invariant_violation",
            message=message,
            tier=self._state.tier.value,
            level=assessment.level.value,
            confidence=assessment.confidence,
        )
        raise EscalationInvariantError(message)

    @staticmethod
    def _describe(assessment: ThreatAssessment) -> str:
        if assessment.reasons:
            return "; ".join(assessment.reasons)
        return f"{assessment.level.value} assessment"

    @staticmethod
    def _reason(assessment: ThreatAssessment) -> str:
        head = assessment.reasons[0] if assessment.reasons else "no breach"
        return f"{assessment.level.value} assessment ({assessment.confidence:.2f}): {head}"
