"""
engine/monitor.py

GuardianEngine: owner of all mutable engine state and of the two scheduled loops.
- Evaluation loop: Source → Normalizer → Evaluator → Classifier → Escalation,
  every evaluation_interval_seconds
- Pattern loop: PatternAnalyzer over the rolling history, on a slower period

A single asyncio.Lock guards EscalationState, the Incident Log and the history.
Escalation time comes from the injected clock; reading timestamps only
order readings. Notification dispatch and persistence run outside the lock;
dispatch runs in background tasks that survive stop().
"""

import asyncio
import collections
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError

from config import settings
from engine import events
from engine.errors import DispatchError
from engine.events import EventBus
from engine.schemas import (
    EscalationState,
    Incident,
    PredictiveAlert,
    RawReading,
    Reading,
    ThreatAssessment,
    ThresholdConfig,
    TransitionEvent,
    Urgency,
)
from engine.services.classifier import ThreatClassifier
from engine.services.escalation import EscalationOutcome, EscalationStateMachine
from engine.services.evaluator import ThresholdEvaluator
from engine.services.incident_log import IncidentLog
from engine.services.normalizer import ReadingNormalizer
from engine.services.notification import (
    LoggingDispatcher,
    NotificationDispatcher,
    StaticContactProvider,
    build_dispatcher,
)
from engine.services.patterns import PatternAnalyzer
from engine.services.persistence import SqlIncidentStore
from engine.sources import (
    Clock,
    QueueReadingSource,
    ReadingSource,
    SimulatedReadingSource,
    utcnow,
)

logger = structlog.get_logger(__name__)


def load_threshold_config(path: str) -> ThresholdConfig:
    """Read a ThresholdConfig JSON file; unreadable or invalid files yield the defaults."""
    if not path:
        return ThresholdConfig()
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        config = ThresholdConfig.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        logger.warning("threshold_file_invalid", path=path, error=str(exc))
        return ThresholdConfig()
    logger.info("threshold_config_loaded", path=path, metrics=sorted(config.bounds))
    return config


class GuardianEngine:
    """Threat assessment and escalation engine for one monitored subject."""

    def __init__(
        self,
        source: ReadingSource,
        config: Optional[ThresholdConfig] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        contacts: Optional[StaticContactProvider] = None,
        store: Optional[SqlIncidentStore] = None,
        bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        incident_capacity: int = settings.incident_capacity,
        history_size: int = settings.history_size,
        pattern_interval_seconds: float = settings.pattern_interval_seconds,
    ) -> None:
        self.source = source
        self.bus = bus or EventBus()
        self._config = config or ThresholdConfig()
        self._dispatcher = dispatcher or LoggingDispatcher()
        self._contacts = contacts or StaticContactProvider()
        self._store = store
        self._clock = clock or utcnow
        self._pattern_interval = pattern_interval_seconds

        self._normalizer = ReadingNormalizer()
        self._evaluator = ThresholdEvaluator()
        self._classifier = ThreatClassifier()
        self._analyzer = PatternAnalyzer()
        self._incidents = IncidentLog(incident_capacity)
        self._escalation = EscalationStateMachine(self._incidents)

        self._history: collections.deque[Reading] = collections.deque(maxlen=history_size)
        self._latest_assessment: Optional[ThreatAssessment] = None
        self._latest_alerts: list[PredictiveAlert] = []
        self._last_timestamp: Optional[datetime] = None

        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []
        self._dispatch_tasks: set[asyncio.Task] = set()
        self.running = False

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._tasks = [
            asyncio.create_task(self._evaluation_loop()),
            asyncio.create_task(self._pattern_loop()),
        ]
        logger.info(
            "engine_started",
            evaluation_interval=self._config.evaluation_interval_seconds,
            pattern_interval=self._pattern_interval,
        )

    async def stop(self) -> None:
        """Cancel both loops; in-flight dispatches finish on their own."""
        self.running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(
            "engine_stopped",
            tier=self._escalation.tier.value,
            pending_dispatches=len(self._dispatch_tasks),
        )

    async def drain_dispatches(self) -> None:
        """Wait for every background dispatch started so far."""
        if self._dispatch_tasks:
            await asyncio.gather(*list(self._dispatch_tasks), return_exceptions=True)

    async def _evaluation_loop(self) -> None:
        while self.running:
            try:
                await self.run_cycle()
            except Exception as exc:
                logger.error("evaluation_cycle_failed", error=str(exc))
            await asyncio.sleep(self._config.evaluation_interval_seconds)

    async def _pattern_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self._pattern_interval)
            try:
                await self.run_pattern_cycle()
            except Exception as exc:
                logger.error("pattern_cycle_failed", error=str(exc))

    # ── Cycles ───────────────────────────────────────────────

    async def run_cycle(self) -> list[ThreatAssessment]:
        """Evaluate every reading the source produced since the last cycle."""
        raws = await self.source.poll()
        config = self._config
        now = self._clock()
        assessments: list[ThreatAssessment] = []
        outcomes: list[EscalationOutcome] = []

        async with self._lock:
            if not raws:
                outcomes.append(self._escalation.tick(now))
            for raw in sorted(raws, key=lambda r: r.timestamp):
                result = self._evaluate(raw, config, now)
                if result is None:
                    continue
                assessment, outcome = result
                assessments.append(assessment)
                outcomes.append(outcome)

        # No await between committing the outcomes and scheduling their dispatch
        for outcome in outcomes:
            self._schedule_dispatches(outcome)
        for assessment in assessments:
            await self.bus.publish(events.ASSESSMENT, assessment)
        for outcome in outcomes:
            await self._emit(outcome)
        return assessments

    def _evaluate(
        self,
        raw: RawReading,
        config: ThresholdConfig,
        now: datetime,
    ) -> Optional[tuple[ThreatAssessment, EscalationOutcome]]:
        if self._last_timestamp is not None and raw.timestamp <= self._last_timestamp:
            logger.warning(
                "reading_out_of_order_dropped",
                timestamp=str(raw.timestamp),
                last_timestamp=str(self._last_timestamp),
            )
            return None

        reading = self._normalizer.normalize(raw)
        evaluation = self._evaluator.evaluate(reading, config)
        assessment = self._classifier.classify(reading, evaluation, config)
        outcome = self._escalation.process(assessment, reading, config, now)

        self._last_timestamp = raw.timestamp
        self._history.append(reading)
        self._latest_assessment = assessment
        logger.info(
            "assessment_completed",
            timestamp=str(assessment.timestamp),
            level=assessment.level.value,
            confidence=assessment.confidence,
            degraded=assessment.degraded,
            tier=self._escalation.tier.value,
        )
        return assessment, outcome

    async def run_pattern_cycle(self) -> list[PredictiveAlert]:
        async with self._lock:
            readings = list(self._history)
            incidents = list(self._incidents)
        alerts = self._analyzer.analyze(readings, incidents, self._clock(), self._config)
        self._latest_alerts = alerts
        for alert in alerts:
            await self.bus.publish(events.PREDICTIVE_ALERT, alert)
        return alerts

    # ── Operator actions ─────────────────────────────────────

    async def manual_trigger(self, description: str = "") -> Incident:
        async with self._lock:
            latest = self._history[-1] if self._history else None
            outcome = self._escalation.manual_trigger(description, self._clock(), latest)
        self._schedule_dispatches(outcome)
        logger.warning("manual_trigger", description=description)
        await self._emit(outcome)
        return outcome.incidents[0]

    async def clear_emergency(self, note: str = "") -> EscalationState:
        async with self._lock:
            outcome = self._escalation.clear(self._clock(), note, self._config)
        self._schedule_dispatches(outcome)
        await self._emit(outcome)
        return self._escalation.state

    async def resolve_incident(self, incident_id: str) -> Optional[Incident]:
        async with self._lock:
            incident = self._incidents.mark_resolved(incident_id)
        if incident is not None:
            await self._incident_updated(incident)
        return incident

    async def request_auto_trigger(self, assessment: ThreatAssessment) -> EscalationState:
        """Raises EscalationInvariantError unless the assessment qualifies."""
        async with self._lock:
            latest = self._history[-1] if self._history else None
            outcome = self._escalation.request_auto_trigger(
                assessment, latest, self._config, self._clock()
            )
        self._schedule_dispatches(outcome)
        await self._emit(outcome)
        return self._escalation.state

    def update_config(self, config: ThresholdConfig) -> None:
        self._config = config
        logger.info(
            "threshold_config_updated",
            confidence_threshold=config.confidence_threshold,
            auto_trigger_enabled=config.auto_trigger_enabled,
        )

    # ── Accessors ────────────────────────────────────────────

    @property
    def config(self) -> ThresholdConfig:
        return self._config

    @property
    def latest_assessment(self) -> Optional[ThreatAssessment]:
        return self._latest_assessment

    @property
    def escalation_state(self) -> EscalationState:
        return self._escalation.state

    @property
    def predictive_alerts(self) -> list[PredictiveAlert]:
        return list(self._latest_alerts)

    def history(self) -> list[Reading]:
        return list(self._history)

    def recent_incidents(self, limit: int = settings.incident_capacity) -> list[Incident]:
        return [incident.model_copy() for incident in self._incidents.recent(limit)]

    def get_incident(self, incident_id: str) -> Optional[Incident]:
        incident = self._incidents.get(incident_id)
        return incident.model_copy() if incident is not None else None

    # ── Side effects ─────────────────────────────────────────

    async def _emit(self, outcome: EscalationOutcome) -> None:
        for incident in outcome.incidents:
            await self.bus.publish(events.INCIDENT_CREATED, incident)
            if self._store is not None:
                await self._store.save_incident(incident)
        for incident in outcome.resolved:
            await self._incident_updated(incident)
        for event in outcome.transitions:
            await self.bus.publish(events.TRANSITION, event)
            if self._store is not None:
                await self._store.save_transition(event)

    def _schedule_dispatches(self, outcome: EscalationOutcome) -> None:
        for event in outcome.transitions:
            if event.urgency != Urgency.INFO:
                self._schedule_dispatch(event)

    def _schedule_dispatch(self, event: TransitionEvent) -> None:
        task = asyncio.create_task(self._dispatch(event))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _dispatch(self, event: TransitionEvent) -> None:
        contacts = self._contacts.contacts()
        try:
            receipt = await self._dispatcher.dispatch(event, contacts)
            note = (
                f"notified {receipt.contacts_notified} contact(s) "
                f"at {event.urgency.value} urgency"
            )
        except DispatchError as exc:
            note = f"dispatch failed: {exc}; delivery unconfirmed"
            logger.error("dispatch_failed", event_id=event.id, error=str(exc))
        except Exception as exc:
            note = f"dispatch failed: {exc}; delivery unconfirmed"
            logger.error("dispatch_unexpected_error", event_id=event.id, error=str(exc))

        if event.incident_id is None:
            return
        async with self._lock:
            incident = self._incidents.annotate(event.incident_id, note)
        if incident is not None:
            await self._incident_updated(incident)

    async def _incident_updated(self, incident: Incident) -> None:
        await self.bus.publish(events.INCIDENT_UPDATED, incident)
        if self._store is not None:
            await self._store.save_incident(incident)


def build_engine() -> GuardianEngine:
    """Wire an engine from process settings."""
    if settings.simulate_sensors:
        source: ReadingSource = SimulatedReadingSource(seed=settings.simulation_seed)
    else:
        source = QueueReadingSource()
    return GuardianEngine(
        source=source,
        config=load_threshold_config(settings.thresholds_file),
        dispatcher=build_dispatcher(),
        contacts=StaticContactProvider.from_file(settings.contacts_file),
        store=SqlIncidentStore() if settings.persist_incidents else None,
    )
