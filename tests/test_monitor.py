"""
tests/test_monitor.py

Integration tests for engine/monitor.py.
Readings flow through the real pipeline; the dispatcher and store are mocked.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from engine import events
from engine.constants import HEART_RATE, MOTION_MAGNITUDE
from engine.errors import DispatchError, EscalationInvariantError
from engine.monitor import GuardianEngine, load_threshold_config
from engine.schemas import (
    DispatchReceipt,
    EscalationTier,
    IncidentSource,
    ThreatLevel,
    Urgency,
)
from engine.services.notification import StaticContactProvider
from engine.sources import QueueReadingSource
from tests.fixtures import (
    ManualClock,
    at,
    build_assessment,
    build_config,
    build_contacts,
    build_raw_reading,
)


def make_engine(config=None, dispatcher=None, store=None, clock=None):
    if dispatcher is None:
        dispatcher = AsyncMock()
        dispatcher.dispatch.return_value = DispatchReceipt(
            event_id="ack", delivered=True, contacts_notified=2
        )
    clock = clock or ManualClock()
    engine = GuardianEngine(
        source=QueueReadingSource(),
        config=config or build_config(),
        dispatcher=dispatcher,
        contacts=StaticContactProvider(build_contacts()),
        store=store,
        clock=clock,
    )
    return engine, dispatcher, clock


@pytest.mark.asyncio
async def test_cycle_assesses_queued_readings_in_timestamp_order() -> None:
    engine, _, _ = make_engine()
    engine.source.submit(build_raw_reading(timestamp=at(20), **{HEART_RATE: 42.0}))
    engine.source.submit(build_raw_reading(timestamp=at(10)))

    assessments = await engine.run_cycle()

    assert [a.timestamp for a in assessments] == [at(10), at(20)]
    assert engine.latest_assessment.level == ThreatLevel.WARNING
    assert engine.escalation_state.tier == EscalationTier.ELEVATED
    assert len(engine.history()) == 2


@pytest.mark.asyncio
async def test_out_of_order_and_duplicate_readings_are_dropped() -> None:
    engine, _, _ = make_engine()
    engine.source.submit(build_raw_reading(timestamp=at(10)))
    await engine.run_cycle()

    engine.source.submit(build_raw_reading(timestamp=at(10), **{HEART_RATE: 42.0}))
    engine.source.submit(build_raw_reading(timestamp=at(5), **{HEART_RATE: 42.0}))
    assessments = await engine.run_cycle()

    assert assessments == []
    assert len(engine.history()) == 1
    assert engine.escalation_state.tier == EscalationTier.MONITORING


@pytest.mark.asyncio
async def test_motion_spike_auto_triggers_and_notifies() -> None:
    engine, dispatcher, _ = make_engine()
    engine.source.submit(build_raw_reading(timestamp=at(0), **{MOTION_MAGNITUDE: 18.2}))

    await engine.run_cycle()
    await engine.drain_dispatches()

    assert engine.escalation_state.tier == EscalationTier.AUTO_TRIGGERED
    dispatcher.dispatch.assert_awaited_once()
    event, contacts = dispatcher.dispatch.await_args.args
    assert event.urgency == Urgency.EMERGENCY
    assert [c.name for c in contacts] == ["Alex", "Sam"]
    incident = engine.recent_incidents()[0]
    assert incident.source == IncidentSource.AUTO
    assert incident.action_taken == "notified 2 contact(s) at emergency urgency"


@pytest.mark.asyncio
async def test_dispatch_failure_is_recorded_without_reverting_state() -> None:
    dispatcher = AsyncMock()
    dispatcher.dispatch.side_effect = DispatchError("webhook unreachable")
    engine, _, _ = make_engine(dispatcher=dispatcher)
    engine.source.submit(build_raw_reading(timestamp=at(0), **{MOTION_MAGNITUDE: 18.2}))

    assessments = await engine.run_cycle()
    await engine.drain_dispatches()

    assert assessments[0].level == ThreatLevel.CRITICAL
    assert engine.escalation_state.tier == EscalationTier.AUTO_TRIGGERED
    incident = engine.recent_incidents()[0]
    assert "dispatch failed" in incident.action_taken
    assert "delivery unconfirmed" in incident.action_taken


@pytest.mark.asyncio
async def test_info_transitions_are_not_dispatched() -> None:
    engine, dispatcher, _ = make_engine()
    engine.source.submit(build_raw_reading(timestamp=at(0)))

    await engine.run_cycle()
    await engine.drain_dispatches()

    dispatcher.dispatch.assert_not_awaited()


@pytest.mark.asyncio
async def test_config_update_applies_to_next_cycle() -> None:
    engine, _, _ = make_engine()
    engine.update_config(build_config(auto_trigger_enabled=False))
    engine.source.submit(build_raw_reading(timestamp=at(0), **{MOTION_MAGNITUDE: 18.2}))

    await engine.run_cycle()

    assert engine.config.auto_trigger_enabled is False
    assert engine.escalation_state.tier == EscalationTier.CRITICAL


@pytest.mark.asyncio
async def test_manual_trigger_and_clear() -> None:
    engine, dispatcher, clock = make_engine()
    engine.source.submit(build_raw_reading(timestamp=at(0)))
    await engine.run_cycle()

    clock.advance(5)
    incident = await engine.manual_trigger("panic button")
    await engine.drain_dispatches()

    assert incident.source == IncidentSource.MANUAL
    assert engine.escalation_state.tier == EscalationTier.CRITICAL
    assert dispatcher.dispatch.await_args.args[0].urgency == Urgency.EMERGENCY

    clock.advance(5)
    state = await engine.clear_emergency("false alarm")

    assert state.tier == EscalationTier.COOLING_DOWN
    assert all(i.resolved for i in engine.recent_incidents())
    assert engine.recent_incidents()[0].action_taken == (
        "notified 2 contact(s) at emergency urgency; cleared: false alarm"
    )


@pytest.mark.asyncio
async def test_resolve_incident() -> None:
    engine, _, _ = make_engine()
    incident = await engine.manual_trigger("help")
    await engine.drain_dispatches()

    resolved = await engine.resolve_incident(incident.id)

    assert resolved.resolved is True
    assert engine.get_incident(incident.id).resolved is True
    assert await engine.resolve_incident("unknown") is None


@pytest.mark.asyncio
async def test_request_auto_trigger_rejects_non_qualifying_assessment() -> None:
    engine, _, _ = make_engine()

    with pytest.raises(EscalationInvariantError):
        await engine.request_auto_trigger(
            build_assessment(level=ThreatLevel.CRITICAL, confidence=0.5)
        )

    assert engine.escalation_state.tier == EscalationTier.IDLE


@pytest.mark.asyncio
async def test_empty_cycle_expires_cooldown() -> None:
    engine, _, clock = make_engine(
        config=build_config(deescalation_dwell_cycles=1, cooldown_seconds=60)
    )
    engine.source.submit(build_raw_reading(timestamp=at(0), **{HEART_RATE: 42.0}))
    engine.source.submit(build_raw_reading(timestamp=at(10)))
    await engine.run_cycle()
    assert engine.escalation_state.tier == EscalationTier.COOLING_DOWN

    clock.advance(100)
    await engine.run_cycle()

    assert engine.escalation_state.tier == EscalationTier.IDLE


@pytest.mark.asyncio
async def test_events_are_published_to_subscribers() -> None:
    engine, _, _ = make_engine()
    on_assessment = AsyncMock()
    on_transition = AsyncMock()
    on_incident = AsyncMock()
    engine.bus.subscribe(events.ASSESSMENT, on_assessment)
    engine.bus.subscribe(events.TRANSITION, on_transition)
    engine.bus.subscribe(events.INCIDENT_CREATED, on_incident)
    engine.source.submit(build_raw_reading(timestamp=at(0), **{HEART_RATE: 42.0}))

    await engine.run_cycle()

    on_assessment.assert_awaited_once()
    assert on_transition.await_count == 2
    on_incident.assert_awaited_once()


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_cycle() -> None:
    engine, _, _ = make_engine()
    engine.bus.subscribe(events.ASSESSMENT, AsyncMock(side_effect=RuntimeError("ui down")))
    engine.source.submit(build_raw_reading(timestamp=at(0)))

    assessments = await engine.run_cycle()

    assert len(assessments) == 1


@pytest.mark.asyncio
async def test_incidents_and_transitions_are_persisted() -> None:
    store = AsyncMock()
    engine, _, _ = make_engine(store=store)
    engine.source.submit(build_raw_reading(timestamp=at(0), **{HEART_RATE: 42.0}))

    await engine.run_cycle()
    await engine.drain_dispatches()

    # created, then annotated with the dispatch receipt
    assert store.save_incident.await_count == 2
    assert store.save_transition.await_count == 2


@pytest.mark.asyncio
async def test_pattern_cycle_is_advisory_only() -> None:
    engine, _, clock = make_engine()
    for i, heart_rate in enumerate([70.0, 76.0, 82.0, 88.0]):
        engine.source.submit(
            build_raw_reading(timestamp=at(i * 60), **{HEART_RATE: heart_rate})
        )
    await engine.run_cycle()
    clock.advance(180)
    tier_before = engine.escalation_state.tier
    incidents_before = engine.recent_incidents()

    alerts = await engine.run_pattern_cycle()

    assert any("Heart rate rising" in a.prediction for a in alerts)
    assert engine.predictive_alerts == alerts
    assert engine.escalation_state.tier == tier_before
    assert engine.recent_incidents() == incidents_before


@pytest.mark.asyncio
async def test_start_and_stop_run_the_evaluation_loop() -> None:
    engine, _, _ = make_engine(config=build_config(evaluation_interval_seconds=0.01))
    engine.source.submit(build_raw_reading(timestamp=at(0)))

    await engine.start()
    await asyncio.sleep(0.05)
    await engine.stop()

    assert engine.running is False
    assert engine.latest_assessment is not None
    assert engine.escalation_state.tier == EscalationTier.MONITORING


@pytest.mark.asyncio
async def test_evaluation_loop_survives_failing_cycle() -> None:
    engine, _, _ = make_engine(config=build_config(evaluation_interval_seconds=0.01))
    polls = {"count": 0}
    reading = build_raw_reading(timestamp=at(0))

    async def flaky_poll():
        polls["count"] += 1
        if polls["count"] == 1:
            raise RuntimeError("sensor bridge offline")
        return [reading] if polls["count"] == 2 else []

    engine.source.poll = flaky_poll

    await engine.start()
    await asyncio.sleep(0.05)
    await engine.stop()

    assert polls["count"] >= 2
    assert engine.latest_assessment is not None


def test_load_threshold_config(tmp_path) -> None:
    path = tmp_path / "thresholds.json"
    path.write_text(
        json.dumps(
            {
                "confidence_threshold": 0.9,
                "bounds": {"heart_rate": {"min": 45, "max": 110}},
            }
        ),
        encoding="utf-8",
    )

    config = load_threshold_config(str(path))

    assert config.confidence_threshold == 0.9
    assert config.bounds["heart_rate"].max == 110


def test_load_threshold_config_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "thresholds.json"
    path.write_text(json.dumps({"confidence_threshold": 4}), encoding="utf-8")

    assert load_threshold_config(str(path)) == build_config()
    assert load_threshold_config("") == build_config()


@pytest.mark.asyncio
async def test_escalation_windows_follow_engine_clock_when_device_lags() -> None:
    engine, _, clock = make_engine(
        config=build_config(auto_trigger_enabled=False, cooldown_seconds=300),
        clock=ManualClock(at(600)),
    )
    engine.source.submit(build_raw_reading(timestamp=at(0), **{MOTION_MAGNITUDE: 18.2}))
    await engine.run_cycle()
    state = await engine.clear_emergency("checked in")
    assert state.cooldown_until == at(900)

    clock.advance(400)
    engine.source.submit(build_raw_reading(timestamp=at(400), **{MOTION_MAGNITUDE: 18.2}))
    await engine.run_cycle()
    await engine.drain_dispatches()

    assert engine.escalation_state.tier == EscalationTier.CRITICAL
    incidents = engine.recent_incidents()
    assert len(incidents) == 2
    assert incidents[-1].resolved is False
    assert incidents[-1].timestamp == at(1000)


@pytest.mark.asyncio
async def test_stop_during_publish_still_dispatches_emergency() -> None:
    engine, dispatcher, _ = make_engine(
        config=build_config(evaluation_interval_seconds=0.01)
    )

    async def slow_subscriber(_assessment):
        await asyncio.sleep(10)

    engine.bus.subscribe(events.ASSESSMENT, slow_subscriber)
    engine.source.submit(build_raw_reading(timestamp=at(0), **{MOTION_MAGNITUDE: 18.2}))

    await engine.start()
    await asyncio.sleep(0.05)
    await engine.stop()
    await engine.drain_dispatches()

    assert engine.escalation_state.tier == EscalationTier.AUTO_TRIGGERED
    dispatcher.dispatch.assert_awaited_once()
    assert dispatcher.dispatch.await_args.args[0].urgency == Urgency.EMERGENCY
