"""Unit tests for reviewer decisions on column changes."""

from __future__ import annotations

import asyncio

import pytest

from drift.audit import AuditTrailRecorder
from drift.dependencies import DependencyResolver
from drift.detector import detect_drift
from drift.dispatcher import NotificationDispatcher
from drift.escalation import EscalationPolicy, EscalationScheduler
from drift.events import CollectingEventSink, DomainEventType, EventBus
from drift.review import ChangeReview
from drift.types import (
    EMAIL,
    DriftEvent,
    NotificationStatus,
    ObservedSchema,
    ResolutionStatus,
)
from drift_testkit import (
    GatedTransport,
    ManualSleep,
    default_rules,
    fast_dispatch_config,
    make_baseline,
    make_system,
    no_sleep,
    wait_until,
)


def _recorded_event(recorder: AuditTrailRecorder, columns: tuple[str, ...]) -> DriftEvent:
    observed = ObservedSchema("claims_2024_07_25.csv", "claims", columns)
    event = detect_drift(observed, make_baseline())
    recorder.record_event(event)
    return event


def test_approve_reject_and_flag() -> None:
    """Ensure each decision sets the matching resolution status."""
    recorder = AuditTrailRecorder()
    review = ChangeReview(recorder)
    event = _recorded_event(recorder, ("claim_id", "amount", "prior_auth_code", "notes"))

    approved = review.approve(event.event_id, "prior_auth_code")
    assert approved.resolution_status == ResolutionStatus.APPROVED
    assert review.reject(event.event_id, "notes").resolution_status == ResolutionStatus.REJECTED
    flagged = review.flag_for_review(event.event_id, "patient_id")
    assert flagged.resolution_status == ResolutionStatus.UNDER_REVIEW
    assert event.is_resolved is False


def test_report_reflects_current_resolution() -> None:
    """Ensure reports capture resolution status at generation time."""
    recorder = AuditTrailRecorder()
    review = ChangeReview(recorder)
    event = _recorded_event(recorder, ("claim_id", "amount"))

    before = recorder.build_report().drift_events[0]["changes"][0]["resolutionStatus"]
    review.approve(event.event_id, "patient_id")
    after = recorder.build_report().drift_events[0]["changes"][0]["resolutionStatus"]

    assert (before, after) == ("PENDING", "APPROVED")


def test_unknown_event_or_column_rejected() -> None:
    """Ensure decisions must target a recorded change."""
    recorder = AuditTrailRecorder()
    review = ChangeReview(recorder)
    event = _recorded_event(recorder, ("claim_id", "amount"))

    with pytest.raises(ValueError, match="Unknown drift event"):
        review.approve("missing", "patient_id")
    with pytest.raises(ValueError, match="amount"):
        review.approve(event.event_id, "amount")


def test_resolution_publishes_event() -> None:
    """Ensure decisions are published with the transition detail."""
    bus = EventBus()
    sink = CollectingEventSink()
    bus.subscribe(sink)
    recorder = AuditTrailRecorder()
    review = ChangeReview(recorder, events=bus)
    event = _recorded_event(recorder, ("claim_id", "amount"))

    review.reject(event.event_id, "patient_id")

    resolved = sink.of_type(DomainEventType.CHANGE_RESOLVED)
    assert len(resolved) == 1
    assert resolved[0].detail == {"column": "patient_id", "from": "PENDING", "to": "REJECTED"}
    assert resolved[0].drift_event is event


@pytest.mark.asyncio
async def test_resolving_every_change_cancels_escalation() -> None:
    """Ensure a fully resolved event no longer escalates."""
    fired: list[str] = []

    async def _fire(event: DriftEvent) -> int:
        fired.append(event.event_id)
        return 1

    sleep = ManualSleep()
    scheduler = EscalationScheduler(EscalationPolicy(default_rules()), _fire, sleep=sleep)
    recorder = AuditTrailRecorder()
    review = ChangeReview(recorder, scheduler)
    event = _recorded_event(recorder, ("claim_id", "amount", "prior_auth_code"))
    scheduler.schedule(event)
    await asyncio.sleep(0)

    review.approve(event.event_id, "prior_auth_code")
    assert scheduler.is_pending(event.event_id)
    review.reject(event.event_id, "patient_id")

    assert not scheduler.is_pending(event.event_id)
    sleep.release()
    await asyncio.sleep(0)
    assert fired == []


@pytest.mark.asyncio
async def test_under_review_keeps_escalation_pending() -> None:
    """Ensure flagging a change does not stop escalation."""

    async def _fire(_event: DriftEvent) -> int:
        return 0

    scheduler = EscalationScheduler(
        EscalationPolicy(default_rules()), _fire, sleep=ManualSleep()
    )
    recorder = AuditTrailRecorder()
    review = ChangeReview(recorder, scheduler)
    event = _recorded_event(recorder, ("claim_id", "amount"))
    scheduler.schedule(event)

    review.flag_for_review(event.event_id, "patient_id")

    assert scheduler.is_pending(event.event_id)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_approval_during_escalation_sends_keeps_every_record() -> None:
    """Ensure resolving while escalation emails are in flight loses no delivery."""
    policy = EscalationPolicy(default_rules())
    recorder = AuditTrailRecorder()
    transport = GatedTransport({"cio@example.com"})
    dispatcher = NotificationDispatcher(
        DependencyResolver([make_system("Dashboard")], {"claims": ["Dashboard"]}),
        policy,
        recorder,
        {EMAIL: transport},
        fast_dispatch_config(timeout=5.0),
    )
    scheduler = EscalationScheduler(policy, dispatcher.escalate, sleep=no_sleep)
    review = ChangeReview(recorder, scheduler)
    event = _recorded_event(recorder, ("claim_id", "amount"))
    scheduler.schedule(event)
    await wait_until(lambda: transport.sent == ["cto@example.com"])

    review.approve(event.event_id, "patient_id")
    assert event.is_resolved
    assert scheduler.is_pending(event.event_id)
    transport.gate.set()
    await scheduler.wait(event.event_id)

    escalations = [record for record in recorder.notifications() if record.escalation]
    assert [record.recipient for record in escalations] == [
        "cto@example.com",
        "cio@example.com",
    ]
    assert {record.status for record in escalations} == {NotificationStatus.SENT}
