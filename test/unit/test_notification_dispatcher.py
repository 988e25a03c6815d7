"""Unit tests for concurrent notification dispatch."""

from __future__ import annotations

import asyncio

import pytest

from drift.audit import AuditTrailRecorder
from drift.dependencies import DependencyResolver
from drift.detector import detect_drift
from drift.dispatcher import ESCALATION_SYSTEM_NAME, NotificationDispatcher
from drift.errors import TimeoutExceeded, UnknownSeverity
from drift.escalation import EscalationPolicy
from drift.types import (
    EMAIL,
    SLACK,
    TEAMS,
    DriftEvent,
    NotificationStatus,
    ObservedSchema,
    Severity,
)
from drift_testkit import (
    FailingTransport,
    HangingTransport,
    RecordingTransport,
    default_rules,
    fast_dispatch_config,
    make_baseline,
    make_system,
    wait_until,
)

TEAMS_URL = "https://teams.example.com/hook/a"


def _systems():
    return [
        make_system(
            "Dashboard",
            ("a1@example.com", "a2@example.com"),
            channels=(EMAIL, TEAMS),
            targets={TEAMS: TEAMS_URL},
        ),
        make_system(
            "API",
            ("b1@example.com",),
            channels=(EMAIL, SLACK),
            targets={SLACK: "https://slack.example.com/x"},
        ),
        make_system(
            "Teams Only",
            ("c1@example.com",),
            channels=(TEAMS,),
            targets={TEAMS: "https://teams.example.com/hook/c"},
        ),
        make_system("Providers", ("d1@example.com",), dependencies=("providers",)),
    ]


def _event(columns: tuple[str, ...]) -> DriftEvent:
    observed = ObservedSchema("claims_2024_07_25.csv", "claims", columns)
    return detect_drift(observed, make_baseline())


LOW_COLUMNS = ("claim_id", "patient_id", "amount", "prior_auth_code")
CRITICAL_COLUMNS = ("claim_id", "amount")


def _dispatcher(transports, recorder=None, **config_kwargs):
    systems = _systems()
    resolver = DependencyResolver(
        systems,
        {"claims": ["Dashboard", "API", "Teams Only"], "providers": ["Providers"]},
    )
    recorder = recorder or AuditTrailRecorder()
    dispatcher = NotificationDispatcher(
        resolver,
        EscalationPolicy(default_rules()),
        recorder,
        transports,
        fast_dispatch_config(**config_kwargs),
    )
    return dispatcher, recorder


@pytest.mark.asyncio
async def test_low_severity_notifies_email_owners_only() -> None:
    """Ensure LOW drift reaches each owner of email-preferring systems once."""
    email = RecordingTransport()
    teams = RecordingTransport()
    dispatcher, recorder = _dispatcher({EMAIL: email, TEAMS: teams})

    created = await dispatcher.dispatch(_event(LOW_COLUMNS))

    assert created == 3
    assert sorted(email.recipients) == ["a1@example.com", "a2@example.com", "b1@example.com"]
    assert teams.sent == []
    records = recorder.notifications()
    assert {record.status for record in records} == {NotificationStatus.SENT}
    assert {record.system_name for record in records} == {"Dashboard", "API"}


@pytest.mark.asyncio
async def test_critical_record_count_matches_channels_and_owners() -> None:
    """Ensure records equal the sum over systems of owners per selected channel."""
    email = RecordingTransport()
    teams = RecordingTransport()
    dispatcher, recorder = _dispatcher({EMAIL: email, TEAMS: teams})
    event = _event(CRITICAL_COLUMNS)

    created = await dispatcher.dispatch(event)

    # Dashboard: 2 email + 1 teams; API: 1 email (slack not in tier); Teams Only: 1 teams.
    assert created == 5
    assert len(recorder.notifications()) == 5
    assert sorted(teams.recipients) == [TEAMS_URL, "https://teams.example.com/hook/c"]
    assert recorder.get_event(event.event_id) is event
    assert all(record.drift_event_id == event.event_id for record in recorder.notifications())


@pytest.mark.asyncio
async def test_plan_preserves_system_order() -> None:
    """Ensure records are recorded in plan order regardless of completion order."""
    dispatcher, recorder = _dispatcher({EMAIL: RecordingTransport(), TEAMS: RecordingTransport()})
    event = _event(CRITICAL_COLUMNS)

    plan = dispatcher.plan(event)
    await dispatcher.dispatch(event)

    assert [(r.system_name, r.channel, r.recipient) for r in plan] == [
        (n.system_name, n.channel, n.recipient) for n in recorder.notifications()
    ]


@pytest.mark.asyncio
async def test_failed_send_is_recorded_and_isolated() -> None:
    """Ensure one failing recipient does not block the others."""
    email = FailingTransport({"a2@example.com"})
    dispatcher, recorder = _dispatcher({EMAIL: email, TEAMS: RecordingTransport()})

    created = await dispatcher.dispatch(_event(LOW_COLUMNS))

    assert created == 3
    by_recipient = {record.recipient: record for record in recorder.notifications()}
    assert by_recipient["a2@example.com"].status == NotificationStatus.FAILED
    assert by_recipient["a2@example.com"].reason == "http_503"
    assert by_recipient["a1@example.com"].status == NotificationStatus.SENT
    assert sorted(email.sent) == ["a1@example.com", "b1@example.com"]


@pytest.mark.asyncio
async def test_transient_failure_retried_within_budget() -> None:
    """Ensure a retry turns a transient failure into a single SENT record."""
    email = FailingTransport({"a1@example.com"}, failures_before_success=1)
    dispatcher, recorder = _dispatcher({EMAIL: email}, max_attempts=2)

    await dispatcher.dispatch(_event(LOW_COLUMNS))

    record = next(r for r in recorder.notifications() if r.recipient == "a1@example.com")
    assert record.status == NotificationStatus.SENT
    assert record.attempts == 2
    assert email.calls.count("a1@example.com") == 2
    assert len(recorder.notifications()) == 3


@pytest.mark.asyncio
async def test_retry_budget_exhausted() -> None:
    """Ensure sends stop after max attempts and record FAILED."""
    email = FailingTransport({"b1@example.com"})
    dispatcher, recorder = _dispatcher({EMAIL: email}, max_attempts=3)

    await dispatcher.dispatch(_event(LOW_COLUMNS))

    record = next(r for r in recorder.notifications() if r.recipient == "b1@example.com")
    assert record.status == NotificationStatus.FAILED
    assert record.attempts == 3


@pytest.mark.asyncio
async def test_hanging_send_times_out() -> None:
    """Ensure a send that never completes is recorded as a timeout."""
    email = HangingTransport({"a1@example.com"})
    dispatcher, recorder = _dispatcher({EMAIL: email}, timeout=0.05)

    await asyncio.wait_for(dispatcher.dispatch(_event(LOW_COLUMNS)), timeout=5)

    record = next(r for r in recorder.notifications() if r.recipient == "a1@example.com")
    assert record.status == NotificationStatus.FAILED
    assert record.reason == TimeoutExceeded.reason
    assert sorted(email.sent) == ["a2@example.com", "b1@example.com"]


@pytest.mark.asyncio
async def test_unexpected_transport_error_is_recorded() -> None:
    """Ensure arbitrary transport exceptions become FAILED records."""
    email = FailingTransport({"a1@example.com"}, error=RuntimeError("boom"))
    dispatcher, recorder = _dispatcher({EMAIL: email})

    await dispatcher.dispatch(_event(LOW_COLUMNS))

    record = next(r for r in recorder.notifications() if r.recipient == "a1@example.com")
    assert record.reason == "unexpected_error"


@pytest.mark.asyncio
async def test_missing_transport_records_failure() -> None:
    """Ensure channels without a transport are recorded without attempts."""
    dispatcher, recorder = _dispatcher({EMAIL: RecordingTransport()})

    await dispatcher.dispatch(_event(CRITICAL_COLUMNS))

    teams_records = [r for r in recorder.notifications() if r.channel == TEAMS]
    assert len(teams_records) == 2
    assert {(r.status, r.reason, r.attempts) for r in teams_records} == {
        (NotificationStatus.FAILED, "no_transport", 0)
    }


@pytest.mark.asyncio
async def test_no_drift_dispatches_nothing() -> None:
    """Ensure events without changes are neither recorded nor sent."""
    email = RecordingTransport()
    dispatcher, recorder = _dispatcher({EMAIL: email})

    created = await dispatcher.dispatch(_event(("claim_id", "patient_id", "amount")))

    assert created == 0
    assert email.sent == []
    assert recorder.drift_events() == []


@pytest.mark.asyncio
async def test_concurrency_is_bounded() -> None:
    """Ensure no more sends run at once than the worker pool allows."""
    active = 0
    peak = 0

    class _SlowTransport:
        async def send(self, recipient, payload) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    dispatcher, _recorder = _dispatcher(
        {EMAIL: _SlowTransport(), TEAMS: _SlowTransport()}, max_concurrency=2
    )

    await dispatcher.dispatch(_event(CRITICAL_COLUMNS))

    assert peak == 2


def test_unknown_severity_blocks_planning() -> None:
    """Ensure events whose severity has no rule cannot be planned."""
    policy = EscalationPolicy(default_rules())
    event = _event(LOW_COLUMNS)
    event.changes[0].severity = "SEVERE"  # type: ignore[assignment]
    dispatcher = NotificationDispatcher(
        DependencyResolver(_systems(), {"claims": ["Dashboard"]}),
        policy,
        AuditTrailRecorder(),
        {EMAIL: RecordingTransport()},
        fast_dispatch_config(),
    )

    with pytest.raises(UnknownSeverity):
        dispatcher.plan(event)


@pytest.mark.asyncio
async def test_escalate_emails_contacts() -> None:
    """Ensure escalation sends to the tier contacts and is flagged in the trail."""
    email = RecordingTransport()
    dispatcher, recorder = _dispatcher({EMAIL: email, TEAMS: RecordingTransport()})
    event = _event(CRITICAL_COLUMNS)
    await dispatcher.dispatch(event)

    sent = await dispatcher.escalate(event)

    assert sent == 2
    escalations = [r for r in recorder.notifications() if r.escalation]
    assert [r.recipient for r in escalations] == ["cto@example.com", "cio@example.com"]
    assert {r.system_name for r in escalations} == {ESCALATION_SYSTEM_NAME}
    assert email.sent[-1][1].escalation is True
    assert event.severity == Severity.CRITICAL


@pytest.mark.asyncio
async def test_acknowledge_updates_record() -> None:
    """Ensure acknowledgment is recorded against the original notification."""
    dispatcher, recorder = _dispatcher({EMAIL: RecordingTransport()})
    await dispatcher.dispatch(_event(LOW_COLUMNS))
    first = recorder.notifications()[0]

    updated = dispatcher.acknowledge(first.notification_id)

    assert updated.acknowledged is True
    assert updated.status == NotificationStatus.ACKNOWLEDGED
    assert recorder.notifications()[0] == updated


@pytest.mark.asyncio
async def test_cancelled_dispatch_records_finished_and_interrupted_sends() -> None:
    """Ensure cancelling mid-dispatch still leaves one record per send."""
    email = HangingTransport({"a1@example.com"})
    dispatcher, recorder = _dispatcher({EMAIL: email}, timeout=5.0)
    task = asyncio.create_task(dispatcher.dispatch(_event(LOW_COLUMNS)))
    await wait_until(lambda: len(email.sent) == 2)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    by_recipient = {record.recipient: record for record in recorder.notifications()}
    assert len(recorder.notifications()) == 3
    assert by_recipient["a2@example.com"].status == NotificationStatus.SENT
    assert by_recipient["b1@example.com"].status == NotificationStatus.SENT
    assert by_recipient["a1@example.com"].status == NotificationStatus.FAILED
    assert by_recipient["a1@example.com"].reason == "cancelled"


@pytest.mark.asyncio
async def test_systems_without_matching_channel_appear_in_report() -> None:
    """Ensure an affected system left without notifications is visible in the report."""
    dispatcher, recorder = _dispatcher({EMAIL: RecordingTransport(), TEAMS: RecordingTransport()})

    await dispatcher.dispatch(_event(LOW_COLUMNS))

    entry = recorder.build_report().drift_events[0]
    assert entry["skippedSystems"] == [
        {"system": "Teams Only", "reason": "no preferred channel among email"}
    ]
    assert "Teams Only" not in {record.system_name for record in recorder.notifications()}
