"""Unit tests for email, Teams and Slack transports."""

from __future__ import annotations

import json
import logging

import httpx
import pytest

from drift.detector import detect_drift
from drift.errors import ChannelSendFailure
from drift.payloads import NotificationPayload, build_escalation_payload, build_notification_payload
from drift.transports import LoggingTransport
from drift.types import ObservedSchema, SystemKind
from drift_testkit import make_baseline, make_system
from services.email_relay import FOOTER, EmailRelayTransport, render_email
from services.webhooks import (
    DEFAULT_THEME_COLOR,
    SlackWebhookTransport,
    TeamsWebhookTransport,
    render_slack_message,
    render_teams_card,
)

RELAY_URL = "http://relay.test/send"
TEAMS_URL = "https://teams.example.com/hook/analytics"


def _payload(columns: tuple[str, ...] = ("claim_id", "amount")) -> NotificationPayload:
    event = detect_drift(
        ObservedSchema("claims_2024_07_25.csv", "claims", columns), make_baseline()
    )
    system = make_system("Claims <Dashboard>", kind=SystemKind.BI_REPORT)
    return build_notification_payload(event, system)


class _Capture:
    """Mock transport handler recording requests."""

    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status)

    def body(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


def test_render_email_subject_and_escaping() -> None:
    """Ensure the subject carries the severity marker and HTML is escaped."""
    body = render_email("gov@example.com", "owner@example.com", _payload())

    assert body["subject"] == "[CRITICAL] Schema Drift Alert: Claims <Dashboard> Impact"
    assert body["from"] == "gov@example.com"
    assert body["to"] == "owner@example.com"
    assert "Claims &lt;Dashboard&gt;" in body["html"]
    assert "<strong>REMOVED:</strong> patient_id" in body["html"]
    assert "Assess impact on your bi report" in body["html"]
    assert FOOTER in body["html"]
    assert "Severity: CRITICAL" in body["text"]


@pytest.mark.asyncio
async def test_email_transport_posts_to_relay() -> None:
    """Ensure one relay request is posted per recipient."""
    capture = _Capture()
    async with httpx.AsyncClient(transport=httpx.MockTransport(capture)) as client:
        transport = EmailRelayTransport(RELAY_URL, "gov@example.com", client=client)
        await transport.send("owner@example.com", _payload())

    assert str(capture.requests[0].url) == RELAY_URL
    assert capture.body()["to"] == "owner@example.com"


@pytest.mark.asyncio
async def test_email_transport_defaults_from_settings() -> None:
    """Ensure the relay endpoint falls back to settings."""
    transport = EmailRelayTransport()

    assert transport.relay_url
    assert transport.sender


@pytest.mark.asyncio
async def test_email_relay_failure_raises() -> None:
    """Ensure relay rejections surface as channel failures."""
    capture = _Capture(status=502)
    async with httpx.AsyncClient(transport=httpx.MockTransport(capture)) as client:
        transport = EmailRelayTransport(RELAY_URL, client=client)
        with pytest.raises(ChannelSendFailure) as excinfo:
            await transport.send("owner@example.com", _payload())

    assert excinfo.value.reason == "http_502"


def test_teams_card_layout() -> None:
    """Ensure the MessageCard carries theme color and facts."""
    card = render_teams_card(_payload())

    assert card["@type"] == "MessageCard"
    assert card["themeColor"] == "FF0000"
    facts = {fact["name"]: fact["value"] for fact in card["sections"][0]["facts"]}
    assert facts == {
        "Source:": "claims_2024_07_25.csv",
        "Severity:": "CRITICAL",
        "Changes:": "1 column changes",
        "System Type:": "BI_REPORT",
    }
    assert card["sections"][1]["text"] == "- **REMOVED**: patient_id (CRITICAL)"


def test_teams_card_default_color_for_low() -> None:
    """Ensure non-urgent severities use the default theme color."""
    card = render_teams_card(_payload(("claim_id", "patient_id", "amount", "memo")))

    assert card["themeColor"] == DEFAULT_THEME_COLOR


@pytest.mark.asyncio
async def test_teams_transport_posts_to_webhook() -> None:
    """Ensure the recipient is used as the webhook URL."""
    capture = _Capture()
    async with httpx.AsyncClient(transport=httpx.MockTransport(capture)) as client:
        await TeamsWebhookTransport(client=client).send(TEAMS_URL, _payload())

    assert str(capture.requests[0].url) == TEAMS_URL
    assert capture.body()["summary"] == "Schema Drift Alert: Claims <Dashboard> Impact"


@pytest.mark.asyncio
async def test_slack_transport_posts_text() -> None:
    """Ensure Slack receives a text message listing each change."""
    capture = _Capture()
    async with httpx.AsyncClient(transport=httpx.MockTransport(capture)) as client:
        await SlackWebhookTransport(client=client).send("https://slack.test/hook", _payload())

    text = capture.body()["text"]
    assert text.startswith("*Schema Drift Alert")
    assert "- REMOVED `patient_id` (CRITICAL)" in text
    assert render_slack_message(_payload()) == capture.body()


def test_escalation_payload_is_flagged() -> None:
    """Ensure escalation payloads are distinguishable from first notices."""
    event = detect_drift(
        ObservedSchema("claims_2024_07_25.csv", "claims", ("claim_id", "amount")), make_baseline()
    )

    payload = build_escalation_payload(event, "Data Governance Escalation")

    assert payload.escalation is True
    assert payload.title.startswith("ESCALATION: Unresolved CRITICAL")
    assert payload.as_dict()["changes"][0]["column"] == "patient_id"


@pytest.mark.asyncio
async def test_logging_transport_dry_run(caplog: pytest.LogCaptureFixture) -> None:
    """Ensure the dry-run transport only logs."""
    caplog.set_level(logging.INFO, logger="drift.transports")

    await LoggingTransport("email").send("owner@example.com", _payload())

    assert "Dry run email to owner@example.com" in caplog.text
