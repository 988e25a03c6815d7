"""Shared-channel delivery via Teams and Slack incoming webhooks.

For these channels the recipient passed by the dispatcher is the system's
configured webhook URL.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from drift.payloads import NotificationPayload
from services.http_client import post_json

logger = logging.getLogger(__name__)

THEME_COLORS = {
    "CRITICAL": "FF0000",
    "HIGH": "FFA500",
}
DEFAULT_THEME_COLOR = "0078D4"


def render_teams_card(payload: NotificationPayload) -> dict[str, Any]:
    """Render a legacy Office 365 connector MessageCard."""
    return {
        "@type": "MessageCard",
        "@context": "http://schema.org/extensions",
        "summary": payload.title,
        "themeColor": THEME_COLORS.get(payload.severity, DEFAULT_THEME_COLOR),
        "sections": [
            {
                "activityTitle": payload.title,
                "activitySubtitle": f"{payload.system_name} may be impacted",
                "facts": [
                    {"name": "Source:", "value": payload.source_identifier},
                    {"name": "Severity:", "value": payload.severity},
                    {"name": "Changes:", "value": f"{len(payload.changes)} column changes"},
                    {"name": "System Type:", "value": payload.system_kind},
                ],
            },
            {
                "title": "Detected Changes:",
                "text": "\n".join(
                    f"- **{change.change_type}**: {change.column} ({change.severity})"
                    for change in payload.changes
                ),
            },
        ],
    }


def render_slack_message(payload: NotificationPayload) -> dict[str, Any]:
    """Render a Slack incoming-webhook message."""
    lines = [f"*{payload.title}*", f"Source: `{payload.source_identifier}`"]
    lines.append(f"Severity: {payload.severity} | Changes: {len(payload.changes)}")
    lines.extend(
        f"- {change.change_type} `{change.column}` ({change.severity}): {change.recommendation}"
        for change in payload.changes
    )
    return {"text": "\n".join(lines)}


class TeamsWebhookTransport:
    """Post MessageCards to a Teams channel webhook."""

    def __init__(self, *, client: httpx.AsyncClient | None = None):
        self._client = client

    async def send(self, recipient: str, payload: NotificationPayload) -> None:
        await post_json(recipient, render_teams_card(payload), client=self._client)
        logger.info("Teams card posted for %s", payload.system_name)


class SlackWebhookTransport:
    """Post messages to a Slack incoming webhook."""

    def __init__(self, *, client: httpx.AsyncClient | None = None):
        self._client = client

    async def send(self, recipient: str, payload: NotificationPayload) -> None:
        await post_json(recipient, render_slack_message(payload), client=self._client)
        logger.info("Slack message posted for %s", payload.system_name)
