"""Email delivery through an HTTP mail relay."""

from __future__ import annotations

import logging
from html import escape

import httpx

from config import settings
from drift.payloads import NotificationPayload
from services.http_client import post_json

logger = logging.getLogger(__name__)

SEVERITY_MARKERS = {
    "CRITICAL": "[CRITICAL]",
    "HIGH": "[HIGH]",
    "MEDIUM": "[MEDIUM]",
    "LOW": "[LOW]",
}

FOOTER = "This is an automated notification from the Healthcare Data Lineage System"


def render_email(sender: str, recipient: str, payload: NotificationPayload) -> dict[str, str]:
    """Render the relay request body for one recipient."""
    marker = SEVERITY_MARKERS.get(payload.severity, f"[{payload.severity}]")
    change_items = "".join(
        f"<li><strong>{escape(change.change_type)}:</strong> {escape(change.column)} "
        f"({escape(change.severity)})<br><em>{escape(change.recommendation)}</em></li>"
        for change in payload.changes
    )
    step_items = "".join(f"<li>{escape(step)}</li>" for step in payload.next_steps)
    html = (
        f"<h2>{escape(payload.title)}</h2>"
        f"<p>A schema change has been detected in <strong>{escape(payload.source_identifier)}"
        "</strong> that may impact your system.</p>"
        f"<p><strong>Affected system:</strong> {escape(payload.system_name)}<br>"
        f"<strong>Severity:</strong> {escape(payload.severity)}<br>"
        f"<strong>Changes:</strong> {len(payload.changes)} column changes detected</p>"
        f"<h4>Required actions</h4><ul>{change_items}</ul>"
        f"<p><strong>Next steps:</strong></p><ol>{step_items}</ol>"
        "<p>For immediate questions, please contact the Data Governance team.</p>"
        f"<hr><small>{FOOTER}</small>"
    )
    text = (
        f"{payload.title}\n\n"
        f"Source: {payload.source_identifier}\n"
        f"Severity: {payload.severity}\n"
        f"Changes: {len(payload.changes)} detected\n\n"
        "Please review and take appropriate action."
    )
    return {
        "from": sender,
        "to": recipient,
        "subject": f"{marker} {payload.title}",
        "html": html,
        "text": text,
    }


class EmailRelayTransport:
    """Send notification emails by POSTing to a mail relay endpoint."""

    def __init__(
        self,
        relay_url: str | None = None,
        sender: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ):
        self.relay_url = relay_url or settings.email.relay_url
        self.sender = sender or settings.email.sender
        self._client = client

    async def send(self, recipient: str, payload: NotificationPayload) -> None:
        """Deliver one email; raises ChannelSendFailure on relay errors."""
        body = render_email(self.sender, recipient, payload)
        await post_json(self.relay_url, body, client=self._client)
        logger.info("Email relayed to %s: %s", recipient, body["subject"])
