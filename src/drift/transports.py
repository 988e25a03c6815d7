"""Transport interface used by the dispatcher for each notification channel."""

from __future__ import annotations

import logging
from typing import Protocol

from drift.payloads import NotificationPayload

logger = logging.getLogger(__name__)


class ChannelTransport(Protocol):
    """Deliver a rendered payload to one recipient on one channel.

    Implementations raise ``ChannelSendFailure`` when delivery fails.
    """

    async def send(self, recipient: str, payload: NotificationPayload) -> None:
        """Send a payload to a recipient."""


class LoggingTransport:
    """Dry-run transport that logs instead of sending."""

    def __init__(self, channel: str) -> None:
        self.channel = channel

    async def send(self, recipient: str, payload: NotificationPayload) -> None:
        logger.info(
            "Dry run %s to %s: %s (%s, %d changes)",
            self.channel,
            recipient,
            payload.title,
            payload.severity,
            len(payload.changes),
        )
