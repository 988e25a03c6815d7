"""Fan drift events out to stakeholder systems across notification channels."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping

from config import settings
from drift.audit import AuditTrailRecorder
from drift.dependencies import DependencyResolver
from drift.errors import ChannelSendFailure, TimeoutExceeded
from drift.escalation import EscalationPolicy
from drift.payloads import (
    NotificationPayload,
    build_escalation_payload,
    build_notification_payload,
)
from drift.retry_policy import (
    RetryPolicy,
    compute_backoff_delay_seconds,
    resolve_retry_policy,
    should_retry,
)
from drift.transports import ChannelTransport
from drift.types import EMAIL, DriftEvent, NotificationRecord, NotificationStatus

logger = logging.getLogger(__name__)

ESCALATION_SYSTEM_NAME = "Data Governance Escalation"

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class DispatchConfig:
    """Worker pool size, per-send timeout and retry budget."""

    max_concurrency: int = 4
    send_timeout_seconds: float = 5.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @staticmethod
    def from_settings() -> "DispatchConfig":
        """Build dispatch configuration from settings."""
        return DispatchConfig(
            max_concurrency=int(settings.dispatch.max_concurrency),
            send_timeout_seconds=float(settings.dispatch.send_timeout_seconds),
            retry=RetryPolicy.from_settings(),
        )


@dataclass(frozen=True)
class SendRequest:
    """A single planned send to one recipient on one channel."""

    channel: str
    recipient: str
    system_name: str
    payload: NotificationPayload
    escalation: bool = False


class NotificationDispatcher:
    """Send drift notifications with bounded parallelism and isolated failures."""

    def __init__(
        self,
        resolver: DependencyResolver,
        policy: EscalationPolicy,
        recorder: AuditTrailRecorder,
        transports: Mapping[str, ChannelTransport],
        config: DispatchConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher with its collaborators."""
        self._resolver = resolver
        self._policy = policy
        self._recorder = recorder
        self._transports = dict(transports)
        self._config = config or DispatchConfig.from_settings()
        self._retry = resolve_retry_policy(self._config.retry)
        if self._config.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1.")
        if self._config.send_timeout_seconds <= 0:
            raise ValueError("send_timeout_seconds must be > 0.")
        self._sleep = sleep
        self._semaphore: asyncio.Semaphore | None = None
        self._semaphore_loop: asyncio.AbstractEventLoop | None = None

    def plan(self, event: DriftEvent) -> list[SendRequest]:
        """Return the sends required for an event; raises UnknownSeverity."""
        requests, _skipped = self._plan(event)
        return requests

    def _plan(self, event: DriftEvent) -> tuple[list[SendRequest], list[tuple[str, str]]]:
        """Return planned sends and the (system, reason) pairs left without any."""
        channels = self._policy.channels_for(event.severity)
        requests: list[SendRequest] = []
        skipped: list[tuple[str, str]] = []
        for system in self._resolver.affected_systems(event.source_type):
            system_channels = [
                channel for channel in channels if channel in system.preferred_channels
            ]
            if not system_channels:
                logger.warning(
                    "System %s prefers none of %s for severity=%s.",
                    system.name,
                    channels,
                    event.severity.name,
                )
                skipped.append((system.name, f"no preferred channel among {', '.join(channels)}"))
                continue
            payload = build_notification_payload(event, system)
            planned = len(requests)
            for channel in system_channels:
                recipients = tuple(dict.fromkeys(system.recipients_for(channel)))
                if not recipients:
                    logger.warning("System %s has no %s recipients.", system.name, channel)
                for recipient in recipients:
                    requests.append(
                        SendRequest(
                            channel=channel,
                            recipient=recipient,
                            system_name=system.name,
                            payload=payload,
                        )
                    )
            if len(requests) == planned:
                skipped.append((system.name, f"no recipients on {', '.join(system_channels)}"))
        return requests, skipped

    async def dispatch(self, event: DriftEvent) -> int:
        """Notify every affected stakeholder and return the records created."""
        if not event.has_drift:
            logger.debug("Skipping dispatch for source=%s without drift.", event.source_identifier)
            return 0
        requests, skipped = self._plan(event)
        self._ensure_recorded(event)
        for system_name, reason in skipped:
            self._recorder.record_skipped_system(event.event_id, system_name, reason)
        created = await self._send_all(event, requests)
        logger.info(
            "Dispatched source=%s severity=%s notifications=%d.",
            event.source_identifier,
            event.severity.name,
            created,
        )
        return created

    async def escalate(self, event: DriftEvent) -> int:
        """Notify the escalation contacts for an unresolved event."""
        _delay, contacts = self._policy.escalation(event.severity)
        payload = build_escalation_payload(event, ESCALATION_SYSTEM_NAME)
        requests = [
            SendRequest(
                channel=EMAIL,
                recipient=contact,
                system_name=ESCALATION_SYSTEM_NAME,
                payload=payload,
                escalation=True,
            )
            for contact in dict.fromkeys(contacts)
        ]
        self._ensure_recorded(event)
        return await self._send_all(event, requests)

    def acknowledge(self, notification_id: str) -> NotificationRecord:
        """Record an external acknowledgment for a sent notification."""
        return self._recorder.acknowledge(notification_id)

    def _ensure_recorded(self, event: DriftEvent) -> None:
        """Record the event first so notifications never reference unknown events."""
        if self._recorder.get_event(event.event_id) is None:
            self._recorder.record_event(event)

    async def _send_all(self, event: DriftEvent, requests: list[SendRequest]) -> int:
        """Run every send concurrently and record results in plan order."""
        if not requests:
            return 0
        semaphore = self._get_semaphore()
        tasks = [
            asyncio.create_task(self._send_one(event, request, semaphore))
            for request in requests
        ]
        try:
            records = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            # Interrupted sends record themselves; keep the ones that finished.
            finished = [task for task in tasks if task.done() and not task.cancelled()]
            for task in finished:
                self._recorder.record_notification(task.result())
            logger.warning(
                "Dispatch cancelled source=%s after %d of %d sends.",
                event.source_identifier,
                len(finished),
                len(tasks),
            )
            raise
        for record in records:
            self._recorder.record_notification(record)
        return len(records)

    async def _send_one(
        self,
        event: DriftEvent,
        request: SendRequest,
        semaphore: asyncio.Semaphore,
    ) -> NotificationRecord:
        """Send one notification within the retry budget; never raises a send error."""
        transport = self._transports.get(request.channel)
        if transport is None:
            logger.error("No transport configured for channel=%s.", request.channel)
            return self._build_record(
                event, request, NotificationStatus.FAILED, attempts=0, reason="no_transport"
            )

        attempts = 0
        try:
            while True:
                attempts += 1
                try:
                    async with semaphore:
                        await asyncio.wait_for(
                            transport.send(request.recipient, request.payload),
                            timeout=self._config.send_timeout_seconds,
                        )
                    return self._build_record(
                        event, request, NotificationStatus.SENT, attempts=attempts
                    )
                except asyncio.TimeoutError:
                    failure: ChannelSendFailure = TimeoutExceeded(
                        f"{request.channel} send to {request.recipient} timed out after "
                        f"{self._config.send_timeout_seconds}s"
                    )
                except ChannelSendFailure as exc:
                    failure = exc
                except Exception as exc:
                    logger.exception(
                        "Unexpected transport error channel=%s recipient=%s.",
                        request.channel,
                        request.recipient,
                    )
                    failure = ChannelSendFailure(str(exc), reason="unexpected_error")

                logger.warning(
                    "Send failed channel=%s recipient=%s attempt=%d reason=%s: %s",
                    request.channel,
                    request.recipient,
                    attempts,
                    failure.reason,
                    failure,
                )
                if not should_retry(attempts, self._retry.max_attempts):
                    return self._build_record(
                        event,
                        request,
                        NotificationStatus.FAILED,
                        attempts=attempts,
                        reason=failure.reason,
                    )
                await self._sleep(
                    compute_backoff_delay_seconds(
                        self._retry.backoff_strategy,
                        attempts,
                        self._retry.backoff_base_seconds,
                    )
                )
        except asyncio.CancelledError:
            self._recorder.record_notification(
                self._build_record(
                    event,
                    request,
                    NotificationStatus.FAILED,
                    attempts=attempts,
                    reason="cancelled",
                )
            )
            raise

    def _build_record(
        self,
        event: DriftEvent,
        request: SendRequest,
        status: NotificationStatus,
        *,
        attempts: int,
        reason: str | None = None,
    ) -> NotificationRecord:
        return NotificationRecord(
            drift_event_id=event.event_id,
            channel=request.channel,
            recipient=request.recipient,
            system_name=request.system_name,
            source_identifier=event.source_identifier,
            status=status,
            reason=reason,
            attempts=attempts,
            escalation=request.escalation,
        )

    def _get_semaphore(self) -> asyncio.Semaphore:
        """Return the worker-pool semaphore bound to the running loop."""
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self._config.max_concurrency)
            self._semaphore_loop = loop
        return self._semaphore
