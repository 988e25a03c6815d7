"""Severity-driven escalation policy and deferred escalation timers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Iterable

from drift.errors import ConfigurationError, UnknownSeverity
from drift.events import DomainEvent, DomainEventType, EventBus
from drift.types import SUPPORTED_CHANNELS, DriftEvent, EscalationRule, Severity

logger = logging.getLogger(__name__)

EscalationFire = Callable[[DriftEvent], Awaitable[int]]
Sleep = Callable[[float], Awaitable[None]]


class EscalationPolicy:
    """Table of immediate channels and escalation behavior per severity."""

    def __init__(self, rules: Iterable[EscalationRule]) -> None:
        """Index rules by severity; every tier must be present exactly once."""
        self._rules: dict[Severity, EscalationRule] = {}
        for rule in rules:
            if rule.severity in self._rules:
                raise ConfigurationError(f"Duplicate escalation rule for {rule.severity.name}.")
            unsupported = [c for c in rule.immediate_channels if c not in SUPPORTED_CHANNELS]
            if unsupported:
                raise ConfigurationError(
                    f"Escalation rule {rule.severity.name} uses unsupported channels: "
                    f"{', '.join(unsupported)}"
                )
            if rule.escalate_after_minutes < 0:
                raise ConfigurationError(
                    f"Escalation delay for {rule.severity.name} must be >= 0 minutes."
                )
            self._rules[rule.severity] = rule
        missing = [severity.name for severity in Severity if severity not in self._rules]
        if missing:
            raise ConfigurationError(f"Escalation table missing tiers: {', '.join(missing)}")

    def rule(self, severity: Severity | str) -> EscalationRule:
        """Return the rule for a severity, failing closed on unknown values."""
        parsed = Severity.parse(severity)
        rule = self._rules.get(parsed)
        if rule is None:
            raise UnknownSeverity(f"No escalation rule for severity: {severity!r}")
        return rule

    def channels_for(self, severity: Severity | str) -> list[str]:
        """Return the channels notified immediately for a severity."""
        return list(self.rule(severity).immediate_channels)

    def escalation(self, severity: Severity | str) -> tuple[int, list[str]]:
        """Return the escalation delay in minutes and the escalation contacts."""
        rule = self.rule(severity)
        return rule.escalate_after_minutes, list(rule.escalation_contacts)


@dataclass(frozen=True)
class ScheduledEscalation:
    """A pending escalation for one drift event."""

    drift_event_id: str
    severity: Severity
    delay: timedelta
    contacts: tuple[str, ...]


class EscalationScheduler:
    """Run deferred, cancellable escalations for unresolved drift events."""

    def __init__(
        self,
        policy: EscalationPolicy,
        fire: EscalationFire,
        *,
        events: EventBus | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the scheduler with the action invoked when a timer fires."""
        self._policy = policy
        self._fire = fire
        self._events = events
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._firing: set[str] = set()

    def schedule(self, event: DriftEvent) -> ScheduledEscalation | None:
        """Start the escalation timer for an event; requires a running loop."""
        delay_minutes, contacts = self._policy.escalation(event.severity)
        if not contacts:
            logger.debug(
                "No escalation contacts for severity=%s; source=%s not scheduled.",
                event.severity.name,
                event.source_identifier,
            )
            return None
        if event.event_id in self._tasks:
            logger.warning("Escalation already scheduled for drift_event=%s.", event.event_id)
            return None
        scheduled = ScheduledEscalation(
            drift_event_id=event.event_id,
            severity=event.severity,
            delay=timedelta(minutes=delay_minutes),
            contacts=tuple(contacts),
        )
        self._tasks[event.event_id] = asyncio.get_running_loop().create_task(
            self._run(event, scheduled)
        )
        self._publish(
            DomainEventType.ESCALATION_SCHEDULED,
            event,
            {"delay_minutes": delay_minutes, "contacts": list(contacts)},
        )
        logger.info(
            "Escalation scheduled source=%s severity=%s delay_minutes=%d.",
            event.source_identifier,
            event.severity.name,
            delay_minutes,
        )
        return scheduled

    def cancel(self, event: DriftEvent, reason: str = "resolved") -> bool:
        """Cancel a pending escalation; returns False when none was pending.

        Only the delay can be cancelled. Once the escalation is firing its
        sends run to completion so every attempt reaches the audit trail.
        """
        if event.event_id in self._firing:
            logger.info(
                "Escalation for source=%s already firing; not cancelled.",
                event.source_identifier,
            )
            return False
        task = self._tasks.pop(event.event_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        self._publish(DomainEventType.ESCALATION_CANCELLED, event, {"reason": reason})
        logger.info(
            "Escalation cancelled source=%s reason=%s.", event.source_identifier, reason
        )
        return True

    def is_pending(self, drift_event_id: str) -> bool:
        """Return True when an escalation timer is still running."""
        task = self._tasks.get(drift_event_id)
        return task is not None and not task.done()

    def pending(self) -> list[str]:
        """Return drift event ids with running escalation timers."""
        return sorted(event_id for event_id, task in self._tasks.items() if not task.done())

    async def wait(self, drift_event_id: str) -> None:
        """Wait until the escalation for an event completes or is cancelled."""
        task = self._tasks.get(drift_event_id)
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def shutdown(self) -> None:
        """Cancel every escalation still waiting and let firing ones finish."""
        pending = dict(self._tasks)
        self._tasks.clear()
        for event_id, task in pending.items():
            if event_id not in self._firing:
                task.cancel()
        tasks = list(pending.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, event: DriftEvent, scheduled: ScheduledEscalation) -> None:
        """Sleep out the delay then escalate unless the event was resolved."""
        try:
            await self._sleep(scheduled.delay.total_seconds())
            if event.is_resolved:
                self._publish(DomainEventType.ESCALATION_CANCELLED, event, {"reason": "resolved"})
                logger.info(
                    "Escalation skipped source=%s; all changes resolved.",
                    event.source_identifier,
                )
                return
            self._firing.add(event.event_id)
            sent = await self._fire(event)
            self._publish(
                DomainEventType.ESCALATION_FIRED,
                event,
                {"notifications": sent, "contacts": list(scheduled.contacts)},
            )
            logger.warning(
                "Escalation fired source=%s severity=%s notifications=%d.",
                event.source_identifier,
                event.severity.name,
                sent,
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Escalation failed for source=%s.", event.source_identifier)
        finally:
            self._firing.discard(event.event_id)
            if self._tasks.get(event.event_id) is asyncio.current_task():
                self._tasks.pop(event.event_id, None)

    def _publish(self, event_type: DomainEventType, event: DriftEvent, detail: dict) -> None:
        """Publish a scheduler event when a bus is configured."""
        if self._events is None:
            return
        self._events.publish(DomainEvent(event_type=event_type, drift_event=event, detail=detail))
