"""Human review of detected column changes."""

from __future__ import annotations

import logging
import threading

from drift.audit import AuditTrailRecorder
from drift.escalation import EscalationScheduler
from drift.events import DomainEvent, DomainEventType, EventBus
from drift.types import ColumnChange, DriftEvent, ResolutionStatus

logger = logging.getLogger(__name__)


class ChangeReview:
    """Apply reviewer decisions and stop escalation once an event is resolved."""

    def __init__(
        self,
        recorder: AuditTrailRecorder,
        scheduler: EscalationScheduler | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._recorder = recorder
        self._scheduler = scheduler
        self._events = events
        self._lock = threading.Lock()

    def approve(self, drift_event_id: str, column: str) -> ColumnChange:
        """Approve a change."""
        return self.resolve(drift_event_id, column, ResolutionStatus.APPROVED)

    def reject(self, drift_event_id: str, column: str) -> ColumnChange:
        """Reject a change."""
        return self.resolve(drift_event_id, column, ResolutionStatus.REJECTED)

    def flag_for_review(self, drift_event_id: str, column: str) -> ColumnChange:
        """Mark a change as under review; escalation keeps running."""
        return self.resolve(drift_event_id, column, ResolutionStatus.UNDER_REVIEW)

    def resolve(
        self,
        drift_event_id: str,
        column: str,
        status: ResolutionStatus,
    ) -> ColumnChange:
        """Set the resolution status of one change on a recorded event."""
        event = self._recorder.get_event(drift_event_id)
        if event is None:
            raise ValueError(f"Unknown drift event: {drift_event_id}")
        with self._lock:
            change = event.change_for(column)
            if change is None:
                raise ValueError(f"No change for column {column!r} in {event.source_identifier}")
            previous = change.resolution_status
            change.resolution_status = status
            resolved = event.is_resolved

        logger.info(
            "Change %s on source=%s moved %s -> %s.",
            column,
            event.source_identifier,
            previous.value,
            status.value,
        )
        if self._events is not None:
            self._events.publish(
                DomainEvent(
                    DomainEventType.CHANGE_RESOLVED,
                    drift_event=event,
                    detail={"column": column, "from": previous.value, "to": status.value},
                )
            )
        if resolved:
            self._cancel_escalation(event)
        return change

    def _cancel_escalation(self, event: DriftEvent) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel(event, reason="resolved")
