"""Mirror the in-memory audit trail into SQL tables.

The in-memory ``AuditTrailRecorder`` stays authoritative for reports; this sink
subscribes to the event bus and writes the same history durably.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from typing import Callable

from sqlalchemy.orm import Session

from drift.events import DomainEvent, DomainEventType
from drift.types import DriftEvent, NotificationRecord
from models import ColumnChangeLog, DriftEventLog, NotificationLog

logger = logging.getLogger(__name__)


Operation = Callable[[Session], None]


class SqlAuditSink:
    """Event sink persisting drift events, changes and notification records.

    Writes are queued in publication order on a single worker thread, so
    publishers running on the event loop never block on a commit. Call
    ``flush`` (or ``aflush`` from async code) before reading the tables and
    ``close`` when the sink is no longer needed.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="drift-audit-sql")
        self.failed_writes = 0

    def handle(self, event: DomainEvent) -> None:
        """Queue the writes for the parts of the audit trail an event changes."""
        operation = _operation_for(event)
        if operation is not None:
            self._executor.submit(self._write, operation, event.event_type)

    def flush(self) -> None:
        """Block until every queued write has been attempted."""
        self._executor.submit(lambda: None).result()

    async def aflush(self) -> None:
        """Wait for queued writes without blocking the event loop."""
        await asyncio.to_thread(self.flush)

    def close(self) -> None:
        """Finish queued writes and stop the worker thread."""
        self._executor.shutdown(wait=True)

    def _write(self, operation: Operation, event_type: DomainEventType) -> None:
        with closing(self._session_factory()) as session:
            try:
                operation(session)
                session.commit()
            except Exception:
                session.rollback()
                self.failed_writes += 1
                logger.exception("Audit write failed for event_type=%s.", event_type.value)


def _operation_for(event: DomainEvent) -> Operation | None:
    """Return the write an event requires, if any."""
    drift_event = event.drift_event
    notification = event.notification
    if event.event_type == DomainEventType.DRIFT_DETECTED and drift_event:
        return lambda session: _insert_drift_event(session, drift_event)
    if event.event_type == DomainEventType.NOTIFICATION_RECORDED and notification:
        return lambda session: _insert_notification(session, notification)
    if event.event_type == DomainEventType.NOTIFICATION_ACKNOWLEDGED and notification:
        return lambda session: _mark_acknowledged(session, notification)
    if event.event_type == DomainEventType.CHANGE_RESOLVED and drift_event:
        column = event.detail.get("column")
        if column:
            return lambda session: _update_resolution(session, drift_event, str(column))
    return None


def _insert_drift_event(session: Session, event: DriftEvent) -> None:
    session.add(
        DriftEventLog(
            event_id=event.event_id,
            source_identifier=event.source_identifier,
            source_type=event.source_type,
            baseline_version=event.baseline_version,
            severity=event.severity.name,
            changes_count=len(event.changes),
            detected_at=event.detected_at,
        )
    )
    for change in event.changes:
        session.add(
            ColumnChangeLog(
                drift_event_id=event.event_id,
                column_name=change.column,
                kind=change.kind.value,
                severity=change.severity.name,
                recommendation=change.recommendation,
                business_justification=change.business_justification,
                resolution_status=change.resolution_status.value,
            )
        )


def _insert_notification(session: Session, record: NotificationRecord) -> None:
    session.add(
        NotificationLog(
            notification_id=record.notification_id,
            drift_event_id=record.drift_event_id,
            channel=record.channel,
            recipient=record.recipient,
            system_name=record.system_name,
            source_identifier=record.source_identifier,
            status=record.status.value,
            acknowledged=record.acknowledged,
            reason=record.reason,
            attempts=record.attempts,
            escalation=record.escalation,
            sent_at=record.timestamp,
        )
    )


def _mark_acknowledged(session: Session, record: NotificationRecord) -> None:
    row = (
        session.query(NotificationLog)
        .filter(NotificationLog.notification_id == record.notification_id)
        .first()
    )
    if row is None:
        logger.warning("Acknowledged notification %s was never persisted.", record.notification_id)
        return
    row.status = record.status.value
    row.acknowledged = True


def _update_resolution(session: Session, event: DriftEvent, column: str) -> None:
    change = event.change_for(column)
    if change is None:
        return
    row = (
        session.query(ColumnChangeLog)
        .filter(
            ColumnChangeLog.drift_event_id == event.event_id,
            ColumnChangeLog.column_name == column,
        )
        .first()
    )
    if row is None:
        logger.warning("Resolved change %s on %s was never persisted.", column, event.event_id)
        return
    row.resolution_status = change.resolution_status.value
