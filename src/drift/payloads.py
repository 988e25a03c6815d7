"""Channel-agnostic notification payloads and catalog drift summaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from drift.types import DriftEvent, StakeholderSystem

NEXT_STEPS = (
    "Review the schema changes in the lineage automation tool",
    "Assess impact on your {system_kind}",
    "Approve or reject changes as appropriate",
    "Update your system if changes are approved",
)

ESCALATION_NEXT_STEPS = (
    "Drift remains unresolved past the escalation window",
    "Confirm an owner is reviewing every pending change",
    "Approve or reject changes as appropriate",
)


@dataclass(frozen=True)
class ChangeSummary:
    """One change line in a notification."""

    change_type: str
    column: str
    severity: str
    recommendation: str


@dataclass(frozen=True)
class NotificationPayload:
    """Fields every transport needs to render a drift notification."""

    title: str
    severity: str
    source_identifier: str
    system_name: str
    system_kind: str
    changes: tuple[ChangeSummary, ...]
    next_steps: tuple[str, ...]
    escalation: bool = False

    def as_dict(self) -> dict[str, Any]:
        """Return the payload as a JSON-ready mapping."""
        return {
            "title": self.title,
            "severity": self.severity,
            "sourceIdentifier": self.source_identifier,
            "systemName": self.system_name,
            "systemKind": self.system_kind,
            "changes": [
                {
                    "changeType": change.change_type,
                    "column": change.column,
                    "severity": change.severity,
                    "recommendation": change.recommendation,
                }
                for change in self.changes
            ],
            "nextSteps": list(self.next_steps),
            "escalation": self.escalation,
        }


def _change_summaries(event: DriftEvent) -> tuple[ChangeSummary, ...]:
    return tuple(
        ChangeSummary(
            change_type=change.kind.value,
            column=change.column,
            severity=change.severity.name,
            recommendation=change.recommendation,
        )
        for change in event.changes
    )


def build_notification_payload(
    event: DriftEvent,
    system: StakeholderSystem,
) -> NotificationPayload:
    """Build the notification payload for one affected system."""
    system_kind = system.kind.value.lower().replace("_", " ")
    return NotificationPayload(
        title=f"Schema Drift Alert: {system.name} Impact",
        severity=event.severity.name,
        source_identifier=event.source_identifier,
        system_name=system.name,
        system_kind=system.kind.value,
        changes=_change_summaries(event),
        next_steps=tuple(step.format(system_kind=system_kind) for step in NEXT_STEPS),
    )


def build_escalation_payload(event: DriftEvent, system_name: str) -> NotificationPayload:
    """Build the payload sent to escalation contacts."""
    return NotificationPayload(
        title=f"ESCALATION: Unresolved {event.severity.name} schema drift in "
        f"{event.source_identifier}",
        severity=event.severity.name,
        source_identifier=event.source_identifier,
        system_name=system_name,
        system_kind="ESCALATION",
        changes=_change_summaries(event),
        next_steps=ESCALATION_NEXT_STEPS,
        escalation=True,
    )


def build_catalog_summary(event: DriftEvent, stakeholders_notified: int) -> dict[str, Any]:
    """Summarize a drift event for embedding as catalog entity metadata."""
    return {
        "sourceIdentifier": event.source_identifier,
        "severity": event.severity.name,
        "changeCount": len(event.changes),
        "changeTypes": [change.kind.value for change in event.changes],
        "affectedColumns": [change.column for change in event.changes],
        "baselineVersion": event.baseline_version,
        "stakeholdersNotified": stakeholders_notified,
    }
