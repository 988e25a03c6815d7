"""Rule-table impact classification for column changes.

Severity is decided by keyword matching against the lower-cased column name,
checked in fixed priority order so the outcome is reproducible for audit.
"""

from __future__ import annotations

from dataclasses import dataclass

from drift.types import ChangeKind, Severity

CRITICAL_KEYWORDS = ("patient_id", "ssn", "medical_record", "diagnosis", "prescription")
HIPAA_KEYWORDS = ("name", "address", "phone", "email", "dob", "birth")
BILLING_KEYWORDS = ("amount", "cost", "charge", "payment", "insurance")

_KEYWORD_TIERS: tuple[tuple[Severity, tuple[str, ...]], ...] = (
    (Severity.CRITICAL, CRITICAL_KEYWORDS),
    (Severity.HIGH, HIPAA_KEYWORDS),
    (Severity.MEDIUM, BILLING_KEYWORDS),
)

REMOVAL_SEVERITY_FLOOR = Severity.HIGH

RECOMMENDATIONS: dict[tuple[ChangeKind, Severity], str] = {
    (ChangeKind.ADDED, Severity.CRITICAL): (
        "Require security review and HIPAA assessment before approval"
    ),
    (ChangeKind.ADDED, Severity.HIGH): (
        "Apply data protection measures and update privacy documentation"
    ),
    (ChangeKind.ADDED, Severity.MEDIUM): (
        "Review business justification and update data dictionary"
    ),
    (ChangeKind.ADDED, Severity.LOW): (
        "Review business justification and update data dictionary"
    ),
    (ChangeKind.REMOVED, Severity.CRITICAL): (
        "Verify removal is intentional, confirm HIPAA impact and update all dependent systems"
    ),
    (ChangeKind.REMOVED, Severity.HIGH): (
        "Verify removal is intentional and update all dependent systems"
    ),
}


@dataclass(frozen=True)
class Classification:
    """Severity and reviewer guidance for a single column change."""

    severity: Severity
    impacts: tuple[str, ...]
    recommendation: str
    business_justification: str


def keyword_severity(column: str) -> Severity:
    """Return the keyword-rule severity for a column name."""
    column_lower = column.lower()
    for severity, keywords in _KEYWORD_TIERS:
        if any(keyword in column_lower for keyword in keywords):
            return severity
    return Severity.LOW


def classify_change(kind: ChangeKind, column: str, source_type: str) -> Classification:
    """Classify a column change into severity, impacts and recommendation."""
    severity = keyword_severity(column)
    if kind == ChangeKind.REMOVED:
        severity = max(severity, REMOVAL_SEVERITY_FLOOR)
    return Classification(
        severity=severity,
        impacts=_impact_statements(kind, column, source_type, severity),
        recommendation=RECOMMENDATIONS[(kind, severity)],
        business_justification=_business_justification(kind, column, source_type),
    )


def _impact_statements(
    kind: ChangeKind,
    column: str,
    source_type: str,
    severity: Severity,
) -> tuple[str, ...]:
    """Return templated impact statements for a change."""
    if kind == ChangeKind.ADDED:
        impacts = [
            f"{source_type} processing pipeline may need updates",
            "Downstream SQL tables require schema modifications",
            "Data validation rules need review",
        ]
        if severity == Severity.CRITICAL:
            impacts.append("HIPAA compliance assessment required")
            impacts.append("Security team approval needed")
        return tuple(impacts)
    return (
        f"Existing reports referencing {column} will fail",
        "Data transformation pipelines need adjustment",
        "Historical data analysis may be affected",
    )


def _business_justification(kind: ChangeKind, column: str, source_type: str) -> str:
    """Return the templated business justification for a change."""
    if kind == ChangeKind.ADDED:
        return (
            f"New {column} field added to {source_type} data - likely due to regulatory "
            "updates or business requirement changes"
        )
    return (
        f"{column} field removed from {source_type} data - may indicate data source "
        "changes or privacy compliance updates"
    )
