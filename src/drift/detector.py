"""Baseline comparison for observed schemas."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from drift.classifier import Classification, classify_change
from drift.errors import UnknownSourceType
from drift.types import ChangeKind, ColumnChange, DriftEvent, ObservedSchema, SchemaBaseline

logger = logging.getLogger(__name__)

Classifier = Callable[[ChangeKind, str, str], Classification]


def diff_columns(
    observed: ObservedSchema,
    baseline: SchemaBaseline,
) -> list[tuple[ChangeKind, str]]:
    """Return ADDED then REMOVED column names, each sorted lexicographically.

    Renames are not inferred: a renamed column shows up as one removal and one
    addition.
    """
    observed_columns = frozenset(observed.columns)
    baseline_columns = baseline.column_names()
    added = sorted(observed_columns - baseline_columns)
    removed = sorted(baseline_columns - observed_columns)
    return [(ChangeKind.ADDED, column) for column in added] + [
        (ChangeKind.REMOVED, column) for column in removed
    ]


def detect_drift(
    observed: ObservedSchema,
    baseline: SchemaBaseline,
    *,
    classifier: Classifier = classify_change,
    detected_at: datetime | None = None,
) -> DriftEvent:
    """Compare an observed schema with its baseline and classify every change."""
    if observed.source_type != baseline.source_type:
        raise UnknownSourceType(
            f"Observed source type {observed.source_type!r} does not match "
            f"baseline {baseline.source_type!r}."
        )
    changes = []
    for kind, column in diff_columns(observed, baseline):
        classification = classifier(kind, column, observed.source_type)
        changes.append(
            ColumnChange(
                kind=kind,
                column=column,
                severity=classification.severity,
                impacts=classification.impacts,
                recommendation=classification.recommendation,
                business_justification=classification.business_justification,
            )
        )
    event_kwargs = {"detected_at": detected_at} if detected_at is not None else {}
    event = DriftEvent(
        source_identifier=observed.source_identifier,
        source_type=observed.source_type,
        baseline_version=baseline.version,
        changes=tuple(changes),
        **event_kwargs,
    )
    if event.has_drift:
        logger.info(
            "Drift detected source=%s changes=%d severity=%s.",
            observed.source_identifier,
            len(changes),
            event.severity.name,
        )
    else:
        logger.debug("No drift for source=%s.", observed.source_identifier)
    return event
