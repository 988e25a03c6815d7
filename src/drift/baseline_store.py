"""Versioned store of approved schema baselines per source type."""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from drift.errors import BaselineVersionError, UnknownSourceType
from drift.types import SchemaBaseline

logger = logging.getLogger(__name__)


def version_key(version: str) -> tuple[int, ...]:
    """Return a comparable key for a dotted numeric version like ``2.1``."""
    normalized = version.strip().lstrip("vV")
    if not normalized:
        raise BaselineVersionError("Baseline version must be non-empty.")
    parts = normalized.split(".")
    if not all(part.isdigit() for part in parts):
        raise BaselineVersionError(f"Baseline version must be dotted numeric: {version!r}")
    return tuple(int(part) for part in parts)


class BaselineStore:
    """Hold the current baseline per source type; superseded versions are kept."""

    def __init__(self, baselines: Iterable[SchemaBaseline] = ()) -> None:
        """Initialize the store, publishing each provided baseline in order."""
        self._lock = threading.Lock()
        self._current: dict[str, SchemaBaseline] = {}
        self._history: dict[str, list[SchemaBaseline]] = {}
        for baseline in baselines:
            self.publish(baseline)

    def get(self, source_type: str) -> SchemaBaseline:
        """Return the current baseline, raising UnknownSourceType when absent."""
        with self._lock:
            baseline = self._current.get(source_type)
        if baseline is None:
            raise UnknownSourceType(f"No baseline for source type: {source_type!r}")
        return baseline

    def publish(self, baseline: SchemaBaseline) -> SchemaBaseline | None:
        """Supersede the current baseline and return the one it replaced."""
        new_key = version_key(baseline.version)
        with self._lock:
            previous = self._current.get(baseline.source_type)
            if previous is not None and new_key <= version_key(previous.version):
                raise BaselineVersionError(
                    f"Baseline {baseline.source_type} v{baseline.version} does not "
                    f"supersede v{previous.version}."
                )
            self._current[baseline.source_type] = baseline
            self._history.setdefault(baseline.source_type, []).append(baseline)
        logger.info(
            "Published baseline source_type=%s version=%s.",
            baseline.source_type,
            baseline.version,
        )
        return previous

    def history(self, source_type: str) -> list[SchemaBaseline]:
        """Return every published baseline for a source type, oldest first."""
        with self._lock:
            return list(self._history.get(source_type, []))

    def source_types(self) -> list[str]:
        """Return the known source types in sorted order."""
        with self._lock:
            return sorted(self._current)

    def __contains__(self, source_type: object) -> bool:
        with self._lock:
            return source_type in self._current
