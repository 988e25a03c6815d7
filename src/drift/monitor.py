"""Discovery-cycle runner: detect, record, notify and schedule escalation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping

from drift.audit import AuditReport, AuditTrailRecorder
from drift.baseline_store import BaselineStore
from drift.config_schema import EngineSetup
from drift.detector import detect_drift
from drift.dispatcher import DispatchConfig, NotificationDispatcher
from drift.errors import ConfigurationError, UnknownSeverity, UnknownSourceType
from drift.escalation import EscalationScheduler, ScheduledEscalation
from drift.events import EventBus
from drift.payloads import build_catalog_summary
from drift.review import ChangeReview
from drift.transports import ChannelTransport
from drift.types import DriftEvent, ObservedSchema
from structured_logging import log_context

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class DiscoveredSource:
    """A data source reported by discovery; the type may need resolving."""

    source_identifier: str
    columns: tuple[str, ...]
    source_type: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DiscoveredSource":
        """Build from a discovery record ``{sourceIdentifier, sourceType?, columns}``."""
        identifier = str(data.get("sourceIdentifier") or "").strip()
        if not identifier:
            raise ValueError("sourceIdentifier is required.")
        columns = data.get("columns")
        if not isinstance(columns, list) or not all(isinstance(c, str) for c in columns):
            raise ValueError(f"columns must be a list of strings for {identifier}.")
        source_type = data.get("sourceType")
        return cls(
            source_identifier=identifier,
            columns=tuple(columns),
            source_type=str(source_type).strip() if source_type else None,
        )


@dataclass
class CycleResult:
    """Outcome of one discovery cycle across all sources."""

    drift_events: list[DriftEvent] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    blocked: dict[str, str] = field(default_factory=dict)
    notifications: int = 0
    catalog_summaries: list[dict[str, Any]] = field(default_factory=list)
    escalations: list[ScheduledEscalation] = field(default_factory=list)


@dataclass
class _SourceOutcome:
    source_identifier: str
    event: DriftEvent | None = None
    notifications: int = 0
    skipped: str | None = None
    blocked: str | None = None
    escalation: ScheduledEscalation | None = None


def resolve_source_type(source_identifier: str, prefixes: Mapping[str, str]) -> str:
    """Resolve a source type from identifier prefixes; never falls back to a default."""
    name = source_identifier.rsplit("/", 1)[-1]
    for prefix in sorted(prefixes, key=len, reverse=True):
        if name.startswith(prefix):
            return prefixes[prefix]
    raise UnknownSourceType(f"No source type prefix matches {source_identifier!r}")


class DriftMonitor:
    """Run discovery cycles through detection, dispatch and escalation."""

    def __init__(
        self,
        store: BaselineStore,
        dispatcher: NotificationDispatcher,
        recorder: AuditTrailRecorder,
        *,
        scheduler: EscalationScheduler | None = None,
        events: EventBus | None = None,
        source_prefixes: Mapping[str, str] | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._recorder = recorder
        self._scheduler = scheduler
        self._events = events
        self._source_prefixes = dict(source_prefixes or {})
        self.review = ChangeReview(recorder, scheduler=scheduler, events=events)

    @classmethod
    def from_setup(
        cls,
        setup: EngineSetup,
        transports: Mapping[str, ChannelTransport],
        *,
        config: DispatchConfig | None = None,
        events: EventBus | None = None,
        escalation_sleep: Sleep = asyncio.sleep,
    ) -> "DriftMonitor":
        """Wire every component from a loaded engine configuration."""
        events = events or EventBus()
        policy = setup.build_policy()
        recorder = AuditTrailRecorder(events, compliance_info=setup.compliance_info)
        dispatcher = NotificationDispatcher(
            setup.build_resolver(),
            policy,
            recorder,
            transports,
            config,
        )
        scheduler = EscalationScheduler(
            policy,
            dispatcher.escalate,
            events=events,
            sleep=escalation_sleep,
        )
        return cls(
            setup.build_baseline_store(),
            dispatcher,
            recorder,
            scheduler=scheduler,
            events=events,
            source_prefixes=setup.source_prefixes,
        )

    @property
    def recorder(self) -> AuditTrailRecorder:
        return self._recorder

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def scheduler(self) -> EscalationScheduler | None:
        return self._scheduler

    async def run_cycle(
        self,
        discovered: Iterable[DiscoveredSource | ObservedSchema],
    ) -> CycleResult:
        """Process every discovered source independently and collect the outcome."""
        sources = list(discovered)
        outcomes = await asyncio.gather(
            *(self._process(source) for source in sources),
            return_exceptions=True,
        )
        result = CycleResult()
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, ConfigurationError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "Source %s failed: %s", source.source_identifier, outcome, exc_info=outcome
                )
                result.skipped[source.source_identifier] = f"error: {outcome}"
                continue
            self._collect(result, outcome)
        logger.info(
            "Cycle complete sources=%d drift=%d skipped=%d blocked=%d notifications=%d.",
            len(sources),
            len(result.drift_events),
            len(result.skipped),
            len(result.blocked),
            result.notifications,
        )
        return result

    def build_report(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> AuditReport:
        """Build the audit report over the recorded history."""
        return self._recorder.build_report(start, end)

    async def shutdown(self) -> None:
        """Cancel pending escalation timers."""
        if self._scheduler is not None:
            await self._scheduler.shutdown()

    def _observe(self, source: DiscoveredSource | ObservedSchema) -> ObservedSchema:
        """Turn a discovery record into an observed schema with a known type."""
        if isinstance(source, ObservedSchema):
            return source
        source_type = source.source_type or resolve_source_type(
            source.source_identifier, self._source_prefixes
        )
        return ObservedSchema(
            source_identifier=source.source_identifier,
            source_type=source_type,
            columns=source.columns,
        )

    async def _process(self, source: DiscoveredSource | ObservedSchema) -> _SourceOutcome:
        """Run one source through the pipeline with failures isolated to it."""
        outcome = _SourceOutcome(source_identifier=source.source_identifier)
        with log_context({"source_identifier": source.source_identifier}):
            try:
                observed = self._observe(source)
                baseline = self._store.get(observed.source_type)
            except UnknownSourceType as exc:
                logger.warning("Skipping source %s: %s", source.source_identifier, exc)
                outcome.skipped = f"unknown_source_type: {exc}"
                return outcome

            event = detect_drift(observed, baseline)
            if not event.has_drift:
                return outcome
            outcome.event = event
            self._recorder.record_event(event)

            with log_context({"drift_event_id": event.event_id}):
                try:
                    outcome.notifications = await self._dispatcher.dispatch(event)
                except UnknownSeverity as exc:
                    logger.error("Dispatch blocked for %s: %s", source.source_identifier, exc)
                    outcome.blocked = f"unknown_severity: {exc}"
                    return outcome
                if self._scheduler is not None:
                    outcome.escalation = self._scheduler.schedule(event)
        return outcome

    def _collect(self, result: CycleResult, outcome: _SourceOutcome) -> None:
        if outcome.skipped is not None:
            result.skipped[outcome.source_identifier] = outcome.skipped
            return
        if outcome.event is None:
            result.unchanged.append(outcome.source_identifier)
            return
        result.drift_events.append(outcome.event)
        result.notifications += outcome.notifications
        if outcome.blocked is not None:
            result.blocked[outcome.source_identifier] = outcome.blocked
        if outcome.escalation is not None:
            result.escalations.append(outcome.escalation)
        result.catalog_summaries.append(build_catalog_summary(outcome.event, outcome.notifications))
