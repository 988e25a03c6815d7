"""Typed engine configuration: baselines, stakeholder registry, escalation table.

The YAML document is validated eagerly into pydantic models and converted to
domain objects so malformed configuration fails at startup, not at first use.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from drift.baseline_store import BaselineStore, version_key
from drift.dependencies import DependencyResolver
from drift.errors import BaselineVersionError, ConfigurationError, UnknownSeverity
from drift.escalation import EscalationPolicy
from drift.types import (
    EMAIL,
    SUPPORTED_CHANNELS,
    ColumnDefinition,
    EscalationRule,
    SchemaBaseline,
    Severity,
    StakeholderSystem,
    SystemKind,
)

logger = logging.getLogger(__name__)


def _strip_required(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError("Required fields must be non-empty strings.")
    return normalized


def _parse_severity(value: Any) -> Severity:
    try:
        return Severity.parse(value)
    except UnknownSeverity as exc:
        raise ValueError(str(exc)) from exc


class ColumnSchema(BaseModel):
    """Column definition as written in configuration."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    data_type: str = Field(..., alias="type", min_length=1)
    nullable: bool = True
    constraints: list[str] = Field(default_factory=list)
    length: int | None = Field(default=None, ge=1)
    precision: int | None = Field(default=None, ge=1)
    scale: int | None = Field(default=None, ge=0)


class BaselineSchema(BaseModel):
    """Baseline schema for one source type."""

    model_config = ConfigDict(extra="forbid")

    version: str
    last_updated: str | None = None
    columns: dict[str, ColumnSchema] = Field(..., min_length=1)
    business_rules: dict[str, str] = Field(default_factory=dict)

    @field_validator("version", mode="before")
    @classmethod
    def _normalize_version(cls, value: Any) -> str:
        """Accept numeric YAML versions and require a dotted numeric form."""
        text = _strip_required(str(value))
        try:
            version_key(text)
        except BaselineVersionError as exc:
            raise ValueError(str(exc)) from exc
        return text

    @model_validator(mode="after")
    def _rules_reference_columns(self) -> "BaselineSchema":
        """Ensure business rules only describe baseline columns."""
        unknown = sorted(set(self.business_rules) - set(self.columns))
        if unknown:
            raise ValueError(f"business_rules reference unknown columns: {', '.join(unknown)}")
        return self


class SystemSchema(BaseModel):
    """Stakeholder system entry."""

    model_config = ConfigDict(extra="forbid")

    owners: list[str] = Field(..., min_length=1)
    kind: SystemKind
    urgency: Severity
    preferred_channels: list[str] = Field(default_factory=lambda: [EMAIL])
    channel_targets: dict[str, str] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("owners")
    @classmethod
    def _strip_owners(cls, value: list[str]) -> list[str]:
        return [_strip_required(owner) for owner in value]

    @field_validator("urgency", mode="before")
    @classmethod
    def _parse_urgency(cls, value: Any) -> Severity:
        return _parse_severity(value)

    @field_validator("preferred_channels")
    @classmethod
    def _validate_channels(cls, value: list[str]) -> list[str]:
        normalized = [channel.strip().lower() for channel in value]
        unsupported = [channel for channel in normalized if channel not in SUPPORTED_CHANNELS]
        if unsupported:
            raise ValueError(f"Unsupported channels: {', '.join(unsupported)}")
        return normalized

    @model_validator(mode="after")
    def _targets_for_shared_channels(self) -> "SystemSchema":
        """Shared channels need a target such as a webhook URL."""
        missing = [
            channel
            for channel in self.preferred_channels
            if channel != EMAIL and not self.channel_targets.get(channel)
        ]
        if missing:
            raise ValueError(f"channel_targets missing for: {', '.join(missing)}")
        return self


class EscalationSchema(BaseModel):
    """Escalation rule entry for one severity tier."""

    model_config = ConfigDict(extra="forbid")

    immediate: list[str] = Field(..., min_length=1)
    escalate_after_minutes: int = Field(..., ge=0)
    escalate_to: list[str] = Field(default_factory=list)

    @field_validator("immediate")
    @classmethod
    def _validate_channels(cls, value: list[str]) -> list[str]:
        normalized = [channel.strip().lower() for channel in value]
        unsupported = [channel for channel in normalized if channel not in SUPPORTED_CHANNELS]
        if unsupported:
            raise ValueError(f"Unsupported channels: {', '.join(unsupported)}")
        return normalized


class EngineConfigSchema(BaseModel):
    """Top-level engine configuration document."""

    model_config = ConfigDict(extra="forbid")

    baselines: dict[str, BaselineSchema] = Field(..., min_length=1)
    systems: dict[str, SystemSchema] = Field(default_factory=dict)
    source_dependencies: dict[str, list[str]] | None = None
    escalation: dict[str, EscalationSchema]
    source_prefixes: dict[str, str] = Field(default_factory=dict)
    compliance: dict[str, Any] | None = None

    @field_validator("escalation")
    @classmethod
    def _validate_escalation_tiers(
        cls, value: dict[str, EscalationSchema]
    ) -> dict[str, EscalationSchema]:
        """Every severity tier needs exactly one rule."""
        parsed = {_parse_severity(key) for key in value}
        missing = [severity.name for severity in Severity if severity not in parsed]
        if missing:
            raise ValueError(f"escalation missing tiers: {', '.join(missing)}")
        if len(parsed) != len(value):
            raise ValueError("escalation contains duplicate tiers.")
        return value

    @model_validator(mode="after")
    def _validate_references(self) -> "EngineConfigSchema":
        """Cross-check systems, dependencies and prefixes."""
        if self.source_dependencies is not None:
            for source_type, names in self.source_dependencies.items():
                unknown = [name for name in names if name not in self.systems]
                if unknown:
                    raise ValueError(
                        f"source_dependencies[{source_type}] references unknown systems: "
                        f"{', '.join(unknown)}"
                    )
                for name in names:
                    if source_type not in self.systems[name].dependencies:
                        raise ValueError(
                            f"System {name!r} is mapped to {source_type!r} but does not "
                            "list it in dependencies."
                        )
        unknown_prefix_targets = sorted(
            {target for target in self.source_prefixes.values() if target not in self.baselines}
        )
        if unknown_prefix_targets:
            raise ValueError(
                f"source_prefixes map to unknown source types: {', '.join(unknown_prefix_targets)}"
            )
        return self


@dataclass(frozen=True)
class EngineSetup:
    """Domain objects built from a validated engine configuration."""

    baselines: tuple[SchemaBaseline, ...]
    systems: tuple[StakeholderSystem, ...]
    source_dependencies: dict[str, tuple[str, ...]]
    escalation_rules: tuple[EscalationRule, ...]
    source_prefixes: dict[str, str] = field(default_factory=dict)
    compliance_info: dict[str, Any] | None = None

    def build_baseline_store(self) -> BaselineStore:
        """Create a baseline store holding every configured baseline."""
        return BaselineStore(self.baselines)

    def build_resolver(self) -> DependencyResolver:
        """Create the dependency resolver for the stakeholder registry."""
        return DependencyResolver(self.systems, self.source_dependencies)

    def build_policy(self) -> EscalationPolicy:
        """Create the escalation policy table."""
        return EscalationPolicy(self.escalation_rules)


def parse_engine_config(data: dict[str, Any]) -> EngineSetup:
    """Validate a raw configuration mapping and convert it to domain objects."""
    try:
        schema = EngineConfigSchema.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid engine configuration: {exc}") from exc
    return _to_setup(schema)


def load_engine_config(path: str | Path) -> EngineSetup:
    """Load and validate the engine configuration YAML at ``path``."""
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise ConfigurationError(f"Engine configuration not found: {config_path}")
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Engine configuration is not valid YAML: {config_path}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Engine configuration must contain a mapping: {config_path}")
    setup = parse_engine_config(data)
    logger.info(
        "Loaded engine configuration path=%s baselines=%d systems=%d.",
        config_path,
        len(setup.baselines),
        len(setup.systems),
    )
    return setup


def _to_setup(schema: EngineConfigSchema) -> EngineSetup:
    """Convert validated schema models into domain objects."""
    baselines = tuple(
        SchemaBaseline(
            source_type=source_type,
            version=baseline.version,
            last_updated=baseline.last_updated,
            columns={
                name: ColumnDefinition(
                    name=name,
                    data_type=column.data_type,
                    nullable=column.nullable,
                    constraints=tuple(column.constraints),
                    length=column.length,
                    precision=column.precision,
                    scale=column.scale,
                )
                for name, column in baseline.columns.items()
            },
            business_rules=dict(baseline.business_rules),
        )
        for source_type, baseline in schema.baselines.items()
    )
    systems = tuple(
        StakeholderSystem(
            name=name,
            owners=tuple(system.owners),
            kind=system.kind,
            urgency=system.urgency,
            preferred_channels=tuple(system.preferred_channels),
            dependencies=frozenset(system.dependencies),
            channel_targets=dict(system.channel_targets),
        )
        for name, system in schema.systems.items()
    )
    if schema.source_dependencies is not None:
        source_dependencies = {
            source_type: tuple(names) for source_type, names in schema.source_dependencies.items()
        }
    else:
        source_dependencies = {}
        for system in systems:
            for source_type in sorted(system.dependencies):
                source_dependencies.setdefault(source_type, ())
                source_dependencies[source_type] += (system.name,)
    escalation_rules = tuple(
        EscalationRule(
            severity=_parse_severity(key),
            immediate_channels=tuple(rule.immediate),
            escalate_after_minutes=rule.escalate_after_minutes,
            escalation_contacts=tuple(rule.escalate_to),
        )
        for key, rule in schema.escalation.items()
    )
    return EngineSetup(
        baselines=baselines,
        systems=systems,
        source_dependencies=source_dependencies,
        escalation_rules=escalation_rules,
        source_prefixes=dict(schema.source_prefixes),
        compliance_info=schema.compliance,
    )
