"""Resolve which downstream systems consume a source type."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from drift.errors import ConfigurationError
from drift.types import StakeholderSystem

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Map source types to the stakeholder systems that depend on them."""

    def __init__(
        self,
        systems: Iterable[StakeholderSystem],
        source_dependencies: Mapping[str, Iterable[str]],
    ) -> None:
        """Build the registry and validate every mapped system name."""
        self._systems: dict[str, StakeholderSystem] = {}
        for system in systems:
            if system.name in self._systems:
                raise ConfigurationError(f"Duplicate stakeholder system: {system.name!r}")
            self._systems[system.name] = system
        self._dependencies: dict[str, tuple[str, ...]] = {}
        for source_type, names in source_dependencies.items():
            resolved = tuple(dict.fromkeys(names))
            missing = [name for name in resolved if name not in self._systems]
            if missing:
                raise ConfigurationError(
                    f"Source type {source_type!r} maps to unknown systems: {', '.join(missing)}"
                )
            self._dependencies[source_type] = resolved

    def affected_systems(self, source_type: str) -> list[StakeholderSystem]:
        """Return systems depending on a source type; unknown types yield none."""
        names = self._dependencies.get(source_type)
        if names is None:
            logger.warning("No dependency mapping for source_type=%s.", source_type)
            return []
        return [self._systems[name] for name in names]

    def has_source_type(self, source_type: str) -> bool:
        """Return True when a dependency mapping exists for the source type."""
        return source_type in self._dependencies

    def system(self, name: str) -> StakeholderSystem | None:
        """Return a registered system by name."""
        return self._systems.get(name)

    def systems(self) -> list[StakeholderSystem]:
        """Return every registered system in registration order."""
        return list(self._systems.values())
