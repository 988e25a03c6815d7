"""Exception taxonomy for the drift engine."""

from __future__ import annotations


class DriftEngineError(Exception):
    """Base class for drift engine errors."""


class UnknownSourceType(DriftEngineError):
    """No baseline or dependency mapping exists for a source type."""


class UnknownSeverity(DriftEngineError):
    """A severity value has no escalation policy entry."""


class ConfigurationError(DriftEngineError):
    """Static configuration is missing or malformed."""


class BaselineVersionError(DriftEngineError):
    """A published baseline does not supersede the current version."""


class ChannelSendFailure(DriftEngineError):
    """A single send attempt to one recipient failed."""

    reason = "send_failed"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class TimeoutExceeded(ChannelSendFailure):
    """A send attempt did not complete within its timeout."""

    reason = "timeout"
