"""Retry and backoff policy helpers for notification sends."""

from __future__ import annotations

from dataclasses import dataclass

from config import settings

BACKOFF_STRATEGIES = frozenset({"none", "fixed", "exponential"})


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry budget for a single send."""

    max_attempts: int = 2
    backoff_strategy: str = "exponential"
    backoff_base_seconds: float = 0.5

    @staticmethod
    def from_settings() -> "RetryPolicy":
        """Build a retry policy from dispatch settings."""
        dispatch_config = settings.dispatch
        return RetryPolicy(
            max_attempts=int(dispatch_config.max_attempts),
            backoff_strategy=str(dispatch_config.backoff_strategy),
            backoff_base_seconds=float(dispatch_config.backoff_base_seconds),
        )


def resolve_retry_policy(policy: RetryPolicy | None) -> RetryPolicy:
    """Return a validated retry policy, defaulting to settings when unset."""
    resolved = policy or RetryPolicy.from_settings()
    _validate_policy(resolved)
    return resolved


def should_retry(attempt_count: int, max_attempts: int) -> bool:
    """Return whether another attempt is permitted."""
    return int(attempt_count) < int(max_attempts)


def compute_backoff_delay_seconds(
    backoff_strategy: str,
    retry_count: int,
    backoff_base_seconds: float,
) -> float:
    """Compute the delay before a retry for a given backoff strategy."""
    if retry_count <= 0:
        raise ValueError("retry_count must be >= 1.")
    if backoff_strategy not in BACKOFF_STRATEGIES:
        raise ValueError("backoff_strategy must be valid.")
    if backoff_base_seconds < 0:
        raise ValueError("backoff_base_seconds must be >= 0.")
    if backoff_strategy == "none":
        return 0.0
    if backoff_strategy == "fixed":
        return float(backoff_base_seconds)
    return float(backoff_base_seconds) * (2 ** (retry_count - 1))


def _validate_policy(policy: RetryPolicy) -> None:
    """Validate retry policy settings."""
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1.")
    if policy.backoff_strategy not in BACKOFF_STRATEGIES:
        raise ValueError("backoff_strategy must be valid.")
    if policy.backoff_base_seconds < 0:
        raise ValueError("backoff_base_seconds must be >= 0.")
