"""Exception types for dora-metrics."""

from __future__ import annotations


class DoraMetricsError(Exception):
    """Base exception for all dora-metrics errors."""


class ConfigurationError(DoraMetricsError):
    """Raised when run configuration is missing or invalid."""


class FetchError(DoraMetricsError):
    """Raised when a single GitHub API resource cannot be fetched.

    ``status`` is the HTTP status code, or ``None`` for transport failures
    (timeouts, connection errors) and undecodable payloads.
    """

    def __init__(self, path: str, status: int | None = None, reason: str = "") -> None:
        self.path = path
        self.status = status
        self.reason = reason
        detail = f"status {status}" if status is not None else (reason or "request failed")
        super().__init__(f"GET {path} failed: {detail}")


class MetricsFinalizedError(DoraMetricsError):
    """Raised when a finalized metrics object is mutated or finalized again."""
