"""Run configuration and validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone

from .errors import ConfigurationError
from .models import Handle, Period


@dataclass(frozen=True)
class MetricsConfig:
    """Validated settings for one metrics run."""

    token: str
    owner: str
    repos: tuple[str, ...]
    since: datetime
    until: datetime
    members: tuple[Handle, ...] = field(default_factory=tuple)

    @property
    def period(self) -> Period:
        return Period(start=self.since, end=self.until)


def _split_list(value: str | list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    if not value:
        return ()
    items = value.split(",") if isinstance(value, str) else value
    return tuple(item.strip() for item in items if item and item.strip())


def _parse_date(name: str, value: str | date | None) -> date:
    if value is None or value == "":
        raise ConfigurationError(f"Missing required '{name}' date (format: YYYY-MM-DD).")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ConfigurationError(
            f"Invalid '{name}' date {value!r}: expected YYYY-MM-DD."
        ) from exc


def build_config(
    token: str | None,
    owner: str | None,
    repos: str | list[str] | tuple[str, ...] | None,
    since: str | date | None,
    until: str | date | None,
    members: str | list[str] | tuple[str, ...] | None = None,
) -> MetricsConfig:
    """Build a :class:`MetricsConfig`, failing fast on missing or invalid input.

    ``since`` starts at midnight UTC and ``until`` is extended to 23:59:59 UTC
    so the window is inclusive on both ends.

    Raises:
        ConfigurationError: If the token, owner, repository list or either
            date is missing, or if ``since`` falls after ``until``.
    """
    token = (token or "").strip()
    if not token:
        raise ConfigurationError(
            "GitHub token required. Use --token or set the GITHUB_TOKEN environment variable."
        )
    owner = (owner or "").strip()
    if not owner:
        raise ConfigurationError("Missing required owner (organization or user).")
    repo_list = _split_list(repos)
    if not repo_list:
        raise ConfigurationError("At least one repository name is required.")

    start_date = _parse_date("from", since)
    end_date = _parse_date("to", until)
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_date, time(23, 59, 59), tzinfo=timezone.utc)
    if start > end:
        raise ConfigurationError("'from' date must not be after 'to' date.")

    return MetricsConfig(
        token=token,
        owner=owner,
        repos=repo_list,
        since=start,
        until=end,
        members=tuple(Handle(m) for m in _split_list(members)),
    )
