"""Data models for dora-metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from . import stats
from .errors import MetricsFinalizedError


@dataclass(frozen=True, eq=False)
class Handle:
    """A contributor login compared case-insensitively.

    ``login`` keeps the spelling it was first seen with for display.
    """

    login: str

    @property
    def key(self) -> str:
        return self.login.casefold()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Handle):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.login


@dataclass(frozen=True)
class PullRequest:
    number: int
    title: str
    head_ref: str
    author: Handle
    created_at: datetime
    merged_at: datetime | None = None
    labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommitRef:
    sha: str
    message: str
    authored_at: datetime


@dataclass(frozen=True)
class Review:
    reviewer: Handle
    submitted_at: datetime | None


@dataclass(frozen=True)
class Period:
    """Inclusive analysis window."""

    start: datetime
    end: datetime

    @property
    def days(self) -> int:
        return int((self.end - self.start) / timedelta(days=1)) + 1

    @property
    def label(self) -> str:
        return f"{self.start:%Y-%m-%d} ~ {self.end:%Y-%m-%d}"


@dataclass
class MemberAggregate:
    """Per-contributor accumulator.

    Raw samples are kept so averages and medians are computed exactly once
    from the full pool by :meth:`finalize`.
    """

    handle: Handle
    prs_merged: int = 0
    failure_prs: int = 0
    lead_times: list[timedelta] = field(default_factory=list)
    first_review_times: list[timedelta] = field(default_factory=list)
    avg_lead_time: timedelta = stats.ZERO
    median_lead_time: timedelta = stats.ZERO
    avg_first_review: timedelta = stats.ZERO
    median_first_review: timedelta = stats.ZERO

    def record(
        self,
        lead_time: timedelta | None,
        first_review: timedelta | None,
        is_failure: bool,
    ) -> None:
        self.prs_merged += 1
        if lead_time is not None:
            self.lead_times.append(lead_time)
        if first_review is not None:
            self.first_review_times.append(first_review)
        if is_failure:
            self.failure_prs += 1

    def absorb(self, other: MemberAggregate) -> None:
        """Add another aggregate's counts and samples to this one."""
        self.prs_merged += other.prs_merged
        self.failure_prs += other.failure_prs
        self.lead_times.extend(other.lead_times)
        self.first_review_times.extend(other.first_review_times)

    def finalize(self) -> None:
        self.avg_lead_time = stats.average(self.lead_times)
        self.median_lead_time = stats.median(self.lead_times)
        self.avg_first_review = stats.average(self.first_review_times)
        self.median_first_review = stats.median(self.first_review_times)


@dataclass
class RepositoryMetrics:
    """Delivery metrics for one repository over one period."""

    repo: str
    period: Period
    deployments_total: int = 0
    failure_prs: int = 0
    revert_count: int = 0
    lead_times: list[timedelta] = field(default_factory=list)
    first_review_times: list[timedelta] = field(default_factory=list)
    members: dict[Handle, MemberAggregate] = field(default_factory=dict)
    skipped_prs: list[int] = field(default_factory=list)
    lead_time_anomalies: int = 0
    # Derived by finalize()
    deployment_frequency: float = 0.0
    change_failure_rate: float = 0.0
    avg_lead_time: timedelta = stats.ZERO
    median_lead_time: timedelta = stats.ZERO
    avg_first_review: timedelta = stats.ZERO
    median_first_review: timedelta = stats.ZERO
    finalized: bool = False

    @property
    def failure_count(self) -> int:
        return self.failure_prs + self.revert_count

    def member(self, handle: Handle) -> MemberAggregate:
        aggregate = self.members.get(handle)
        if aggregate is None:
            aggregate = MemberAggregate(handle=handle)
            self.members[handle] = aggregate
        return aggregate

    def record(
        self,
        author: Handle,
        lead_time: timedelta | None,
        first_review: timedelta | None,
        is_failure: bool,
    ) -> None:
        """Fold one processed PR into repository and member totals."""
        if self.finalized:
            raise MetricsFinalizedError(f"{self.repo}: metrics already finalized")
        self.deployments_total += 1
        if lead_time is not None:
            self.lead_times.append(lead_time)
        if first_review is not None:
            self.first_review_times.append(first_review)
        if is_failure:
            self.failure_prs += 1
        self.member(author).record(lead_time, first_review, is_failure)

    def finalize(self) -> None:
        if self.finalized:
            raise MetricsFinalizedError(f"{self.repo}: metrics already finalized")
        self.deployment_frequency = stats.frequency(self.deployments_total, self.period.days)
        self.change_failure_rate = stats.rate(self.failure_count, self.deployments_total)
        self.avg_lead_time = stats.average(self.lead_times)
        self.median_lead_time = stats.median(self.lead_times)
        self.avg_first_review = stats.average(self.first_review_times)
        self.median_first_review = stats.median(self.first_review_times)
        for aggregate in self.members.values():
            aggregate.finalize()
        self.finalized = True


@dataclass
class CombinedMetrics:
    """Cross-repository view built from finalized :class:`RepositoryMetrics`."""

    repos: list[str]
    days: int
    deployments_total: int = 0
    failure_count: int = 0
    lead_times: list[timedelta] = field(default_factory=list)
    first_review_times: list[timedelta] = field(default_factory=list)
    members: dict[Handle, MemberAggregate] = field(default_factory=dict)
    deployment_frequency: float = 0.0
    change_failure_rate: float = 0.0
    avg_lead_time: timedelta = stats.ZERO
    median_lead_time: timedelta = stats.ZERO
    avg_first_review: timedelta = stats.ZERO
    median_first_review: timedelta = stats.ZERO


@dataclass
class RunResult:
    """Everything one run hands to the renderer."""

    owner: str
    period: Period
    repositories: list[RepositoryMetrics] = field(default_factory=list)
    combined: CombinedMetrics | None = None
    failed_repos: list[str] = field(default_factory=list)
