"""Per-repository aggregation: fetch merged PRs, classify them, fold metrics."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Iterable
from datetime import timedelta

from .classifier import classify, count_reverts, failure_signals
from .errors import FetchError
from .github.client import GitHubClient
from .models import CommitRef, Handle, Period, PullRequest, RepositoryMetrics, Review

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 10
TRUNK_BRANCHES = ("main", "master")
PROGRESS_EVERY = 10

_CLOSED = object()

ProgressCallback = Callable[[int, int], None]


class AggregationState(enum.Enum):
    PENDING = "pending"
    FETCHING_PRS = "fetching_prs"
    FETCHING_TRUNK = "fetching_trunk"
    DISPATCHING = "dispatching"
    DRAINING = "draining"
    FINALIZED = "finalized"


def lead_time(pr: PullRequest, commits: Iterable[CommitRef]) -> timedelta | None:
    """Time from the earliest authored commit to the merge, if measurable."""
    authored = [c.authored_at for c in commits if c.authored_at is not None]
    if not authored or pr.merged_at is None:
        return None
    return pr.merged_at - min(authored)


def time_to_first_review(pr: PullRequest, reviews: Iterable[Review]) -> timedelta | None:
    """Time from PR creation to the first review by someone other than the author."""
    submitted = [
        r.submitted_at
        for r in reviews
        if r.submitted_at is not None and r.reviewer != pr.author
    ]
    if not submitted:
        return None
    return min(submitted) - pr.created_at


class RepositoryAggregator:
    """Computes :class:`RepositoryMetrics` for one repository.

    Merged PRs are pushed onto a queue drained by ``workers`` concurrent
    tasks. Each task fetches a PR's commits and reviews and folds the result
    into the shared metrics under a single lock. A PR whose sub-resources
    cannot be fetched is skipped; only a failure to list PRs aborts the run.
    """

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        period: Period,
        members: Iterable[Handle] = (),
        workers: int = DEFAULT_WORKERS,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._client = client
        self._owner = owner
        self._repo = repo
        self._period = period
        self._members = tuple(members)
        self._workers = workers
        self._on_progress = on_progress
        self._lock = asyncio.Lock()
        self._state = AggregationState.PENDING
        self._done = 0
        self._total = 0

    @property
    def state(self) -> AggregationState:
        return self._state

    @property
    def full_name(self) -> str:
        return f"{self._owner}/{self._repo}"

    async def run(self) -> RepositoryMetrics:
        if self._state is not AggregationState.PENDING:
            raise RuntimeError(f"{self.full_name}: aggregator already ran")

        self._state = AggregationState.FETCHING_PRS
        prs = await self._client.list_merged_pull_requests(
            self._owner,
            self._repo,
            self._period.start,
            self._period.end,
            members=self._members,
        )
        logger.info("%s: found %d merged PRs", self.full_name, len(prs))

        self._state = AggregationState.FETCHING_TRUNK
        metrics = RepositoryMetrics(
            repo=self._repo,
            period=self._period,
            revert_count=await self._count_trunk_reverts(),
        )
        for member in self._members:
            metrics.member(member)

        self._state = AggregationState.DISPATCHING
        self._total = len(prs)
        queue: asyncio.Queue[object] = asyncio.Queue()
        for pr in prs:
            queue.put_nowait(pr)
        tasks = [
            asyncio.create_task(self._worker(queue, metrics))
            for _ in range(self._workers)
        ]
        for _ in tasks:
            queue.put_nowait(_CLOSED)

        self._state = AggregationState.DRAINING
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        metrics.finalize()
        self._state = AggregationState.FINALIZED
        if metrics.skipped_prs:
            logger.warning(
                "%s: skipped %d PR(s) with unavailable commits or reviews",
                self.full_name,
                len(metrics.skipped_prs),
            )
        return metrics

    async def _count_trunk_reverts(self) -> int:
        errors: list[FetchError] = []
        for branch in TRUNK_BRANCHES:
            try:
                commits = await self._client.list_branch_commits(
                    self._owner,
                    self._repo,
                    branch,
                    since=self._period.start,
                    until=self._period.end,
                )
            except FetchError as exc:
                logger.debug("%s: trunk branch %r unavailable: %s", self.full_name, branch, exc)
                errors.append(exc)
                continue
            return count_reverts(commits)
        logger.warning(
            "%s: could not fetch trunk history (%s), counting no reverts",
            self.full_name,
            "; ".join(str(e) for e in errors),
        )
        return 0

    async def _worker(self, queue: asyncio.Queue[object], metrics: RepositoryMetrics) -> None:
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            await self._process(item, metrics)

    async def _process(self, pr: PullRequest, metrics: RepositoryMetrics) -> None:
        commits, reviews = await asyncio.gather(
            self._client.list_pull_request_commits(self._owner, self._repo, pr.number),
            self._client.list_pull_request_reviews(self._owner, self._repo, pr.number),
            return_exceptions=True,
        )

        skip = False
        for resource, result in (("commits", commits), ("reviews", reviews)):
            if isinstance(result, FetchError):
                logger.warning(
                    "%s: could not fetch %s for PR #%d: %s",
                    self.full_name,
                    resource,
                    pr.number,
                    result,
                )
                skip = True
            elif isinstance(result, BaseException):
                raise result

        if skip:
            async with self._lock:
                metrics.skipped_prs.append(pr.number)
                self._advance()
            return

        lead = lead_time(pr, commits)
        first_review = time_to_first_review(pr, reviews)
        is_failure = classify(pr)
        if is_failure:
            logger.debug(
                "%s: PR #%d flagged as failure (%s)",
                self.full_name,
                pr.number,
                ", ".join(failure_signals(pr)),
            )

        async with self._lock:
            if lead is not None and lead < timedelta(0):
                logger.warning(
                    "%s: PR #%d merged %s before its earliest commit, clamping lead time to zero",
                    self.full_name,
                    pr.number,
                    -lead,
                )
                metrics.lead_time_anomalies += 1
                lead = timedelta(0)
            metrics.record(pr.author, lead, first_review, is_failure)
            self._advance()

    def _advance(self) -> None:
        self._done += 1
        if self._done % PROGRESS_EVERY == 0:
            logger.info("%s: processed %d/%d PRs", self.full_name, self._done, self._total)
        if self._on_progress is not None:
            self._on_progress(self._done, self._total)


async def collect_repository_metrics(
    client: GitHubClient,
    owner: str,
    repo: str,
    period: Period,
    members: Iterable[Handle] = (),
    workers: int = DEFAULT_WORKERS,
    on_progress: ProgressCallback | None = None,
) -> RepositoryMetrics:
    """Run a :class:`RepositoryAggregator` for ``owner/repo`` and return its metrics."""
    aggregator = RepositoryAggregator(
        client,
        owner,
        repo,
        period,
        members=members,
        workers=workers,
        on_progress=on_progress,
    )
    return await aggregator.run()
