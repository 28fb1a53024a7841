"""Tests for the aggregator module."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from dora_metrics.aggregator import (
    AggregationState,
    RepositoryAggregator,
    collect_repository_metrics,
    lead_time,
    time_to_first_review,
)
from dora_metrics.errors import FetchError
from dora_metrics.github.client import GitHubClient
from dora_metrics.models import CommitRef, Handle, Period, PullRequest, Review

T0 = datetime(2025, 10, 1, tzinfo=timezone.utc)
PERIOD = Period(start=T0, end=datetime(2025, 10, 30, 23, 59, 59, tzinfo=timezone.utc))


def at(hours: float) -> datetime:
    return T0 + timedelta(hours=hours)


def make_pr(
    number: int,
    author: str = "alice",
    head_ref: str = "feature/x",
    labels: tuple[str, ...] = (),
    created: float = 10,
    merged: float = 20,
) -> PullRequest:
    return PullRequest(
        number=number,
        title=f"PR {number}",
        head_ref=head_ref,
        author=Handle(author),
        created_at=at(created),
        merged_at=at(merged),
        labels=labels,
    )


def commit(hours: float, message: str = "work") -> CommitRef:
    return CommitRef(sha=f"c{hours}", message=message, authored_at=at(hours))


def review(reviewer: str, hours: float) -> Review:
    return Review(reviewer=Handle(reviewer), submitted_at=at(hours))


def make_client(prs, commits=None, reviews=None, trunk=None):
    """AsyncMock client serving fixed data keyed by PR number."""
    commits = commits or {}
    reviews = reviews or {}
    client = AsyncMock(spec=GitHubClient)
    client.list_merged_pull_requests.return_value = list(prs)

    async def list_commits(owner, repo, number):
        await asyncio.sleep(0.001 * (number % 3))
        value = commits.get(number, [])
        if isinstance(value, Exception):
            raise value
        return value

    async def list_reviews(owner, repo, number):
        await asyncio.sleep(0.001 * (number % 2))
        value = reviews.get(number, [])
        if isinstance(value, Exception):
            raise value
        return value

    client.list_pull_request_commits.side_effect = list_commits
    client.list_pull_request_reviews.side_effect = list_reviews
    if isinstance(trunk, Exception):
        client.list_branch_commits.side_effect = trunk
    else:
        client.list_branch_commits.return_value = trunk or []
    return client


def test_lead_time_uses_earliest_commit():
    pr = make_pr(1, merged=20)
    assert lead_time(pr, [commit(5), commit(2), commit(8)]) == timedelta(hours=18)


def test_lead_time_without_commits_is_missing():
    assert lead_time(make_pr(1), []) is None


def test_first_review_excludes_author_and_pending():
    pr = make_pr(1, author="alice", created=10)
    reviews = [
        review("ALICE", 11),
        Review(reviewer=Handle("carol"), submitted_at=None),
        review("bob", 15),
        review("dave", 13),
    ]
    assert time_to_first_review(pr, reviews) == timedelta(hours=3)


def test_first_review_only_self_review_is_missing():
    pr = make_pr(1, author="alice")
    assert time_to_first_review(pr, [review("Alice", 12)]) is None


@pytest.mark.asyncio
async def test_scenario_failure_classification():
    prs = [
        make_pr(1, head_ref="hotfix/x"),
        make_pr(2, head_ref="feature/y", labels=("bug",)),
        make_pr(3, head_ref="feature/z"),
    ]
    client = make_client(prs, commits={n: [commit(1)] for n in (1, 2, 3)})

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.deployments_total == 3
    assert metrics.failure_count == 2
    assert metrics.change_failure_rate == pytest.approx(66.7, abs=0.05)
    assert metrics.deployment_frequency == pytest.approx(3 / 30)


@pytest.mark.asyncio
async def test_scenario_pr_without_commits():
    prs = [make_pr(1, merged=20), make_pr(2, merged=30)]
    client = make_client(prs, commits={1: [commit(10)], 2: []})

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.deployments_total == 2
    assert metrics.lead_times == [timedelta(hours=10)]
    alice = metrics.members[Handle("alice")]
    assert alice.prs_merged == 2
    assert alice.lead_times == [timedelta(hours=10)]
    assert alice.avg_lead_time == timedelta(hours=10)


@pytest.mark.asyncio
async def test_scenario_self_review_only():
    prs = [make_pr(1, author="alice", created=10)]
    client = make_client(prs, commits={1: [commit(1)]}, reviews={1: [review("alice", 12)]})

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.deployments_total == 1
    assert metrics.first_review_times == []
    assert metrics.avg_first_review == timedelta(0)


@pytest.mark.asyncio
async def test_reverts_added_to_failure_count():
    prs = [make_pr(1), make_pr(2), make_pr(3), make_pr(4)]
    trunk = [commit(1, 'Revert "Add X"'), commit(2, "feat: Y"), commit(3, "revert: Z")]
    client = make_client(prs, trunk=trunk)

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.revert_count == 2
    assert metrics.failure_prs == 0
    assert metrics.failure_count == 2
    assert metrics.change_failure_rate == 50.0


@pytest.mark.asyncio
async def test_reverts_outnumbering_prs_cap_failure_rate():
    trunk = [commit(n, f'Revert "change {n}"') for n in (1, 2, 3)]
    client = make_client([make_pr(1)], trunk=trunk)

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.revert_count == 3
    assert metrics.failure_count == 3
    assert metrics.change_failure_rate == 100.0


@pytest.mark.asyncio
async def test_trunk_falls_back_to_master():
    client = make_client([make_pr(1)])

    async def branch_commits(owner, repo, branch, since, until=None):
        if branch == "main":
            raise FetchError(f"/repos/{owner}/{repo}/commits", 404)
        return [commit(1, 'Revert "oops"')]

    client.list_branch_commits.side_effect = branch_commits

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.revert_count == 1
    branches = [c.args[2] for c in client.list_branch_commits.call_args_list]
    assert branches == ["main", "master"]


@pytest.mark.asyncio
async def test_trunk_unavailable_degrades_to_zero(caplog):
    client = make_client([make_pr(1)], trunk=FetchError("/repos/org/repo/commits", 404))

    with caplog.at_level(logging.WARNING, logger="dora_metrics.aggregator"):
        metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.revert_count == 0
    assert metrics.deployments_total == 1
    assert "could not fetch trunk history" in caplog.text


@pytest.mark.asyncio
async def test_sub_fetch_error_skips_only_that_pr(caplog):
    prs = [make_pr(1, head_ref="hotfix/a"), make_pr(2), make_pr(3)]
    client = make_client(
        prs,
        commits={1: [commit(1)], 2: [commit(2)], 3: [commit(3)]},
        reviews={2: FetchError("/repos/org/repo/pulls/2/reviews", 500)},
    )

    with caplog.at_level(logging.WARNING, logger="dora_metrics.aggregator"):
        metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.skipped_prs == [2]
    assert metrics.deployments_total == 2
    assert metrics.failure_prs == 1
    assert len(metrics.lead_times) == 2
    assert "could not fetch reviews for PR #2" in caplog.text


@pytest.mark.asyncio
async def test_pr_list_error_aborts_repository():
    client = make_client([])
    client.list_merged_pull_requests.side_effect = FetchError("/repos/org/repo/pulls", 500)

    with pytest.raises(FetchError):
        await collect_repository_metrics(client, "org", "repo", PERIOD)
    client.list_pull_request_commits.assert_not_called()


@pytest.mark.asyncio
async def test_unexpected_worker_error_propagates():
    client = make_client([make_pr(1)])
    client.list_pull_request_commits.side_effect = RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await collect_repository_metrics(client, "org", "repo", PERIOD)


@pytest.mark.asyncio
async def test_worker_error_leaves_no_pending_tasks():
    client = make_client([make_pr(1), make_pr(2), make_pr(3)])
    never = asyncio.Event()

    async def list_commits(owner, repo, number):
        if number == 1:
            raise RuntimeError("boom")
        await never.wait()
        return []

    client.list_pull_request_commits.side_effect = list_commits

    with pytest.raises(RuntimeError, match="boom"):
        await collect_repository_metrics(client, "org", "repo", PERIOD, workers=3)

    pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
    assert pending == []


@pytest.mark.asyncio
async def test_negative_lead_time_clamped():
    prs = [make_pr(1, merged=5)]
    client = make_client(prs, commits={1: [commit(8)]})

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.lead_times == [timedelta(0)]
    assert metrics.lead_time_anomalies == 1


@pytest.mark.asyncio
async def test_allow_listed_members_pre_registered():
    client = make_client([make_pr(1, author="Alice")])

    metrics = await collect_repository_metrics(
        client, "org", "repo", PERIOD, members=[Handle("alice"), Handle("bob")]
    )

    assert metrics.members[Handle("alice")].prs_merged == 1
    assert metrics.members[Handle("bob")].prs_merged == 0
    kwargs = client.list_merged_pull_requests.call_args.kwargs
    assert kwargs["members"] == (Handle("alice"), Handle("bob"))


@pytest.mark.asyncio
async def test_member_handles_fold_case_insensitively():
    prs = [make_pr(1, author="Alice"), make_pr(2, author="alice"), make_pr(3, author="bob")]
    client = make_client(prs)

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert len(metrics.members) == 2
    assert metrics.members[Handle("ALICE")].prs_merged == 2


@pytest.mark.asyncio
async def test_pool_size_does_not_change_results():
    prs = [
        make_pr(
            n,
            author=("alice", "bob", "carol")[n % 3],
            head_ref="hotfix/x" if n % 5 == 0 else "feature/x",
            created=n,
            merged=n + 10 + n % 4,
        )
        for n in range(1, 41)
    ]
    commits = {n: [commit(n - (n % 7)), commit(n)] for n in range(1, 41)}
    reviews = {n: [review("dave", n + 1 + n % 3)] for n in range(1, 41) if n % 2}

    serial = await collect_repository_metrics(
        make_client(prs, commits, reviews), "org", "repo", PERIOD, workers=1
    )
    parallel = await collect_repository_metrics(
        make_client(prs, commits, reviews), "org", "repo", PERIOD, workers=10
    )

    assert serial.deployments_total == parallel.deployments_total == 40
    assert serial.failure_prs == parallel.failure_prs == 8
    assert sorted(serial.lead_times) == sorted(parallel.lead_times)
    assert serial.avg_lead_time == parallel.avg_lead_time
    assert serial.median_lead_time == parallel.median_lead_time
    assert serial.avg_first_review == parallel.avg_first_review
    assert serial.median_first_review == parallel.median_first_review
    for handle, member in serial.members.items():
        other = parallel.members[handle]
        assert member.prs_merged == other.prs_merged
        assert member.avg_lead_time == other.avg_lead_time
        assert member.median_first_review == other.median_first_review


@pytest.mark.asyncio
async def test_state_transitions_and_single_run():
    client = make_client([make_pr(1)])
    aggregator = RepositoryAggregator(client, "org", "repo", PERIOD)
    assert aggregator.state is AggregationState.PENDING

    metrics = await aggregator.run()

    assert aggregator.state is AggregationState.FINALIZED
    assert metrics.finalized
    with pytest.raises(RuntimeError):
        await aggregator.run()


@pytest.mark.asyncio
async def test_progress_callback_reports_every_pr():
    prs = [make_pr(n) for n in range(1, 6)]
    client = make_client(prs, reviews={3: FetchError("/x", 500)})
    seen: list[tuple[int, int]] = []

    await collect_repository_metrics(
        client, "org", "repo", PERIOD, on_progress=lambda done, total: seen.append((done, total))
    )

    assert [done for done, _ in seen] == [1, 2, 3, 4, 5]
    assert all(total == 5 for _, total in seen)


@pytest.mark.asyncio
async def test_empty_repository():
    client = make_client([])

    metrics = await collect_repository_metrics(client, "org", "repo", PERIOD)

    assert metrics.deployments_total == 0
    assert metrics.change_failure_rate == 0.0
    assert metrics.avg_lead_time == timedelta(0)


def test_workers_must_be_positive():
    with pytest.raises(ValueError):
        RepositoryAggregator(AsyncMock(spec=GitHubClient), "org", "repo", PERIOD, workers=0)
