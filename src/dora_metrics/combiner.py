"""Combine finalized per-repository metrics into one cross-repository view."""

from __future__ import annotations

from collections.abc import Sequence

from . import stats
from .models import CombinedMetrics, MemberAggregate, RepositoryMetrics


def combine_metrics(results: Sequence[RepositoryMetrics]) -> CombinedMetrics:
    """Pool the raw samples of ``results`` and recompute every statistic once.

    Members are merged by handle, so the same contributor in two repositories
    ends up as a single entry whose averages are taken over the pooled
    samples rather than averaged per repository. The window length comes
    from the first repository. Inputs are left untouched.
    """
    combined = CombinedMetrics(
        repos=[r.repo for r in results],
        days=results[0].period.days if results else 0,
    )

    for r in results:
        combined.deployments_total += r.deployments_total
        combined.failure_count += r.failure_count
        combined.lead_times.extend(r.lead_times)
        combined.first_review_times.extend(r.first_review_times)
        for handle, member in r.members.items():
            merged = combined.members.get(handle)
            if merged is None:
                merged = MemberAggregate(handle=member.handle)
                combined.members[handle] = merged
            merged.absorb(member)

    combined.deployment_frequency = stats.frequency(combined.deployments_total, combined.days)
    combined.change_failure_rate = stats.rate(combined.failure_count, combined.deployments_total)
    combined.avg_lead_time = stats.average(combined.lead_times)
    combined.median_lead_time = stats.median(combined.lead_times)
    combined.avg_first_review = stats.average(combined.first_review_times)
    combined.median_first_review = stats.median(combined.first_review_times)
    for member in combined.members.values():
        member.finalize()
    return combined
