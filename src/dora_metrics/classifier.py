"""Change-failure heuristics.

A merged PR counts as a failure when its head branch or one of its labels
looks like remediation work. Revert commits on the trunk branch are counted
separately at repository scope and are never attributed to a PR.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import CommitRef, PullRequest

BRANCH_KEYWORDS = ("hotfix", "bugfix")
LABEL_KEYWORDS = ("bug", "hotfix", "bugfix")


def failure_signals(pr: PullRequest) -> list[str]:
    """Return every signal that marks ``pr`` as a failure, e.g. ``["branch:hotfix/x"]``."""
    signals: list[str] = []
    branch = pr.head_ref.lower()
    if any(keyword in branch for keyword in BRANCH_KEYWORDS):
        signals.append(f"branch:{pr.head_ref}")
    for label in pr.labels:
        lower = label.lower()
        if any(keyword in lower for keyword in LABEL_KEYWORDS):
            signals.append(f"label:{label}")
    return signals


def classify(pr: PullRequest) -> bool:
    """True when ``pr`` carries at least one failure signal."""
    return bool(failure_signals(pr))


def is_revert_commit(commit: CommitRef) -> bool:
    return commit.message.lower().startswith("revert")


def count_reverts(commits: Iterable[CommitRef]) -> int:
    return sum(1 for c in commits if is_revert_commit(c))
