"""Statistics helpers shared by every metric in the package.

All durations are ``datetime.timedelta`` values. Empty inputs never raise:
``average`` and ``median`` return a zero duration, and the rate helpers
return ``0.0`` when their denominator is zero. Percentages stay within
``[0, 100]``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

ZERO = timedelta(0)


def average(durations: Iterable[timedelta]) -> timedelta:
    """Arithmetic mean of ``durations``, or zero for an empty collection."""
    values = list(durations)
    if not values:
        return ZERO
    return sum(values, ZERO) / len(values)


def median(durations: Iterable[timedelta]) -> timedelta:
    """Median of ``durations`` computed over a sorted copy.

    Odd counts return the middle element; even counts return the mean of the
    two middle elements. Empty input returns zero.
    """
    ordered = sorted(durations)
    if not ordered:
        return ZERO
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def rate(numerator: int, denominator: int) -> float:
    """Percentage of ``numerator`` over ``denominator``, capped at 100.

    Returns 0.0 when nothing was counted.
    """
    if denominator <= 0:
        return 0.0
    return min(numerator / denominator * 100, 100.0)


def frequency(count: int, days: int) -> float:
    """Events per day over a window of ``days``."""
    if days <= 0:
        return 0.0
    return count / days
