"""GitHub API rate limit monitoring."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

logger = logging.getLogger(__name__)


class RateLimitMonitor:
    """Tracks the remaining request budget from ``X-RateLimit-*`` headers.

    When the budget drops to ``threshold`` the next request waits for the
    reset window instead of burning the last calls on 403 responses.
    """

    def __init__(self, threshold: int = 10, max_wait: float = 3600) -> None:
        self._remaining: int | None = None
        self._reset_at: float | None = None
        self._threshold = threshold
        self._max_wait = max_wait

    @property
    def remaining(self) -> int | None:
        return self._remaining

    def update(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset_at = response.headers.get("X-RateLimit-Reset")
        try:
            if remaining is not None:
                self._remaining = int(remaining)
            if reset_at is not None:
                self._reset_at = float(reset_at)
        except ValueError:
            logger.debug("Ignoring unparsable rate limit headers: %s / %s", remaining, reset_at)

    async def wait_if_needed(self) -> None:
        if (
            self._remaining is not None
            and self._remaining <= self._threshold
            and self._reset_at is not None
        ):
            wait_seconds = min(max(0, self._reset_at - time.time()) + 1, self._max_wait)
            logger.warning(
                "GitHub rate limit nearly exhausted (%d left), waiting %.0fs",
                self._remaining,
                wait_seconds,
            )
            await asyncio.sleep(wait_seconds)
