"""GitHub REST API client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import httpx

from ..errors import FetchError
from ..models import CommitRef, Handle, PullRequest, Review
from .rate_limit import RateLimitMonitor

logger = logging.getLogger(__name__)

BASE_URL = "https://api.github.com"
PAGE_SIZE = 100
REQUEST_TIMEOUT = 30.0


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a GitHub ISO 8601 timestamp into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _required_timestamp(item: dict[str, Any], key: str) -> datetime:
    value = parse_timestamp(item[key])
    if value is None:
        raise ValueError(f"missing {key}")
    return value


def _login(payload: dict[str, Any] | None) -> str:
    return (payload or {}).get("login") or ""


def _pull_request_from_api(item: dict[str, Any]) -> PullRequest:
    return PullRequest(
        number=int(item["number"]),
        title=item.get("title") or "",
        head_ref=(item.get("head") or {}).get("ref") or "",
        author=Handle(_login(item.get("user"))),
        created_at=_required_timestamp(item, "created_at"),
        merged_at=parse_timestamp(item.get("merged_at")),
        labels=tuple(label.get("name", "") for label in item.get("labels") or []),
    )


def _commit_from_api(item: dict[str, Any]) -> CommitRef:
    commit = item.get("commit") or {}
    return CommitRef(
        sha=item.get("sha", ""),
        message=commit.get("message") or "",
        authored_at=parse_timestamp((commit.get("author") or {}).get("date")),
    )


def _review_from_api(item: dict[str, Any]) -> Review:
    return Review(
        reviewer=Handle(_login(item.get("user"))),
        submitted_at=parse_timestamp(item.get("submitted_at")),
    )


def _parse_items(
    path: str,
    items: list[dict[str, Any]],
    parser: Callable[[dict[str, Any]], Any],
) -> list[Any]:
    try:
        return [parser(item) for item in items]
    except (KeyError, TypeError, ValueError) as exc:
        raise FetchError(path, reason=f"malformed payload: {exc!r}") from exc


class GitHubClient:
    """Async GitHub REST API client with page-number pagination.

    Every call carries a fixed timeout and is attempted exactly once; failures
    surface as :class:`FetchError` for the caller to absorb or propagate.
    """

    def __init__(
        self,
        token: str,
        concurrency: int = 10,
        base_url: str | None = None,
        verify_ssl: bool = True,
        page_size: int = PAGE_SIZE,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        self._client = httpx.AsyncClient(
            base_url=base_url or BASE_URL,
            headers=headers,
            timeout=REQUEST_TIMEOUT,
            verify=verify_ssl,
        )
        self._rate_limit = RateLimitMonitor()
        self._semaphore = asyncio.Semaphore(concurrency)
        self._page_size = page_size

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        async with self._semaphore:
            await self._rate_limit.wait_if_needed()
            try:
                response = await self._client.get(path, params=params)
            except httpx.HTTPError as exc:
                raise FetchError(path, reason=str(exc) or type(exc).__name__) from exc
            self._rate_limit.update(response)
            if not response.is_success:
                raise FetchError(path, status=response.status_code)
            return response

    async def _get_json(
        self, path: str, params: dict[str, Any] | None = None
    ) -> Any:
        response = await self._get(path, params)
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(path, reason="malformed JSON payload") from exc

    async def _paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        stop: Callable[[dict[str, Any]], bool] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch ``page=1, 2, ...`` until a short page or a ``stop`` item.

        A failing page raises; no partial result is returned.
        """
        results: list[dict[str, Any]] = []
        page = 1
        while True:
            query = dict(params or {})
            query.update({"per_page": self._page_size, "page": page})
            logger.debug("GET %s page %d", path, page)
            data = await self._get_json(path, query)
            if not isinstance(data, list):
                raise FetchError(path, reason="expected a JSON array")
            results.extend(data)
            if len(data) < self._page_size:
                break
            if stop is not None and any(stop(item) for item in data):
                break
            page += 1
        return results

    async def list_merged_pull_requests(
        self,
        owner: str,
        repo: str,
        since: datetime,
        until: datetime,
        members: Iterable[Handle] = (),
    ) -> list[PullRequest]:
        """List PRs merged within ``[since, until]``, newest activity first.

        The listing is requested in descending ``updated`` order and
        pagination stops after the first page containing a PR merged before
        ``since``. That shortcut relies on GitHub honouring the requested
        order. ``members`` restricts results to those authors; empty means all.
        """
        path = f"/repos/{owner}/{repo}/pulls"
        allowed = set(members)

        def merged_too_early(item: dict[str, Any]) -> bool:
            try:
                merged_at = parse_timestamp(item.get("merged_at"))
            except ValueError:
                return False
            return merged_at is not None and merged_at < since

        items = await self._paginate(
            path,
            params={"state": "closed", "sort": "updated", "direction": "desc"},
            stop=merged_too_early,
        )
        merged = [item for item in items if item.get("merged_at")]

        pull_requests: list[PullRequest] = []
        for pr in _parse_items(path, merged, _pull_request_from_api):
            if pr.merged_at < since or pr.merged_at > until:
                continue
            if allowed and pr.author not in allowed:
                continue
            pull_requests.append(pr)
        return pull_requests

    async def list_pull_request_commits(
        self, owner: str, repo: str, number: int
    ) -> list[CommitRef]:
        path = f"/repos/{owner}/{repo}/pulls/{number}/commits"
        return _parse_items(path, await self._paginate(path), _commit_from_api)

    async def list_pull_request_reviews(
        self, owner: str, repo: str, number: int
    ) -> list[Review]:
        path = f"/repos/{owner}/{repo}/pulls/{number}/reviews"
        return _parse_items(path, await self._paginate(path), _review_from_api)

    async def list_branch_commits(
        self,
        owner: str,
        repo: str,
        branch: str,
        since: datetime,
        until: datetime | None = None,
    ) -> list[CommitRef]:
        """List commits reachable from ``branch`` within ``[since, until]``."""
        path = f"/repos/{owner}/{repo}/commits"
        params = {"sha": branch, "since": format_timestamp(since)}
        if until is not None:
            params["until"] = format_timestamp(until)
        items = await self._paginate(path, params=params)
        return _parse_items(path, items, _commit_from_api)
