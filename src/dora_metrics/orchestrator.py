"""Orchestrator: wires together client, aggregator, combiner and renderer."""

from __future__ import annotations

import logging

from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from .aggregator import DEFAULT_WORKERS, collect_repository_metrics
from .combiner import combine_metrics
from .config import MetricsConfig
from .errors import FetchError
from .github.client import GitHubClient
from .models import RunResult
from .renderer import render_json, render_report

logger = logging.getLogger(__name__)


async def collect_metrics(
    client: GitHubClient,
    config: MetricsConfig,
    workers: int = DEFAULT_WORKERS,
    show_progress: bool = True,
) -> RunResult:
    """Analyze every configured repository in order.

    A repository whose PR listing fails is reported and skipped; the others
    are still analyzed. A combined view is added when more than one
    repository succeeded.
    """
    result = RunResult(owner=config.owner, period=config.period)
    logger.info(
        "Owner: %s | Repositories: %s | Members: %s | Period: %s",
        config.owner,
        ", ".join(config.repos),
        ", ".join(str(m) for m in config.members) or "All contributors",
        config.period.label,
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        transient=True,
        disable=not show_progress,
    ) as progress:
        for repo in config.repos:
            task = progress.add_task(f"Analyzing {config.owner}/{repo}...", total=None)

            def on_progress(done: int, total: int, task=task) -> None:
                progress.update(task, completed=done, total=total)

            try:
                metrics = await collect_repository_metrics(
                    client,
                    config.owner,
                    repo,
                    config.period,
                    members=config.members,
                    workers=workers,
                    on_progress=on_progress,
                )
            except FetchError as exc:
                logger.error("Failed to analyze %s/%s: %s", config.owner, repo, exc)
                result.failed_repos.append(repo)
                continue
            finally:
                progress.remove_task(task)
            result.repositories.append(metrics)

    if len(result.repositories) > 1:
        result.combined = combine_metrics(result.repositories)
    return result


async def run(
    config: MetricsConfig,
    workers: int = DEFAULT_WORKERS,
    output_format: str = "table",
    output_file: str | None = None,
    api_url: str | None = None,
    verify_ssl: bool = True,
) -> RunResult:
    """Main pipeline: fetch, aggregate, combine, render."""
    async with GitHubClient(
        token=config.token,
        concurrency=workers,
        base_url=api_url,
        verify_ssl=verify_ssl,
    ) as client:
        result = await collect_metrics(client, config, workers=workers)

    if output_format == "json":
        render_json(result, output_file=output_file)
    else:
        render_report(result, output_file=output_file)
    return result
