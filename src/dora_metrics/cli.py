"""CLI entrypoint for dora-metrics."""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from datetime import date, datetime, timedelta, timezone

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from . import __version__
from .aggregator import DEFAULT_WORKERS
from .config import build_config
from .errors import ConfigurationError

RELATIVE_DATE = re.compile(r"^(\d+)([dwmy])$")
UNIT_DAYS = {"d": 1, "w": 7, "m": 30, "y": 365}


def _resolve_date(value: str | None, today: date | None = None) -> str | None:
    """Turn ``today`` or an offset such as 7d, 2w, 3m, 1y into a UTC calendar date.

    Anything else is passed through for ``build_config`` to validate.
    """
    if not value:
        return None
    today = today or datetime.now(timezone.utc).date()
    if value == "today":
        return today.isoformat()
    match = RELATIVE_DATE.match(value)
    if match is None:
        return value
    amount, unit = match.groups()
    return (today - timedelta(days=int(amount) * UNIT_DAYS[unit])).isoformat()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@click.command()
@click.option(
    "--owner",
    envvar="GITHUB_OWNER",
    show_envvar=True,
    help="GitHub organization or user that owns the repositories",
)
@click.option(
    "--repos",
    envvar="GITHUB_REPOS",
    show_envvar=True,
    help="Comma-separated repository names",
)
@click.option(
    "--members",
    envvar="GITHUB_MEMBERS",
    show_envvar=True,
    default="",
    help="Comma-separated GitHub usernames to include (default: all contributors)",
)
@click.option(
    "--from",
    "since",
    envvar="DORA_FROM",
    show_envvar=True,
    help="Start date (YYYY-MM-DD or relative: 7d, 2w, 3m, 1y)",
)
@click.option(
    "--to",
    "until",
    envvar="DORA_TO",
    show_envvar=True,
    help="End date, inclusive (YYYY-MM-DD, relative, or 'today')",
)
@click.option(
    "--token",
    envvar="GITHUB_TOKEN",
    show_envvar=True,
    help="GitHub personal access token",
)
@click.option(
    "--workers",
    default=DEFAULT_WORKERS,
    show_default=True,
    type=click.IntRange(min=1),
    help="Concurrent PR workers per repository",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format",
)
@click.option(
    "--output",
    "output_file",
    default=None,
    type=click.Path(),
    help="Save output to file instead of stdout",
)
@click.option(
    "--api-url",
    default=None,
    help="GitHub Enterprise API base URL",
)
@click.option(
    "--no-ssl-verify",
    is_flag=True,
    default=False,
    help="Disable SSL verification (self-signed certs)",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Show progress logs")
@click.version_option(version=__version__)
def main(
    owner: str | None,
    repos: str | None,
    members: str,
    since: str | None,
    until: str | None,
    token: str | None,
    workers: int,
    output_format: str,
    output_file: str | None,
    api_url: str | None,
    no_ssl_verify: bool,
    verbose: bool,
) -> None:
    """Compute DORA delivery metrics from GitHub pull requests.

    \b
    Examples:
      dora-metrics --owner myorg --repos api,web --from 2025-10-01 --to 2025-12-31
      dora-metrics --owner myorg --repos api --from 30d --to today --members alice,bob
      dora-metrics --owner myorg --repos api --from 3m --format json --output dora.json
    """
    _configure_logging(verbose)

    try:
        config = build_config(
            token=token,
            owner=owner,
            repos=repos,
            since=_resolve_date(since),
            until=_resolve_date(until),
            members=members,
        )
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    from .orchestrator import run

    try:
        result = asyncio.run(
            run(
                config,
                workers=workers,
                output_format=output_format,
                output_file=output_file,
                api_url=api_url,
                verify_ssl=not no_ssl_verify,
            )
        )
    except Exception as exc:
        logging.getLogger(__name__).debug("Run failed", exc_info=True)
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if not result.repositories:
        click.echo("Error: no repository could be analyzed.", err=True)
        sys.exit(1)


def entrypoint() -> None:
    """Console script: load ``.env`` before click reads environment defaults."""
    load_dotenv()
    main()


if __name__ == "__main__":  # pragma: no cover
    entrypoint()
