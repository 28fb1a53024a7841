"""Rich-based terminal report renderer with JSON support."""

from __future__ import annotations

import io
import json
from datetime import timedelta
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import CombinedMetrics, MemberAggregate, RepositoryMetrics, RunResult


def _format_number(n: int) -> str:
    return f"{n:,}"


def _format_duration(value: timedelta, samples: int) -> str:
    if samples == 0:
        return "-"
    hours = value.total_seconds() / 3600
    if hours < 1:
        return f"{hours * 60:.0f}m"
    if hours < 24:
        return f"{hours:.1f}h"
    return f"{hours / 24:.1f}d"


def _avg_median(avg: timedelta, median: timedelta, samples: int) -> str:
    return f"{_format_duration(avg, samples)} / {_format_duration(median, samples)}"


def _write_to_file(content: str, output_file: str) -> None:
    """Write content to a file and print confirmation."""
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(content)
    Console().print(f"Saved to {output_file}")


def _summary_table(m: RepositoryMetrics | CombinedMetrics) -> Table:
    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column("label", style="dim")
    summary.add_column("value", style="bold")
    summary.add_row("Deployments", _format_number(m.deployments_total))
    summary.add_row(
        "Deployment Frequency",
        f"{m.deployment_frequency:.2f}/day ({m.deployment_frequency * 7:.1f}/week)",
    )
    summary.add_row(
        "Lead Time (avg / median)",
        _avg_median(m.avg_lead_time, m.median_lead_time, len(m.lead_times)),
    )
    summary.add_row(
        "Change Failure Rate",
        f"{m.change_failure_rate:.1f}% ({m.failure_count} / {m.deployments_total})",
    )
    summary.add_row(
        "First Review (avg / median)",
        _avg_median(m.avg_first_review, m.median_first_review, len(m.first_review_times)),
    )
    return summary


def _member_table(members: dict[Any, MemberAggregate]) -> Table | None:
    active = [m for m in members.values() if m.prs_merged > 0]
    if not active:
        return None
    active.sort(key=lambda m: (-m.prs_merged, m.handle.key))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Member", no_wrap=True)
    table.add_column("PRs", justify="right")
    table.add_column("Lead (avg / med)", justify="right", no_wrap=True)
    table.add_column("Review (avg / med)", justify="right", no_wrap=True)
    table.add_column("Failures", justify="right")
    for m in active:
        table.add_row(
            f"@{m.handle}",
            _format_number(m.prs_merged),
            _avg_median(m.avg_lead_time, m.median_lead_time, len(m.lead_times)),
            _avg_median(m.avg_first_review, m.median_first_review, len(m.first_review_times)),
            _format_number(m.failure_prs),
        )
    return table


def _render_repository(console: Console, owner: str, m: RepositoryMetrics) -> None:
    console.print(Panel(
        Text(f"DORA Metrics: {owner}/{m.repo}\nPeriod: {m.period.label}", justify="center"),
        style="bold cyan",
    ))
    console.print(_summary_table(m))
    notes = []
    if m.revert_count:
        notes.append(f"{m.failure_prs} failure PR(s) + {m.revert_count} revert(s) on trunk")
    if m.skipped_prs:
        skipped = ", ".join(f"#{n}" for n in sorted(m.skipped_prs))
        notes.append(f"skipped PRs: {skipped}")
    if m.lead_time_anomalies:
        notes.append(f"{m.lead_time_anomalies} negative lead time(s) clamped to zero")
    for note in notes:
        console.print(f"  [dim]{note}[/dim]")
    console.print()

    members = _member_table(m.members)
    if members is not None:
        console.print("[bold]Per-Member Breakdown[/bold]")
        console.print(members)
        console.print()


def _render_combined(console: Console, combined: CombinedMetrics) -> None:
    console.print(Panel(
        Text(f"Combined Summary ({', '.join(combined.repos)})", justify="center"),
        style="bold magenta",
    ))
    console.print(_summary_table(combined))
    console.print()
    members = _member_table(combined.members)
    if members is not None:
        console.print("[bold]Combined Per-Member Metrics[/bold]")
        console.print(members)
        console.print()


def render_report(result: RunResult, output_file: str | None = None) -> None:
    """Render a RunResult to the terminal using rich."""
    if output_file:
        string_io = io.StringIO()
        console = Console(file=string_io, force_terminal=False, width=120)
    else:
        console = Console()

    if result.failed_repos:
        console.print(
            f"[bold yellow]Warning:[/bold yellow] Failed to analyze "
            f"{len(result.failed_repos)} repo(s): {', '.join(result.failed_repos)}"
        )
        console.print()

    for m in result.repositories:
        _render_repository(console, result.owner, m)

    if result.combined is not None:
        _render_combined(console, result.combined)

    if output_file:
        _write_to_file(string_io.getvalue(), output_file)


def _seconds(value: timedelta) -> float:
    return value.total_seconds()


def _member_to_dict(m: MemberAggregate) -> dict[str, Any]:
    return {
        "username": m.handle.login,
        "prs_merged": m.prs_merged,
        "failure_prs": m.failure_prs,
        "lead_time_samples": len(m.lead_times),
        "avg_lead_time_seconds": _seconds(m.avg_lead_time),
        "median_lead_time_seconds": _seconds(m.median_lead_time),
        "first_review_samples": len(m.first_review_times),
        "avg_first_review_seconds": _seconds(m.avg_first_review),
        "median_first_review_seconds": _seconds(m.median_first_review),
    }


def _metrics_to_dict(m: RepositoryMetrics | CombinedMetrics) -> dict[str, Any]:
    return {
        "deployments_total": m.deployments_total,
        "deployment_frequency": m.deployment_frequency,
        "failure_count": m.failure_count,
        "change_failure_rate": m.change_failure_rate,
        "lead_time_samples": len(m.lead_times),
        "avg_lead_time_seconds": _seconds(m.avg_lead_time),
        "median_lead_time_seconds": _seconds(m.median_lead_time),
        "first_review_samples": len(m.first_review_times),
        "avg_first_review_seconds": _seconds(m.avg_first_review),
        "median_first_review_seconds": _seconds(m.median_first_review),
        "members": [_member_to_dict(mm) for mm in m.members.values()],
    }


def result_to_dict(result: RunResult) -> dict[str, Any]:
    repositories = []
    for m in result.repositories:
        data = {
            "repo": m.repo,
            "period": m.period.label,
            "days": m.period.days,
            "failure_prs": m.failure_prs,
            "revert_count": m.revert_count,
            "skipped_prs": sorted(m.skipped_prs),
            "lead_time_anomalies": m.lead_time_anomalies,
        }
        data.update(_metrics_to_dict(m))
        repositories.append(data)

    combined = None
    if result.combined is not None:
        combined = {"repos": result.combined.repos, "days": result.combined.days}
        combined.update(_metrics_to_dict(result.combined))

    return {
        "owner": result.owner,
        "period": result.period.label,
        "repositories": repositories,
        "combined": combined,
        "failed_repos": result.failed_repos,
    }


def render_json(result: RunResult, output_file: str | None = None) -> None:
    """Render a RunResult as JSON."""
    content = json.dumps(result_to_dict(result), indent=2, ensure_ascii=False)
    if output_file:
        _write_to_file(content, output_file)
    else:
        print(content)
