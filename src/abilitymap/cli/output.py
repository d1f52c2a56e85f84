"""Rich output formatting for the abilitymap CLI.

Centralizes the console instance, table builders and error output so every
command renders scores, reports and errors the same way.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Literal

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence

    from abilitymap.core.models import ConfidenceInterval, ItemEvaluationResult
    from abilitymap.execution.batch import BatchRunReport

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


# =============================================================================
# Formatters
# =============================================================================


def format_duration(seconds: float | None) -> str:
    """Format a duration in seconds to human-readable string.

    Returns:
        Human-readable duration string (e.g., "5.2s", "3m 12s", "1h 30m").
    """
    if seconds is None:
        return "N/A"

    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def format_interval(interval: ConfidenceInterval) -> str:
    return f"[{interval.lower:.3f}, {interval.upper:.3f}]"


def ability_color(ability: float) -> str:
    """Color band for an ability on the 0-4 scale."""
    if ability >= 3:
        return "green"
    if ability >= 1.5:
        return "cyan"
    if ability > 0:
        return "yellow"
    return "dim"


# =============================================================================
# Table and panel builders
# =============================================================================


def create_scores_table(subject: str) -> Table:
    """Create a styled table for per-criterion ability scores."""
    table = Table(title=f"Ability scores: {subject}")
    table.add_column("Criterion", style="cyan", no_wrap=True)
    table.add_column("Ability", justify="right")
    table.add_column("95% CI", style="dim")
    table.add_column("Evaluations", justify="right", style="dim")
    return table


def create_summaries_table(subject: str) -> Table:
    """Create a styled table for per-criterion ability summaries."""
    table = Table(title=f"Ability summaries: {subject}", show_lines=True)
    table.add_column("Criterion", style="cyan", no_wrap=True)
    table.add_column("Ability", justify="right")
    table.add_column("Summary")
    return table


def create_evaluations_table() -> Table:
    """Create a styled table for per-item evaluation results."""
    table = Table(title="Evaluated items")
    table.add_column("Item", style="cyan", no_wrap=True)
    table.add_column("Criteria", justify="right")
    table.add_column("Evaluable", justify="right")
    table.add_column("Flags", style="yellow")
    return table


def add_evaluation_rows(table: Table, results: Sequence[ItemEvaluationResult]) -> None:
    for result in results:
        flags = []
        surprises = sum(1 for e in result.evaluations if e.surprise_flag)
        incidents = sum(1 for e in result.evaluations if e.incident_flag)
        if surprises:
            flags.append(f"{surprises} surprise")
        if incidents:
            flags.append(f"{incidents} incident")
        table.add_row(
            result.name,
            str(len(result.evaluations)),
            str(sum(1 for e in result.evaluations if e.evaluable)),
            ", ".join(flags) or "-",
        )


def create_header_panel(
    lines: Sequence[str],
    title: str,
    border_style: str = "default",
) -> Panel:
    """Create a header panel with consistent styling."""
    return Panel("\n".join(lines), title=title, border_style=border_style)


def create_run_report_panel(report: BatchRunReport) -> Panel:
    """Summarize a batch run: totals, timeouts and duration."""
    lines = [
        f"[bold]{report.label}[/bold]",
        f"  Succeeded: [green]{report.succeeded}[/green]/{report.total_items}",
        f"  Failed: [red]{report.failed}[/red]",
        f"  Batches: {len(report.batches)}",
    ]
    if report.timed_out_batches:
        batches = ", ".join(str(b) for b in report.timed_out_batches)
        lines.append(f"  Timed out batches: [yellow]{batches}[/yellow]")
    lines.append(f"  Duration: {format_duration(report.duration_seconds)}")
    border = "green" if report.failed == 0 else "yellow"
    return Panel("\n".join(lines), title="Run Summary", border_style=border)


# =============================================================================
# Structured output
# =============================================================================


def output_json(data: Any, console_instance: Console | None = None) -> None:
    """Print ``data`` as JSON without line wrapping or markup."""
    out = console_instance or console
    out.print_json(json.dumps(data, default=str))


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
    console_instance: Console | None = None,
) -> None:
    """Output a formatted error/warning with optional hints and JSON alternative."""
    out = console_instance or console
    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"

    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if hints:
            result["hints"] = hints
        output_json(result, out)
        return

    out.print(f"[{color}]{label}:[/{color}] {escape(message)}")

    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {hint}")


__all__ = [
    "ability_color",
    "add_evaluation_rows",
    "console",
    "create_evaluations_table",
    "create_header_panel",
    "create_run_report_panel",
    "create_scores_table",
    "create_summaries_table",
    "format_duration",
    "format_interval",
    "output_error",
    "output_json",
]
