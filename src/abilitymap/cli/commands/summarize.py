"""Summarize command for the abilitymap CLI.

Writes a short explanation of each ability score from the stored
judgments. Summaries already in the state store are reused; only missing
criteria are sent to the backend unless ``--refresh`` is given.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from abilitymap.core.config import AppConfig
from abilitymap.core.logging import RunContext, with_context
from abilitymap.evaluation.pipeline import EvaluationPipeline, SubjectSummary

from ..helpers import configure_global_logging, create_backend, create_state, load_config
from ..output import (
    ability_color,
    console,
    create_summaries_table,
    output_error,
    output_json,
)


def summarize(
    subject: str = typer.Argument(..., help="Person whose ability scores to summarize"),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file",
        exists=True,
        readable=True,
    ),
    criteria: list[str] | None = typer.Option(
        None,
        "--criterion",
        help="Criterion to summarize (repeatable). Defaults to all configured criteria.",
    ),
    repository: str | None = typer.Option(
        None,
        "--repository",
        "-r",
        help="Only use judgments from this repository",
    ),
    refresh: bool = typer.Option(
        False,
        "--refresh",
        help="Regenerate summaries even when stored ones exist",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output summaries as JSON",
    ),
) -> None:
    """Summarize a subject's ability per criterion with the configured backend."""
    config = load_config(config_file, console, json_output)
    configure_global_logging(console, config.logging)

    unknown = [c for c in criteria or [] if c not in config.pipeline.criteria]
    if unknown:
        output_error(
            f"Unknown criteria: {', '.join(unknown)}",
            hints=[f"Configured criteria: {', '.join(config.pipeline.criteria)}"],
            json_output=json_output,
        )
        raise typer.Exit(2)

    result = asyncio.run(_summarize(subject, criteria or None, repository, refresh, config))

    if not result.summaries:
        output_error(
            f"No ability summaries for {subject}",
            hints=["Run 'abilitymap evaluate' first to store judgments for this subject"],
            json_output=json_output,
        )
        raise typer.Exit(1)

    if json_output:
        output_json({"success": True, **result.to_dict()})
        return

    table = create_summaries_table(subject)
    for s in result.summaries:
        color = ability_color(s.ability)
        table.add_row(s.criterion, f"[{color}]{s.ability:.3f}[/{color}]", s.summary)
    console.print(table)
    console.print(f"[dim]{result.generated} generated, {result.cached} from store[/dim]")


async def _summarize(
    subject: str,
    criteria: list[str] | None,
    repository: str | None,
    refresh: bool,
    config: AppConfig,
) -> SubjectSummary:
    backend = create_backend(config.backend)
    state = create_state(config.state)
    pipeline = EvaluationPipeline(backend, state, config)
    try:
        with with_context(RunContext(subject=subject)):
            return await pipeline.summarize_subject(subject, criteria, repository, refresh)
    finally:
        await backend.close()
        await state.close()
