"""Score command for the abilitymap CLI.

Estimates a subject's ability per criterion from the judgments already in
the state store. No remote calls are made.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from abilitymap.core.config import AppConfig
from abilitymap.core.logging import RunContext, with_context
from abilitymap.evaluation.pipeline import AbilityScorer, SubjectScore

from ..helpers import configure_global_logging, create_state, load_config
from ..output import (
    ability_color,
    console,
    create_scores_table,
    format_interval,
    output_error,
    output_json,
)


def score(
    subject: str = typer.Argument(..., help="Person whose ability to score"),
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
        help="Criterion to score (repeatable). Defaults to all configured criteria.",
    ),
    repository: str | None = typer.Option(
        None,
        "--repository",
        "-r",
        help="Only use judgments from this repository",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output scores as JSON",
    ),
) -> None:
    """Score a subject on each criterion from stored judgments."""
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

    result = asyncio.run(_score(subject, criteria or None, repository, config))

    if json_output:
        output_json({"success": True, **result.to_dict()})
        return

    table = create_scores_table(subject)
    for s in result.scores:
        color = ability_color(s.ability)
        table.add_row(
            s.criterion,
            f"[{color}]{s.ability:.3f}[/{color}]",
            format_interval(s.confidence_interval),
            str(s.evaluation_count),
        )
    console.print(table)
    console.print(f"Average ability: [bold]{result.average_ability:.3f}[/bold]")


async def _score(
    subject: str,
    criteria: list[str] | None,
    repository: str | None,
    config: AppConfig,
) -> SubjectScore:
    state = create_state(config.state)
    scorer = AbilityScorer(state, config.estimator, config.pipeline.criteria)
    try:
        with with_context(RunContext(subject=subject)):
            return await scorer.score_subject(subject, criteria, repository)
    finally:
        await state.close()
