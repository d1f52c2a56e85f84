"""Estimate command for the abilitymap CLI.

Runs the MAP estimator offline on judgments given on the command line, with
no backend and no state store involved.
"""

from __future__ import annotations

import typer
from pydantic import ValidationError

from abilitymap.core import constants
from abilitymap.core.config import EstimatorConfig
from abilitymap.core.models import Evaluation
from abilitymap.estimation.ability import estimate as estimate_ability
from abilitymap.evaluation.normalize import normalize_level

from ..helpers import configure_global_logging
from ..output import (
    ability_color,
    console,
    create_header_panel,
    format_interval,
    output_error,
    output_json,
)


def parse_observation(value: str) -> tuple[int, int]:
    """Parse ``LEVEL/MAX`` (e.g. ``3/4``) into a (level, item_max) pair.

    Raises:
        typer.BadParameter: If the value is malformed or out of range.
    """
    level_str, sep, max_str = value.partition("/")
    if not sep:
        raise typer.BadParameter(f"expected LEVEL/MAX, got {value!r}")
    try:
        level, item_max = int(level_str), int(max_str)
    except ValueError:
        raise typer.BadParameter(f"expected integers in {value!r}") from None
    if not constants.MIN_LEVEL <= level <= constants.MAX_LEVEL:
        raise typer.BadParameter(
            f"level must be in [{constants.MIN_LEVEL}, {constants.MAX_LEVEL}], got {level}"
        )
    if not constants.MIN_ITEM_MAX <= item_max <= constants.MAX_ITEM_MAX:
        raise typer.BadParameter(
            f"max must be in [{constants.MIN_ITEM_MAX}, {constants.MAX_ITEM_MAX}], got {item_max}"
        )
    return level, item_max


def estimate(
    observations: list[str] = typer.Argument(
        ...,
        help="Judgments as LEVEL/MAX, e.g. 3/4 2/2. Put '--' first to pass negative levels.",
    ),
    alpha: float = typer.Option(constants.PRIOR_ALPHA, "--alpha", help="Prior alpha"),
    beta: float = typer.Option(constants.PRIOR_BETA, "--beta", help="Prior beta"),
    x_min: float = typer.Option(constants.ABILITY_MIN, "--x-min", help="Lower ability bound"),
    x_max: float = typer.Option(constants.ABILITY_MAX, "--x-max", help="Upper ability bound"),
    grid_points: int = typer.Option(
        constants.GRID_POINTS, "--grid-points", help="Grid intervals for the search"
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output the estimate as JSON",
    ),
) -> None:
    """Estimate ability from LEVEL/MAX judgments.

    Levels below 0 count as 0 and levels above MAX count as MAX, as they do
    when judgments are stored.
    """
    configure_global_logging(console)

    try:
        config = EstimatorConfig(
            alpha=alpha, beta=beta, x_min=x_min, x_max=x_max, grid_points=grid_points
        )
    except ValidationError as e:
        output_error(f"Invalid estimator parameters: {e}", json_output=json_output)
        raise typer.Exit(2) from None

    pairs = [parse_observation(value) for value in observations]
    evaluations: list[Evaluation] = []
    clamped = 0
    for level, item_max in pairs:
        normalized = normalize_level(level, item_max)
        if normalized.level != level:
            clamped += 1
        evaluations.append(Evaluation(level=normalized.level, item_max=item_max))

    result = estimate_ability(evaluations, config)

    if json_output:
        output_json(
            {
                "success": True,
                **result.to_dict(),
                "evaluation_count": len(evaluations),
                "clamped": clamped,
            }
        )
        return

    color = ability_color(result.best_ability)
    lines = [
        f"Ability: [bold {color}]{result.best_ability:.3f}[/bold {color}]",
        f"95% CI: {format_interval(result.confidence_interval)}",
        f"Judgments: {len(evaluations)}",
    ]
    if clamped:
        lines.append(f"[yellow]Clamped levels: {clamped}[/yellow]")
    console.print(create_header_panel(lines, title="Estimate", border_style="cyan"))
