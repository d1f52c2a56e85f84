"""Evaluate command for the abilitymap CLI.

Runs the evaluation pipeline over a YAML or JSON file of work items,
persisting judgments to the configured state store.

Items file format (a list, or a mapping with an ``items`` key):

    - item_type: pull_request
      number: 42
      title: Add retry support
      subject: octocat
      repository: acme/api
      body: ...
      comments:
        - {author: octocat, body: "..."}
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import typer
import yaml

from abilitymap.core.config import AppConfig
from abilitymap.core.logging import RunContext, get_logger, with_context
from abilitymap.core.models import ItemEvaluationResult, WorkItem
from abilitymap.evaluation.pipeline import EvaluationPipeline

from ..helpers import configure_global_logging, create_backend, create_state, load_config
from ..output import (
    add_evaluation_rows,
    console,
    create_evaluations_table,
    create_run_report_panel,
    output_error,
    output_json,
)

_logger = get_logger("cli.evaluate")


def load_work_items(path: Path) -> list[WorkItem]:
    """Read work items from a YAML or JSON file.

    Raises:
        ValueError: If the file is not a list of item mappings.
    """
    with open(path, encoding="utf-8") as f:
        data: Any = yaml.safe_load(f)
    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        raise ValueError("expected a list of work items (or a mapping with an 'items' list)")
    items = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"item {index} is not a mapping")
        try:
            items.append(WorkItem.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"item {index} is invalid: {e}") from e
    return items


def evaluate(
    items_file: Path = typer.Argument(
        ...,
        help="YAML or JSON file listing the work items to evaluate",
        exists=True,
        readable=True,
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file",
        exists=True,
        readable=True,
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output results as JSON",
    ),
) -> None:
    """Evaluate work items with the configured backend and store the judgments."""
    config = load_config(config_file, console, json_output)
    configure_global_logging(console, config.logging)

    try:
        items = load_work_items(items_file)
    except (OSError, yaml.YAMLError, ValueError) as e:
        output_error(f"Cannot load work items from {items_file}: {e}", json_output=json_output)
        raise typer.Exit(2) from None
    _logger.info("cli.items_loaded", path=str(items_file), count=len(items))

    if not items:
        output_error("No work items to evaluate", severity="warning", json_output=json_output)
        return

    asyncio.run(_evaluate(items, config, json_output))


async def _evaluate(items: list[WorkItem], config: AppConfig, json_output: bool) -> None:
    backend = create_backend(config.backend)
    state = create_state(config.state)
    pipeline = EvaluationPipeline(backend, state, config)

    try:
        with with_context(RunContext()):
            results: list[ItemEvaluationResult] = await pipeline.evaluate_items(items)
    finally:
        await backend.close()
        await state.close()
    _logger.info("cli.evaluate_finished", requested=len(items), evaluated=len(results))

    report = pipeline.executor.last_report
    if json_output:
        output_json(
            {
                "success": True,
                "report": report.to_dict() if report else None,
                "results": [
                    {
                        "item": r.name,
                        "predictions": r.predictions,
                        "evaluations": [
                            {
                                "criterion": e.criterion,
                                "level": e.level,
                                "item_max": e.item_max,
                                "evaluable": e.evaluable,
                                "surprise_flag": e.surprise_flag,
                                "incident_flag": e.incident_flag,
                            }
                            for e in r.evaluations
                        ],
                    }
                    for r in results
                ],
            }
        )
        return

    if results:
        table = create_evaluations_table()
        add_evaluation_rows(table, results)
        console.print(table)
    if report is not None:
        console.print(create_run_report_panel(report))
