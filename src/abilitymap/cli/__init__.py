"""abilitymap CLI.

Built with Typer. Global options (logging, version) are handled by the app
callback; each command lives in its own module under ``commands/``.

Package structure:
    cli/
    ├── __init__.py           # This file - app assembly
    ├── helpers.py            # Logging, config and backend setup
    ├── output.py             # Rich formatting
    └── commands/
        ├── estimate.py       # estimate command (offline)
        ├── evaluate.py       # evaluate command
        ├── score.py          # score command
        └── summarize.py      # summarize command
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from abilitymap import __version__

from . import helpers as helpers
from .commands import estimate, evaluate, score, summarize
from .helpers import set_log_file, set_log_format, set_log_level
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="abilitymap",
    help="Estimate contributor ability from LLM judgments of their work",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"abilitymap v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="ABILITYMAP_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="ABILITYMAP_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="ABILITYMAP_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """abilitymap - Bayesian ability scores from LLM evaluations."""
    # Logging is configured by each command once its config file is known


# =============================================================================
# Command registration
# =============================================================================

app.command()(estimate)
app.command()(evaluate)
app.command()(score)
app.command()(summarize)


def run() -> None:
    """Console script entry point."""
    app()


__all__ = [
    "app",
    "console",
    "main",
    "run",
]
