"""Shared utilities for abilitymap CLI commands.

- Logging configuration from global options and the config file
- Config loading with user-facing error output
- Backend and state store creation
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
from pydantic import ValidationError
from rich.console import Console

from abilitymap.backends.anthropic_api import AnthropicApiBackend
from abilitymap.backends.base import EvaluationBackend
from abilitymap.core.config import AppConfig, BackendConfig, LogConfig, StateConfig
from abilitymap.core.errors import ConfigError
from abilitymap.core.logging import configure_logging, get_logger
from abilitymap.state import StateBackend, create_state_backend

from .output import output_error

_logger = get_logger("cli")


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """CLI logging state set by the global options.

    Fields left as None fall back to the config file's ``logging`` section,
    then to the CLI defaults.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    file: Path | None = None
    format: Literal["json", "console", "both"] | None = None
    configured: bool = False


_DEFAULT_CLI_LEVEL = "WARNING"

_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]


def configure_global_logging(console: Console, file_config: LogConfig | None = None) -> None:
    """Configure logging from the global CLI options.

    Only configures once per session. Options given on the command line win
    over ``file_config``.

    Raises:
        typer.Exit: If logging configuration fails.
    """
    if _log_config.configured:
        return

    level = _log_config.level or (file_config.level if file_config else _DEFAULT_CLI_LEVEL)
    fmt = _log_config.format or (file_config.format if file_config else "console")
    file_path = _log_config.file or (file_config.file_path if file_config else None)

    try:
        configure_logging(
            level=level,
            format=fmt,
            file_path=file_path,
            max_file_size_mb=file_config.max_file_size_mb if file_config else 50,
            backup_count=file_config.backup_count if file_config else 5,
        )
        _log_config.configured = True
    except ValueError as e:
        # e.g. format="both" without a file path
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def reset_logging_state() -> None:
    """Reset CLI logging state so tests can reconfigure."""
    global _log_config
    _log_config = CliLoggingConfig()


# =============================================================================
# Config loading
# =============================================================================


def load_config(config_file: Path | None, console: Console, json_output: bool = False) -> AppConfig:
    """Load the application config, or defaults when no file is given.

    Raises:
        typer.Exit: With code 2 if the file cannot be read or is invalid.
    """
    if config_file is None:
        return AppConfig()
    try:
        return AppConfig.from_yaml(config_file)
    except ConfigError as e:
        output_error(str(e), json_output=json_output, console_instance=console)
        raise typer.Exit(2) from None
    except ValidationError as e:
        output_error(
            f"Invalid configuration in {config_file}: {e}",
            json_output=json_output,
            console_instance=console,
        )
        raise typer.Exit(2) from None


# =============================================================================
# Backend creation helpers
# =============================================================================


def create_backend(config: BackendConfig) -> EvaluationBackend:
    """Create the evaluation backend named in the config."""
    _logger.debug("backend_created", type=config.type, model=config.model)
    return AnthropicApiBackend.from_config(config)


def create_state(config: StateConfig) -> StateBackend:
    """Create the state store named in the config."""
    _logger.debug("state_backend_created", backend=config.backend, db_path=str(config.db_path))
    return create_state_backend(config)


__all__ = [
    "CliLoggingConfig",
    "configure_global_logging",
    "create_backend",
    "create_state",
    "load_config",
    "reset_logging_state",
    "set_log_file",
    "set_log_format",
    "set_log_level",
]
