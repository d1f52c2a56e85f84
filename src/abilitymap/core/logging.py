"""Structured logging infrastructure for abilitymap.

Provides structured logging using structlog with abilitymap-specific context
such as run_id, subject and criterion. Supports console and JSON output with
optional log file rotation.

Example usage:
    from abilitymap.core.logging import get_logger, configure_logging, with_context

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("batch")

    # Log with auto-context
    logger.info("batch.started", batch_number=1)

    # Use a run context for automatic correlation
    ctx = RunContext(subject="octocat")
    with with_context(ctx):
        logger.info("score.started")  # Automatically includes run_id, subject
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Sensitive field patterns that should never be logged
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "api-key",
    "token",
    "secret",
    "password",
    "credential",
    "bearer",
    "authorization",
})

LogFormat = Literal["json", "console", "both"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


@dataclass(frozen=True)
class RunContext:
    """Immutable context for correlating log entries across a scoring run.

    Attributes:
        run_id: Unique run ID (UUID), one per CLI invocation or pipeline run.
        subject: Person whose ability is being evaluated, if known.
        criterion: Evaluation criterion currently being processed.
        item: Name of the work item currently being processed.
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    subject: str | None = None
    criterion: str | None = None
    item: str | None = None

    def with_criterion(self, criterion: str) -> RunContext:
        """Create a new context scoped to one criterion."""
        return replace(self, criterion=criterion)

    def with_item(self, item: str) -> RunContext:
        """Create a new context scoped to one work item."""
        return replace(self, item=item)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to a dictionary for logging, skipping unset fields."""
        result: dict[str, Any] = {"run_id": self.run_id}
        if self.subject is not None:
            result["subject"] = self.subject
        if self.criterion is not None:
            result["criterion"] = self.criterion
        if self.item is not None:
            result["item"] = self.item
        return result


# Using ContextVar ensures proper isolation between concurrent tasks
_current_context: ContextVar[RunContext | None] = ContextVar(
    "abilitymap_context", default=None
)


def get_current_context() -> RunContext | None:
    """Get the current RunContext if set."""
    return _current_context.get()


@contextmanager
def with_context(ctx: RunContext) -> Iterator[RunContext]:
    """Set the RunContext for the duration of a block.

    All log calls within the block automatically include the context fields.
    Tasks created inside the block inherit a copy of the context.

    Args:
        ctx: The RunContext to use for the block.

    Yields:
        The RunContext that was set.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, one level deep."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds RunContext fields to log entries.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            if key not in event_dict:
                event_dict[key] = value
    return event_dict


class AbilityLogger:
    """Component logger wrapper around structlog.

    The underlying structlog logger is fetched lazily on every call so that
    loggers created at import time still honour a later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> AbilityLogger:
        """Create a new logger with additional bound context."""
        return AbilityLogger(**{**self._context, **context})

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an error with traceback. Call from within an exception handler."""
        self._get_logger().exception(event, **kw)


def _shared_processors(include_timestamps: bool, include_context: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ])
    return processors


def _handler(handler: logging.Handler, renderer: Processor, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    return handler


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure abilitymap structured logging.

    Call once at application startup before any logging occurs. Each handler
    renders on its own: the console gets human-readable lines, files and
    stdout in json mode get one JSON object per line.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable stderr output, "json" for JSON
            (to file_path if given, else stdout), "both" for console output
            plus a JSON file (requires file_path).
        file_path: Optional JSON log file, rotated at max_file_size_mb.
            In console mode it is written in addition to stderr.
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to include ISO8601 timestamps.
        include_context: Whether to include RunContext fields.

    Raises:
        ValueError: If the level or format is unknown, or format="both"
            without file_path.
    """
    if format not in ("json", "console", "both"):
        raise ValueError(f"Unknown log format: {format}")
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise ValueError(f"Unknown log level: {level}")

    log_level = getattr(logging, level)
    json_renderer = structlog.processors.JSONRenderer()
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        handlers.append(
            _handler(
                logging.StreamHandler(sys.stderr),
                structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
                log_level,
            )
        )

    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handlers.append(_handler(rotating, json_renderer, log_level))
    elif format == "json":
        handlers.append(_handler(logging.StreamHandler(sys.stdout), json_renderer, log_level))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    # cache_logger_on_first_use=False so module-level loggers respect runtime config
    structlog.configure(
        processors=_shared_processors(include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> AbilityLogger:
    """Get a logger bound to a component name.

    Args:
        component: The component name (e.g., "batch", "retry", "pipeline").
        **initial_context: Additional context to bind.

    Returns:
        An AbilityLogger instance bound to the component.
    """
    return AbilityLogger(component, **initial_context)


__all__ = [
    "AbilityLogger",
    "RunContext",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
