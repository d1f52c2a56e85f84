"""Configuration models for abilitymap.

Pydantic models for loading and validating YAML configuration. Every
section has defaults, so an empty file (or no file) yields a working
configuration.

Example YAML:
    batch:
      batch_size: 20
      concurrent_batches: 3
      batch_delay_seconds: 2.0
      item_timeout_seconds: 120
    estimator:
      alpha: 2
      beta: 5
    backend:
      model: claude-sonnet-4-20250514
    state:
      db_path: .abilitymap/state.db
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from abilitymap.core import constants
from abilitymap.core.errors import ConfigError


class BatchConfig(BaseModel):
    """Batching, timeout and retry settings for remote evaluation calls."""

    model_config = {"frozen": True}

    batch_size: int = Field(default=2, ge=1, description="Items per batch")
    concurrent_batches: int = Field(
        default=1,
        ge=1,
        description="Batches in flight at once. 1 runs batches strictly one after another.",
    )
    batch_delay_seconds: float = Field(
        default=3.0, ge=0, description="Pause between batches (or batch groups)"
    )
    item_timeout_seconds: float = Field(
        default=180.0, gt=0, description="Deadline for one item including its retries"
    )
    batch_timeout_seconds: float = Field(
        default=300.0, gt=0, description="Deadline for a whole batch"
    )
    max_retries: int = Field(default=4, ge=1, description="Attempts per item")
    base_retry_delay_seconds: float = Field(
        default=1.2, ge=0, description="Initial delay for transient-error backoff"
    )

    @property
    def max_in_flight(self) -> int:
        """Upper bound on items executing at the same time."""
        return self.batch_size * self.concurrent_batches


class EstimatorConfig(BaseModel):
    """Prior and grid settings for the MAP ability estimator."""

    model_config = {"frozen": True}

    alpha: float = Field(default=constants.PRIOR_ALPHA, gt=1)
    beta: float = Field(default=constants.PRIOR_BETA, gt=1)
    x_min: float = Field(default=constants.ABILITY_MIN)
    x_max: float = Field(default=constants.ABILITY_MAX)
    grid_points: int = Field(default=constants.GRID_POINTS, ge=2, le=100_000)

    @model_validator(mode="after")
    def _validate_domain(self) -> EstimatorConfig:
        if self.x_max <= self.x_min:
            raise ValueError(
                f"x_max ({self.x_max}) must be greater than x_min ({self.x_min})"
            )
        return self


class BackendConfig(BaseModel):
    """Settings for the LLM evaluation service."""

    type: Literal["anthropic"] = "anthropic"
    model: str = Field(default="claude-sonnet-4-20250514")
    api_key_env: str = Field(
        default="ANTHROPIC_API_KEY",
        description="Environment variable holding the API key",
    )
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=0.0, ge=0, le=1)
    timeout_seconds: float = Field(default=120.0, gt=0)


class StateConfig(BaseModel):
    """Where judgments, predictions and ability scores are persisted."""

    backend: Literal["sqlite", "memory"] = "sqlite"
    db_path: Path = Field(default=Path(".abilitymap/state.db"))


class LogConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console", "both"] = "console"
    file_path: Path | None = None
    max_file_size_mb: int = Field(default=50, gt=0, le=1000)
    backup_count: int = Field(default=5, ge=0, le=100)

    @model_validator(mode="after")
    def _check_file_path_required(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("file_path is required when format='both'")
        return self


class PipelineConfig(BaseModel):
    """What the evaluation pipeline asks for and how it fills gaps."""

    criteria: list[str] = Field(default_factory=lambda: list(constants.DEFAULT_CRITERIA))
    default_item_max: int = Field(
        default=constants.DEFAULT_ITEM_MAX,
        ge=constants.MIN_ITEM_MAX,
        le=constants.MAX_ITEM_MAX,
        description="Ceiling used when no prediction exists and the item type has no entry "
        "in default_item_max_by_type",
    )
    default_item_max_by_type: dict[str, int] = Field(
        default_factory=lambda: dict(constants.DEFAULT_ITEM_MAX_BY_TYPE),
        description="Ceiling per item type when no max-score prediction is available",
    )
    predict_max_scores: bool = Field(
        default=True,
        description="Ask the backend for per-item ceilings before judging",
    )
    summary_concurrent_batches: int = Field(
        default=constants.SUMMARY_CONCURRENT_BATCHES,
        ge=1,
        description="Criteria batches summarized in parallel",
    )

    @model_validator(mode="after")
    def _check_values(self) -> PipelineConfig:
        if not self.criteria:
            raise ValueError("criteria must not be empty")
        if len(set(self.criteria)) != len(self.criteria):
            raise ValueError("criteria must be unique")
        for item_type, ceiling in self.default_item_max_by_type.items():
            if not constants.MIN_ITEM_MAX <= ceiling <= constants.MAX_ITEM_MAX:
                raise ValueError(
                    f"default_item_max_by_type[{item_type!r}] must be between "
                    f"{constants.MIN_ITEM_MAX} and {constants.MAX_ITEM_MAX}, got {ceiling}"
                )
        return self

    def default_item_max_for(self, item_type: str) -> int:
        """Ceiling used for an item of ``item_type`` without a prediction."""
        return self.default_item_max_by_type.get(item_type, self.default_item_max)


class AppConfig(BaseModel):
    """Root configuration."""

    batch: BatchConfig = Field(default_factory=BatchConfig)
    estimator: EstimatorConfig = Field(default_factory=EstimatorConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    logging: LogConfig = Field(default_factory=LogConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> AppConfig:
        """Load configuration from a YAML file.

        Raises:
            ConfigError: If the file cannot be read or is not valid YAML.
            pydantic.ValidationError: If values fail validation.
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> AppConfig:
        """Load configuration from a YAML string."""
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}") from e
        return cls.model_validate(data or {})


__all__ = [
    "AppConfig",
    "BackendConfig",
    "BatchConfig",
    "EstimatorConfig",
    "LogConfig",
    "PipelineConfig",
    "StateConfig",
]
