"""Execution layer: retries, rate-limit cooldown and batched concurrency."""

from abilitymap.execution.batch import BatchExecutor, BatchOutcome, BatchRunReport
from abilitymap.execution.retry import (
    RateLimitCooldown,
    get_default_cooldown,
    retry_with_backoff,
)

__all__ = [
    "BatchExecutor",
    "BatchOutcome",
    "BatchRunReport",
    "RateLimitCooldown",
    "get_default_cooldown",
    "retry_with_backoff",
]
