"""Batched concurrent execution of slow, failure-prone remote calls.

The BatchExecutor partitions a list of inputs into fixed-size batches and
runs each item through ``retry_with_backoff`` under a per-item deadline.
Items inside a batch run concurrently; batches run one after another, or in
groups of ``concurrent_batches`` when that is greater than 1. A failing or
timed-out item never affects its siblings: it is logged and contributes
nothing to the result.

Ordering guarantees:
- Batch N (or group N) resolves before batch N+1 starts.
- Results keep input order within a batch and batch order across batches.

A batch that exceeds ``batch_timeout_seconds`` is cancelled as a whole; its
in-flight items are cancelled and the batch contributes zero results, even
for items that had already finished.

Example:
    ```python
    executor = BatchExecutor(BatchConfig(batch_size=5, concurrent_batches=2))
    results = await executor.process_batches(
        items,
        processor=pipeline.evaluate_item,
        name_fn=lambda item: item.name,
        label="work items",
    )
    print(executor.last_report.to_dict())
    ```
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from abilitymap.core.config import BatchConfig
from abilitymap.core.logging import get_current_context, get_logger, with_context
from abilitymap.execution.retry import (
    RateLimitCooldown,
    get_default_cooldown,
    retry_with_backoff,
)

# Module logger
_logger = get_logger("batch")

TInput = TypeVar("TInput")
TOutput = TypeVar("TOutput")


@dataclass
class BatchOutcome:
    """What happened to one batch.

    Attributes:
        batch_number: 1-based position of the batch in the run.
        item_names: Names of the items in the batch, in input order.
        succeeded: Items that produced a result.
        failed: Items that failed, timed out, or returned nothing.
        timed_out: True if the batch hit its deadline.
        error: Error message if the batch itself failed.
        duration_seconds: Wall-clock time spent on the batch.
    """

    batch_number: int
    item_names: list[str] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    timed_out: bool = False
    error: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_number": self.batch_number,
            "item_names": self.item_names,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class BatchRunReport:
    """Summary of one ``process_batches`` call."""

    label: str
    total_items: int = 0
    batches: list[BatchOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(b.succeeded for b in self.batches)

    @property
    def failed(self) -> int:
        return self.total_items - self.succeeded

    @property
    def timed_out_batches(self) -> list[int]:
        return [b.batch_number for b in self.batches if b.timed_out]

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "total_items": self.total_items,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "timed_out_batches": self.timed_out_batches,
            "duration_seconds": round(self.duration_seconds, 3),
            "batches": [b.to_dict() for b in self.batches],
        }


def partition(items: Sequence[TInput], size: int) -> list[list[TInput]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchExecutor:
    """Runs a processor over many items in batches with retries and deadlines.

    Every item attempt goes through ``retry_with_backoff`` with the
    executor's cooldown, so a rate limit seen by one item pauses all of
    them. A semaphore sized ``batch_size * concurrent_batches`` bounds how
    many items are in flight, including across overlapping runs on the
    same executor.

    Attributes:
        config: Batch, timeout and retry settings.
        cooldown: Shared rate-limit cooldown.
        last_report: Report of the most recent run, None before the first.
    """

    def __init__(
        self,
        config: BatchConfig | None = None,
        cooldown: RateLimitCooldown | None = None,
    ) -> None:
        self.config = config or BatchConfig()
        self.cooldown = cooldown or get_default_cooldown()
        self.last_report: BatchRunReport | None = None
        self._slots = asyncio.Semaphore(self.config.max_in_flight)

    async def process_batches(
        self,
        items: Sequence[TInput],
        processor: Callable[[TInput], Awaitable[TOutput | None]],
        name_fn: Callable[[TInput], str],
        label: str = "items",
    ) -> list[TOutput]:
        """Process ``items`` and return the successful, non-None outputs.

        Args:
            items: Inputs to process.
            processor: Async function producing an output (or None) per item.
            name_fn: Human-readable name of an item, used in logs.
            label: Name of the collection, used in logs and the report.

        Returns:
            Outputs of the items that succeeded, in input order.
        """
        report = BatchRunReport(label=label, total_items=len(items))
        self.last_report = report
        if not items:
            return []

        start = time.monotonic()
        batches = partition(items, self.config.batch_size)
        _logger.info(
            "batch.run_started",
            label=label,
            total_items=len(items),
            total_batches=len(batches),
            batch_size=self.config.batch_size,
            concurrent_batches=self.config.concurrent_batches,
        )

        if self.config.concurrent_batches > 1:
            results = await self._run_concurrent(batches, processor, name_fn, report)
        else:
            results = await self._run_sequential(batches, processor, name_fn, report)

        report.duration_seconds = time.monotonic() - start
        _logger.info(
            "batch.run_completed",
            label=label,
            succeeded=report.succeeded,
            failed=report.failed,
            duration_seconds=round(report.duration_seconds, 2),
        )
        return results

    async def _run_sequential(
        self,
        batches: list[list[TInput]],
        processor: Callable[[TInput], Awaitable[TOutput | None]],
        name_fn: Callable[[TInput], str],
        report: BatchRunReport,
    ) -> list[TOutput]:
        results: list[TOutput] = []
        total = len(batches)
        for index, batch in enumerate(batches):
            batch_results, outcome = await self._run_batch(
                index + 1, total, batch, processor, name_fn
            )
            results.extend(batch_results)
            report.batches.append(outcome)
            _logger.info(
                "batch.progress",
                label=report.label,
                completed_batches=index + 1,
                total_batches=total,
                results_so_far=len(results),
            )
            if index < total - 1:
                await self._pause(total - index - 1)
        return results

    async def _run_concurrent(
        self,
        batches: list[list[TInput]],
        processor: Callable[[TInput], Awaitable[TOutput | None]],
        name_fn: Callable[[TInput], str],
        report: BatchRunReport,
    ) -> list[TOutput]:
        results: list[TOutput] = []
        total = len(batches)
        group_size = self.config.concurrent_batches
        for group_start in range(0, total, group_size):
            group = batches[group_start : group_start + group_size]
            _logger.debug(
                "batch.group_started",
                first_batch=group_start + 1,
                last_batch=group_start + len(group),
                total_batches=total,
            )
            outcomes = await asyncio.gather(
                *(
                    self._run_batch(group_start + offset + 1, total, batch, processor, name_fn)
                    for offset, batch in enumerate(group)
                )
            )
            for batch_results, outcome in outcomes:
                results.extend(batch_results)
                report.batches.append(outcome)

            completed = group_start + len(group)
            _logger.info(
                "batch.progress",
                label=report.label,
                completed_batches=completed,
                total_batches=total,
                results_so_far=len(results),
            )
            if completed < total:
                await self._pause(total - completed)
        return results

    async def _run_batch(
        self,
        batch_number: int,
        total_batches: int,
        batch: list[TInput],
        processor: Callable[[TInput], Awaitable[TOutput | None]],
        name_fn: Callable[[TInput], str],
    ) -> tuple[list[TOutput], BatchOutcome]:
        """Run one batch under its deadline. Never raises."""
        outcome = BatchOutcome(batch_number=batch_number)
        start = time.monotonic()
        try:
            outcome.item_names = [name_fn(item) for item in batch]
            _logger.info(
                "batch.started",
                batch=batch_number,
                total_batches=total_batches,
                items=outcome.item_names,
            )
            settled = await asyncio.wait_for(
                asyncio.gather(
                    *(
                        self._process_item(item, name, processor)
                        for item, name in zip(batch, outcome.item_names, strict=True)
                    ),
                    return_exceptions=True,
                ),
                timeout=self.config.batch_timeout_seconds,
            )
        except TimeoutError:
            outcome.timed_out = True
            outcome.failed = len(batch)
            outcome.duration_seconds = time.monotonic() - start
            _logger.error(
                "batch.timeout",
                batch=batch_number,
                timeout_seconds=self.config.batch_timeout_seconds,
                items=outcome.item_names,
            )
            return [], outcome
        except Exception as e:
            outcome.failed = len(batch)
            outcome.error = f"{type(e).__name__}: {e}"
            outcome.duration_seconds = time.monotonic() - start
            _logger.error(
                "batch.failed",
                batch=batch_number,
                error_type=type(e).__name__,
                error=str(e),
            )
            return [], outcome

        successful = [
            r for r in settled if r is not None and not isinstance(r, BaseException)
        ]
        outcome.succeeded = len(successful)
        outcome.failed = len(batch) - len(successful)
        outcome.duration_seconds = time.monotonic() - start
        _logger.info(
            "batch.completed",
            batch=batch_number,
            total_batches=total_batches,
            succeeded=outcome.succeeded,
            failed=outcome.failed,
            duration_seconds=round(outcome.duration_seconds, 2),
        )
        return successful, outcome

    async def _process_item(
        self,
        item: TInput,
        name: str,
        processor: Callable[[TInput], Awaitable[TOutput | None]],
    ) -> TOutput | None:
        """Run one item with retries under the item deadline.

        Returns None on failure or timeout; the error is logged.
        """
        ctx = get_current_context()
        async with self._slots:
            if ctx is not None:
                with with_context(ctx.with_item(name)):
                    return await self._attempt_item(item, name, processor)
            return await self._attempt_item(item, name, processor)

    async def _attempt_item(
        self,
        item: TInput,
        name: str,
        processor: Callable[[TInput], Awaitable[TOutput | None]],
    ) -> TOutput | None:
        try:
            return await asyncio.wait_for(
                retry_with_backoff(
                    lambda: processor(item),
                    self.config.max_retries,
                    self.config.base_retry_delay_seconds,
                    cooldown=self.cooldown,
                    label=name,
                ),
                timeout=self.config.item_timeout_seconds,
            )
        except TimeoutError:
            _logger.warning(
                "batch.item_timeout",
                item=name,
                timeout_seconds=self.config.item_timeout_seconds,
            )
        except Exception as e:
            _logger.error(
                "batch.item_failed",
                item=name,
                error_type=type(e).__name__,
                error=str(e),
            )
        return None

    async def _pause(self, remaining_batches: int) -> None:
        delay = self.config.batch_delay_seconds
        if delay <= 0:
            return
        _logger.debug(
            "batch.waiting",
            delay_seconds=delay,
            remaining_batches=remaining_batches,
        )
        await asyncio.sleep(delay)


__all__ = [
    "BatchExecutor",
    "BatchOutcome",
    "BatchRunReport",
    "partition",
]
