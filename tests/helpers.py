"""Shared test doubles for abilitymap tests.

Import directly: ``from helpers import FakeBackend, FakeClock``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

from abilitymap.backends.base import EvaluationBackend


class FakeClock:
    """Monotonic clock whose ``sleep`` advances virtual time instantly.

    Attributes:
        now: Current virtual time in seconds.
        sleeps: Every duration passed to ``sleep``, in call order.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Yield so concurrently waiting tasks get a turn
        await asyncio.sleep(0)

    @property
    def total_slept(self) -> float:
        return sum(self.sleeps)


Response = str | BaseException | Callable[[str, str], str]


class FakeBackend(EvaluationBackend):
    """Evaluation backend that replays scripted responses.

    Responses are consumed in order. A string is returned as-is, an
    exception instance is raised, and a callable is invoked with
    ``(system, prompt)``. When the script runs out, ``default`` is used.

    Attributes:
        calls: ``(system, prompt)`` of every call, in order.
    """

    def __init__(
        self,
        responses: list[Response] | None = None,
        default: Response | None = None,
    ) -> None:
        self.responses: list[Response] = list(responses or [])
        self.default = default
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    def queue(self, *responses: Response) -> None:
        self.responses.extend(responses)

    async def complete(self, system: str, prompt: str) -> str:
        self.calls.append((system, prompt))
        if self.responses:
            response = self.responses.pop(0)
        elif self.default is not None:
            response = self.default
        else:
            raise AssertionError("FakeBackend has no scripted response left")
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(system, prompt)
        return response

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


def fenced(payload: dict[str, Any]) -> str:
    """Wrap ``payload`` in a ```json fence the way the model answers."""
    return f"Here is my assessment.\n\n```json\n{json.dumps(payload)}\n```\n"


def judgment_response(levels: dict[str, int], evaluable: dict[str, bool] | None = None) -> str:
    """Build a judgment response with one entry per criterion."""
    evaluable = evaluable or {}
    return fenced(
        {
            "evaluations": [
                {
                    "criteria": criterion,
                    "level": level,
                    "evidence": [f"evidence for {criterion}"],
                    "reasoning": f"{criterion} reasoning",
                    "evaluable": evaluable.get(criterion, True),
                }
                for criterion, level in levels.items()
            ]
        }
    )


def prediction_response(ceilings: dict[str, int]) -> str:
    """Build a max-score prediction response."""
    return fenced(
        {
            "predictions": [
                {"criteria": criterion, "predictedMaxScore": score, "reasoning": "scope"}
                for criterion, score in ceilings.items()
            ]
        }
    )


def summary_response(criterion: str, summary: str, level: float = 2.0) -> str:
    """Build an ability summary response."""
    return fenced({"criteria_name": criterion, "evaluation_level": level, "summary": summary})
