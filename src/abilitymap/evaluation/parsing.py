"""Extraction of structured payloads from LLM responses.

Responses are expected to carry one JSON object. Strategies are tried in
order and the first one that yields a JSON object wins:

1. ``json_fence``: a fenced block tagged ``json``.
2. ``any_fence``: any fenced block.
3. ``braces``: the span from the first ``{`` to the last ``}``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from abilitymap.core import constants
from abilitymap.core.errors import ParseError
from abilitymap.core.logging import get_logger
from abilitymap.core.models import Judgment, MaxScorePrediction

_logger = get_logger("parsing")

STRATEGIES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("json_fence", re.compile(r"```json[ \t]*\n(.*?)\n\s*```", re.DOTALL)),
    ("any_fence", re.compile(r"```[ \t]*\n(.*?)\n\s*```", re.DOTALL)),
    ("braces", re.compile(r"\{.*\}", re.DOTALL)),
)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of extracting a JSON object from a response.

    Exactly one of ``data`` and ``error`` is set.
    """

    data: dict[str, Any] | None = None
    error: ParseError | None = None
    strategy: str | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None

    def unwrap(self) -> dict[str, Any]:
        """Return the payload or raise the stored ParseError."""
        if self.data is None:
            raise self.error or ParseError("no payload")
        return self.data


def extract_json(text: str) -> ParseResult:
    """Run the strategies in order; the first JSON object found wins."""
    failures: list[str] = []
    for name, pattern in STRATEGIES:
        match = pattern.search(text)
        if match is None:
            continue
        candidate = match.group(1) if pattern.groups else match.group(0)
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            failures.append(f"{name}: {e}")
            continue
        if not isinstance(data, dict):
            failures.append(f"{name}: expected an object, got {type(data).__name__}")
            continue
        return ParseResult(data=data, strategy=name)

    detail = "; ".join(failures) if failures else "no JSON found"
    return ParseResult(error=ParseError(f"Could not extract JSON object ({detail})"))


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _criterion(entry: dict[str, Any]) -> str | None:
    value = entry.get("criteria") or entry.get("criterion")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _array(text: str, key: str) -> list[Any]:
    result = extract_json(text)
    data = result.unwrap()
    entries = data.get(key)
    if not isinstance(entries, list):
        raise ParseError(f"Response is missing the '{key}' array")
    return entries


def parse_judgments(text: str) -> list[Judgment]:
    """Parse an evaluation response into Judgments.

    Entries without a criterion or with a non-integer level are skipped.
    ``evaluable`` defaults to True unless explicitly false.

    Raises:
        ParseError: If no JSON object is found or it has no evaluations array.
    """
    judgments: list[Judgment] = []
    for entry in _array(text, "evaluations"):
        if not isinstance(entry, dict):
            continue
        criterion = _criterion(entry)
        level = _as_int(entry.get("level"))
        if criterion is None or level is None:
            _logger.warning(
                "parsing.judgment_skipped",
                criterion=criterion,
                level=entry.get("level"),
            )
            continue
        evidence = entry.get("evidence") or []
        if isinstance(evidence, str):
            evidence = [evidence]
        judgments.append(
            Judgment(
                criterion=criterion,
                level=level,
                level_name=str(entry.get("levelName") or constants.LEVEL_NAMES.get(level, "")),
                evidence=tuple(str(e) for e in evidence),
                reasoning=str(entry.get("reasoning") or ""),
                evaluable=entry.get("evaluable") is not False,
            )
        )
    return judgments


def parse_predictions(text: str) -> list[MaxScorePrediction]:
    """Parse a max-score prediction response.

    Scores outside 1-4 are clamped into range.

    Raises:
        ParseError: If no JSON object is found or it has no predictions array.
    """
    predictions: list[MaxScorePrediction] = []
    for entry in _array(text, "predictions"):
        if not isinstance(entry, dict):
            continue
        criterion = _criterion(entry)
        score = _as_int(entry.get("predictedMaxScore", entry.get("predicted_max_score")))
        if criterion is None or score is None:
            _logger.warning("parsing.prediction_skipped", criterion=criterion)
            continue
        clamped = min(max(score, constants.MIN_ITEM_MAX), constants.MAX_ITEM_MAX)
        if clamped != score:
            _logger.debug(
                "parsing.prediction_clamped",
                criterion=criterion,
                predicted=score,
                clamped=clamped,
            )
        predictions.append(
            MaxScorePrediction(
                criterion=criterion,
                predicted_max_score=clamped,
                reasoning=str(entry.get("reasoning") or ""),
            )
        )
    return predictions


def parse_summary(text: str) -> str:
    """Parse an ability summary response into its summary text.

    Accepts ``summary`` or ``summary_text``.

    Raises:
        ParseError: If no JSON object is found or the summary is empty.
    """
    data = extract_json(text).unwrap()
    summary = data.get("summary") or data.get("summary_text")
    if not isinstance(summary, str) or not summary.strip():
        raise ParseError("Response has no summary text")
    return summary.strip()


__all__ = [
    "STRATEGIES",
    "ParseResult",
    "extract_json",
    "parse_judgments",
    "parse_predictions",
    "parse_summary",
]
