"""Level normalization before persistence and estimation.

A raw level below 0 marks an incident and is stored as 0. A raw level above
the item's ceiling marks a surprise and is stored as the ceiling. After
normalization ``0 <= level <= item_max`` always holds.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from abilitymap.core import constants
from abilitymap.core.models import ItemEvaluation, Judgment, WorkItem


@dataclass(frozen=True)
class NormalizedLevel:
    level: int
    surprise_flag: bool = False
    incident_flag: bool = False


def normalize_level(level: int, item_max: int) -> NormalizedLevel:
    """Clamp ``level`` into ``[0, item_max]`` and flag what was clamped."""
    if level < 0:
        return NormalizedLevel(level=0, incident_flag=True)
    if level > item_max:
        return NormalizedLevel(level=item_max, surprise_flag=True)
    return NormalizedLevel(level=level)


def resolve_item_max(
    criterion: str,
    predictions: Mapping[str, int],
    default: int = constants.DEFAULT_ITEM_MAX,
) -> int:
    """Predicted ceiling for ``criterion``, or ``default`` when none exists."""
    predicted = predictions.get(criterion)
    if predicted is None:
        return default
    return min(max(int(predicted), constants.MIN_ITEM_MAX), constants.MAX_ITEM_MAX)


def normalize_judgment(
    judgment: Judgment,
    item: WorkItem,
    item_max: int,
) -> ItemEvaluation:
    """Turn a raw judgment on ``item`` into a storable ItemEvaluation."""
    normalized = normalize_level(judgment.level, item_max)
    return ItemEvaluation(
        item_type=item.item_type,
        item_number=item.number,
        repository=item.repository,
        subject=item.subject,
        criterion=judgment.criterion,
        level=normalized.level,
        item_max=item_max,
        reasoning=judgment.reasoning,
        evidence=judgment.evidence,
        evaluable=judgment.evaluable,
        surprise_flag=normalized.surprise_flag,
        incident_flag=normalized.incident_flag,
    )


__all__ = [
    "NormalizedLevel",
    "normalize_judgment",
    "normalize_level",
    "resolve_item_max",
]
