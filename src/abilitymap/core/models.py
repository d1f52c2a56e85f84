"""Data models shared by the estimator, the pipeline and the state backends.

Estimator values (Evaluation, ConfidenceInterval, AbilityEstimate,
GridSearchTrace) are immutable. Pipeline records (WorkItem, Judgment,
ItemEvaluation, AbilityScore) carry what the remote evaluation service
returns and what the persistence layer stores.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from abilitymap.utils.time import utc_now

ItemType = Literal["pull_request", "issue", "thread"]


@dataclass(frozen=True)
class Evaluation:
    """One observed judgment paired with the item's theoretical ceiling.

    ``level <= item_max`` is expected but not enforced here; callers clamp
    out-of-range levels before estimation.
    """

    level: int
    item_max: int


@dataclass(frozen=True)
class ConfidenceInterval:
    lower: float
    upper: float

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper

    @property
    def width(self) -> float:
        return self.upper - self.lower

    def to_dict(self) -> dict[str, float]:
        return {"lower": self.lower, "upper": self.upper}


@dataclass(frozen=True)
class AbilityEstimate:
    """MAP point estimate with its Laplace-approximation interval."""

    best_ability: float
    confidence_interval: ConfidenceInterval

    def to_dict(self) -> dict[str, Any]:
        return {
            "best_ability": self.best_ability,
            "confidence_interval": self.confidence_interval.to_dict(),
        }


@dataclass(frozen=True)
class GridSearchTrace:
    """Diagnostic output of the grid search.

    The arrays are parallel: index ``i`` of each describes grid point
    ``abilities[i]``. All arrays are empty when no evaluations were given.
    """

    best_ability: float
    abilities: list[float] = field(default_factory=list)
    log_priors: list[float] = field(default_factory=list)
    log_likelihoods: list[float] = field(default_factory=list)
    log_posteriors: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class Comment:
    author: str
    body: str


@dataclass(frozen=True)
class WorkItem:
    """A unit of remote evaluation: one pull request, issue or thread.

    Attributes:
        item_type: Kind of item.
        number: Item number, unique within the repository for its type.
        title: Item title.
        body: Item description.
        subject: Person whose contribution is being judged.
        repository: Repository slug or channel the item belongs to.
        comments: Discussion on the item, oldest first.
    """

    item_type: ItemType
    number: int
    title: str
    subject: str
    repository: str
    body: str = ""
    comments: tuple[Comment, ...] = ()

    @property
    def name(self) -> str:
        return f"{self.item_type}#{self.number}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkItem:
        """Build a WorkItem from a plain mapping (YAML/JSON input)."""
        comments = tuple(
            Comment(author=str(c.get("author", "")), body=str(c.get("body", "")))
            for c in data.get("comments") or []
        )
        return cls(
            item_type=data.get("item_type", "pull_request"),
            number=int(data["number"]),
            title=str(data.get("title", "")),
            subject=str(data["subject"]),
            repository=str(data.get("repository", "")),
            body=str(data.get("body") or ""),
            comments=comments,
        )


@dataclass(frozen=True)
class MaxScorePrediction:
    """Predicted theoretical ceiling (1-4) of an item for one criterion."""

    criterion: str
    predicted_max_score: int
    reasoning: str = ""


@dataclass(frozen=True)
class Judgment:
    """Raw per-criterion judgment as returned by the evaluation service."""

    criterion: str
    level: int
    level_name: str = ""
    evidence: tuple[str, ...] = ()
    reasoning: str = ""
    evaluable: bool = True


@dataclass(frozen=True)
class ItemEvaluation:
    """A normalized judgment ready for persistence and estimation.

    ``level`` is already clamped to ``[0, item_max]``; the flags record
    whether clamping happened.
    """

    item_type: ItemType
    item_number: int
    repository: str
    subject: str
    criterion: str
    level: int
    item_max: int
    reasoning: str = ""
    evidence: tuple[str, ...] = ()
    evaluable: bool = True
    surprise_flag: bool = False
    incident_flag: bool = False
    evaluated_at: datetime = field(default_factory=utc_now)

    def to_evaluation(self) -> Evaluation:
        return Evaluation(level=self.level, item_max=self.item_max)


@dataclass(frozen=True)
class ItemEvaluationResult:
    """Outcome of evaluating one work item across all criteria."""

    item: WorkItem
    evaluations: tuple[ItemEvaluation, ...]
    predictions: dict[str, int] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.item.name


@dataclass(frozen=True)
class AbilityScore:
    """Persisted ability of one subject for one criterion."""

    subject: str
    criterion: str
    ability: float
    confidence_interval: ConfidenceInterval
    evaluation_count: int = 0
    calculated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "criterion": self.criterion,
            "ability": self.ability,
            "confidence_interval": self.confidence_interval.to_dict(),
            "evaluation_count": self.evaluation_count,
            "calculated_at": self.calculated_at.isoformat(),
        }


@dataclass(frozen=True)
class AbilitySummary:
    """Cached written explanation of one subject's ability for one criterion.

    ``repository`` is empty when the summary covers all repositories.
    """

    subject: str
    criterion: str
    ability: float
    summary: str
    repository: str = ""
    generated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "criterion": self.criterion,
            "repository": self.repository or None,
            "ability": self.ability,
            "summary": self.summary,
            "generated_at": self.generated_at.isoformat(),
        }
