"""In-memory state backend.

Stores everything in dicts without filesystem I/O. Used by tests and by
one-off runs configured with ``state.backend: memory``.
"""

from abilitymap.core.models import (
    AbilityScore,
    AbilitySummary,
    ItemEvaluation,
    MaxScorePrediction,
    WorkItem,
)
from abilitymap.state.base import StateBackend


def _item_key(item: WorkItem) -> tuple[str, int, str]:
    return (item.item_type, item.number, item.repository)


class InMemoryStateBackend(StateBackend):
    """In-memory state backend."""

    def __init__(self) -> None:
        self.predictions: dict[tuple[str, int, str], dict[str, MaxScorePrediction]] = {}
        self.evaluations: dict[tuple[str, int, str, str, str], ItemEvaluation] = {}
        self.abilities: dict[tuple[str, str], AbilityScore] = {}
        self.summaries: dict[tuple[str, str, str], AbilitySummary] = {}

    async def save_prediction(self, item: WorkItem, prediction: MaxScorePrediction) -> None:
        self.predictions.setdefault(_item_key(item), {})[prediction.criterion] = prediction

    async def get_predictions(self, item: WorkItem) -> dict[str, int]:
        stored = self.predictions.get(_item_key(item), {})
        return {criterion: p.predicted_max_score for criterion, p in stored.items()}

    async def save_item_evaluation(self, evaluation: ItemEvaluation) -> None:
        key = (
            evaluation.item_type,
            evaluation.item_number,
            evaluation.repository,
            evaluation.subject,
            evaluation.criterion,
        )
        self.evaluations[key] = evaluation

    async def get_evaluations(
        self,
        subject: str,
        criterion: str,
        repository: str | None = None,
    ) -> list[ItemEvaluation]:
        matches = [
            e
            for e in self.evaluations.values()
            if e.subject == subject
            and e.criterion == criterion
            and (repository is None or e.repository == repository)
        ]
        return sorted(matches, key=lambda e: e.evaluated_at)

    async def save_ability(self, score: AbilityScore) -> None:
        self.abilities[(score.subject, score.criterion)] = score

    async def get_abilities(self, subject: str) -> list[AbilityScore]:
        return sorted(
            (s for (subj, _), s in self.abilities.items() if subj == subject),
            key=lambda s: s.criterion,
        )

    async def save_summary(self, summary: AbilitySummary) -> None:
        self.summaries[(summary.subject, summary.repository, summary.criterion)] = summary

    async def get_summaries(
        self,
        subject: str,
        repository: str | None = None,
    ) -> list[AbilitySummary]:
        scope = repository or ""
        return sorted(
            (
                s
                for (subj, repo, _), s in self.summaries.items()
                if subj == subject and repo == scope
            ),
            key=lambda s: s.criterion,
        )
