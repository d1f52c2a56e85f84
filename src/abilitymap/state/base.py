"""Abstract base for state backends."""

from abc import ABC, abstractmethod

from abilitymap.core.models import (
    AbilityScore,
    AbilitySummary,
    ItemEvaluation,
    MaxScorePrediction,
    WorkItem,
)


class StateBackend(ABC):
    """Abstract base class for persistence of judgments and scores.

    Records are upserted: saving a prediction, evaluation or ability score
    for a key that already exists replaces the earlier record.

    Keys:
        predictions: (item_type, item_number, repository, criterion)
        evaluations: (item_type, item_number, repository, subject, criterion)
        abilities: (subject, criterion)
        summaries: (subject, repository, criterion)
    """

    @abstractmethod
    async def save_prediction(self, item: WorkItem, prediction: MaxScorePrediction) -> None:
        """Persist a max-score prediction for one criterion of an item."""
        ...

    @abstractmethod
    async def get_predictions(self, item: WorkItem) -> dict[str, int]:
        """Load the predicted ceilings of an item.

        Returns:
            Mapping of criterion to predicted max score; empty if none.
        """
        ...

    @abstractmethod
    async def save_item_evaluation(self, evaluation: ItemEvaluation) -> None:
        """Persist one normalized judgment."""
        ...

    @abstractmethod
    async def get_evaluations(
        self,
        subject: str,
        criterion: str,
        repository: str | None = None,
    ) -> list[ItemEvaluation]:
        """Load all judgments of a subject for a criterion.

        Args:
            subject: Person whose judgments to load.
            criterion: Criterion name.
            repository: Restrict to one repository if given.

        Returns:
            Judgments ordered by evaluation time, oldest first.
        """
        ...

    @abstractmethod
    async def save_ability(self, score: AbilityScore) -> None:
        """Persist the latest ability estimate of a subject for a criterion."""
        ...

    @abstractmethod
    async def get_abilities(self, subject: str) -> list[AbilityScore]:
        """Load all stored ability scores of a subject, ordered by criterion."""
        ...

    @abstractmethod
    async def save_summary(self, summary: AbilitySummary) -> None:
        """Persist the written summary of a subject's ability for a criterion."""
        ...

    @abstractmethod
    async def get_summaries(
        self,
        subject: str,
        repository: str | None = None,
    ) -> list[AbilitySummary]:
        """Load cached summaries of a subject, ordered by criterion.

        Args:
            subject: Person whose summaries to load.
            repository: Repository the summaries were scoped to; None loads
                the summaries covering all repositories.
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Release held resources. Default is a no-op."""
