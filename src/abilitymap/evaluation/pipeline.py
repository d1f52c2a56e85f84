"""End-to-end evaluation pipeline.

Flow per work item:

    predict ceilings (cached) -> render judgment prompt -> call backend
        -> parse -> normalize -> persist

Scoring then reads the persisted judgments of a subject and runs the MAP
estimator per criterion.
Summaries explain each score in a few sentences; they are generated once per
(subject, repository, criterion) and served from the store afterwards.

Remote calls in ``evaluate_item`` are not retried here; ``evaluate_items``
runs every item through the BatchExecutor, which applies the retry policy
and the shared rate-limit cooldown. A retryable error raised while
predicting ceilings propagates so the whole item is retried; any other
prediction failure is logged and the item is judged without ceilings.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from abilitymap.backends.base import EvaluationBackend
from abilitymap.core import constants
from abilitymap.core.config import AppConfig, EstimatorConfig
from abilitymap.core.errors import ParseError, classify_error
from abilitymap.core.logging import RunContext, get_current_context, get_logger, with_context
from abilitymap.core.models import (
    AbilityScore,
    AbilitySummary,
    ConfidenceInterval,
    ItemEvaluation,
    ItemEvaluationResult,
    WorkItem,
)
from abilitymap.estimation.ability import estimate
from abilitymap.evaluation.normalize import normalize_judgment, resolve_item_max
from abilitymap.evaluation.parsing import parse_judgments, parse_predictions, parse_summary
from abilitymap.evaluation.prompts import PromptBuilder
from abilitymap.execution.batch import BatchExecutor
from abilitymap.state.base import StateBackend

_logger = get_logger("pipeline")


@dataclass
class SubjectScore:
    """Ability scores of one subject across criteria."""

    subject: str
    scores: list[AbilityScore] = field(default_factory=list)

    @property
    def average_ability(self) -> float:
        """Mean ability over all criteria, rounded to 3 decimals; 0.0 if none."""
        if not self.scores:
            return 0.0
        return round(sum(s.ability for s in self.scores) / len(self.scores), 3)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "average_ability": self.average_ability,
            "scores": [s.to_dict() for s in self.scores],
        }


@dataclass
class SubjectSummary:
    """Written ability summaries of one subject, in criterion order.

    Attributes:
        generated: Summaries produced by this run.
        cached: Summaries served from the store.
    """

    subject: str
    repository: str | None = None
    summaries: list[AbilitySummary] = field(default_factory=list)
    generated: int = 0
    cached: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "repository": self.repository,
            "generated": self.generated,
            "cached": self.cached,
            "summaries": [s.to_dict() for s in self.summaries],
        }


class AbilityScorer:
    """Turns stored judgments into ability scores.

    Needs only the state store, so scoring works offline.
    """

    def __init__(
        self,
        state: StateBackend,
        estimator: EstimatorConfig | None = None,
        criteria: Sequence[str] = constants.DEFAULT_CRITERIA,
    ) -> None:
        self.state = state
        self.estimator = estimator or EstimatorConfig()
        self.criteria = list(criteria)

    async def score_criterion(
        self,
        subject: str,
        criterion: str,
        repository: str | None = None,
    ) -> AbilityScore:
        """Estimate the ability of ``subject`` for one criterion.

        Only evaluable judgments count. Without any, the result is ability 0
        with interval [0, 0] and nothing is persisted.
        """
        evaluations = await self.state.get_evaluations(subject, criterion, repository)
        evaluable = [e for e in evaluations if e.evaluable]
        if not evaluable:
            _logger.info(
                "pipeline.no_evaluations",
                subject=subject,
                criterion=criterion,
                total=len(evaluations),
            )
            return AbilityScore(
                subject=subject,
                criterion=criterion,
                ability=0.0,
                confidence_interval=ConfidenceInterval(lower=0.0, upper=0.0),
                evaluation_count=0,
            )

        result = estimate([e.to_evaluation() for e in evaluable], self.estimator)
        score = AbilityScore(
            subject=subject,
            criterion=criterion,
            ability=result.best_ability,
            confidence_interval=result.confidence_interval,
            evaluation_count=len(evaluable),
        )
        await self.state.save_ability(score)
        _logger.info(
            "pipeline.scored",
            subject=subject,
            criterion=criterion,
            ability=round(score.ability, 4),
            ci_lower=round(score.confidence_interval.lower, 4),
            ci_upper=round(score.confidence_interval.upper, 4),
            evaluation_count=score.evaluation_count,
        )
        return score

    async def score_subject(
        self,
        subject: str,
        criteria: Sequence[str] | None = None,
        repository: str | None = None,
    ) -> SubjectScore:
        """Score ``subject`` on each criterion (all configured ones by default)."""
        ctx = get_current_context() or RunContext(subject=subject)
        result = SubjectScore(subject=subject)
        for criterion in criteria or self.criteria:
            with with_context(ctx.with_criterion(criterion)):
                result.scores.append(
                    await self.score_criterion(subject, criterion, repository)
                )
        return result


class EvaluationPipeline:
    """Drives prediction, judgment, persistence and scoring.

    Attributes:
        backend: Remote evaluation service.
        state: Persistence for predictions, judgments and scores.
        config: Application configuration.
        executor: Batch executor used by ``evaluate_items``.
        summary_executor: Batch executor used by ``summarize_subject``; shares
            the rate-limit cooldown of ``executor``.
    """

    def __init__(
        self,
        backend: EvaluationBackend,
        state: StateBackend,
        config: AppConfig | None = None,
        executor: BatchExecutor | None = None,
    ) -> None:
        self.backend = backend
        self.state = state
        self.config = config or AppConfig()
        self.executor = executor or BatchExecutor(self.config.batch)
        self.summary_executor = BatchExecutor(
            self.config.batch.model_copy(
                update={"concurrent_batches": self.config.pipeline.summary_concurrent_batches}
            ),
            self.executor.cooldown,
        )
        self.prompts = PromptBuilder(self.config.pipeline.criteria)
        self.scorer = AbilityScorer(state, self.config.estimator, self.config.pipeline.criteria)

    @property
    def criteria(self) -> list[str]:
        return self.config.pipeline.criteria

    async def predict_max_scores(self, item: WorkItem) -> dict[str, int]:
        """Predicted ceilings of ``item``, from the store or the backend.

        Stored predictions are reused. Otherwise the backend is asked, and
        predictions for configured criteria are persisted.

        Raises:
            RemoteCallError: If the backend call fails.
            ParseError: If the response carries no predictions array.
        """
        cached = await self.state.get_predictions(item)
        if cached:
            _logger.debug("pipeline.predictions_cached", item=item.name, count=len(cached))
            return cached

        text = await self.backend.complete(
            self.prompts.prediction_system_prompt(),
            self.prompts.build_prediction_prompt(item),
        )
        predictions: dict[str, int] = {}
        for prediction in parse_predictions(text):
            if prediction.criterion not in self.criteria:
                _logger.debug(
                    "pipeline.unknown_criterion",
                    item=item.name,
                    criterion=prediction.criterion,
                )
                continue
            await self.state.save_prediction(item, prediction)
            predictions[prediction.criterion] = prediction.predicted_max_score

        _logger.info("pipeline.predicted", item=item.name, predictions=predictions)
        return predictions

    async def _predictions_for(self, item: WorkItem) -> dict[str, int]:
        if not self.config.pipeline.predict_max_scores:
            return await self.state.get_predictions(item)
        try:
            return await self.predict_max_scores(item)
        except Exception as e:
            if classify_error(e).retriable:
                raise
            _logger.warning(
                "pipeline.prediction_failed",
                item=item.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return {}

    async def evaluate_item(self, item: WorkItem) -> ItemEvaluationResult | None:
        """Judge ``item`` on every criterion and persist the results.

        Returns:
            The normalized evaluations, or None if the response could not be
            parsed.

        Raises:
            RemoteCallError: If a backend call fails; retried by the executor.
        """
        predictions = await self._predictions_for(item)
        text = await self.backend.complete(
            self.prompts.judgment_system_prompt(),
            self.prompts.build_judgment_prompt(item, predictions),
        )
        try:
            judgments = parse_judgments(text)
        except ParseError as e:
            _logger.warning("pipeline.unparseable_response", item=item.name, error=str(e))
            return None

        evaluations: list[ItemEvaluation] = []
        for judgment in judgments:
            if judgment.criterion not in self.criteria:
                _logger.debug(
                    "pipeline.unknown_criterion",
                    item=item.name,
                    criterion=judgment.criterion,
                )
                continue
            item_max = resolve_item_max(
                judgment.criterion,
                predictions,
                self.config.pipeline.default_item_max_for(item.item_type),
            )
            evaluation = normalize_judgment(judgment, item, item_max)
            if evaluation.surprise_flag or evaluation.incident_flag:
                _logger.info(
                    "pipeline.level_clamped",
                    item=item.name,
                    criterion=judgment.criterion,
                    raw_level=judgment.level,
                    level=evaluation.level,
                    surprise=evaluation.surprise_flag,
                    incident=evaluation.incident_flag,
                )
            await self.state.save_item_evaluation(evaluation)
            evaluations.append(evaluation)

        _logger.info(
            "pipeline.evaluated",
            item=item.name,
            evaluations=len(evaluations),
            evaluable=sum(1 for e in evaluations if e.evaluable),
        )
        return ItemEvaluationResult(
            item=item, evaluations=tuple(evaluations), predictions=predictions
        )

    async def evaluate_items(
        self,
        items: Sequence[WorkItem],
        label: str = "work items",
    ) -> list[ItemEvaluationResult]:
        """Evaluate many items through the batch executor.

        Failed and unparseable items are left out of the result.
        """
        ctx = get_current_context() or RunContext()
        with with_context(ctx):
            return await self.executor.process_batches(
                items,
                self.evaluate_item,
                lambda item: item.name,
                label=label,
            )

    async def score_criterion(
        self,
        subject: str,
        criterion: str,
        repository: str | None = None,
    ) -> AbilityScore:
        return await self.scorer.score_criterion(subject, criterion, repository)

    async def score_subject(
        self,
        subject: str,
        criteria: Sequence[str] | None = None,
        repository: str | None = None,
    ) -> SubjectScore:
        """Score ``subject`` from the judgments persisted so far."""
        return await self.scorer.score_subject(subject, criteria, repository)

    async def summarize_criterion(
        self,
        subject: str,
        criterion: str,
        repository: str | None = None,
    ) -> AbilitySummary | None:
        """Generate and store the written summary of one ability score.

        The ability is always recomputed by the estimator; a level the model
        reports back is ignored.

        Returns:
            The stored summary, or None when the subject has no evaluable
            judgments for ``criterion`` or the response cannot be parsed.

        Raises:
            RemoteCallError: If the backend call fails; retried by the executor.
        """
        evaluations = await self.state.get_evaluations(subject, criterion, repository)
        evaluable = [e for e in evaluations if e.evaluable]
        if not evaluable:
            _logger.info("pipeline.summary_skipped", subject=subject, criterion=criterion)
            return None

        score = await self.scorer.score_criterion(subject, criterion, repository)
        text = await self.backend.complete(
            self.prompts.summary_system_prompt(),
            self.prompts.build_summary_prompt(score, evaluable, repository),
        )
        try:
            summary_text = parse_summary(text)
        except ParseError as e:
            _logger.warning(
                "pipeline.unparseable_summary",
                subject=subject,
                criterion=criterion,
                error=str(e),
            )
            return None

        summary = AbilitySummary(
            subject=subject,
            criterion=criterion,
            ability=score.ability,
            summary=summary_text,
            repository=repository or "",
        )
        await self.state.save_summary(summary)
        _logger.info(
            "pipeline.summarized",
            subject=subject,
            criterion=criterion,
            ability=round(score.ability, 4),
        )
        return summary

    async def summarize_subject(
        self,
        subject: str,
        criteria: Sequence[str] | None = None,
        repository: str | None = None,
        refresh: bool = False,
    ) -> SubjectSummary:
        """Summaries of ``subject`` for each criterion, generating missing ones.

        Stored summaries are reused unless ``refresh`` is set. Missing
        criteria run through ``summary_executor``; criteria without
        evaluable judgments are left out of the result.
        """
        wanted = list(criteria or self.criteria)
        cached: dict[str, AbilitySummary] = {}
        if not refresh:
            cached = {
                s.criterion: s
                for s in await self.state.get_summaries(subject, repository)
                if s.criterion in wanted
            }
        missing = [c for c in wanted if c not in cached]

        generated: dict[str, AbilitySummary] = {}
        if missing:
            ctx = get_current_context() or RunContext(subject=subject)
            with with_context(ctx):
                results = await self.summary_executor.process_batches(
                    missing,
                    lambda criterion: self.summarize_criterion(subject, criterion, repository),
                    lambda criterion: criterion,
                    label="criteria",
                )
            generated = {s.criterion: s for s in results}

        _logger.info(
            "pipeline.summaries_ready",
            subject=subject,
            generated=len(generated),
            cached=len(cached),
            total_criteria=len(wanted),
        )
        return SubjectSummary(
            subject=subject,
            repository=repository,
            summaries=[
                generated.get(c) or cached[c] for c in wanted if c in generated or c in cached
            ],
            generated=len(generated),
            cached=len(cached),
        )


__all__ = ["AbilityScorer", "EvaluationPipeline", "SubjectScore", "SubjectSummary"]
