"""Evaluation pipeline: prompts, response parsing, normalization, orchestration."""

from abilitymap.evaluation.normalize import normalize_judgment, normalize_level
from abilitymap.evaluation.parsing import ParseResult, parse_judgments, parse_predictions
from abilitymap.evaluation.pipeline import EvaluationPipeline, SubjectScore
from abilitymap.evaluation.prompts import PromptBuilder

__all__ = [
    "EvaluationPipeline",
    "ParseResult",
    "PromptBuilder",
    "SubjectScore",
    "normalize_judgment",
    "normalize_level",
    "parse_judgments",
    "parse_predictions",
]
