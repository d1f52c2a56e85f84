"""Evaluation backends for abilitymap."""

from abilitymap.backends.anthropic_api import AnthropicApiBackend
from abilitymap.backends.base import EvaluationBackend

__all__ = ["AnthropicApiBackend", "EvaluationBackend"]
