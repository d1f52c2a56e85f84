# abilitymap/cli/commands: Command modules for the abilitymap CLI.
#
# Each module in this package provides one CLI command.

from .estimate import estimate
from .evaluate import evaluate
from .score import score
from .summarize import summarize

__all__ = [
    "estimate",
    "evaluate",
    "score",
    "summarize",
]
