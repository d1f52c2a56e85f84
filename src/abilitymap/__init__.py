"""abilitymap: ability scoring from rate-limited LLM judgments.

Turns sparse discrete judgments into per-criterion ability estimates using a
grid-search MAP estimator, and drives the remote evaluation calls that
produce those judgments through a resilient batch executor.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
