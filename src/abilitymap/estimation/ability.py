"""Bayesian ability estimation from ordinal judgments.

Model
-----
For ability ``theta`` and an item whose ceiling is ``n`` with observed level
``k``, let ``P(theta) = sigmoid(theta - k)``. The likelihood of observing
exactly ``k`` is

    P(theta)                              if k == n   (ceiling reached)
    P(theta) - sigmoid(theta - (k + 1))   otherwise   (mass between k and k+1)

Each likelihood is floored at ``LIKELIHOOD_FLOOR`` before the logarithm and
items are treated as conditionally independent. Item discrimination is fixed
at 1 and the difficulty offset at 0.

The prior is a Beta-shaped density rescaled to ``[x_min, x_max]``:

    log(6) + log(x - x_min) - log(x_max - x_min)
           + (beta - 1) * (log(x_max - x) - log(x_max - x_min))

This equals the rescaled Beta(2, beta) log-pdf up to an additive constant,
which moves neither the MAP estimate nor the curvature. ``alpha`` is treated
as fixed at 2. The density is ``-inf`` on and outside the boundary.

The MAP estimate is found by exhaustive search over a uniform grid; the 95%
interval comes from the curvature of the log-posterior at the peak (Laplace
approximation). All functions are pure and never raise for well-formed input;
degenerate cases resolve to documented fallback values.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import overload

import numpy as np

from abilitymap.core import constants
from abilitymap.core.config import EstimatorConfig
from abilitymap.core.models import (
    AbilityEstimate,
    ConfidenceInterval,
    Evaluation,
    GridSearchTrace,
)

_LOG_6 = math.log(6.0)


@overload
def sigmoid(z: float) -> float: ...
@overload
def sigmoid(z: np.ndarray) -> np.ndarray: ...


def sigmoid(z: float | np.ndarray) -> float | np.ndarray:
    """Logistic sigmoid 1 / (1 + exp(-z)), stable for large |z|."""
    if isinstance(z, np.ndarray):
        return 1.0 / (1.0 + np.exp(-np.clip(z, -500, 500)))
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


def log_likelihood(ability: float, evaluations: Sequence[Evaluation]) -> float:
    """Sum of per-item log-likelihoods at one ability value."""
    total = 0.0
    for evaluation in evaluations:
        k = evaluation.level
        p = sigmoid(ability - k)
        if k == evaluation.item_max:
            likelihood = p
        else:
            likelihood = p - sigmoid(ability - (k + 1))
        total += math.log(max(likelihood, constants.LIKELIHOOD_FLOOR))
    return total


def log_prior(
    ability: float,
    alpha: float,
    beta: float,
    x_min: float,
    x_max: float,
) -> float:
    """Log-density of the rescaled prior; ``-inf`` on or outside the bounds.

    ``alpha`` is accepted for symmetry with the other functions but the
    density is the alpha == 2 form.
    """
    del alpha
    x = ability
    if not (x_min < x < x_max):
        return -math.inf
    span = math.log(x_max - x_min)
    return _LOG_6 + math.log(x - x_min) - span + (beta - 1) * (math.log(x_max - x) - span)


def log_posterior(
    ability: float,
    evaluations: Sequence[Evaluation],
    alpha: float,
    beta: float,
    x_min: float,
    x_max: float,
) -> float:
    """Unnormalized log-posterior: log-likelihood plus log-prior."""
    return log_likelihood(ability, evaluations) + log_prior(ability, alpha, beta, x_min, x_max)


def prior_mode(alpha: float, beta: float, x_min: float, x_max: float) -> float:
    """Closed-form mode of the rescaled Beta(alpha, beta) prior."""
    return x_min + (x_max - x_min) * (alpha - 1) / (alpha + beta - 2)


def _grid_log_likelihood(grid: np.ndarray, evaluations: Sequence[Evaluation]) -> np.ndarray:
    total = np.zeros_like(grid)
    for evaluation in evaluations:
        k = evaluation.level
        p = sigmoid(grid - k)
        if k == evaluation.item_max:
            likelihood = p
        else:
            likelihood = p - sigmoid(grid - (k + 1))
        total += np.log(np.maximum(likelihood, constants.LIKELIHOOD_FLOOR))
    return total


def _grid_log_prior(grid: np.ndarray, beta: float, x_min: float, x_max: float) -> np.ndarray:
    interior = (grid > x_min) & (grid < x_max)
    values = np.full_like(grid, -np.inf)
    if not interior.any():
        return values
    span = math.log(x_max - x_min)
    x = grid[interior]
    values[interior] = (
        _LOG_6 + np.log(x - x_min) - span + (beta - 1) * (np.log(x_max - x) - span)
    )
    return values


def estimate_ability(
    evaluations: Sequence[Evaluation],
    alpha: float,
    beta: float,
    x_min: float,
    x_max: float,
    grid_points: int = constants.GRID_POINTS,
) -> GridSearchTrace:
    """Grid-search MAP estimate of ability.

    Args:
        evaluations: Observed (level, item_max) pairs.
        alpha: Prior shape parameter (only used for the empty-input mode).
        beta: Prior shape parameter.
        x_min: Lower bound of the ability domain.
        x_max: Upper bound of the ability domain.
        grid_points: Number of grid intervals; grid_points + 1 candidates.

    Returns:
        GridSearchTrace with the best ability and the per-point diagnostics.
        With no evaluations the prior mode is returned and the arrays are
        empty. If no grid point has a finite log-posterior, x_min is returned.
    """
    if not evaluations:
        return GridSearchTrace(best_ability=prior_mode(alpha, beta, x_min, x_max))

    abilities = x_min + (np.arange(grid_points + 1) / grid_points) * (x_max - x_min)
    log_priors = _grid_log_prior(abilities, beta, x_min, x_max)
    log_likelihoods = _grid_log_likelihood(abilities, evaluations)
    log_posteriors = log_likelihoods + log_priors

    finite = np.isfinite(log_posteriors)
    if not finite.any():
        best = x_min
    else:
        # argmax returns the first maximum, matching a strict-greater scan
        best = float(abilities[int(np.argmax(np.where(finite, log_posteriors, -np.inf)))])

    return GridSearchTrace(
        best_ability=best,
        abilities=abilities.tolist(),
        log_priors=log_priors.tolist(),
        log_likelihoods=log_likelihoods.tolist(),
        log_posteriors=log_posteriors.tolist(),
    )


def confidence_interval(
    best_ability: float,
    evaluations: Sequence[Evaluation],
    alpha: float,
    beta: float,
    x_min: float,
    x_max: float,
) -> ConfidenceInterval:
    """95% interval from the log-posterior curvature at the estimate.

    The Fisher information is the negated central second difference of the
    log-posterior. Non-positive or non-finite information, or an empty
    evaluation list, yields the full domain.
    """
    full_domain = ConfidenceInterval(lower=x_min, upper=x_max)
    if not evaluations:
        return full_domain

    h = constants.CURVATURE_STEP
    at_peak = log_posterior(best_ability, evaluations, alpha, beta, x_min, x_max)
    plus_h = log_posterior(best_ability + h, evaluations, alpha, beta, x_min, x_max)
    minus_h = log_posterior(best_ability - h, evaluations, alpha, beta, x_min, x_max)

    second_derivative = (plus_h - 2 * at_peak + minus_h) / (h * h)
    information = -second_derivative

    if not math.isfinite(information) or information <= 0:
        return full_domain

    margin = constants.Z_SCORE_95 / math.sqrt(information)
    return ConfidenceInterval(
        lower=max(x_min, best_ability - margin),
        upper=min(x_max, best_ability + margin),
    )


def estimate(
    evaluations: Sequence[Evaluation],
    config: EstimatorConfig | None = None,
) -> AbilityEstimate:
    """MAP estimate plus confidence interval using an EstimatorConfig."""
    config = config or EstimatorConfig()
    trace = estimate_ability(
        evaluations,
        config.alpha,
        config.beta,
        config.x_min,
        config.x_max,
        config.grid_points,
    )
    interval = confidence_interval(
        trace.best_ability,
        evaluations,
        config.alpha,
        config.beta,
        config.x_min,
        config.x_max,
    )
    return AbilityEstimate(best_ability=trace.best_ability, confidence_interval=interval)


__all__ = [
    "confidence_interval",
    "estimate",
    "estimate_ability",
    "log_likelihood",
    "log_posterior",
    "log_prior",
    "prior_mode",
    "sigmoid",
]
