"""Ability estimation: grid-search MAP with a Laplace confidence interval."""

from abilitymap.estimation.ability import (
    confidence_interval,
    estimate,
    estimate_ability,
    log_likelihood,
    log_posterior,
    log_prior,
    prior_mode,
    sigmoid,
)

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
