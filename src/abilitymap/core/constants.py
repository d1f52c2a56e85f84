"""Global constants for abilitymap.

Centralizes magic numbers used throughout the codebase,
making them discoverable, consistent, and easy to modify.
"""

# =============================================================================
# Judgment Levels
# =============================================================================

MIN_LEVEL = -1
"""Lowest level a judgment may report (an incident)."""

MAX_LEVEL = 4
"""Highest level a judgment may report."""

MIN_ITEM_MAX = 1
"""Lowest theoretical ceiling an item can have for a criterion."""

MAX_ITEM_MAX = 4
"""Highest theoretical ceiling an item can have for a criterion."""

DEFAULT_ITEM_MAX = 2
"""Ceiling assumed when no max-score prediction exists for an item."""

DEFAULT_ITEM_MAX_BY_TYPE: dict[str, int] = {
    "pull_request": 2,
    "issue": 2,
    "thread": 4,
}
"""Ceiling per item type when no max-score prediction exists."""

LEVEL_NAMES: dict[int, str] = {
    -1: "Needs Improvement",
    0: "Neutral",
    1: "Standard",
    2: "Nice try",
    3: "Very good",
    4: "Mentor",
}

DEFAULT_CRITERIA: tuple[str, ...] = (
    "Leadership",
    "Teamwork",
    "Problem Solving",
    "Communication",
    "Adaptability",
    "Continuous Learning",
)

# =============================================================================
# Estimator Defaults
# =============================================================================

PRIOR_ALPHA = 2.0
"""Prior shape parameter. The prior log-density is only exact for alpha == 2."""

PRIOR_BETA = 5.0
"""Prior shape parameter applied to the (x_max - x) term."""

ABILITY_MIN = 0.0
ABILITY_MAX = 4.0

GRID_POINTS = 500
"""Number of grid intervals; the grid holds GRID_POINTS + 1 candidates."""

LIKELIHOOD_FLOOR = 1e-10
"""Per-item likelihood floor applied before the logarithm."""

CURVATURE_STEP = 1e-4
"""Step for the central second difference of the log-posterior."""

Z_SCORE_95 = 1.96
"""Normal quantile for a two-sided 95% interval."""

# =============================================================================
# Retry / Batch Defaults (seconds)
# =============================================================================

DEFAULT_RATE_LIMIT_WAIT_SECONDS = 30.0
"""Wait applied after a rate limit when the provider gives no hint."""

RATE_LIMIT_JITTER_SECONDS = 1.5
"""Upper bound of random jitter added to every rate-limit wait."""

BACKOFF_JITTER_SECONDS = 0.4
"""Upper bound of random jitter added to transient-error backoff."""

# =============================================================================
# Prompt Limits (characters)
# =============================================================================

MAX_BODY_CHARS = 2000
"""Item body truncation for judgment prompts."""

MAX_PREDICTION_BODY_CHARS = 4000
"""Item body truncation for max-score prediction prompts."""

# =============================================================================
# Ability Summaries
# =============================================================================

SUMMARY_CONCURRENT_BATCHES = 2
"""Criteria batches summarized in parallel."""

MAX_SUMMARY_EVALUATIONS = 30
"""Most recent judgments listed in an ability summary prompt."""

SUMMARY_LOW_LEVEL = 2
"""Abilities at or below this level get improvement suggestions."""
