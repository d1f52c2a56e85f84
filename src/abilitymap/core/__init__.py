"""Core models, configuration, errors and logging shared across abilitymap."""
