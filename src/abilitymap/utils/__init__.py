"""Utility modules for abilitymap."""
