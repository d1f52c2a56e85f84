"""Pytest fixtures for abilitymap tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog
from helpers import FakeBackend, FakeClock

from abilitymap.core.models import Comment, WorkItem
from abilitymap.execution.retry import RateLimitCooldown, get_default_cooldown
from abilitymap.state.memory import InMemoryStateBackend
from abilitymap.state.sqlite_backend import SQLiteStateBackend


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging and cooldown state before and after each test.

    This ensures test isolation for logging configuration.
    """
    import abilitymap.cli.helpers as cli_helpers

    cli_helpers.reset_logging_state()
    get_default_cooldown().reset()

    # Reset structlog to default state
    structlog.reset_defaults()

    # Clear all handlers from root logger
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_logging_state()
    get_default_cooldown().reset()
    structlog.reset_defaults()

    # Restore original handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Virtual monotonic clock whose sleeps advance time instantly."""
    return FakeClock()


@pytest.fixture
def cooldown(fake_clock: FakeClock) -> RateLimitCooldown:
    """Cooldown running on the fake clock."""
    return RateLimitCooldown(clock=fake_clock, sleep=fake_clock.sleep)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def memory_state() -> InMemoryStateBackend:
    return InMemoryStateBackend()


@pytest.fixture
def sqlite_state(tmp_path: Path) -> SQLiteStateBackend:
    """SQLite state store in a temporary directory."""
    return SQLiteStateBackend(tmp_path / "state" / "abilitymap.db")


@pytest.fixture
def work_item() -> WorkItem:
    """A pull request with a short discussion."""
    return WorkItem(
        item_type="pull_request",
        number=42,
        title="Add retry support to the sync client",
        subject="octocat",
        repository="acme/api",
        body="Wraps remote calls in exponential backoff and respects 429 hints.",
        comments=(
            Comment(author="hubot", body="Could the cooldown be shared?"),
            Comment(author="octocat", body="Done, every worker now shares one cooldown."),
        ),
    )
