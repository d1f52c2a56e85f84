"""State persistence backends."""

from pathlib import Path

from abilitymap.core.config import StateConfig
from abilitymap.state.base import StateBackend
from abilitymap.state.memory import InMemoryStateBackend
from abilitymap.state.sqlite_backend import SQLiteStateBackend


def create_state_backend(config: StateConfig, base_dir: Path | None = None) -> StateBackend:
    """Build the backend named by ``config``.

    Relative database paths are resolved against ``base_dir`` when given.
    """
    if config.backend == "memory":
        return InMemoryStateBackend()
    db_path = config.db_path
    if base_dir is not None and not db_path.is_absolute():
        db_path = base_dir / db_path
    return SQLiteStateBackend(db_path)


__all__ = [
    "InMemoryStateBackend",
    "SQLiteStateBackend",
    "StateBackend",
    "create_state_backend",
]
