"""SQLite-based state backend.

Persists max-score predictions, normalized judgments, ability scores and
ability summaries in a local SQLite database so that a long evaluation run can be interrupted and
scored later without repeating remote calls.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from abilitymap.core.logging import get_logger
from abilitymap.core.models import (
    AbilityScore,
    AbilitySummary,
    ConfidenceInterval,
    ItemEvaluation,
    MaxScorePrediction,
    WorkItem,
)
from abilitymap.state.base import StateBackend
from abilitymap.utils.time import utc_now

# Module-level logger for state operations
_logger = get_logger("state.sqlite")

# Current schema version for migration support
SCHEMA_VERSION = 3


class SQLiteStateBackend(StateBackend):
    """SQLite-based storage for predictions, judgments and scores.

    Tables:
    - max_score_predictions: Per-item, per-criterion ceilings
    - item_evaluations: Normalized judgments with surprise/incident flags
    - ability_scores: Latest estimate per subject and criterion
    - ability_summaries: Cached written summaries per subject, repository and criterion

    Supports schema migrations for future upgrades.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize SQLite backend.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            yield db

    async def _ensure_initialized(self) -> None:
        """Ensure database is initialized with schema."""
        if self._initialized:
            return

        async with self._init_lock:
            # Another coroutine may have initialized while we waited
            if self._initialized:
                return

            async with self._connect() as db:
                await self._run_migrations(db)
                self._initialized = True

    async def _get_schema_version(self, db: aiosqlite.Connection) -> int:
        """Get current schema version from database."""
        try:
            cursor = await db.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            return row[0] if row else 0
        except aiosqlite.OperationalError:
            # Table doesn't exist yet
            return 0

    async def _run_migrations(self, db: aiosqlite.Connection) -> None:
        """Run database migrations to current schema version."""
        current_version = await self._get_schema_version(db)

        if current_version < 1:
            await self._migrate_v1(db)
            _logger.info("schema_migrated", from_version=0, to_version=1)

        if current_version < 2:
            await self._migrate_v2(db)
            _logger.info("schema_migrated", from_version=1, to_version=2)

        if current_version < 3:
            await self._migrate_v3(db)
            _logger.info("schema_migrated", from_version=2, to_version=3)

    async def _migrate_v1(self, db: aiosqlite.Connection) -> None:
        """Initial schema migration (version 1)."""
        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS max_score_predictions (
                item_type TEXT NOT NULL,
                item_number INTEGER NOT NULL,
                repository TEXT NOT NULL,
                criterion TEXT NOT NULL,
                predicted_max_score INTEGER NOT NULL,
                reasoning TEXT,
                created_at TEXT NOT NULL,
                PRIMARY KEY (item_type, item_number, repository, criterion)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS item_evaluations (
                item_type TEXT NOT NULL,
                item_number INTEGER NOT NULL,
                repository TEXT NOT NULL,
                subject TEXT NOT NULL,
                criterion TEXT NOT NULL,
                level INTEGER NOT NULL,
                item_max INTEGER NOT NULL,
                reasoning TEXT,
                evidence TEXT,
                evaluable INTEGER NOT NULL DEFAULT 1,
                surprise_flag INTEGER NOT NULL DEFAULT 0,
                incident_flag INTEGER NOT NULL DEFAULT 0,
                evaluated_at TEXT NOT NULL,
                PRIMARY KEY (item_type, item_number, repository, subject, criterion)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS ability_scores (
                subject TEXT NOT NULL,
                criterion TEXT NOT NULL,
                ability REAL NOT NULL,
                ci_lower REAL NOT NULL,
                ci_upper REAL NOT NULL,
                calculated_at TEXT NOT NULL,
                PRIMARY KEY (subject, criterion)
            )
        """)

        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_evaluations_subject_criterion "
            "ON item_evaluations(subject, criterion)"
        )

        await db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (1, utc_now().isoformat()),
        )

        await db.commit()

    async def _migrate_v2(self, db: aiosqlite.Connection) -> None:
        """Schema migration v2: record how many judgments each score used.

        Idempotent: checks column existence before ALTER to handle interrupted migrations.
        """
        cursor = await db.execute("PRAGMA table_info(ability_scores)")
        columns = {row[1] for row in await cursor.fetchall()}
        if "evaluation_count" not in columns:
            await db.execute(
                "ALTER TABLE ability_scores "
                "ADD COLUMN evaluation_count INTEGER NOT NULL DEFAULT 0"
            )

        await db.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (2, utc_now().isoformat()),
        )

        await db.commit()

    async def _migrate_v3(self, db: aiosqlite.Connection) -> None:
        """Schema migration v3: cache of generated ability summaries."""
        await db.execute("""
            CREATE TABLE IF NOT EXISTS ability_summaries (
                subject TEXT NOT NULL,
                repository TEXT NOT NULL DEFAULT '',
                criterion TEXT NOT NULL,
                ability REAL NOT NULL,
                summary TEXT NOT NULL,
                generated_at TEXT NOT NULL,
                PRIMARY KEY (subject, repository, criterion)
            )
        """)

        await db.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (3, utc_now().isoformat()),
        )

        await db.commit()

    def _str_to_datetime(self, s: str | None) -> datetime:
        if not s:
            return utc_now()
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            return utc_now()

    def _json_loads(self, s: str | None) -> Any:
        if not s:
            return None
        try:
            return json.loads(s)
        except json.JSONDecodeError as exc:
            _logger.warning("json_parse_failed", raw_length=len(s), error=str(exc))
            return None

    async def save_prediction(self, item: WorkItem, prediction: MaxScorePrediction) -> None:
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO max_score_predictions (
                    item_type, item_number, repository, criterion,
                    predicted_max_score, reasoning, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (item_type, item_number, repository, criterion) DO UPDATE SET
                    predicted_max_score = excluded.predicted_max_score,
                    reasoning = excluded.reasoning,
                    created_at = excluded.created_at
                """,
                (
                    item.item_type,
                    item.number,
                    item.repository,
                    prediction.criterion,
                    prediction.predicted_max_score,
                    prediction.reasoning,
                    utc_now().isoformat(),
                ),
            )
            await db.commit()

        _logger.debug(
            "prediction_saved",
            item=item.name,
            criterion=prediction.criterion,
            predicted_max_score=prediction.predicted_max_score,
        )

    async def get_predictions(self, item: WorkItem) -> dict[str, int]:
        await self._ensure_initialized()

        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT criterion, predicted_max_score FROM max_score_predictions
                WHERE item_type = ? AND item_number = ? AND repository = ?
                """,
                (item.item_type, item.number, item.repository),
            )
            rows = await cursor.fetchall()

        return {row["criterion"]: row["predicted_max_score"] for row in rows}

    async def save_item_evaluation(self, evaluation: ItemEvaluation) -> None:
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO item_evaluations (
                    item_type, item_number, repository, subject, criterion,
                    level, item_max, reasoning, evidence, evaluable,
                    surprise_flag, incident_flag, evaluated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (item_type, item_number, repository, subject, criterion)
                DO UPDATE SET
                    level = excluded.level,
                    item_max = excluded.item_max,
                    reasoning = excluded.reasoning,
                    evidence = excluded.evidence,
                    evaluable = excluded.evaluable,
                    surprise_flag = excluded.surprise_flag,
                    incident_flag = excluded.incident_flag,
                    evaluated_at = excluded.evaluated_at
                """,
                (
                    evaluation.item_type,
                    evaluation.item_number,
                    evaluation.repository,
                    evaluation.subject,
                    evaluation.criterion,
                    evaluation.level,
                    evaluation.item_max,
                    evaluation.reasoning,
                    json.dumps(list(evaluation.evidence)),
                    int(evaluation.evaluable),
                    int(evaluation.surprise_flag),
                    int(evaluation.incident_flag),
                    evaluation.evaluated_at.isoformat(),
                ),
            )
            await db.commit()

    async def get_evaluations(
        self,
        subject: str,
        criterion: str,
        repository: str | None = None,
    ) -> list[ItemEvaluation]:
        await self._ensure_initialized()

        query = "SELECT * FROM item_evaluations WHERE subject = ? AND criterion = ?"
        params: list[Any] = [subject, criterion]
        if repository is not None:
            query += " AND repository = ?"
            params.append(repository)
        query += " ORDER BY evaluated_at, item_type, item_number"

        async with self._connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()

        return [
            ItemEvaluation(
                item_type=row["item_type"],
                item_number=row["item_number"],
                repository=row["repository"],
                subject=row["subject"],
                criterion=row["criterion"],
                level=row["level"],
                item_max=row["item_max"],
                reasoning=row["reasoning"] or "",
                evidence=tuple(self._json_loads(row["evidence"]) or ()),
                evaluable=bool(row["evaluable"]),
                surprise_flag=bool(row["surprise_flag"]),
                incident_flag=bool(row["incident_flag"]),
                evaluated_at=self._str_to_datetime(row["evaluated_at"]),
            )
            for row in rows
        ]

    async def save_ability(self, score: AbilityScore) -> None:
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO ability_scores (
                    subject, criterion, ability, ci_lower, ci_upper,
                    calculated_at, evaluation_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (subject, criterion) DO UPDATE SET
                    ability = excluded.ability,
                    ci_lower = excluded.ci_lower,
                    ci_upper = excluded.ci_upper,
                    calculated_at = excluded.calculated_at,
                    evaluation_count = excluded.evaluation_count
                """,
                (
                    score.subject,
                    score.criterion,
                    score.ability,
                    score.confidence_interval.lower,
                    score.confidence_interval.upper,
                    score.calculated_at.isoformat(),
                    score.evaluation_count,
                ),
            )
            await db.commit()

        _logger.debug(
            "ability_saved",
            subject=score.subject,
            criterion=score.criterion,
            ability=round(score.ability, 4),
        )

    async def get_abilities(self, subject: str) -> list[AbilityScore]:
        await self._ensure_initialized()

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM ability_scores WHERE subject = ? ORDER BY criterion",
                (subject,),
            )
            rows = await cursor.fetchall()

        return [
            AbilityScore(
                subject=row["subject"],
                criterion=row["criterion"],
                ability=row["ability"],
                confidence_interval=ConfidenceInterval(
                    lower=row["ci_lower"], upper=row["ci_upper"]
                ),
                evaluation_count=row["evaluation_count"],
                calculated_at=self._str_to_datetime(row["calculated_at"]),
            )
            for row in rows
        ]

    async def save_summary(self, summary: AbilitySummary) -> None:
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO ability_summaries (
                    subject, repository, criterion, ability, summary, generated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (subject, repository, criterion) DO UPDATE SET
                    ability = excluded.ability,
                    summary = excluded.summary,
                    generated_at = excluded.generated_at
                """,
                (
                    summary.subject,
                    summary.repository,
                    summary.criterion,
                    summary.ability,
                    summary.summary,
                    summary.generated_at.isoformat(),
                ),
            )
            await db.commit()

        _logger.debug(
            "summary_saved",
            subject=summary.subject,
            criterion=summary.criterion,
            summary_chars=len(summary.summary),
        )

    async def get_summaries(
        self,
        subject: str,
        repository: str | None = None,
    ) -> list[AbilitySummary]:
        await self._ensure_initialized()

        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT * FROM ability_summaries
                WHERE subject = ? AND repository = ?
                ORDER BY criterion
                """,
                (subject, repository or ""),
            )
            rows = await cursor.fetchall()

        return [
            AbilitySummary(
                subject=row["subject"],
                criterion=row["criterion"],
                ability=row["ability"],
                summary=row["summary"],
                repository=row["repository"],
                generated_at=self._str_to_datetime(row["generated_at"]),
            )
            for row in rows
        ]


__all__ = ["SCHEMA_VERSION", "SQLiteStateBackend"]
