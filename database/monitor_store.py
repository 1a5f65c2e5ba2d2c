"""database/monitor_store.py — append-only SQLite store for MonitorResult snapshots.

Every monitoring pass appends a new row; rows are never updated in place,
so concurrent refreshes of different positions cannot race on a record.
The full result is kept as its pydantic JSON so a reload reproduces alert
ordering and P/L fields exactly.

The SQLite file defaults to ``<project_root>/data/monitor_results.db``.
Uses :mod:`aiosqlite`.
"""
from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

import aiosqlite  # type: ignore[import]

from models.position import MonitorResult

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "data", "monitor_results.db"
)


class MonitorStore:
    """Async SQLite store of :class:`MonitorResult` snapshots keyed by position and time.

    Args:
        db_path: Path of the SQLite file; parent directories are created.
    """

    def __init__(self, db_path: str = _DEFAULT_DB_PATH) -> None:
        self._db_path = db_path
        self._initialised = False

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    async def _ensure_init(self) -> None:
        if self._initialised:
            return
        directory = os.path.dirname(self._db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS monitor_results (
                    id            TEXT PRIMARY KEY,
                    position_id   TEXT NOT NULL,
                    symbol        TEXT NOT NULL,
                    evaluated_at  TEXT NOT NULL,
                    risk_level    TEXT NOT NULL,
                    degraded      INTEGER NOT NULL DEFAULT 0,
                    payload       TEXT NOT NULL
                );
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS ix_mr_position ON monitor_results(position_id, evaluated_at DESC);"
            )
            await db.commit()
        self._initialised = True
        logger.info("MonitorStore ready at %s", self._db_path)

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    async def append(self, result: MonitorResult) -> str:
        """Persist *result* as a new snapshot. Returns its id."""

        await self._ensure_init()
        stored = result.model_copy(update={"from_cache": False, "age_hours": None})
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """
                INSERT INTO monitor_results
                    (id, position_id, symbol, evaluated_at, risk_level, degraded, payload)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    stored.id,
                    stored.position_id,
                    stored.symbol,
                    stored.evaluated_at.isoformat(),
                    stored.risk_level.value,
                    int(stored.degraded),
                    stored.model_dump_json(),
                ),
            )
            await db.commit()
        return stored.id

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    async def latest(self, position_id: str) -> Optional[MonitorResult]:
        await self._ensure_init()
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                """
                SELECT payload FROM monitor_results
                WHERE position_id = ?
                ORDER BY evaluated_at DESC, rowid DESC
                LIMIT 1
                """,
                (position_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return MonitorResult.model_validate_json(row[0]) if row else None

    async def latest_for(self, position_ids: Iterable[str]) -> dict[str, MonitorResult]:
        results: dict[str, MonitorResult] = {}
        for position_id in position_ids:
            latest = await self.latest(position_id)
            if latest is not None:
                results[position_id] = latest
        return results

    async def history(self, position_id: str, limit: int = 50) -> list[MonitorResult]:
        """Newest-first snapshots for *position_id*."""

        await self._ensure_init()
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                """
                SELECT payload FROM monitor_results
                WHERE position_id = ?
                ORDER BY evaluated_at DESC, rowid DESC
                LIMIT ?
                """,
                (position_id, limit),
            ) as cursor:
                rows = await cursor.fetchall()
        return [MonitorResult.model_validate_json(r[0]) for r in rows]

    async def count(self, position_id: str | None = None) -> int:
        await self._ensure_init()
        query = "SELECT COUNT(*) FROM monitor_results"
        params: tuple = ()
        if position_id is not None:
            query += " WHERE position_id = ?"
            params = (position_id,)
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(query, params) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
