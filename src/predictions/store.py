"""Storage backends for predictions and per-user stats.

Two interchangeable implementations sit behind ``StorageAdapter``: a durable
SQLite store and a single-process in-memory store. Callers pick one at
construction time (see ``open_store``) and never branch on the backend after.
"""

import asyncio
import dataclasses
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from db import transaction, wal_connect
from errors import PersistenceError, ValidationError
from shared_types import Direction, PredictionStatus, StorageBackend

from .models import Prediction, UserStats, as_utc, utcnow

logger = structlog.get_logger().bind(source="prediction_store")


def _ts(value: datetime) -> str:
    """Fixed-width ISO form so SQLite string comparison orders correctly."""
    return as_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return as_utc(datetime.fromisoformat(value))


def _clamp_limit(limit: int) -> int:
    # SQLite reads a negative LIMIT as unbounded while a slice drops from the end
    return max(0, int(limit))


def _global_stats(
    total_users: int,
    total_predictions: int,
    correct_predictions: int,
    by_status: dict[str, int],
) -> dict:
    pending = by_status.get(PredictionStatus.PENDING, 0)
    resolved = by_status.get(PredictionStatus.CORRECT, 0) + by_status.get(
        PredictionStatus.INCORRECT, 0
    )
    return {
        "total_users": total_users,
        "total_predictions": total_predictions,
        "correct_predictions": correct_predictions,
        "resolved_predictions": resolved,
        "pending_predictions": pending,
        "overall_accuracy": (
            correct_predictions / total_predictions if total_predictions > 0 else None
        ),
    }


class StorageAdapter(ABC):
    """Record store for predictions and user stats with per-user atomic updates.

    Public write methods serialize on a per-user ``asyncio.Lock`` so that a
    prediction insert and a concurrent evaluation for the same user never
    interleave their read-modify-write steps. Backends implement the
    underscore primitives, each of which must be atomic on its own.
    """

    backend: StorageBackend

    def __init__(self):
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._opened = False

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    def _ensure_open(self):
        if not self._opened:
            raise PersistenceError(f"{self.backend} store is not open")

    async def open(self) -> "StorageAdapter":
        self._opened = True
        return self

    async def close(self) -> None:
        self._opened = False

    async def __aenter__(self):
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # --- write paths ---

    async def insert_prediction(self, prediction: Prediction) -> None:
        """Store a new prediction and bump the owner's stats in one unit.

        Creates the user's stats row on first prediction.
        """
        self._ensure_open()
        async with self._user_lock(prediction.user_id):
            await self._insert_prediction(prediction)

    async def update_prediction_and_user(
        self,
        prediction_id: str,
        new_status: PredictionStatus,
        score_delta: int,
        evaluated_at: Optional[datetime] = None,
        price_change: Optional[float] = None,
    ) -> bool:
        """Resolve a pending prediction and apply its score to the owner's stats.

        No-op (returns False) if the prediction is unknown or already resolved,
        so duplicate ticks and retries are harmless. The resulting total score
        is clamped at zero.
        """
        new_status = PredictionStatus(new_status)
        if new_status == PredictionStatus.PENDING:
            raise ValidationError("cannot resolve a prediction back to pending")
        self._ensure_open()

        current = await self.get_prediction(prediction_id)
        if current is None:
            logger.warning("prediction_not_found", prediction_id=prediction_id)
            return False
        if not current.is_pending:
            return False

        async with self._user_lock(current.user_id):
            return await self._apply_resolution(
                prediction_id,
                current.user_id,
                new_status,
                int(score_delta),
                as_utc(evaluated_at or utcnow()),
                price_change,
            )

    # --- backend primitives ---

    @abstractmethod
    async def _insert_prediction(self, prediction: Prediction) -> None: ...

    @abstractmethod
    async def _apply_resolution(
        self,
        prediction_id: str,
        user_id: str,
        new_status: PredictionStatus,
        score_delta: int,
        evaluated_at: datetime,
        price_change: Optional[float],
    ) -> bool: ...

    # --- read paths ---

    @abstractmethod
    async def get_prediction(self, prediction_id: str) -> Optional[Prediction]: ...

    @abstractmethod
    async def get_pending_expired(self, now: datetime) -> list[Prediction]:
        """All pending predictions whose expiry is at or before ``now``, oldest first."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserStats]: ...

    @abstractmethod
    async def rank_users(self, limit: int) -> list[UserStats]:
        """Users by total score descending; ties go to whoever joined first.

        A negative ``limit`` returns no rows on every backend.
        """

    @abstractmethod
    async def count_strictly_greater_score(self, score: int) -> int: ...

    @abstractmethod
    async def get_user_predictions(self, user_id: str, limit: int = 10) -> list[Prediction]:
        """A user's predictions, most recent first."""

    @abstractmethod
    async def get_global_stats(self) -> dict: ...


class SQLitePredictionStore(StorageAdapter):
    """Durable backend on a WAL-mode SQLite file.

    Every write runs inside a single BEGIN IMMEDIATE transaction, and all
    blocking sqlite calls are pushed to a worker thread.
    """

    backend = StorageBackend.SQLITE

    def __init__(self, db_path: str | Path):
        super().__init__()
        self.db_path = Path(db_path).expanduser()

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            logger.error("sqlite_error", op=fn.__name__, error=str(e))
            raise PersistenceError(f"{fn.__name__}: {e}") from e

    async def open(self) -> "SQLitePredictionStore":
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"cannot create {self.db_path.parent}: {e}") from e
        await self._run(self._init_tables)
        logger.info("store_opened", backend=str(self.backend), db_path=str(self.db_path))
        return await super().open()

    def _init_tables(self):
        with transaction(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS predictions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    token_id TEXT NOT NULL,
                    direction TEXT NOT NULL
                        CHECK(direction IN ('up','down','moon','dump')),
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK(status IN ('pending','correct','incorrect')),
                    score INTEGER NOT NULL DEFAULT 0,
                    evaluated_at TEXT,
                    price_change REAL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_stats (
                    user_id TEXT PRIMARY KEY,
                    total_predictions INTEGER NOT NULL DEFAULT 0,
                    correct_predictions INTEGER NOT NULL DEFAULT 0,
                    total_score INTEGER NOT NULL DEFAULT 0 CHECK(total_score >= 0),
                    joined_at TEXT NOT NULL,
                    last_active TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_pred_pending ON predictions(status, expires_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_pred_user ON predictions(user_id, created_at DESC)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_rank ON user_stats(total_score DESC, joined_at ASC)"
            )

    # --- writes ---

    def _insert_sync(self, p: Prediction):
        with transaction(self.db_path) as conn:
            conn.execute(
                """INSERT INTO predictions
                (id, user_id, token_id, direction, created_at, expires_at,
                 status, score, evaluated_at, price_change)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    p.id,
                    p.user_id,
                    p.token_id,
                    str(p.direction),
                    _ts(p.created_at),
                    _ts(p.expires_at),
                    str(p.status),
                    p.score,
                    _ts(p.evaluated_at) if p.evaluated_at else None,
                    p.price_change,
                ),
            )
            conn.execute(
                """INSERT INTO user_stats
                (user_id, total_predictions, correct_predictions, total_score, joined_at, last_active)
                VALUES (?, 1, 0, 0, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    total_predictions = total_predictions + 1,
                    last_active = excluded.last_active""",
                (p.user_id, _ts(p.created_at), _ts(p.created_at)),
            )

    async def _insert_prediction(self, prediction: Prediction) -> None:
        await self._run(self._insert_sync, prediction)

    def _resolve_sync(
        self,
        prediction_id: str,
        user_id: str,
        new_status: PredictionStatus,
        score_delta: int,
        evaluated_at: datetime,
        price_change: Optional[float],
    ) -> bool:
        with transaction(self.db_path) as conn:
            cur = conn.execute(
                """UPDATE predictions
                SET status = ?, score = ?, evaluated_at = ?, price_change = ?
                WHERE id = ? AND status = 'pending'""",
                (str(new_status), score_delta, _ts(evaluated_at), price_change, prediction_id),
            )
            if cur.rowcount == 0:
                return False
            conn.execute(
                """UPDATE user_stats
                SET correct_predictions = correct_predictions + ?,
                    total_score = MAX(0, total_score + ?),
                    last_active = ?
                WHERE user_id = ?""",
                (
                    1 if new_status == PredictionStatus.CORRECT else 0,
                    score_delta,
                    _ts(evaluated_at),
                    user_id,
                ),
            )
            return True

    async def _apply_resolution(self, *args) -> bool:
        return await self._run(self._resolve_sync, *args)

    # --- reads ---

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        conn = wal_connect(self.db_path, row_factory=True)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    @staticmethod
    def _row_to_prediction(row: sqlite3.Row) -> Prediction:
        return Prediction(
            id=row["id"],
            user_id=row["user_id"],
            token_id=row["token_id"],
            direction=Direction(row["direction"]),
            created_at=_parse_ts(row["created_at"]),
            expires_at=_parse_ts(row["expires_at"]),
            status=PredictionStatus(row["status"]),
            score=row["score"],
            evaluated_at=_parse_ts(row["evaluated_at"]),
            price_change=row["price_change"],
        )

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserStats:
        return UserStats(
            user_id=row["user_id"],
            total_predictions=row["total_predictions"],
            correct_predictions=row["correct_predictions"],
            total_score=row["total_score"],
            joined_at=_parse_ts(row["joined_at"]),
            last_active=_parse_ts(row["last_active"]),
        )

    async def get_prediction(self, prediction_id: str) -> Optional[Prediction]:
        self._ensure_open()
        rows = await self._run(
            self._query, "SELECT * FROM predictions WHERE id = ?", (prediction_id,)
        )
        return self._row_to_prediction(rows[0]) if rows else None

    async def get_pending_expired(self, now: datetime) -> list[Prediction]:
        self._ensure_open()
        rows = await self._run(
            self._query,
            """SELECT * FROM predictions
            WHERE status = 'pending' AND expires_at <= ?
            ORDER BY expires_at ASC""",
            (_ts(now),),
        )
        return [self._row_to_prediction(r) for r in rows]

    async def get_user(self, user_id: str) -> Optional[UserStats]:
        self._ensure_open()
        rows = await self._run(
            self._query, "SELECT * FROM user_stats WHERE user_id = ?", (user_id,)
        )
        return self._row_to_user(rows[0]) if rows else None

    async def rank_users(self, limit: int) -> list[UserStats]:
        self._ensure_open()
        rows = await self._run(
            self._query,
            """SELECT * FROM user_stats
            ORDER BY total_score DESC, joined_at ASC, user_id ASC
            LIMIT ?""",
            (_clamp_limit(limit),),
        )
        return [self._row_to_user(r) for r in rows]

    async def count_strictly_greater_score(self, score: int) -> int:
        self._ensure_open()
        rows = await self._run(
            self._query, "SELECT COUNT(*) AS n FROM user_stats WHERE total_score > ?", (score,)
        )
        return rows[0]["n"]

    async def get_user_predictions(self, user_id: str, limit: int = 10) -> list[Prediction]:
        self._ensure_open()
        rows = await self._run(
            self._query,
            """SELECT * FROM predictions WHERE user_id = ?
            ORDER BY created_at DESC LIMIT ?""",
            (user_id, _clamp_limit(limit)),
        )
        return [self._row_to_prediction(r) for r in rows]

    async def get_global_stats(self) -> dict:
        self._ensure_open()
        totals = await self._run(
            self._query,
            """SELECT COUNT(*) AS users,
                      COALESCE(SUM(total_predictions), 0) AS total,
                      COALESCE(SUM(correct_predictions), 0) AS correct
            FROM user_stats""",
        )
        by_status = await self._run(
            self._query, "SELECT status, COUNT(*) AS n FROM predictions GROUP BY status"
        )
        t = totals[0]
        return _global_stats(
            t["users"], t["total"], t["correct"], {r["status"]: r["n"] for r in by_status}
        )


class InMemoryPredictionStore(StorageAdapter):
    """Single-process backend keeping records in dicts.

    Primitives contain no awaits, so each one runs to completion without
    interleaving. Reads hand out copies so callers cannot mutate stored state.
    """

    backend = StorageBackend.MEMORY

    def __init__(self):
        super().__init__()
        self._predictions: dict[str, Prediction] = {}
        self._users: dict[str, UserStats] = {}

    async def open(self) -> "InMemoryPredictionStore":
        logger.info("store_opened", backend=str(self.backend))
        return await super().open()

    async def _insert_prediction(self, prediction: Prediction) -> None:
        if prediction.id in self._predictions:
            raise PersistenceError(f"duplicate prediction id {prediction.id}")
        self._predictions[prediction.id] = dataclasses.replace(prediction)
        user = self._users.get(prediction.user_id)
        if user is None:
            user = self._users[prediction.user_id] = UserStats(
                user_id=prediction.user_id,
                joined_at=prediction.created_at,
                last_active=prediction.created_at,
            )
        user.total_predictions += 1
        user.last_active = prediction.created_at

    async def _apply_resolution(
        self,
        prediction_id: str,
        user_id: str,
        new_status: PredictionStatus,
        score_delta: int,
        evaluated_at: datetime,
        price_change: Optional[float],
    ) -> bool:
        prediction = self._predictions.get(prediction_id)
        if prediction is None or not prediction.is_pending:
            return False
        prediction.status = new_status
        prediction.score = score_delta
        prediction.evaluated_at = evaluated_at
        prediction.price_change = price_change

        user = self._users[user_id]
        if new_status == PredictionStatus.CORRECT:
            user.correct_predictions += 1
        user.total_score = max(0, user.total_score + score_delta)
        user.last_active = evaluated_at
        return True

    async def get_prediction(self, prediction_id: str) -> Optional[Prediction]:
        self._ensure_open()
        p = self._predictions.get(prediction_id)
        return dataclasses.replace(p) if p else None

    async def get_pending_expired(self, now: datetime) -> list[Prediction]:
        self._ensure_open()
        now = as_utc(now)
        due = [p for p in self._predictions.values() if p.is_pending and p.expires_at <= now]
        return [dataclasses.replace(p) for p in sorted(due, key=lambda p: p.expires_at)]

    async def get_user(self, user_id: str) -> Optional[UserStats]:
        self._ensure_open()
        u = self._users.get(user_id)
        return dataclasses.replace(u) if u else None

    async def rank_users(self, limit: int) -> list[UserStats]:
        self._ensure_open()
        ordered = sorted(
            self._users.values(), key=lambda u: (-u.total_score, u.joined_at, u.user_id)
        )
        return [dataclasses.replace(u) for u in ordered[: _clamp_limit(limit)]]

    async def count_strictly_greater_score(self, score: int) -> int:
        self._ensure_open()
        return sum(1 for u in self._users.values() if u.total_score > score)

    async def get_user_predictions(self, user_id: str, limit: int = 10) -> list[Prediction]:
        self._ensure_open()
        mine = [p for p in self._predictions.values() if p.user_id == user_id]
        mine.sort(key=lambda p: p.created_at, reverse=True)
        return [dataclasses.replace(p) for p in mine[: _clamp_limit(limit)]]

    async def get_global_stats(self) -> dict:
        self._ensure_open()
        by_status: dict[str, int] = {}
        for p in self._predictions.values():
            by_status[p.status] = by_status.get(p.status, 0) + 1
        return _global_stats(
            len(self._users),
            sum(u.total_predictions for u in self._users.values()),
            sum(u.correct_predictions for u in self._users.values()),
            by_status,
        )


async def open_store(
    backend: StorageBackend | str = StorageBackend.SQLITE,
    db_path: Optional[str | Path] = None,
    fallback_to_memory: bool = True,
) -> StorageAdapter:
    """Construct and open the configured backend.

    When the durable store cannot be opened and fallback is allowed, an
    in-memory store is used instead for the life of the process.
    """
    backend = StorageBackend(backend)
    if backend == StorageBackend.MEMORY:
        return await InMemoryPredictionStore().open()

    if db_path is None:
        raise ValidationError("sqlite backend requires db_path")
    try:
        return await SQLitePredictionStore(db_path).open()
    except PersistenceError as e:
        if not fallback_to_memory:
            raise
        logger.warning("store_fallback_to_memory", db_path=str(db_path), error=str(e))
        return await InMemoryPredictionStore().open()
