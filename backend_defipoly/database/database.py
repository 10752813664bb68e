"""
Database abstraction layer for the action log, ownership, and player aggregates.

MVP uses SQLite; designed so the backend can be swapped to PostgreSQL via a
different Backend implementation. All access goes through the abstract interface.

Writes happen inside a session: one session is one storage transaction, so an
action insert and every aggregate mutation it causes commit or roll back together.
The UNIQUE constraint on actions.transaction_id is the idempotency gate; a
conflicting insert is reported as "not inserted", never as an error.
"""

from __future__ import annotations

import json
import sqlite3
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import fields
from pathlib import Path
from typing import Any, Iterable, Iterator

from backend_defipoly.core.exceptions import StorageError
from backend_defipoly.database.models import (
    Action,
    ActionKind,
    OwnershipRecord,
    PlayerAggregate,
)
from backend_defipoly.defipoly_logging import get_logger

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Schema (SQLite). For PostgreSQL: use BIGSERIAL, JSONB, and %s.
# -----------------------------------------------------------------------------

SCHEMA_ACTIONS = """
CREATE TABLE IF NOT EXISTS actions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    transaction_id TEXT NOT NULL UNIQUE,
    kind TEXT NOT NULL,
    actor TEXT NOT NULL,
    counterparty TEXT,
    asset_id INTEGER,
    quantity INTEGER,
    value INTEGER,
    outcome INTEGER NOT NULL DEFAULT 1,
    extra_json TEXT,
    observed_at INTEGER NOT NULL,
    slot INTEGER,
    created_at INTEGER
);
CREATE INDEX IF NOT EXISTS ix_actions_observed ON actions(observed_at);
CREATE INDEX IF NOT EXISTS ix_actions_actor_observed ON actions(actor, observed_at);
CREATE INDEX IF NOT EXISTS ix_actions_counterparty ON actions(counterparty);
CREATE INDEX IF NOT EXISTS ix_actions_asset_observed ON actions(asset_id, observed_at);
CREATE INDEX IF NOT EXISTS ix_actions_kind_observed ON actions(kind, observed_at);
"""

SCHEMA_OWNERSHIP = """
CREATE TABLE IF NOT EXISTS ownership (
    wallet TEXT NOT NULL,
    property_id INTEGER NOT NULL,
    slots_owned INTEGER NOT NULL DEFAULT 0,
    updated_at INTEGER,
    PRIMARY KEY (wallet, property_id)
);
"""

SCHEMA_PLAYER_AGGREGATES = """
CREATE TABLE IF NOT EXISTS player_aggregates (
    wallet TEXT PRIMARY KEY,
    total_actions INTEGER NOT NULL DEFAULT 0,
    properties_bought INTEGER NOT NULL DEFAULT 0,
    properties_sold INTEGER NOT NULL DEFAULT 0,
    successful_steals INTEGER NOT NULL DEFAULT 0,
    failed_steals INTEGER NOT NULL DEFAULT 0,
    times_stolen INTEGER NOT NULL DEFAULT 0,
    shields_activated INTEGER NOT NULL DEFAULT 0,
    rewards_claimed INTEGER NOT NULL DEFAULT 0,
    total_spent INTEGER NOT NULL DEFAULT 0,
    total_earned INTEGER NOT NULL DEFAULT 0,
    total_slots_owned INTEGER NOT NULL DEFAULT 0,
    daily_income INTEGER NOT NULL DEFAULT 0,
    complete_sets INTEGER NOT NULL DEFAULT 0,
    roi REAL NOT NULL DEFAULT 0,
    steal_win_rate REAL NOT NULL DEFAULT 0,
    defense_rating REAL NOT NULL DEFAULT 0,
    leaderboard_score INTEGER NOT NULL DEFAULT 0,
    last_action_time INTEGER
);
CREATE INDEX IF NOT EXISTS ix_player_aggregates_score ON player_aggregates(leaderboard_score);
"""

_AGGREGATE_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(PlayerAggregate))

# Leaderboard type -> ordering column.
LEADERBOARD_COLUMNS: dict[str, str] = {
    "overall": "leaderboard_score",
    "wealth": "total_earned",
    "efficiency": "roi",
    "combat": "successful_steals",
    "defense": "defense_rating",
    "collections": "complete_sets",
    "income": "daily_income",
}


def _row_to_action(row: sqlite3.Row) -> Action:
    return Action(
        transaction_id=row["transaction_id"],
        kind=ActionKind(row["kind"]),
        actor=row["actor"],
        counterparty=row["counterparty"],
        asset_id=row["asset_id"],
        quantity=row["quantity"],
        value=row["value"],
        outcome=bool(row["outcome"]),
        extra=json.loads(row["extra_json"]) if row["extra_json"] else {},
        observed_at=row["observed_at"],
        slot=row["slot"],
    )


def _row_to_aggregate(row: sqlite3.Row) -> PlayerAggregate:
    return PlayerAggregate(**{col: row[col] for col in _AGGREGATE_COLUMNS})


def _leaderboard_column(board: str) -> str:
    try:
        return LEADERBOARD_COLUMNS[board]
    except KeyError:
        raise ValueError(f"Unknown leaderboard type {board!r}") from None


# -----------------------------------------------------------------------------
# Abstract session/backend: swap implementation for PostgreSQL later.
# -----------------------------------------------------------------------------


class StoreSession(ABC):
    """Operations bound to one storage transaction."""

    # --- Action log ---

    @abstractmethod
    def try_insert(self, action: Action) -> bool:
        """Insert if transaction_id is absent. Returns False (no mutation) on conflict."""
        ...

    @abstractmethod
    def exists(self, transaction_id: str) -> bool:
        ...

    @abstractmethod
    def latest(self) -> Action | None:
        """Most recent action by observed_at (ties: last inserted)."""
        ...

    @abstractmethod
    def iter_actions(self) -> Iterator[Action]:
        """All actions in replay order: observed_at ascending, then insertion order."""
        ...

    @abstractmethod
    def range_by_actor(
        self, wallet: str, *, limit: int = 50, offset: int = 0, include_counterparty: bool = True
    ) -> list[Action]:
        ...

    @abstractmethod
    def range_by_asset(self, asset_id: int, *, limit: int = 50, offset: int = 0) -> list[Action]:
        ...

    @abstractmethod
    def recent(self, kind: ActionKind | None = None, *, limit: int = 50, offset: int = 0) -> list[Action]:
        ...

    @abstractmethod
    def last_action_times(self, wallet: str, kinds: Iterable[ActionKind]) -> dict[int, int]:
        """asset_id -> latest observed_at among the wallet's actions of the given kinds."""
        ...

    @abstractmethod
    def holding_history(self, wallet: str, property_id: int) -> list[Action]:
        """Actions that move Ownership[wallet, property], in replay order."""
        ...

    # --- Ownership ---

    @abstractmethod
    def get_holding(self, wallet: str, property_id: int) -> OwnershipRecord | None:
        ...

    @abstractmethod
    def set_slots(self, wallet: str, property_id: int, slots: int, updated_at: int | None) -> None:
        ...

    @abstractmethod
    def get_ownership(self, wallet: str, *, include_zero: bool = False) -> list[OwnershipRecord]:
        ...

    # --- Player aggregates ---

    @abstractmethod
    def get_player(self, wallet: str) -> PlayerAggregate | None:
        ...

    @abstractmethod
    def save_player(self, aggregate: PlayerAggregate) -> None:
        """Insert or replace the full aggregate row."""
        ...

    @abstractmethod
    def list_wallets(self) -> list[str]:
        ...

    @abstractmethod
    def leaderboard(self, board: str = "overall", *, limit: int = 100, offset: int = 0) -> list[PlayerAggregate]:
        ...

    @abstractmethod
    def player_rank(self, wallet: str, board: str = "overall") -> int | None:
        """1-based rank among active players; None if the player has no actions."""
        ...

    @abstractmethod
    def clear_aggregates(self) -> None:
        """Delete all ownership and player aggregate rows (action log untouched)."""
        ...


class DatabaseBackend(ABC):
    """Abstract interface for persistence; implement for SQLite or PostgreSQL."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def session(self) -> Any:
        """Context manager yielding a StoreSession bound to one transaction."""
        ...


# -----------------------------------------------------------------------------
# SQLite backend
# -----------------------------------------------------------------------------


class SQLiteSession(StoreSession):
    """StoreSession over one sqlite3 cursor; the backend owns commit/rollback."""

    def __init__(self, cur: sqlite3.Cursor) -> None:
        self._cur = cur

    def try_insert(self, action: Action) -> bool:
        self._cur.execute(
            """
            INSERT INTO actions (transaction_id, kind, actor, counterparty, asset_id, quantity, value,
                                 outcome, extra_json, observed_at, slot, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(transaction_id) DO NOTHING
            """,
            (
                action.transaction_id,
                action.kind.value,
                action.actor,
                action.counterparty,
                action.asset_id,
                action.quantity,
                action.value,
                1 if action.outcome else 0,
                json.dumps(action.extra) if action.extra else None,
                action.observed_at,
                action.slot,
                int(time.time()),
            ),
        )
        return self._cur.rowcount == 1

    def exists(self, transaction_id: str) -> bool:
        self._cur.execute("SELECT 1 FROM actions WHERE transaction_id = ? LIMIT 1", (transaction_id,))
        return self._cur.fetchone() is not None

    def latest(self) -> Action | None:
        self._cur.execute("SELECT * FROM actions ORDER BY observed_at DESC, id DESC LIMIT 1")
        row = self._cur.fetchone()
        return _row_to_action(row) if row is not None else None

    def iter_actions(self) -> Iterator[Action]:
        self._cur.execute("SELECT * FROM actions ORDER BY observed_at ASC, id ASC")
        for row in self._cur.fetchall():
            yield _row_to_action(row)

    def range_by_actor(
        self, wallet: str, *, limit: int = 50, offset: int = 0, include_counterparty: bool = True
    ) -> list[Action]:
        if include_counterparty:
            sql = "SELECT * FROM actions WHERE actor = ? OR counterparty = ?"
            params: list[Any] = [wallet, wallet]
        else:
            sql = "SELECT * FROM actions WHERE actor = ?"
            params = [wallet]
        sql += " ORDER BY observed_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        self._cur.execute(sql, params)
        return [_row_to_action(r) for r in self._cur.fetchall()]

    def range_by_asset(self, asset_id: int, *, limit: int = 50, offset: int = 0) -> list[Action]:
        self._cur.execute(
            "SELECT * FROM actions WHERE asset_id = ? ORDER BY observed_at DESC, id DESC LIMIT ? OFFSET ?",
            (asset_id, limit, offset),
        )
        return [_row_to_action(r) for r in self._cur.fetchall()]

    def recent(self, kind: ActionKind | None = None, *, limit: int = 50, offset: int = 0) -> list[Action]:
        sql = "SELECT * FROM actions"
        params: list[Any] = []
        if kind is not None:
            sql += " WHERE kind = ?"
            params.append(ActionKind(kind).value)
        sql += " ORDER BY observed_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        self._cur.execute(sql, params)
        return [_row_to_action(r) for r in self._cur.fetchall()]

    def last_action_times(self, wallet: str, kinds: Iterable[ActionKind]) -> dict[int, int]:
        kind_values = [ActionKind(k).value for k in kinds]
        if not kind_values:
            return {}
        placeholders = ", ".join("?" for _ in kind_values)
        self._cur.execute(
            f"""
            SELECT asset_id, MAX(observed_at) AS last_at FROM actions
            WHERE actor = ? AND asset_id IS NOT NULL AND kind IN ({placeholders})
            GROUP BY asset_id
            """,
            [wallet, *kind_values],
        )
        return {row["asset_id"]: row["last_at"] for row in self._cur.fetchall()}

    def holding_history(self, wallet: str, property_id: int) -> list[Action]:
        self._cur.execute(
            """
            SELECT * FROM actions
            WHERE asset_id = ?
              AND ((actor = ? AND kind IN (?, ?, ?)) OR (kind = ? AND counterparty = ?))
            ORDER BY observed_at ASC, id ASC
            """,
            (
                property_id,
                wallet,
                ActionKind.BUY.value,
                ActionKind.SELL.value,
                ActionKind.STEAL_SUCCESS.value,
                ActionKind.STEAL_SUCCESS.value,
                wallet,
            ),
        )
        return [_row_to_action(r) for r in self._cur.fetchall()]

    def get_holding(self, wallet: str, property_id: int) -> OwnershipRecord | None:
        self._cur.execute(
            "SELECT wallet, property_id, slots_owned, updated_at FROM ownership WHERE wallet = ? AND property_id = ?",
            (wallet, property_id),
        )
        row = self._cur.fetchone()
        if row is None:
            return None
        return OwnershipRecord(
            wallet=row["wallet"],
            property_id=row["property_id"],
            slots_owned=row["slots_owned"],
            updated_at=row["updated_at"],
        )

    def set_slots(self, wallet: str, property_id: int, slots: int, updated_at: int | None) -> None:
        self._cur.execute(
            """
            INSERT INTO ownership (wallet, property_id, slots_owned, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(wallet, property_id) DO UPDATE SET
                slots_owned = excluded.slots_owned,
                updated_at = excluded.updated_at
            """,
            (wallet, property_id, slots, updated_at),
        )

    def get_ownership(self, wallet: str, *, include_zero: bool = False) -> list[OwnershipRecord]:
        sql = "SELECT wallet, property_id, slots_owned, updated_at FROM ownership WHERE wallet = ?"
        if not include_zero:
            sql += " AND slots_owned > 0"
        sql += " ORDER BY property_id"
        self._cur.execute(sql, (wallet,))
        return [
            OwnershipRecord(
                wallet=row["wallet"],
                property_id=row["property_id"],
                slots_owned=row["slots_owned"],
                updated_at=row["updated_at"],
            )
            for row in self._cur.fetchall()
        ]

    def get_player(self, wallet: str) -> PlayerAggregate | None:
        self._cur.execute("SELECT * FROM player_aggregates WHERE wallet = ?", (wallet,))
        row = self._cur.fetchone()
        return _row_to_aggregate(row) if row is not None else None

    def save_player(self, aggregate: PlayerAggregate) -> None:
        cols = ", ".join(_AGGREGATE_COLUMNS)
        placeholders = ", ".join("?" for _ in _AGGREGATE_COLUMNS)
        self._cur.execute(
            f"INSERT OR REPLACE INTO player_aggregates ({cols}) VALUES ({placeholders})",
            [getattr(aggregate, col) for col in _AGGREGATE_COLUMNS],
        )

    def list_wallets(self) -> list[str]:
        self._cur.execute("SELECT wallet FROM player_aggregates ORDER BY wallet")
        return [row["wallet"] for row in self._cur.fetchall()]

    def leaderboard(self, board: str = "overall", *, limit: int = 100, offset: int = 0) -> list[PlayerAggregate]:
        column = _leaderboard_column(board)
        self._cur.execute(
            f"""
            SELECT * FROM player_aggregates WHERE total_actions > 0
            ORDER BY {column} DESC, wallet ASC LIMIT ? OFFSET ?
            """,
            (limit, offset),
        )
        return [_row_to_aggregate(r) for r in self._cur.fetchall()]

    def player_rank(self, wallet: str, board: str = "overall") -> int | None:
        column = _leaderboard_column(board)
        self._cur.execute(
            f"SELECT {column} AS v FROM player_aggregates WHERE wallet = ? AND total_actions > 0",
            (wallet,),
        )
        row = self._cur.fetchone()
        if row is None:
            return None
        self._cur.execute(
            f"SELECT COUNT(*) AS n FROM player_aggregates WHERE total_actions > 0 AND {column} > ?",
            (row["v"],),
        )
        return int(self._cur.fetchone()["n"]) + 1

    def clear_aggregates(self) -> None:
        self._cur.execute("DELETE FROM ownership")
        self._cur.execute("DELETE FROM player_aggregates")


class SQLiteBackend(DatabaseBackend):
    """SQLite implementation; single file, one connection per session."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def session(self) -> Iterator[SQLiteSession]:
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database {self._path}: {e}") from e
        try:
            cur = conn.cursor()
            yield SQLiteSession(cur)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        try:
            conn = self._connect()
            try:
                for stmt in (SCHEMA_ACTIONS, SCHEMA_OWNERSHIP, SCHEMA_PLAYER_AGGREGATES):
                    conn.executescript(stmt)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Could not create schema in {self._path}: {e}") from e


# -----------------------------------------------------------------------------
# Database facade: single entrypoint; backend is swappable.
# -----------------------------------------------------------------------------


class Database:
    """
    Action store plus derived aggregate storage.

    Uses a Backend (SQLite for MVP). Single-call helpers each run in their own
    session; multi-step mutations use session() directly.
    """

    def __init__(self, backend: DatabaseBackend) -> None:
        self._backend = backend

    def ensure_schema(self) -> None:
        self._backend.ensure_schema()

    def session(self):
        """Context manager yielding a StoreSession; commits on exit, rolls back on error."""
        return self._backend.session()

    # --- Action store ---

    def try_insert(self, action: Action) -> bool:
        with self.session() as s:
            return s.try_insert(action)

    def exists(self, transaction_id: str) -> bool:
        with self.session() as s:
            return s.exists(transaction_id)

    def latest(self) -> Action | None:
        with self.session() as s:
            return s.latest()

    def all_actions(self) -> list[Action]:
        with self.session() as s:
            return list(s.iter_actions())

    def range_by_actor(
        self, wallet: str, *, limit: int = 50, offset: int = 0, include_counterparty: bool = True
    ) -> list[Action]:
        with self.session() as s:
            return s.range_by_actor(wallet, limit=limit, offset=offset, include_counterparty=include_counterparty)

    def range_by_asset(self, asset_id: int, *, limit: int = 50, offset: int = 0) -> list[Action]:
        with self.session() as s:
            return s.range_by_asset(asset_id, limit=limit, offset=offset)

    def recent(self, kind: ActionKind | None = None, *, limit: int = 50, offset: int = 0) -> list[Action]:
        with self.session() as s:
            return s.recent(kind, limit=limit, offset=offset)

    def last_action_times(self, wallet: str, kinds: Iterable[ActionKind]) -> dict[int, int]:
        with self.session() as s:
            return s.last_action_times(wallet, kinds)

    # --- Aggregates (read side) ---

    def get_ownership(self, wallet: str) -> list[OwnershipRecord]:
        with self.session() as s:
            return s.get_ownership(wallet)

    def get_holding(self, wallet: str, property_id: int) -> OwnershipRecord | None:
        with self.session() as s:
            return s.get_holding(wallet, property_id)

    def get_player(self, wallet: str) -> PlayerAggregate | None:
        with self.session() as s:
            return s.get_player(wallet)

    def list_wallets(self) -> list[str]:
        with self.session() as s:
            return s.list_wallets()

    def leaderboard(self, board: str = "overall", *, limit: int = 100, offset: int = 0) -> list[PlayerAggregate]:
        with self.session() as s:
            return s.leaderboard(board, limit=limit, offset=offset)

    def player_ranks(self, wallet: str) -> dict[str, int | None]:
        """Rank of the player on every leaderboard type."""
        with self.session() as s:
            return {board: s.player_rank(wallet, board) for board in LEADERBOARD_COLUMNS}

    def snapshot(self) -> tuple[dict[str, dict[str, Any]], dict[tuple[str, int], int]]:
        """(aggregates by wallet, non-zero ownership by (wallet, property)); used to compare replays."""
        with self.session() as s:
            aggregates = {}
            ownership = {}
            for wallet in s.list_wallets():
                agg = s.get_player(wallet)
                if agg is not None:
                    aggregates[wallet] = agg.to_dict()
                for rec in s.get_ownership(wallet):
                    ownership[(wallet, rec.property_id)] = rec.slots_owned
            return aggregates, ownership


def get_database(path: str | Path | None = None) -> Database:
    """
    Return a Database instance for MVP (SQLite), schema ensured.

    path: Path to the SQLite file. Default: "defipoly.db" in cwd.
    """
    if path is None:
        path = Path("defipoly.db")
    backend = SQLiteBackend(path)
    db = Database(backend)
    db.ensure_schema()
    logger.debug("database_ready", path=str(path))
    return db
