"""
Database abstraction layer: action log, ownership, player aggregates.

MVP uses SQLite via Database and get_database(); backend is swappable for PostgreSQL.
"""

from backend_defipoly.database.database import (
    LEADERBOARD_COLUMNS,
    Database,
    DatabaseBackend,
    SQLiteBackend,
    StoreSession,
    get_database,
)
from backend_defipoly.database.models import (
    Action,
    ActionKind,
    OwnershipRecord,
    PlayerAggregate,
)

__all__ = [
    "LEADERBOARD_COLUMNS",
    "Database",
    "DatabaseBackend",
    "SQLiteBackend",
    "StoreSession",
    "get_database",
    "Action",
    "ActionKind",
    "OwnershipRecord",
    "PlayerAggregate",
]
