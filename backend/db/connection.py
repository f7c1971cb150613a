"""Database connection factory.

Provides singleton async connection to SQLite (default) with WAL mode.
Backend selection via LUNA_DB_BACKEND env var.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union, Any

import aiosqlite
import asyncpg

from backend import config

logger = logging.getLogger("luna.db")

# Database file location
DB_DIR = config.PROJECT_ROOT / "data"
DB_PATH = Path(os.getenv("LUNA_DB_PATH", str(DB_DIR / "luna.db")))

# Type alias for DB connection/pool
DbConnection = Union[aiosqlite.Connection, asyncpg.Pool]

_connection: DbConnection | None = None


async def open_sqlite(path: str) -> aiosqlite.Connection:
    """Open and configure an SQLite connection (also used for ``:memory:`` in tests)."""
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    # Enable WAL mode for better concurrent read performance
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute("PRAGMA busy_timeout=5000")
    return conn


async def get_connection() -> DbConnection:
    """Return the singleton database connection/pool, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    if config.DB_BACKEND == "postgres":
        logger.info("Connecting to PostgreSQL: %s", config.DATABASE_URL)
        _connection = await asyncpg.create_pool(config.DATABASE_URL)
        return _connection

    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = await open_sqlite(str(DB_PATH))
    logger.info("Database connection established: %s", DB_PATH)
    _connection = conn
    return _connection


async def close_connection() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        # aiosqlite Connection and asyncpg Pool both expose close()
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")
