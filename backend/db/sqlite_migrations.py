"""Database schema creation and versioning.

All CREATE TABLE statements for the workspace store.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("luna.db")

SCHEMA_VERSION = 3

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Users ───────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS users (
    id          TEXT PRIMARY KEY,
    name        TEXT DEFAULT '',
    email       TEXT DEFAULT '',
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
CREATE INDEX IF NOT EXISTS idx_users_name  ON users(name);

-- ── 2. Spaces + hierarchy ──────────────────────────────────────────
CREATE TABLE IF NOT EXISTS spaces (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name          TEXT NOT NULL,
    category      TEXT NOT NULL,
    archived      INTEGER DEFAULT 0,
    external_ref  TEXT,
    created_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_spaces_owner    ON spaces(user_id, category);
CREATE INDEX IF NOT EXISTS idx_spaces_name     ON spaces(category, name);

CREATE TABLE IF NOT EXISTS space_parents (
    space_id   TEXT NOT NULL REFERENCES spaces(id) ON DELETE CASCADE,
    parent_id  TEXT NOT NULL REFERENCES spaces(id) ON DELETE CASCADE,
    PRIMARY KEY (space_id, parent_id)
);

CREATE INDEX IF NOT EXISTS idx_space_parents_parent ON space_parents(parent_id);

-- ── 3. Chats ───────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS chats (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS space_chat_links (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    space_id    TEXT NOT NULL REFERENCES spaces(id) ON DELETE CASCADE,
    chat_id     INTEGER NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_space_chat_links_chat ON space_chat_links(chat_id);

CREATE TABLE IF NOT EXISTS chat_participants (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id     INTEGER NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    origin      TEXT DEFAULT 'resolve',
    created_at  TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_chat_participants_pair ON chat_participants(chat_id, user_id);
CREATE INDEX IF NOT EXISTS idx_chat_participants_user ON chat_participants(user_id);

-- ── 4. Messages + read watermarks ──────────────────────────────────
CREATE TABLE IF NOT EXISTS chat_messages (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id     INTEGER NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    user_id     TEXT REFERENCES users(id) ON DELETE SET NULL,
    message     TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chat_messages_order ON chat_messages(chat_id, created_at, id);

CREATE TABLE IF NOT EXISTS chat_message_reads (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id               INTEGER NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    user_id               TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    last_read_message_id  INTEGER,
    last_read_at          TEXT,
    updated_at            TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_chat_message_reads_pair ON chat_message_reads(chat_id, user_id);

-- ── 5. Integrity reports ───────────────────────────────────────────
CREATE TABLE IF NOT EXISTS integrity_reports (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    kind         TEXT NOT NULL,
    subject_id   TEXT NOT NULL,
    detail_json  TEXT DEFAULT '{}',
    created_at   TEXT NOT NULL,
    resolved_at  TEXT
);

CREATE INDEX IF NOT EXISTS idx_integrity_open ON integrity_reports(kind, subject_id) WHERE resolved_at IS NULL;
"""


_LINK_UNIQUE_INDEX = "CREATE UNIQUE INDEX IF NOT EXISTS idx_space_chat_links_space ON space_chat_links(space_id)"


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, ddl: str) -> None:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        columns = {row[1] for row in await cur.fetchall()}
    if column not in columns:
        await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


async def _ensure_index(db: aiosqlite.Connection, ddl: str) -> None:
    await db.execute(ddl)


async def _ensure_link_uniqueness(db: aiosqlite.Connection) -> bool:
    """One link per space. Stores with duplicate links keep running until consolidation collapses them."""
    try:
        await db.execute(_LINK_UNIQUE_INDEX)
    except aiosqlite.IntegrityError:
        logger.warning("space_chat_links holds duplicate space ids; unique index deferred until consolidation runs")
        return False
    return True


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    # Check current schema version
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        await _ensure_link_uniqueness(db)
        await db.commit()
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)

    # Execute all CREATE TABLE statements
    await db.executescript(_TABLES)

    # Explicit table upgrades for existing DBs.
    await _ensure_column(db, "spaces", "external_ref", "TEXT")
    await _ensure_column(db, "chat_participants", "origin", "TEXT DEFAULT 'resolve'")
    await _ensure_index(
        db,
        "CREATE INDEX IF NOT EXISTS idx_spaces_external ON spaces(external_ref) WHERE external_ref IS NOT NULL",
    )
    await _ensure_link_uniqueness(db)

    # Record schema version
    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info("Migrations complete, schema version %s", SCHEMA_VERSION)
