"""PostgreSQL schema creation and versioning.

Mirrors sqlite_migrations table for table so repositories share semantics.
"""
from __future__ import annotations

import logging

import asyncpg

from backend.db.sqlite_migrations import SCHEMA_VERSION

logger = logging.getLogger("luna.db")

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS users (
    id          TEXT PRIMARY KEY,
    name        TEXT DEFAULT '',
    email       TEXT DEFAULT '',
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
CREATE INDEX IF NOT EXISTS idx_users_name  ON users(name);

CREATE TABLE IF NOT EXISTS spaces (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name          TEXT NOT NULL,
    category      TEXT NOT NULL,
    archived      BOOLEAN DEFAULT FALSE,
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

CREATE TABLE IF NOT EXISTS chats (
    id          BIGSERIAL PRIMARY KEY,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS space_chat_links (
    id          BIGSERIAL PRIMARY KEY,
    space_id    TEXT NOT NULL REFERENCES spaces(id) ON DELETE CASCADE,
    chat_id     BIGINT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_space_chat_links_chat ON space_chat_links(chat_id);

CREATE TABLE IF NOT EXISTS chat_participants (
    id          BIGSERIAL PRIMARY KEY,
    chat_id     BIGINT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    origin      TEXT DEFAULT 'resolve',
    created_at  TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_chat_participants_pair ON chat_participants(chat_id, user_id);
CREATE INDEX IF NOT EXISTS idx_chat_participants_user ON chat_participants(user_id);

CREATE TABLE IF NOT EXISTS chat_messages (
    id          BIGSERIAL PRIMARY KEY,
    chat_id     BIGINT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    user_id     TEXT REFERENCES users(id) ON DELETE SET NULL,
    message     TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chat_messages_order ON chat_messages(chat_id, created_at, id);

CREATE TABLE IF NOT EXISTS chat_message_reads (
    id                    BIGSERIAL PRIMARY KEY,
    chat_id               BIGINT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    user_id               TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    last_read_message_id  BIGINT,
    last_read_at          TEXT,
    updated_at            TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_chat_message_reads_pair ON chat_message_reads(chat_id, user_id);

CREATE TABLE IF NOT EXISTS integrity_reports (
    id           BIGSERIAL PRIMARY KEY,
    kind         TEXT NOT NULL,
    subject_id   TEXT NOT NULL,
    detail_json  TEXT DEFAULT '{}',
    created_at   TEXT NOT NULL,
    resolved_at  TEXT
);

CREATE INDEX IF NOT EXISTS idx_integrity_open ON integrity_reports(kind, subject_id) WHERE resolved_at IS NULL;
"""


_LINK_UNIQUE_INDEX = "CREATE UNIQUE INDEX IF NOT EXISTS idx_space_chat_links_space ON space_chat_links(space_id)"


async def _ensure_link_uniqueness(conn: asyncpg.Connection) -> bool:
    """One link per space. Stores with duplicate links keep running until consolidation collapses them."""
    try:
        await conn.execute(_LINK_UNIQUE_INDEX)
    except asyncpg.UniqueViolationError:
        logger.warning("space_chat_links holds duplicate space ids; unique index deferred until consolidation runs")
        return False
    return True


async def run_migrations(db: asyncpg.Pool) -> None:
    """Create all tables. Idempotent."""
    async with db.acquire() as conn:
        exists = await conn.fetchval("SELECT to_regclass('public.schema_version') IS NOT NULL")
        current_version = 0
        if exists:
            current_version = await conn.fetchval("SELECT COALESCE(MAX(version), 0) FROM schema_version") or 0

        if current_version >= SCHEMA_VERSION:
            logger.info("Schema is up to date (version %s)", current_version)
            await _ensure_link_uniqueness(conn)
            return

        logger.info("Running Postgres migrations: %s → %s", current_version, SCHEMA_VERSION)
        async with conn.transaction():
            await conn.execute(_TABLES)
            await conn.execute("ALTER TABLE spaces ADD COLUMN IF NOT EXISTS external_ref TEXT")
            await conn.execute("ALTER TABLE chat_participants ADD COLUMN IF NOT EXISTS origin TEXT DEFAULT 'resolve'")
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_spaces_external ON spaces(external_ref) WHERE external_ref IS NOT NULL"
            )
            await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
        await _ensure_link_uniqueness(conn)
        logger.info("Migrations complete, schema version %s", SCHEMA_VERSION)
