"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any

import aiosqlite

from backend.db.repositories.chats import SqliteChatRepository
from backend.db.repositories.integrity import SqliteIntegrityReportRepository
from backend.db.repositories.messages import SqliteMessageRepository
from backend.db.repositories.spaces import SqliteSpaceRepository
from backend.db.repositories.users import SqliteUserRepository


def get_user_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteUserRepository(db)
    from backend.db.repositories.postgres.users import PostgresUserRepository
    return PostgresUserRepository(db)

def get_space_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteSpaceRepository(db)
    from backend.db.repositories.postgres.spaces import PostgresSpaceRepository
    return PostgresSpaceRepository(db)

def get_chat_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteChatRepository(db)
    from backend.db.repositories.postgres.chats import PostgresChatRepository
    return PostgresChatRepository(db)

def get_message_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteMessageRepository(db)
    from backend.db.repositories.postgres.messages import PostgresMessageRepository
    return PostgresMessageRepository(db)

def get_integrity_report_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteIntegrityReportRepository(db)
    from backend.db.repositories.postgres.integrity import PostgresIntegrityReportRepository
    return PostgresIntegrityReportRepository(db)
