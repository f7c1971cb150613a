"""Repository package for database access."""

from .users import SqliteUserRepository
from .spaces import SqliteSpaceRepository
from .chats import SqliteChatRepository
from .messages import SqliteMessageRepository
from .integrity import SqliteIntegrityReportRepository

__all__ = [
    "SqliteUserRepository",
    "SqliteSpaceRepository",
    "SqliteChatRepository",
    "SqliteMessageRepository",
    "SqliteIntegrityReportRepository",
]
