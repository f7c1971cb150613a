import unittest

import aiosqlite

from backend.db.connection import open_sqlite
from backend.db.repositories import (
    SqliteChatRepository,
    SqliteIntegrityReportRepository,
    SqliteMessageRepository,
    SqliteSpaceRepository,
    SqliteUserRepository,
)
from backend.db.repositories.base import (
    ChatRepository,
    IntegrityReportRepository,
    MessageRepository,
    SpaceRepository,
    UserRepository,
)
from backend.db.repositories.postgres.chats import PostgresChatRepository
from backend.db.repositories.postgres.integrity import PostgresIntegrityReportRepository
from backend.db.repositories.postgres.messages import PostgresMessageRepository
from backend.db.repositories.postgres.spaces import PostgresSpaceRepository
from backend.db.repositories.postgres.users import PostgresUserRepository
from backend.db.sqlite_migrations import run_migrations
from backend.errors import ConflictError


class RepositoryProtocolTests(unittest.TestCase):
    def test_both_backends_satisfy_repository_protocols(self) -> None:
        pairs = [
            (UserRepository, SqliteUserRepository, PostgresUserRepository),
            (SpaceRepository, SqliteSpaceRepository, PostgresSpaceRepository),
            (ChatRepository, SqliteChatRepository, PostgresChatRepository),
            (MessageRepository, SqliteMessageRepository, PostgresMessageRepository),
            (IntegrityReportRepository, SqliteIntegrityReportRepository, PostgresIntegrityReportRepository),
        ]
        for protocol, sqlite_cls, postgres_cls in pairs:
            self.assertIsInstance(sqlite_cls(None), protocol)
            self.assertIsInstance(postgres_cls(None), protocol)


class SqliteChatRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_sqlite(":memory:")
        await run_migrations(self.db)
        self.users = SqliteUserRepository(self.db)
        self.spaces = SqliteSpaceRepository(self.db)
        self.chats = SqliteChatRepository(self.db)
        self.owner = await self.users.create({"name": "Alice", "email": "alice@example.com"})
        self.space = await self.spaces.create({"user_id": self.owner["id"], "name": "Garden", "category": "project"})

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_second_link_for_space_raises_conflict(self) -> None:
        first = await self.chats.create_chat()
        second = await self.chats.create_chat()
        await self.chats.insert_link(self.space["id"], first["id"])

        with self.assertRaises(ConflictError) as ctx:
            await self.chats.insert_link(self.space["id"], second["id"])

        self.assertEqual(ctx.exception.table, "space_chat_links")
        links = await self.chats.list_links_for_space(self.space["id"])
        self.assertEqual([link["chat_id"] for link in links], [first["id"]])

    async def test_duplicate_participant_raises_conflict(self) -> None:
        chat = await self.chats.create_chat()
        await self.chats.insert_participant(chat["id"], self.owner["id"], "owner")

        with self.assertRaises(ConflictError):
            await self.chats.insert_participant(chat["id"], self.owner["id"])

    async def test_deleting_chat_cascades_links_and_participants(self) -> None:
        chat = await self.chats.create_chat()
        await self.chats.insert_link(self.space["id"], chat["id"])
        await self.chats.insert_participant(chat["id"], self.owner["id"], "owner")

        await self.chats.delete_chat(chat["id"])

        self.assertEqual(await self.chats.list_links_for_space(self.space["id"]), [])
        self.assertEqual(await self.chats.list_participants(chat["id"]), [])

    async def test_parent_map_and_external_ref_lookup(self) -> None:
        child = await self.spaces.create({
            "user_id": self.owner["id"],
            "name": "Beds",
            "category": "project",
            "parent_ids": [self.space["id"], self.space["id"]],
            "external_ref": "notion-9",
        })

        parent_map = await self.spaces.get_parent_map([child["id"]])
        siblings = await self.spaces.list_by_external_ref("notion-9")

        self.assertEqual(parent_map, {child["id"]: [self.space["id"]]})
        self.assertEqual([s["id"] for s in siblings], [child["id"]])

    async def test_open_reports_are_deduplicated(self) -> None:
        reports = SqliteIntegrityReportRepository(self.db)

        first = await reports.record("duplicate_space_link", self.space["id"], {"n": 2})
        second = await reports.record("duplicate_space_link", self.space["id"], {"n": 3})

        self.assertEqual(first, second)
        self.assertEqual(await reports.resolve_open("duplicate_space_link"), 1)
        self.assertEqual(await reports.list_open(), [])


class SqliteLegacyMigrationTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_legacy_tables_gain_new_columns_and_tolerate_duplicate_links(self) -> None:
        await self.db.executescript(
            """
            CREATE TABLE spaces (id TEXT PRIMARY KEY, user_id TEXT NOT NULL, name TEXT NOT NULL,
                                 category TEXT NOT NULL, archived INTEGER DEFAULT 0, created_at TEXT NOT NULL);
            CREATE TABLE chats (id INTEGER PRIMARY KEY AUTOINCREMENT, created_at TEXT NOT NULL);
            CREATE TABLE space_chat_links (id INTEGER PRIMARY KEY AUTOINCREMENT, space_id TEXT NOT NULL,
                                           chat_id INTEGER NOT NULL, created_at TEXT NOT NULL);
            CREATE TABLE chat_participants (id INTEGER PRIMARY KEY AUTOINCREMENT, chat_id INTEGER NOT NULL,
                                            user_id TEXT NOT NULL, created_at TEXT NOT NULL);
            INSERT INTO space_chat_links (space_id, chat_id, created_at) VALUES ('s1', 1, '2020'), ('s1', 2, '2020');
            """
        )
        await self.db.commit()

        await run_migrations(self.db)

        async with self.db.execute("PRAGMA table_info(chat_participants)") as cur:
            participant_columns = {row[1] for row in await cur.fetchall()}
        async with self.db.execute("PRAGMA table_info(spaces)") as cur:
            space_columns = {row[1] for row in await cur.fetchall()}
        async with self.db.execute("PRAGMA index_list(space_chat_links)") as cur:
            indexes = {row[1] for row in await cur.fetchall()}

        self.assertIn("origin", participant_columns)
        self.assertIn("external_ref", space_columns)
        self.assertNotIn("idx_space_chat_links_space", indexes)

        await self.db.execute("DELETE FROM space_chat_links WHERE chat_id = 2")
        await self.db.commit()
        await run_migrations(self.db)

        async with self.db.execute("PRAGMA index_list(space_chat_links)") as cur:
            indexes = {row[1] for row in await cur.fetchall()}
        self.assertIn("idx_space_chat_links_space", indexes)


if __name__ == "__main__":
    unittest.main()
