import unittest

from backend.services.integrity import DM_PARTICIPANT_OVERFLOW, DUPLICATE_SPACE_LINK
from backend.tests.chat_fixtures import ChatStoreTestCase

_LONG_AGO = "2020-01-01T00:00:00.000000+00:00"


class ConsolidationJobsTests(ChatStoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.alice = await self.make_user("Alice")
        self.bob = await self.make_user("Bob")
        self.jobs = self.services.consolidation

    async def _duplicate_dm(self) -> tuple[int, int, dict]:
        alice_side = await self.make_space(self.alice, self.bob["email"], category="user")
        bob_side = await self.make_space(self.bob, self.alice["email"], category="user")
        keeper = await self.services.resolver.resolve(alice_side["id"], self.alice["id"])
        await self.set_created_at("chats", keeper, _LONG_AGO)

        # A second DM chat for the same pair, as left behind by an unguarded writer.
        duplicate = (await self.services.chats.create_chat())["id"]
        await self.services.chats.insert_link(bob_side["id"], duplicate)
        await self.services.chats.insert_participant(duplicate, self.alice["id"], "owner")
        await self.services.chats.insert_participant(duplicate, self.bob["id"], "owner")
        return keeper, duplicate, bob_side

    async def test_merge_duplicate_dm_chats_folds_into_oldest(self) -> None:
        keeper, duplicate, bob_side = await self._duplicate_dm()
        await self.services.messages.insert(duplicate, self.bob["id"], "are you there?")

        report = await self.jobs.merge_duplicate_dm_chats()

        self.assertEqual(report.changes, 1)
        self.assertIsNone(await self.services.chats.get_chat(duplicate))
        links = await self.services.chats.list_links_for_space(bob_side["id"])
        self.assertEqual([link["chat_id"] for link in links], [keeper])
        messages = await self.services.messages.list_page(keeper, 10)
        self.assertIn("are you there?", [m["message"] for m in messages])
        self.assertEqual(await self.participant_ids(keeper), {self.alice["id"], self.bob["id"]})

        again = await self.jobs.merge_duplicate_dm_chats()
        self.assertEqual(again.changes, 0)

    async def test_merge_keeps_the_later_watermark(self) -> None:
        keeper, duplicate, _ = await self._duplicate_dm()
        await self.services.unread.mark_read(keeper, self.bob["id"])
        await self.services.messages.insert(duplicate, self.alice["id"], "later message")
        later = await self.services.unread.mark_read(duplicate, self.bob["id"])

        await self.jobs.merge_duplicate_dm_chats()

        read = await self.services.messages.get_read(keeper, self.bob["id"])
        self.assertEqual(read["last_read_message_id"], later["last_read_message_id"])
        self.assertEqual(await self.services.unread.unread_count(keeper, self.bob["id"]), 0)

    async def test_collapse_duplicate_links_keeps_first_and_resolves_reports(self) -> None:
        await self.drop_link_uniqueness()
        space = await self.make_space(self.alice, "Roadmap")
        first = await self.services.chats.create_chat()
        second = await self.services.chats.create_chat()
        await self.services.chats.insert_link(space["id"], first["id"])
        await self.services.chats.insert_link(space["id"], second["id"])
        await self.services.reports.record(DUPLICATE_SPACE_LINK, space["id"], {})
        await self.services.reports.record(DM_PARTICIPANT_OVERFLOW, "42", {})

        report = await self.jobs.collapse_duplicate_links()

        self.assertEqual(report.changes, 1)
        links = await self.services.chats.list_links_for_space(space["id"])
        self.assertEqual([link["chat_id"] for link in links], [first["id"]])
        self.assertEqual(await self.services.reports.list_open(DUPLICATE_SPACE_LINK), [])
        self.assertEqual(len(await self.services.reports.list_open(DM_PARTICIPANT_OVERFLOW)), 1)

    async def test_heal_ghost_memberships(self) -> None:
        client = await self.make_space(self.alice, "Acme")
        project = await self.make_space(self.alice, "Website", parents=[client])
        await self.services.membership.add_members(project["id"], self.alice["id"], [self.bob["id"]])
        client_chat = await self.services.resolver.resolve(client["id"], self.alice["id"])
        await self.services.chats.insert_participant(client_chat, self.bob["id"], "resolve")

        report = await self.jobs.heal_ghost_memberships()

        self.assertEqual(report.changes, 1)
        self.assertEqual(await self.participant_ids(client_chat), {self.alice["id"]})
        self.assertEqual((await self.jobs.heal_ghost_memberships()).changes, 0)

    async def test_remove_orphan_chats_respects_grace_period(self) -> None:
        fresh = await self.services.chats.create_chat()
        stale = await self.services.chats.create_chat()
        await self.set_created_at("chats", stale["id"], _LONG_AGO)
        with_history = await self.services.chats.create_chat()
        await self.set_created_at("chats", with_history["id"], _LONG_AGO)
        await self.services.messages.insert(with_history["id"], None, "kept for history")

        report = await self.jobs.remove_orphan_chats()

        self.assertEqual(report.changes, 1)
        self.assertIsNone(await self.services.chats.get_chat(stale["id"]))
        self.assertIsNotNone(await self.services.chats.get_chat(fresh["id"]))
        self.assertIsNotNone(await self.services.chats.get_chat(with_history["id"]))

    async def test_run_all_is_idempotent(self) -> None:
        await self._duplicate_dm()
        await self.services.chats.create_chat()

        first = await self.jobs.run_all()
        second = await self.jobs.run_all()

        self.assertGreater(sum(r.changes for r in first), 0)
        self.assertEqual([r.changes for r in second], [0, 0, 0, 0])

    async def test_unknown_job_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.jobs.run("vacuum")


if __name__ == "__main__":
    unittest.main()
