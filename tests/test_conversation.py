"""Conversation session tests: confirmation grants and background archiving."""

import unittest

from storeforge.agents.schemas import AgentContext
from storeforge.services.conversation import ConversationSession
from storeforge.storage.database import DatabaseManager


class TestConversationSession(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.db = DatabaseManager(":memory:")
        self.db.initialize()
        self.session = ConversationSession(self.db, AgentContext(merchant_id="m1", store_id="s1"))

    async def asyncTearDown(self):
        self.db.close()

    def test_answering_a_persist_question_grants_confirmation(self):
        first = self.session.start_turn("here are my products", image_urls=["https://img.test/1.jpg"])
        self.assertIsNone(first.confirmation)
        self.assertEqual(first.image_urls, ["https://img.test/1.jpg"])

        self.session.finish_turn("Drafts are ready.", {
            "question": "Save them?",
            "options": ["Save", "Not yet"],
            "intent": "persist",
            "draft_ids": ["d1", "d2"],
        })
        answer = self.session.start_turn("Save")

        self.assertEqual(answer.confirmation.draft_ids, ("d1", "d2"))
        self.assertEqual(answer.messages[1]["content"], "Drafts are ready.\n\nSave them?\n\nOptions: Save, Not yet")
        self.assertIsNone(self.session.pending_pause)

        follow_up = self.session.start_turn("and now?")
        self.assertIsNone(follow_up.confirmation)

    def test_general_question_grants_nothing(self):
        self.session.start_turn("hi")
        self.session.finish_turn("", {"question": "Which category?", "options": [], "intent": "general"})

        self.assertIsNone(self.session.start_turn("Hoodies").confirmation)

    async def test_reset_archives_a_snapshot(self):
        self.session.start_turn("hello")
        self.session.finish_turn("Hi! Upload some photos.")

        snapshot = self.session.reset()
        self.session.start_turn("new conversation")
        await self.session.wait_for_archives()

        self.assertEqual(len(snapshot.messages), 2)
        archived = self.db.list_conversations("m1", "s1")
        self.assertEqual(len(archived), 1)
        self.assertEqual([m["content"] for m in archived[0]["messages"]], ["hello", "Hi! Upload some photos."])
        self.assertEqual(len(self.session.history), 1)

    async def test_reset_of_empty_session_archives_nothing(self):
        self.assertIsNone(self.session.reset())
        await self.session.wait_for_archives()
        self.assertEqual(self.db.list_conversations("m1", "s1"), [])


if __name__ == "__main__":
    unittest.main()
