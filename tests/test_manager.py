"""Manager orchestration tests: step ordering, delegation fallbacks and the confirmation gate."""

import unittest

from storeforge.agents.manager import DelegateImageEditorInput, ManagerAgent
from storeforge.agents.schemas import AgentContext, ConfirmationGrant, DraftStatus
from storeforge.app.config import AgentConfig
from storeforge.llm.base import LLMError
from storeforge.llm.provider_factory import ModelSelector
from storeforge.services.conversation import ConversationSession
from storeforge.storage.database import DatabaseManager
from storeforge.streaming.steps import StepEmitter
from storeforge.streaming.turn import TurnRequest, TurnStreamer

from tests.fakes import (
    FakeProvider,
    StaticGrouper,
    StoreBackend,
    delegated_call,
    follow_delegation,
    make_deps,
    make_draft,
    step_index,
    text_response,
    tool_call_response,
    tool_outputs,
)

URLS = [f"https://img.test/{n}.jpg" for n in range(1, 7)]

HOODIE_AND_CAP = [
    {"id": "hoodie", "name": "Black Hoodie", "image_urls": URLS[:4], "primary_image_url": URLS[1],
     "category_hint": "Hoodies", "confidence": "high"},
    {"id": "cap", "name": "Red Cap", "image_urls": URLS[4:], "primary_image_url": URLS[5],
     "category_hint": "Caps", "confidence": "high"},
]


def scripted(*steps):
    """Manager behaviour keyed on how many tool-calling turns already happened."""
    def manager(messages):
        step = steps[min(step_index(messages), len(steps) - 1)]
        return step(messages) if callable(step) else step
    return manager


def vision_call(image_urls):
    def call(messages):
        return tool_call_response(("delegate_to_vision", {"image_urls": image_urls}))
    return call


call_vision = vision_call(URLS)


def call_product_intel(messages):
    groups = tool_outputs(messages, "delegate_to_vision")[-1]["groups"]
    return tool_call_response(("delegate_to_product_intel", {"groups": groups}))


def ask_to_save(messages):
    draft_ids = tool_outputs(messages, "delegate_to_product_intel")[-1]["draft_ids"]
    return tool_call_response(("ask_user", {
        "question": "Save these drafts to your store?",
        "options": ["Save all", "Let me review"],
        "intent": "persist",
        "draft_ids": draft_ids,
    }))


async def collect(streamer, request):
    return [frame async for frame in streamer.stream(request)]


class ManagerTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.db = DatabaseManager(":memory:")
        self.db.initialize()
        self.context = AgentContext(merchant_id="m1", store_id="s1")

    async def asyncTearDown(self):
        self.db.close()

    def streamer(self, backend, grouper=None, config=None):
        return TurnStreamer(
            FakeProvider(handler=backend),
            ModelSelector(fast="fake-fast", pro="fake-pro"),
            self.db,
            config or AgentConfig(),
            grouper=grouper or StaticGrouper(HOODIE_AND_CAP),
        )

    def manager(self, backend, confirmation=None, grouper=None):
        return ManagerAgent(
            make_deps(FakeProvider(handler=backend), self.db),
            self.context,
            emitter=StepEmitter(),
            grouper=grouper or StaticGrouper(HOODIE_AND_CAP),
            confirmation=confirmation,
        )


class TestStepOrdering(ManagerTestCase):

    async def test_bulk_turn_step_order(self):
        groups = [{"id": f"g{n}", "name": f"Product {n}", "image_urls": [URLS[n]]} for n in range(5)]
        backend = StoreBackend(manager=scripted(
            vision_call(URLS[:5]),
            call_product_intel,
            text_response("I created 5 drafts for you."),
        ))
        streamer = self.streamer(backend, grouper=StaticGrouper(groups), config=AgentConfig(bulk_concurrency=3))
        request = TurnRequest(
            messages=[{"role": "user", "content": "Add these products"}],
            context=self.context,
            image_urls=URLS[:5],
        )

        frames = await collect(streamer, request)

        self.assertEqual([f.type for f in frames[-2:]], ["response", "done"])
        steps = [f.payload["step"] for f in frames if f.type == "step"]
        types = [s["type"] for s in steps]

        self.assertEqual(types[0], "planning")
        self.assertEqual(types.count("planning"), 1)
        self.assertEqual(types[-2:], ["synthesizing", "complete"])
        self.assertEqual(types[1:-2], ["executing"] * (len(types) - 3))
        self.assertGreaterEqual(types.count("executing"), 5)
        self.assertEqual([s["step"] for s in steps], list(range(1, len(steps) + 1)))

        self.assertEqual(steps[1]["action"], "delegate_to_vision")
        self.assertEqual(steps[2]["action"], "delegate_to_product_intel")
        bulk = [s["bulkProgress"] for s in steps if "bulkProgress" in s]
        self.assertEqual([b["current"] for b in bulk], [1, 2, 3, 4, 5])
        self.assertTrue(all(b["total"] == 5 for b in bulk))
        self.assertEqual(len({b["operationId"] for b in bulk}), 1)
        self.assertEqual(len(bulk[-1]["completedItems"]), 5)

        response = frames[-2].payload["response"]
        self.assertEqual(response["content"], "I created 5 drafts for you.")
        self.assertEqual(len(response["steps"]), len(steps))
        drafts = self.db.list_drafts(merchant_id="m1", store_id="s1")
        self.assertEqual(len(drafts), 5)
        self.assertEqual(len({d.batch_id for d in drafts}), 1)
        self.assertTrue(drafts[0].batch_id.startswith("BATCH"))

    async def test_plain_answer_has_no_synthesizing_step(self):
        frames = await collect(self.streamer(StoreBackend()), TurnRequest(
            messages=[{"role": "user", "content": "hi"}],
            context=self.context,
        ))

        types = [f.payload["step"]["type"] for f in frames if f.type == "step"]
        self.assertEqual(types, ["planning", "complete"])
        self.assertEqual(frames[-2].payload["response"]["content"], "How can I help with your store today?")


class TestConfirmationGate(ManagerTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.first = self.db.insert_draft(make_draft(name="First Hoodie"))
        self.second = self.db.insert_draft(make_draft(name="Second Hoodie"))

    def persist_both(self):
        return StoreBackend(manager=scripted(
            tool_call_response(("confirm_and_persist", {"draft_ids": [self.first.id, self.second.id]})),
            text_response("Done."),
        ))

    async def test_persist_without_confirmation_is_refused(self):
        turn = await self.manager(self.persist_both()).run_turn([{"role": "user", "content": "just save them"}])

        invocation = turn.tool_invocations()[0]
        self.assertFalse(invocation["success"])
        self.assertTrue(invocation["output"]["requires_confirmation"])
        self.assertEqual(self.db.list_products("m1"), [])
        self.assertEqual(self.db.get_draft(self.first.id, "m1").status, DraftStatus.DRAFT)

    async def test_grant_covers_only_named_drafts(self):
        grant = ConfirmationGrant(draft_ids=(self.first.id,))
        result = await self.manager(StoreBackend(), confirmation=grant).confirm_and_persist(
            [self.first.id, self.second.id]
        )

        self.assertEqual(result["created_count"], 1)
        self.assertEqual(result["failed_count"], 1)
        self.assertEqual(result["unconfirmed_draft_ids"], [self.second.id])
        self.assertIn(self.second.id, result["failed_draft_ids"])
        self.assertEqual(self.db.get_draft(self.first.id, "m1").status, DraftStatus.PERSISTED)
        self.assertEqual(self.db.get_draft(self.second.id, "m1").status, DraftStatus.DRAFT)

    async def test_open_grant_persists_everything_in_scope(self):
        manager = self.manager(self.persist_both(), confirmation=ConfirmationGrant())
        turn = await manager.run_turn([{"role": "user", "content": "Save all"}])

        output = turn.tool_invocations()[0]["output"]
        self.assertEqual(output["created_count"], 2)
        self.assertEqual(len(self.db.list_products("m1", "s1")), 2)

    async def test_unrelated_pause_grants_nothing(self):
        request = TurnRequest(
            messages=[{"role": "user", "content": "yes"}],
            context=self.context,
            answered_pause={"question": "Shall I rename it?", "options": ["yes"], "intent": "general"},
        )
        self.assertIsNone(request.confirmation)

        frames = await collect(self.streamer(self.persist_both()), request)

        response = frames[-2].payload["response"]
        self.assertTrue(response["tool_invocations"][0]["output"]["requires_confirmation"])
        self.assertEqual(self.db.list_products("m1"), [])


class TestBulkWorkflow(ManagerTestCase):

    async def test_four_plus_two_images_end_to_end(self):
        turns = {}
        backend = StoreBackend(manager=lambda messages: turns["current"](messages))
        streamer = self.streamer(backend)
        session = ConversationSession(self.db, self.context)

        # Turn 1: group, generate, ask for approval
        turns["current"] = scripted(call_vision, call_product_intel, ask_to_save)
        frames = await collect(streamer, session.start_turn("Here are my new products", image_urls=URLS))
        response = frames[-2].payload["response"]
        session.finish_turn(response["content"], response["pause"])

        vision = response["tool_invocations"][0]["output"]
        self.assertEqual(vision["total_groups"], 2)
        self.assertEqual(
            {g["id"]: g["primary_image_url"] for g in vision["groups"]},
            {"hoodie": URLS[1], "cap": URLS[5]},
        )

        drafts = {d.metadata["source_group_id"]: d for d in self.db.list_drafts(merchant_id="m1", store_id="s1")}
        self.assertEqual(set(drafts), {"hoodie", "cap"})
        self.assertEqual(drafts["hoodie"].image_urls, URLS[:4])
        self.assertEqual(drafts["hoodie"].primary_image_url, URLS[1])
        self.assertEqual(drafts["cap"].primary_image_url, URLS[5])
        self.assertEqual(response["pause"]["intent"], "persist")
        self.assertEqual([c["type"] for c in response["ui_components"]],
                         ["question_card", "confirmation_card", "question_card"])

        # Turn 2: the user keeps the hoodie and drops the cap
        hoodie, cap = drafts["hoodie"].id, drafts["cap"].id
        turns["current"] = scripted(
            tool_call_response(
                ("discard_drafts", {"draft_ids": [cap]}),
                ("confirm_and_persist", {"draft_ids": [hoodie]}),
            ),
            text_response("Your hoodie is live."),
        )
        request = session.start_turn("Save the hoodie, drop the cap")
        self.assertEqual(request.confirmation.draft_ids, (hoodie, cap))

        frames = await collect(streamer, request)
        response = frames[-2].payload["response"]

        persisted = response["tool_invocations"][1]["output"]
        self.assertEqual(persisted["created_count"], 1)
        self.assertEqual(persisted["failed_count"], 0)
        self.assertEqual(self.db.get_draft(hoodie, "m1").status, DraftStatus.PERSISTED)
        self.assertEqual(self.db.get_draft(cap, "m1").status, DraftStatus.DISCARDED)
        products = self.db.list_products("m1", "s1")
        self.assertEqual([p.source_draft_id for p in products], [hoodie])
        self.assertEqual(products[0].primary_image_url, URLS[1])
        self.assertEqual(
            [c["title"] for c in response["ui_components"]],
            ["Drafts Discarded", "Products Created"],
        )


class TestDelegationFallbacks(ManagerTestCase):

    async def test_sub_agent_model_failure_falls_back_to_direct_calls(self):
        backend = StoreBackend(
            manager=scripted(call_vision, call_product_intel, text_response("ok")),
            sub_agent=lambda messages: LLMError("upstream unavailable", status_code=503),
        )
        turn = await self.manager(backend).run_turn([{"role": "user", "content": "go"}])

        vision, intel = [i["output"] for i in turn.tool_invocations()]
        self.assertEqual(vision["total_groups"], 2)
        self.assertEqual(intel["created_count"], 2)
        self.assertEqual(intel["failed_count"], 0)
        self.assertEqual(len(self.db.list_drafts(merchant_id="m1")), 2)

    async def test_sub_agent_that_skips_its_tool_still_yields_one_draft_per_group(self):
        backend = StoreBackend(
            manager=scripted(call_vision, call_product_intel, text_response("ok")),
            sub_agent=lambda messages: text_response("I'd rather not."),
        )
        turn = await self.manager(backend).run_turn([{"role": "user", "content": "go"}])

        intel = turn.tool_invocations()[1]["output"]
        self.assertEqual(len(intel["draft_ids"]), 2)
        self.assertEqual(backend.detail_calls, 2)

    async def test_repeated_group_ids_are_rejected_before_generation(self):
        groups = [
            {"id": "g", "name": "Hoodie", "image_urls": [URLS[0]], "primary_image_url": URLS[0]},
            {"id": "g", "name": "Cap", "image_urls": [URLS[1]], "primary_image_url": URLS[1]},
        ]
        backend = StoreBackend(manager=scripted(
            tool_call_response(("delegate_to_product_intel", {"groups": groups})),
            text_response("Those groups need distinct ids."),
        ))
        turn = await self.manager(backend).run_turn([{"role": "user", "content": "go"}])

        invocation = turn.tool_invocations()[0]
        self.assertFalse(invocation["success"])
        self.assertIn("group ids must be unique", invocation["error"])
        self.assertEqual(self.db.list_drafts(merchant_id="m1"), [])
        self.assertEqual(backend.detail_calls, 0)

    async def test_vision_ids_colliding_with_auto_ids_still_yield_distinct_drafts(self):
        grouper = StaticGrouper([{"id": "group_auto_1", "name": "Hoodie", "image_urls": URLS[:2]}])
        backend = StoreBackend(manager=scripted(
            vision_call(URLS[:4]), call_product_intel, text_response("ok"),
        ))
        turn = await self.manager(backend, grouper=grouper).run_turn([{"role": "user", "content": "go"}])

        vision, intel = [i["output"] for i in turn.tool_invocations()]
        self.assertEqual([g["id"] for g in vision["groups"]], ["group_auto_1", "group_auto_1_2", "group_auto_2"])
        self.assertEqual(intel["created_count"], 3)
        self.assertEqual(len(set(intel["draft_ids"])), 3)
        self.assertEqual(len(self.db.list_drafts(merchant_id="m1")), 3)

    async def test_editor_delegation_does_not_write(self):
        draft = self.db.insert_draft(make_draft())
        backend = StoreBackend(manager=scripted(
            tool_call_response(("delegate_to_editor", {
                "text": draft.name,
                "instruction": "make it cozier",
                "field": "name",
            })),
            text_response("How about 'Cozy Fleece Hoodie'?"),
        ))
        turn = await self.manager(backend).run_turn([{"role": "user", "content": "better name please"}])

        output = turn.tool_invocations()[0]["output"]
        self.assertEqual(output["rewritten"], "Cozy Fleece Hoodie")
        self.assertEqual(output["locale"], "en")
        self.assertEqual(self.db.get_draft(draft.id, "m1").name, "Black Hoodie")

    async def test_image_editor_delegation(self):
        draft = self.db.insert_draft(make_draft(image_urls=URLS[:3]))

        def image_editor(messages):
            if delegated_call(messages):
                return follow_delegation(messages)
            if tool_outputs(messages):
                return text_response("Swapped.")
            return tool_call_response(("replace_image", {"draft_id": draft.id, "new_primary_url": URLS[2]}))

        backend = StoreBackend(
            manager=scripted(
                tool_call_response(("delegate_to_image_editor", {
                    "draft_id": draft.id,
                    "instruction": "use the third photo as main image",
                })),
                text_response("Done."),
            ),
            sub_agent=image_editor,
        )
        turn = await self.manager(backend).run_turn([{"role": "user", "content": "swap the photo"}])

        output = turn.tool_invocations()[0]["output"]
        self.assertTrue(output["success"])
        self.assertEqual(output["operations"][0]["tool_name"], "replace_image")
        self.assertEqual(self.db.get_draft(draft.id, "m1").primary_image_url, URLS[2])

    async def test_image_editor_rejects_foreign_draft(self):
        foreign = self.db.insert_draft(make_draft(merchant_id="m2"))
        result = await self.manager(StoreBackend()).delegate_to_image_editor(
            DelegateImageEditorInput(draft_id=foreign.id, instruction="crop")
        )
        self.assertFalse(result["success"])

    async def test_ui_command_emits_step(self):
        manager = self.manager(StoreBackend(manager=scripted(
            tool_call_response(("send_ui_command", {
                "type": "navigate",
                "path": "/products",
                "message": "Opening your products",
            })),
            text_response("Here you go."),
        )))
        turn = await manager.run_turn([{"role": "user", "content": "show my products"}])

        self.assertEqual(turn.ui_commands[0].path, "/products")
        step = manager.emitter.steps[-1]
        self.assertEqual(step.action, "send_ui_command")
        self.assertEqual(step.data["ui_command"]["type"], "navigate")


if __name__ == "__main__":
    unittest.main()
