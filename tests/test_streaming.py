"""Streaming tests: step emitter rules, frame encoding and error frames."""

import asyncio
import json
import unittest

from storeforge.agents.schemas import AgentContext
from storeforge.app.config import AgentConfig
from storeforge.llm.base import AuthenticationError, LLMError
from storeforge.llm.provider_factory import ModelSelector
from storeforge.storage.database import DatabaseManager
from storeforge.streaming.steps import BulkProgressTracker, StepEmitter, StepType, UICommand
from storeforge.streaming.turn import StreamFrame, TurnRequest, TurnStreamer, format_sse

from tests.fakes import FakeProvider, StoreBackend, text_response, tool_call_response


class TestStepEmitter(unittest.TestCase):

    def test_steps_are_numbered_and_closed_by_complete(self):
        emitter = StepEmitter()
        emitter.planning("Analyzing")
        emitter.executing("Grouping", agent_name="vision", action="delegate_to_vision")
        done = emitter.complete("Done")

        self.assertEqual([s.step for s in emitter.steps], [1, 2, 3])
        self.assertEqual(done.type, StepType.COMPLETE)
        self.assertTrue(emitter.completed)
        with self.assertRaises(RuntimeError):
            emitter.executing("late")

    def test_queue_receives_each_update(self):
        queue = asyncio.Queue()
        emitter = StepEmitter(queue)
        emitter.planning("a")
        emitter.synthesizing("b")

        self.assertEqual(queue.qsize(), 2)
        self.assertEqual(queue.get_nowait().message, "a")

    def test_step_dict_uses_client_keys(self):
        tracker = BulkProgressTracker("Generating", [("g1", "Hoodie"), ("g2", "Cap")])
        tracker.mark("g1", "updating")
        snapshot = tracker.mark("g1", "failed", "model timeout")
        update = StepEmitter().executing("Failed: Hoodie", agent_name="product_intel", bulk_progress=snapshot)

        data = update.to_dict()
        self.assertEqual(data["agentName"], "product_intel")
        self.assertNotIn("data", data)
        self.assertEqual(data["bulkProgress"]["current"], 1)
        self.assertEqual(data["bulkProgress"]["total"], 2)
        self.assertEqual(data["bulkProgress"]["currentItem"], {
            "id": "g1", "name": "Hoodie", "status": "failed", "error": "model timeout",
        })
        self.assertEqual(tracker.snapshot().completed_items[0].status, "failed")

    def test_ui_command_drops_empty_fields(self):
        command = UICommand(type="notification", message="Saved", variant="success")
        self.assertEqual(command.to_dict(), {"type": "notification", "message": "Saved", "variant": "success"})


class TestFrames(unittest.TestCase):

    def test_format_sse(self):
        event = format_sse(StreamFrame.error("Oops", "details", True, "retry me"))

        self.assertTrue(event.startswith("data: "))
        self.assertTrue(event.endswith("\n\n"))
        self.assertEqual(json.loads(event[6:]), {
            "type": "error",
            "error": "Oops",
            "details": "details",
            "retryable": True,
            "retry_message": "retry me",
        })

    def test_done_frame(self):
        self.assertEqual(StreamFrame.done().to_dict(), {"type": "done"})

    def test_arabic_text_is_not_escaped(self):
        event = format_sse(StreamFrame.response({"content": "تم الحفظ"}))
        self.assertIn("تم الحفظ", event)


class TestTurnStreamer(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.db = DatabaseManager(":memory:")
        self.db.initialize()
        self.context = AgentContext(merchant_id="m1", store_id="s1")

    async def asyncTearDown(self):
        self.db.close()

    def streamer(self, provider):
        return TurnStreamer(provider, ModelSelector(fast="fake-fast", pro="fake-pro"), self.db, AgentConfig())

    async def frames(self, provider, **request):
        request.setdefault("messages", [{"role": "user", "content": "Add my hoodies"}])
        turn = TurnRequest(context=self.context, **request)
        return [frame async for frame in self.streamer(provider).stream(turn)]

    async def test_transient_model_failure_ends_with_retryable_error(self):
        frames = await self.frames(FakeProvider(responses=[LLMError("upstream timeout", status_code=504)]))

        self.assertEqual([f.type for f in frames], ["step", "error"])
        self.assertEqual(frames[0].payload["step"]["type"], "planning")
        error = frames[-1].payload
        self.assertTrue(error["retryable"])
        self.assertEqual(error["retry_message"], "Add my hoodies")
        self.assertIn("upstream timeout", error["details"])

    async def test_auth_failure_is_not_retryable(self):
        frames = await self.frames(FakeProvider(responses=[AuthenticationError("bad key", status_code=401)]))

        self.assertEqual(frames[-1].type, "error")
        self.assertFalse(frames[-1].payload["retryable"])
        self.assertNotIn("done", [f.type for f in frames])

    async def test_response_frame_carries_pause_and_components(self):
        provider = FakeProvider(handler=StoreBackend(manager=lambda messages: tool_call_response(
            ("ask_user", {"question": "Which store section?", "options": ["Men", "Women"]}),
        )))
        frames = await self.frames(provider)

        self.assertEqual([f.type for f in frames[-2:]], ["response", "done"])
        response = frames[-2].payload["response"]
        self.assertEqual(response["pause"]["question"], "Which store section?")
        self.assertEqual(response["ui_components"], [{
            "type": "question_card",
            "question": "Which store section?",
            "options": [{"id": "Men", "label": "Men"}, {"id": "Women", "label": "Women"}],
            "intent": "general",
            "draft_ids": None,
        }])
        self.assertEqual(response["tool_invocations"], [])

    async def test_uploaded_images_are_listed_for_the_manager(self):
        provider = FakeProvider(responses=[text_response("Got them.")])
        await self.frames(provider, image_urls=["https://img.test/1.jpg"], inline_images=["data:image/png;base64,AA"])

        prompt = provider.calls[0]["messages"][-1]["content"]
        self.assertIn("Uploaded images:\n- https://img.test/1.jpg\n- data:image/png;base64,AA", prompt)
        self.assertIn("Current batch: BATCH_", provider.calls[0]["messages"][0]["content"])

    async def test_tool_calls_are_logged_in_scope(self):
        provider = FakeProvider(handler=StoreBackend(manager=lambda messages: (
            text_response("Here they are.") if any(m["role"] == "tool" for m in messages)
            else tool_call_response(("render_draft_cards", {}))
        )))
        await self.frames(provider)

        actions = self.db.list_actions("m1")
        self.assertEqual([a["tool_name"] for a in actions], ["render_draft_cards"])
        self.assertEqual(actions[0]["store_id"], "s1")

    async def test_turn_finishes_after_client_disconnects(self):
        provider = FakeProvider(handler=StoreBackend(manager=lambda messages: (
            text_response("Here they are.") if any(m["role"] == "tool" for m in messages)
            else tool_call_response(("render_draft_cards", {}))
        )))
        streamer = self.streamer(provider)
        stream = streamer.stream(TurnRequest(
            context=self.context,
            messages=[{"role": "user", "content": "show my drafts"}],
        ))

        first = await anext(stream)
        await stream.aclose()
        await streamer.wait_for_detached()

        self.assertEqual(first.payload["step"]["type"], "planning")
        self.assertEqual(len(provider.calls), 2)
        self.assertEqual([a["tool_name"] for a in self.db.list_actions("m1")], ["render_draft_cards"])

    async def test_abandoned_turn_failure_is_collected(self):
        provider = FakeProvider(responses=[LLMError("upstream timeout", status_code=504)])
        streamer = self.streamer(provider)
        stream = streamer.stream(TurnRequest(context=self.context, messages=[{"role": "user", "content": "hi"}]))

        await anext(stream)
        await stream.aclose()
        with self.assertLogs("storeforge", level="ERROR") as logs:
            await streamer.wait_for_detached()

        self.assertEqual(len(provider.calls), 1)
        self.assertTrue(any("stream.detached_turn" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
