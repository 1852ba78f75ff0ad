"""Tests of the tutoring workflow graph and of the event stream of a
turn"""

import asyncio
import json
import unittest

from pydantic import ValidationError

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from langgraph.graph import END

from reading_tutor.chat import TurnRequest, run_turn, sse_stream
from reading_tutor.streaming import AiStreamEvent, emit_event
from reading_tutor.workflows.langchain.base import create_initial_state
from reading_tutor.workflows.langchain.chat_graph import (
    create_learning_workflow,
)
from reading_tutor.workflows.langchain.graph_routing import (
    route_after_retriever,
    route_after_supervisor,
)
from reading_tutor.workflows.langchain.policy import RetrievalPolicy

from tests.test_mocks import (
    ARTICLE_ID,
    COLLECTION_ID,
    USER_ID,
    MockChatModel,
    MockRetrievalService,
    make_context,
)

# pyright: basic

HISTORY = [
    {"role": "user", "content": "What is entropy?"},
    {"role": "assistant", "content": "A measure of disorder."},
]


def make_request(message: str = "What is entropy?", **kwargs) -> TurnRequest:
    data = {"userMessage": message, "userId": USER_ID}
    data.update(kwargs)
    return TurnRequest.model_validate(data)


async def collect(events) -> list[AiStreamEvent]:
    return [event async for event in events]


class RaisingWorkflow:
    async def ainvoke(self, state, context=None):
        emit_event("step", {"name": "supervisor"})
        raise RuntimeError("graph exploded")


class EmptyWorkflow:
    async def ainvoke(self, state, context=None):
        return dict(state)


class SlowWorkflow:
    def __init__(self) -> None:
        self.cancelled = asyncio.Event()
        self.released = False

    async def ainvoke(self, state, context=None):
        emit_event("step", {"name": "supervisor"})
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled.set()
            await asyncio.sleep(0)
            self.released = True
            raise
        return dict(state)


class SelfCancellingWorkflow:
    async def ainvoke(self, state, context=None):
        task = asyncio.current_task()
        assert task is not None
        task.cancel()
        await asyncio.sleep(0)
        return dict(state)


class TestRouting(unittest.TestCase):

    def _state(self, next_step="explain", policy=None, history=False):
        state = create_initial_state(
            "What is entropy?",
            USER_ID,
            messages=[HumanMessage(content="Hi")] if history else None,
        )
        state["next_step"] = next_step
        state["retrieval_policy"] = policy
        return state

    def test_end(self):
        self.assertEqual(
            route_after_supervisor(self._state("end", RetrievalPolicy())),
            END,
        )

    def test_disabled_retrieval_skips_to_generation(self):
        state = self._state("quiz", RetrievalPolicy(enabled=False))
        self.assertEqual(route_after_supervisor(state), "quiz")
        self.assertEqual(
            route_after_supervisor(self._state("code", None)), "code"
        )

    def test_rewrite_needs_history(self):
        policy = RetrievalPolicy(rewrite_query=True)
        self.assertEqual(
            route_after_supervisor(self._state(policy=policy)), "retriever"
        )
        self.assertEqual(
            route_after_supervisor(
                self._state(policy=policy, history=True)
            ),
            "query_rewrite",
        )

    def test_retriever(self):
        state = self._state("direct_answer", RetrievalPolicy())
        self.assertEqual(route_after_supervisor(state), "retriever")
        self.assertEqual(route_after_retriever(state), "direct_answer")

    def test_unknown_step_explains(self):
        state = self._state(None, RetrievalPolicy())
        self.assertEqual(route_after_retriever(state), "explain")


class TestTurnRequest(unittest.TestCase):

    def test_camel_case(self):
        request = make_request(
            articleIds=[ARTICLE_ID],
            masteryLevel=2,
            uiIntent="mindmap",
            context={"selection": "Entropy", "currentContent": "Page"},
            unknownKey="ignored",
        )
        self.assertEqual(request.article_ids, [ARTICLE_ID])
        self.assertEqual(request.mastery_level, 2)
        assert request.context is not None
        self.assertEqual(request.context.current_content, "Page")

    def test_empty_message(self):
        with self.assertRaises(ValidationError):
            make_request("   ")

    def test_invalid_mode(self):
        with self.assertRaises(ValidationError):
            make_request(mode="chat")

    def test_negative_mastery(self):
        with self.assertRaises(ValidationError):
            make_request(masteryLevel=-1)

    def test_initial_state(self):
        state = make_request(
            "  What is entropy?  ",
            articleIds=["not-an-id", ARTICLE_ID, ARTICLE_ID],
            collectionId=COLLECTION_ID,
            messages=HISTORY
            + [
                {"role": "system", "content": "Be brief"},
                {"role": "user", "content": ""},
            ],
            context={"selection": ""},
        ).to_initial_state()

        self.assertEqual(state["user_message"], "What is entropy?")
        self.assertEqual(state["article_ids"], [ARTICLE_ID])
        self.assertIsNone(state["collection_id"])
        self.assertIsNone(state["reader_context"])
        self.assertEqual(len(state["messages"]), 3)
        self.assertIsInstance(state["messages"][0], HumanMessage)
        self.assertIsInstance(state["messages"][1], AIMessage)
        self.assertIsInstance(state["messages"][2], SystemMessage)

    def test_collection_kept_without_articles(self):
        state = make_request(collectionId=COLLECTION_ID).to_initial_state()
        self.assertEqual(state["collection_id"], COLLECTION_ID)


class TestWorkflow(unittest.IsolatedAsyncioTestCase):

    async def test_qa_turn(self):
        llm = MockChatModel(responses=["Entropy is disorder [Source 1]."])
        retrieval = MockRetrievalService()
        context = make_context(llm=llm, retrieval=retrieval)
        workflow = create_learning_workflow()

        end_state = await workflow.ainvoke(
            make_request(mode="qa").to_initial_state(), context=context
        )
        self.assertEqual(end_state["next_step"], "direct_answer")
        self.assertEqual(retrieval.call_count, 1)
        response = end_state["final_response"]
        self.assertEqual(response.ui.content, "Entropy is disorder [Source 1].")
        self.assertEqual(len(response.sources), 2)

    async def test_copilot_without_retrieval(self):
        retrieval = MockRetrievalService()
        context = make_context(
            llm=MockChatModel(responses=["This sentence says..."]),
            retrieval=retrieval,
        )
        end_state = await create_learning_workflow().ainvoke(
            make_request(
                mode="copilot", context={"selection": "Entropy grows."}
            ).to_initial_state(),
            context=context,
        )
        self.assertEqual(retrieval.call_count, 0)
        self.assertEqual(end_state["documents"], "")
        self.assertEqual(
            end_state["final_response"].ui.content, "This sentence says..."
        )

    async def test_tutor_rewrite_path(self):
        router = MockChatModel(
            responses=["Why does entropy always increase?"],
            structured_response={
                "next_step": "explain",
                "topic": "Entropy",
                "retrieval_policy": {"rewrite_query": True},
            },
        )
        retrieval = MockRetrievalService()
        context = make_context(
            llm=MockChatModel(responses=["Because of statistics."]),
            router_llm=router,
            retrieval=retrieval,
        )
        end_state = await create_learning_workflow().ainvoke(
            make_request("And why?", messages=HISTORY).to_initial_state(),
            context=context,
        )
        self.assertEqual(
            retrieval.last_query, "Why does entropy always increase?"
        )
        self.assertEqual(end_state["current_topic"], "Entropy")
        self.assertEqual(router.call_count, 2)

    async def test_tutor_end(self):
        llm = MockChatModel()
        router = MockChatModel(
            structured_response={"next_step": "end", "reasoning": "Goodbye"}
        )
        context = make_context(llm=llm, router_llm=router)
        end_state = await create_learning_workflow().ainvoke(
            make_request("Bye!").to_initial_state(), context=context
        )
        self.assertIsNone(end_state.get("final_response"))
        self.assertEqual(end_state["next_step"], "end")
        self.assertEqual(llm.call_count, 0)

    async def test_tutor_plan(self):
        roadmap = {
            "type": "summary",
            "title": "Learning roadmap",
            "overview": "Heat and disorder.",
        }
        router = MockChatModel(structured_response={"next_step": "plan"})
        retrieval = MockRetrievalService()
        context = make_context(
            llm=MockChatModel(responses=[json.dumps(roadmap)]),
            router_llm=router,
            retrieval=retrieval,
        )
        end_state = await create_learning_workflow().ainvoke(
            make_request(
                "Plan my study", articleIds=[ARTICLE_ID]
            ).to_initial_state(),
            context=context,
        )
        self.assertEqual(retrieval.last_mode, "comprehensive")
        self.assertEqual(end_state["final_response"].ui.type, "summary")


class TestRunTurn(unittest.IsolatedAsyncioTestCase):

    async def test_event_order(self):
        context = make_context(
            llm=MockChatModel(
                responses=["Entropy is disorder [Source 1]."], chunk_size=4
            )
        )
        events = await collect(
            run_turn(make_request(mode="qa"), context, trace_id="trace")
        )
        types = [e.type for e in events]

        self.assertEqual(types[0], "meta")
        self.assertEqual(events[0].data, {"mode": "qa", "traceId": "trace"})
        self.assertEqual(types[-2:], ["final", "done"])
        self.assertEqual(types.count("final"), 1)
        self.assertIn("sources", types)
        deltas = [i for i, t in enumerate(types) if t == "delta"]
        self.assertTrue(deltas)
        self.assertLess(max(deltas), types.index("final"))
        self.assertLess(types.index("sources"), min(deltas))
        for event in events:
            self.assertEqual(event.data["traceId"], "trace")

        steps = [e.data["name"] for e in events if e.type == "step"]
        self.assertEqual(steps, ["supervisor", "retriever", "direct_answer"])
        final = events[-2].data
        self.assertEqual(final["ui"]["type"], "explanation")
        self.assertEqual(
            "".join(e.data["text"] for e in events if e.type == "delta"),
            final["ui"]["content"],
        )

    async def test_long_query(self):
        context = make_context(max_query_word_count=3)
        events = await collect(
            run_turn(make_request("one two three four"), context)
        )
        self.assertEqual([e.type for e in events], ["meta", "final", "done"])
        self.assertEqual(
            events[1].data["ui"]["content"],
            context.chat_settings.MSG_LONG_QUERY,
        )
        self.assertEqual(context.llm.call_count, 0)  # type: ignore

    async def test_end_closes_turn(self):
        router = MockChatModel(
            structured_response={"next_step": "end", "reasoning": "Goodbye"}
        )
        context = make_context(router_llm=router)
        events = await collect(run_turn(make_request("Bye!"), context))
        self.assertEqual(events[-2].type, "final")
        self.assertEqual(
            events[-2].data["ui"]["content"],
            context.chat_settings.MSG_END_OF_TURN,
        )
        self.assertEqual(events[-2].data["reasoning"], "Goodbye")

    async def test_workflow_error(self):
        context = make_context()
        with self.assertLogs("reading_tutor.tests", "ERROR"):
            events = await collect(
                run_turn(make_request(), context, workflow=RaisingWorkflow())
            )
        self.assertEqual(
            [e.type for e in events], ["meta", "step", "error", "done"]
        )
        self.assertEqual(events[2].data["message"], "Invocation failed")
        self.assertEqual(events[2].data["detail"], "graph exploded")

    async def test_missing_response(self):
        events = await collect(
            run_turn(make_request(), make_context(), workflow=EmptyWorkflow())
        )
        self.assertEqual([e.type for e in events], ["meta", "error", "done"])
        self.assertEqual(events[1].data["message"], "No finalResponse")

    async def test_consumer_abort_cancels_workflow(self):
        workflow = SlowWorkflow()
        events = run_turn(make_request(), make_context(), workflow=workflow)
        self.assertEqual((await anext(events)).type, "meta")
        self.assertEqual((await anext(events)).type, "step")
        await events.aclose()
        self.assertTrue(workflow.cancelled.is_set())
        self.assertTrue(workflow.released)

    async def test_cancelled_workflow(self):
        events = await collect(
            run_turn(
                make_request(),
                make_context(),
                workflow=SelfCancellingWorkflow(),
            )
        )
        self.assertEqual([e.type for e in events], ["meta", "done"])
        self.assertTrue(events[-1].data["aborted"])

    async def test_concurrent_turns(self):
        workflow = create_learning_workflow()
        first_text = "alpha " * 10
        second_text = "omega " * 10
        first = make_context(
            llm=MockChatModel(responses=[first_text], chunk_size=3)
        )
        second = make_context(
            llm=MockChatModel(responses=[second_text], chunk_size=3)
        )
        first_events, second_events = await asyncio.gather(
            collect(
                run_turn(make_request(mode="qa"), first, workflow, "one")
            ),
            collect(
                run_turn(make_request(mode="qa"), second, workflow, "two")
            ),
        )

        for events, trace, text in (
            (first_events, "one", first_text),
            (second_events, "two", second_text),
        ):
            self.assertTrue(all(e.data["traceId"] == trace for e in events))
            deltas = "".join(
                e.data["text"] for e in events if e.type == "delta"
            )
            self.assertEqual(deltas, text)
            self.assertEqual(events[-1].type, "done")

    async def test_sse_stream(self):
        context = make_context(llm=MockChatModel(responses=["Answer."]))
        records = [
            record
            async for record in sse_stream(
                make_request(mode="qa"), context, trace_id="t"
            )
        ]
        self.assertTrue(records[0].startswith("event: meta\ndata: "))
        self.assertTrue(records[-1].startswith("event: done\n"))
        for record in records:
            self.assertTrue(record.endswith("\n\n"))
        final = [r for r in records if r.startswith("event: final")][0]
        data = json.loads(final.split("\n")[1][len("data: "):])
        self.assertEqual(data["ui"]["content"], "Answer.")


if __name__ == "__main__":
    unittest.main()
