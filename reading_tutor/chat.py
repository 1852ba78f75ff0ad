"""
Invocation of a tutoring turn as a stream of events.

A caller (an HTTP route handler, the CLI) builds a `TurnRequest` from
the invocation input, and consumes the events of the turn:

```python
request = TurnRequest.model_validate(
    {"userMessage": "What is entropy?", "userId": user_id,
     "mode": "tutor"}
)
context = WorkflowContext.from_default_config()
async for event in run_turn(request, context):
    print(event.type, event.data)
```

The stream opens with a `meta` event carrying the trace id and the
mode, relays the events emitted by the workflow nodes (`meta`, `step`,
`sources`, `delta`), and closes with `final` (or `error`) and `done`.
`sse_stream` gives the same stream in the Server-Sent-Events format.

If the consumer stops iterating (e.g. the client disconnected), the
workflow is cancelled, and with it the model and database calls in
flight.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing, suppress
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
)

from .streaming.context import AiStreamEvent, EventType, ai_stream_context
from .streaming.sse import encode_sse_event
from .stores.retrieval import sanitize_filter
from .ui.schemas import ExplanationPayload, LearningResponse
from .workflows.langchain.base import (
    GraphState,
    GraphStateGraphType,
    Mode,
    ReaderContext,
    UIIntent,
    WorkflowContext,
    create_initial_state,
)
from .workflows.langchain.chat_graph import create_learning_workflow

_logger = logging.getLogger(__name__)


class HistoryMessage(BaseModel):
    """A message of the conversation before this turn."""

    role: str = 'user'
    content: str = ""

    model_config = ConfigDict(extra='ignore')

    def to_message(self) -> BaseMessage:
        match self.role.lower():
            case 'assistant' | 'ai':
                return AIMessage(content=self.content)
            case 'system':
                return SystemMessage(content=self.content)
            case _:
                return HumanMessage(content=self.content)


class TurnRequest(BaseModel):
    """The invocation input of a turn (camelCase on the wire)."""

    user_message: str
    user_id: str
    article_ids: list[str] = Field(default_factory=list)
    collection_id: str | None = None
    current_topic: str | None = None
    mastery_level: int = Field(default=0, ge=0)
    mode: Mode = 'tutor'
    context: ReaderContext | None = None
    messages: list[HistoryMessage] = Field(default_factory=list)
    ui_intent: UIIntent | None = None
    user_concepts: list[str] = Field(default_factory=list)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
        frozen=True,
    )

    @field_validator('user_message')
    @classmethod
    def check_message(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("The user message is empty")
        return value

    def to_initial_state(self) -> GraphState:
        """The initial graph state of the turn. Invalid document ids
        are dropped, and the collection is ignored when documents are
        selected."""
        flt = sanitize_filter(self.article_ids, self.collection_id)
        return create_initial_state(
            self.user_message,
            self.user_id,
            mode=self.mode,
            messages=[
                m.to_message() for m in self.messages if m.content
            ],
            article_ids=list(flt.article_ids),
            collection_id=(
                None if flt.article_ids else flt.collection_id
            ),
            current_topic=self.current_topic,
            mastery_level=self.mastery_level,
            reader_context=(
                None
                if self.context is None or self.context.is_empty
                else self.context
            ),
            ui_intent=self.ui_intent,
            user_concepts=self.user_concepts,
        )


def _event(
    event_type: EventType, trace_id: str, data: Mapping[str, Any]
) -> AiStreamEvent:
    payload: dict[str, Any] = dict(data)
    payload["traceId"] = trace_id
    return AiStreamEvent(type=event_type, data=payload)


def _closing_response(
    message: str, reasoning: str | None = None
) -> LearningResponse:
    return LearningResponse(
        reasoning=reasoning, ui=ExplanationPayload(content=message)
    )


async def run_turn(
    request: TurnRequest,
    context: WorkflowContext,
    workflow: GraphStateGraphType | None = None,
    trace_id: str | None = None,
) -> AsyncIterator[AiStreamEvent]:
    """Run a turn of the tutoring workflow, yielding its events.

    Args:
        request: the invocation input
        context: the workflow dependencies
        workflow: the compiled workflow (created if not given)
        trace_id: identifier of the turn (generated if not given)

    Yields:
        the events of the turn, ending with `done`
    """
    trace_id = trace_id or uuid.uuid4().hex
    settings = context.chat_settings
    yield _event("meta", trace_id, {"mode": request.mode})

    if len(request.user_message.split()) > settings.max_query_word_count:
        response = _closing_response(settings.MSG_LONG_QUERY)
        yield _event("final", trace_id, response.to_wire())
        yield _event("done", trace_id, {})
        return

    workflow = workflow or create_learning_workflow()
    state: GraphState = request.to_initial_state()
    queue: asyncio.Queue[AiStreamEvent | None] = asyncio.Queue()

    async def _invoke() -> dict[str, Any]:
        # the channel is set in the context of the task only
        with ai_stream_context(queue.put_nowait, trace_id):
            return await workflow.ainvoke(state, context=context)

    task: asyncio.Task[dict[str, Any]] = asyncio.create_task(_invoke())
    task.add_done_callback(lambda _: queue.put_nowait(None))

    try:
        while (event := await queue.get()) is not None:
            yield event

        if task.cancelled():
            yield _event("done", trace_id, {"aborted": True})
            return

        try:
            final_state = task.result()
        except Exception as e:
            context.logger.error(f"Error in tutoring workflow: {e}")
            yield _event(
                "error",
                trace_id,
                {
                    "message": settings.MSG_INVOCATION_FAILED,
                    "detail": str(e),
                },
            )
            yield _event("done", trace_id, {})
            return

        response: LearningResponse | None = final_state.get(
            "final_response"
        )
        if response is None and final_state.get("next_step") == "end":
            response = _closing_response(
                settings.MSG_END_OF_TURN, final_state.get("reasoning")
            )

        if response is None:
            yield _event(
                "error",
                trace_id,
                {"message": settings.MSG_MISSING_RESPONSE},
            )
        else:
            yield _event("final", trace_id, response.to_wire())
        yield _event("done", trace_id, {})
    finally:
        if not task.done():
            _logger.info(f"Turn {trace_id} aborted by the consumer")
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


async def sse_stream(
    request: TurnRequest,
    context: WorkflowContext,
    workflow: GraphStateGraphType | None = None,
    trace_id: str | None = None,
) -> AsyncIterator[str]:
    """The events of a turn encoded as Server-Sent-Events records."""
    async with aclosing(
        run_turn(request, context, workflow, trace_id)
    ) as events:
        async for event in events:
            yield encode_sse_event(event)
