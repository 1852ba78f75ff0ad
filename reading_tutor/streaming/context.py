"""
Request-scoped streaming channel.

A turn of the tutoring workflow reports its progress to the caller
as a sequence of typed events (routing snapshot, node names, text
tokens, citations, the final payload). The events are produced deep
inside the graph nodes, and the nodes must not need to know whether
anybody is listening. This module provides an implicit channel
established for the dynamic extent of one invocation:

```python
events: list[AiStreamEvent] = []
with ai_stream_context(events.append, trace_id="abc"):
    await workflow.ainvoke(state, context=dependencies)
```

Inside the `with` block, any coroutine (and any task created from it,
as LangGraph does for its nodes) may call `emit_event`. Outside of it
`emit_event` does nothing, so that nodes remain callable in tests.

The channel is stored in a `ContextVar`. asyncio copies the current
context when a task is created, so two concurrent invocations each
see their own channel and their events never mix.
"""

import logging
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EventType = Literal[
    "meta", "step", "delta", "sources", "final", "error", "done"
]

_logger = logging.getLogger(__name__)


class AiStreamEvent(BaseModel):
    """An event of the turn stream. The trace id of the invocation
    is added to the data of every event."""

    type: EventType
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


StreamEmitter = Callable[[AiStreamEvent], None]


class AiStreamContext(BaseModel):
    emitter: StreamEmitter
    trace_id: str

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


_stream_context: ContextVar[AiStreamContext | None] = ContextVar(
    "ai_stream_context", default=None
)


@contextmanager
def ai_stream_context(
    emitter: StreamEmitter, trace_id: str | None = None
) -> Iterator[AiStreamContext]:
    """Establish the streaming channel for the enclosed code.

    Args:
        emitter: a callable receiving the events. It is called
            synchronously, in the order the events are produced
        trace_id: identifier of the invocation. A random one is
            generated if not given

    Yields:
        the established context
    """
    context = AiStreamContext(
        emitter=emitter, trace_id=trace_id or uuid.uuid4().hex
    )
    token = _stream_context.set(context)
    try:
        yield context
    finally:
        _stream_context.reset(token)


def get_stream_context() -> AiStreamContext | None:
    """The channel of the current invocation, if any."""
    return _stream_context.get()


def get_trace_id() -> str | None:
    context = _stream_context.get()
    return context.trace_id if context else None


def emit_event(
    event_type: EventType, data: Mapping[str, Any] | None = None
) -> None:
    """Send an event through the current channel. Does nothing if no
    channel was established.

    Args:
        event_type: the kind of event
        data: the event payload (must be json-serializable)
    """
    context = _stream_context.get()
    if context is None:
        return

    payload: dict[str, Any] = dict(data or {})
    payload["traceId"] = context.trace_id
    try:
        context.emitter(AiStreamEvent(type=event_type, data=payload))
    except Exception as e:
        # a listener that went away must not break the turn
        _logger.warning(f"Could not emit '{event_type}' event: {e}")
