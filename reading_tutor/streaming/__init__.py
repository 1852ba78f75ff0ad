from .context import (
    AiStreamContext,
    AiStreamEvent,
    EventType,
    StreamEmitter,
    ai_stream_context,
    emit_event,
    get_stream_context,
    get_trace_id,
)
from .sse import encode_sse, encode_sse_event

__all__ = [
    "AiStreamContext",
    "AiStreamEvent",
    "EventType",
    "StreamEmitter",
    "ai_stream_context",
    "emit_event",
    "get_stream_context",
    "get_trace_id",
    "encode_sse",
    "encode_sse_event",
]
