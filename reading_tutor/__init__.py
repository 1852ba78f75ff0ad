"""
Reading Tutor - the AI subsystem of a reading application.

A message of the reader, with the conversation so far, optional
document filters and the text on screen, becomes a typed UI payload
(an explanation, a quiz, a mind map, an interactive simulation, ...)
grounded in the reader's own documents.

Public API
----------
Invocation:
    TurnRequest: the invocation input of a turn
    run_turn: run a turn, yielding its events
    sse_stream: run a turn, yielding Server-Sent-Events records

Workflow:
    create_learning_workflow: the compiled LangGraph workflow
    WorkflowContext: the dependencies of the workflow

Example
-------
    >>> from reading_tutor import TurnRequest, WorkflowContext, run_turn
    >>> request = TurnRequest(user_message="What is entropy?",
    ...     user_id=user_id, mode="qa")
    >>> async for event in run_turn(
    ...         request, WorkflowContext.from_default_config()):
    ...     print(event.type, event.data)
"""

from .chat import TurnRequest, run_turn, sse_stream
from .workflows.langchain.base import WorkflowContext
from .workflows.langchain.chat_graph import create_learning_workflow

__all__ = [
    "TurnRequest",
    "run_turn",
    "sse_stream",
    "WorkflowContext",
    "create_learning_workflow",
]
