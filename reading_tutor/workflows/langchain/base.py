"""
State and dependencies of the tutoring workflow.

`GraphState` is the record threaded through the nodes of one turn.
Each channel has an explicit merge rule (the reducer in its
annotation):

- `messages` is append-only;
- channels annotated with `keep_if_none` keep their previous value
  when a node writes None, and are replaced otherwise;
- `final_response` is written once: the first payload produced by a
  generation node is kept;
- all other channels (including `documents` and `sources`) are
  replaced wholesale by the last node that wrote them.

`WorkflowContext` carries the dependencies of the nodes (models,
retrieval service, settings, logger) and is passed to the graph as
its runtime context, so that nodes access it through
`runtime.context`.
"""

# LangGraph missing type stubs
# pyright: reportMissingTypeStubs=false

import logging
from typing import Annotated, Any, Literal, TypedDict, TypeVar

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
)

from langgraph.graph.message import add_messages
from langgraph.graph.state import CompiledStateGraph

from ...config.appchat import ChatSettings
from ...stores.retrieval import RetrievalService
from ...ui.schemas import LearningResponse, Source
from .policy import RetrievalPolicy

T = TypeVar("T")

Mode = Literal['qa', 'tutor', 'copilot']

NextStep = Literal[
    'explain', 'quiz', 'code', 'plan', 'direct_answer', 'end'
]

UIIntent = Literal[
    'text',
    'explanation',
    'mindmap',
    'flashcard',
    'quiz',
    'fill_blank',
    'timeline',
    'comparison',
    'simulation',
    'code_sandbox',
    'summary',
    'code',
]


def keep_if_none(old: T | None, new: T | None) -> T | None:
    """Last write wins, unless the new value is None."""
    return old if new is None else new


def set_once(old: T | None, new: T | None) -> T | None:
    """The first value written is kept."""
    return new if old is None else old


class ReaderContext(BaseModel):
    """What the reader has on screen: the selected text and the
    currently visible content of the document."""

    selection: str | None = None
    current_content: str | None = None

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    @property
    def is_empty(self) -> bool:
        return not (self.selection or self.current_content)


class GraphState(TypedDict):
    """
    State object of the tutoring workflow.

    Attributes:
        messages: conversation history before this turn
        user_message: the reader's message of this turn
        user_id: owner of the documents to search
        article_ids: restriction of the search to these documents
        collection_id: restriction of the search to a collection
        current_topic: pedagogical topic of the conversation
        mastery_level: learner's mastery of the topic (0..n)
        mode: interaction mode
        reader_context: inline context from the reading view
        ui_intent: the shape of payload requested for explanations
        user_concepts: concepts the learner already masters
        retrieval_query: the query sent to the retrieval service
        retrieval_policy: the policy resolved by the supervisor
        documents: citation-indexed context block
        sources: citations matching the context block
        next_step: the generation step chosen by the supervisor
        reasoning: the supervisor's rationale
        final_response: the payload of the turn
    """

    messages: Annotated[list[BaseMessage], add_messages]
    user_message: str
    user_id: str
    article_ids: list[str]
    collection_id: Annotated[str | None, keep_if_none]
    current_topic: Annotated[str | None, keep_if_none]
    mastery_level: int
    mode: Annotated[Mode | None, keep_if_none]
    reader_context: Annotated[ReaderContext | None, keep_if_none]
    ui_intent: Annotated[UIIntent | None, keep_if_none]
    user_concepts: Annotated[list[str] | None, keep_if_none]

    retrieval_query: Annotated[str | None, keep_if_none]
    retrieval_policy: Annotated[RetrievalPolicy | None, keep_if_none]
    documents: str
    sources: list[Source]

    next_step: Annotated[NextStep | None, keep_if_none]
    reasoning: Annotated[str | None, keep_if_none]
    final_response: Annotated[LearningResponse | None, set_once]


def create_initial_state(
    user_message: str,
    user_id: str,
    *,
    mode: Mode = 'tutor',
    messages: list[BaseMessage] | None = None,
    article_ids: list[str] | None = None,
    collection_id: str | None = None,
    current_topic: str | None = None,
    mastery_level: int = 0,
    reader_context: ReaderContext | None = None,
    ui_intent: UIIntent | None = None,
    user_concepts: list[str] | None = None,
) -> GraphState:
    """Creates the initial state of a turn."""

    return GraphState(
        messages=list(messages or []),
        user_message=user_message,
        user_id=user_id,
        article_ids=list(article_ids or []),
        collection_id=collection_id,
        current_topic=current_topic,
        mastery_level=mastery_level,
        mode=mode,
        reader_context=reader_context,
        ui_intent=ui_intent,
        user_concepts=list(user_concepts or []),
        retrieval_query=None,
        retrieval_policy=None,
        documents="",
        sources=[],
        next_step=None,
        reasoning=None,
        final_response=None,
    )


def has_filter(state: GraphState) -> bool:
    return bool(state.get("article_ids") or state.get("collection_id"))


def has_inline_context(state: GraphState) -> bool:
    context: ReaderContext | None = state.get("reader_context")
    return context is not None and not context.is_empty


# (inherit from BaseModel as dataclass cannot be used for context)
class WorkflowContext(BaseModel):
    """
    Dependencies of the tutoring workflow.

    Encapsulates all dependencies and settings needed by the workflow,
    avoiding global state and making the workflow testable.

    Attributes:
        llm: the generation model
        router_llm: the model used by the supervisor and the query
            rewriter. Defaults to llm
        retrieval: the retrieval service
        chat_settings: messages and prompt parameters
        logger: the logger used by the nodes
    """

    llm: BaseChatModel
    router_llm: BaseChatModel | None = None
    retrieval: RetrievalService
    chat_settings: ChatSettings = Field(default_factory=ChatSettings)
    logger: logging.Logger = Field(
        default_factory=lambda: logging.getLogger("reading_tutor")
    )

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def routing_llm(self) -> BaseChatModel:
        return self.router_llm or self.llm

    @classmethod
    def from_default_config(cls) -> 'WorkflowContext':
        from ...config.config import ConfigSettings
        from ...models import create_model_from_settings
        from ...stores.vector_store_qdrant import (
            QdrantRetrievalService,
        )

        settings = ConfigSettings()
        chat_settings = ChatSettings()
        return WorkflowContext(
            llm=create_model_from_settings(settings.major),
            router_llm=create_model_from_settings(settings.minor),
            retrieval=QdrantRetrievalService.from_config_settings(
                settings, chat_settings
            ),
            chat_settings=chat_settings,
        )


# graph alias type
GraphStateGraphType = CompiledStateGraph[
    GraphState, WorkflowContext, GraphState, GraphState
]

# Node return type: a partial state update
NodeReturn = dict[str, Any]


def history_lines(
    messages: list[BaseMessage], window: int
) -> list[str]:
    """The last messages of the history as 'role: content' lines."""
    lines: list[str] = []
    for msg in messages[-window:] if window > 0 else []:
        role: str = (
            "user"
            if isinstance(msg, HumanMessage)
            else "system" if isinstance(msg, SystemMessage) else "assistant"
        )
        lines.append(f"{role}: {msg.text}")
    return lines


def prepare_messages_for_llm(
    state: GraphState,
    context: WorkflowContext,
    system_message: str = "",
    history_window: int | None = None,
) -> list[BaseMessage]:
    """
    Prepare messages for LLM invocation from state.

    Args:
        state: Current graph state
        context: the workflow dependencies
        system_message: Optional system message to prepend
        history_window: Number of recent messages to include
            (defaults to the history_length chat setting)

    Returns:
        List of messages for LLM invocation, ending with the reader's
        message of this turn
    """
    if history_window is None:
        history_window = context.chat_settings.history_length

    messages: list[BaseMessage] = []
    if system_message:
        messages.append(SystemMessage(content=system_message))

    state_messages: list[BaseMessage] = state.get("messages", [])
    if history_window > 0:
        for msg in state_messages[-history_window:]:
            if isinstance(msg, HumanMessage):
                messages.append(HumanMessage(content=msg.text))
            elif isinstance(msg, AIMessage):
                messages.append(AIMessage(content=msg.text))

    messages.append(HumanMessage(content=state["user_message"]))
    return messages
