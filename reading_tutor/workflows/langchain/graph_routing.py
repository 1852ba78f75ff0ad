"""
Routing helper functions for LangGraph conditional edges.

These functions are the transition function of the tutoring
workflow: they read the decision of the supervisor and the resolved
retrieval policy from GraphState and return the name of the next
node, or END.
"""

from langgraph.graph import END  # type: ignore (missing stubs)

from .base import GraphState
from .policy import RetrievalPolicy

# node names
SUPERVISOR = "supervisor"
QUERY_REWRITE = "query_rewrite"
RETRIEVER = "retriever"
GENERATION_NODES: tuple[str, ...] = (
    "explain",
    "quiz",
    "code",
    "plan",
    "direct_answer",
)


def _generation_node(state: GraphState) -> str:
    next_step = state.get("next_step")
    return next_step if next_step in GENERATION_NODES else "explain"


def route_after_supervisor(state: GraphState) -> str:
    """Route after the supervisor: END on 'end', straight to the
    generation node when retrieval is disabled, through the query
    rewriter when the policy asks for it and there is a history,
    otherwise to the retriever."""
    if state.get("next_step") == "end":
        return END

    policy: RetrievalPolicy | None = state.get("retrieval_policy")
    if policy is None or not policy.enabled:
        return _generation_node(state)

    if policy.rewrite_query and state.get("messages"):
        return QUERY_REWRITE
    return RETRIEVER


def route_after_retriever(state: GraphState) -> str:
    """Route to the generation node chosen by the supervisor."""
    return _generation_node(state)
