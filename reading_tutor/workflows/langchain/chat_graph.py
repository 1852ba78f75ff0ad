"""
Workflow of a tutoring turn.

The graph workflow is created with the `create_learning_workflow`
function. Its dependencies (models, retrieval service, settings) are
given at invocation as the runtime context:

```python
workflow = create_learning_workflow()
state: GraphState = create_initial_state(
    "What is entropy?", user_id, mode='tutor'
)
context = WorkflowContext.from_default_config()
final_state = await workflow.ainvoke(state, context=context)
response = final_state["final_response"]
```

Progress, sources and the tokens of text answers are not streamed by
the graph itself, but emitted by the nodes into the streaming context
of the request (see `reading_tutor.streaming`). Use `run_turn` from
`reading_tutor.chat` to obtain the event stream of a turn.
"""

# LangGraph missing type stubs
# pyright: reportMissingTypeStubs=false
# pyright: reportUnknownMemberType=false

from langgraph.graph import StateGraph, START, END

from .base import GraphState, GraphStateGraphType, WorkflowContext
from .generators import code, direct_answer, explain, plan, quiz
from .graph_routing import (
    GENERATION_NODES,
    QUERY_REWRITE,
    RETRIEVER,
    SUPERVISOR,
    route_after_retriever,
    route_after_supervisor,
)
from .nodes import query_rewrite, retriever, supervisor


def create_learning_workflow() -> GraphStateGraphType:
    """
    Create the tutoring workflow graph.

    The graph implements the following flow:

    START               ---> supervisor
    supervisor          -.-> END [next step is 'end']
                        -.-> generation node [retrieval disabled]
                        -.-> query rewrite [rewrite with history]
                        -.-> retriever
    query rewrite       ---> retriever
    retriever           -.-> generation node [by next step]
    generation node     ---> END

    where the generation nodes are explain, quiz, code, plan, and
    direct_answer.

    Returns:
        Compiled StateGraph
    """

    workflow: StateGraph[
        GraphState, WorkflowContext, GraphState, GraphState
    ] = StateGraph(GraphState, WorkflowContext)

    # Add nodes
    workflow.add_node(SUPERVISOR, supervisor)
    workflow.add_node(QUERY_REWRITE, query_rewrite)
    workflow.add_node(RETRIEVER, retriever)
    workflow.add_node("explain", explain)
    workflow.add_node("quiz", quiz)
    workflow.add_node("code", code)
    workflow.add_node("plan", plan)
    workflow.add_node("direct_answer", direct_answer)

    # Add edges
    workflow.add_edge(START, SUPERVISOR)
    workflow.add_conditional_edges(
        SUPERVISOR,
        route_after_supervisor,
        [QUERY_REWRITE, RETRIEVER, *GENERATION_NODES, END],
    )
    workflow.add_edge(QUERY_REWRITE, RETRIEVER)
    workflow.add_conditional_edges(
        RETRIEVER, route_after_retriever, list(GENERATION_NODES)
    )
    for node in GENERATION_NODES:
        workflow.add_edge(node, END)

    return workflow.compile()
