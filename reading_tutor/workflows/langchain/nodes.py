"""
Routing and retrieval nodes of the tutoring workflow.

Nodes defined here:
- `supervisor`: decides the next pedagogical step and the retrieval
  policy of the turn. The decision is mode-gated: 'qa' and 'copilot'
  use fixed rules, 'tutor' asks the routing model for a structured
  decision, whose policy is then clamped into range.
- `query_rewrite`: rewrites a follow-up message into a standalone
  question, when the policy asks for it and there is a history.
- `retriever`: executes the policy against the retrieval service and
  assembles the citation-indexed context block.

All nodes report their name through the streaming channel, and
degrade on failures of the models or of the retrieval service
instead of raising: a turn always reaches a generation node or the
end.
"""

# LangGraph missing type stubs
# pyright: reportMissingTypeStubs=false
# pyright: reportUnknownMemberType=false

from typing import Literal

from pydantic import BaseModel, Field

from langchain_core.messages import HumanMessage, SystemMessage

from langgraph.constants import TAG_NOSTREAM
from langgraph.runtime import Runtime

from ...streaming.context import emit_event
from ...stores.retrieval import RetrievalFilter, RetrievalResult
from ...ui.schemas import Source
from .base import (
    GraphState,
    NodeReturn,
    UIIntent,
    WorkflowContext,
    has_filter,
    has_inline_context,
    history_lines,
)
from .policy import (
    ProposedPolicy,
    RetrievalPolicy,
    copilot_policy,
    default_tutor_policy,
    qa_policy,
    sanitize_policy,
)
from .prompts import REWRITE_PROMPT, SUPERVISOR_PROMPT


class SupervisorDecision(BaseModel):
    """Structured output requested from the routing model."""

    next_step: Literal['explain', 'quiz', 'code', 'plan', 'end'] = Field(
        description="The next pedagogical step"
    )
    reasoning: str = Field(
        default="", description="Why this step was chosen"
    )
    topic: str | None = Field(
        default=None, description="The current topic, in a few words"
    )
    ui_intent: UIIntent | None = Field(
        default=None,
        description="Shape requested by the learner for an "
        "explanation, if any",
    )
    retrieval_policy: ProposedPolicy | None = Field(
        default=None, description="How to search the documents"
    )


async def _tutor_decision(
    state: GraphState, context: WorkflowContext
) -> NodeReturn:
    inline: bool = has_inline_context(state)
    filtered: bool = has_filter(state)
    history = state.get("messages", [])

    prompt: str = SUPERVISOR_PROMPT.format(
        topic=state.get("current_topic") or "(none yet)",
        mastery=state.get("mastery_level", 0),
        has_context="yes" if inline else "no",
        has_filter="yes" if filtered else "no",
        history="\n".join(
            history_lines(
                history, context.chat_settings.rewrite_history_length
            )
        )
        or "(no previous messages)",
    )

    try:
        router = context.routing_llm.with_structured_output(
            SupervisorDecision
        )
        decision = await router.ainvoke(
            [
                SystemMessage(content=prompt),
                HumanMessage(content=state["user_message"]),
            ],
            config={'tags': [TAG_NOSTREAM]},
        )
        if not isinstance(decision, SupervisorDecision):
            decision = SupervisorDecision.model_validate(decision)
    except Exception as e:
        context.logger.error(f"Supervisor could not route message: {e}")
        return {
            "next_step": "explain",
            "reasoning": "Routing failed, explaining by default",
            "retrieval_policy": default_tutor_policy(
                "explain", inline, filtered, bool(history)
            ),
        }

    fallback: RetrievalPolicy = default_tutor_policy(
        decision.next_step, inline, filtered, bool(history)
    )
    update: NodeReturn = {
        "next_step": decision.next_step,
        "reasoning": decision.reasoning or None,
        "current_topic": decision.topic or None,
        "retrieval_policy": sanitize_policy(
            decision.retrieval_policy, fallback
        ),
    }
    # an intent chosen by the reader takes precedence
    if decision.ui_intent and state.get("ui_intent") is None:
        update["ui_intent"] = decision.ui_intent
    return update


async def supervisor(
    state: GraphState, runtime: Runtime[WorkflowContext]
) -> NodeReturn:
    """Choose the next step and the retrieval policy."""
    emit_event("step", {"name": "supervisor"})

    context: WorkflowContext = runtime.context
    history: bool = bool(state.get("messages"))

    update: NodeReturn
    match state.get("mode") or "tutor":
        case "qa":
            update = {
                "next_step": "direct_answer",
                "reasoning": "QA mode: answer from the documents",
                "current_topic": state.get("current_topic") or "General",
                "retrieval_policy": sanitize_policy(
                    None, qa_policy(history)
                ),
            }
        case "copilot":
            update = {
                "next_step": "explain",
                "reasoning": "Copilot mode: explain the reading",
                "current_topic": (
                    state.get("current_topic") or "Context Analysis"
                ),
                "retrieval_policy": sanitize_policy(
                    None,
                    copilot_policy(
                        has_inline_context(state), has_filter(state)
                    ),
                ),
            }
        case _:
            update = await _tutor_decision(state, context)

    policy: RetrievalPolicy = update["retrieval_policy"]
    context.logger.info(
        f"Routing to '{update['next_step']}' "
        f"(retrieval {'on' if policy.enabled else 'off'}, "
        f"{policy.mode}, top_k={policy.top_k})"
    )
    emit_event(
        "meta",
        {
            "nextStep": update["next_step"],
            "retrievalPolicy": policy.to_wire(),
        },
    )
    return update


async def query_rewrite(
    state: GraphState, runtime: Runtime[WorkflowContext]
) -> NodeReturn:
    """Rewrite the message into a standalone retrieval query."""
    emit_event("step", {"name": "query_rewrite"})

    message: str = state["user_message"]
    policy: RetrievalPolicy | None = state.get("retrieval_policy")
    history = state.get("messages", [])
    if (
        policy is None
        or not policy.enabled
        or not policy.rewrite_query
        or not history
    ):
        return {"retrieval_query": message}

    context: WorkflowContext = runtime.context
    lines: list[str] = history_lines(
        history, context.chat_settings.rewrite_history_length
    )

    rewritten: str = ""
    try:
        response = await context.routing_llm.ainvoke(
            REWRITE_PROMPT.format(
                history="\n".join(lines), message=message
            ),
            config={'tags': [TAG_NOSTREAM]},
        )
        rewritten = response.text.strip().strip('"').strip()
    except Exception as e:
        context.logger.error(f"Error rewriting query: {e}")

    if not rewritten:
        return {"retrieval_query": message}
    context.logger.info(f"Query rewritten as: {rewritten}")
    return {"retrieval_query": rewritten}


def format_documents(sources: list[Source]) -> str:
    """The citation-indexed context block of the generation prompts."""
    return "\n\n".join(
        f"【Source {i}】Title: {s.title}\n"
        f"Origin: {s.domain or 'unknown'}\n"
        f"Excerpt:\n{s.excerpt}"
        for i, s in enumerate(sources, start=1)
    )


async def retriever(
    state: GraphState, runtime: Runtime[WorkflowContext]
) -> NodeReturn:
    """Search the reader's documents according to the policy."""
    emit_event("step", {"name": "retriever"})

    context: WorkflowContext = runtime.context
    policy: RetrievalPolicy = (
        state.get("retrieval_policy") or RetrievalPolicy()
    )
    empty: NodeReturn = {"documents": "", "sources": []}
    if not policy.enabled:
        return empty

    next_step = state.get("next_step")
    mode = "comprehensive" if next_step == "plan" else policy.mode
    query: str = state.get("retrieval_query") or state["user_message"]
    flt = RetrievalFilter(
        article_ids=tuple(state.get("article_ids") or []),
        collection_id=state.get("collection_id"),
    )

    try:
        result: RetrievalResult = await context.retrieval.search(
            query,
            state["user_id"],
            flt,
            mode=mode,
            top_k=policy.top_k,
        )
    except Exception as e:
        context.logger.error(f"Error retrieving from documents: {e}")
        return empty

    sources: list[Source] = [
        s for s in result.sources if s.similarity >= policy.min_similarity
    ]
    emit_event(
        "sources",
        {
            "count": len(sources),
            "mode": mode,
            "topK": policy.top_k,
            "minSimilarity": policy.min_similarity,
            "minSources": policy.min_sources,
            "sources": [s.to_wire() for s in sources],
        },
    )

    if len(sources) < policy.min_sources:
        context.logger.info(
            f"Insufficient grounding: {len(sources)} sources, "
            f"{policy.min_sources} required"
        )
        return empty

    return {"documents": format_documents(sources), "sources": sources}
