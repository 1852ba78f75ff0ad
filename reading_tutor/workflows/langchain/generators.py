"""
Generation nodes of the tutoring workflow.

Each node builds a system prompt from the retrieved passages and the
reader's context, invokes the generation model, and turns the output
into a validated UI payload wrapped in a `LearningResponse`, which is
written to the `final_response` channel.

Nodes defined here:
- `explain`: an explanation in the shape requested by `ui_intent`
  (plain text, mind map, flashcards, simulation, ...)
- `quiz`: an interactive quiz on the current topic
- `code`: a coding exercise
- `plan`: a study roadmap built from the document summaries
- `direct_answer`: a concise, source-grounded markdown answer

Plain text answers are streamed to the reader through `delta` events
while the model generates them. Generation never raises: model
failures and outputs that cannot be parsed or validated produce an
explanation payload with an apology instead.
"""

# LangGraph missing type stubs
# pyright: reportMissingTypeStubs=false
# pyright: reportUnknownMemberType=false

from pydantic import BaseModel, ConfigDict

from langchain_core.messages import BaseMessage

from langgraph.runtime import Runtime

from ...streaming.context import emit_event, get_stream_context
from ...ui.schemas import (
    ExplanationPayload,
    LearningResponse,
    PayloadType,
    Source,
    SuggestedAction,
    UIPayload,
    validate_payload,
)
from .base import (
    GraphState,
    NodeReturn,
    ReaderContext,
    WorkflowContext,
    prepare_messages_for_llm,
)
from .parsing import parse_json
from .prompts import (
    CODE_INSTRUCTIONS,
    DIRECT_ANSWER_PROMPT,
    EXPLAIN_PERSONA,
    INTENT_INSTRUCTIONS,
    JSON_CONTRACT,
    PLAN_INSTRUCTIONS,
    QUIZ_INSTRUCTIONS,
    SAFETY_CONSTRAINTS,
    TEXT_INSTRUCTIONS,
    format_context_block,
)


class GenerationSpec(BaseModel):
    """How a generation node calls the model and checks its output.

    Attributes:
        name: the node name, reported in `step` events and logs
        temperature: sampling temperature of the call
        accepted: the payload types the node may return (None for
            any member of the union)
        actions: key of the suggested follow-up actions
        plain_text: the model answers in markdown, which is streamed
            and wrapped into an explanation payload
    """

    name: str
    temperature: float
    accepted: tuple[PayloadType, ...] | None = None
    actions: str = 'default'
    plain_text: bool = False

    model_config = ConfigDict(frozen=True)


TEXT_SPEC = GenerationSpec(
    name='explain',
    temperature=0.3,
    accepted=('explanation',),
    actions='text',
    plain_text=True,
)

# the explain node, by ui intent
EXPLAIN_SPECS: dict[str, GenerationSpec] = {
    'text': TEXT_SPEC,
    'explanation': TEXT_SPEC,
    'mindmap': GenerationSpec(
        name='explain', temperature=0.4, accepted=('mindmap',),
        actions='mindmap',
    ),
    'comparison': GenerationSpec(
        name='explain', temperature=0.3, accepted=('comparison',),
        actions='comparison',
    ),
    'flashcard': GenerationSpec(
        name='explain', temperature=0.4, accepted=('flashcard',),
        actions='flashcard',
    ),
    'timeline': GenerationSpec(
        name='explain', temperature=0.3, accepted=('timeline',),
        actions='timeline',
    ),
    'summary': GenerationSpec(
        name='explain', temperature=0.3, accepted=('summary',),
        actions='summary',
    ),
    'quiz': GenerationSpec(
        name='explain', temperature=0.2,
        accepted=('interactive_quiz', 'quiz'), actions='quiz',
    ),
    'fill_blank': GenerationSpec(
        name='explain', temperature=0.2, accepted=('fill_blank',),
        actions='quiz',
    ),
    'simulation': GenerationSpec(
        name='explain', temperature=0.4, accepted=('app',),
        actions='simulation',
    ),
    'code_sandbox': GenerationSpec(
        name='explain', temperature=0.1, accepted=('code',),
        actions='code',
    ),
    'code': GenerationSpec(
        name='explain', temperature=0.1, accepted=('code',),
        actions='code',
    ),
}

QUIZ_SPEC = GenerationSpec(
    name='quiz',
    temperature=0.1,
    accepted=('interactive_quiz', 'quiz', 'fill_blank'),
    actions='quiz_node',
)
CODE_SPEC = GenerationSpec(
    name='code', temperature=0.1, accepted=('code',), actions='code'
)
PLAN_SPEC = GenerationSpec(name='plan', temperature=0.2, actions='plan')
DIRECT_ANSWER_SPEC = GenerationSpec(
    name='direct_answer',
    temperature=0.2,
    accepted=('explanation',),
    actions='text',
    plain_text=True,
)

# follow-up actions: (label, action, type). Labels may refer to the
# topic.
_ACTIONS: dict[str, list[tuple[str, str, str]]] = {
    'mindmap': [
        ("Drill down into a branch", "drill_down", "primary"),
        ("Quiz me on this map", "quiz", "secondary"),
    ],
    'comparison': [
        ("Explain the key differences", "explain_diff", "primary"),
        ("Give me an example", "example", "secondary"),
    ],
    'flashcard': [
        ("Review the cards", "review", "primary"),
        ("More cards", "more_cards", "secondary"),
    ],
    'timeline': [
        ("Explain a stage", "explain_stage", "primary"),
        ("Summarize the process", "summarize", "secondary"),
    ],
    'summary': [
        ("Go deeper into the first point", "drill_first", "primary"),
        ("Quiz me on the overview", "quiz", "secondary"),
    ],
    'quiz': [
        ("Give me a hint", "hint", "secondary"),
        ("Explain the answer", "explain_answer", "primary"),
    ],
    'simulation': [
        ("Reset the simulation", "reset", "secondary"),
        ("Explain the theory", "explain_theory", "primary"),
    ],
    'code': [
        ("Show the solution", "show_solution", "secondary"),
        ("Run the tests", "run_tests", "primary"),
    ],
    'text': [
        ("Show me a mind map", "mindmap", "secondary"),
        ("Give me an example", "example", "secondary"),
        ("Quiz me on {topic}", "quiz", "primary"),
    ],
    'plan': [
        ("Start learning", "start_learning", "primary"),
        ("Generate a mind map", "generate_mindmap", "secondary"),
        ("Quiz me on the overview", "quiz_overview", "secondary"),
    ],
    'quiz_node': [
        ("Next question", "next_quiz", "primary"),
        ("Explain more", "explain_more", "secondary"),
    ],
    'default': [
        ("Got it", "understood", "primary"),
        ("Give me an example", "example", "secondary"),
    ],
}


def suggested_actions(key: str, topic: str | None) -> list[SuggestedAction]:
    """The follow-up actions offered after a payload of a kind."""
    return [
        SuggestedAction(
            label=label.format(topic=topic or "this topic"),
            action=action,
            type=kind,  # type: ignore[arg-type]
        )
        for label, action, kind in _ACTIONS.get(key, _ACTIONS['default'])
    ]


def build_system_prompt(
    state: GraphState,
    context: WorkflowContext,
    persona: str,
    instructions: str,
    json_output: bool = True,
) -> str:
    """Assemble persona, constraints, reference material and output
    instructions into the system prompt of a generation call."""
    reader: ReaderContext | None = state.get("reader_context")
    sources: list[Source] = state.get("sources") or []
    block: str = format_context_block(
        state.get("documents") or "",
        [s.title for s in sources],
        selection=reader.selection if reader else None,
        current_content=reader.current_content if reader else None,
        user_concepts=state.get("user_concepts"),
        no_documents=context.chat_settings.MSG_NO_DOCUMENTS,
    )
    topic: str = state.get("current_topic") or "(not specified)"
    sections: list[str] = [
        persona,
        SAFETY_CONSTRAINTS,
        f"Topic: {topic}\nLearner's mastery level: "
        f"{state.get('mastery_level', 0)}",
        block,
        instructions,
    ]
    if json_output:
        sections.append(JSON_CONTRACT)
    return "\n\n".join(sections)


def _fallback(
    spec: GenerationSpec, message: str, sources: list[Source]
) -> NodeReturn:
    response = LearningResponse(
        reasoning=f"Error in {spec.name} node",
        ui=ExplanationPayload(content=message),
        sources=sources,
    )
    return {"final_response": response}


def to_payload(text: str, spec: GenerationSpec) -> UIPayload:
    """Parse and validate the output of the model.

    Raises:
        ValueError: if the output is empty, cannot be parsed, does
            not validate, or is of a type the node may not return
    """
    if spec.plain_text:
        try:
            payload: UIPayload = validate_payload(parse_json(text))
            if payload.type == 'explanation':
                return payload
        except ValueError:
            pass
        if not text.strip():
            raise ValueError("Empty model output")
        return ExplanationPayload(content=text.strip())

    payload = validate_payload(parse_json(text))
    if spec.accepted is not None and payload.type not in spec.accepted:
        raise ValueError(
            f"Payload of type '{payload.type}' not accepted by "
            f"the {spec.name} node"
        )
    return payload


async def generate(
    spec: GenerationSpec,
    state: GraphState,
    context: WorkflowContext,
    system_prompt: str,
) -> NodeReturn:
    """Run a generation call and validate its output.

    Args:
        spec: the generation parameters
        state: the graph state
        context: the workflow dependencies
        system_prompt: the assembled system prompt

    Returns:
        a state update with the final response
    """
    emit_event("step", {"name": spec.name})

    sources: list[Source] = list(state.get("sources") or [])
    settings = context.chat_settings
    llm = context.llm.bind(temperature=spec.temperature)
    messages: list[BaseMessage] = prepare_messages_for_llm(
        state, context, system_prompt
    )

    text: str
    try:
        if spec.plain_text and get_stream_context() is not None:
            chunks: list[str] = []
            async for chunk in llm.astream(messages):
                token: str = chunk.text
                if token:
                    chunks.append(token)
                    emit_event("delta", {"text": token})
            text = "".join(chunks)
        else:
            response = await llm.ainvoke(messages)
            text = response.text
    except Exception as e:
        context.logger.error(
            f"Error while generating in '{spec.name}' node: {e}"
        )
        return _fallback(spec, settings.MSG_GENERATION_ERROR, sources)

    try:
        payload: UIPayload = to_payload(text, spec)
    except ValueError as e:
        context.logger.warning(
            f"Invalid output of '{spec.name}' node: {e}"
        )
        return _fallback(spec, settings.MSG_INVALID_OUTPUT, sources)

    response = LearningResponse(
        reasoning=state.get("reasoning") or f"Generated by {spec.name} node",
        ui=payload,
        sources=sources,
        suggested_actions=suggested_actions(
            spec.actions, state.get("current_topic")
        ),
    )
    return {"final_response": response}


async def explain(
    state: GraphState, runtime: Runtime[WorkflowContext]
) -> NodeReturn:
    """Explain in the shape requested by the ui intent."""
    context: WorkflowContext = runtime.context
    intent: str = state.get("ui_intent") or 'text'
    spec: GenerationSpec = EXPLAIN_SPECS.get(intent, TEXT_SPEC)

    if spec.plain_text:
        prompt = build_system_prompt(
            state, context, EXPLAIN_PERSONA, TEXT_INSTRUCTIONS,
            json_output=False,
        )
    else:
        prompt = build_system_prompt(
            state, context, EXPLAIN_PERSONA, INTENT_INSTRUCTIONS[intent]
        )
    return await generate(spec, state, context, prompt)


async def quiz(
    state: GraphState, runtime: Runtime[WorkflowContext]
) -> NodeReturn:
    """Test the learner on the current topic."""
    context: WorkflowContext = runtime.context
    instructions: str = QUIZ_INSTRUCTIONS.format(
        topic=state.get("current_topic") or "the material",
        mastery=state.get("mastery_level", 0),
    )
    prompt = build_system_prompt(
        state,
        context,
        "You are an examiner assessing what the learner understood.",
        instructions,
    )
    return await generate(QUIZ_SPEC, state, context, prompt)


async def code(
    state: GraphState, runtime: Runtime[WorkflowContext]
) -> NodeReturn:
    """Propose a coding exercise."""
    context: WorkflowContext = runtime.context
    instructions: str = CODE_INSTRUCTIONS.format(
        topic=state.get("current_topic") or "the material"
    )
    prompt = build_system_prompt(
        state,
        context,
        "You are a programming coach designing practical exercises.",
        instructions,
    )
    return await generate(CODE_SPEC, state, context, prompt)


async def plan(
    state: GraphState, runtime: Runtime[WorkflowContext]
) -> NodeReturn:
    """Build a study roadmap of the documents."""
    context: WorkflowContext = runtime.context
    prompt = build_system_prompt(
        state,
        context,
        "You are a learning designer planning a course of study.",
        PLAN_INSTRUCTIONS,
    )
    return await generate(PLAN_SPEC, state, context, prompt)


async def direct_answer(
    state: GraphState, runtime: Runtime[WorkflowContext]
) -> NodeReturn:
    """Answer the question from the passages only."""
    context: WorkflowContext = runtime.context
    reader: ReaderContext | None = state.get("reader_context")
    sources: list[Source] = state.get("sources") or []
    prompt: str = "\n\n".join(
        [
            DIRECT_ANSWER_PROMPT,
            format_context_block(
                state.get("documents") or "",
                [s.title for s in sources],
                selection=reader.selection if reader else None,
                current_content=(
                    reader.current_content if reader else None
                ),
                no_documents=context.chat_settings.MSG_NO_DOCUMENTS,
            ),
        ]
    )
    return await generate(DIRECT_ANSWER_SPEC, state, context, prompt)
