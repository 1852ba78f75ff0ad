"""
The generative UI protocol.

Generation nodes produce exactly one UI payload per turn. A payload is
a member of a closed, tagged union: the `type` field selects the
shape, and the shape determines which other fields are legal. The
payloads travel to the reading client as json with camelCase field
names, and are validated at the trust boundary (the output of the
language model) with `validate_payload`:

```python
payload = validate_payload(
    {"type": "quiz", "question": "2+2?", "options": ["3", "4"],
     "correctIndex": 1, "explanation": "Basic arithmetic."}
)
assert isinstance(payload, QuizPayload)
```

Keys that are not part of the selected shape are dropped.

The "interactive app" payload (`AppPayload`) carries an initial
state record and a layout tree of atoms. Leaf atoms are text, slider,
switch, button and code; container atoms are stack and card, nested
at most `MAX_CONTAINER_DEPTH` levels. State paths used by bindings
and actions are validated when the payload is validated, and are
stored without the optional 'state.' prefix.
"""

import re
from typing import Annotated, Any, Literal, Self

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    model_validator,
)
from pydantic.alias_generators import to_camel

MAX_CONTAINER_DEPTH: int = 3

_IDENT = r"[A-Za-z_$][\w$]*"
_PATH_RE = re.compile(rf"^{_IDENT}(\.({_IDENT}|[0-9]{{1,6}}))*$")


def normalize_state_path(path: str) -> str:
    """Validate a dot-delimited path into the app state, and remove
    the optional 'state.' prefix.

    Raises:
        ValueError: if the path is not a sequence of identifiers or
            list indices (at most 6 digits) separated by dots
    """
    path = path.strip()
    if path.startswith("state."):
        path = path[len("state.") :]
    if not _PATH_RE.match(path):
        raise ValueError(f"Invalid state path: '{path}'")
    return path


StatePath = Annotated[str, AfterValidator(normalize_state_path)]


class ProtocolModel(BaseModel):
    """Base of all wire models: camelCase on the wire, snake_case in
    Python, immutable, unknown keys dropped."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """The json-compatible camelCase representation."""
        return self.model_dump(mode='json', by_alias=True)


# -----------------------------------------------------------------
# Citations and suggested actions


class Source(ProtocolModel):
    """A citation of a passage of the reader's documents."""

    article_id: str
    title: str
    excerpt: str
    similarity: float = Field(ge=0.0, le=1.0)
    domain: str | None = None


class SuggestedAction(ProtocolModel):
    label: str
    action: str
    type: Literal['primary', 'secondary', 'danger'] = 'secondary'


# -----------------------------------------------------------------
# Reactive app atoms

ActionType = Literal[
    'set', 'increment', 'decrement', 'toggle', 'push', 'run_code', 'emit'
]


class Action(ProtocolModel):
    """A declarative instruction executed when a button is clicked."""

    type: ActionType
    path: StatePath | None = None
    value: Any = None
    target: str | None = None

    @model_validator(mode='after')
    def check_operands(self) -> Self:
        if (
            self.type in ('set', 'increment', 'decrement', 'toggle', 'push')
            and self.path is None
        ):
            raise ValueError(f"Action '{self.type}' requires a path")
        if self.type == 'emit' and not (
            isinstance(self.value, str) or self.target
        ):
            raise ValueError(
                "Action 'emit' requires a trigger name in value or target"
            )
        return self

    @property
    def trigger(self) -> str | None:
        """The name of an emitted trigger."""
        if isinstance(self.value, str):
            return self.value
        return self.target


class TextAtom(ProtocolModel):
    type: Literal['text'] = 'text'
    content: str
    variant: Literal['h1', 'h2', 'h3', 'p', 'muted'] = 'p'
    class_name: str | None = None


class SliderAtom(ProtocolModel):
    type: Literal['slider'] = 'slider'
    bind: StatePath
    min: float = 0
    max: float = 100
    step: float = 1
    label: str | None = None

    @model_validator(mode='after')
    def check_range(self) -> Self:
        if self.min > self.max:
            raise ValueError("Slider min must not exceed max")
        if self.step <= 0:
            raise ValueError("Slider step must be positive")
        return self


class SwitchAtom(ProtocolModel):
    type: Literal['switch'] = 'switch'
    bind: StatePath
    label: str | None = None


class ButtonAtom(ProtocolModel):
    type: Literal['button'] = 'button'
    label: str
    variant: Literal['default', 'outline', 'ghost', 'destructive'] = (
        'default'
    )
    on_click: list[Action] = Field(default_factory=list)


class CodeAtom(ProtocolModel):
    type: Literal['code'] = 'code'
    id: str | None = None
    language: str = 'javascript'
    initial_code: str = ""
    read_only: bool = False
    runnable: bool = True


class StackAtom(ProtocolModel):
    type: Literal['stack'] = 'stack'
    direction: Literal['horizontal', 'vertical'] = 'vertical'
    gap: Literal['sm', 'md', 'lg'] = 'md'
    children: list['Atom'] = Field(default_factory=list)
    class_name: str | None = None


class CardAtom(ProtocolModel):
    type: Literal['card'] = 'card'
    title: str | None = None
    children: list['Atom'] = Field(default_factory=list)
    class_name: str | None = None


Atom = Annotated[
    TextAtom
    | SliderAtom
    | SwitchAtom
    | ButtonAtom
    | CodeAtom
    | StackAtom
    | CardAtom,
    Field(discriminator='type'),
]

StackAtom.model_rebuild()
CardAtom.model_rebuild()

ContainerAtom = StackAtom | CardAtom


def container_depth(atom: Any) -> int:
    """Number of nested container levels of an atom tree (a leaf has
    depth 0)."""
    if isinstance(atom, (StackAtom, CardAtom)):
        return 1 + max(
            (container_depth(c) for c in atom.children), default=0
        )
    return 0


# -----------------------------------------------------------------
# Payloads


class ExplanationPayload(ProtocolModel):
    type: Literal['explanation'] = 'explanation'
    title: str | None = None
    content: str
    tone: str | None = None


class QuizPayload(ProtocolModel):
    type: Literal['quiz'] = 'quiz'
    question: str
    options: list[str] = Field(min_length=2)
    correct_index: int = Field(ge=0)
    explanation: str = ""

    @model_validator(mode='after')
    def check_index(self) -> Self:
        if self.correct_index >= len(self.options):
            raise ValueError("correctIndex is out of range")
        return self


class CodePayload(ProtocolModel):
    type: Literal['code'] = 'code'
    language: str = 'javascript'
    description: str
    starter_code: str = ""
    solution: str = ""


class MindMapNode(ProtocolModel):
    id: str | None = None
    label: str
    description: str | None = None
    style: str | None = None
    children: list['MindMapNode'] = Field(default_factory=list)


class MindMapPayload(ProtocolModel):
    type: Literal['mindmap'] = 'mindmap'
    title: str
    root_node: MindMapNode


class Flashcard(ProtocolModel):
    id: str
    front: str
    back: str
    hint: str | None = None


class FlashcardPayload(ProtocolModel):
    type: Literal['flashcard'] = 'flashcard'
    cards: list[Flashcard] = Field(min_length=1)
    current_index: int = Field(default=0, ge=0)


class TimelineEvent(ProtocolModel):
    id: str
    date: str | None = None
    label: str
    description: str = ""


class TimelinePayload(ProtocolModel):
    type: Literal['timeline'] = 'timeline'
    title: str | None = None
    events: list[TimelineEvent] = Field(min_length=1)
    direction: Literal['horizontal', 'vertical'] = 'vertical'


class ComparisonColumn(ProtocolModel):
    header: str
    items: list[str]


class ComparisonPayload(ProtocolModel):
    type: Literal['comparison'] = 'comparison'
    title: str | None = None
    columns: list[ComparisonColumn] = Field(min_length=2)
    highlight_differences: bool = False


class KeyPoint(ProtocolModel):
    emoji: str | None = None
    point: str


class SummaryPayload(ProtocolModel):
    type: Literal['summary'] = 'summary'
    title: str
    overview: str
    key_points: list[KeyPoint] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


class QuizOption(ProtocolModel):
    id: str
    text: str
    is_correct: bool = False


class InteractiveQuestion(ProtocolModel):
    id: str
    question: str
    options: list[QuizOption] = Field(min_length=2)
    explanation: str | None = None
    hint: str | None = None

    @model_validator(mode='after')
    def check_correct(self) -> Self:
        if not any(o.is_correct for o in self.options):
            raise ValueError(
                f"Question '{self.id}' has no correct option"
            )
        return self


class InteractiveQuizPayload(ProtocolModel):
    type: Literal['interactive_quiz'] = 'interactive_quiz'
    title: str | None = None
    questions: list[InteractiveQuestion] = Field(min_length=1)
    show_explanation_on_wrong: bool = True


class BlankItem(ProtocolModel):
    """A sentence with one or more blanks (marked by three or more
    underscores) and the accepted answer for each blank."""

    id: str
    sentence: str
    answers: list[str] = Field(min_length=1)
    hint: str | None = None

    @model_validator(mode='after')
    def check_blanks(self) -> Self:
        blanks = len(re.findall(r"_{3,}", self.sentence))
        if blanks != len(self.answers):
            raise ValueError(
                f"Item '{self.id}' has {blanks} blanks and "
                f"{len(self.answers)} answers"
            )
        return self


class FillBlankPayload(ProtocolModel):
    type: Literal['fill_blank'] = 'fill_blank'
    title: str | None = None
    items: list[BlankItem] = Field(min_length=1)


class AppPayload(ProtocolModel):
    type: Literal['app'] = 'app'
    initial_state: dict[str, Any] = Field(default_factory=dict)
    layout: Atom

    @model_validator(mode='after')
    def check_depth(self) -> Self:
        depth = container_depth(self.layout)
        if depth > MAX_CONTAINER_DEPTH:
            raise ValueError(
                f"Layout nests {depth} container levels, at most "
                f"{MAX_CONTAINER_DEPTH} are allowed"
            )
        return self


MindMapNode.model_rebuild()

UIPayload = Annotated[
    ExplanationPayload
    | QuizPayload
    | CodePayload
    | MindMapPayload
    | FlashcardPayload
    | TimelinePayload
    | ComparisonPayload
    | SummaryPayload
    | InteractiveQuizPayload
    | FillBlankPayload
    | AppPayload,
    Field(discriminator='type'),
]

PayloadType = Literal[
    'explanation',
    'quiz',
    'code',
    'mindmap',
    'flashcard',
    'timeline',
    'comparison',
    'summary',
    'interactive_quiz',
    'fill_blank',
    'app',
]

payload_adapter: TypeAdapter[UIPayload] = TypeAdapter(UIPayload)


def validate_payload(data: Any) -> UIPayload:
    """Validate untrusted data as a UI payload.

    Raises:
        pydantic.ValidationError: if the data matches no shape
    """
    return payload_adapter.validate_python(data)


class LearningResponse(ProtocolModel):
    """The terminal result of a turn, sent in the `final` event."""

    reasoning: str | None = None
    ui: UIPayload
    sources: list[Source] = Field(default_factory=list)
    suggested_actions: list[SuggestedAction] = Field(
        default_factory=list
    )
