"""
Reactive interpreter of the interactive app payload.

A `ReactiveSession` holds the state of one rendering of an
`AppPayload`. The state is a nested record of dicts and lists,
initialised from the payload's `initial_state` and never persisted.
All writes go through `update_state(path, value)`, which copies only
the containers on the path from the root to the written value. Every
other subtree keeps its identity, so that a renderer may skip the
parts of the layout whose inputs did not change:

```python
session = ReactiveSession(payload, on_action=host_callback)
before = session.state
session.update_state("physics.mass", 3)
assert session.state is not before
assert session.state["other"] is before["other"]
```

`render()` resolves the layout against the current state: bound
sliders and switches receive their value and `{{state.path}}`
markers in text atoms are interpolated. Buttons execute their
actions in order through `click()`. An `emit` action forwards a
trigger to the hosting page through the `on_action` callback; the
'submit_success' trigger is reported as 'app_finished', which the
host may use to celebrate and end the turn.
"""

import copy
import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, Field

from .schemas import (
    Action,
    AppPayload,
    ButtonAtom,
    CardAtom,
    CodeAtom,
    SliderAtom,
    StackAtom,
    SwitchAtom,
    TextAtom,
    normalize_state_path,
)

_INTERPOLATION_RE = re.compile(r"\{\{\s*state\.([^}]+?)\s*\}\}")

SUBMIT_TRIGGER: str = "submit_success"
FINISHED_TRIGGER: str = "app_finished"

# host callback: (trigger, state snapshot)
HostCallback = Callable[[str, Mapping[str, Any]], None]
# code runner: (code atom id, state snapshot) -> result
CodeRunner = Callable[[str | None, Mapping[str, Any]], Any]
StateListener = Callable[[Mapping[str, Any]], None]

_logger = logging.getLogger(__name__)


class RenderNode(BaseModel):
    """An atom resolved against the current state."""

    kind: str
    props: dict[str, Any] = Field(default_factory=dict)
    children: list['RenderNode'] = Field(default_factory=list)


def _split(path: str) -> list[str]:
    return normalize_state_path(path).split(".")


def _child(container: Any, key: str) -> Any:
    if isinstance(container, Mapping):
        return container.get(key)
    if isinstance(container, list) and key.isdigit():
        index = int(key)
        return container[index] if index < len(container) else None
    return None


def get_in(tree: Any, path: str) -> Any:
    """Read the value at a dot path. Missing paths yield None."""
    node: Any = tree
    for key in _split(path):
        node = _child(node, key)
        if node is None:
            return None
    return node


def set_in(tree: Any, keys: list[str], value: Any) -> Any:
    """Return a copy of tree with value written at keys. Only the
    containers along keys are copied. A list index may replace an
    item or append one at the end of the list.

    Raises:
        IndexError: if a list index is past the end of the list
    """
    if not keys:
        return value

    head, rest = keys[0], keys[1:]
    if isinstance(tree, list) and head.isdigit():
        index = int(head)
        if index > len(tree):
            raise IndexError(
                f"Index {index} past the end of a list of {len(tree)}"
            )
        updated_list = list(tree)
        if index == len(updated_list):
            updated_list.append(None)
        updated_list[index] = set_in(updated_list[index], rest, value)
        return updated_list

    updated: dict[str, Any] = (
        dict(tree) if isinstance(tree, Mapping) else {}
    )
    updated[head] = set_in(updated.get(head), rest, value)
    return updated


def _number(value: Any, default: float = 0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


class ReactiveSession:
    """One rendering session of an interactive app payload."""

    def __init__(
        self,
        payload: AppPayload,
        on_action: HostCallback | None = None,
        code_runner: CodeRunner | None = None,
    ) -> None:
        self.payload = payload
        self._on_action = on_action
        self._code_runner = code_runner
        self._state: dict[str, Any] = copy.deepcopy(
            dict(payload.initial_state)
        )
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> dict[str, Any]:
        return self._state

    def get_value(self, path: str) -> Any:
        return get_in(self._state, path)

    def update_state(self, path: str, value: Any) -> None:
        """The single write entry point of the state. Copies the
        ancestor chain of path and notifies the listeners. Writes
        past the end of a list are ignored."""
        try:
            self._state = set_in(self._state, _split(path), value)
        except IndexError as e:
            _logger.warning(f"Ignored write to '{path}': {e}")
            return
        for listener in list(self._listeners):
            listener(self._state)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback invoked after each state change.
        Returns a function that removes the registration."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---------------------------------------------------------------
    # rendering

    def interpolate(self, text: str) -> str:
        """Replace {{state.path}} markers with the current values.
        Missing values are rendered as empty strings."""

        def _resolve(match: re.Match[str]) -> str:
            try:
                value = self.get_value(match.group(1))
            except ValueError:
                return ""
            if value is None:
                return ""
            if isinstance(value, bool):
                return "true" if value else "false"
            return str(value)

        return _INTERPOLATION_RE.sub(_resolve, text)

    def render(self) -> RenderNode:
        return self._render(self.payload.layout)

    def _render(self, atom: Any) -> RenderNode:
        match atom:
            case TextAtom():
                return RenderNode(
                    kind="text",
                    props={
                        "content": self.interpolate(atom.content),
                        "variant": atom.variant,
                        "className": atom.class_name,
                    },
                )
            case SliderAtom():
                value = self.get_value(atom.bind)
                return RenderNode(
                    kind="slider",
                    props={
                        "bind": atom.bind,
                        "value": _number(value, atom.min),
                        "min": atom.min,
                        "max": atom.max,
                        "step": atom.step,
                        "label": atom.label,
                    },
                )
            case SwitchAtom():
                return RenderNode(
                    kind="switch",
                    props={
                        "bind": atom.bind,
                        "checked": bool(self.get_value(atom.bind)),
                        "label": atom.label,
                    },
                )
            case ButtonAtom():
                return RenderNode(
                    kind="button",
                    props={"label": atom.label, "variant": atom.variant},
                )
            case CodeAtom():
                return RenderNode(
                    kind="code",
                    props={
                        "id": atom.id,
                        "language": atom.language,
                        "initialCode": atom.initial_code,
                        "readOnly": atom.read_only,
                        "runnable": atom.runnable,
                    },
                )
            case StackAtom():
                return RenderNode(
                    kind="stack",
                    props={
                        "direction": atom.direction,
                        "gap": atom.gap,
                        "className": atom.class_name,
                    },
                    children=[self._render(c) for c in atom.children],
                )
            case CardAtom():
                return RenderNode(
                    kind="card",
                    props={
                        "title": (
                            self.interpolate(atom.title)
                            if atom.title
                            else None
                        ),
                        "className": atom.class_name,
                    },
                    children=[self._render(c) for c in atom.children],
                )
            case _:
                raise TypeError(f"Unknown atom: {atom!r}")

    # ---------------------------------------------------------------
    # interaction

    def change(self, atom: SliderAtom | SwitchAtom, value: Any) -> None:
        """Input from a bound atom."""
        if isinstance(atom, SliderAtom):
            value = min(max(_number(value, atom.min), atom.min), atom.max)
        else:
            value = bool(value)
        self.update_state(atom.bind, value)

    def click(self, button: ButtonAtom) -> None:
        for action in button.on_click:
            self.dispatch(action)

    def dispatch(self, action: Action) -> None:
        """Execute one action against the state."""
        path: str | None = action.path
        match action.type:
            case 'set':
                self.update_state(path, action.value)  # type: ignore
            case 'increment':
                current = _number(self.get_value(path))  # type: ignore
                self.update_state(
                    path, current + (_number(action.value) or 1)  # type: ignore
                )
            case 'decrement':
                current = _number(self.get_value(path))  # type: ignore
                self.update_state(
                    path, current - (_number(action.value) or 1)  # type: ignore
                )
            case 'toggle':
                self.update_state(
                    path, not bool(self.get_value(path))  # type: ignore
                )
            case 'push':
                current = self.get_value(path)  # type: ignore
                items = list(current) if isinstance(current, list) else []
                self.update_state(path, items + [action.value])  # type: ignore
            case 'run_code':
                if self._code_runner is None:
                    _logger.warning("No code runner for 'run_code' action")
                    return
                result = self._code_runner(action.target, self._state)
                if path is not None:
                    self.update_state(path, result)
            case 'emit':
                trigger: str | None = action.trigger
                if trigger is None:
                    return
                if trigger == SUBMIT_TRIGGER:
                    trigger = FINISHED_TRIGGER
                if self._on_action is not None:
                    self._on_action(trigger, self._state)
