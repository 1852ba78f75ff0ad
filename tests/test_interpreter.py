"""Tests of the reactive interpreter of interactive app payloads"""

import unittest

from reading_tutor.ui.interpreter import (
    FINISHED_TRIGGER,
    ReactiveSession,
    get_in,
    set_in,
)
from reading_tutor.ui.schemas import (
    Action,
    AppPayload,
    ButtonAtom,
    SliderAtom,
    SwitchAtom,
)

# pyright: basic


def make_payload(layout: dict | None = None, state: dict | None = None):
    return AppPayload.model_validate(
        {
            "initialState": (
                state
                if state is not None
                else {
                    "physics": {"mass": 1, "speed": 2},
                    "ui": {"visible": False},
                    "log": [],
                }
            ),
            "layout": layout
            or {
                "type": "stack",
                "children": [
                    {
                        "type": "text",
                        "content": "Mass: {{ state.physics.mass }} kg",
                    },
                    {
                        "type": "slider",
                        "bind": "physics.mass",
                        "min": 0,
                        "max": 10,
                    },
                    {"type": "switch", "bind": "ui.visible"},
                ],
            },
        }
    )


class TestPathHelpers(unittest.TestCase):

    def test_get_in(self):
        tree = {"a": {"b": [10, {"c": 3}]}}
        self.assertEqual(get_in(tree, "a.b.1.c"), 3)
        self.assertEqual(get_in(tree, "state.a.b.0"), 10)
        self.assertIsNone(get_in(tree, "a.x.y"))
        self.assertIsNone(get_in(tree, "a.b.5"))

    def test_set_in_copies_ancestors_only(self):
        other = {"deep": [1, 2]}
        tree = {"a": {"b": 1, "sibling": {"k": "v"}}, "other": other}
        updated = set_in(tree, ["a", "b"], 2)

        self.assertEqual(updated["a"]["b"], 2)
        self.assertEqual(tree["a"]["b"], 1)
        self.assertIsNot(updated, tree)
        self.assertIsNot(updated["a"], tree["a"])
        self.assertIs(updated["other"], other)
        self.assertIs(updated["a"]["sibling"], tree["a"]["sibling"])

    def test_set_in_creates_missing(self):
        updated = set_in({}, ["x", "y"], 5)
        self.assertEqual(updated, {"x": {"y": 5}})

    def test_set_in_list_index(self):
        tree = {"items": [{"n": 1}, {"n": 2}]}
        updated = set_in(tree, ["items", "1", "n"], 9)
        self.assertEqual(updated["items"][1]["n"], 9)
        self.assertIs(updated["items"][0], tree["items"][0])
        self.assertEqual(tree["items"][1]["n"], 2)

    def test_set_in_appends_at_end(self):
        updated = set_in({"items": [1]}, ["items", "1"], 2)
        self.assertEqual(updated["items"], [1, 2])

    def test_set_in_index_past_end(self):
        with self.assertRaises(IndexError):
            set_in({"items": []}, ["items", "3"], 1)


class TestReactiveSession(unittest.TestCase):

    def test_initial_state_not_shared(self):
        payload = make_payload()
        session = ReactiveSession(payload)
        session.update_state("physics.mass", 5)
        self.assertEqual(payload.initial_state["physics"]["mass"], 1)

    def test_update_state_preserves_unrelated_subtrees(self):
        session = ReactiveSession(make_payload())
        before = session.state
        session.update_state("physics.mass", 3)
        self.assertIsNot(session.state, before)
        self.assertIs(session.state["ui"], before["ui"])
        self.assertIs(session.state["log"], before["log"])
        self.assertEqual(session.get_value("physics.speed"), 2)

    def test_subscribe(self):
        session = ReactiveSession(make_payload())
        seen: list[dict] = []
        unsubscribe = session.subscribe(seen.append)
        session.update_state("ui.visible", True)
        unsubscribe()
        session.update_state("ui.visible", False)
        self.assertEqual(len(seen), 1)
        self.assertTrue(seen[0]["ui"]["visible"])

    def test_render_interpolates(self):
        session = ReactiveSession(make_payload())
        tree = session.render()
        self.assertEqual(tree.kind, "stack")
        self.assertEqual(tree.children[0].props["content"], "Mass: 1 kg")
        session.update_state("physics.mass", 4)
        tree = session.render()
        self.assertEqual(tree.children[0].props["content"], "Mass: 4 kg")
        self.assertEqual(tree.children[1].props["value"], 4)
        self.assertFalse(tree.children[2].props["checked"])

    def test_interpolate_missing_and_bool(self):
        session = ReactiveSession(make_payload())
        self.assertEqual(session.interpolate("[{{state.nope}}]"), "[]")
        self.assertEqual(
            session.interpolate("{{state.ui.visible}}"), "false"
        )

    def test_change_clamps_slider(self):
        session = ReactiveSession(make_payload())
        slider = SliderAtom(bind="physics.mass", min=0, max=10)
        session.change(slider, 42)
        self.assertEqual(session.get_value("physics.mass"), 10)
        session.change(SwitchAtom(bind="ui.visible"), 1)
        self.assertIs(session.get_value("ui.visible"), True)

    def test_click_write_past_end_ignored(self):
        session = ReactiveSession(make_payload(state={"items": []}))
        button = ButtonAtom.model_validate(
            {
                "type": "button",
                "label": "Add",
                "onClick": [
                    {"type": "set", "path": "state.items.999999", "value": 1},
                    {"type": "set", "path": "state.items.0", "value": 2},
                ],
            }
        )
        with self.assertLogs("reading_tutor.ui.interpreter", "WARNING"):
            session.click(button)
        self.assertEqual(session.state["items"], [2])

    def test_dispatch_mutations(self):
        session = ReactiveSession(make_payload())
        session.dispatch(Action(type="set", path="physics.speed", value=7))
        self.assertEqual(session.get_value("physics.speed"), 7)

        session.dispatch(Action(type="increment", path="physics.mass"))
        self.assertEqual(session.get_value("physics.mass"), 2)
        session.dispatch(
            Action(type="increment", path="physics.mass", value=3)
        )
        self.assertEqual(session.get_value("physics.mass"), 5)
        session.dispatch(
            Action(type="decrement", path="physics.mass", value=2)
        )
        self.assertEqual(session.get_value("physics.mass"), 3)

        session.dispatch(Action(type="toggle", path="ui.visible"))
        self.assertTrue(session.get_value("ui.visible"))

        session.dispatch(Action(type="push", path="log", value="a"))
        session.dispatch(Action(type="push", path="log", value="b"))
        self.assertEqual(session.get_value("log"), ["a", "b"])

    def test_increment_missing_value(self):
        session = ReactiveSession(make_payload(state={}))
        session.dispatch(Action(type="increment", path="counter"))
        self.assertEqual(session.get_value("counter"), 1)

    def test_run_code(self):
        calls: list[tuple] = []

        def runner(target, state):
            calls.append((target, state))
            return "ok"

        session = ReactiveSession(make_payload(), code_runner=runner)
        session.dispatch(
            Action(type="run_code", target="editor", path="output")
        )
        self.assertEqual(calls[0][0], "editor")
        self.assertEqual(session.get_value("output"), "ok")

    def test_run_code_without_runner(self):
        session = ReactiveSession(make_payload())
        before = session.state
        session.dispatch(Action(type="run_code", target="editor"))
        self.assertIs(session.state, before)

    def test_click_runs_actions_in_order(self):
        received: list[tuple[str, dict]] = []
        session = ReactiveSession(
            make_payload(),
            on_action=lambda trigger, state: received.append(
                (trigger, dict(state))
            ),
        )
        button = ButtonAtom(
            label="Submit",
            on_click=[
                Action(type="set", path="physics.mass", value=9),
                Action(type="emit", value="submit_success"),
            ],
        )
        session.click(button)
        self.assertEqual(len(received), 1)
        trigger, state = received[0]
        self.assertEqual(trigger, FINISHED_TRIGGER)
        self.assertEqual(state["physics"]["mass"], 9)

    def test_emit_other_trigger(self):
        received: list[str] = []
        session = ReactiveSession(
            make_payload(),
            on_action=lambda trigger, state: received.append(trigger),
        )
        session.dispatch(Action(type="emit", target="confetti"))
        self.assertEqual(received, ["confetti"])


if __name__ == "__main__":
    unittest.main()
