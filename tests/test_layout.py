"""Tests for the layered auto-layout."""

import math

from app.flow_builder.graph import FlowStep, FlowTransition, Position
from app.flow_builder.layout import (
    LayeredLayout,
    LayoutSettings,
    assign_ranks,
    break_cycles,
    connected_components,
    count_crossings,
)


def _steps(*ids):
    return [FlowStep(id=i, position=Position(x=999, y=999)) for i in ids]


def _edges(*pairs):
    return [FlowTransition(id=f"{s}-{t}", source=s, target=t, source_handle="b") for s, t in pairs]


def _layout():
    return LayeredLayout(LayoutSettings())


class TestRanking:
    def test_longest_path(self):
        ranks = assign_ranks(["a", "b", "c", "d"], [("a", "b"), ("b", "c"), ("a", "c"), ("c", "d")])
        assert ranks == {"a": 0, "b": 1, "c": 2, "d": 3}

    def test_cycle_is_broken(self):
        edges = [("a", "b"), ("b", "a")]
        assert break_cycles(["a", "b"], edges) == [("a", "b")]
        assert assign_ranks(["a", "b"], edges) == {"a": 0, "b": 1}

    def test_components(self):
        comps = connected_components(["a", "b", "c", "d"], [("a", "b"), ("d", "c")])
        assert comps == [["a", "b"], ["c", "d"]]

    def test_crossings(self):
        layers = [["a", "b"], ["c", "d"]]
        rank = {"a": 0, "b": 0, "c": 1, "d": 1}
        assert count_crossings(layers, [("a", "d"), ("b", "c")], rank) == 1
        assert count_crossings(layers, [("a", "c"), ("b", "d")], rank) == 0


class TestLayeredLayout:
    def test_empty(self):
        assert _layout().layout([], []) == []

    def test_left_to_right_chain(self):
        steps = _steps("a", "b", "c")
        result = {s.id: s.position for s in _layout().layout(steps, _edges(("a", "b"), ("b", "c")), "LR")}

        # margin 20, default width 260, rank spacing 90
        assert result["a"] == Position(x=20, y=20)
        assert result["b"] == Position(x=20 + 260 + 90, y=20)
        assert result["c"] == Position(x=20 + 2 * (260 + 90), y=20)

    def test_top_to_bottom_chain(self):
        steps = _steps("a", "b")
        result = {s.id: s.position for s in _layout().layout(steps, _edges(("a", "b")), "TB")}

        assert result["a"] == Position(x=20, y=20)
        assert result["b"] == Position(x=20, y=20 + 140 + 90)

    def test_siblings_separated_by_node_spacing(self):
        steps = _steps("root", "left", "right")
        result = {
            s.id: s.position
            for s in _layout().layout(steps, _edges(("root", "left"), ("root", "right")), "LR")
        }

        assert result["left"].x == result["right"].x
        assert abs(result["left"].y - result["right"].y) == 140 + 50
        # the parent is centred on its two children
        assert result["root"].y == (result["left"].y + result["right"].y) / 2

    def test_disconnected_components_do_not_overlap(self):
        steps = _steps("a", "b", "c", "d")
        result = {s.id: s.position for s in _layout().layout(steps, _edges(("a", "b"), ("c", "d")), "LR")}

        assert result["a"].y == result["b"].y
        assert result["c"].y == result["d"].y
        assert result["c"].y >= result["a"].y + 140 + 50

    def test_deterministic(self):
        steps = _steps("a", "b", "c", "d", "e")
        edges = _edges(("a", "b"), ("a", "c"), ("b", "d"), ("c", "d"), ("e", "d"))

        first = [s.model_dump() for s in _layout().layout(steps, edges, "LR")]
        second = [s.model_dump() for s in _layout().layout(steps, edges, "LR")]
        assert first == second

    def test_cycle_terminates_with_finite_positions(self):
        steps = _steps("a", "b")
        result = _layout().layout(steps, _edges(("a", "b"), ("b", "a")), "LR")

        assert len(result) == 2
        for step in result:
            assert math.isfinite(step.position.x)
            assert math.isfinite(step.position.y)

    def test_inputs_untouched_and_measured_sizes_used(self):
        steps = _steps("a", "b")
        steps[0].width = 400
        result = _layout().layout(steps, _edges(("a", "b")), "LR")

        assert steps[0].position == Position(x=999, y=999)
        assert result[1].position.x == 20 + 400 + 90

    def test_unknown_direction_falls_back(self):
        steps = _steps("a", "b")
        edges = _edges(("a", "b"))
        assert (
            [s.position for s in _layout().layout(steps, edges, "diagonal")]
            == [s.position for s in _layout().layout(steps, edges, "LR")]
        )

    def test_dangling_and_self_edges_ignored(self):
        steps = _steps("a")
        result = _layout().layout(steps, _edges(("a", "a"), ("a", "ghost")), "LR")
        assert result[0].position == Position(x=20, y=20)
