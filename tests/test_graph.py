"""
Tests for StepGraph: cycles, orphans, readiness and execution levels.
"""

import pytest

from sagaflow import (
    CircularDependencyError,
    SagaDefinition,
    SagaStep,
    Step,
    StepGraph,
    Trigger,
    WorkflowDefinition,
)
from sagaflow.types import StepType


def _graph(flow=None, dependencies=None, error_handlers=None, entry_points=()):
    flow = flow or {}
    dependencies = dependencies or {}
    order = list(dict.fromkeys([*flow, *dependencies]))
    return StepGraph(order, flow, dependencies, error_handlers, entry_points)


class TestCycles:
    """Cycle detection over flow and dependency edges"""

    def test_acyclic_graph(self):
        """Test a diamond has no cycle"""
        graph = _graph({"a": ["b", "c"], "b": ["d"], "c": ["d"], "d": []})

        assert graph.find_cycle() is None
        assert not graph.has_cycle()

    def test_back_edge_in_flow(self):
        """Test a next pointing back is found with its participants"""
        graph = _graph({"a": ["b"], "b": ["c"], "c": ["a"]})

        assert graph.find_cycle() == ["a", "b", "c", "a"]

    def test_self_loop(self):
        """Test a step that routes to itself is a cycle"""
        graph = _graph({"a": ["a"]})

        assert graph.find_cycle() == ["a", "a"]

    def test_cycle_through_dependencies(self):
        """Test mutual dependencies form a cycle"""
        graph = _graph(dependencies={"a": ["b"], "b": ["a"]})

        cycle = graph.find_cycle()
        assert cycle is not None
        assert set(cycle) == {"a", "b"}

    def test_cycle_mixing_flow_and_dependency(self):
        """Test a -> b by flow and a depending on b is a cycle"""
        graph = _graph(flow={"a": ["b"], "b": []}, dependencies={"a": ["b"]})

        assert graph.has_cycle()

    def test_unknown_targets_are_ignored(self):
        """Test dangling references do not break cycle detection"""
        graph = _graph({"a": ["ghost"]})

        assert graph.find_cycle() is None
        assert graph.dangling_references() == [("a", "next", "ghost")]

    def test_cycle_in_second_component(self):
        """Test cycles are found outside the first root's component"""
        graph = _graph({"a": [], "b": ["c"], "c": ["b"]})

        assert graph.find_cycle() == ["b", "c", "b"]


class TestOrphans:
    """Steps referenced by nothing"""

    def test_entry_points_are_referenced(self):
        """Test trigger entry steps are not orphans"""
        graph = _graph({"a": ["b"], "b": [], "c": []}, entry_points=["a"])

        assert graph.orphans() == ["c"]

    def test_every_reference_kind_counts(self):
        """Test next, dependencies and error handlers all mark a step referenced"""
        graph = _graph(
            flow={"a": ["b"], "b": [], "c": [], "handler": []},
            dependencies={"c": ["b"]},
            error_handlers={"a": "handler"},
            entry_points=["a"],
        )

        assert graph.orphans() == ["c"]

    def test_self_reference_does_not_count(self):
        """Test a step pointing only at itself is still orphaned"""
        graph = _graph({"a": [], "loop": ["loop"]}, entry_points=["a"])

        assert graph.orphans() == ["loop"]


class TestReadiness:
    """Dependency checks used by the coordinator"""

    def test_ready_set(self):
        """Test only steps with all dependencies completed are ready"""
        graph = _graph(dependencies={"a": [], "b": ["a"], "c": ["a", "b"]})

        assert graph.ready_set(completed=[]) == ["a"]
        assert graph.ready_set(completed=["a"]) == ["b"]
        assert graph.ready_set(completed=["a", "b"]) == ["c"]
        assert graph.ready_set(completed=["a", "b", "c"]) == []

    def test_ready_set_candidates(self):
        """Test candidates restrict the answer"""
        graph = _graph({"a": [], "b": [], "c": []})

        assert graph.ready_set(completed=[], candidates=["c", "a"]) == ["a", "c"]

    def test_missing_dependencies(self):
        """Test the unmet dependencies are listed"""
        graph = _graph(dependencies={"a": [], "b": [], "c": ["a", "b"]})

        assert graph.missing_dependencies("c", ["a"]) == ["b"]
        assert not graph.dependencies_met("c", ["a"])
        assert graph.dependents("a") == ["c"]


class TestLevels:
    """Kahn levels"""

    def test_levels_group_independent_steps(self):
        """Test independent steps share a level"""
        graph = _graph({"a": ["b", "c"], "b": ["d"], "c": ["d"], "d": []})

        assert graph.topological_levels() == [["a"], ["b", "c"], ["d"]]

    def test_levels_reject_cycles(self):
        """Test ordering a cyclic graph raises with the cycle"""
        graph = _graph({"a": ["b"], "b": ["a"]})

        with pytest.raises(CircularDependencyError) as exc_info:
            graph.topological_levels()

        assert exc_info.value.cycle == ["a", "b", "a"]


class TestConstructors:
    """Graphs built from definitions"""

    def test_from_workflow(self):
        """Test branches, otherwise and triggers become graph structure"""
        definition = WorkflowDefinition(
            id="wf",
            name="wf",
            version="1",
            triggers=(Trigger("order.created", "check"),),
            steps=(
                Step(
                    id="check",
                    type=StepType.CONDITION,
                    config={"when": "data.vip", "otherwise": ["fan_out"]},
                    next=("vip",),
                ),
                Step(id="vip"),
                Step(id="fan_out", type=StepType.PARALLEL, config={"branches": ["email", "sms"]}),
                Step(id="email"),
                Step(id="sms"),
            ),
        )

        graph = StepGraph.from_workflow(definition)

        assert graph.entry_points == ["check"]
        assert graph.successors("check") == ["vip", "fan_out"]
        assert graph.successors("fan_out") == ["email", "sms"]
        assert graph.orphans() == []

    def test_from_saga(self):
        """Test saga steps are all entry points and keep their dependencies"""
        definition = SagaDefinition(
            id="s",
            name="s",
            steps=(SagaStep("a", "do_a"), SagaStep("b", "do_b", dependencies=("a",))),
        )

        graph = StepGraph.from_saga(definition)

        assert graph.orphans() == []
        assert graph.dependents("a") == ["b"]
        assert graph.topological_levels() == [["a"], ["b"]]

    def test_duplicate_ids(self):
        """Test repeated ids are reported once"""
        graph = StepGraph(["a", "b", "a", "a"])

        assert graph.duplicate_ids() == ["a"]
        assert len(graph) == 2
