"""Tests for edge classification, dependency graphs, cycle checks and ordering."""

import pytest

from flowdrop.services.pipeline.exceptions import (
    CircularDependencyError,
    GraphError,
    SchedulingInvariantError,
)
from flowdrop.services.pipeline.graph import (
    build_dependency_graph,
    build_edge_info,
    calculate_job_priority,
    compute_execution_order,
    extract_branch_name,
    is_trigger_handle,
    validate_dependency_graph,
)
from flowdrop.services.pipeline.models import DependencyGraph, WorkflowEdge, WorkflowNode


def nodes(*ids):
    return [WorkflowNode(id=i, label=i) for i in ids]


def data_edge(source, target):
    return WorkflowEdge(source, target, f"{source}-output-value", f"{target}-input-value")


def trigger_edge(source, target, branch=None):
    source_handle = f"{source}-output-{branch}" if branch else f"{source}-done"
    return WorkflowEdge(source, target, source_handle, f"{target}-input-trigger")


class TestHandleParsing:
    """Trigger detection and branch extraction from handle strings."""

    def test_trigger_handle_suffix(self):
        assert is_trigger_handle("node.1-input-trigger")
        assert not is_trigger_handle("node.1-input-text")
        assert not is_trigger_handle("node.1-input-trigger-extra")
        assert not is_trigger_handle("")

    def test_branch_name_from_gateway_output(self):
        assert extract_branch_name("if_else.1-output-True") == "True"
        assert extract_branch_name("text_input.1-output-text") == "text"

    def test_branch_name_requires_exactly_two_parts(self):
        assert extract_branch_name("a-output-b-output-c") == ""
        assert extract_branch_name("plain-handle") == ""
        assert extract_branch_name("") == ""


class TestEdgeInfo:
    """Per-node incoming/outgoing edge index."""

    def test_every_node_has_an_entry(self):
        info = build_edge_info(nodes("A", "B", "lonely"), [data_edge("A", "B")])

        assert list(info) == ["A", "B", "lonely"]
        assert info["lonely"].incoming == []
        assert info["lonely"].outgoing == []

    def test_edge_is_indexed_at_both_endpoints(self):
        info = build_edge_info(nodes("A", "B"), [trigger_edge("A", "B", branch="true")])

        incoming = info["B"].incoming[0]
        assert incoming == info["A"].outgoing[0]
        assert incoming.is_trigger
        assert incoming.branch_name == "true"

    def test_parallel_edges_are_preserved(self):
        edges = [data_edge("A", "B"), data_edge("A", "B")]
        info = build_edge_info(nodes("A", "B"), edges)

        assert len(info["B"].incoming) == 2
        assert len(info["A"].outgoing) == 2

    def test_edge_to_unknown_node_only_indexed_at_known_endpoint(self):
        info = build_edge_info(nodes("A"), [data_edge("A", "ghost")])

        assert len(info["A"].outgoing) == 1
        assert "ghost" not in info


class TestDependencyGraph:
    """Dependency graph construction."""

    def test_target_depends_on_source(self):
        graph = build_dependency_graph(nodes("A", "B", "C"),
                                       [data_edge("A", "B"), data_edge("B", "C")])

        assert graph.to_dict() == {"A": [], "B": ["A"], "C": ["B"]}

    def test_parallel_edges_yield_one_dependency(self):
        graph = build_dependency_graph(nodes("A", "B"),
                                       [data_edge("A", "B"), trigger_edge("A", "B")])

        assert graph.dependencies_of("B") == ["A"]

    def test_self_loop_is_recorded(self):
        graph = build_dependency_graph(nodes("A"), [data_edge("A", "A")])
        assert graph.dependencies_of("A") == ["A"]

    def test_unknown_source_is_dropped(self):
        graph = build_dependency_graph(nodes("B"), [data_edge("ghost", "B")])
        assert graph.dependencies_of("B") == []

    def test_dependents_of(self):
        graph = DependencyGraph.from_dict({"A": [], "B": ["A"], "C": ["A"]})
        assert graph.dependents_of("A") == ["B", "C"]


class TestCycleValidation:
    """DFS cycle detection."""

    def test_dag_passes(self):
        graph = DependencyGraph.from_dict({"A": [], "B": ["A"], "C": ["A", "B"]})
        validate_dependency_graph(graph)

    def test_two_node_cycle_raises(self):
        graph = build_dependency_graph(nodes("A", "B"),
                                       [data_edge("A", "B"), data_edge("B", "A")])
        with pytest.raises(CircularDependencyError):
            validate_dependency_graph(graph)

    def test_self_loop_raises(self):
        graph = DependencyGraph.from_dict({"A": ["A"]})
        with pytest.raises(CircularDependencyError) as exc_info:
            validate_dependency_graph(graph)
        assert exc_info.value.node_id == "A"

    def test_longer_cycle_behind_a_dag_prefix_raises(self):
        graph = DependencyGraph.from_dict({
            "start": [],
            "a": ["start", "c"],
            "b": ["a"],
            "c": ["b"],
        })
        with pytest.raises(CircularDependencyError):
            validate_dependency_graph(graph)

    def test_unknown_reference_raises_graph_error(self):
        graph = DependencyGraph.from_dict({"A": ["missing"]})
        with pytest.raises(GraphError) as exc_info:
            validate_dependency_graph(graph)
        assert not isinstance(exc_info.value, CircularDependencyError)

    def test_validation_does_not_mutate_graph(self):
        graph = DependencyGraph.from_dict({"A": [], "B": ["A"]})
        before = graph.to_dict()
        validate_dependency_graph(graph)
        assert graph.to_dict() == before

    def test_long_chain_does_not_hit_recursion_limit(self):
        ids = [f"n{i}" for i in range(5000)]
        edges = [data_edge(a, b) for a, b in zip(ids, ids[1:])]
        graph = build_dependency_graph(nodes(*ids), edges)

        validate_dependency_graph(graph)


class TestExecutionOrder:
    """Kahn ordering and priorities."""

    def test_linear_chain(self):
        graph = build_dependency_graph(nodes("A", "B", "C"),
                                       [data_edge("A", "B"), data_edge("B", "C")])
        order = compute_execution_order(graph)

        assert order.order == {"A": 0, "B": 1, "C": 2}
        assert order.priorities == {"A": 0, "B": 15, "C": 25}
        assert order.sequence() == ["A", "B", "C"]

    def test_every_edge_goes_forward(self):
        edges = [data_edge("A", "B"), data_edge("A", "C"),
                 data_edge("B", "D"), data_edge("C", "D")]
        graph = build_dependency_graph(nodes("D", "C", "B", "A"), edges)
        order = compute_execution_order(graph)

        for edge in edges:
            assert order.order[edge.source_node_id] < order.order[edge.target_node_id]

    def test_ties_keep_input_order(self):
        order = compute_execution_order(build_dependency_graph(nodes("B", "A", "C"), []))
        assert order.sequence() == ["B", "A", "C"]

    def test_parallel_edges_do_not_stall_ordering(self):
        graph = build_dependency_graph(nodes("A", "B"),
                                       [data_edge("A", "B"), data_edge("A", "B")])
        order = compute_execution_order(graph)
        assert order.order == {"A": 0, "B": 1}

    def test_priority_formula(self):
        assert calculate_job_priority(0, 0) == 0
        assert calculate_job_priority(3, 2) == 40

    def test_unvalidated_cycle_is_an_invariant_violation(self):
        graph = DependencyGraph.from_dict({"A": [], "B": ["C"], "C": ["B"]})
        with pytest.raises(SchedulingInvariantError) as exc_info:
            compute_execution_order(graph)
        assert sorted(exc_info.value.unscheduled) == ["B", "C"]
