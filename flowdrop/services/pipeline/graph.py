"""Workflow graph analysis for job generation.

Turns a node/edge workflow into:
- a per-node edge index (incoming/outgoing, trigger vs. data, branch names)
- a dependency graph (node -> upstream nodes)
and then validates it (DFS cycle detection) and orders it (Kahn's algorithm)
to assign job priorities.

Everything here is pure: inputs are never mutated and no I/O happens.
"""

from collections import deque
from typing import Dict, List, Sequence, Set

from flowdrop.core.logging import get_logger
from flowdrop.constants import (
    TRIGGER_HANDLE_SUFFIX,
    BRANCH_HANDLE_SEPARATOR,
    PRIORITY_ORDER_WEIGHT,
    PRIORITY_DEPENDENCY_WEIGHT,
)
from .exceptions import CircularDependencyError, GraphError, SchedulingInvariantError
from .models import (
    NodeId,
    WorkflowNode,
    WorkflowEdge,
    EdgeRecord,
    EdgeInfo,
    DependencyGraph,
    ExecutionOrder,
)

logger = get_logger(__name__)


# =============================================================================
# HANDLE PARSING
# =============================================================================

def is_trigger_handle(target_handle: str) -> bool:
    """Check if a target handle is a trigger input ("{nodeId}-input-trigger")."""
    return bool(target_handle) and target_handle.endswith(TRIGGER_HANDLE_SUFFIX)


def extract_branch_name(source_handle: str) -> str:
    """Extract the branch name from a gateway output handle.

    Examples:
        >>> extract_branch_name("if_else.1-output-True")
        "True"
        >>> extract_branch_name("text_input.1-output-text")
        "text"
        >>> extract_branch_name("plain-handle")
        ""

    Returns an empty string unless splitting on "-output-" yields exactly
    two parts.
    """
    if not source_handle or BRANCH_HANDLE_SEPARATOR not in source_handle:
        return ""
    parts = source_handle.split(BRANCH_HANDLE_SEPARATOR)
    if len(parts) != 2:
        return ""
    return parts[1]


def classify_edge(edge: WorkflowEdge) -> EdgeRecord:
    """Build the EdgeRecord for a raw workflow edge."""
    return EdgeRecord(
        source=edge.source_node_id,
        target=edge.target_node_id,
        source_handle=edge.source_handle,
        target_handle=edge.target_handle,
        is_trigger=is_trigger_handle(edge.target_handle),
        branch_name=extract_branch_name(edge.source_handle),
        edge_id=edge.edge_id,
    )


# =============================================================================
# GRAPH BUILDING
# =============================================================================

def build_edge_info(nodes: Sequence[WorkflowNode],
                    edges: Sequence[WorkflowEdge]) -> Dict[NodeId, EdgeInfo]:
    """Build the incoming/outgoing edge index for every node.

    Every node gets an entry, even without edges. Parallel edges are kept
    as separate records. An edge touching an unknown node is only indexed
    at the endpoint that exists.

    Args:
        nodes: Workflow nodes
        edges: Workflow edges

    Returns:
        EdgeInfo keyed by node id, in node order
    """
    edge_info: Dict[NodeId, EdgeInfo] = {node.id: EdgeInfo() for node in nodes}

    for edge in edges:
        record = classify_edge(edge)

        if record.target in edge_info:
            edge_info[record.target].incoming.append(record)
        if record.source in edge_info:
            edge_info[record.source].outgoing.append(record)

    logger.debug("Built edge information",
                 node_count=len(edge_info),
                 edge_count=len(edges),
                 trigger_edges=sum(1 for e in edges if is_trigger_handle(e.target_handle)))
    return edge_info


def build_dependency_graph(nodes: Sequence[WorkflowNode],
                           edges: Sequence[WorkflowEdge]) -> DependencyGraph:
    """Build the dependency graph: target depends on source for every edge.

    Self-loops are recorded (and rejected later by cycle validation).
    Dependencies on nodes that are not part of the workflow are dropped.

    Args:
        nodes: Workflow nodes
        edges: Workflow edges

    Returns:
        DependencyGraph with one key per node
    """
    graph = DependencyGraph()
    for node in nodes:
        graph.add_node(node.id)

    for edge in edges:
        source = edge.source_node_id
        target = edge.target_node_id
        if target not in graph:
            continue
        if source not in graph:
            logger.warning("Dropping dependency on unknown node",
                           source=source, target=target, edge_id=edge.edge_id)
            continue
        graph.add_dependency(target, source)

    return graph


def build_dependents_index(graph: DependencyGraph) -> Dict[NodeId, List[NodeId]]:
    """Invert the graph: node -> nodes that depend on it, in key order."""
    dependents: Dict[NodeId, List[NodeId]] = {node_id: [] for node_id in graph}
    for target, deps in graph.dependencies.items():
        for dep in deps:
            if dep in dependents:
                dependents[dep].append(target)
    return dependents


# =============================================================================
# VALIDATION
# =============================================================================

def validate_dependency_references(graph: DependencyGraph) -> None:
    """Raise GraphError if a dependency names a node missing from the graph."""
    for node_id, deps in graph.dependencies.items():
        for dep in deps:
            if dep not in graph:
                raise GraphError(f"Node {node_id} depends on unknown node {dep}")


def validate_dependency_graph(graph: DependencyGraph) -> None:
    """Reject graphs with unknown references or directed cycles.

    DFS over the dependency -> dependent relation from every unvisited node,
    in key order, tracking which nodes are on the current path. Stops at
    the first back-edge found.

    Args:
        graph: DependencyGraph to validate (not modified)

    Raises:
        GraphError: If a dependency references an unknown node
        CircularDependencyError: If a cycle exists
    """
    validate_dependency_references(graph)
    dependents = build_dependents_index(graph)

    visited: Set[NodeId] = set()
    on_stack: Set[NodeId] = set()

    for root in graph:
        if root in visited:
            continue

        # Iterative DFS; each frame is (node, iterator over its dependents)
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(dependents[root]))]

        while stack:
            node_id, children = stack[-1]
            advanced = False
            for child in children:
                if child in on_stack:
                    logger.warning("Circular dependency detected",
                                   node_id=child, via=node_id)
                    raise CircularDependencyError(child)
                if child not in visited:
                    visited.add(child)
                    on_stack.add(child)
                    stack.append((child, iter(dependents[child])))
                    advanced = True
                    break
            if not advanced:
                on_stack.discard(node_id)
                stack.pop()


# =============================================================================
# ORDERING
# =============================================================================

def calculate_job_priority(rank: int, dependency_count: int) -> int:
    """Priority heuristic; lower runs earlier when several jobs are ready."""
    return rank * PRIORITY_ORDER_WEIGHT + dependency_count * PRIORITY_DEPENDENCY_WEIGHT


def compute_execution_order(graph: DependencyGraph) -> ExecutionOrder:
    """Compute topological ranks and priorities with Kahn's algorithm.

    Zero in-degree nodes are seeded in key order and ties keep input order.
    Must only be called on a graph that passed validate_dependency_graph.

    Args:
        graph: Validated DependencyGraph

    Returns:
        ExecutionOrder with rank and priority for every node

    Raises:
        SchedulingInvariantError: If the queue drains before every node is ranked
    """
    dependents = build_dependents_index(graph)
    in_degree: Dict[NodeId, int] = {
        node_id: len(deps) for node_id, deps in graph.dependencies.items()
    }

    queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
    result = ExecutionOrder()
    rank = 0

    while queue:
        current = queue.popleft()
        result.order[current] = rank
        result.priorities[current] = calculate_job_priority(
            rank, len(graph.dependencies[current])
        )
        rank += 1

        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(result.order) != len(graph):
        unscheduled = [n for n in graph if n not in result.order]
        logger.error("Topological order incomplete", unscheduled=unscheduled)
        raise SchedulingInvariantError(unscheduled)

    logger.debug("Computed execution order",
                 node_count=len(result.order),
                 sequence=result.sequence())
    return result
