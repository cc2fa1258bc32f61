"""Pipeline and job state models.

Typed records for the workflow graph captured at job generation time and for
the Job/Pipeline records persisted by a JobRepository.
All records are JSON-serializable via to_dict()/from_dict().
"""

import copy
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, NewType, Iterable, Iterator

from flowdrop.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_CONCURRENT_JOBS,
    DEFAULT_JOB_PRIORITY_STRATEGY,
    RETRY_STRATEGY_INDIVIDUAL,
)

NodeId = NewType("NodeId", str)
JobId = NewType("JobId", str)
PipelineId = NewType("PipelineId", str)


class JobStatus(str, Enum):
    """Job execution states.

    State transitions:
        PENDING -> RUNNING -> COMPLETED
                           -> FAILED
                           -> PENDING (retry, while retries remain)
        PENDING/RUNNING -> CANCELLED
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = frozenset([
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
])


class PipelineStatus(str, Enum):
    """Pipeline execution states."""
    PENDING = "pending"        # Created, jobs generated, not started
    RUNNING = "running"        # Scheduling ticks are active
    PAUSED = "paused"          # User paused, no new jobs are claimed
    COMPLETED = "completed"    # No pending or running jobs remain
    FAILED = "failed"          # Stopped on failure or stalled
    CANCELLED = "cancelled"    # User cancelled


# =============================================================================
# WORKFLOW GRAPH (input to job generation)
# =============================================================================

@dataclass(frozen=True)
class WorkflowNode:
    """A single node of a workflow as captured for job generation."""
    id: NodeId
    label: str = ""
    node_type_id: str = ""
    config: Dict[str, Any] = field(default_factory=dict)
    max_retries: int = DEFAULT_MAX_RETRIES
    # Raw editor data snapshot, becomes the job's input_data
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, node: Dict[str, Any],
                  default_max_retries: int = DEFAULT_MAX_RETRIES) -> "WorkflowNode":
        """Create from the editor's node JSON.

        The node type prefers metadata.executor_plugin, then metadata.id,
        then the top-level type. Config defaults from metadata.config are
        overridden by data.config.
        """
        node_id = str(node.get("id", ""))
        data = node.get("data") or {}
        metadata = data.get("metadata") or {}

        node_type_id = (
            metadata.get("executor_plugin")
            or metadata.get("id")
            or node.get("type")
            or ""
        )
        label = data.get("label") or metadata.get("name") or node_id

        config = dict(metadata.get("config") or {})
        config.update(data.get("config") or {})

        max_retries = default_max_retries
        if config.get("max_retries") is not None:
            max_retries = int(config["max_retries"])

        return cls(
            id=NodeId(node_id),
            label=label,
            node_type_id=node_type_id,
            config=config,
            max_retries=max_retries,
            data=copy.deepcopy(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "label": self.label,
            "node_type_id": self.node_type_id,
            "config": self.config,
            "max_retries": self.max_retries,
            "data": self.data,
        }


@dataclass(frozen=True)
class WorkflowEdge:
    """A connection between two node handles."""
    source_node_id: NodeId
    target_node_id: NodeId
    source_handle: str = ""
    target_handle: str = ""
    edge_id: Optional[str] = None

    @classmethod
    def from_dict(cls, edge: Dict[str, Any]) -> "WorkflowEdge":
        """Create from the editor's edge JSON (React Flow shape)."""
        return cls(
            source_node_id=NodeId(str(edge.get("source", ""))),
            target_node_id=NodeId(str(edge.get("target", ""))),
            source_handle=edge.get("sourceHandle") or "",
            target_handle=edge.get("targetHandle") or "",
            edge_id=edge.get("id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the editor's edge JSON."""
        return {
            "id": self.edge_id,
            "source": self.source_node_id,
            "target": self.target_node_id,
            "sourceHandle": self.source_handle,
            "targetHandle": self.target_handle,
        }


@dataclass
class Workflow:
    """Nodes and edges supplied by the workflow source."""
    id: str
    nodes: List[WorkflowNode] = field(default_factory=list)
    edges: List[WorkflowEdge] = field(default_factory=list)
    label: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  default_max_retries: int = DEFAULT_MAX_RETRIES) -> "Workflow":
        """Create from a raw workflow document."""
        return cls(
            id=str(data.get("id", "")),
            label=data.get("label") or data.get("name") or "",
            nodes=[WorkflowNode.from_dict(n, default_max_retries)
                   for n in data.get("nodes") or []],
            edges=[WorkflowEdge.from_dict(e) for e in data.get("edges") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


# =============================================================================
# DERIVED GRAPH STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class EdgeRecord:
    """One classified edge, stored at both of its endpoints."""
    source: NodeId
    target: NodeId
    source_handle: str = ""
    target_handle: str = ""
    is_trigger: bool = False
    branch_name: str = ""
    edge_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict (job metadata shape)."""
        return {
            "source": self.source,
            "target": self.target,
            "source_handle": self.source_handle,
            "target_handle": self.target_handle,
            "is_trigger": self.is_trigger,
            "branch_name": self.branch_name,
            "edge_id": self.edge_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EdgeRecord":
        """Create from dict (job metadata deserialization)."""
        return cls(
            source=NodeId(data.get("source", "")),
            target=NodeId(data.get("target", "")),
            source_handle=data.get("source_handle") or "",
            target_handle=data.get("target_handle") or "",
            is_trigger=bool(data.get("is_trigger", False)),
            branch_name=data.get("branch_name") or "",
            edge_id=data.get("edge_id"),
        )


@dataclass
class EdgeInfo:
    """Incoming and outgoing edges of a single node."""
    incoming: List[EdgeRecord] = field(default_factory=list)
    outgoing: List[EdgeRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incoming": [e.to_dict() for e in self.incoming],
            "outgoing": [e.to_dict() for e in self.outgoing],
        }


@dataclass
class DependencyGraph:
    """Mapping of node id to the upstream node ids it depends on.

    Dependency lists behave as ordered sets: no duplicates, first-seen order.
    Key order follows the workflow's node order.
    """
    dependencies: Dict[NodeId, List[NodeId]] = field(default_factory=dict)

    def add_node(self, node_id: NodeId) -> None:
        self.dependencies.setdefault(node_id, [])

    def add_dependency(self, node_id: NodeId, depends_on: NodeId) -> None:
        deps = self.dependencies.setdefault(node_id, [])
        if depends_on not in deps:
            deps.append(depends_on)

    def dependencies_of(self, node_id: NodeId) -> List[NodeId]:
        return list(self.dependencies.get(node_id, []))

    def dependents_of(self, node_id: NodeId) -> List[NodeId]:
        """Nodes that list node_id as a dependency, in key order."""
        return [
            target for target, deps in self.dependencies.items()
            if node_id in deps
        ]

    def node_ids(self) -> List[NodeId]:
        return list(self.dependencies.keys())

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.dependencies

    def __iter__(self) -> Iterator[NodeId]:
        return iter(self.dependencies)

    def __len__(self) -> int:
        return len(self.dependencies)

    def to_dict(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self.dependencies.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Iterable[str]]) -> "DependencyGraph":
        graph = cls()
        for node_id, deps in data.items():
            graph.add_node(NodeId(node_id))
            for dep in deps:
                graph.add_dependency(NodeId(node_id), NodeId(dep))
        return graph


@dataclass
class ExecutionOrder:
    """Topological rank and scheduling priority per node."""
    order: Dict[NodeId, int] = field(default_factory=dict)
    priorities: Dict[NodeId, int] = field(default_factory=dict)

    def sequence(self) -> List[NodeId]:
        """Node ids sorted by rank."""
        return sorted(self.order, key=self.order.__getitem__)

    def priority_of(self, node_id: NodeId) -> int:
        return self.priorities[node_id]


# =============================================================================
# PERSISTED RECORDS
# =============================================================================

@dataclass
class Job:
    """Execution record for a single workflow node within a pipeline.

    dependent_job_ids holds non-owning references to the jobs this job
    depends on. They are resolved after every job of the pipeline has an id.
    """
    node_id: NodeId
    pipeline_id: Optional[PipelineId] = None
    id: Optional[JobId] = None
    node_type_id: str = ""
    label: str = ""
    status: JobStatus = JobStatus.PENDING
    priority: int = 0
    input_data: Dict[str, Any] = field(default_factory=dict)
    output_data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    dependent_job_ids: List[JobId] = field(default_factory=list)
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error_message: str = ""
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependent_job(self, job: "Job") -> None:
        if job.id is None:
            raise ValueError(f"Cannot reference unsaved job for node {job.node_id}")
        if job.id not in self.dependent_job_ids:
            self.dependent_job_ids.append(job.id)

    def remove_dependent_job(self, job: "Job") -> None:
        if job.id in self.dependent_job_ids:
            self.dependent_job_ids.remove(job.id)

    def clear_dependent_jobs(self) -> None:
        self.dependent_job_ids = []

    @property
    def incoming_edges(self) -> List[EdgeRecord]:
        return [EdgeRecord.from_dict(e) for e in self.metadata.get("incoming_edges", [])]

    @property
    def outgoing_edges(self) -> List[EdgeRecord]:
        return [EdgeRecord.from_dict(e) for e in self.metadata.get("outgoing_edges", [])]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def increment_retry_count(self) -> "Job":
        self.retry_count += 1
        return self

    def mark_as_started(self) -> "Job":
        self.status = JobStatus.RUNNING
        self.started_at = time.time()
        return self

    def mark_as_completed(self, output_data: Optional[Dict[str, Any]] = None) -> "Job":
        self.status = JobStatus.COMPLETED
        self.completed_at = time.time()
        self.output_data = output_data or {}
        return self

    def mark_as_failed(self, error_message: str = "") -> "Job":
        self.status = JobStatus.FAILED
        self.completed_at = time.time()
        self.error_message = error_message
        return self

    def mark_as_cancelled(self) -> "Job":
        self.status = JobStatus.CANCELLED
        self.completed_at = time.time()
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "pipeline_id": self.pipeline_id,
            "node_id": self.node_id,
            "node_type_id": self.node_type_id,
            "label": self.label,
            "status": self.status.value,
            "priority": self.priority,
            "input_data": self.input_data,
            "output_data": self.output_data,
            "metadata": self.metadata,
            "dependent_job_ids": list(self.dependent_job_ids),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error_message": self.error_message,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create from dict (repository deserialization)."""
        return cls(
            id=data.get("id"),
            pipeline_id=data.get("pipeline_id"),
            node_id=NodeId(data["node_id"]),
            node_type_id=data.get("node_type_id", ""),
            label=data.get("label", ""),
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            priority=data.get("priority", 0),
            input_data=data.get("input_data") or {},
            output_data=data.get("output_data") or {},
            metadata=data.get("metadata") or {},
            dependent_job_ids=list(data.get("dependent_job_ids") or []),
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", DEFAULT_MAX_RETRIES),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            error_message=data.get("error_message") or "",
            created_at=data.get("created_at", time.time()),
        )


@dataclass
class Pipeline:
    """One execution request of a workflow; owns its jobs."""
    id: PipelineId
    workflow_id: str
    label: str = ""
    status: PipelineStatus = PipelineStatus.PENDING
    job_ids: List[JobId] = field(default_factory=list)
    max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS
    retry_strategy: str = RETRY_STRATEGY_INDIVIDUAL
    job_priority_strategy: str = DEFAULT_JOB_PRIORITY_STRATEGY
    output_data: Dict[str, Any] = field(default_factory=dict)
    error_message: str = ""
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Job collection
    # ------------------------------------------------------------------

    def add_job(self, job: Job) -> "Pipeline":
        if job.id is None:
            raise ValueError(f"Cannot attach unsaved job for node {job.node_id}")
        if job.id not in self.job_ids:
            self.job_ids.append(job.id)
        return self

    def remove_job(self, job: Job) -> "Pipeline":
        self.job_ids = [jid for jid in self.job_ids if jid != job.id]
        return self

    def clear_jobs(self) -> "Pipeline":
        self.job_ids = []
        return self

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.status == PipelineStatus.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.status in (PipelineStatus.COMPLETED, PipelineStatus.FAILED,
                               PipelineStatus.CANCELLED)

    def mark_as_started(self) -> "Pipeline":
        self.status = PipelineStatus.RUNNING
        self.started_at = time.time()
        return self

    def mark_as_completed(self, output_data: Optional[Dict[str, Any]] = None) -> "Pipeline":
        self.status = PipelineStatus.COMPLETED
        self.completed_at = time.time()
        self.output_data = output_data or {}
        return self

    def mark_as_failed(self, error_message: str = "") -> "Pipeline":
        self.status = PipelineStatus.FAILED
        self.completed_at = time.time()
        self.error_message = error_message
        return self

    def mark_as_cancelled(self) -> "Pipeline":
        self.status = PipelineStatus.CANCELLED
        self.completed_at = time.time()
        return self

    def pause(self) -> "Pipeline":
        self.status = PipelineStatus.PAUSED
        return self

    def resume(self) -> "Pipeline":
        if self.status == PipelineStatus.PAUSED:
            self.status = PipelineStatus.RUNNING
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "label": self.label,
            "status": self.status.value,
            "job_ids": list(self.job_ids),
            "max_concurrent_jobs": self.max_concurrent_jobs,
            "retry_strategy": self.retry_strategy,
            "job_priority_strategy": self.job_priority_strategy,
            "output_data": self.output_data,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pipeline":
        """Create from dict (repository deserialization)."""
        return cls(
            id=PipelineId(data["id"]),
            workflow_id=data.get("workflow_id", ""),
            label=data.get("label", ""),
            status=PipelineStatus(data.get("status", PipelineStatus.PENDING.value)),
            job_ids=list(data.get("job_ids") or []),
            max_concurrent_jobs=data.get("max_concurrent_jobs", DEFAULT_MAX_CONCURRENT_JOBS),
            retry_strategy=data.get("retry_strategy", RETRY_STRATEGY_INDIVIDUAL),
            job_priority_strategy=data.get("job_priority_strategy", DEFAULT_JOB_PRIORITY_STRATEGY),
            output_data=data.get("output_data") or {},
            error_message=data.get("error_message") or "",
            created_at=data.get("created_at", time.time()),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


def calculate_job_counts(jobs: Iterable[Job]) -> Dict[str, int]:
    """Count jobs per status, plus a total."""
    counts = {"total": 0}
    for status in JobStatus:
        counts[status.value] = 0
    for job in jobs:
        counts["total"] += 1
        counts[job.status.value] += 1
    return counts


def all_jobs_completed(jobs: Iterable[Job]) -> bool:
    """True when at least one job exists and none is pending or running."""
    seen = False
    for job in jobs:
        seen = True
        if job.status in (JobStatus.PENDING, JobStatus.RUNNING):
            return False
    return seen
