"""Pipeline job generation and scheduling package.

Workflow graph -> persisted jobs -> readiness-driven execution:
- Edge index with trigger/data classification and gateway branch names
- DFS cycle validation and Kahn topological ordering with priorities
- Two-pass job materialization through a pluggable repository
- Trigger (OR) / data (AND) readiness gating with branch activation
- Orchestrator with concurrency limits, retries and continuous scheduling
"""

from .models import (
    NodeId,
    JobId,
    PipelineId,
    JobStatus,
    PipelineStatus,
    TERMINAL_JOB_STATUSES,
    WorkflowNode,
    WorkflowEdge,
    Workflow,
    EdgeRecord,
    EdgeInfo,
    DependencyGraph,
    ExecutionOrder,
    Job,
    Pipeline,
    calculate_job_counts,
    all_jobs_completed,
)
from .exceptions import (
    PipelineError,
    AuthoringError,
    GraphError,
    CircularDependencyError,
    WorkflowError,
    MissingWorkflowError,
    EmptyWorkflowError,
    MaterializationError,
    SchedulingInvariantError,
)
from .graph import (
    is_trigger_handle,
    extract_branch_name,
    classify_edge,
    build_edge_info,
    build_dependency_graph,
    validate_dependency_graph,
    calculate_job_priority,
    compute_execution_order,
)
from .events import (
    EventSinkProtocol,
    NullEventSink,
    LoggingEventSink,
    CallbackEventSink,
    RecordingEventSink,
    create_event_sink,
)
from .repository import (
    JobRepositoryProtocol,
    InMemoryJobRepository,
    new_pipeline_id,
)
from .sql_repository import SqlJobRepository
from .materializer import JobMaterializer
from .readiness import ReadinessEvaluator, parse_active_branches, select_ready_jobs
from .generation import JobGenerationService
from .orchestrator import PipelineOrchestrator, JobExecutor

__all__ = [
    # Models
    "NodeId",
    "JobId",
    "PipelineId",
    "JobStatus",
    "PipelineStatus",
    "TERMINAL_JOB_STATUSES",
    "WorkflowNode",
    "WorkflowEdge",
    "Workflow",
    "EdgeRecord",
    "EdgeInfo",
    "DependencyGraph",
    "ExecutionOrder",
    "Job",
    "Pipeline",
    "calculate_job_counts",
    "all_jobs_completed",
    # Exceptions
    "PipelineError",
    "AuthoringError",
    "GraphError",
    "CircularDependencyError",
    "WorkflowError",
    "MissingWorkflowError",
    "EmptyWorkflowError",
    "MaterializationError",
    "SchedulingInvariantError",
    # Graph
    "is_trigger_handle",
    "extract_branch_name",
    "classify_edge",
    "build_edge_info",
    "build_dependency_graph",
    "validate_dependency_graph",
    "calculate_job_priority",
    "compute_execution_order",
    # Events
    "EventSinkProtocol",
    "NullEventSink",
    "LoggingEventSink",
    "CallbackEventSink",
    "RecordingEventSink",
    "create_event_sink",
    # Repositories
    "JobRepositoryProtocol",
    "InMemoryJobRepository",
    "SqlJobRepository",
    "new_pipeline_id",
    # Services
    "JobMaterializer",
    "ReadinessEvaluator",
    "parse_active_branches",
    "select_ready_jobs",
    "JobGenerationService",
    "PipelineOrchestrator",
    "JobExecutor",
]
