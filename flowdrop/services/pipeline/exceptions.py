"""Pipeline service exception hierarchy.

AuthoringError subclasses mean the workflow itself must be fixed.
MaterializationError means the job repository failed and the pipeline
needs cleanup before generation is retried.
"""

from typing import List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Job


class PipelineError(Exception):
    """Base exception for all pipeline-related errors."""


class AuthoringError(PipelineError):
    """The workflow as authored cannot be scheduled."""


class GraphError(AuthoringError):
    """The workflow graph is structurally invalid."""


class CircularDependencyError(GraphError):
    """The dependency graph contains a directed cycle."""

    def __init__(self, node_id: Optional[str] = None):
        self.node_id = node_id
        message = "Circular dependency detected in workflow"
        if node_id:
            message += f" (at node {node_id})"
        super().__init__(message)


class WorkflowError(AuthoringError):
    """Precondition failure on the workflow supplied for generation."""


class MissingWorkflowError(WorkflowError):
    """No workflow was found for the pipeline."""

    def __init__(self, pipeline_id: str):
        self.pipeline_id = pipeline_id
        super().__init__(f"Workflow not found for pipeline {pipeline_id}")


class EmptyWorkflowError(WorkflowError):
    """The workflow has no nodes."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"No nodes found in workflow {workflow_id}")


class MaterializationError(PipelineError):
    """The job repository failed while jobs were being created.

    Jobs persisted before the failure are not rolled back; they are listed
    in created_jobs so the caller can clear the pipeline.
    """

    def __init__(self, pipeline_id: str, message: str,
                 created_jobs: Optional[Sequence["Job"]] = None):
        self.pipeline_id = pipeline_id
        self.created_jobs: List["Job"] = list(created_jobs or [])
        super().__init__(f"Failed to materialize jobs for pipeline {pipeline_id}: {message}")


class SchedulingInvariantError(PipelineError):
    """Topological ordering did not cover every node of a validated graph."""

    def __init__(self, unscheduled: Sequence[str]):
        self.unscheduled = list(unscheduled)
        super().__init__(
            f"Topological order left {len(self.unscheduled)} node(s) unscheduled: "
            f"{', '.join(self.unscheduled)}"
        )
