"""Job generation service.

Facade over graph analysis, materialization and readiness:

    service = JobGenerationService(repository, event_sink)
    jobs = await service.generate_jobs(pipeline, workflow)
    ready = await service.get_ready_jobs(pipeline)
"""

import time
from typing import Any, Dict, List, Optional, Union

from flowdrop.core.logging import get_logger, log_execution_time
from flowdrop.constants import DEFAULT_MAX_RETRIES
from .events import EventSinkProtocol, NullEventSink
from .exceptions import EmptyWorkflowError, GraphError, MissingWorkflowError, PipelineError
from .graph import (
    build_dependency_graph,
    build_edge_info,
    compute_execution_order,
    validate_dependency_graph,
)
from .materializer import JobMaterializer
from .models import Job, Pipeline, Workflow
from .readiness import ReadinessEvaluator
from .repository import JobRepositoryProtocol

logger = get_logger(__name__)


def coerce_workflow(pipeline: Pipeline,
                    workflow: Optional[Union[Workflow, Dict[str, Any]]],
                    default_max_retries: int = DEFAULT_MAX_RETRIES) -> Workflow:
    """Accept a Workflow or the editor's raw JSON and check preconditions.

    Raises:
        MissingWorkflowError: If no workflow was supplied
        EmptyWorkflowError: If the workflow has no nodes
        GraphError: If two nodes share an id
    """
    if workflow is None:
        raise MissingWorkflowError(pipeline.id)
    if isinstance(workflow, dict):
        workflow = Workflow.from_dict(workflow, default_max_retries)

    if not workflow.nodes:
        raise EmptyWorkflowError(workflow.id or pipeline.workflow_id)

    seen = set()
    for node in workflow.nodes:
        if node.id in seen:
            raise GraphError(f"Duplicate node id in workflow: {node.id}")
        seen.add(node.id)

    return workflow


class JobGenerationService:
    """Generates pipeline jobs from a workflow and proposes runnable ones."""

    def __init__(self, repository: JobRepositoryProtocol,
                 event_sink: EventSinkProtocol = None,
                 default_max_retries: int = DEFAULT_MAX_RETRIES):
        self.repository = repository
        self.default_max_retries = default_max_retries
        self.event_sink = event_sink or NullEventSink()
        self.materializer = JobMaterializer(repository, self.event_sink)
        self.readiness = ReadinessEvaluator(repository)

    async def generate_jobs(self, pipeline: Pipeline,
                            workflow: Optional[Union[Workflow, Dict[str, Any]]]) -> List[Job]:
        """Create one pending job per workflow node with dependencies wired.

        Args:
            pipeline: Pipeline that owns the new jobs
            workflow: Workflow, or raw editor JSON, to generate from

        Returns:
            Created jobs in workflow node order

        Raises:
            MissingWorkflowError: No workflow supplied
            EmptyWorkflowError: Workflow without nodes
            GraphError: Invalid graph (CircularDependencyError for cycles)
            SchedulingInvariantError: Ordering failed after validation
            MaterializationError: The repository failed mid-way
        """
        start_time = time.time()

        try:
            workflow = coerce_workflow(pipeline, workflow, self.default_max_retries)

            logger.info("Generating jobs",
                        pipeline_id=pipeline.id,
                        workflow_id=workflow.id,
                        node_count=len(workflow.nodes),
                        edge_count=len(workflow.edges))

            edge_info = build_edge_info(workflow.nodes, workflow.edges)
            dependency_graph = build_dependency_graph(workflow.nodes, workflow.edges)
            validate_dependency_graph(dependency_graph)
            execution_order = compute_execution_order(dependency_graph)

            jobs = await self.materializer.materialize(
                pipeline, workflow.nodes, edge_info, dependency_graph, execution_order
            )

        except PipelineError as e:
            logger.error("Job generation failed",
                         pipeline_id=pipeline.id,
                         error_type=type(e).__name__,
                         error=str(e))
            raise

        log_execution_time(logger, "generate_jobs", start_time, time.time(),
                           pipeline_id=pipeline.id,
                           jobs_created=len(jobs))
        return jobs

    async def get_ready_jobs(self, pipeline: Pipeline) -> List[Job]:
        """Pending jobs of the pipeline whose dependencies are met."""
        return await self.readiness.get_ready_jobs(pipeline)

    async def clear_jobs(self, pipeline: Pipeline) -> int:
        """Delete every job of a pipeline and empty its job list.

        Returns:
            Number of jobs deleted
        """
        deleted = await self.repository.delete_jobs(list(pipeline.job_ids))
        pipeline.clear_jobs()
        await self.repository.save_pipeline(pipeline)

        logger.info("Cleared pipeline jobs", pipeline_id=pipeline.id, deleted=deleted)
        return deleted
