"""Job materialization: one persisted Job per workflow node.

Two passes, because a dependency reference needs the referenced job to
already have an id:
    1. create and persist every job (no dependencies yet)
    2. attach dependency references and persist the jobs again
then attach all jobs to the pipeline and persist it.
"""

import copy
from typing import Dict, List, Sequence

from flowdrop.core.logging import get_logger
from flowdrop.constants import EVENT_JOB_CREATED, EVENT_PIPELINE_JOBS_GENERATED
from .events import EventSinkProtocol, NullEventSink, emit_safely
from .exceptions import MaterializationError
from .models import (
    DependencyGraph,
    EdgeInfo,
    ExecutionOrder,
    Job,
    JobStatus,
    NodeId,
    Pipeline,
    WorkflowNode,
)
from .repository import JobRepositoryProtocol

logger = get_logger(__name__)


class JobMaterializer:
    """Creates and wires the jobs of a pipeline through a JobRepository."""

    def __init__(self, repository: JobRepositoryProtocol,
                 event_sink: EventSinkProtocol = None):
        self.repository = repository
        self.event_sink = event_sink or NullEventSink()

    async def materialize(self, pipeline: Pipeline,
                          nodes: Sequence[WorkflowNode],
                          edge_info: Dict[NodeId, EdgeInfo],
                          dependency_graph: DependencyGraph,
                          execution_order: ExecutionOrder) -> List[Job]:
        """Persist one pending job per node and wire their dependencies.

        Args:
            pipeline: Pipeline that will own the jobs (job_ids is updated)
            nodes: Workflow nodes, in workflow order
            edge_info: Edge index from build_edge_info()
            dependency_graph: Validated dependency graph
            execution_order: Ranks and priorities from compute_execution_order()

        Returns:
            Created jobs in node order

        Raises:
            MaterializationError: If the repository fails. Jobs persisted
                before the failure are kept and listed on the error.
        """
        created_jobs: List[Job] = []
        node_to_job: Dict[NodeId, Job] = {}

        try:
            # Pass 1: create jobs without dependencies
            for node in nodes:
                job = self._build_job(pipeline, node, edge_info.get(node.id, EdgeInfo()),
                                      execution_order)
                await self.repository.create_job(job)

                node_to_job[node.id] = job
                created_jobs.append(job)

                await emit_safely(self.event_sink, EVENT_JOB_CREATED, job, {
                    "pipeline_id": pipeline.id,
                    "node_id": node.id,
                    "dependencies": dependency_graph.dependencies_of(node.id),
                })
                logger.info("Created job",
                            job_id=job.id,
                            node_id=node.id,
                            pipeline_id=pipeline.id,
                            priority=job.priority)

            # Pass 2: dependency references between already-identified jobs
            for node_id, dependency_ids in dependency_graph.dependencies.items():
                if not dependency_ids:
                    continue

                job = node_to_job[node_id]
                for dependency_id in dependency_ids:
                    dependency_job = node_to_job.get(dependency_id)
                    if dependency_job is not None:
                        job.add_dependent_job(dependency_job)

                await self.repository.save_job(job)

            for job in created_jobs:
                pipeline.add_job(job)
            await self.repository.save_pipeline(pipeline)

        except Exception as e:
            logger.error("Job materialization failed",
                         pipeline_id=pipeline.id,
                         jobs_created=len(created_jobs),
                         error=str(e))
            raise MaterializationError(pipeline.id, str(e), created_jobs) from e

        await emit_safely(self.event_sink, EVENT_PIPELINE_JOBS_GENERATED, pipeline, {
            "jobs_created": len(created_jobs),
            "job_ids": [job.id for job in created_jobs],
        })

        return created_jobs

    def _build_job(self, pipeline: Pipeline, node: WorkflowNode,
                   edges: EdgeInfo, execution_order: ExecutionOrder) -> Job:
        """Pending job for a node, carrying its edge metadata."""
        metadata = {
            "node_id": node.id,
            "node_type_id": node.node_type_id,
            "pipeline_id": pipeline.id,
            "incoming_edges": [e.to_dict() for e in edges.incoming],
            "outgoing_edges": [e.to_dict() for e in edges.outgoing],
        }

        # Raw editor data with the effective (defaults-merged) config
        input_data = copy.deepcopy(node.data)
        input_data["config"] = copy.deepcopy(node.config)

        return Job(
            node_id=node.id,
            pipeline_id=pipeline.id,
            node_type_id=node.node_type_id,
            label=node.label or f"Job {node.id}",
            status=JobStatus.PENDING,
            priority=execution_order.priority_of(node.id),
            input_data=input_data,
            output_data={},
            metadata=metadata,
            max_retries=node.max_retries,
        )
