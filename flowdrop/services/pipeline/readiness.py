"""Readiness evaluation: which pending jobs may run next.

Rules for a pending job:
- no dependency jobs: ready
- any incoming trigger edge: triggers alone gate execution (OR semantics).
  A trigger is satisfied when its source job is completed and, if the edge
  carries a branch name, the source's output_data["active_branches"]
  (comma-separated, case-insensitive) contains that branch.
  Data edges do not block in this mode.
- no trigger edges: every dependency job must be completed (AND semantics).

Evaluation only reads job state. Claiming a ready job is done separately
through the repository's compare-and-swap.
"""

from typing import Any, Dict, List, Mapping, Set

from flowdrop.core.logging import get_logger
from flowdrop.constants import ACTIVE_BRANCHES_KEY, ACTIVE_BRANCHES_DELIMITER
from .models import EdgeRecord, Job, JobId, JobStatus, NodeId, Pipeline
from .repository import JobRepositoryProtocol

logger = get_logger(__name__)


def parse_active_branches(output_data: Mapping[str, Any]) -> Set[str]:
    """Lower-cased branch names activated by a gateway's output.

    Accepts a comma-separated string ("true", "a, B") or a list of names.
    """
    raw = output_data.get(ACTIVE_BRANCHES_KEY, "") if output_data else ""
    if raw is None:
        return set()
    if isinstance(raw, (list, tuple, set)):
        items = [str(item) for item in raw]
    else:
        items = str(raw).split(ACTIVE_BRANCHES_DELIMITER)
    return {item.strip().lower() for item in items if item.strip()}


def is_trigger_satisfied(edge: EdgeRecord, completed: Mapping[NodeId, Job]) -> bool:
    """Check a single trigger edge against the completed jobs."""
    source_job = completed.get(edge.source)
    if source_job is None:
        return False

    # No branch requirement: completion of the source is enough
    if not edge.branch_name:
        return True

    return edge.branch_name.lower() in parse_active_branches(source_job.output_data)


def are_dependencies_met(job: Job, completed: Mapping[NodeId, Job],
                         jobs_by_id: Mapping[JobId, Job]) -> bool:
    """Decide whether a job's gates are open.

    Args:
        job: Job to check (normally pending)
        completed: Completed jobs of the pipeline keyed by node id
        jobs_by_id: All jobs of the pipeline keyed by job id

    Returns:
        True if the job may run
    """
    if not job.dependent_job_ids:
        return True

    trigger_edges: List[EdgeRecord] = []
    data_edges: List[EdgeRecord] = []
    for edge in job.incoming_edges:
        if edge.is_trigger:
            trigger_edges.append(edge)
        else:
            data_edges.append(edge)

    logger.debug("Checking dependencies",
                 job_id=job.id,
                 node_id=job.node_id,
                 trigger_edges=len(trigger_edges),
                 data_edges=len(data_edges))

    if trigger_edges:
        for edge in trigger_edges:
            if is_trigger_satisfied(edge, completed):
                logger.debug("Trigger satisfied",
                             job_id=job.id,
                             source=edge.source,
                             branch=edge.branch_name or None)
                return True
        logger.debug("No trigger satisfied", job_id=job.id, node_id=job.node_id)
        return False

    for dependency_id in job.dependent_job_ids:
        dependency = jobs_by_id.get(dependency_id)
        if dependency is None:
            logger.warning("Dependency job not found",
                           job_id=job.id, dependency_id=dependency_id)
            return False
        if dependency.node_id not in completed:
            logger.debug("Data dependency not met",
                         job_id=job.id, dependency_node_id=dependency.node_id)
            return False

    return True


def select_ready_jobs(jobs: List[Job]) -> List[Job]:
    """Pending jobs whose dependencies are met, sorted by priority.

    The sort is stable, so equal priorities keep the input order.
    """
    jobs_by_id: Dict[JobId, Job] = {job.id: job for job in jobs if job.id is not None}
    completed: Dict[NodeId, Job] = {
        job.node_id: job for job in jobs if job.status == JobStatus.COMPLETED
    }

    ready = [
        job for job in jobs
        if job.status == JobStatus.PENDING
        and are_dependencies_met(job, completed, jobs_by_id)
    ]
    ready.sort(key=lambda j: j.priority)
    return ready


class ReadinessEvaluator:
    """Proposes runnable jobs of a pipeline from persisted job state.

    Stateless and idempotent: with unchanged job state, repeated calls
    return the same jobs in the same order.
    """

    def __init__(self, repository: JobRepositoryProtocol):
        self.repository = repository

    async def get_ready_jobs(self, pipeline: Pipeline) -> List[Job]:
        """Get pending jobs whose dependencies are met, lowest priority first.

        Args:
            pipeline: Pipeline whose jobs are evaluated

        Returns:
            Ready jobs sorted ascending by priority
        """
        # One snapshot of every job, so pending and completed sets agree
        jobs = await self.repository.load_jobs(pipeline)
        ready = select_ready_jobs(jobs)

        logger.debug("Evaluated readiness",
                     pipeline_id=pipeline.id,
                     total=len(jobs),
                     ready=[job.node_id for job in ready])
        return ready
