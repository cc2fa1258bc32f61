"""Job/Pipeline repository contract and an in-memory implementation.

The scheduler core only proposes runnable jobs. Claiming a job
(pending -> running) goes through claim_job(), which must be an atomic
compare-and-swap in every implementation.
"""

import asyncio
import copy
import itertools
import uuid
from typing import Dict, Iterable, List, Optional, Protocol

from flowdrop.core.logging import get_logger
from .models import Job, JobId, JobStatus, Pipeline, PipelineId

logger = get_logger(__name__)


class JobRepositoryProtocol(Protocol):
    """Persistence contract consumed by the pipeline services."""

    async def create_job(self, job: Job) -> JobId:
        """Persist a new job, assign and return its id."""
        ...

    async def save_job(self, job: Job) -> None:
        """Persist changes to an existing job."""
        ...

    async def get_job(self, job_id: JobId) -> Optional[Job]:
        ...

    async def load_jobs(self, pipeline: Pipeline) -> List[Job]:
        """All jobs of a pipeline, ordered by (priority, creation)."""
        ...

    async def load_jobs_by_status(self, pipeline: Pipeline,
                                  status: JobStatus) -> List[Job]:
        ...

    async def claim_job(self, job_id: JobId,
                        expected: JobStatus = JobStatus.PENDING,
                        new: JobStatus = JobStatus.RUNNING) -> Optional[Job]:
        """Atomically move a job from expected to new status.

        Returns the updated job, or None when another caller won the race.
        """
        ...

    async def delete_jobs(self, job_ids: Iterable[JobId]) -> int:
        ...

    async def save_pipeline(self, pipeline: Pipeline) -> None:
        ...

    async def get_pipeline(self, pipeline_id: PipelineId) -> Optional[Pipeline]:
        ...

    async def delete_pipeline(self, pipeline_id: PipelineId) -> bool:
        """Delete a pipeline together with the jobs it owns."""
        ...


def new_pipeline_id() -> PipelineId:
    return PipelineId(str(uuid.uuid4()))


class InMemoryJobRepository:
    """Process-local repository.

    Stored records are copies: callers only change persisted state through
    save_job()/save_pipeline()/claim_job(). A single asyncio.Lock makes each
    operation atomic with respect to concurrent coroutines.
    """

    def __init__(self):
        self._jobs: Dict[JobId, Job] = {}
        self._pipelines: Dict[PipelineId, Pipeline] = {}
        self._sequence: Dict[JobId, int] = {}
        self._counter = itertools.count(1)
        self._lock = asyncio.Lock()

    # =========================================================================
    # JOBS
    # =========================================================================

    async def create_job(self, job: Job) -> JobId:
        async with self._lock:
            seq = next(self._counter)
            job.id = JobId(str(seq))
            self._jobs[job.id] = copy.deepcopy(job)
            self._sequence[job.id] = seq
            return job.id

    async def save_job(self, job: Job) -> None:
        if job.id is None:
            raise ValueError(f"Job for node {job.node_id} has not been created")
        async with self._lock:
            if job.id not in self._jobs:
                raise KeyError(f"Unknown job: {job.id}")
            self._jobs[job.id] = copy.deepcopy(job)

    async def get_job(self, job_id: JobId) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    async def load_jobs(self, pipeline: Pipeline) -> List[Job]:
        async with self._lock:
            jobs = [
                copy.deepcopy(self._jobs[jid])
                for jid in pipeline.job_ids if jid in self._jobs
            ]
        jobs.sort(key=lambda j: (j.priority, self._sequence.get(j.id, 0)))
        return jobs

    async def load_jobs_by_status(self, pipeline: Pipeline,
                                  status: JobStatus) -> List[Job]:
        return [j for j in await self.load_jobs(pipeline) if j.status == status]

    async def claim_job(self, job_id: JobId,
                        expected: JobStatus = JobStatus.PENDING,
                        new: JobStatus = JobStatus.RUNNING) -> Optional[Job]:
        async with self._lock:
            stored = self._jobs.get(job_id)
            if stored is None or stored.status != expected:
                logger.debug("Claim lost", job_id=job_id,
                             expected=expected.value,
                             actual=stored.status.value if stored else None)
                return None
            if new == JobStatus.RUNNING:
                stored.mark_as_started()
            elif new == JobStatus.CANCELLED:
                stored.mark_as_cancelled()
            else:
                stored.status = new
            return copy.deepcopy(stored)

    async def delete_jobs(self, job_ids: Iterable[JobId]) -> int:
        deleted = 0
        async with self._lock:
            for jid in job_ids:
                if self._jobs.pop(jid, None) is not None:
                    self._sequence.pop(jid, None)
                    deleted += 1
        return deleted

    # =========================================================================
    # PIPELINES
    # =========================================================================

    async def save_pipeline(self, pipeline: Pipeline) -> None:
        async with self._lock:
            self._pipelines[pipeline.id] = copy.deepcopy(pipeline)

    async def get_pipeline(self, pipeline_id: PipelineId) -> Optional[Pipeline]:
        async with self._lock:
            pipeline = self._pipelines.get(pipeline_id)
            return copy.deepcopy(pipeline) if pipeline else None

    async def delete_pipeline(self, pipeline_id: PipelineId) -> bool:
        async with self._lock:
            pipeline = self._pipelines.pop(pipeline_id, None)
            if pipeline is None:
                return False
            owned = [jid for jid, job in self._jobs.items() if job.pipeline_id == pipeline_id]
            for jid in owned:
                del self._jobs[jid]
                self._sequence.pop(jid, None)
            return True
