"""Pipeline orchestrator: runtime scheduling on top of job generation.

Implements:
- pipeline creation and start
- scheduling ticks (execute_pipeline): claim ready jobs up to the
  pipeline's concurrency limit, then settle the pipeline's status
- job result reporting with per-job retries
- cancellation
- an asyncio driver (run_pipeline) that runs claimed jobs concurrently and
  reacts to each completion immediately (asyncio.wait FIRST_COMPLETED)

Pipeline and job state is always re-read from the repository; a Pipeline
or Job argument only identifies the record.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from flowdrop.core.config import Settings
from flowdrop.core.logging import get_logger
from flowdrop.constants import (
    EVENT_JOB_CANCELLED,
    EVENT_JOB_COMPLETED,
    EVENT_JOB_FAILED,
    EVENT_JOB_RETRIED,
    EVENT_JOB_STARTED,
    EVENT_PIPELINE_CANCELLED,
    EVENT_PIPELINE_COMPLETED,
    EVENT_PIPELINE_FAILED,
    EVENT_PIPELINE_STARTED,
    RETRY_STRATEGIES,
    RETRY_STRATEGY_STOP_ON_FAILURE,
)
from .events import EventSinkProtocol, NullEventSink, emit_safely
from .exceptions import PipelineError
from .generation import JobGenerationService
from .models import (
    Job,
    JobStatus,
    Pipeline,
    PipelineStatus,
    Workflow,
    all_jobs_completed,
)
from .repository import JobRepositoryProtocol, new_pipeline_id

logger = get_logger(__name__)

# Signature: async def execute(job) -> output_data
JobExecutor = Callable[[Job], Awaitable[Dict[str, Any]]]


def aggregate_pipeline_output(jobs: List[Job]) -> Dict[str, Any]:
    """Output of a finished pipeline: non-empty outputs of completed jobs by node id."""
    return {
        job.node_id: job.output_data
        for job in jobs
        if job.status == JobStatus.COMPLETED and job.output_data
    }


class PipelineOrchestrator:
    """Drives pipelines from creation to a finished status.

    Features:
    - Concurrency limit per pipeline (max_concurrent_jobs)
    - Claims through the repository compare-and-swap, so several
      orchestrators may tick the same pipeline
    - Retry strategies: "individual" (a failed job does not stop its
      siblings) and "stop_on_failure"
    """

    def __init__(self, generation_service: JobGenerationService,
                 repository: JobRepositoryProtocol,
                 event_sink: EventSinkProtocol = None,
                 settings: Optional[Settings] = None):
        """Initialize orchestrator.

        Args:
            generation_service: Generates jobs and proposes ready ones
            repository: Job/pipeline persistence
            event_sink: Optional sink for lifecycle notifications
            settings: Scheduling defaults (concurrency, retry strategy, polling)
        """
        self.generation_service = generation_service
        self.repository = repository
        self.event_sink = event_sink or NullEventSink()
        self.settings = settings or Settings()

    # =========================================================================
    # PIPELINE LIFECYCLE
    # =========================================================================

    async def create_pipeline(self, workflow_id: str,
                              workflow: Optional[Union[Workflow, Dict[str, Any]]],
                              label: str = "",
                              max_concurrent_jobs: Optional[int] = None,
                              retry_strategy: Optional[str] = None,
                              job_priority_strategy: Optional[str] = None) -> Pipeline:
        """Create a pending pipeline for a workflow and generate its jobs.

        Args:
            workflow_id: Identifier of the workflow being executed
            workflow: Workflow (or raw editor JSON) to generate jobs from
            label: Human readable pipeline label
            max_concurrent_jobs: Overrides settings.max_concurrent_jobs
            retry_strategy: Overrides settings.retry_strategy
            job_priority_strategy: Stored on the pipeline for reporting

        Returns:
            The persisted pipeline with its job ids

        Raises:
            ValueError: Unknown retry strategy or non-positive concurrency
            PipelineError: Job generation failed; the pipeline is kept and
                marked failed
        """
        retry_strategy = retry_strategy or self.settings.retry_strategy
        if retry_strategy not in RETRY_STRATEGIES:
            raise ValueError(f"Unknown retry strategy: {retry_strategy}")

        if max_concurrent_jobs is None:
            max_concurrent_jobs = self.settings.max_concurrent_jobs
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")

        pipeline = Pipeline(
            id=new_pipeline_id(),
            workflow_id=workflow_id,
            label=label or f"Pipeline for {workflow_id}",
            max_concurrent_jobs=max_concurrent_jobs,
            retry_strategy=retry_strategy,
        )
        if job_priority_strategy:
            pipeline.job_priority_strategy = job_priority_strategy

        await self.repository.save_pipeline(pipeline)

        try:
            await self.generation_service.generate_jobs(pipeline, workflow)
        except PipelineError as e:
            pipeline.mark_as_failed(str(e))
            await self.repository.save_pipeline(pipeline)
            raise

        logger.info("Created pipeline",
                    pipeline_id=pipeline.id,
                    workflow_id=workflow_id,
                    job_count=len(pipeline.job_ids))
        return pipeline

    async def start_pipeline(self, pipeline: Pipeline) -> bool:
        """Move a pending pipeline to running.

        Returns:
            False if the pipeline is not pending
        """
        pipeline = await self._reload(pipeline)
        if pipeline.status != PipelineStatus.PENDING:
            logger.warning("Pipeline is not ready to start",
                           pipeline_id=pipeline.id, status=pipeline.status.value)
            return False

        pipeline.mark_as_started()
        await self.repository.save_pipeline(pipeline)

        await emit_safely(self.event_sink, EVENT_PIPELINE_STARTED, pipeline, {
            "job_count": len(pipeline.job_ids),
        })
        logger.info("Pipeline started", pipeline_id=pipeline.id)
        return True

    async def cancel_pipeline(self, pipeline: Pipeline) -> int:
        """Cancel every pending or running job, then the pipeline.

        Work already running in an executor is not interrupted; its later
        result is ignored.

        Returns:
            Number of jobs cancelled
        """
        pipeline = await self._reload(pipeline)
        if pipeline.is_finished:
            logger.warning("Pipeline already finished",
                           pipeline_id=pipeline.id, status=pipeline.status.value)
            return 0

        cancelled = 0
        for job in await self.repository.load_jobs(pipeline):
            if job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
                continue
            if await self._cancel_job(job, job.status):
                cancelled += 1

        pipeline.mark_as_cancelled()
        await self.repository.save_pipeline(pipeline)

        await emit_safely(self.event_sink, EVENT_PIPELINE_CANCELLED, pipeline, {
            "cancelled_jobs": cancelled,
        })
        logger.info("Pipeline cancelled", pipeline_id=pipeline.id, cancelled_jobs=cancelled)
        return cancelled

    # =========================================================================
    # SCHEDULING TICK
    # =========================================================================

    async def execute_pipeline(self, pipeline: Pipeline) -> List[Job]:
        """Run one scheduling tick.

        Claims ready jobs up to the free concurrency slots, then completes
        the pipeline when no job is pending or running, or fails it when a
        job failed under the stop_on_failure strategy.

        Args:
            pipeline: Pipeline to tick

        Returns:
            Jobs claimed (now running) in this tick
        """
        pipeline = await self._reload(pipeline)
        if not pipeline.is_running:
            logger.warning("Pipeline is not running",
                           pipeline_id=pipeline.id, status=pipeline.status.value)
            return []

        try:
            ready = await self.generation_service.get_ready_jobs(pipeline)
            running = await self.repository.load_jobs_by_status(pipeline, JobStatus.RUNNING)
            slots = pipeline.max_concurrent_jobs - len(running)

            claimed: List[Job] = []
            for job in ready:
                if len(claimed) >= slots:
                    break
                started = await self.repository.claim_job(job.id)
                if started is None:
                    # Another scheduler won the race
                    continue
                claimed.append(started)

                await emit_safely(self.event_sink, EVENT_JOB_STARTED, started, {
                    "pipeline_id": pipeline.id,
                    "node_id": started.node_id,
                })
                logger.info("Job started",
                            job_id=started.id,
                            node_id=started.node_id,
                            pipeline_id=pipeline.id)

            jobs = await self.repository.load_jobs(pipeline)
            if all_jobs_completed(jobs):
                await self._complete_pipeline(pipeline, jobs)
            elif (pipeline.retry_strategy == RETRY_STRATEGY_STOP_ON_FAILURE
                  and any(job.status == JobStatus.FAILED for job in jobs)):
                await self._fail_pipeline(
                    pipeline, "Pipeline failed due to job failure with stop_on_failure strategy"
                )

        except Exception as e:
            logger.error("Pipeline tick failed", pipeline_id=pipeline.id, error=str(e))
            await self._fail_pipeline(pipeline, f"Pipeline execution failed: {e}")
            raise

        return claimed

    # =========================================================================
    # JOB RESULTS
    # =========================================================================

    async def handle_job_completion(self, job: Job,
                                    output_data: Optional[Dict[str, Any]] = None) -> Job:
        """Record a successful job result.

        Args:
            job: The job that finished
            output_data: Executor output (gateways set "active_branches")

        Returns:
            The updated job
        """
        stored = await self._reload_job(job)
        if stored.status == JobStatus.CANCELLED:
            logger.info("Ignoring result of cancelled job", job_id=stored.id)
            return stored

        stored.mark_as_completed(output_data)
        await self.repository.save_job(stored)

        await emit_safely(self.event_sink, EVENT_JOB_COMPLETED, stored, {
            "pipeline_id": stored.pipeline_id,
            "node_id": stored.node_id,
            "output_data": stored.output_data,
        })
        logger.info("Job completed",
                    job_id=stored.id,
                    node_id=stored.node_id,
                    pipeline_id=stored.pipeline_id)
        return stored

    async def handle_job_failure(self, job: Job, error_message: str = "") -> Job:
        """Record a failed job, returning it to pending while retries remain.

        Args:
            job: The job that failed
            error_message: Failure description from the executor

        Returns:
            The updated job (pending if retried, failed otherwise)
        """
        stored = await self._reload_job(job)
        if stored.status == JobStatus.CANCELLED:
            logger.info("Ignoring failure of cancelled job", job_id=stored.id)
            return stored

        stored.mark_as_failed(error_message)
        await self.repository.save_job(stored)

        await emit_safely(self.event_sink, EVENT_JOB_FAILED, stored, {
            "pipeline_id": stored.pipeline_id,
            "node_id": stored.node_id,
            "error_message": error_message,
        })

        if stored.can_retry():
            stored.increment_retry_count()
            stored.status = JobStatus.PENDING
            stored.completed_at = None
            await self.repository.save_job(stored)

            await emit_safely(self.event_sink, EVENT_JOB_RETRIED, stored, {
                "pipeline_id": stored.pipeline_id,
                "node_id": stored.node_id,
                "attempt": stored.retry_count,
            })
            logger.info("Job queued for retry",
                        job_id=stored.id,
                        node_id=stored.node_id,
                        attempt=stored.retry_count,
                        max_retries=stored.max_retries)
        else:
            logger.error("Job failed",
                         job_id=stored.id,
                         node_id=stored.node_id,
                         retries=stored.retry_count,
                         error=error_message)
        return stored

    # =========================================================================
    # CONTINUOUS SCHEDULING
    # =========================================================================

    async def run_pipeline(self, pipeline: Pipeline, executor: JobExecutor) -> Pipeline:
        """Run a pipeline to a finished status.

        Starts the pipeline if it is pending. Each claimed job runs as its
        own task through the executor; as soon as any task finishes its
        result is reported and a new tick claims newly-ready jobs.

        When nothing is running and nothing is ready but jobs are still
        pending (untaken branches, or jobs behind a failed dependency),
        those jobs are cancelled. The pipeline then fails if any job
        failed, and completes otherwise.

        Args:
            pipeline: Pipeline to run
            executor: Async callable executing a single job.
                     Signature: async def execute(job) -> output_data.
                     Raising marks the job failed.

        Returns:
            The pipeline as persisted at the end of the run
        """
        pipeline = await self._reload(pipeline)
        if pipeline.status == PipelineStatus.PENDING:
            await self.start_pipeline(pipeline)

        task_to_job: Dict[asyncio.Task, Job] = {}
        pending_tasks: Set[asyncio.Task] = set()
        poll_interval = self.settings.poll_interval or None

        try:
            while True:
                for job in await self.execute_pipeline(pipeline):
                    task = asyncio.create_task(executor(job), name=f"job_{job.id}")
                    task_to_job[task] = job
                    pending_tasks.add(task)

                pipeline = await self._reload(pipeline)
                if not pipeline.is_running:
                    break

                if not pending_tasks:
                    if await self._is_stalled(pipeline):
                        await self._settle_stalled(pipeline)
                        break
                    # Jobs are running elsewhere or a claim race was lost
                    await asyncio.sleep(self.settings.poll_interval)
                    continue

                # Wait for ANY job to finish
                done, pending_tasks = await asyncio.wait(
                    pending_tasks,
                    timeout=poll_interval,
                    return_when=asyncio.FIRST_COMPLETED
                )

                for task in done:
                    job = task_to_job.pop(task)
                    await self._report_result(job, task)

        finally:
            if pending_tasks:
                await self._abandon_tasks(pending_tasks, task_to_job)

        pipeline = await self._reload(pipeline)
        logger.info("Pipeline run finished",
                    pipeline_id=pipeline.id,
                    status=pipeline.status.value)
        return pipeline

    async def _report_result(self, job: Job, task: asyncio.Task) -> None:
        """Translate a finished executor task into a completion or failure."""
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            logger.error("Job executor raised", job_id=job.id, node_id=job.node_id,
                         error=str(error))
            await self.handle_job_failure(job, str(error) or type(error).__name__)
            return

        output = task.result()
        if output is not None and not isinstance(output, dict):
            output = {"result": output}
        await self.handle_job_completion(job, output)

    async def _abandon_tasks(self, pending_tasks: Set[asyncio.Task],
                             task_to_job: Dict[asyncio.Task, Job]) -> None:
        """Cancel executor tasks left over when the pipeline stopped running."""
        logger.info("Cancelling remaining job tasks", pending_count=len(pending_tasks))

        for task in pending_tasks:
            task.cancel()
        await asyncio.wait(pending_tasks, return_when=asyncio.ALL_COMPLETED)

        for task in pending_tasks:
            job = task_to_job.get(task)
            if job is not None:
                await self._cancel_job(job, JobStatus.RUNNING)

    async def _is_stalled(self, pipeline: Pipeline) -> bool:
        """True when no job is running and no pending job can become ready."""
        running = await self.repository.load_jobs_by_status(pipeline, JobStatus.RUNNING)
        if running:
            return False
        ready = await self.generation_service.get_ready_jobs(pipeline)
        return not ready

    async def _settle_stalled(self, pipeline: Pipeline) -> None:
        pending = await self.repository.load_jobs_by_status(pipeline, JobStatus.PENDING)
        for job in pending:
            await self._cancel_job(job, JobStatus.PENDING, reason="unreachable")

        jobs = await self.repository.load_jobs(pipeline)
        failed = [job for job in jobs if job.status == JobStatus.FAILED]

        logger.info("Pipeline stalled",
                    pipeline_id=pipeline.id,
                    unreachable=[job.node_id for job in pending],
                    failed=[job.node_id for job in failed])

        if failed:
            await self._fail_pipeline(
                pipeline,
                f"Pipeline stalled: {len(pending)} job(s) unreachable after "
                f"{len(failed)} failed job(s)"
            )
        else:
            await self._complete_pipeline(pipeline, jobs)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _cancel_job(self, job: Job, expected: JobStatus,
                          reason: str = "pipeline_cancelled") -> bool:
        cancelled = await self.repository.claim_job(job.id, expected, JobStatus.CANCELLED)
        if cancelled is None:
            return False

        await emit_safely(self.event_sink, EVENT_JOB_CANCELLED, cancelled, {
            "pipeline_id": cancelled.pipeline_id,
            "node_id": cancelled.node_id,
            "reason": reason,
        })
        logger.debug("Job cancelled", job_id=cancelled.id, reason=reason)
        return True

    async def _complete_pipeline(self, pipeline: Pipeline, jobs: List[Job]) -> None:
        output_data = aggregate_pipeline_output(jobs)
        pipeline.mark_as_completed(output_data)
        await self.repository.save_pipeline(pipeline)

        await emit_safely(self.event_sink, EVENT_PIPELINE_COMPLETED, pipeline, {
            "output_data": output_data,
        })
        logger.info("Pipeline completed", pipeline_id=pipeline.id,
                    outputs=len(output_data))

    async def _fail_pipeline(self, pipeline: Pipeline, error_message: str) -> None:
        pipeline.mark_as_failed(error_message)
        await self.repository.save_pipeline(pipeline)

        await emit_safely(self.event_sink, EVENT_PIPELINE_FAILED, pipeline, {
            "error_message": error_message,
        })
        logger.error("Pipeline failed", pipeline_id=pipeline.id, error=error_message)

    async def _reload(self, pipeline: Pipeline) -> Pipeline:
        stored = await self.repository.get_pipeline(pipeline.id)
        return stored if stored is not None else pipeline

    async def _reload_job(self, job: Job) -> Job:
        stored = await self.repository.get_job(job.id)
        if stored is None:
            raise KeyError(f"Unknown job: {job.id}")
        return stored
