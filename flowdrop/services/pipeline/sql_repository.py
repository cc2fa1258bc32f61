"""SQLModel-backed job repository.

Jobs and pipelines live in the "jobs" and "pipelines" tables. claim_job()
is a conditional UPDATE (status guard in the WHERE clause), so concurrent
schedulers cannot both start the same job.
"""

import time
from typing import Iterable, List, Optional

from sqlmodel import select
from sqlalchemy import update, delete

from flowdrop.core.database import Database
from flowdrop.core.logging import get_logger
from flowdrop.models.database import JobRecord, PipelineRecord
from .models import Job, JobId, JobStatus, NodeId, Pipeline, PipelineId, PipelineStatus

logger = get_logger(__name__)


def _job_to_record(job: Job, record: Optional[JobRecord] = None) -> JobRecord:
    record = record or JobRecord()
    record.pipeline_id = job.pipeline_id
    record.node_id = job.node_id
    record.node_type_id = job.node_type_id
    record.label = job.label
    record.status = job.status.value
    record.priority = job.priority
    record.input_data = job.input_data
    record.output_data = job.output_data
    record.job_metadata = job.metadata
    record.dependent_job_ids = [str(jid) for jid in job.dependent_job_ids]
    record.retry_count = job.retry_count
    record.max_retries = job.max_retries
    record.started_at = job.started_at
    record.completed_at = job.completed_at
    record.error_message = job.error_message
    record.created = job.created_at
    return record


def _record_to_job(record: JobRecord) -> Job:
    return Job(
        id=JobId(str(record.id)),
        pipeline_id=record.pipeline_id,
        node_id=NodeId(record.node_id),
        node_type_id=record.node_type_id,
        label=record.label,
        status=JobStatus(record.status),
        priority=record.priority,
        input_data=record.input_data or {},
        output_data=record.output_data or {},
        metadata=record.job_metadata or {},
        dependent_job_ids=[JobId(j) for j in record.dependent_job_ids or []],
        retry_count=record.retry_count,
        max_retries=record.max_retries,
        started_at=record.started_at,
        completed_at=record.completed_at,
        error_message=record.error_message or "",
        created_at=record.created,
    )


def _pipeline_to_record(pipeline: Pipeline, record: Optional[PipelineRecord] = None) -> PipelineRecord:
    record = record or PipelineRecord(id=pipeline.id, workflow_id=pipeline.workflow_id)
    record.workflow_id = pipeline.workflow_id
    record.label = pipeline.label
    record.status = pipeline.status.value
    record.job_ids = [str(jid) for jid in pipeline.job_ids]
    record.max_concurrent_jobs = pipeline.max_concurrent_jobs
    record.retry_strategy = pipeline.retry_strategy
    record.job_priority_strategy = pipeline.job_priority_strategy
    record.output_data = pipeline.output_data
    record.error_message = pipeline.error_message
    record.started_at = pipeline.started_at
    record.completed_at = pipeline.completed_at
    record.created = pipeline.created_at
    return record


def _record_to_pipeline(record: PipelineRecord) -> Pipeline:
    return Pipeline(
        id=PipelineId(record.id),
        workflow_id=record.workflow_id,
        label=record.label,
        status=PipelineStatus(record.status),
        job_ids=[JobId(j) for j in record.job_ids or []],
        max_concurrent_jobs=record.max_concurrent_jobs,
        retry_strategy=record.retry_strategy,
        job_priority_strategy=record.job_priority_strategy,
        output_data=record.output_data or {},
        error_message=record.error_message or "",
        created_at=record.created,
        started_at=record.started_at,
        completed_at=record.completed_at,
    )


class SqlJobRepository:
    """Job repository on top of the async Database service."""

    def __init__(self, database: Database):
        self.database = database

    # =========================================================================
    # JOBS
    # =========================================================================

    async def create_job(self, job: Job) -> JobId:
        async with self.database.get_session() as session:
            record = _job_to_record(job)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            job.id = JobId(str(record.id))
            return job.id

    async def save_job(self, job: Job) -> None:
        if job.id is None:
            raise ValueError(f"Job for node {job.node_id} has not been created")
        async with self.database.get_session() as session:
            record = await session.get(JobRecord, int(job.id))
            if record is None:
                raise KeyError(f"Unknown job: {job.id}")
            _job_to_record(job, record)
            session.add(record)
            await session.commit()

    async def get_job(self, job_id: JobId) -> Optional[Job]:
        async with self.database.get_session() as session:
            record = await session.get(JobRecord, int(job_id))
            return _record_to_job(record) if record else None

    async def load_jobs(self, pipeline: Pipeline) -> List[Job]:
        if not pipeline.job_ids:
            return []
        ids = [int(jid) for jid in pipeline.job_ids]
        async with self.database.get_session() as session:
            stmt = (
                select(JobRecord)
                .where(JobRecord.id.in_(ids))
                .order_by(JobRecord.priority, JobRecord.id)
            )
            result = await session.execute(stmt)
            return [_record_to_job(r) for r in result.scalars().all()]

    async def load_jobs_by_status(self, pipeline: Pipeline,
                                  status: JobStatus) -> List[Job]:
        if not pipeline.job_ids:
            return []
        ids = [int(jid) for jid in pipeline.job_ids]
        async with self.database.get_session() as session:
            stmt = (
                select(JobRecord)
                .where(JobRecord.id.in_(ids), JobRecord.status == status.value)
                .order_by(JobRecord.priority, JobRecord.id)
            )
            result = await session.execute(stmt)
            return [_record_to_job(r) for r in result.scalars().all()]

    async def claim_job(self, job_id: JobId,
                        expected: JobStatus = JobStatus.PENDING,
                        new: JobStatus = JobStatus.RUNNING) -> Optional[Job]:
        values = {"status": new.value}
        if new == JobStatus.RUNNING:
            values["started_at"] = time.time()
        elif new == JobStatus.CANCELLED:
            values["completed_at"] = time.time()

        async with self.database.get_session() as session:
            stmt = (
                update(JobRecord)
                .where(JobRecord.id == int(job_id), JobRecord.status == expected.value)
                .values(**values)
            )
            result = await session.execute(stmt)
            await session.commit()

            if result.rowcount != 1:
                logger.debug("Claim lost", job_id=job_id, expected=expected.value)
                return None

            record = await session.get(JobRecord, int(job_id), populate_existing=True)
            return _record_to_job(record) if record else None

    async def delete_jobs(self, job_ids: Iterable[JobId]) -> int:
        ids = [int(jid) for jid in job_ids]
        if not ids:
            return 0
        async with self.database.get_session() as session:
            result = await session.execute(delete(JobRecord).where(JobRecord.id.in_(ids)))
            await session.commit()
            return result.rowcount or 0

    # =========================================================================
    # PIPELINES
    # =========================================================================

    async def save_pipeline(self, pipeline: Pipeline) -> None:
        async with self.database.get_session() as session:
            record = await session.get(PipelineRecord, pipeline.id)
            record = _pipeline_to_record(pipeline, record)
            session.add(record)
            await session.commit()

    async def get_pipeline(self, pipeline_id: PipelineId) -> Optional[Pipeline]:
        async with self.database.get_session() as session:
            record = await session.get(PipelineRecord, pipeline_id)
            return _record_to_pipeline(record) if record else None

    async def delete_pipeline(self, pipeline_id: PipelineId) -> bool:
        """Delete a pipeline and, by ownership, all of its jobs."""
        async with self.database.get_session() as session:
            record = await session.get(PipelineRecord, pipeline_id)
            if record is None:
                return False
            await session.execute(delete(JobRecord).where(JobRecord.pipeline_id == pipeline_id))
            await session.delete(record)
            await session.commit()
            return True
