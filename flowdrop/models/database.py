"""SQLModel database models and tables."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import func


class PipelineRecord(SQLModel, table=True):
    """Pipeline executions of a workflow."""

    __tablename__ = "pipelines"

    id: str = Field(primary_key=True, max_length=255)
    workflow_id: str = Field(index=True, max_length=255)
    label: str = Field(default="", max_length=255)
    status: str = Field(default="pending", max_length=50, index=True)
    job_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    max_concurrent_jobs: int = Field(default=5)
    retry_strategy: str = Field(default="individual", max_length=50)
    job_priority_strategy: str = Field(default="dependency_order", max_length=50)
    output_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    error_message: str = Field(default="", max_length=2000)
    started_at: Optional[float] = Field(default=None)
    completed_at: Optional[float] = Field(default=None)
    created: float = Field(default=0.0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class JobRecord(SQLModel, table=True):
    """One job per workflow node of a pipeline."""

    __tablename__ = "jobs"

    id: Optional[int] = Field(default=None, primary_key=True)
    pipeline_id: Optional[str] = Field(default=None, index=True, max_length=255)
    node_id: str = Field(index=True, max_length=255)
    node_type_id: str = Field(default="", max_length=255)
    label: str = Field(default="", max_length=255)
    status: str = Field(default="pending", max_length=50, index=True)
    priority: int = Field(default=0, index=True)
    input_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    output_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    job_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    dependent_job_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    started_at: Optional[float] = Field(default=None)
    completed_at: Optional[float] = Field(default=None)
    error_message: str = Field(default="", max_length=2000)
    created: float = Field(default=0.0)
