"""Centralized constants for workflow handles, job lifecycle and events.

This module provides a single source of truth for the string conventions
shared by the editor, the job generator and the runtime.
"""

from typing import FrozenSet

# =============================================================================
# HANDLE CONVENTIONS
# =============================================================================

# Trigger inputs have the form "{nodeId}-input-trigger"
TRIGGER_HANDLE_SUFFIX = "-input-trigger"

# Gateway branch outputs have the form "{nodeId}-output-{branchName}"
BRANCH_HANDLE_SEPARATOR = "-output-"

# Output key written by gateway nodes (e.g. "true", "false" or "a,b")
ACTIVE_BRANCHES_KEY = "active_branches"
ACTIVE_BRANCHES_DELIMITER = ","

# =============================================================================
# JOB DEFAULTS
# =============================================================================

DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_CONCURRENT_JOBS = 5
DEFAULT_JOB_PRIORITY_STRATEGY = "dependency_order"

# Priority = rank * ORDER_WEIGHT + dependency_count * DEPENDENCY_WEIGHT
PRIORITY_ORDER_WEIGHT = 10
PRIORITY_DEPENDENCY_WEIGHT = 5

# Retry strategies for a pipeline
RETRY_STRATEGY_INDIVIDUAL = "individual"
RETRY_STRATEGY_STOP_ON_FAILURE = "stop_on_failure"

RETRY_STRATEGIES: FrozenSet[str] = frozenset([
    RETRY_STRATEGY_INDIVIDUAL,
    RETRY_STRATEGY_STOP_ON_FAILURE,
])

# =============================================================================
# EVENT NAMES
# =============================================================================

EVENT_PREFIX = "flowdrop."

EVENT_JOB_CREATED = "job.created"
EVENT_JOB_STARTED = "job.started"
EVENT_JOB_COMPLETED = "job.completed"
EVENT_JOB_FAILED = "job.failed"
EVENT_JOB_RETRIED = "job.retried"
EVENT_JOB_CANCELLED = "job.cancelled"

EVENT_PIPELINE_JOBS_GENERATED = "pipeline.jobs_generated"
EVENT_PIPELINE_STARTED = "pipeline.started"
EVENT_PIPELINE_COMPLETED = "pipeline.completed"
EVENT_PIPELINE_FAILED = "pipeline.failed"
EVENT_PIPELINE_CANCELLED = "pipeline.cancelled"

ALL_EVENTS: FrozenSet[str] = frozenset([
    EVENT_JOB_CREATED,
    EVENT_JOB_STARTED,
    EVENT_JOB_COMPLETED,
    EVENT_JOB_FAILED,
    EVENT_JOB_RETRIED,
    EVENT_JOB_CANCELLED,
    EVENT_PIPELINE_JOBS_GENERATED,
    EVENT_PIPELINE_STARTED,
    EVENT_PIPELINE_COMPLETED,
    EVENT_PIPELINE_FAILED,
    EVENT_PIPELINE_CANCELLED,
])
