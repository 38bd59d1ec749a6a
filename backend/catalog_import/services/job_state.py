"""Batch job lifecycle: statuses, allowed transitions, counters."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from catalog_import.db.models import BatchJob

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    RESUMABLE = "resumable"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
RUNNABLE = frozenset({JobStatus.PENDING, JobStatus.RESUMABLE, JobStatus.RETRYING})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.PAUSED, JobStatus.CANCELLED, JobStatus.COMPLETED, JobStatus.FAILED}
    ),
    JobStatus.PAUSED: frozenset(
        {JobStatus.RESUMABLE, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.RESUMABLE: frozenset(
        {JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.RETRYING: frozenset(
        {JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.FAILED: frozenset({JobStatus.RETRYING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

TIMESTAMP_FIELDS = {
    JobStatus.PAUSED: "paused_at",
    JobStatus.RESUMABLE: "resumed_at",
    JobStatus.RETRYING: "resumed_at",
    JobStatus.CANCELLED: "canceled_at",
    JobStatus.COMPLETED: "completed_at",
    JobStatus.FAILED: "failed_at",
}


class InvalidTransition(Exception):
    def __init__(self, current: JobStatus | str, target: JobStatus | str):
        self.current = JobStatus(current)
        self.target = JobStatus(target)
        super().__init__(
            f"Cannot move job from {self.current.value} to {self.target.value}"
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: JobStatus | str, target: JobStatus | str) -> bool:
    return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]


def transition(
    job: BatchJob, target: JobStatus | str, *, error_message: str | None = None
) -> BatchJob:
    """Move ``job`` to ``target`` and stamp the matching lifecycle timestamp.

    Raises ``InvalidTransition`` when the move is not allowed. The caller
    commits.
    """
    current = JobStatus(job.status)
    target = JobStatus(target)
    if not can_transition(current, target):
        raise InvalidTransition(current, target)

    now = utcnow()
    job.status = target.value
    if target == JobStatus.PROCESSING:
        if job.started_at is None:
            job.started_at = now
    else:
        setattr(job, TIMESTAMP_FIELDS[target], now)

    if error_message is not None:
        job.error_message = error_message

    logger.info(f"Job {job.id}: {current.value} -> {target.value}")
    return job


def record_row_outcome(job: BatchJob, succeeded: bool) -> None:
    """Count one processed row; the resume offset follows the processed counter."""
    job.processed_count = (job.processed_count or 0) + 1
    if succeeded:
        job.success_count = (job.success_count or 0) + 1
    else:
        job.failed_count = (job.failed_count or 0) + 1
    job.last_processed_row = job.processed_count


def final_status(job: BatchJob) -> JobStatus:
    """COMPLETED only when the stream was exhausted without a single failed row."""
    return JobStatus.COMPLETED if (job.failed_count or 0) == 0 else JobStatus.FAILED


def rows_remaining(job: BatchJob) -> bool:
    return (job.processed_count or 0) < (job.total_count or 0)


def is_retryable(job: BatchJob) -> bool:
    """A failed job can be retried while rows are left and retries remain."""
    return (
        JobStatus(job.status) == JobStatus.FAILED
        and rows_remaining(job)
        and (job.retry_count or 0) < (job.max_retries or 0)
    )


def progress_fraction(job: BatchJob) -> float | None:
    if not job.total_count:
        return None
    return min(1.0, (job.processed_count or 0) / job.total_count)
