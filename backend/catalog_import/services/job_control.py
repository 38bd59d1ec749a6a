"""Lifecycle operations on batch jobs: create, inspect, pause, resume, retry, cancel, delete."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, BinaryIO

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalog_import.core.config import Settings
from catalog_import.db.models import BatchJob, Catalog
from catalog_import.schemas.finding import Severity
from catalog_import.schemas.job import BatchJobStatus
from catalog_import.services.error_sink import record_event
from catalog_import.services.progress_tracker import clear_progress, fetch_progress
from catalog_import.services.job_state import (
    TERMINAL,
    InvalidTransition,
    JobStatus,
    is_retryable,
    progress_fraction,
    rows_remaining,
    transition,
    utcnow,
)
from catalog_import.storage.uploads import delete_upload, save_upload, upload_exists

logger = logging.getLogger(__name__)

CANCELLABLE = (
    JobStatus.PENDING,
    JobStatus.PROCESSING,
    JobStatus.PAUSED,
    JobStatus.RESUMABLE,
    JobStatus.RETRYING,
)
RESUMABLE_FROM = (JobStatus.PAUSED, JobStatus.RESUMABLE)


class JobControlError(Exception):
    """A lifecycle request could not be honoured; ``code`` is machine-readable."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def _require_state(job: BatchJob, allowed: tuple[JobStatus, ...], action: str) -> JobStatus:
    status = JobStatus(job.status)
    if status not in allowed:
        raise JobControlError(
            "INVALID_BATCH_STATE",
            f"Cannot {action} batch in {status.value} status. Batch must be in one of "
            f"these states: {', '.join(s.value for s in allowed)}",
        )
    return status


def _require_file(job: BatchJob) -> None:
    if not job.file_path:
        raise JobControlError("FILE_PATH_MISSING", "No CSV file associated with this batch")
    if not upload_exists(job.file_path):
        raise JobControlError("FILE_NOT_FOUND", "CSV file no longer exists on the server")


def _move(job: BatchJob, target: JobStatus) -> None:
    try:
        transition(job, target)
    except InvalidTransition as e:
        raise JobControlError("INVALID_BATCH_STATE", str(e)) from e


def create_job(
    session: Session,
    file_obj: BinaryIO,
    original_name: str | None,
    settings: Settings,
    *,
    name: str | None = None,
    description: str | None = None,
    catalog_id: int | None = None,
) -> BatchJob:
    """Stage an uploaded CSV and register a pending job for it."""
    if catalog_id is not None and session.get(Catalog, catalog_id) is None:
        raise JobControlError("CATALOG_NOT_FOUND", f"Catalog with ID {catalog_id} not found")

    staged = save_upload(file_obj, original_name, settings.uploads_dir)
    job = BatchJob(
        name=name or original_name,
        description=description,
        status=JobStatus.PENDING.value,
        catalog_id=catalog_id,
        file_original_name=original_name,
        file_path=str(staged.path),
        file_size=staged.size,
        source_sha256=staged.sha256,
        max_retries=settings.max_retries,
        meta={},
    )
    session.add(job)
    session.commit()
    logger.info(f"Created batch job {job.id} for {original_name!r} ({staged.size} bytes)")
    return job


def get_job(session: Session, job_id: str) -> BatchJob:
    job = session.get(BatchJob, job_id)
    if job is None:
        raise JobControlError("BATCH_NOT_FOUND", f"Batch upload with ID {job_id} not found")
    return job


def list_jobs(
    session: Session, status: JobStatus | str | None = None, limit: int = 50
) -> list[BatchJob]:
    stmt = select(BatchJob).order_by(BatchJob.created_at.desc(), BatchJob.id).limit(limit)
    if status is not None:
        stmt = stmt.where(BatchJob.status == JobStatus(status).value)
    return list(session.execute(stmt).scalars())


def describe_job(
    session: Session, job_id: str, snapshot: dict[str, Any] | None = None
) -> BatchJobStatus:
    """Combine DB state and the latest progress snapshot into a status payload.

    Without an explicit ``snapshot`` the one stored by the worker is read.
    """
    job = get_job(session, job_id)
    if snapshot is None:
        snapshot = fetch_progress(job_id)

    progress = progress_fraction(job)
    if progress is None:
        progress = snapshot.get("progress")

    message = snapshot.get("message")
    if not message:
        total_display = job.total_count if job.total_count else "?"
        message = f"Processed {job.processed_count}/{total_display} rows"

    status = BatchJobStatus.model_validate(job)
    return status.model_copy(
        update={
            "progress": progress,
            "message": message,
            "meta": {**(job.meta or {}), **(snapshot.get("meta") or {})},
        }
    )


def pause_job(session: Session, job_id: str) -> BatchJob:
    """Ask a running job to stop after its current row; the offset is kept."""
    job = get_job(session, job_id)
    _require_state(job, (JobStatus.PROCESSING,), "pause")
    _move(job, JobStatus.PAUSED)
    record_event(session, job.id, f"Batch was manually paused at row {job.processed_count}")
    session.commit()
    return job


def cancel_job(session: Session, job_id: str) -> BatchJob:
    """Cancel a job; a running job stops between rows and releases its file."""
    job = get_job(session, job_id)
    previous = _require_state(job, CANCELLABLE, "cancel")
    _move(job, JobStatus.CANCELLED)
    record_event(session, job.id, f"Batch was manually cancelled while in {previous.value} state")
    session.commit()
    if previous != JobStatus.PROCESSING:
        delete_upload(job.file_path)
    return job


def resume_job(session: Session, job_id: str) -> BatchJob:
    """Mark a paused job resumable; the caller enqueues it."""
    job = get_job(session, job_id)
    status = _require_state(job, RESUMABLE_FROM, "resume")
    _require_file(job)
    if status == JobStatus.PAUSED:
        _move(job, JobStatus.RESUMABLE)
        record_event(session, job.id, f"Batch resumed from row {job.last_processed_row}")
        session.commit()
        clear_progress(job.id)
    return job


def retry_job(session: Session, job_id: str) -> BatchJob:
    """Re-run a failed job from its stored offset; the caller enqueues it."""
    job = get_job(session, job_id)
    _require_state(job, (JobStatus.FAILED,), "retry")
    _require_file(job)
    if not rows_remaining(job):
        raise JobControlError(
            "INVALID_BATCH_STATE", "Every row of this batch has already been processed"
        )
    if not is_retryable(job):
        raise JobControlError(
            "RETRY_LIMIT_REACHED",
            f"Batch has already been retried {job.retry_count} of {job.max_retries} times",
        )

    job.retry_count = (job.retry_count or 0) + 1
    _move(job, JobStatus.RETRYING)
    record_event(
        session,
        job.id,
        f"Starting retry attempt #{job.retry_count} from row {job.last_processed_row}",
    )
    session.commit()
    # The failed run's snapshot no longer describes this job
    clear_progress(job.id)
    return job


def delete_job(session: Session, job_id: str) -> None:
    """Delete a job, its findings and its staged file."""
    job = get_job(session, job_id)
    if JobStatus(job.status) == JobStatus.PROCESSING:
        raise JobControlError(
            "INVALID_BATCH_STATE", "Cannot delete a batch while it is processing"
        )
    file_path = job.file_path
    session.delete(job)
    session.commit()
    delete_upload(file_path)
    clear_progress(job_id)
    logger.info(f"Deleted batch job {job_id}")


def recover_stale_jobs(
    session: Session, *, stale_minutes: int, now: datetime | None = None
) -> list[BatchJob]:
    """Pause jobs left ``processing`` by a worker that stopped updating them."""
    cutoff = (now or utcnow()) - timedelta(minutes=stale_minutes)
    stale = list(
        session.execute(
            select(BatchJob).where(
                BatchJob.status == JobStatus.PROCESSING.value,
                BatchJob.updated_at < cutoff,
            )
        ).scalars()
    )
    for job in stale:
        _move(job, JobStatus.PAUSED)
        record_event(
            session,
            job.id,
            f"Worker stopped responding; batch paused at row {job.last_processed_row} "
            "so it can be resumed",
            severity=Severity.WARNING,
        )
    session.commit()
    return stale


def purge_released_uploads(session: Session) -> int:
    """Delete staged files still on disk for jobs that can no longer run."""
    purged = 0
    jobs = session.execute(
        select(BatchJob).where(
            BatchJob.status.in_([status.value for status in TERMINAL]),
            BatchJob.file_path.is_not(None),
        )
    ).scalars()
    for job in jobs:
        if is_retryable(job) or not upload_exists(job.file_path):
            continue
        delete_upload(job.file_path)
        purged += 1
    return purged
