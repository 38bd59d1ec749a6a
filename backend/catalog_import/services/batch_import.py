"""Row-by-row import runner for a batch job.

One call processes a job from its stored offset until the stream ends, a
pause/cancel request is seen between rows, or the source turns out to be
unusable. Each row is committed on its own so a failing row never takes
earlier rows with it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalog_import.core.config import Settings
from catalog_import.db.models import BatchJob
from catalog_import.schemas.finding import Finding, FindingType, Severity
from catalog_import.schemas.job import ImportOutcome
from catalog_import.services.attribute_materializer import AttributeMaterializer
from catalog_import.services.csv_ingest import (
    DecodeError,
    DecodedRow,
    count_rows,
    iter_rows,
    open_source,
)
from catalog_import.services.entity_resolver import EntityResolutionError, EntityResolver
from catalog_import.services.error_sink import record_event, record_findings
from catalog_import.services.job_control import JobControlError
from catalog_import.services.job_state import (
    RUNNABLE,
    JobStatus,
    can_transition,
    final_status,
    is_retryable,
    progress_fraction,
    record_row_outcome,
    transition,
)
from catalog_import.services.product_writer import ProductWriteError, write_product
from catalog_import.storage.uploads import delete_upload, file_sha256, upload_exists
from catalog_import.utils.csv_validator import validate_row
from catalog_import.utils.memory_monitor import force_gc, log_memory_status

logger = logging.getLogger(__name__)

# (job_id, progress 0-1, message, *, status=..., meta=...)
ProgressCallback = Callable[..., None]

GC_EVERY = 5000


def _counters(job: BatchJob) -> dict[str, Any]:
    return {
        "total": job.total_count,
        "processed": job.processed_count,
        "success": job.success_count,
        "failed": job.failed_count,
        "last_processed_row": job.last_processed_row,
    }


def _report(progress: ProgressCallback | None, job: BatchJob, message: str) -> None:
    if progress is None:
        return
    progress(
        job.id,
        progress_fraction(job) or 0.0,
        message,
        status=job.status,
        meta=_counters(job),
    )


def _outcome(job: BatchJob, stopped_early: bool) -> ImportOutcome:
    return ImportOutcome(
        job_id=job.id,
        status=job.status,
        total=job.total_count or 0,
        processed=job.processed_count or 0,
        success=job.success_count or 0,
        failed=job.failed_count or 0,
        stopped_early=stopped_early,
    )


def _stored_status(session: Session, job_id: str) -> JobStatus:
    return JobStatus(
        session.execute(select(BatchJob.status).where(BatchJob.id == job_id)).scalar_one()
    )


def release_source(job: BatchJob) -> None:
    """Delete the staged file once no further run can need it."""
    status = JobStatus(job.status)
    if status in (JobStatus.COMPLETED, JobStatus.CANCELLED) or (
        status == JobStatus.FAILED and not is_retryable(job)
    ):
        delete_upload(job.file_path)


def _fail_job(
    session: Session, job: BatchJob, message: str, *, row_number: int | None = None
) -> None:
    record_event(
        session,
        job.id,
        message,
        severity=Severity.ERROR,
        finding_type=FindingType.SYSTEM,
        row_number=row_number,
    )
    if can_transition(job.status, JobStatus.FAILED):
        transition(job, JobStatus.FAILED, error_message=message)
    session.commit()


def _prepare_source(session: Session, job: BatchJob, settings: Settings) -> bool:
    """Check the staged file and set up counters; False when the job was failed."""
    status = JobStatus(job.status)
    if not upload_exists(job.file_path):
        _fail_job(session, job, f"Source file not found: {job.file_original_name or job.file_path}")
        return False

    digest = file_sha256(job.file_path)
    if status == JobStatus.PENDING:
        job.source_sha256 = digest
        job.total_count = count_rows(
            job.file_path,
            required_headers=settings.required_fields,
            attribute_prefix=settings.attribute_prefix,
        )
        job.processed_count = 0
        job.success_count = 0
        job.failed_count = 0
        job.last_processed_row = 0
    elif job.source_sha256 and digest != job.source_sha256:
        _fail_job(
            session,
            job,
            "Source file changed since the job started; it cannot be resumed",
        )
        return False
    return True


def process_row(
    session: Session,
    job: BatchJob,
    decoded: DecodedRow,
    resolver: EntityResolver,
    materializer: AttributeMaterializer,
    settings: Settings,
) -> bool:
    """Validate, resolve, materialize and write one row, then commit it."""
    findings, row = validate_row(
        decoded,
        session=session,
        required_fields=settings.required_fields,
        job_catalog_id=job.catalog_id,
        discount_tolerance=settings.discount_tolerance,
        attribute_prefix=settings.attribute_prefix,
    )

    succeeded = False
    if row is not None:
        try:
            refs = resolver.resolve_references(row, job.catalog_id)
            attributes = materializer.materialize(row, refs.catalog_id)
            write_product(session, row, refs, attributes, batch_job_id=job.id)
            succeeded = True
        except EntityResolutionError as e:
            session.rollback()
            resolver.discard_pending()
            findings.append(
                Finding(
                    field=e.field,
                    message=e.message,
                    type=FindingType.DATABASE,
                    severity=Severity.ERROR,
                )
            )
        except ProductWriteError as e:
            session.rollback()
            resolver.discard_pending()
            findings.append(
                Finding(
                    field="product_sku",
                    message=e.message,
                    type=FindingType.PROCESSING,
                    severity=Severity.ERROR,
                )
            )

    record_findings(session, job.id, decoded.number, findings)
    record_row_outcome(job, succeeded)
    session.commit()

    if succeeded:
        resolver.commit_pending()
    else:
        resolver.discard_pending()
    return succeeded


def run_batch_job(
    session: Session,
    job_id: str,
    settings: Settings,
    progress: ProgressCallback | None = None,
) -> ImportOutcome:
    """Run (or continue) the import for ``job_id`` and return a summary.

    Pending jobs start from the first row; resumable and retrying jobs
    continue after ``last_processed_row`` once the staged file is verified
    unchanged. Cancelled jobs only have their file released. Any other
    status is left untouched.
    """
    job = session.get(BatchJob, job_id)
    if job is None:
        raise JobControlError("BATCH_NOT_FOUND", f"Batch job {job_id} not found")

    status = JobStatus(job.status)
    if status == JobStatus.CANCELLED:
        release_source(job)
        return _outcome(job, stopped_early=True)
    if status not in RUNNABLE:
        logger.warning(f"Job {job_id} is {status.value}; refusing to run it")
        return _outcome(job, stopped_early=True)

    if not _prepare_source(session, job, settings):
        release_source(job)
        _report(progress, job, job.error_message or "Import failed")
        return _outcome(job, stopped_early=True)

    offset = job.last_processed_row or 0
    transition(job, JobStatus.PROCESSING)
    session.commit()

    log_memory_status(
        f"Job {job_id} start (offset {offset})",
        baseline=settings.memory_baseline_bytes,
        limit=settings.memory_limit_bytes,
    )
    _report(progress, job, f"Processing {job.file_original_name or 'upload'}")

    resolver = EntityResolver(session, create_attempts=settings.entity_create_attempts)
    materializer = AttributeMaterializer(resolver, settings.attribute_prefix)
    rows_this_run = 0
    stopped_by: JobStatus | None = None
    aborted = False

    try:
        with open_source(Path(job.file_path)) as stream:
            for decoded in iter_rows(
                stream,
                required_headers=settings.required_fields,
                attribute_prefix=settings.attribute_prefix,
                skip=offset,
                memory_check_every=settings.memory_check_every,
                memory_limit_bytes=settings.memory_limit_bytes,
            ):
                process_row(session, job, decoded, resolver, materializer, settings)
                rows_this_run += 1

                if rows_this_run % settings.progress_every == 0:
                    _report(
                        progress,
                        job,
                        f"Processed {job.processed_count}/{job.total_count} rows",
                    )

                if rows_this_run % GC_EVERY == 0:
                    force_gc()
                    log_memory_status(
                        f"Job {job_id} after {rows_this_run} rows",
                        baseline=settings.memory_baseline_bytes,
                        limit=settings.memory_limit_bytes,
                    )

                # Honor pause/cancel before the next row is written
                requested = _stored_status(session, job_id)
                if requested in (JobStatus.PAUSED, JobStatus.CANCELLED):
                    stopped_by = requested
                    break
    except DecodeError as e:
        session.rollback()
        logger.error(f"Job {job_id}: source could not be decoded: {e}")
        _fail_job(session, job, str(e), row_number=e.row_number)
        aborted = True
    except MemoryError as e:
        session.rollback()
        logger.error(f"Job {job_id}: {e}")
        _fail_job(session, job, f"Out of memory: {e}")
        aborted = True
        force_gc()
    except Exception as e:
        session.rollback()
        logger.error(f"Job {job_id}: unexpected error: {e}", exc_info=True)
        _fail_job(session, job, f"Unexpected error: {e}")
        release_source(job)
        _report(progress, job, "Import failed")
        raise
    else:
        if stopped_by is None:
            # Nothing was left to read; a request may still be waiting
            current = _stored_status(session, job_id)
            if current in (JobStatus.PAUSED, JobStatus.CANCELLED):
                stopped_by = current
        if stopped_by is not None:
            session.refresh(job)
            logger.info(
                f"Job {job_id}: stopped at row {job.last_processed_row} ({stopped_by.value})"
            )
        else:
            target = final_status(job)
            transition(
                job,
                target,
                error_message=(
                    f"{job.failed_count} of {job.processed_count} row(s) failed"
                    if target == JobStatus.FAILED
                    else None
                ),
            )
            session.commit()

    release_source(job)
    log_memory_status(
        f"Job {job_id} end ({job.status})",
        baseline=settings.memory_baseline_bytes,
        limit=settings.memory_limit_bytes,
    )
    _report(
        progress,
        job,
        f"Processed {job.processed_count}/{job.total_count} rows ({job.status})",
    )
    return _outcome(job, stopped_early=aborted or stopped_by is not None)
