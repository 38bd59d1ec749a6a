"""Celery task running the import pipeline for one batch job."""

from __future__ import annotations

import logging

from catalog_import.core.config import get_settings
from catalog_import.db.session import get_fresh_session
from catalog_import.services.batch_import import run_batch_job
from catalog_import.services.progress_tracker import publish_progress
from catalog_import.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="catalog_import.workers.tasks.process_batch_job")
def process_batch_job(self, job_id: str) -> dict:
    """Process a pending, resumable or retrying job and return its outcome."""
    settings = get_settings()
    session = get_fresh_session()
    try:
        logger.info(f"Task {self.request.id}: running batch job {job_id}")
        outcome = run_batch_job(session, job_id, settings, progress=publish_progress)
        logger.info(
            f"Batch job {job_id} finished as {outcome.status}: "
            f"{outcome.success} succeeded, {outcome.failed} failed "
            f"({outcome.processed}/{outcome.total} rows)"
        )
        return outcome.model_dump()
    finally:
        session.close()


def enqueue_batch_job(job_id: str) -> str:
    """Queue a job for a worker; returns the Celery task id."""
    result = process_batch_job.apply_async(args=[job_id])
    logger.info(f"Queued batch job {job_id} as task {result.id}")
    return result.id
