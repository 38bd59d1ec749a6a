"""Batch job status payloads exposed to the job-status collaborator."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BatchJobStatus(BaseModel):
    id: str
    name: str | None = None
    status: str = Field(
        ...,
        description="pending|processing|paused|resumable|retrying|completed|failed|cancelled",
    )
    catalog_id: int | None = None
    file_original_name: str | None = None
    file_size: int | None = None
    progress: float | None = Field(None, description="0-1 range for UI progress bars")
    message: str | None = None
    total_count: int = 0
    processed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    last_processed_row: int = 0
    retry_count: int = 0
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    canceled_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    meta: dict | None = None

    model_config = ConfigDict(from_attributes=True)


class ImportOutcome(BaseModel):
    """Summary returned by one run of the pipeline for a job."""

    job_id: str
    status: str
    total: int
    processed: int
    success: int
    failed: int
    stopped_early: bool = Field(
        False, description="True when the run ended on a pause/cancel request or a fatal error"
    )
