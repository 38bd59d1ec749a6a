"""Live progress snapshots for running import jobs, kept in Redis."""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from redis import Redis
from redis.exceptions import RedisError

from catalog_import.core.config import get_settings
from catalog_import.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


class ProgressSnapshot(BaseModel):
    job_id: str
    progress: float = 0.0
    message: str | None = None
    status: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("progress")
    @classmethod
    def clamp_progress(cls, v: float) -> float:
        return max(0.0, min(v, 1.0))


@lru_cache
def get_redis_client() -> Redis:
    return create_redis_client(get_settings().redis_url, decode_responses=True)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(
    job_id: str,
    progress: float,
    message: str | None = None,
    *,
    status: str | None = None,
    meta: dict[str, Any] | None = None,
    client: Redis | None = None,
) -> None:
    """Store the latest snapshot for ``job_id``; matches the runner's progress callback."""
    snapshot = ProgressSnapshot(
        job_id=job_id, progress=progress, message=message, status=status, meta=meta or {}
    )
    try:
        (client or get_redis_client()).set(
            _key(job_id),
            snapshot.model_dump_json(),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError as e:
        # Ingestion keeps going without live progress
        logger.debug(f"Could not publish progress for job {job_id}: {e}")


def fetch_progress(job_id: str, *, client: Redis | None = None) -> dict[str, Any]:
    """Latest snapshot as a dict, or ``{}`` when none is available."""
    try:
        raw = (client or get_redis_client()).get(_key(job_id))
    except RedisError as e:
        logger.debug(f"Could not read progress for job {job_id}: {e}")
        return {}
    if not raw:
        return {}
    try:
        return ProgressSnapshot.model_validate_json(raw).model_dump()
    except ValidationError:
        logger.warning(f"Discarding unreadable progress snapshot for job {job_id}")
        return {}


def clear_progress(job_id: str, *, client: Redis | None = None) -> None:
    try:
        (client or get_redis_client()).delete(_key(job_id))
    except RedisError as e:
        logger.debug(f"Could not clear progress for job {job_id}: {e}")
