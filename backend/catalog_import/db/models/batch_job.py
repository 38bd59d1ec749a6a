"""Track bulk import runs: source file, counters and lifecycle timestamps."""

import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog_import.db.base import Base, JSONType


class BatchJob(Base):
    __tablename__ = "batch_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255))
    description = Column(Text)
    status = Column(String(32), nullable=False, default="pending", index=True)
    catalog_id = Column(Integer, ForeignKey("catalogs.id", ondelete="SET NULL"))

    # Source file descriptor
    file_original_name = Column(String(255))
    file_path = Column(Text)
    file_size = Column(Integer)
    source_sha256 = Column(String(64))

    # Counters
    total_count = Column(Integer, nullable=False, default=0)
    processed_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    last_processed_row = Column(Integer, nullable=False, default=0)

    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    error_message = Column(Text)
    meta = Column(JSONType)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    paused_at = Column(DateTime(timezone=True))
    resumed_at = Column(DateTime(timezone=True))
    canceled_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    findings = relationship(
        "RowFinding",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
