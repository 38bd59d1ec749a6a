"""Append-only findings recorded against a batch job and source row."""

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog_import.db.base import Base


class RowFinding(Base):
    __tablename__ = "row_findings"

    id = Column(Integer, primary_key=True)
    job_id = Column(
        String(36),
        ForeignKey("batch_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Null for job-level events (pause, cancel, resume...)
    row_number = Column(Integer)
    field = Column(String(255))
    message = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    job = relationship("BatchJob", back_populates="findings")

    __table_args__ = (Index("ix_row_findings_job_row", job_id, row_number),)
