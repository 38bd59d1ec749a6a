"""Row finding payloads shared by the validator, pipeline and error sink."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FindingType(str, Enum):
    """Where in the pipeline a finding was raised."""

    VALIDATION = "validation"
    PROCESSING = "processing"
    DATABASE = "database"
    SYSTEM = "system"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Finding(BaseModel):
    """A finding produced while handling one row (not yet persisted)."""

    message: str
    field: str | None = None
    type: FindingType = FindingType.VALIDATION
    severity: Severity = Severity.ERROR

    @property
    def blocking(self) -> bool:
        return self.severity == Severity.ERROR


class RowFindingRead(BaseModel):
    id: int
    job_id: str
    row_number: int | None = Field(None, description="1-based data row; null for job events")
    field: str | None = None
    message: str
    type: str = Field(..., description="validation|processing|database|system")
    severity: str = Field(..., description="error|warning|info")
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


def has_blocking(findings: list[Finding]) -> bool:
    return any(finding.blocking for finding in findings)
