"""Append-only storage and retrieval of row findings."""

from __future__ import annotations

import csv
import io
import logging
from typing import Iterable

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from catalog_import.db.models import RowFinding
from catalog_import.schemas.finding import Finding, FindingType, Severity

logger = logging.getLogger(__name__)

SEVERITY_RANK = {Severity.ERROR.value: 0, Severity.WARNING.value: 1, Severity.INFO.value: 2}
EXPORT_COLUMNS = ["row_number", "field", "severity", "type", "message"]


def record_findings(
    session: Session,
    job_id: str,
    row_number: int | None,
    findings: Iterable[Finding],
) -> list[RowFinding]:
    """Stage findings for one row; the caller's commit persists them."""
    records = [
        RowFinding(
            job_id=job_id,
            row_number=row_number,
            field=finding.field,
            message=finding.message,
            type=FindingType(finding.type).value,
            severity=Severity(finding.severity).value,
        )
        for finding in findings
    ]
    if records:
        session.add_all(records)
    return records


def record_event(
    session: Session,
    job_id: str,
    message: str,
    *,
    severity: Severity = Severity.INFO,
    finding_type: FindingType = FindingType.SYSTEM,
    field: str | None = None,
    row_number: int | None = None,
) -> RowFinding:
    """Record a job-level event (pause, resume, abort...)."""
    logger.info(f"Job {job_id}: {message}")
    [record] = record_findings(
        session,
        job_id,
        row_number,
        [Finding(message=message, field=field, type=finding_type, severity=severity)],
    )
    return record


def list_findings(
    session: Session, job_id: str, severity: Severity | str | None = None
) -> list[RowFinding]:
    """Findings ordered by row (job-level events last), severity, then insertion."""
    severity_rank = case(SEVERITY_RANK, value=RowFinding.severity, else_=len(SEVERITY_RANK))
    stmt = (
        select(RowFinding)
        .where(RowFinding.job_id == job_id)
        .order_by(
            RowFinding.row_number.is_(None),
            RowFinding.row_number,
            severity_rank,
            RowFinding.id,
        )
    )
    if severity is not None:
        stmt = stmt.where(RowFinding.severity == Severity(severity).value)
    return list(session.execute(stmt).scalars())


def summarize_findings(session: Session, job_id: str) -> dict:
    """Counts of findings per severity and per type."""
    by_severity = dict(
        session.execute(
            select(RowFinding.severity, func.count(RowFinding.id))
            .where(RowFinding.job_id == job_id)
            .group_by(RowFinding.severity)
        ).all()
    )
    by_type = dict(
        session.execute(
            select(RowFinding.type, func.count(RowFinding.id))
            .where(RowFinding.job_id == job_id)
            .group_by(RowFinding.type)
        ).all()
    )
    return {
        "total": sum(by_severity.values()),
        "by_severity": {level.value: by_severity.get(level.value, 0) for level in Severity},
        "by_type": {kind.value: by_type.get(kind.value, 0) for kind in FindingType},
    }


def export_findings_csv(session: Session, job_id: str) -> str:
    """Render a job's findings as CSV for a corrected re-upload."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL)
    writer.writerow(EXPORT_COLUMNS)
    for finding in list_findings(session, job_id):
        writer.writerow(
            [
                finding.row_number if finding.row_number is not None else "",
                finding.field or "",
                finding.severity,
                finding.type,
                finding.message,
            ]
        )
    return buffer.getvalue()
