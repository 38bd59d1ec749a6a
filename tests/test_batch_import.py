"""
End-to-end tests for the row-by-row import runner.
"""

from pathlib import Path

import pytest
from sqlalchemy import func, select

from catalog_import.db.models import Product, ProductAttributeValue
from catalog_import.services import csv_ingest
from catalog_import.services.batch_import import run_batch_job
from catalog_import.services.error_sink import list_findings
from catalog_import.services.job_control import (
    JobControlError,
    cancel_job,
    pause_job,
    resume_job,
    retry_job,
)

from conftest import HEADERS, csv_bytes, make_row


def _count(session, model):
    return session.execute(select(func.count()).select_from(model)).scalar_one()


def _rows(n):
    return [make_row(product_sku=f"SKU-{i}", product_name=f"Product {i}") for i in range(1, n + 1)]


def test_mixed_file_counts_each_row_once(session, settings, make_job):
    job = make_job(
        [
            make_row(attr_Color="Red, Blue, Red"),
            make_row(product_sku="SKU-2", product_description=""),
            make_row(product_name="Duplicate"),
        ]
    )

    outcome = run_batch_job(session, job.id, settings)

    assert (outcome.total, outcome.processed, outcome.success, outcome.failed) == (3, 3, 1, 2)
    assert outcome.status == "failed"
    assert outcome.stopped_early is False
    assert job.error_message == "2 of 3 row(s) failed"

    findings = list_findings(session, job.id)
    assert [(f.row_number, f.field, f.severity, f.type) for f in findings] == [
        (2, "product_description", "error", "validation"),
        (3, "product_sku", "error", "validation"),
    ]
    assert _count(session, Product) == 1
    assert _count(session, ProductAttributeValue) == 2

    product = session.execute(select(Product)).scalar_one()
    assert product.batch_job_id == job.id


def test_clean_file_completes_and_releases_upload(session, settings, make_job):
    job = make_job(_rows(3))

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.status == "completed"
    assert outcome.success == 3
    assert job.completed_at is not None
    assert not Path(job.file_path).exists()
    assert list_findings(session, job.id) == []


def test_discount_mismatch_warns_but_imports(session, settings, make_job):
    job = make_job([make_row(regular_price="100", sale_price="80", discount_percentage="15")])

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.status == "completed"
    assert _count(session, Product) == 1
    [finding] = list_findings(session, job.id)
    assert finding.severity == "warning"
    assert finding.field == "discount_percentage"


def test_sale_above_regular_rejects_row(session, settings, make_job):
    job = make_job([make_row(regular_price="100", sale_price="120", discount_percentage="0")])

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.failed == 1
    assert _count(session, Product) == 0
    assert any(
        f.field == "sale_price" and f.severity == "error" for f in list_findings(session, job.id)
    )


def test_progress_is_reported_per_row(session, settings, make_job):
    job = make_job(_rows(2))
    calls = []

    def progress(job_id, fraction, message, *, status, meta):
        calls.append((fraction, status, meta["processed"]))

    run_batch_job(session, job.id, settings, progress=progress)

    assert calls[0] == (0.0, "processing", 0)
    assert (0.5, "processing", 1) in calls
    assert calls[-1] == (1.0, "completed", 2)


def test_pause_and_resume_match_uninterrupted_run(session, settings, make_job):
    job = make_job(_rows(5))

    def pause_after_two(job_id, fraction, message, *, status, meta):
        if status == "processing" and meta["processed"] == 2:
            pause_job(session, job_id)

    first = run_batch_job(session, job.id, settings, progress=pause_after_two)

    assert first.status == "paused"
    assert first.stopped_early is True
    assert (first.processed, job.last_processed_row) == (2, 2)
    assert Path(job.file_path).exists()

    resume_job(session, job.id)
    second = run_batch_job(session, job.id, settings)

    assert second.status == "completed"
    assert (second.total, second.processed, second.success, second.failed) == (5, 5, 5, 0)
    skus = set(session.execute(select(Product.sku)).scalars())
    assert skus == {f"SKU-{i}" for i in range(1, 6)}
    assert all(f.severity == "info" for f in list_findings(session, job.id))


def test_cancel_mid_run_stops_and_deletes_upload(session, settings, make_job):
    job = make_job(_rows(5))

    def cancel_after_one(job_id, fraction, message, *, status, meta):
        if status == "processing" and meta["processed"] == 1:
            cancel_job(session, job_id)

    outcome = run_batch_job(session, job.id, settings, progress=cancel_after_one)

    assert outcome.status == "cancelled"
    assert outcome.processed == 1
    assert outcome.stopped_early is True
    assert _count(session, Product) == 1
    assert not Path(job.file_path).exists()


def test_memory_abort_then_retry_completes(session, settings, make_job, monkeypatch):
    settings.memory_check_every = 1
    job = make_job(_rows(4))
    calls = []

    def fake_check(limit):
        calls.append(limit)
        return len(calls) == 3, 0, limit

    monkeypatch.setattr(csv_ingest, "check_memory_exceeded", fake_check)

    first = run_batch_job(session, job.id, settings)

    assert first.status == "failed"
    assert first.stopped_early is True
    assert first.processed == 2
    assert job.error_message.startswith("Out of memory")
    assert Path(job.file_path).exists()

    retry_job(session, job.id)
    assert job.retry_count == 1
    second = run_batch_job(session, job.id, settings)

    assert second.status == "completed"
    assert (second.processed, second.success) == (4, 4)
    assert _count(session, Product) == 4


def test_malformed_row_aborts_job(session, settings, make_job):
    job = make_job([])
    Path(job.file_path).write_bytes(csv_bytes([make_row()]) + b'"Broken"x,oops\n')

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.status == "failed"
    assert outcome.stopped_early is True
    assert outcome.processed == 1
    system = [f for f in list_findings(session, job.id) if f.type == "system"]
    assert len(system) == 1
    assert system[0].row_number == 2
    assert "CSV parsing error" in system[0].message
    assert not Path(job.file_path).exists()


def test_record_with_extra_cell_aborts_job(session, settings, make_job):
    job = make_job([])
    header, first, second, third = csv_bytes(_rows(3)).splitlines()
    Path(job.file_path).write_bytes(b"\n".join([header, first, second + b",stray", third]) + b"\n")

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.status == "failed"
    assert outcome.stopped_early is True
    assert (outcome.processed, outcome.success) == (1, 1)
    assert _count(session, Product) == 1
    system = [f for f in list_findings(session, job.id) if f.type == "system"]
    assert len(system) == 1
    assert system[0].row_number == 2
    assert "header row has" in system[0].message


def test_reference_failures_are_recorded_and_run_continues(session, settings, make_job):
    headers = HEADERS + ["category_id", "catalog_id"]
    job = make_job(
        [
            make_row(product_sku="SKU-1", category_id="999"),
            make_row(product_sku="SKU-2", catalog_id="999"),
            make_row(product_sku="SKU-3"),
        ],
        headers=headers,
    )

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.status == "failed"
    assert outcome.stopped_early is False
    assert (outcome.processed, outcome.success, outcome.failed) == (3, 1, 2)
    assert set(session.execute(select(Product.sku)).scalars()) == {"SKU-3"}
    errors = {
        f.row_number: f for f in list_findings(session, job.id) if f.severity == "error"
    }
    assert (errors[1].type, errors[1].field) == ("processing", "product_sku")
    assert (errors[2].type, errors[2].field) == ("database", "attr_Color")
    assert "catalog attribute link (catalog 999" in errors[2].message
    assert 3 not in errors


def test_missing_required_column_fails_before_any_row(session, settings, make_job):
    headers = [h for h in HEADERS if h != "product_description"]
    rows = [{k: v for k, v in make_row().items() if k != "product_description"}]
    job = make_job(rows, headers=headers)

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.status == "failed"
    assert outcome.processed == 0
    [finding] = list_findings(session, job.id)
    assert "product_description" in finding.message
    assert _count(session, Product) == 0


def test_changed_source_cannot_be_resumed(session, settings, make_job):
    job = make_job(_rows(3))

    def pause_after_one(job_id, fraction, message, *, status, meta):
        if status == "processing" and meta["processed"] == 1:
            pause_job(session, job_id)

    run_batch_job(session, job.id, settings, progress=pause_after_one)
    Path(job.file_path).write_bytes(csv_bytes(_rows(4)))
    resume_job(session, job.id)

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.status == "failed"
    assert outcome.processed == 1
    assert "changed" in job.error_message


def test_cancelled_job_is_not_run(session, settings, make_job):
    job = make_job(_rows(2))
    cancel_job(session, job.id)

    outcome = run_batch_job(session, job.id, settings)

    assert outcome.status == "cancelled"
    assert outcome.stopped_early is True
    assert _count(session, Product) == 0
    assert not Path(job.file_path).exists()


def test_completed_job_is_not_run_again(session, settings, make_job):
    job = make_job(_rows(1))
    run_batch_job(session, job.id, settings)

    again = run_batch_job(session, job.id, settings)

    assert again.status == "completed"
    assert again.processed == 1
    assert _count(session, Product) == 1


def test_unknown_job_is_reported(session, settings):
    with pytest.raises(JobControlError) as excinfo:
        run_batch_job(session, "missing", settings)

    assert excinfo.value.code == "BATCH_NOT_FOUND"
