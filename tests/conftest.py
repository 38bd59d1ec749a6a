"""
Pytest configuration and shared fixtures
"""

import csv
import io
import os
import tempfile
from pathlib import Path

import pytest

# Keep module-level engine/settings away from real services during collection
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="catalog-import-"))

from sqlalchemy.orm import sessionmaker  # noqa: E402

from catalog_import.core.config import Settings  # noqa: E402
from catalog_import.db import models  # noqa: E402,F401
from catalog_import.db.base import Base  # noqa: E402
from catalog_import.db.session import build_engine  # noqa: E402
from catalog_import.services import progress_tracker  # noqa: E402
from catalog_import.services.job_control import create_job  # noqa: E402

HEADERS = [
    "product_name",
    "product_description",
    "product_sku",
    "cost_price",
    "regular_price",
    "sale_price",
    "discount_percentage",
    "discount_label",
    "minimum_price",
    "wholesale_minimum_qty",
    "wholesale_discount_percentage",
    "category_name",
    "category_parent_name",
    "catalog_name",
    "supplier_name",
    "tags",
    "status",
    "featured",
    "attr_Color",
]


def make_row(**overrides) -> dict:
    """A row that passes every rule without warnings."""
    row = {
        "product_name": "Wireless Headphones",
        "product_description": "Noise cancelling over-ear headphones",
        "product_sku": "WH-1000",
        "cost_price": "50.00",
        "regular_price": "100.00",
        "sale_price": "80.00",
        "discount_percentage": "20",
        "discount_label": "Spring Sale",
        "minimum_price": "60.00",
        "wholesale_minimum_qty": "5",
        "wholesale_discount_percentage": "10",
        "category_name": "Headphones",
        "category_parent_name": "Electronics",
        "catalog_name": "Main Catalog",
        "supplier_name": "Acme Audio",
        "tags": "audio, wireless",
        "status": "active",
        "featured": "true",
        "attr_Color": "Black",
    }
    row.update(overrides)
    return row


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expiry = {}

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex

    def get(self, key):
        return self.store.get(key)

    def delete(self, key):
        self.store.pop(key, None)


def csv_bytes(rows: list[dict], headers: list[str] | None = None) -> bytes:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=headers or HEADERS, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


@pytest.fixture(autouse=True)
def redis_client(monkeypatch):
    """Keep progress snapshots in memory instead of a live Redis."""
    client = FakeRedis()
    monkeypatch.setattr(progress_tracker, "get_redis_client", lambda: client)
    return client


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    db = factory()
    yield db
    db.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        uploads_dir=str(tmp_path / "uploads"),
        progress_every=1,
        memory_check_every=1000,
    )


@pytest.fixture
def write_csv(tmp_path):
    """Write rows to a CSV file and return its path."""

    def _write(rows: list[dict], headers: list[str] | None = None, name: str = "upload.csv") -> Path:
        path = tmp_path / name
        path.write_bytes(csv_bytes(rows, headers))
        return path

    return _write


@pytest.fixture
def make_job(session, settings):
    """Stage rows as an upload and create a pending job for them."""

    def _make(rows: list[dict], headers: list[str] | None = None, **kwargs):
        payload = io.BytesIO(csv_bytes(rows, headers))
        return create_job(session, payload, "products.csv", settings, **kwargs)

    return _make
