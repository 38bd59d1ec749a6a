"""
Tests for downloadable import templates.
"""

import csv
import io
from datetime import datetime, timezone

from catalog_import.db.models import Attribute, Catalog, CatalogAttribute, Supplier
from catalog_import.services.template import (
    BASE_HEADERS,
    generate_template_csv,
    template_filename,
)


def _parse(content):
    rows = list(csv.reader(io.StringIO(content)))
    return rows[0], [dict(zip(rows[0], row)) for row in rows[1:]]


def _attribute(session, name):
    attribute = Attribute(name=name, display_name=name, attribute_type="select")
    session.add(attribute)
    session.flush()
    return attribute


def test_generic_template_lists_every_attribute(session):
    _attribute(session, "Material")
    _attribute(session, "Color")
    session.commit()

    content, catalog_name = generate_template_csv(session)
    headers, rows = _parse(content)

    assert catalog_name is None
    assert headers == BASE_HEADERS + ["attr_Color", "attr_Material"]
    assert [row["product_sku"] for row in rows] == ["WH-1000", "TS-2000"]
    assert rows[0]["supplier_id"] == "1"
    assert rows[1]["supplier_name"] == "Example Supplier"
    assert rows[0]["attr_Color"] == "Black,Silver,White"
    assert rows[1]["attr_Material"] == "Cotton,Polyester"


def test_generic_template_without_attributes(session):
    content, _ = generate_template_csv(session)
    headers, rows = _parse(content)

    assert headers == BASE_HEADERS
    assert len(rows) == 2


def test_unknown_catalog_falls_back_to_generic(session):
    content, catalog_name = generate_template_csv(session, catalog_id=404)
    _, rows = _parse(content)

    assert catalog_name is None
    assert len(rows) == 2


def test_catalog_template_uses_catalog_attributes(session):
    supplier = Supplier(name="Acme Audio")
    session.add(supplier)
    session.flush()
    catalog = Catalog(name="Main Catalog", supplier_id=supplier.id)
    session.add(catalog)
    size = _attribute(session, "Size")
    _attribute(session, "Unlinked")
    session.flush()
    session.add(CatalogAttribute(catalog_id=catalog.id, attribute_id=size.id))
    session.commit()

    content, catalog_name = generate_template_csv(session, catalog_id=catalog.id)
    headers, rows = _parse(content)

    assert catalog_name == "Main Catalog"
    assert headers == BASE_HEADERS + ["attr_Size"]
    [row] = rows
    assert row["catalog_id"] == str(catalog.id)
    assert row["supplier_id"] == str(supplier.id)
    assert row["supplier_name"] == ""
    assert row["attr_Size"] == "Value1,Value2,Value3"


def test_catalog_without_supplier_names_one(session):
    catalog = Catalog(name="Loose Catalog")
    session.add(catalog)
    session.commit()

    content, _ = generate_template_csv(session, catalog_id=catalog.id)
    _, [row] = _parse(content)

    assert row["supplier_id"] == ""
    assert row["supplier_name"] == "Example Supplier"


def test_template_filenames():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert template_filename("Main Catalog", now=now) == "product_upload_template_main-catalog_1704067200.csv"
    assert template_filename(None, now=now) == "product_upload_template_generic_1704067200.csv"
