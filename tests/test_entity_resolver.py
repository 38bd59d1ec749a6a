"""
Tests for reference resolution and the run-scoped resolver cache.
"""

import pytest
from sqlalchemy import func, select

from catalog_import.db.models import (
    Attribute,
    AttributeOption,
    Catalog,
    CatalogAttribute,
    Category,
    Supplier,
)
from catalog_import.schemas.product_row import ProductRow
from catalog_import.services.entity_resolver import (
    EntityKind,
    EntityResolutionError,
    EntityResolver,
)


def _count(session, model):
    return session.execute(select(func.count()).select_from(model)).scalar_one()


def test_names_resolve_to_one_entity_per_run(session):
    resolver = EntityResolver(session)

    first = resolver.resolve_supplier(None, "Acme Audio")
    second = resolver.resolve_supplier(None, "  ACME audio ")

    assert first == second
    assert _count(session, Supplier) == 1


def test_existing_entities_are_reused(session):
    session.add(Supplier(name="Acme Audio"))
    session.commit()
    existing_id = session.execute(select(Supplier.id)).scalar_one()

    resolver = EntityResolver(session)

    assert resolver.resolve_supplier(None, "acme audio") == existing_id
    assert _count(session, Supplier) == 1


def test_numeric_ids_are_trusted(session):
    resolver = EntityResolver(session)

    assert resolver.resolve_category(42, "Ignored", None) == 42
    assert resolver.resolve_catalog(7, "Ignored") == 7
    assert _count(session, Category) == 0
    assert _count(session, Catalog) == 0


def test_category_parent_is_created_first(session):
    resolver = EntityResolver(session)

    child_id = resolver.resolve_category(None, "Headphones", "Electronics")

    child = session.get(Category, child_id)
    parent = session.get(Category, child.parent_id)
    assert parent.name == "Electronics"
    assert parent.parent_id is None
    assert child.slug == "headphones"


def test_parentless_category_is_attached_to_supplied_parent(session):
    session.add(Category(name="Headphones", slug="headphones"))
    session.commit()

    resolver = EntityResolver(session)
    child_id = resolver.resolve_category(None, "headphones", "Electronics")

    parent_id = session.execute(
        select(Category.id).where(Category.name == "Electronics")
    ).scalar_one()
    assert session.get(Category, child_id).parent_id == parent_id


def test_cached_category_is_attached_to_parent_named_later(session):
    resolver = EntityResolver(session)
    child_id = resolver.resolve_category(None, "Headphones")
    resolver.commit_pending()

    assert resolver.resolve_category(None, "headphones", "Electronics") == child_id

    parent_id = session.execute(
        select(Category.id).where(Category.name == "Electronics")
    ).scalar_one()
    assert session.get(Category, child_id).parent_id == parent_id

    # A later row naming another parent does not move it
    resolver.resolve_category(None, "Headphones", "Audio")
    assert session.get(Category, child_id).parent_id == parent_id


def test_category_is_never_its_own_parent(session):
    resolver = EntityResolver(session)

    category_id = resolver.resolve_category(None, "Audio", "audio")

    assert session.get(Category, category_id).parent_id is None


def test_catalog_is_created_with_row_supplier(session):
    resolver = EntityResolver(session)
    supplier_id = resolver.resolve_supplier(None, "Acme Audio")

    catalog_id = resolver.resolve_catalog(None, "Main Catalog", supplier_id)

    catalog = session.get(Catalog, catalog_id)
    assert catalog.supplier_id == supplier_id
    assert catalog.is_active is True


def test_catalog_without_supplier_gets_one(session):
    session.add(Catalog(name="Main Catalog"))
    session.add(Supplier(name="Acme Audio"))
    session.commit()
    supplier_id = session.execute(select(Supplier.id)).scalar_one()

    resolver = EntityResolver(session)
    catalog_id = resolver.resolve_catalog(None, "main catalog", supplier_id)

    assert session.get(Catalog, catalog_id).supplier_id == supplier_id


def test_job_catalog_overrides_row_catalog(session):
    row = ProductRow(
        row_number=1,
        product_name="Lamp",
        product_sku="L-1",
        category_name="Lighting",
        catalog_name="Somewhere Else",
        supplier_name="Acme",
    )
    resolver = EntityResolver(session)

    refs = resolver.resolve_references(row, job_catalog_id=99)

    assert refs.catalog_id == 99
    assert _count(session, Catalog) == 0
    assert refs.category_id is not None
    assert refs.supplier_id is not None


def test_discarded_entries_are_not_reused_after_rollback(session):
    resolver = EntityResolver(session)
    resolver.resolve_supplier(None, "Acme Audio")

    session.rollback()
    resolver.discard_pending()

    assert _count(session, Supplier) == 0
    supplier_id = resolver.resolve_supplier(None, "Acme Audio")
    session.commit()
    resolver.commit_pending()

    assert session.get(Supplier, supplier_id) is not None
    assert resolver.cache_size == 1


def test_create_conflict_adopts_concurrent_winner(session):
    session.add(Supplier(name="Acme Audio"))
    session.commit()
    winner_id = session.execute(select(Supplier.id)).scalar_one()
    resolver = EntityResolver(session)
    lookups = []

    def find():
        # The first lookup happens before the other job commits its row
        lookups.append(1)
        if len(lookups) == 1:
            return None
        return session.execute(
            select(Supplier).where(func.lower(Supplier.name) == "acme audio")
        ).scalar_one_or_none()

    supplier, created = resolver._find_or_create(
        EntityKind.SUPPLIER, "acme audio", find, lambda: Supplier(name="ACME AUDIO")
    )

    assert created is False
    assert supplier.id == winner_id
    assert len(lookups) == 2
    assert _count(session, Supplier) == 1


def test_create_conflict_gives_up_after_configured_attempts(session):
    session.add(Supplier(name="Acme Audio"))
    session.commit()
    resolver = EntityResolver(session, create_attempts=2)

    with pytest.raises(EntityResolutionError) as excinfo:
        resolver._find_or_create(
            EntityKind.SUPPLIER, "acme audio", lambda: None, lambda: Supplier(name="acme audio")
        )

    assert excinfo.value.field == "supplier_name"
    assert excinfo.value.message.startswith(
        "Could not create supplier 'acme audio' after 2 attempts"
    )
    assert "UNIQUE constraint failed" in excinfo.value.message


def test_foreign_key_failure_is_reported_without_retrying(session):
    resolver = EntityResolver(session)
    attribute_id, _ = resolver.resolve_attribute("Color", "color")

    with pytest.raises(EntityResolutionError) as excinfo:
        resolver.ensure_catalog_attribute(999, attribute_id)

    message = excinfo.value.message
    assert message == (
        f"Could not create catalog attribute link (catalog 999, attribute {attribute_id}): "
        "FOREIGN KEY constraint failed"
    )
    assert "attempts" not in message
    assert _count(session, CatalogAttribute) == 0


def test_attribute_keeps_existing_type(session):
    session.add(Attribute(name="Color", display_name="Colour", attribute_type="text"))
    session.commit()
    resolver = EntityResolver(session)

    attribute_id, attribute_type = resolver.resolve_attribute("color", "color")

    assert attribute_type == "text"
    assert resolver.resolve_attribute("COLOR", "select") == (attribute_id, "text")


def test_options_resolve_case_insensitively_per_attribute(session):
    resolver = EntityResolver(session)
    color_id, _ = resolver.resolve_attribute("Color", "color")
    finish_id, _ = resolver.resolve_attribute("Finish", "select")

    red = resolver.resolve_option(color_id, "Red")

    assert resolver.resolve_option(color_id, " red ") == red
    assert resolver.resolve_option(finish_id, "Red") != red
    assert _count(session, AttributeOption) == 2


def test_catalog_attribute_registered_once(session):
    resolver = EntityResolver(session)
    catalog_id = resolver.resolve_catalog(None, "Main Catalog")
    attribute_id, _ = resolver.resolve_attribute("Color", "color")

    resolver.ensure_catalog_attribute(catalog_id, attribute_id)
    resolver.ensure_catalog_attribute(catalog_id, attribute_id)

    assert _count(session, CatalogAttribute) == 1
