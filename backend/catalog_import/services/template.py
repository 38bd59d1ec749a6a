"""Downloadable CSV templates for product imports."""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalog_import.db.models import Attribute, Catalog, CatalogAttribute
from catalog_import.utils.slugs import slugify

logger = logging.getLogger(__name__)

BASE_HEADERS = [
    "supplier_id",
    "supplier_name",
    "catalog_id",
    "catalog_name",
    "category_name",
    "category_parent_name",
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
    "short_description",
    "tags",
    "status",
    "featured",
    "weight",
    "dimensions",
    "brand",
    "stock_quantity",
]

GENERIC_EXAMPLES = [
    {
        "supplier_id": "1",
        "catalog_id": "1",
        "category_name": "Electronics",
        "category_parent_name": "Products",
        "product_name": "Wireless Headphones",
        "product_description": "High-quality wireless headphones with noise cancellation.",
        "product_sku": "WH-1000",
        "cost_price": "200.00",
        "regular_price": "399.99",
        "sale_price": "299.99",
        "discount_percentage": "25",
        "discount_label": "Limited Offer",
        "minimum_price": "250.00",
        "wholesale_minimum_qty": "3",
        "wholesale_discount_percentage": "15",
        "short_description": "Premium wireless headphones",
        "tags": "headphones,wireless,audio",
        "status": "active",
        "featured": "true",
        "weight": "0.3",
        "dimensions": "18x20x8",
        "brand": "SoundWave",
        "stock_quantity": "50",
    },
    {
        "supplier_name": "Example Supplier",
        "catalog_name": "New Catalog",
        "category_name": "Clothing",
        "category_parent_name": "Fashion",
        "product_name": "Cotton T-Shirt",
        "product_description": "Comfortable cotton t-shirt for everyday wear.",
        "product_sku": "TS-2000",
        "cost_price": "50.00",
        "regular_price": "149.99",
        "sale_price": "99.99",
        "discount_percentage": "33",
        "discount_label": "Flash Sale",
        "minimum_price": "80.00",
        "wholesale_minimum_qty": "10",
        "wholesale_discount_percentage": "20",
        "short_description": "Essential cotton t-shirt",
        "tags": "clothing,t-shirt,cotton",
        "status": "active",
        "featured": "false",
        "weight": "0.2",
        "dimensions": "30x40x2",
        "brand": "",
        "stock_quantity": "200",
    },
]

# Example attribute cells for the two generic rows, by lower-cased attribute name
GENERIC_ATTRIBUTE_VALUES = {
    "color": ("Black,Silver,White", "Red,Blue,Green,Yellow"),
    "size": ("One Size", "S,M,L,XL"),
    "material": ("Plastic,Metal", "Cotton,Polyester"),
}
DEFAULT_ATTRIBUTE_VALUES = ("Value1,Value2", "Value1,Value2,Value3")


def _catalog_example(catalog: Catalog) -> dict[str, str]:
    row = {
        "catalog_id": str(catalog.id),
        "category_name": "Example Category",
        "category_parent_name": "Parent Category",
        "product_name": "Example Product",
        "product_description": "This is an example product description.",
        "product_sku": "SKU-12345",
        "cost_price": "100.00",
        "regular_price": "249.99",
        "sale_price": "199.99",
        "discount_percentage": "20",
        "discount_label": "Special Offer",
        "minimum_price": "150.00",
        "wholesale_minimum_qty": "5",
        "wholesale_discount_percentage": "10",
        "short_description": "Short product description",
        "tags": "example,product,sample",
        "status": "active",
        "featured": "false",
        "weight": "1.5",
        "dimensions": "20x30x10",
    }
    if catalog.supplier_id:
        row["supplier_id"] = str(catalog.supplier_id)
    else:
        row["supplier_name"] = "Example Supplier"
    return row


def _attribute_names(session: Session, catalog_id: int | None) -> list[str]:
    stmt = select(Attribute.name).order_by(Attribute.name)
    if catalog_id is not None:
        stmt = stmt.join(CatalogAttribute, CatalogAttribute.attribute_id == Attribute.id).where(
            CatalogAttribute.catalog_id == catalog_id
        )
    return list(session.execute(stmt).scalars())


def generate_template_csv(
    session: Session, catalog_id: int | None = None, attribute_prefix: str = "attr_"
) -> tuple[str, str | None]:
    """Return ``(csv_content, catalog_name)`` for an import template.

    With an existing catalog the attribute columns are the catalog's own
    and a single example row targets it; otherwise every known attribute
    is listed with two generic examples (ids first, then names).
    """
    catalog = None
    if catalog_id is not None and catalog_id > 0:
        catalog = session.get(Catalog, catalog_id)
        if catalog is None:
            logger.warning(f"Catalog with ID {catalog_id} not found, using generic template")

    attribute_names = _attribute_names(session, catalog.id if catalog else None)
    attribute_headers = [f"{attribute_prefix}{name}" for name in attribute_names]
    headers = BASE_HEADERS + attribute_headers

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(headers)

    if catalog is not None:
        example = _catalog_example(catalog)
        for header in attribute_headers:
            example[header] = "Value1,Value2,Value3"
        writer.writerow([example.get(header, "") for header in headers])
    else:
        for index, base in enumerate(GENERIC_EXAMPLES):
            example = dict(base)
            for name, header in zip(attribute_names, attribute_headers):
                values = GENERIC_ATTRIBUTE_VALUES.get(name.lower(), DEFAULT_ATTRIBUTE_VALUES)
                example[header] = values[index]
            writer.writerow([example.get(header, "") for header in headers])

    return buffer.getvalue(), catalog.name if catalog else None


def template_filename(catalog_name: str | None = None, now: datetime | None = None) -> str:
    stamp = int((now or datetime.now(timezone.utc)).timestamp())
    if catalog_name:
        return f"product_upload_template_{slugify(catalog_name) or 'catalog'}_{stamp}.csv"
    return f"product_upload_template_generic_{stamp}.csv"
