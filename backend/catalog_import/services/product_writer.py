"""Persist one validated row as a product plus its attribute links."""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_import.db.models import Product, ProductAttribute, ProductAttributeValue
from catalog_import.schemas.product_row import ProductRow
from catalog_import.services.attribute_materializer import MaterializedAttribute
from catalog_import.services.entity_resolver import ResolvedReferences
from catalog_import.utils.slugs import slugify

logger = logging.getLogger(__name__)


class ProductWriteError(Exception):
    """The row's product could not be written; nothing of it persisted."""

    def __init__(self, sku: str, message: str):
        super().__init__(message)
        self.sku = sku
        self.message = message


def build_product(
    row: ProductRow, refs: ResolvedReferences, *, batch_job_id: str | None = None
) -> Product:
    return Product(
        name=row.product_name,
        slug=slugify(row.product_sku),
        sku=row.product_sku,
        description=row.product_description,
        short_description=row.short_description,
        price=row.regular_price if row.regular_price is not None else 0,
        cost_price=row.cost_price if row.cost_price is not None else 0,
        sale_price=row.sale_price,
        minimum_price=row.minimum_price,
        discount=row.discount_percentage,
        discount_label=row.discount_label,
        wholesale_minimum_qty=row.wholesale_minimum_qty,
        wholesale_discount_percentage=row.wholesale_discount_percentage,
        stock_quantity=row.stock_quantity,
        tags=row.tags or None,
        is_active=row.is_active,
        is_featured=row.is_featured,
        weight=row.weight,
        dimensions=row.dimensions,
        brand=row.brand,
        category_id=refs.category_id,
        catalog_id=refs.catalog_id,
        supplier_id=refs.supplier_id,
        batch_job_id=batch_job_id,
    )


def write_product(
    session: Session,
    row: ProductRow,
    refs: ResolvedReferences,
    attributes: Sequence[MaterializedAttribute] = (),
    *,
    batch_job_id: str | None = None,
) -> Product:
    """Insert the product and its links inside a SAVEPOINT (all or nothing)."""
    try:
        with session.begin_nested():
            product = build_product(row, refs, batch_job_id=batch_job_id)
            for item in attributes:
                link = ProductAttribute(
                    attribute_id=item.attribute_id, text_value=item.text_value
                )
                link.values = [
                    ProductAttributeValue(attribute_option_id=option_id)
                    for option_id in item.option_ids
                ]
                product.attributes.append(link)
            session.add(product)
            session.flush()
    except SQLAlchemyError as e:
        detail = getattr(e, "orig", None) or e
        logger.warning(f"Row {row.row_number}: failed to write product {row.product_sku}: {detail}")
        raise ProductWriteError(
            row.product_sku, f"Failed to save product '{row.product_sku}': {detail}"
        ) from e

    logger.debug(f"Row {row.row_number}: created product {product.id} ({product.sku})")
    return product
