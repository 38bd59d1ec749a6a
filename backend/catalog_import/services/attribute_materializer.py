"""Turn ``attr_*`` cells into attribute/option links for a product."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from catalog_import.schemas.product_row import ProductRow
from catalog_import.services.entity_resolver import EntityResolutionError, EntityResolver

logger = logging.getLogger(__name__)

# Attribute types for newly created attributes, keyed by normalized name
ATTRIBUTE_TYPES = {
    "color": "color",
    "colour": "color",
    "size": "size",
    "bed_size": "size",
    "material": "select",
    "weight": "number",
    "length": "number",
    "width": "number",
    "height": "number",
}
DEFAULT_ATTRIBUTE_TYPE = "select"
TEXT_TYPES = {"text", "textarea"}


@dataclass(frozen=True)
class AttributeValues:
    name: str
    values: list[str]


@dataclass
class MaterializedAttribute:
    attribute_id: int
    attribute_type: str
    option_ids: list[int] = field(default_factory=list)
    text_value: str | None = None


def infer_attribute_type(name: str) -> str:
    key = "_".join(name.strip().lower().split())
    return ATTRIBUTE_TYPES.get(key, DEFAULT_ATTRIBUTE_TYPE)


def split_values(cell: str | None) -> list[str]:
    """Split a comma-separated cell; trim, drop blanks, dedupe case-insensitively."""
    if not cell:
        return []
    seen: set[str] = set()
    values: list[str] = []
    for token in cell.split(","):
        token = token.strip()
        if not token or token.lower() in seen:
            continue
        seen.add(token.lower())
        values.append(token)
    return values


def extract_attribute_values(cells: dict[str, str]) -> list[AttributeValues]:
    extracted = []
    for name, cell in cells.items():
        values = split_values(cell)
        if values:
            extracted.append(AttributeValues(name=name, values=values))
    return extracted


class AttributeMaterializer:
    def __init__(self, resolver: EntityResolver, attribute_prefix: str = "attr_"):
        self.resolver = resolver
        self.attribute_prefix = attribute_prefix

    def materialize(
        self, row: ProductRow, catalog_id: int | None = None
    ) -> list[MaterializedAttribute]:
        """Resolve every attribute and option named by the row.

        Raises ``EntityResolutionError`` (with the attribute column as field)
        when an attribute or option cannot be resolved.
        """
        materialized: list[MaterializedAttribute] = []
        for item in extract_attribute_values(row.attribute_cells):
            try:
                attribute_id, attribute_type = self.resolver.resolve_attribute(
                    item.name, infer_attribute_type(item.name)
                )
                option_ids = [
                    self.resolver.resolve_option(attribute_id, value)
                    for value in item.values
                ]
                if catalog_id is not None:
                    self.resolver.ensure_catalog_attribute(catalog_id, attribute_id)
            except EntityResolutionError as e:
                e.field = f"{self.attribute_prefix}{item.name}"
                raise

            materialized.append(
                MaterializedAttribute(
                    attribute_id=attribute_id,
                    attribute_type=attribute_type,
                    option_ids=list(dict.fromkeys(option_ids)),
                    text_value=item.values[0] if attribute_type in TEXT_TYPES else None,
                )
            )

        if materialized:
            logger.debug(
                f"Row {row.row_number}: materialized {len(materialized)} attribute(s)"
            )
        return materialized
