"""Typed record for one product row of an import file."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Columns the typed record understands; anything else (besides attribute
# columns) is ignored.
DECIMAL_FIELDS = (
    "cost_price",
    "regular_price",
    "sale_price",
    "discount_percentage",
    "minimum_price",
    "wholesale_discount_percentage",
    "weight",
)
INTEGER_FIELDS = (
    "wholesale_minimum_qty",
    "stock_quantity",
    "category_id",
    "catalog_id",
    "supplier_id",
)
TRUTHY = {"true", "1", "yes", "y"}


class ProductRow(BaseModel):
    """Validated, strongly typed view of a decoded CSV row."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    row_number: int = Field(..., ge=1)

    product_name: str
    product_sku: str
    product_description: str | None = None
    short_description: str | None = None

    cost_price: Decimal | None = Field(None, ge=0, allow_inf_nan=False)
    regular_price: Decimal | None = Field(None, ge=0, allow_inf_nan=False)
    sale_price: Decimal | None = Field(None, ge=0, allow_inf_nan=False)
    minimum_price: Decimal | None = Field(None, ge=0, allow_inf_nan=False)
    discount_percentage: Decimal | None = Field(None, ge=0, le=100, allow_inf_nan=False)
    discount_label: str | None = None
    wholesale_minimum_qty: int | None = Field(None, ge=0)
    wholesale_discount_percentage: Decimal | None = Field(
        None, ge=0, le=100, allow_inf_nan=False
    )

    stock_quantity: int | None = Field(None, ge=0)
    weight: Decimal | None = Field(None, ge=0, allow_inf_nan=False)
    dimensions: str | None = None
    brand: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False

    category_id: int | None = Field(None, ge=1)
    category_name: str | None = None
    category_parent_name: str | None = None
    catalog_id: int | None = Field(None, ge=1)
    catalog_name: str | None = None
    supplier_id: int | None = Field(None, ge=1)
    supplier_name: str | None = None

    # Raw attribute cells keyed by attribute name (prefix stripped)
    attribute_cells: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def payload_from_fields(
        cls, row_number: int, fields: dict[str, str | None], attribute_prefix: str
    ) -> dict[str, Any]:
        """Turn decoded string fields into the keyword payload for this model.

        Blank cells become ``None``; ``tags`` is split on commas; ``status``
        and ``featured`` map onto the boolean flags.
        """
        payload: dict[str, Any] = {"row_number": row_number}
        attribute_cells: dict[str, str] = {}

        for key, raw in fields.items():
            value = raw.strip() if isinstance(raw, str) else None
            if key.lower().startswith(attribute_prefix):
                name = key[len(attribute_prefix):].strip()
                if name and value:
                    attribute_cells[name] = value
                continue
            payload[key] = value or None

        payload["attribute_cells"] = attribute_cells

        tags = payload.pop("tags", None)
        payload["tags"] = (
            [tag.strip() for tag in tags.split(",") if tag.strip()] if tags else []
        )

        status = payload.pop("status", None)
        payload["is_active"] = (status or "").lower() != "draft"

        featured = payload.pop("featured", None)
        payload["is_featured"] = (featured or "").lower() in TRUTHY

        return payload
