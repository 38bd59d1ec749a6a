"""Validate CSV headers and enforce per-row business rules."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from catalog_import.core.config import DEFAULT_REQUIRED_FIELDS
from catalog_import.db.models.product import Product
from catalog_import.schemas.finding import Finding, FindingType, Severity, has_blocking
from catalog_import.schemas.product_row import ProductRow
from catalog_import.utils.slugs import slugify

if TYPE_CHECKING:
    from catalog_import.services.csv_ingest import DecodedRow


class ValidationError(ValueError):
    """Custom exception for CSV validation errors."""

    pass


REFERENCE_KINDS = ("category", "catalog", "supplier")

NUMBER_ERRORS = {"decimal_parsing", "decimal_type", "finite_number", "float_parsing"}
WHOLE_NUMBER_ERRORS = {"int_parsing", "int_from_float", "int_type"}
MISSING_ERRORS = {"missing", "string_type"}


def validate_headers(
    headers: Sequence[str] | None, required: Sequence[str] = DEFAULT_REQUIRED_FIELDS
) -> None:
    """Ensure CSV contains the required columns before processing."""
    if not headers:
        raise ValidationError("CSV requires a header row")
    normalized = {header.strip().lower() for header in headers if header}
    missing = [name for name in required if name not in normalized]
    if missing:
        raise ValidationError(f"Missing required column(s): {', '.join(missing)}")


def _present(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _error(field: str | None, message: str) -> Finding:
    return Finding(
        field=field,
        message=message,
        type=FindingType.VALIDATION,
        severity=Severity.ERROR,
    )


def _warning(field: str | None, message: str) -> Finding:
    return Finding(
        field=field,
        message=message,
        type=FindingType.VALIDATION,
        severity=Severity.WARNING,
    )


def _describe_type_error(field: str, error: dict) -> str:
    kind = error["type"]
    ctx = error.get("ctx") or {}
    if kind in NUMBER_ERRORS:
        return f"{field} must be a number"
    if kind in WHOLE_NUMBER_ERRORS:
        return f"{field} must be a whole number"
    if kind in MISSING_ERRORS:
        return f"{field} is required"
    if kind == "greater_than_equal":
        if Decimal(str(ctx.get("ge", 0))) == 0:
            return f"{field} must not be negative"
        return f"{field} must be at least {ctx.get('ge')}"
    if kind == "less_than_equal":
        return f"{field} must not exceed {ctx.get('le')}"
    return f"{field}: {error['msg']}"


def _check_pricing(row: ProductRow, discount_tolerance: float) -> list[Finding]:
    findings: list[Finding] = []
    sale = row.sale_price
    regular = row.regular_price

    if sale is not None and regular is not None and sale > regular:
        findings.append(
            _error(
                "sale_price",
                "Sale price cannot be greater than regular price",
            )
        )
    if sale is not None and row.minimum_price is not None and sale < row.minimum_price:
        findings.append(
            _error(
                "sale_price",
                "Sale price cannot be less than minimum price",
            )
        )
    if sale is not None and row.cost_price is not None and sale < row.cost_price:
        findings.append(
            _warning(
                "sale_price",
                "Sale price should be greater than cost price",
            )
        )

    declared = row.discount_percentage
    if declared is not None and sale is not None and regular:
        implied = (regular - sale) / regular * 100
        if abs(implied - declared) > Decimal(str(discount_tolerance)):
            findings.append(
                _warning(
                    "discount_percentage",
                    f"Listed discount ({declared}%) doesn't match calculated discount ({implied:.2f}%)",
                )
            )
    return findings


def _check_sku_available(session: Session, sku: str) -> Finding | None:
    slug = slugify(sku)
    if not slug:
        return _error("product_sku", f"SKU '{sku}' must contain at least one letter or digit")

    existing = session.execute(
        select(Product.id)
        .where(or_(func.lower(Product.sku) == sku.lower(), Product.slug == slug))
        .limit(1)
    ).first()
    if existing is not None:
        return _error("product_sku", f"Product with SKU '{sku}' already exists")
    return None


def validate_row(
    row: DecodedRow,
    *,
    session: Session,
    required_fields: Sequence[str] = DEFAULT_REQUIRED_FIELDS,
    job_catalog_id: int | None = None,
    discount_tolerance: float = 1.0,
    attribute_prefix: str = "attr_",
) -> tuple[list[Finding], ProductRow | None]:
    """Apply required-field, type, pricing and uniqueness rules to one row.

    Returns the findings and, when none of them is an error, the typed row.
    Only the SKU/slug uniqueness check reads from the database.
    """
    fields = row.fields
    findings: list[Finding] = []

    flagged: set[str] = set()
    for name in required_fields:
        if not _present(fields.get(name)):
            findings.append(_error(name, f"{name} is required"))
            flagged.add(name)

    for kind in REFERENCE_KINDS:
        if kind == "catalog" and job_catalog_id is not None:
            continue
        if not (_present(fields.get(f"{kind}_id")) or _present(fields.get(f"{kind}_name"))):
            findings.append(
                _error(f"{kind}_id", f"Either {kind}_id or {kind}_name must be provided")
            )

    payload = ProductRow.payload_from_fields(row.number, fields, attribute_prefix)
    try:
        product_row = ProductRow(**payload)
    except PydanticValidationError as e:
        for error in e.errors():
            field = str(error["loc"][0]) if error["loc"] else None
            if field in flagged:
                continue
            findings.append(_error(field, _describe_type_error(field or "row", error)))
        return findings, None

    findings.extend(_check_pricing(product_row, discount_tolerance))

    sku_finding = _check_sku_available(session, product_row.product_sku)
    if sku_finding is not None:
        findings.append(sku_finding)

    if has_blocking(findings):
        return findings, None
    return findings, product_row
