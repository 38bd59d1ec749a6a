"""Database models package."""
from catalog_import.db.models.attribute import Attribute, AttributeOption
from catalog_import.db.models.batch_job import BatchJob
from catalog_import.db.models.catalog import Catalog, CatalogAttribute, Category, Supplier
from catalog_import.db.models.product import Product, ProductAttribute, ProductAttributeValue
from catalog_import.db.models.row_finding import RowFinding

__all__ = [
    "Attribute",
    "AttributeOption",
    "BatchJob",
    "Catalog",
    "CatalogAttribute",
    "Category",
    "Product",
    "ProductAttribute",
    "ProductAttributeValue",
    "RowFinding",
    "Supplier",
]
