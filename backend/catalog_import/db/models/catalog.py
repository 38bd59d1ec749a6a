"""SQLAlchemy models for the catalog structure products hang off."""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.types import DateTime

from catalog_import.db.base import Base


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_suppliers_name_lower", func.lower(name), unique=True),
    )


class Catalog(Base):
    __tablename__ = "catalogs"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_catalogs_name_lower", func.lower(name), unique=True),)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    parent_id = Column(Integer, ForeignKey("categories.id"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_categories_name_lower", func.lower(name), unique=True),
    )


class CatalogAttribute(Base):
    """Attributes used by products of a catalog (drives template columns)."""

    __tablename__ = "catalog_attributes"

    id = Column(Integer, primary_key=True)
    catalog_id = Column(
        Integer, ForeignKey("catalogs.id", ondelete="CASCADE"), nullable=False
    )
    attribute_id = Column(
        Integer, ForeignKey("attributes.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("catalog_id", "attribute_id", name="uq_catalog_attribute"),
    )
