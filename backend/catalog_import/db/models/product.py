"""SQLAlchemy models for product records and their attribute links."""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import DateTime

from catalog_import.db.base import Base, JSONType


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    sku = Column(String(64), nullable=False)
    description = Column(Text)
    short_description = Column(Text)

    # Pricing
    price = Column(Numeric(12, 2), nullable=False)
    cost_price = Column(Numeric(12, 2), nullable=False, default=0)
    sale_price = Column(Numeric(12, 2))
    minimum_price = Column(Numeric(12, 2))
    discount = Column(Numeric(5, 2))
    discount_label = Column(String(255))
    wholesale_minimum_qty = Column(Integer)
    wholesale_discount_percentage = Column(Numeric(5, 2))

    stock_quantity = Column(Integer)
    tags = Column(JSONType)
    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    weight = Column(Numeric(10, 3))
    dimensions = Column(String(255))
    brand = Column(String(255))

    category_id = Column(Integer, ForeignKey("categories.id"))
    catalog_id = Column(Integer, ForeignKey("catalogs.id"))
    supplier_id = Column(Integer, ForeignKey("suppliers.id"))
    batch_job_id = Column(
        String(36), ForeignKey("batch_jobs.id", ondelete="SET NULL"), index=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    attributes = relationship(
        "ProductAttribute",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("ix_products_sku_lower", func.lower(sku), unique=True),)


class ProductAttribute(Base):
    """One attribute on one product; its selected options live in ProductAttributeValue."""

    __tablename__ = "product_attributes"

    id = Column(Integer, primary_key=True)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    attribute_id = Column(Integer, ForeignKey("attributes.id"), nullable=False)
    text_value = Column(Text)

    product = relationship("Product", back_populates="attributes")
    values = relationship(
        "ProductAttributeValue",
        back_populates="product_attribute",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("product_id", "attribute_id", name="uq_product_attribute"),
    )


class ProductAttributeValue(Base):
    __tablename__ = "product_attribute_values"

    id = Column(Integer, primary_key=True)
    product_attribute_id = Column(
        Integer,
        ForeignKey("product_attributes.id", ondelete="CASCADE"),
        nullable=False,
    )
    attribute_option_id = Column(
        Integer, ForeignKey("attribute_options.id"), nullable=False
    )

    product_attribute = relationship("ProductAttribute", back_populates="values")

    __table_args__ = (
        UniqueConstraint(
            "product_attribute_id",
            "attribute_option_id",
            name="uq_product_attribute_value",
        ),
    )
