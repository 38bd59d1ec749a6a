"""SQLAlchemy models for product attributes and their permissible options."""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, func
from sqlalchemy.types import DateTime

from catalog_import.db.base import Base


class Attribute(Base):
    __tablename__ = "attributes"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=False)
    attribute_type = Column(String(32), nullable=False, default="select")
    is_filterable = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_attributes_name_lower", func.lower(name), unique=True),
    )


class AttributeOption(Base):
    __tablename__ = "attribute_options"

    id = Column(Integer, primary_key=True)
    attribute_id = Column(
        Integer, ForeignKey("attributes.id", ondelete="CASCADE"), nullable=False
    )
    value = Column(String(255), nullable=False)
    display_value = Column(String(255), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index(
            "ix_attribute_options_attribute_value_lower",
            attribute_id,
            func.lower(value),
            unique=True,
        ),
    )
