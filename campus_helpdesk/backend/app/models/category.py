# backend/app/models/category.py

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.sql.expression import false, true

from ..db import Base

SCOPE_FIXED = "fixed"
SCOPE_DYNAMIC = "dynamic"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(140), nullable=False)
    slug = Column(String(140), unique=True, nullable=False)

    # Routing hierarchy; domain is never null ("General" when nothing else fits)
    domain_id = Column(Integer, ForeignKey("domains.id"), nullable=False)
    scope_id = Column(Integer, ForeignKey("scopes.id"), nullable=True)
    scope_mode = Column(String(16), nullable=False, default=SCOPE_FIXED, server_default=SCOPE_FIXED)
    scope_student_field = Column(String(64), nullable=True)  # e.g. "hostel"

    default_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sla_hours = Column(Integer, nullable=False, default=48, server_default="48")

    active = Column(Boolean, nullable=False, default=True, server_default=true())
    display_order = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    domain = relationship("Domain")
    scope = relationship("Scope")
    subcategories = relationship("Subcategory", back_populates="category")
    assignments = relationship("CategoryAssignment", back_populates="category")


class Subcategory(Base):
    __tablename__ = "subcategories"
    __table_args__ = (UniqueConstraint("category_id", "slug"),)

    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    name = Column(String(140), nullable=False)
    slug = Column(String(140), nullable=False)

    assigned_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    active = Column(Boolean, nullable=False, default=True, server_default=true())
    display_order = Column(Integer, nullable=False, default=0, server_default="0")

    category = relationship("Category", back_populates="subcategories")
    sub_subcategories = relationship("SubSubcategory", back_populates="subcategory")
    fields = relationship(
        "CategoryField",
        back_populates="subcategory",
        order_by="[CategoryField.display_order, CategoryField.id]",
    )


class SubSubcategory(Base):
    __tablename__ = "sub_subcategories"
    __table_args__ = (UniqueConstraint("subcategory_id", "slug"),)

    id = Column(Integer, primary_key=True, index=True)
    subcategory_id = Column(Integer, ForeignKey("subcategories.id"), nullable=False)
    name = Column(String(140), nullable=False)
    slug = Column(String(140), nullable=False)

    assigned_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    active = Column(Boolean, nullable=False, default=True, server_default=true())
    display_order = Column(Integer, nullable=False, default=0, server_default="0")

    subcategory = relationship("Subcategory", back_populates="sub_subcategories")


class CategoryField(Base):
    """Dynamic form field attached to a subcategory."""
    __tablename__ = "category_fields"
    __table_args__ = (UniqueConstraint("subcategory_id", "slug"),)

    id = Column(Integer, primary_key=True, index=True)
    subcategory_id = Column(Integer, ForeignKey("subcategories.id"), nullable=False)
    name = Column(String(140), nullable=False)
    slug = Column(String(140), nullable=False)
    field_type = Column(String(50), nullable=False)  # text | select | date | number | boolean
    required = Column(Boolean, nullable=False, default=False, server_default=false())

    # Routing override: tickets carrying this field go to this handler
    assigned_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    active = Column(Boolean, nullable=False, default=True, server_default=true())
    display_order = Column(Integer, nullable=False, default=0, server_default="0")

    subcategory = relationship("Subcategory", back_populates="fields")
    options = relationship(
        "FieldOption", back_populates="field", order_by="FieldOption.display_order"
    )


class FieldOption(Base):
    __tablename__ = "field_options"

    id = Column(Integer, primary_key=True, index=True)
    field_id = Column(Integer, ForeignKey("category_fields.id"), nullable=False)
    label = Column(String(255), nullable=False)
    value = Column(String(255), nullable=False)
    display_order = Column(Integer, nullable=False, default=0, server_default="0")

    field = relationship("CategoryField", back_populates="options")


class CategoryAssignment(Base):
    """Handlers covering a category (primary / backup, with priority)."""
    __tablename__ = "category_assignments"
    __table_args__ = (UniqueConstraint("category_id", "user_id", name="unique_category_user"),)

    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False, server_default=false())
    priority = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    category = relationship("Category", back_populates="assignments")
