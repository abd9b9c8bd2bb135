"""SQLAlchemy models for the catalog.

Defines the categories, products and SKU-namespace tables.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from plumbcat.domain.categories import Category, category_type
from plumbcat.domain.products import ProductDraft, normalize_measurements
from plumbcat.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class CategoryModel(Base):
    """Category node.

    Attributes:
        id: Category id (UUID string).
        slug: Globally unique slug.
        name: Display name.
        description: Optional description.
        parent_id: Parent category, NULL for level 0.
        level: Depth in the tree (0..3).
        order: Position among siblings.
        active: Soft-delete flag.
        product_count: Active products assigned directly.
        total_product_count: Active products here and below.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parent_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    order: Mapped[int] = mapped_column("sort_order", Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    product_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_product_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_categories_parent_level_order", "parent_id", "level", "sort_order"),
        Index("ix_categories_active_level", "active", "level"),
    )

    def __repr__(self) -> str:
        return f"<CategoryModel(id={self.id}, slug={self.slug}, level={self.level})>"

    @property
    def type(self) -> str:
        return category_type(self.level)

    def to_domain(self) -> Category:
        """Convert to the in-memory node used by the tree index."""
        return Category(
            id=self.id,
            name=self.name,
            slug=self.slug,
            parent_id=self.parent_id,
            level=self.level,
            order=self.order,
            active=self.active,
            description=self.description or "",
            product_count=self.product_count,
            total_product_count=self.total_product_count,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Dictionary representation.
        """
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "parent_id": self.parent_id,
            "level": self.level,
            "type": self.type,
            "order": self.order,
            "active": self.active,
            "product_count": self.product_count,
            "total_product_count": self.total_product_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProductModel(Base):
    """Product record.

    Variants, attributes and measurements are stored as JSON documents;
    their SKUs are mirrored into ``product_skus`` so uniqueness holds at
    the storage layer.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    brand: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    brand_slug: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True
    )
    category_breadcrumb: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    attributes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    specifications: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    images: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    default_image: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    color_variants: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    measurements: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_products_category_active", "category_id", "active"),
        Index("ix_products_brand_active", "brand", "active"),
        Index("ix_products_active_featured", "active", "featured"),
        Index("ix_products_name_description", "name", "description"),
    )

    def __repr__(self) -> str:
        return f"<ProductModel(id={self.id}, sku={self.sku}, name={self.name[:30]})>"

    def to_draft(self) -> ProductDraft:
        """Rebuild the editable draft, normalising legacy measurements."""
        return ProductDraft.from_dict(
            {
                "name": self.name,
                "sku": self.sku,
                "category_id": self.category_id,
                "slug": self.slug,
                "description": self.description,
                "brand": self.brand,
                "brand_slug": self.brand_slug,
                "attributes": self.attributes or [],
                "specifications": self.specifications or {},
                "images": self.images or [],
                "default_image": self.default_image,
                "active": self.active,
                "featured": self.featured,
                "color_variants": self.color_variants or [],
                "measurements": normalize_measurements(self.measurements, self.sku),
            }
        )

    def apply_draft(self, draft: ProductDraft) -> None:
        """Copy every draft field onto this row."""
        data = draft.to_dict()
        self.name = draft.name.strip()
        self.sku = draft.sku.strip()
        self.category_id = draft.category_id
        self.slug = draft.effective_slug()
        self.description = draft.description or ""
        self.brand = draft.brand or ""
        self.brand_slug = draft.effective_brand_slug()
        self.attributes = data["attributes"]
        self.specifications = data["specifications"]
        self.images = data["images"]
        self.default_image = draft.default_image
        self.active = draft.active
        self.featured = draft.featured
        self.color_variants = data["color_variants"]
        self.measurements = data["measurements"]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Dictionary representation with canonical measurements.
        """
        return {
            "id": self.id,
            "sku": self.sku,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "brand": self.brand,
            "brand_slug": self.brand_slug,
            "category_id": self.category_id,
            "category_breadcrumb": self.category_breadcrumb,
            "attributes": list(self.attributes or []),
            "specifications": dict(self.specifications or {}),
            "images": list(self.images or []),
            "default_image": self.default_image,
            "color_variants": list(self.color_variants or []),
            "measurements": self.to_draft().to_dict()["measurements"],
            "active": self.active,
            "featured": self.featured,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProductSkuModel(Base):
    """One reserved SKU: a product's base SKU or one of its variant SKUs.

    Rows stay while the product is inactive, so a deactivated product's
    SKUs cannot be taken by another product.
    """

    __tablename__ = "product_skus"

    sku: Mapped[str] = mapped_column(String(100), primary_key=True)
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="base")

    def __repr__(self) -> str:
        return f"<ProductSkuModel(sku={self.sku}, product_id={self.product_id}, kind={self.kind})>"
