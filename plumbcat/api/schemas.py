"""API schemas for the catalog API.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = Field(default=None, description="Field that caused the error")
    message: str = Field(..., description="Error message")


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: list[ErrorDetail] = Field(
        default_factory=list, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class PaginatedResponse(BaseModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Number of pages")
    has_more: bool = Field(..., description="Whether there are more pages")


# ============================================================================
# Category Schemas
# ============================================================================


class CategoryCreateRequest(BaseModel):
    """Request to create a category."""

    name: str = Field(..., min_length=1, max_length=200, description="Display name")
    parent_id: str | None = Field(default=None, description="Parent category, omitted for a root")
    description: str = Field(default="", description="Optional description")
    order: int | None = Field(default=None, description="Position among siblings")
    slug: str | None = Field(default=None, description="Explicit slug")
    active: bool = Field(default=True, description="Whether the category is visible")


class CategoryUpdateRequest(BaseModel):
    """Request to rename, move or edit a category.

    Send ``parent_id: null`` to make the category a root; leave the field
    out to keep the current parent.
    """

    name: str | None = Field(default=None, min_length=1, max_length=200)
    parent_id: str | None = Field(default=None, description="New parent category")
    description: str | None = Field(default=None)
    order: int | None = Field(default=None)
    active: bool | None = Field(default=None)


class CategoryResponse(BaseModel):
    """Category representation."""

    id: str = Field(..., description="Category identifier")
    name: str = Field(..., description="Display name")
    slug: str = Field(..., description="URL slug, unique across the tree")
    description: str | None = Field(default=None, description="Description")
    parent_id: str | None = Field(default=None, description="Parent category")
    level: int = Field(..., description="Depth, 0 for roots")
    type: str = Field(..., description="main or sub")
    order: int = Field(default=0, description="Position among siblings")
    active: bool = Field(..., description="Whether the category is visible")
    product_count: int = Field(default=0, description="Active products assigned directly")
    total_product_count: int = Field(
        default=0, description="Active products in the whole subtree"
    )


class CategoryTreeNode(CategoryResponse):
    """Category with nested children."""

    children: list["CategoryTreeNode"] = Field(default_factory=list)


class CategoryDeleteResponse(BaseModel):
    """Result of a soft delete."""

    category: CategoryResponse
    product_count: int = Field(..., description="Products still assigned to the category")
    active_children: int = Field(..., description="Active subcategories left behind")
    warnings: list[str] = Field(default_factory=list)


class CategoryImportResponse(BaseModel):
    """Result of a category import."""

    created: list[str] = Field(default_factory=list, description="Slugs created")
    updated: list[str] = Field(default_factory=list, description="Slugs updated")
    errors: list[dict[str, Any]] = Field(default_factory=list, description="Per-record errors")


class CategoryCountsResponse(BaseModel):
    """Result of a product count recomputation."""

    categories: int = Field(..., description="Categories recounted")
    products: int = Field(..., description="Active products counted")


# ============================================================================
# Product Schemas
# ============================================================================


class ProductAttributeSchema(BaseModel):
    """Name/value product attribute."""

    name: str
    value: str = ""


class ColorVariantSchema(BaseModel):
    """Colour variant of a product."""

    color_name: str = Field(..., description="Colour name, e.g. Cromado")
    color_code: str = Field(default="", description="Hex colour code")
    image: str | None = Field(default=None, description="Variant image URL")
    sku: str = Field(default="", description="Variant SKU, generated when empty")
    active: bool = True


class MeasurementVariantSchema(BaseModel):
    """Size variant of a product."""

    size: str
    sku: str = ""
    active: bool = True


class MeasurementsSchema(BaseModel):
    """Size variants block."""

    enabled: bool = False
    description: str = ""
    variants: list[MeasurementVariantSchema] = Field(default_factory=list)


class ProductCreateRequest(BaseModel):
    """Request to create a product."""

    name: str = Field(default="", description="Display name")
    sku: str = Field(default="", description="Base SKU")
    category_id: str | None = Field(default=None, description="Deepest category")
    slug: str | None = Field(default=None, description="Explicit slug")
    description: str = ""
    brand: str = ""
    brand_slug: str = ""
    attributes: list[ProductAttributeSchema] = Field(default_factory=list)
    specifications: dict[str, Any] = Field(default_factory=dict)
    images: list[str] = Field(default_factory=list)
    default_image: str | None = None
    active: bool = True
    featured: bool = False
    color_variants: list[ColorVariantSchema] = Field(default_factory=list)
    measurements: MeasurementsSchema = Field(default_factory=MeasurementsSchema)


class ProductUpdateRequest(BaseModel):
    """Partial product update; only the fields sent are changed."""

    name: str | None = None
    sku: str | None = None
    category_id: str | None = None
    slug: str | None = None
    description: str | None = None
    brand: str | None = None
    brand_slug: str | None = None
    attributes: list[ProductAttributeSchema] | None = None
    specifications: dict[str, Any] | None = None
    images: list[str] | None = None
    default_image: str | None = None
    active: bool | None = None
    featured: bool | None = None
    color_variants: list[ColorVariantSchema] | None = None
    measurements: MeasurementsSchema | None = None


class ColorVariantUpdateRequest(BaseModel):
    """Partial colour variant update."""

    color_name: str | None = None
    color_code: str | None = None
    image: str | None = None
    sku: str | None = None
    active: bool | None = None


class ProductResponse(BaseModel):
    """Product representation."""

    id: str
    sku: str
    slug: str
    name: str
    description: str | None = None
    brand: str | None = None
    brand_slug: str | None = None
    category_id: str | None = None
    category_breadcrumb: str | None = Field(
        default=None, description="Category path, e.g. Plumbing > Pipes"
    )
    attributes: list[ProductAttributeSchema] = Field(default_factory=list)
    specifications: dict[str, Any] = Field(default_factory=dict)
    images: list[str] = Field(default_factory=list)
    default_image: str | None = None
    color_variants: list[ColorVariantSchema] = Field(default_factory=list)
    measurements: MeasurementsSchema = Field(default_factory=MeasurementsSchema)
    active: bool
    featured: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProductsListResponse(PaginatedResponse):
    """Paginated list of products."""

    items: list[ProductResponse] = Field(..., description="List of products")


class FieldChangeSchema(BaseModel):
    """One changed product field."""

    field: str
    old: Any = None
    new: Any = None


class ProductUpdateResponse(BaseModel):
    """Updated product and the fields that changed."""

    product: ProductResponse
    changes: list[FieldChangeSchema] = Field(default_factory=list)


class ProductValidationResponse(BaseModel):
    """Result of a storage-free validation."""

    valid: bool
    errors: list[ErrorDetail] = Field(default_factory=list)


class SkuAvailabilityResponse(BaseModel):
    """Whether a SKU is free across base and variant SKUs."""

    sku: str
    available: bool


class SkuSuggestionResponse(BaseModel):
    """Suggested base SKU."""

    sku: str


# ============================================================================
# Import Schemas
# ============================================================================


class ImportReportResponse(BaseModel):
    """Report of a bulk import run."""

    run_id: str
    source: str
    dry_run: bool
    cancelled: bool = False
    started_at: datetime
    finished_at: datetime | None = None
    batches: int = 0
    totals: dict[str, int] = Field(..., description="Counts per outcome")
    rows: list[dict[str, Any]] = Field(default_factory=list, description="Per-row results")
    changes: list[dict[str, Any]] = Field(default_factory=list, description="Field-level changes")
