"""Catalog service for product operations.

High-level service that combines repository operations with the
catalog rules: validation, the SKU namespace, slugs, category-aware
querying and breadcrumb upkeep.
"""

import csv
import io
import json
import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from plumbcat.catalog.models import ProductModel
from plumbcat.catalog.repository import CategoryRepository, ProductRepository
from plumbcat.catalog.tree import CategoryTree
from plumbcat.domain.categories import CategoryIndex, unique_slug
from plumbcat.domain.exceptions import (
    CategoryNotFoundError,
    IntegrityConstraintError,
    ProductNotFoundError,
    ProductValidationError,
)
from plumbcat.domain.products import (
    ColorVariant,
    FieldError,
    ProductDraft,
    collect_validation_issues,
    generate_sku_suggestion,
    generate_variant_sku,
    validate_product,
)
from plumbcat.infrastructure.config import settings

T = TypeVar("T")

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100
MAX_EXPORT = 50_000

# Column names match what the bulk importer reads back.
PRODUCT_CSV_HEADERS = [
    "_id",
    "name",
    "sku",
    "slug",
    "brand",
    "brandSlug",
    "description",
    "category",
    "categoryBreadcrumb",
    "active",
    "featured",
    "defaultImage",
    "colorVariantsCount",
    "measurementsEnabled",
    "measurementsDescription",
    "measurementsVariants",
    "createdAt",
    "updatedAt",
]


# ============================================================================
# Category path cache
# ============================================================================


class CategoryPathCache:
    """Read-through cache of the category index.

    Loaded on first use and dropped by :meth:`invalidate`, which the
    category tree triggers after every committed mutation. There is no
    time-based expiry.
    """

    def __init__(self) -> None:
        self._index: CategoryIndex | None = None
        self.loads = 0

    @property
    def is_loaded(self) -> bool:
        return self._index is not None

    async def get_index(self, repository: CategoryRepository) -> CategoryIndex:
        """Return the cached index, loading it through ``repository`` if needed."""
        if self._index is None:
            models = await repository.list_all()
            self._index = CategoryIndex(m.to_domain() for m in models)
            self.loads += 1
        return self._index

    def invalidate(self) -> None:
        """Drop the cached index."""
        self._index = None


_category_cache: CategoryPathCache | None = None


def get_category_cache() -> CategoryPathCache:
    """Get the process-wide category path cache."""
    global _category_cache
    if _category_cache is None:
        _category_cache = CategoryPathCache()
    return _category_cache


# ============================================================================
# Query parameters and results
# ============================================================================


@dataclass
class ProductFilter:
    """Filter parameters for product search.

    Attributes:
        search: Case-insensitive substring over name, sku, brand, description.
        category_id: Category whose whole subtree is matched.
        brand: Brand name or brand slug.
        active: Filter by active flag.
        featured: Filter by featured flag.
    """

    search: str | None = None
    category_id: str | None = None
    brand: str | None = None
    active: bool | None = None
    featured: bool | None = None


@dataclass
class PaginationParams:
    """Pagination parameters.

    Attributes:
        page: Page number (1-indexed).
        page_size: Items per page.
        sort_by: Sort field (name, brand, created_at, sku).
        sort_order: Sort order (asc/desc).
    """

    page: int = 1
    page_size: int = 20
    sort_by: str = "name"
    sort_order: str = "asc"

    def __post_init__(self) -> None:
        self.page = max(1, self.page)
        self.page_size = min(max(1, self.page_size), MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        """Calculate offset from page number."""
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        """Get limit (alias for page_size)."""
        return self.page_size


@dataclass
class PaginatedResult(Generic[T]):
    """Paginated result container.

    Attributes:
        items: List of items.
        total: Total count under the same filters.
        page: Current page.
        page_size: Items per page.
    """

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        """Calculate total pages."""
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        """Check if there's a next page."""
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        """Check if there's a previous page."""
        return self.page > 1


@dataclass
class FieldChange:
    """One field that differs between a stored product and an update."""

    field: str
    old: Any
    new: Any

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "old": self.old, "new": self.new}


@dataclass
class UpdateResult:
    """Result of a product update."""

    product: ProductModel
    changes: list[FieldChange] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def diff_drafts(old: ProductDraft, new: ProductDraft) -> list[FieldChange]:
    """List top-level draft fields whose values differ."""
    old_data = old.to_dict()
    new_data = new.to_dict()
    return [
        FieldChange(name, old_data[name], new_data[name])
        for name in old_data
        if old_data[name] != new_data[name]
    ]


# ============================================================================
# Service
# ============================================================================


class CatalogService:
    """Service for product catalog operations.

    Wraps a :class:`CategoryTree` and listens to it: every committed tree
    mutation invalidates the category path cache and rebuilds the
    breadcrumbs of the affected products.

    Example usage:
        async with get_session_factory()() as session:
            service = CatalogService(session)
            product = await service.create(
                ProductDraft(name="PVC Pipe 110mm", sku="PVC-110", category_id=pipes_id)
            )
            results = await service.query(
                ProductFilter(category_id=plumbing_id),
                PaginationParams(page=1, sort_by="name"),
            )
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: CategoryPathCache | None = None,
        recount_on_write: bool | None = None,
    ) -> None:
        """Initialize service with database session.

        Args:
            session: Async SQLAlchemy session.
            cache: Category path cache, defaults to the process-wide one.
            recount_on_write: Recompute category counts after each write.
        """
        self.session = session
        self.repository = ProductRepository(session)
        self.cache = cache or get_category_cache()
        self.tree = CategoryTree(session, listeners=[self.handle_category_change])
        self.recount_on_write = (
            settings.recount_on_write if recount_on_write is None else recount_on_write
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate(draft: ProductDraft) -> list[str]:
        """Validate a draft without touching storage."""
        return validate_product(draft)

    @staticmethod
    def collect_issues(draft: ProductDraft) -> list[FieldError]:
        """Validate a draft and keep the field each message refers to."""
        return collect_validation_issues(draft)

    async def category_index(self) -> CategoryIndex:
        """Cached category index."""
        return await self.cache.get_index(self.tree.repository)

    async def _check_category(self, category_id: str) -> CategoryIndex:
        index = await self.category_index()
        category = index.get(category_id)
        if category is None:
            raise ProductValidationError(
                [{"field": "category_id", "message": f"category {category_id} does not exist"}]
            )
        if not category.active:
            raise ProductValidationError(
                [{"field": "category_id", "message": f"category {category.name} is inactive"}]
            )
        return index

    async def _check_skus(self, draft: ProductDraft, exclude_product_id: str | None = None) -> None:
        owners = await self.repository.find_sku_owners(draft.all_skus, exclude_product_id)
        if owners:
            raise ProductValidationError(
                [
                    {"field": "sku", "message": f"SKU '{sku}' is already used by product {owner}"}
                    for sku, owner in owners.items()
                ]
            )

    async def _unique_slug(self, base: str, exclude_product_id: str | None = None) -> str:
        taken = await self.repository.slugs_with_prefix(base, exclude_product_id)
        return unique_slug(base, taken)

    @staticmethod
    def _sku_rows(draft: ProductDraft) -> list[tuple[str, str]]:
        rows = [(draft.sku.strip(), "base")]
        rows.extend((v.sku, "color") for v in draft.color_variants if v.sku)
        rows.extend((s, "size") for s in draft.measurements.skus)
        return rows

    async def _persist(self, product: ProductModel, draft: ProductDraft | None = None) -> None:
        """Flush the product (and its reserved SKUs) and commit.

        Raises:
            IntegrityConstraintError: If storage rejects a duplicate SKU or slug.
        """
        try:
            await self.repository.save(product)
            if draft is not None:
                await self.repository.replace_skus(product.id, self._sku_rows(draft))
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            reason = str(e.orig).lower()
            field_name = "slug" if "slug" in reason else "sku"
            logger.warning("Product write rejected by storage", field=field_name, error=str(e.orig))
            raise IntegrityConstraintError(
                field_name, f"product {field_name} is already in use"
            ) from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, draft: ProductDraft, recount: bool | None = None) -> ProductModel:
        """Validate and store a new product.

        Args:
            draft: Product to create.
            recount: Recompute category counts afterwards; defaults to
                ``recount_on_write``.

        Returns:
            The stored product.

        Raises:
            ProductValidationError: If the draft breaks a catalog rule, its
                category does not resolve or a SKU is taken.
            IntegrityConstraintError: If storage rejects a duplicate SKU or slug.
        """
        issues = collect_validation_issues(draft)
        if issues:
            raise ProductValidationError([i.to_dict() for i in issues])

        index = await self._check_category(draft.category_id)
        await self._check_skus(draft)

        product = ProductModel()
        product.apply_draft(draft)
        product.slug = await self._unique_slug(draft.effective_slug())
        product.category_breadcrumb = index.breadcrumb(draft.category_id)

        await self._persist(product, draft)

        logger.info(
            "Product created",
            product_id=product.id,
            sku=product.sku,
            slug=product.slug,
            category_id=product.category_id,
        )

        if self.recount_on_write if recount is None else recount:
            await self.tree.recompute_product_counts()
        return product

    async def update(
        self,
        product_id: str,
        changes: dict[str, Any],
        recount: bool | None = None,
    ) -> UpdateResult:
        """Merge ``changes`` into a stored product, revalidate and store.

        Args:
            product_id: Product to update.
            changes: Draft fields to replace (snake_case keys).
            recount: Recompute category counts afterwards; defaults to
                ``recount_on_write``.

        Returns:
            The stored product and the list of changed fields.

        Raises:
            ProductNotFoundError: If the product does not exist.
            ProductValidationError: If the merged draft is invalid.
        """
        product = await self.get_product(product_id)
        current = product.to_draft()
        draft = current.merged(changes)

        name_changed = draft.name != current.name
        if name_changed and "slug" not in changes:
            draft.slug = None

        issues = collect_validation_issues(draft)
        if issues:
            raise ProductValidationError([i.to_dict() for i in issues])

        if draft.category_id != current.category_id:
            await self._check_category(draft.category_id)
        await self._check_skus(draft, exclude_product_id=product_id)

        result_changes = diff_drafts(current, draft)
        if not result_changes:
            return UpdateResult(product=product)

        product.apply_draft(draft)
        if draft.slug != current.slug:
            product.slug = await self._unique_slug(draft.effective_slug(), product_id)
            for change in result_changes:
                if change.field == "slug":
                    change.new = product.slug
        index = await self.category_index()
        product.category_breadcrumb = index.breadcrumb(draft.category_id)

        await self._persist(product, draft)

        changed_fields = [c.field for c in result_changes]
        logger.info("Product updated", product_id=product_id, fields=changed_fields)

        affects_counts = "category_id" in changed_fields or "active" in changed_fields
        if affects_counts and (self.recount_on_write if recount is None else recount):
            await self.tree.recompute_product_counts()
        return UpdateResult(product=product, changes=result_changes)

    async def soft_delete(self, product_id: str) -> ProductModel:
        """Deactivate a product. Its SKUs stay reserved.

        Raises:
            ProductNotFoundError: If the product does not exist.
        """
        product = await self.get_product(product_id)
        if product.active:
            product.active = False
            await self._persist(product)
            logger.info("Product deactivated", product_id=product_id, sku=product.sku)
            if self.recount_on_write:
                await self.tree.recompute_product_counts()
        return product

    # ------------------------------------------------------------------
    # Colour variants
    # ------------------------------------------------------------------

    async def add_color_variant(self, product_id: str, variant: ColorVariant) -> UpdateResult:
        """Append a colour variant, generating its SKU when empty."""
        product = await self.get_product(product_id)
        if not variant.sku:
            variant.sku = generate_variant_sku(product.sku, variant.color_name)
        if not await self.is_sku_available(variant.sku):
            raise ProductValidationError(
                [{"field": "color_variants", "message": f"SKU '{variant.sku}' is already in use"}]
            )
        variants = [*product.to_draft().color_variants, variant]
        return await self.update(product_id, {"color_variants": variants})

    async def update_color_variant(
        self,
        product_id: str,
        variant_index: int,
        changes: dict[str, Any],
    ) -> UpdateResult:
        """Replace fields of the colour variant at ``variant_index``."""
        product = await self.get_product(product_id)
        variants = product.to_draft().color_variants
        if not 0 <= variant_index < len(variants):
            raise ProductValidationError(
                [{"field": f"color_variants[{variant_index}]", "message": "variant not found"}]
            )
        current = variants[variant_index]
        for key, value in changes.items():
            if hasattr(current, key):
                setattr(current, key, value)
        return await self.update(product_id, {"color_variants": variants})

    async def remove_color_variant(self, product_id: str, variant_index: int) -> UpdateResult:
        """Remove the colour variant at ``variant_index``; its SKU is released."""
        product = await self.get_product(product_id)
        variants = product.to_draft().color_variants
        if not 0 <= variant_index < len(variants):
            raise ProductValidationError(
                [{"field": f"color_variants[{variant_index}]", "message": "variant not found"}]
            )
        del variants[variant_index]
        return await self.update(product_id, {"color_variants": variants})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_product(self, product_id: str) -> ProductModel:
        """Get a product by id.

        Raises:
            ProductNotFoundError: If it does not exist.
        """
        product = await self.repository.get_by_id(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    async def get_by_slug(self, slug: str) -> ProductModel:
        """Get a product by slug.

        Raises:
            ProductNotFoundError: If it does not exist.
        """
        product = await self.repository.get_by_slug(slug)
        if product is None:
            raise ProductNotFoundError(slug)
        return product

    async def query(
        self,
        filters: ProductFilter,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResult[ProductModel]:
        """Search products.

        A category filter matches the category and all of its descendants.

        Args:
            filters: Filter parameters.
            pagination: Page, page size and sort.

        Returns:
            One page of products and the total under the same filters.

        Raises:
            CategoryNotFoundError: If the category filter does not resolve.
        """
        pagination = pagination or PaginationParams()

        category_ids = None
        if filters.category_id:
            index = await self.category_index()
            if filters.category_id not in index:
                raise CategoryNotFoundError(filters.category_id)
            category_ids = index.subtree_ids(filters.category_id)

        criteria = {
            "category_ids": category_ids,
            "brand": filters.brand,
            "active": filters.active,
            "featured": filters.featured,
            "search": filters.search.strip() if filters.search else None,
        }
        items = await self.repository.find_all(
            **criteria,
            sort_by=pagination.sort_by,
            sort_order=pagination.sort_order,
            limit=pagination.limit,
            offset=pagination.offset,
        )
        total = await self.repository.count(**criteria)

        return PaginatedResult(
            items=list(items),
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )

    async def is_sku_available(self, sku: str, exclude_product_id: str | None = None) -> bool:
        """Check whether ``sku`` is free across base and variant SKUs."""
        owners = await self.repository.find_sku_owners([sku], exclude_product_id)
        return not owners

    async def get_brands(self) -> list[str]:
        """Brands of active products."""
        return await self.repository.get_brands()

    def suggest_sku(self, name: str, category_slug: str | None = None) -> str:
        """Suggest an editable base SKU from name and category."""
        stamp = _base36(int(time.time() * 1000))[:4]
        return generate_sku_suggestion(name, category_slug, stamp=stamp)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export_products(self, limit: int = MAX_EXPORT) -> list[dict[str, Any]]:
        """Export products, active or not, newest first."""
        products = await self.repository.find_all(
            sort_by="created_at", sort_order="desc", limit=limit
        )
        return [product.to_dict() for product in products]

    async def export_products_csv(self, limit: int = MAX_EXPORT) -> str:
        """Export products as CSV text with a UTF-8 BOM for spreadsheets.

        The file can be edited and fed back to the bulk importer: rows keep
        their ``_id`` and are applied as updates.
        """
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=PRODUCT_CSV_HEADERS)
        writer.writeheader()
        for record in await self.export_products(limit):
            measurements = record["measurements"]
            writer.writerow(
                {
                    "_id": record["id"],
                    "name": record["name"],
                    "sku": record["sku"],
                    "slug": record["slug"],
                    "brand": record["brand"],
                    "brandSlug": record["brand_slug"],
                    "description": record["description"],
                    "category": record["category_id"],
                    "categoryBreadcrumb": record["category_breadcrumb"] or "",
                    "active": "1" if record["active"] else "0",
                    "featured": "1" if record["featured"] else "0",
                    "defaultImage": record["default_image"] or "",
                    "colorVariantsCount": len(record["color_variants"]),
                    "measurementsEnabled": "1" if measurements["enabled"] else "0",
                    "measurementsDescription": measurements["description"],
                    "measurementsVariants": (
                        json.dumps(measurements["variants"], ensure_ascii=False)
                        if measurements["variants"]
                        else ""
                    ),
                    "createdAt": record["created_at"] or "",
                    "updatedAt": record["updated_at"] or "",
                }
            )
        return "\ufeff" + buffer.getvalue()

    # ------------------------------------------------------------------
    # Category changes
    # ------------------------------------------------------------------

    async def handle_category_change(self, category_ids: list[str]) -> None:
        """Tree listener: drop the cache and rebuild affected breadcrumbs."""
        self.cache.invalidate()
        await self.refresh_breadcrumbs(category_ids)

    async def refresh_breadcrumbs(self, category_ids: list[str] | None = None) -> int:
        """Rebuild stored breadcrumbs of products in ``category_ids``.

        Args:
            category_ids: Categories whose path changed; all products when None.

        Returns:
            Number of products whose breadcrumb changed.
        """
        index = await self.category_index()
        if category_ids is None:
            category_ids = [c.id for c in index.all()]
        products = await self.repository.find_by_category_ids(category_ids)

        updated = 0
        for product in products:
            crumb = index.breadcrumb(product.category_id)
            if product.category_breadcrumb != crumb:
                product.category_breadcrumb = crumb
                updated += 1
        if updated:
            await self.session.commit()
            logger.info("Breadcrumbs refreshed", products=updated)
        return updated

    async def recompute_counts(self) -> dict[str, tuple[int, int]]:
        """Recompute category product counts."""
        counts = await self.tree.recompute_product_counts()
        self.cache.invalidate()
        return counts


def _base36(value: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"
