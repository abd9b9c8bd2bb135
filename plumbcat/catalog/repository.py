"""Repositories for catalog database operations.

Thin async wrappers over the SQLAlchemy session. They never commit;
the calling service owns transaction boundaries.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from plumbcat.catalog.models import CategoryModel, ProductModel, ProductSkuModel


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so ``term`` matches literally (escape char ``\\``)."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CategoryRepository:
    """Repository for Category database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def save(self, category: CategoryModel) -> CategoryModel:
        """Add or update a category and flush.

        Args:
            category: Category to save.

        Returns:
            Saved category.
        """
        self.session.add(category)
        await self.session.flush()
        return category

    async def get_by_id(self, category_id: str) -> CategoryModel | None:
        """Get category by ID."""
        return await self.session.get(CategoryModel, category_id)

    async def get_by_slug(self, slug: str) -> CategoryModel | None:
        """Get category by slug."""
        result = await self.session.execute(
            select(CategoryModel).where(CategoryModel.slug == slug)
        )
        return result.scalar_one_or_none()

    async def list_all(self, include_inactive: bool = True) -> Sequence[CategoryModel]:
        """List categories ordered by level, then sibling order, then name.

        Args:
            include_inactive: Whether soft-deleted categories are included.

        Returns:
            Matching categories.
        """
        query = select(CategoryModel)
        if not include_inactive:
            query = query.where(CategoryModel.active.is_(True))
        query = query.order_by(CategoryModel.level, CategoryModel.order, CategoryModel.name)
        result = await self.session.execute(query)
        return result.scalars().all()

    async def get_many(self, category_ids: Iterable[str]) -> Sequence[CategoryModel]:
        """Get several categories by ID."""
        ids = list(category_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(CategoryModel).where(CategoryModel.id.in_(ids))
        )
        return result.scalars().all()

    async def set_counts(self, counts: dict[str, tuple[int, int]]) -> None:
        """Write ``(product_count, total_product_count)`` per category.

        Categories missing from ``counts`` are reset to zero.

        Args:
            counts: Mapping of category id to (own, total).
        """
        for category in await self.list_all():
            own, total = counts.get(category.id, (0, 0))
            if category.product_count != own:
                category.product_count = own
            if category.total_product_count != total:
                category.total_product_count = total
        await self.session.flush()


class ProductRepository:
    """Repository for Product database operations.

    Handles all database interactions for products including
    filtering, sorting, pagination and the SKU namespace table.

    Example usage:
        async with get_session_factory()() as session:
            repo = ProductRepository(session)
            products = await repo.find_all(
                category_ids=["9b1d..."],
                active=True,
                limit=20,
            )
    """

    SORT_COLUMNS = {
        "name": ProductModel.name,
        "brand": ProductModel.brand,
        "created_at": ProductModel.created_at,
        "createdAt": ProductModel.created_at,
        "sku": ProductModel.sku,
    }

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def save(self, product: ProductModel) -> ProductModel:
        """Add or update a product and flush.

        Args:
            product: Product to save.

        Returns:
            Saved product.
        """
        self.session.add(product)
        await self.session.flush()
        return product

    async def get_by_id(self, product_id: str) -> ProductModel | None:
        """Get product by ID."""
        return await self.session.get(ProductModel, product_id)

    async def get_by_slug(self, slug: str) -> ProductModel | None:
        """Get product by slug."""
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.slug == slug)
        )
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> ProductModel | None:
        """Get the first product with exactly this name."""
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.name == name).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_name_category_brand(
        self,
        name: str,
        category_id: str | None,
        brand: str,
    ) -> ProductModel | None:
        """Get the first product matching name, category and brand."""
        result = await self.session.execute(
            select(ProductModel)
            .where(
                and_(
                    ProductModel.name == name,
                    ProductModel.category_id == category_id,
                    ProductModel.brand == brand,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # SKU namespace
    # ------------------------------------------------------------------

    async def find_sku_owners(
        self,
        skus: Iterable[str],
        exclude_product_id: str | None = None,
    ) -> dict[str, str]:
        """Find which product reserves each of ``skus``.

        Both the namespace table and the products' base SKU column are
        checked, so rows written before the namespace existed still count.

        Args:
            skus: SKUs to look up.
            exclude_product_id: Product whose own SKUs are ignored.

        Returns:
            Mapping of taken SKU to owning product id.
        """
        wanted = [s for s in skus if s]
        if not wanted:
            return {}

        reserved = select(ProductSkuModel.sku, ProductSkuModel.product_id).where(
            ProductSkuModel.sku.in_(wanted)
        )
        base = select(ProductModel.sku, ProductModel.id).where(ProductModel.sku.in_(wanted))
        if exclude_product_id is not None:
            reserved = reserved.where(ProductSkuModel.product_id != exclude_product_id)
            base = base.where(ProductModel.id != exclude_product_id)

        owners: dict[str, str] = {}
        for query in (reserved, base):
            result = await self.session.execute(query)
            for sku, product_id in result.all():
                owners.setdefault(sku, product_id)
        return owners

    async def replace_skus(self, product_id: str, skus: list[tuple[str, str]]) -> None:
        """Replace the SKUs reserved by a product.

        Args:
            product_id: Owning product.
            skus: ``(sku, kind)`` pairs, kind being base, color or size.
        """
        wanted = dict(skus)
        result = await self.session.execute(
            select(ProductSkuModel).where(ProductSkuModel.product_id == product_id)
        )
        for row in result.scalars().all():
            if row.sku in wanted:
                row.kind = wanted.pop(row.sku)
            else:
                await self.session.delete(row)
        await self.session.flush()

        self.session.add_all(
            ProductSkuModel(sku=sku, product_id=product_id, kind=kind)
            for sku, kind in wanted.items()
        )
        await self.session.flush()

    async def slugs_with_prefix(self, base: str, exclude_product_id: str | None = None) -> set[str]:
        """Product slugs equal to ``base`` or starting with ``base-``."""
        query = select(ProductModel.slug).where(
            or_(ProductModel.slug == base, ProductModel.slug.like(f"{base}-%"))
        )
        if exclude_product_id is not None:
            query = query.where(ProductModel.id != exclude_product_id)
        result = await self.session.execute(query)
        return set(result.scalars().all())

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    def _build_conditions(
        self,
        category_ids: list[str] | None = None,
        brand: str | None = None,
        active: bool | None = None,
        featured: bool | None = None,
        search: str | None = None,
    ) -> list[Any]:
        conditions: list[Any] = []

        if category_ids is not None:
            conditions.append(ProductModel.category_id.in_(category_ids))

        if brand is not None:
            conditions.append(
                or_(ProductModel.brand == brand, ProductModel.brand_slug == brand)
            )

        if active is not None:
            conditions.append(ProductModel.active.is_(active))

        if featured is not None:
            conditions.append(ProductModel.featured.is_(featured))

        if search:
            search_pattern = f"%{escape_like(search)}%"
            conditions.append(
                or_(
                    ProductModel.name.ilike(search_pattern, escape="\\"),
                    ProductModel.sku.ilike(search_pattern, escape="\\"),
                    ProductModel.brand.ilike(search_pattern, escape="\\"),
                    ProductModel.description.ilike(search_pattern, escape="\\"),
                )
            )

        return conditions

    async def find_all(
        self,
        category_ids: list[str] | None = None,
        brand: str | None = None,
        active: bool | None = None,
        featured: bool | None = None,
        search: str | None = None,
        sort_by: str = "name",
        sort_order: str = "asc",
        limit: int = 20,
        offset: int = 0,
    ) -> Sequence[ProductModel]:
        """Find products with filtering, sorting, and pagination.

        Args:
            category_ids: Allowed category ids (already expanded to subtrees).
            brand: Brand name or brand slug.
            active: Filter by active flag.
            featured: Filter by featured flag.
            search: Case-insensitive substring over name, sku, brand, description.
            sort_by: Sort field (name, brand, created_at, sku).
            sort_order: Sort order (asc, desc).
            limit: Maximum results.
            offset: Result offset for pagination.

        Returns:
            Sequence of matching products.
        """
        query = select(ProductModel)

        conditions = self._build_conditions(category_ids, brand, active, featured, search)
        if conditions:
            query = query.where(and_(*conditions))

        sort_column = self._get_sort_column(sort_by)
        if sort_order.lower() == "desc":
            query = query.order_by(sort_column.desc(), ProductModel.id)
        else:
            query = query.order_by(sort_column.asc(), ProductModel.id)

        query = query.limit(limit).offset(offset)

        result = await self.session.execute(query)
        return result.scalars().all()

    async def count(
        self,
        category_ids: list[str] | None = None,
        brand: str | None = None,
        active: bool | None = None,
        featured: bool | None = None,
        search: str | None = None,
    ) -> int:
        """Count products matching the same filters as :meth:`find_all`."""
        query = select(func.count(ProductModel.id))

        conditions = self._build_conditions(category_ids, brand, active, featured, search)
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.session.execute(query)
        return result.scalar_one()

    async def find_by_category_ids(self, category_ids: Iterable[str]) -> Sequence[ProductModel]:
        """All products, active or not, assigned to any of ``category_ids``."""
        ids = list(category_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.category_id.in_(ids))
        )
        return result.scalars().all()

    async def count_active_by_category(self) -> dict[str, int]:
        """Number of active products per category id."""
        result = await self.session.execute(
            select(ProductModel.category_id, func.count(ProductModel.id))
            .where(ProductModel.active.is_(True))
            .where(ProductModel.category_id.is_not(None))
            .group_by(ProductModel.category_id)
        )
        return {category_id: count for category_id, count in result.all()}

    async def count_by_category(self, category_id: str, active_only: bool = True) -> int:
        """Number of products assigned directly to one category."""
        query = select(func.count(ProductModel.id)).where(ProductModel.category_id == category_id)
        if active_only:
            query = query.where(ProductModel.active.is_(True))
        result = await self.session.execute(query)
        return result.scalar_one()

    async def get_brands(self) -> list[str]:
        """Get list of unique non-empty brands of active products."""
        query = (
            select(ProductModel.brand)
            .where(ProductModel.active.is_(True))
            .where(ProductModel.brand != "")
            .distinct()
            .order_by(ProductModel.brand)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    def _get_sort_column(self, sort_by: str) -> Any:
        """Get SQLAlchemy column for sorting.

        Args:
            sort_by: Sort field name.

        Returns:
            SQLAlchemy column, name when the field is unknown.
        """
        return self.SORT_COLUMNS.get(sort_by, ProductModel.name)
