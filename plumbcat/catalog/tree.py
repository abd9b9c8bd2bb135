"""Category tree service.

Owns the category hierarchy: creation, rename/reparent with cycle and
depth checks, soft delete, structural queries, count rollups and the
export/import round trip.
"""

import asyncio
import csv
import io
import weakref
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from plumbcat.catalog.models import CategoryModel
from plumbcat.catalog.repository import CategoryRepository, ProductRepository
from plumbcat.domain.categories import (
    MAX_LEVEL,
    Category,
    CategoryDraft,
    CategoryIndex,
    CategoryNode,
    category_slug,
    slugify,
    unique_slug,
)
from plumbcat.domain.exceptions import (
    CategoryNotFoundError,
    CycleError,
    DepthExceededError,
    IntegrityConstraintError,
    ValidationError,
)

logger = structlog.get_logger()

ChangeListener = Callable[[list[str]], Awaitable[None]]

UNCHANGED: Any = object()
"""Marker for "leave the parent as it is" in :meth:`CategoryTree.reparent_or_rename`."""

CSV_HEADERS = [
    "id",
    "name",
    "slug",
    "description",
    "parent",
    "parent_slug",
    "level",
    "type",
    "product_count",
    "total_product_count",
    "order",
    "active",
    "created_at",
    "updated_at",
]

_mutation_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


def _mutation_lock() -> asyncio.Lock:
    """Process-wide lock serialising tree mutations on the running loop."""
    loop = asyncio.get_running_loop()
    lock = _mutation_locks.get(loop)
    if lock is None:
        lock = asyncio.Lock()
        _mutation_locks[loop] = lock
    return lock


@dataclass
class DeleteCategoryResult:
    """Result of a soft delete.

    Attributes:
        category: The deactivated category.
        product_count: Products still assigned directly to it.
        active_children: Active child categories left under it.
        warnings: Human-readable warnings for the admin.
    """

    category: Category
    product_count: int = 0
    active_children: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass
class CategoryImportResult:
    """Outcome of importing a category set."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "errors": self.errors,
        }


class CategoryTree:
    """Service for category hierarchy operations.

    Mutations run under a process-wide lock and commit before the lock is
    released, so the cycle and slug checks see every earlier write.
    Listeners receive the ids of categories whose path may have changed.

    Example usage:
        async with get_session_factory()() as session:
            tree = CategoryTree(session)
            plumbing = await tree.create_category("Plumbing")
            pipes = await tree.create_category("Pipes", parent_id=plumbing.id)
            path = await tree.get_path(pipes.id)
    """

    def __init__(
        self,
        session: AsyncSession,
        listeners: Iterable[ChangeListener] | None = None,
    ) -> None:
        """Initialize the tree with a database session.

        Args:
            session: Async SQLAlchemy session.
            listeners: Callbacks notified after each committed mutation.
        """
        self.session = session
        self.repository = CategoryRepository(session)
        self.products = ProductRepository(session)
        self._listeners: list[ChangeListener] = list(listeners or [])

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback for committed mutations."""
        self._listeners.append(listener)

    async def _notify(self, category_ids: list[str]) -> None:
        for listener in self._listeners:
            await listener(category_ids)

    async def _save(self, category: CategoryModel, field_name: str = "slug") -> None:
        try:
            await self.repository.save(category)
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning("Category write rejected by storage", error=str(e.orig))
            raise IntegrityConstraintError(
                field_name, f"category {field_name} is already in use"
            ) from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_index(self, include_inactive: bool = True) -> CategoryIndex:
        """Build an adjacency index over the stored categories."""
        models = await self.repository.list_all(include_inactive=include_inactive)
        return CategoryIndex(m.to_domain() for m in models)

    async def get_category(self, category_id: str) -> CategoryModel:
        """Get a category by id.

        Raises:
            CategoryNotFoundError: If it does not exist.
        """
        category = await self.repository.get_by_id(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    async def get_by_slug(self, slug: str) -> CategoryModel:
        """Get a category by slug.

        Raises:
            CategoryNotFoundError: If it does not exist.
        """
        category = await self.repository.get_by_slug(slug)
        if category is None:
            raise CategoryNotFoundError(slug)
        return category

    async def list_categories(self, include_inactive: bool = False) -> list[Category]:
        """All categories in depth-first order."""
        index = await self.load_index(include_inactive=include_inactive)
        return index.all()

    async def get_main_categories(self, include_inactive: bool = False) -> list[Category]:
        """Level-0 categories."""
        index = await self.load_index(include_inactive=include_inactive)
        return index.roots()

    async def get_children(self, parent_id: str, include_inactive: bool = False) -> list[Category]:
        """Direct children of ``parent_id``."""
        index = await self.load_index(include_inactive=True)
        index.require(parent_id)
        return [c for c in index.children(parent_id) if include_inactive or c.active]

    async def get_descendant_ids(self, category_id: str) -> list[str]:
        """Ids of every category below ``category_id`` at any depth.

        Raises:
            CategoryNotFoundError: If the category does not exist.
        """
        index = await self.load_index()
        index.require(category_id)
        return index.descendant_ids(category_id)

    async def get_path(self, category_id: str) -> list[Category]:
        """Categories from the root down to ``category_id``."""
        index = await self.load_index()
        return index.path(category_id)

    async def get_parent_candidates(self, exclude_id: str | None = None) -> list[Category]:
        """Active categories that may receive children (level below 3)."""
        index = await self.load_index()
        if exclude_id is not None:
            index.require(exclude_id)
        return index.parent_candidates(exclude_id)

    async def get_tree(
        self,
        root_slug: str | None = None,
        include_inactive: bool = False,
    ) -> list[CategoryNode]:
        """Nested hierarchy for menus, optionally from one root slug."""
        index = await self.load_index()
        return index.tree(root_slug=root_slug, include_inactive=include_inactive)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _resolve_parent(self, index: CategoryIndex, parent_id: str | None) -> Category | None:
        if parent_id is None:
            return None
        parent = index.get(parent_id)
        if parent is None:
            raise CategoryNotFoundError(parent_id)
        if not parent.active:
            raise ValidationError(
                [{"field": "parent_id", "message": f"parent category {parent.name} is inactive"}]
            )
        return parent

    async def create_category(
        self,
        name: str,
        parent_id: str | None = None,
        description: str = "",
        order: int | None = None,
        slug: str | None = None,
        active: bool = True,
    ) -> CategoryModel:
        """Create a category.

        Args:
            name: Display name.
            parent_id: Parent category, None for a root.
            description: Optional description.
            order: Sibling position; defaults to after the last sibling.
            slug: Explicit slug (category imports); made unique if taken.
            active: Whether the category starts active.

        Returns:
            The created category.

        Raises:
            CategoryNotFoundError: If the parent does not exist.
            ValidationError: If the name is empty or the parent is inactive.
            DepthExceededError: If the parent is already at the deepest level.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError([{"field": "name", "message": "name is required"}])

        async with _mutation_lock():
            index = await self.load_index()
            parent = self._resolve_parent(index, parent_id)

            level = parent.level + 1 if parent else 0
            if level > MAX_LEVEL:
                raise DepthExceededError(level, MAX_LEVEL)

            base_slug = slugify(slug) if slug else category_slug(name, parent.slug if parent else None)
            category = CategoryModel(
                name=name,
                slug=unique_slug(base_slug, index.slugs()),
                description=description or "",
                parent_id=parent.id if parent else None,
                level=level,
                order=order if order is not None else index.next_order(parent_id),
                active=active,
            )
            await self._save(category)

        logger.info(
            "Category created",
            category_id=category.id,
            slug=category.slug,
            level=category.level,
            parent_id=category.parent_id,
        )
        await self._notify([category.id])
        return category

    async def reparent_or_rename(
        self,
        category_id: str,
        new_name: str | None = None,
        new_parent_id: str | None = UNCHANGED,
        description: str | None = None,
        order: int | None = None,
    ) -> CategoryModel:
        """Rename and/or move a category.

        Moving recomputes the level of the node and of every descendant.
        A rename or a move recomputes the node's slug; descendants keep
        their slugs.

        Args:
            category_id: Category to change.
            new_name: New display name.
            new_parent_id: New parent id, None to make it a root, or
                ``UNCHANGED`` to keep the current parent.
            description: New description.
            order: New sibling position.

        Returns:
            The updated category.

        Raises:
            CategoryNotFoundError: If the category or new parent does not exist.
            CycleError: If the new parent is the node or one of its descendants.
            DepthExceededError: If the moved subtree would go below level 3.
        """
        async with _mutation_lock():
            index = await self.load_index()
            index.require(category_id)
            category = await self.get_category(category_id)

            moving = new_parent_id is not UNCHANGED and new_parent_id != category.parent_id
            renaming = new_name is not None and new_name.strip() != category.name
            if new_name is not None and not new_name.strip():
                raise ValidationError([{"field": "name", "message": "name is required"}])

            affected = [category_id]
            parent = index.get(category.parent_id) if category.parent_id else None

            if moving:
                if index.would_create_cycle(category_id, new_parent_id):
                    logger.warning(
                        "Category move rejected: cycle",
                        category_id=category_id,
                        parent_id=new_parent_id,
                    )
                    raise CycleError(category_id, new_parent_id)
                parent = self._resolve_parent(index, new_parent_id)

                new_level = parent.level + 1 if parent else 0
                deepest = new_level + index.subtree_height(category_id)
                if deepest > MAX_LEVEL:
                    raise DepthExceededError(deepest, MAX_LEVEL, category_id)

                delta = new_level - category.level
                descendant_ids = index.descendant_ids(category_id)
                if delta:
                    for descendant in await self.repository.get_many(descendant_ids):
                        descendant.level += delta
                affected.extend(descendant_ids)

                category.parent_id = parent.id if parent else None
                category.level = new_level
                if order is None:
                    category.order = index.next_order(category.parent_id)

            if renaming:
                category.name = new_name.strip()
                affected.extend(d for d in index.descendant_ids(category_id) if d not in affected)

            if moving or renaming:
                base_slug = category_slug(category.name, parent.slug if parent else None)
                category.slug = unique_slug(base_slug, index.slugs(exclude_id=category_id))

            if description is not None:
                category.description = description
            if order is not None:
                category.order = order

            await self._save(category)

        logger.info(
            "Category updated",
            category_id=category.id,
            slug=category.slug,
            level=category.level,
            moved=moving,
            renamed=renaming,
        )
        await self._notify(affected)
        return category

    async def set_active(self, category_id: str, active: bool) -> CategoryModel:
        """Activate or deactivate a single category (no cascade)."""
        async with _mutation_lock():
            category = await self.get_category(category_id)
            category.active = active
            await self._save(category)

        logger.info("Category active flag changed", category_id=category_id, active=active)
        await self._notify([category_id])
        return category

    async def delete_category(self, category_id: str) -> DeleteCategoryResult:
        """Soft-delete a category.

        Products and child categories keep pointing at it; both situations
        are logged and returned as warnings.

        Raises:
            CategoryNotFoundError: If the category does not exist.
        """
        category = await self.get_category(category_id)
        product_count = await self.products.count_by_category(category_id, active_only=False)
        index = await self.load_index()
        active_children = sum(1 for c in index.children(category_id) if c.active)

        warnings: list[str] = []
        if product_count:
            warnings.append(
                f"{product_count} product(s) still reference category {category.name}"
            )
        if active_children:
            warnings.append(
                f"{active_children} active subcategory(ies) remain under {category.name}"
            )
        if warnings:
            logger.warning(
                "Deleting category that is still referenced",
                category_id=category_id,
                product_count=product_count,
                active_children=active_children,
            )

        category = await self.set_active(category_id, False)
        return DeleteCategoryResult(
            category=category.to_domain(),
            product_count=product_count,
            active_children=active_children,
            warnings=warnings,
        )

    async def recompute_product_counts(self) -> dict[str, tuple[int, int]]:
        """Recount active products per category and roll totals up the tree.

        Returns:
            Mapping of category id to (product_count, total_product_count).
        """
        direct = await self.products.count_active_by_category()
        index = await self.load_index()
        counts = index.rollup_counts(direct)
        await self.repository.set_counts(counts)
        await self.session.commit()

        orphaned = set(direct) - set(counts)
        if orphaned:
            logger.warning(
                "Active products reference unknown categories",
                category_ids=sorted(orphaned),
            )
        logger.info(
            "Category counts recomputed",
            categories=len(counts),
            products=sum(direct.values()),
        )
        return counts

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    async def export_categories(self) -> list[dict[str, Any]]:
        """Export every category, parents before children.

        Parents are referenced by slug so the records can be loaded into
        another database.
        """
        index = await self.load_index()
        models = {m.id: m for m in await self.repository.list_all()}
        records = []
        for category in index.all():
            parent = index.get(category.parent_id) if category.parent_id else None
            model = models[category.id]
            records.append(
                {
                    **category.to_dict(),
                    "parent_slug": parent.slug if parent else None,
                    "created_at": model.created_at.isoformat() if model.created_at else None,
                    "updated_at": model.updated_at.isoformat() if model.updated_at else None,
                }
            )
        return records

    async def export_categories_csv(self) -> str:
        """Export categories as CSV text with a UTF-8 BOM for spreadsheets."""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_HEADERS, extrasaction="ignore")
        writer.writeheader()
        for record in await self.export_categories():
            writer.writerow(
                {
                    **record,
                    "parent": record["parent_id"] or "",
                    "parent_slug": record["parent_slug"] or "",
                    "active": "1" if record["active"] else "0",
                }
            )
        return "\ufeff" + buffer.getvalue()

    async def import_categories(self, records: Iterable[dict[str, Any]]) -> CategoryImportResult:
        """Create or update categories from exported records, matched by slug.

        Records are applied parents first. A record whose parent slug
        resolves neither in storage nor in the batch is reported and skipped.

        Args:
            records: Dicts with ``name``, ``slug`` and optional ``parent_slug``,
                ``description``, ``order`` and ``active``.

        Returns:
            Slugs created and updated, plus per-record errors.
        """
        result = CategoryImportResult()
        drafts: list[CategoryDraft] = []
        for record in records:
            try:
                drafts.append(CategoryDraft.from_record(record))
            except ValidationError as e:
                result.errors.append(
                    {"slug": record.get("slug") or record.get("name"), "error": e.message}
                )

        incoming = {d.slug: d for d in drafts}
        done: set[str] = set()

        def depth(draft: CategoryDraft) -> int:
            seen = {draft.slug}
            steps = 0
            parent_slug = draft.parent_slug
            while parent_slug in incoming and parent_slug not in seen:
                seen.add(parent_slug)
                steps += 1
                parent_slug = incoming[parent_slug].parent_slug
            return steps

        for draft in sorted(drafts, key=depth):
            if draft.slug in done:
                continue
            done.add(draft.slug)
            try:
                await self._import_one(draft, result)
            except (ValidationError, CycleError, DepthExceededError, CategoryNotFoundError) as e:
                result.errors.append({"slug": draft.slug, "error": e.message})
                logger.warning("Category import row failed", slug=draft.slug, error=e.message)

        logger.info(
            "Categories imported",
            created=len(result.created),
            updated=len(result.updated),
            errors=len(result.errors),
        )
        return result

    async def _import_one(self, draft: CategoryDraft, result: CategoryImportResult) -> None:
        parent_id = None
        if draft.parent_slug:
            parent = await self.repository.get_by_slug(draft.parent_slug)
            if parent is None:
                raise CategoryNotFoundError(draft.parent_slug)
            parent_id = parent.id

        existing = await self.repository.get_by_slug(draft.slug)
        if existing is None:
            await self.create_category(
                name=draft.name or draft.slug,
                parent_id=parent_id,
                description=draft.description or "",
                order=draft.order,
                slug=draft.slug,
                active=draft.active,
            )
            result.created.append(draft.slug)
            return

        await self.reparent_or_rename(
            existing.id,
            new_parent_id=parent_id,
            description=draft.description,
            order=draft.order,
        )
        # Imported slugs are authoritative; keep them even after a move
        refreshed = await self.get_category(existing.id)
        if draft.name and refreshed.name != draft.name:
            refreshed.name = draft.name
        if refreshed.slug != draft.slug:
            refreshed.slug = draft.slug
        if refreshed.active != draft.active:
            refreshed.active = draft.active
        await self._save(refreshed)
        await self._notify([existing.id])
        result.updated.append(draft.slug)
