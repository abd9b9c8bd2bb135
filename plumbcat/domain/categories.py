"""Category hierarchy primitives.

Pure in-memory structures used by the category tree service:
slug generation, node snapshots and an adjacency index that answers
ancestor/descendant questions without touching storage.
"""

import re
import unicodedata
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from plumbcat.domain.exceptions import CategoryNotFoundError, CycleError, ValidationError
from plumbcat.domain.values import coerce_bool

MAX_LEVEL = 3
"""Deepest allowed level (levels are 0..3)."""

TYPE_MAIN = "main"
TYPE_SUB = "sub"

BREADCRUMB_SEPARATOR = " > "

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")


def slugify(text: str | None, fallback: str = "categoria") -> str:
    """Turn a display name into a lowercase ASCII slug.

    Diacritics are stripped ("Baños" -> "banos"), anything that is not a
    letter, digit, space or dash is dropped and runs of spaces and dashes
    collapse into a single dash.

    Args:
        text: Display name.
        fallback: Slug used when nothing survives the cleanup.

    Returns:
        The slug.
    """
    if not text:
        return fallback
    decomposed = unicodedata.normalize("NFD", text.lower())
    ascii_only = "".join(c for c in decomposed if not unicodedata.combining(c))
    slug = _NON_SLUG_CHARS.sub("", ascii_only)
    slug = _WHITESPACE.sub("-", slug.strip())
    slug = _DASHES.sub("-", slug).strip("-")
    return slug or fallback


def unique_slug(base: str, taken: set[str]) -> str:
    """Return ``base`` or the first ``base-N`` (N = 1, 2, ...) not in ``taken``."""
    if base not in taken:
        return base
    counter = 1
    while f"{base}-{counter}" in taken:
        counter += 1
    return f"{base}-{counter}"


def category_slug(name: str, parent_slug: str | None = None) -> str:
    """Build the base slug of a category.

    Children are prefixed with their parent's slug so that two "Accesorios"
    under different parents read as ``banos-accesorios`` and
    ``cocinas-accesorios`` instead of ``accesorios`` and ``accesorios-1``.
    """
    own = slugify(name)
    if parent_slug:
        return f"{parent_slug}-{own}"
    return own


def category_type(level: int) -> str:
    """Return ``main`` for roots and ``sub`` for every other level."""
    return TYPE_MAIN if level == 0 else TYPE_SUB


@dataclass
class Category:
    """Snapshot of a category node.

    Attributes:
        id: Category id (UUID string).
        name: Display name.
        slug: Globally unique slug.
        parent_id: Parent id, None at level 0.
        level: Depth, 0 for roots.
        order: Position among siblings.
        active: False once soft-deleted.
        description: Optional description.
        product_count: Active products directly in this category.
        total_product_count: Active products here and in all descendants.
    """

    id: str
    name: str
    slug: str
    parent_id: str | None = None
    level: int = 0
    order: int = 0
    active: bool = True
    description: str = ""
    product_count: int = 0
    total_product_count: int = 0

    @property
    def type(self) -> str:
        """``main`` or ``sub``."""
        return category_type(self.level)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "parent_id": self.parent_id,
            "level": self.level,
            "type": self.type,
            "order": self.order,
            "active": self.active,
            "product_count": self.product_count,
            "total_product_count": self.total_product_count,
        }


@dataclass
class CategoryNode:
    """Category with its children, for nested menus."""

    category: Category
    children: list["CategoryNode"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.category.to_dict()
        data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class CategoryDraft:
    """Category as given by an import record.

    Attributes:
        name: Display name; may be empty for updates.
        slug: Slug the record is matched and stored under.
        parent_slug: Parent by slug, None for a root.
        description: New description, None to keep the stored one.
        order: Sibling position, None for "after the last sibling".
        active: Whether the category is visible.
    """

    name: str
    slug: str
    parent_slug: str | None = None
    description: str | None = None
    order: int | None = None
    active: bool = True

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "CategoryDraft":
        """Build a draft from an exported (or legacy-normalised) record.

        Raises:
            ValidationError: If ``order`` is not a whole number.
        """
        order = record.get("order")
        if order in (None, ""):
            order = None
        else:
            try:
                order = int(order)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    [{"field": "order", "message": f"order '{order}' is not a number"}]
                ) from e

        name = str(record.get("name") or "").strip()
        return cls(
            name=name,
            slug=slugify(record.get("slug") or name),
            parent_slug=record.get("parent_slug") or None,
            description=record.get("description"),
            order=order,
            active=coerce_bool(record.get("active"), default=True),
        )


class CategoryIndex:
    """Adjacency index over a set of categories.

    Built once per operation from a full category listing. All walks use a
    visited set, so a corrupted parent graph ends the walk instead of
    looping forever.

    Example usage:
        index = CategoryIndex(await repo.list_all())
        ids = index.subtree_ids(category_id)
        crumb = index.breadcrumb(product.category_id)
    """

    def __init__(self, categories: Iterable[Category]) -> None:
        self._by_id: dict[str, Category] = {}
        self._by_slug: dict[str, Category] = {}
        self._children: dict[str | None, list[str]] = {}

        for category in categories:
            self._by_id[category.id] = category
            self._by_slug[category.slug] = category

        for category in self._by_id.values():
            self._children.setdefault(category.parent_id, []).append(category.id)

        for child_ids in self._children.values():
            child_ids.sort(key=lambda cid: (self._by_id[cid].order, self._by_id[cid].name))

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, category_id: object) -> bool:
        return category_id in self._by_id

    def get(self, category_id: str) -> Category | None:
        """Get a category by id."""
        return self._by_id.get(category_id)

    def require(self, category_id: str) -> Category:
        """Get a category by id or raise CategoryNotFoundError."""
        category = self._by_id.get(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    def get_by_slug(self, slug: str) -> Category | None:
        """Get a category by slug."""
        return self._by_slug.get(slug)

    def all(self) -> list[Category]:
        """All categories in depth-first tree order."""
        ordered: list[Category] = []
        seen: set[str] = set()
        stack = list(reversed(self._children.get(None, [])))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            ordered.append(self._by_id[current])
            stack.extend(reversed(self._children.get(current, [])))
        # Orphans whose parent id no longer resolves
        ordered.extend(c for cid, c in self._by_id.items() if cid not in seen)
        return ordered

    def slugs(self, exclude_id: str | None = None) -> set[str]:
        """Every slug in use, optionally ignoring one category."""
        return {c.slug for c in self._by_id.values() if c.id != exclude_id}

    def roots(self) -> list[Category]:
        """Level-0 categories in sibling order."""
        return [self._by_id[cid] for cid in self._children.get(None, [])]

    def children(self, category_id: str | None) -> list[Category]:
        """Direct children in sibling order."""
        return [self._by_id[cid] for cid in self._children.get(category_id, [])]

    def next_order(self, parent_id: str | None) -> int:
        """Order value for a new last child of ``parent_id``."""
        siblings = self.children(parent_id)
        if not siblings:
            return 0
        return max(s.order for s in siblings) + 1

    def ancestors(self, category_id: str) -> list[str]:
        """Ancestor ids from the parent upward.

        Raises:
            CycleError: If a visited id repeats while walking up.
        """
        chain: list[str] = []
        visited = {category_id}
        current = self._by_id.get(category_id)
        while current is not None and current.parent_id is not None:
            parent_id = current.parent_id
            if parent_id in visited:
                raise CycleError(category_id, parent_id)
            visited.add(parent_id)
            chain.append(parent_id)
            current = self._by_id.get(parent_id)
        return chain

    def would_create_cycle(self, category_id: str, new_parent_id: str | None) -> bool:
        """Check whether placing ``category_id`` under ``new_parent_id`` closes a loop.

        Walks up from the proposed parent. Finding the moved node, or any
        repeated id, means the move is rejected.
        """
        if new_parent_id is None:
            return False
        if new_parent_id == category_id:
            return True
        visited: set[str] = set()
        current_id: str | None = new_parent_id
        while current_id is not None:
            if current_id == category_id or current_id in visited:
                return True
            visited.add(current_id)
            current = self._by_id.get(current_id)
            current_id = current.parent_id if current is not None else None
        return False

    def descendant_ids(self, category_id: str) -> list[str]:
        """Every id below ``category_id`` at any depth, breadth-first.

        The starting node is not included.
        """
        result: list[str] = []
        visited = {category_id}
        queue = deque(self._children.get(category_id, []))
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            result.append(current)
            queue.extend(self._children.get(current, []))
        return result

    def subtree_ids(self, category_id: str) -> list[str]:
        """``category_id`` followed by all of its descendants."""
        return [category_id, *self.descendant_ids(category_id)]

    def subtree_height(self, category_id: str) -> int:
        """Number of levels below the node (0 for a leaf)."""
        base = self._depth_from(category_id)
        deepest = 0
        for descendant in self.descendant_ids(category_id):
            deepest = max(deepest, self._depth_from(descendant) - base)
        return deepest

    def _depth_from(self, category_id: str) -> int:
        try:
            return len(self.ancestors(category_id))
        except CycleError:
            return 0

    def path(self, category_id: str) -> list[Category]:
        """Categories from the root down to ``category_id`` inclusive."""
        node = self.require(category_id)
        chain = [self._by_id[a] for a in self.ancestors(category_id) if a in self._by_id]
        chain.reverse()
        chain.append(node)
        return chain

    def breadcrumb(self, category_id: str | None) -> str:
        """Human-readable path such as ``Plumbing > Pipes > PVC``.

        Returns an empty string when the category does not resolve.
        """
        if not category_id or category_id not in self._by_id:
            return ""
        return BREADCRUMB_SEPARATOR.join(c.name for c in self.path(category_id))

    def parent_candidates(self, exclude_id: str | None = None) -> list[Category]:
        """Active categories that may receive children.

        Only levels below ``MAX_LEVEL`` qualify. When editing a category,
        the category and its own subtree are left out.
        """
        excluded: set[str] = set()
        if exclude_id is not None:
            excluded = set(self.subtree_ids(exclude_id))
        return [
            c for c in self.all()
            if c.active and c.level < MAX_LEVEL and c.id not in excluded
        ]

    def tree(self, root_slug: str | None = None, include_inactive: bool = False) -> list[CategoryNode]:
        """Nested hierarchy, optionally starting at one root slug."""

        def build(category: Category, visited: set[str]) -> CategoryNode:
            visited.add(category.id)
            node = CategoryNode(category=category)
            for child in self.children(category.id):
                if child.id in visited or (not include_inactive and not child.active):
                    continue
                node.children.append(build(child, visited))
            return node

        if root_slug is not None:
            root = self._by_slug.get(root_slug)
            starts = [root] if root is not None else []
        else:
            starts = self.roots()
        return [
            build(c, set()) for c in starts
            if include_inactive or c.active
        ]

    def rollup_counts(self, direct_counts: dict[str, int]) -> dict[str, tuple[int, int]]:
        """Compute ``(product_count, total_product_count)`` for every node.

        Args:
            direct_counts: Active product count keyed by category id.

        Returns:
            Mapping of category id to (own, own + all descendants).
        """
        result: dict[str, tuple[int, int]] = {}
        for category_id in self._by_id:
            own = direct_counts.get(category_id, 0)
            total = own + sum(
                direct_counts.get(d, 0) for d in self.descendant_ids(category_id)
            )
            result[category_id] = (own, total)
        return result


def normalize_legacy_category(
    raw: dict[str, Any],
    slug_by_legacy_id: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Reshape an old Category or Subcategory document into an import record.

    Old main categories had no parent and become roots. Old subcategories
    point either at a parent subcategory through ``parent`` (a legacy id)
    or at their main category through ``categorySlug``; without an explicit
    level they sit at 2 under a parent subcategory and at 1 otherwise.

    Args:
        raw: Legacy document.
        slug_by_legacy_id: Maps legacy ids to the slugs of those categories.

    Returns:
        Record in the shape accepted by ``CategoryTree.import_categories``.
    """
    slug_by_legacy_id = slug_by_legacy_id or {}
    legacy_parent = raw.get("parent")
    is_subcategory = bool(legacy_parent or raw.get("categorySlug"))

    parent_slug = None
    level = 0
    if is_subcategory:
        if legacy_parent:
            parent_slug = slug_by_legacy_id.get(str(legacy_parent))
        if parent_slug is None:
            parent_slug = raw.get("categorySlug")
        level = raw.get("level") or (2 if legacy_parent else 1)

    return {
        "name": (raw.get("name") or "").strip(),
        "slug": raw.get("slug") or slugify(raw.get("name")),
        "description": raw.get("description") or "",
        "parent_slug": parent_slug,
        "level": level,
        "order": raw.get("order", 0),
        "active": raw.get("active", True) is not False,
    }


def legacy_category_records(
    categories: Iterable[dict[str, Any]],
    subcategories: Iterable[dict[str, Any]] = (),
) -> list[dict[str, Any]]:
    """Convert a legacy categories + subcategories dump into import records."""
    categories = list(categories)
    subcategories = list(subcategories)
    slug_by_legacy_id = {
        str(doc.get("_id") or doc.get("id")): doc.get("slug") or slugify(doc.get("name"))
        for doc in [*categories, *subcategories]
        if doc.get("_id") or doc.get("id")
    }
    records = [
        {**normalize_legacy_category(doc, slug_by_legacy_id), "parent_slug": None, "level": 0}
        for doc in categories
    ]
    records.extend(normalize_legacy_category(doc, slug_by_legacy_id) for doc in subcategories)
    return records
