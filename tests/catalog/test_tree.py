"""Tests for the category tree service."""

import asyncio
import csv
import io

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from plumbcat.catalog.service import CatalogService, CategoryPathCache
from plumbcat.catalog.tree import CategoryTree
from plumbcat.domain.exceptions import (
    CategoryNotFoundError,
    CycleError,
    DepthExceededError,
    ValidationError,
)
from plumbcat.domain.products import ProductDraft
from plumbcat.infrastructure.database import Base


@pytest.fixture
def tree(catalog: CatalogService) -> CategoryTree:
    return catalog.tree


class TestCreateCategory:
    """Tests for category creation."""

    async def test_root_and_child(self, tree: CategoryTree) -> None:
        """Roots sit at level 0; children get a parent-prefixed slug."""
        plumbing = await tree.create_category("Plumbing")
        pipes = await tree.create_category("Pipes", parent_id=plumbing.id)

        assert plumbing.level == 0
        assert plumbing.type == "main"
        assert plumbing.slug == "plumbing"
        assert pipes.level == 1
        assert pipes.type == "sub"
        assert pipes.slug == "plumbing-pipes"
        assert pipes.parent_id == plumbing.id

    async def test_duplicate_names_get_unique_slugs(self, tree: CategoryTree) -> None:
        """A second category with the same name gets a numbered slug."""
        first = await tree.create_category("Plumbing")
        second = await tree.create_category("Plumbing")
        assert first.slug == "plumbing"
        assert second.slug == "plumbing-1"

    async def test_siblings_are_appended(self, tree: CategoryTree, seeded) -> None:
        """New children go after the existing siblings."""
        valves = await tree.create_category("Valves", parent_id=seeded.plumbing.id)
        assert valves.order == 2

    async def test_missing_parent(self, tree: CategoryTree) -> None:
        """An unknown parent raises CategoryNotFoundError."""
        with pytest.raises(CategoryNotFoundError):
            await tree.create_category("Pipes", parent_id="missing")

    async def test_inactive_parent(self, tree: CategoryTree, seeded) -> None:
        """Children cannot be created under an inactive parent."""
        await tree.set_active(seeded.bathrooms.id, False)
        with pytest.raises(ValidationError):
            await tree.create_category("Sinks", parent_id=seeded.bathrooms.id)

    async def test_empty_name(self, tree: CategoryTree) -> None:
        """Names are required."""
        with pytest.raises(ValidationError):
            await tree.create_category("   ")

    async def test_depth_limit(self, tree: CategoryTree, seeded) -> None:
        """Level 3 is the deepest level."""
        pressure = await tree.create_category("Pressure", parent_id=seeded.pvc.id)
        assert pressure.level == 3
        with pytest.raises(DepthExceededError):
            await tree.create_category("Too deep", parent_id=pressure.id)


class TestReparentOrRename:
    """Tests for moving and renaming categories."""

    async def test_move_cascades_levels(self, tree: CategoryTree, seeded) -> None:
        """Moving a node shifts the level of its whole subtree."""
        pressure = await tree.create_category("Pressure", parent_id=seeded.pvc.id)

        moved = await tree.reparent_or_rename(seeded.pipes.id, new_parent_id=None)

        assert moved.level == 0
        assert moved.parent_id is None
        assert (await tree.get_category(seeded.pvc.id)).level == 1
        assert (await tree.get_category(pressure.id)).level == 2

    async def test_move_recomputes_slug(self, tree: CategoryTree, seeded) -> None:
        """A moved node takes a slug under its new parent."""
        moved = await tree.reparent_or_rename(seeded.pvc.id, new_parent_id=seeded.bathrooms.id)
        assert moved.slug == "bathrooms-pvc"
        assert moved.level == 1

    async def test_move_under_descendant_is_a_cycle(self, tree: CategoryTree, seeded) -> None:
        """A node cannot move under its own descendant."""
        with pytest.raises(CycleError):
            await tree.reparent_or_rename(seeded.plumbing.id, new_parent_id=seeded.pvc.id)

        unchanged = await tree.get_category(seeded.plumbing.id)
        assert unchanged.parent_id is None

    async def test_move_under_itself_is_a_cycle(self, tree: CategoryTree, seeded) -> None:
        """A node cannot be its own parent."""
        with pytest.raises(CycleError):
            await tree.reparent_or_rename(seeded.pipes.id, new_parent_id=seeded.pipes.id)

    async def test_move_too_deep(self, tree: CategoryTree, seeded) -> None:
        """A move that pushes the subtree past level 3 is rejected."""
        await tree.create_category("Pressure", parent_id=seeded.pvc.id)
        with pytest.raises(DepthExceededError):
            await tree.reparent_or_rename(seeded.pipes.id, new_parent_id=seeded.fittings.id)
        assert (await tree.get_category(seeded.pipes.id)).level == 1

    async def test_rename_keeps_descendant_slugs(self, tree: CategoryTree, seeded) -> None:
        """Renaming changes the node's slug only."""
        renamed = await tree.reparent_or_rename(seeded.pipes.id, new_name="Tubes")
        assert renamed.name == "Tubes"
        assert renamed.slug == "plumbing-tubes"
        assert (await tree.get_category(seeded.pvc.id)).slug == "plumbing-pipes-pvc"

    async def test_description_only(self, tree: CategoryTree, seeded) -> None:
        """Editing the description leaves slug and parent alone."""
        updated = await tree.reparent_or_rename(seeded.pipes.id, description="All pipes")
        assert updated.description == "All pipes"
        assert updated.slug == "plumbing-pipes"
        assert updated.parent_id == seeded.plumbing.id

    async def test_unknown_category(self, tree: CategoryTree) -> None:
        """Unknown ids raise CategoryNotFoundError."""
        with pytest.raises(CategoryNotFoundError):
            await tree.reparent_or_rename("missing", new_name="X")

    async def test_crossed_moves_leave_one_cycle_error(self, tree: CategoryTree, seeded) -> None:
        """Two concurrent moves under each other: one wins, the other is a cycle."""
        results = await asyncio.gather(
            tree.reparent_or_rename(seeded.fittings.id, new_parent_id=seeded.bathrooms.id),
            tree.reparent_or_rename(seeded.bathrooms.id, new_parent_id=seeded.fittings.id),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], CycleError)

        index = await tree.load_index()
        for category_id in (seeded.fittings.id, seeded.bathrooms.id):
            assert category_id not in index.ancestors(category_id)
        fittings = await tree.get_category(seeded.fittings.id)
        bathrooms = await tree.get_category(seeded.bathrooms.id)
        assert (fittings.parent_id == bathrooms.id) != (bathrooms.parent_id == fittings.id)


class TestQueries:
    """Tests for structural queries."""

    async def test_descendants(self, tree: CategoryTree, seeded) -> None:
        """Descendants exclude the node itself."""
        ids = await tree.get_descendant_ids(seeded.plumbing.id)
        assert set(ids) == {seeded.pipes.id, seeded.pvc.id, seeded.fittings.id}
        assert await tree.get_descendant_ids(seeded.pvc.id) == []

    async def test_path(self, tree: CategoryTree, seeded) -> None:
        """Path runs root first."""
        path = await tree.get_path(seeded.pvc.id)
        assert [c.name for c in path] == ["Plumbing", "Pipes", "PVC"]

    async def test_parent_candidates_exclude_own_subtree(self, tree: CategoryTree, seeded) -> None:
        """A node and its subtree are not offered as its parent."""
        candidates = await tree.get_parent_candidates(exclude_id=seeded.pipes.id)
        names = {c.name for c in candidates}
        assert names == {"Plumbing", "Fittings", "Bathrooms"}

    async def test_tree_and_lists(self, tree: CategoryTree, seeded) -> None:
        """Tree, main categories and children come back in sibling order."""
        nodes = await tree.get_tree()
        assert [n.category.name for n in nodes] == ["Plumbing", "Bathrooms"]
        assert [n.category.name for n in nodes[0].children] == ["Pipes", "Fittings"]
        assert [c.name for c in await tree.get_main_categories()] == ["Plumbing", "Bathrooms"]
        children = await tree.get_children(seeded.plumbing.id)
        assert [c.name for c in children] == ["Pipes", "Fittings"]

    async def test_inactive_hidden_from_listing(self, tree: CategoryTree, seeded) -> None:
        """Inactive categories only show up when asked for."""
        await tree.set_active(seeded.fittings.id, False)
        names = [c.name for c in await tree.list_categories()]
        assert "Fittings" not in names
        names = [c.name for c in await tree.list_categories(include_inactive=True)]
        assert "Fittings" in names

    async def test_get_by_slug(self, tree: CategoryTree, seeded) -> None:
        """Categories can be found by slug."""
        found = await tree.get_by_slug("plumbing-pipes")
        assert found.id == seeded.pipes.id
        with pytest.raises(CategoryNotFoundError):
            await tree.get_by_slug("nope")


class TestDeleteCategory:
    """Tests for soft delete."""

    async def test_soft_delete_warns_about_references(
        self, catalog: CatalogService, seeded
    ) -> None:
        """Deleting a referenced category warns but does not cascade."""
        await catalog.create(ProductDraft(name="Tee", sku="TEE-1", category_id=seeded.pipes.id))

        result = await catalog.tree.delete_category(seeded.pipes.id)

        assert result.category.active is False
        assert result.product_count == 1
        assert result.active_children == 1
        assert len(result.warnings) == 2
        assert (await catalog.tree.get_category(seeded.pvc.id)).active is True

    async def test_reactivate(self, tree: CategoryTree, seeded) -> None:
        """A deleted category can be reactivated."""
        await tree.delete_category(seeded.bathrooms.id)
        restored = await tree.set_active(seeded.bathrooms.id, True)
        assert restored.active is True


class TestProductCounts:
    """Tests for count recomputation."""

    async def test_counts_roll_up(self, catalog: CatalogService, seeded) -> None:
        """Totals include descendants; inactive products are not counted."""
        await catalog.create(ProductDraft(name="PVC 1", sku="PVC-1", category_id=seeded.pvc.id))
        await catalog.create(ProductDraft(name="PVC 2", sku="PVC-2", category_id=seeded.pvc.id))
        await catalog.create(ProductDraft(name="Pipe", sku="PIPE-1", category_id=seeded.pipes.id))
        hidden = await catalog.create(
            ProductDraft(name="Old", sku="OLD-1", category_id=seeded.pvc.id)
        )
        await catalog.soft_delete(hidden.id)

        counts = await catalog.tree.recompute_product_counts()

        assert counts[seeded.pvc.id] == (2, 2)
        assert counts[seeded.pipes.id] == (1, 3)
        assert counts[seeded.plumbing.id] == (0, 3)
        assert counts[seeded.bathrooms.id] == (0, 0)
        plumbing = await catalog.tree.get_category(seeded.plumbing.id)
        assert plumbing.total_product_count == 3


class TestExportImport:
    """Tests for category export and import."""

    async def test_export_has_parent_slugs(self, tree: CategoryTree, seeded) -> None:
        """Exported records reference parents by slug, parents first."""
        records = await tree.export_categories()
        slugs = [r["slug"] for r in records]
        assert slugs.index("plumbing") < slugs.index("plumbing-pipes")
        by_slug = {r["slug"]: r for r in records}
        assert by_slug["plumbing-pipes-pvc"]["parent_slug"] == "plumbing-pipes"
        assert by_slug["plumbing"]["parent_slug"] is None
        assert by_slug["plumbing"]["created_at"]

    async def test_export_csv(self, tree: CategoryTree, seeded) -> None:
        """CSV export starts with a BOM and writes active as 1/0."""
        await tree.set_active(seeded.bathrooms.id, False)
        text = await tree.export_categories_csv()
        assert text.startswith("\ufeff")

        rows = list(csv.DictReader(io.StringIO(text[1:])))
        assert len(rows) == 5
        by_slug = {r["slug"]: r for r in rows}
        assert by_slug["bathrooms"]["active"] == "0"
        assert by_slug["plumbing-pipes"]["parent_slug"] == "plumbing"
        assert by_slug["plumbing-pipes"]["type"] == "sub"

    async def test_round_trip_into_empty_database(self, tree: CategoryTree, seeded) -> None:
        """Export then import elsewhere reproduces the hierarchy."""
        records = await tree.export_categories()

        other_engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with other_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        try:
            factory = async_sessionmaker(other_engine, class_=AsyncSession, expire_on_commit=False)
            async with factory() as other_session:
                other = CatalogService(other_session, cache=CategoryPathCache()).tree
                result = await other.import_categories(reversed(records))
                assert result.errors == []
                assert len(result.created) == 5

                imported = await other.export_categories()
        finally:
            await other_engine.dispose()

        def shape(rows: list[dict]) -> set[tuple]:
            return {(r["slug"], r["name"], r["parent_slug"], r["level"], r["active"]) for r in rows}

        assert shape(imported) == shape(records)

    async def test_import_updates_by_slug(self, tree: CategoryTree, seeded) -> None:
        """Existing slugs are updated and moved instead of duplicated."""
        result = await tree.import_categories(
            [
                {"slug": "plumbing-pipes-pvc", "name": "PVC pipes", "parent_slug": "bathrooms"},
                {"slug": "sinks", "name": "Sinks", "parent_slug": "bathrooms"},
            ]
        )
        assert result.updated == ["plumbing-pipes-pvc"]
        assert result.created == ["sinks"]

        pvc = await tree.get_category(seeded.pvc.id)
        assert pvc.name == "PVC pipes"
        assert pvc.parent_id == seeded.bathrooms.id
        assert pvc.slug == "plumbing-pipes-pvc"
        assert pvc.level == 1

    async def test_import_reports_unresolved_parent(self, tree: CategoryTree) -> None:
        """Records with an unknown parent are reported and skipped."""
        result = await tree.import_categories(
            [
                {"slug": "orphan", "name": "Orphan", "parent_slug": "nowhere"},
                {"slug": "root", "name": "Root"},
            ]
        )
        assert result.created == ["root"]
        assert result.errors[0]["slug"] == "orphan"
