"""Shared fixtures: in-memory database, sessions and a seeded category tree."""

from collections.abc import AsyncGenerator, Iterator
from dataclasses import dataclass

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from plumbcat.catalog import models  # noqa: F401
from plumbcat.catalog.models import CategoryModel
from plumbcat.catalog.service import CatalogService, CategoryPathCache, get_category_cache
from plumbcat.infrastructure.config import settings
from plumbcat.infrastructure.database import Base


@pytest.fixture(autouse=True)
def reset_category_cache() -> Iterator[None]:
    """Start every test with an empty process-wide category cache."""
    get_category_cache().invalidate()
    yield
    get_category_cache().invalidate()


@pytest.fixture(autouse=True)
def no_pauses(monkeypatch: pytest.MonkeyPatch) -> None:
    """Disable the rate-limit pauses of the import pipeline."""
    monkeypatch.setattr(settings, "import_batch_pause_seconds", 0.0)
    monkeypatch.setattr(settings, "image_rehost_pause_seconds", 0.0)


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the catalog schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Database session bound to the in-memory engine."""
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def cache() -> CategoryPathCache:
    return CategoryPathCache()


@pytest.fixture
def catalog(session: AsyncSession, cache: CategoryPathCache) -> CatalogService:
    """Catalog service with counts recomputed on every write."""
    return CatalogService(session, cache=cache, recount_on_write=True)


@dataclass
class SeededTree:
    """Plumbing > Pipes > PVC, plus Plumbing > Fittings and a Bathrooms root."""

    plumbing: CategoryModel
    pipes: CategoryModel
    pvc: CategoryModel
    fittings: CategoryModel
    bathrooms: CategoryModel


@pytest.fixture
async def seeded(catalog: CatalogService) -> SeededTree:
    tree = catalog.tree
    plumbing = await tree.create_category("Plumbing")
    pipes = await tree.create_category("Pipes", parent_id=plumbing.id)
    pvc = await tree.create_category("PVC", parent_id=pipes.id)
    fittings = await tree.create_category("Fittings", parent_id=plumbing.id)
    bathrooms = await tree.create_category("Bathrooms")
    return SeededTree(
        plumbing=plumbing,
        pipes=pipes,
        pvc=pvc,
        fittings=fittings,
        bathrooms=bathrooms,
    )
