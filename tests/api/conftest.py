"""Shared fixtures for API tests."""

import asyncio
from collections.abc import AsyncGenerator, Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from plumbcat.api.dependencies import get_image_rehoster
from plumbcat.infrastructure.database import Base, get_session
from plumbcat.infrastructure.images import DryRunImageRehoster
from plumbcat.main import app


async def _create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def client(tmp_path) -> Iterator[TestClient]:
    """Test client backed by a throwaway SQLite file and a dry-run image host."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}", poolclass=NullPool)
    asyncio.run(_create_schema(engine))
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_image_rehoster] = DryRunImageRehoster
    yield TestClient(app)
    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


@pytest.fixture
def tree(client: TestClient) -> dict[str, dict[str, Any]]:
    """Plumbing > Pipes > PVC, Plumbing > Fittings and a Bathrooms root, by name."""
    created: dict[str, dict[str, Any]] = {}

    def add(name: str, parent: str | None = None) -> None:
        payload = {"name": name}
        if parent is not None:
            payload["parent_id"] = created[parent]["id"]
        response = client.post("/categories", json=payload)
        assert response.status_code == 201, response.text
        created[name] = response.json()

    add("Plumbing")
    add("Pipes", "Plumbing")
    add("PVC", "Pipes")
    add("Fittings", "Plumbing")
    add("Bathrooms")
    return created
