"""Shared FastAPI dependencies and the domain error to HTTP mapping."""

from typing import Annotated, AsyncGenerator

from fastapi import Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from plumbcat.catalog.service import CatalogService
from plumbcat.domain.exceptions import (
    CategoryNotFoundError,
    CycleError,
    DepthExceededError,
    DomainError,
    DuplicateProductError,
    ExternalCollaboratorError,
    FeedFormatError,
    IntegrityConstraintError,
    ProductNotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from plumbcat.infrastructure.database import get_session
from plumbcat.infrastructure.images import HttpImageRehoster, ImageRehoster

# Most specific first
STATUS_BY_ERROR: list[tuple[type[DomainError], int]] = [
    (CategoryNotFoundError, status.HTTP_404_NOT_FOUND),
    (ProductNotFoundError, status.HTTP_404_NOT_FOUND),
    (IntegrityConstraintError, status.HTTP_409_CONFLICT),
    (DuplicateProductError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (CycleError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (DepthExceededError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (FeedFormatError, status.HTTP_400_BAD_REQUEST),
    (ExternalCollaboratorError, status.HTTP_502_BAD_GATEWAY),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for_error(exc: DomainError) -> int:
    """HTTP status code for a domain error."""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def error_details(exc: DomainError) -> list[dict]:
    """Flatten a domain error's context into ``{field, message}`` entries."""
    if isinstance(exc, ValidationError):
        return list(exc.errors)
    return [
        {"field": key, "message": str(value)}
        for key, value in exc.details.items()
        if value is not None
    ]


async def get_catalog_service(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CatalogService:
    """Get catalog service bound to the request session."""
    return CatalogService(session)


async def get_image_rehoster() -> AsyncGenerator[ImageRehoster, None]:
    """Get an HTTP image rehoster, closed when the request ends."""
    rehoster = HttpImageRehoster()
    try:
        yield rehoster
    finally:
        await rehoster.close()
