"""Bulk import endpoint.

Accepts a CSV or JSON product feed as the raw request body.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from plumbcat.api.dependencies import get_catalog_service, get_image_rehoster
from plumbcat.api.schemas import ErrorResponse, ImportReportResponse
from plumbcat.catalog.service import CatalogService
from plumbcat.importer.parsers import detect_format, parse_feed
from plumbcat.importer.pipeline import BulkImportPipeline
from plumbcat.infrastructure.images import ImageRehoster

router = APIRouter(prefix="/imports", tags=["Imports"])


@router.post(
    "",
    response_model=ImportReportResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Import products",
    description=(
        "Import a CSV or JSON product feed sent as the request body. "
        "With dry_run the full report is produced but nothing is written or uploaded."
    ),
)
async def import_products(
    request: Request,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    rehoster: Annotated[ImageRehoster, Depends(get_image_rehoster)],
    feed_format: Annotated[str | None, Query(alias="format", pattern="^(csv|json)$")] = None,
    filename: str | None = None,
    dry_run: bool = False,
    batch_size: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> ImportReportResponse:
    """Run a bulk import.

    Row-level failures are reported in the body; only an unreadable feed
    or unreachable storage fails the request.

    Raises:
        FeedFormatError: If the body cannot be parsed.
        StorageUnavailableError: If the database cannot be reached.
    """
    body = await request.body()
    fmt = feed_format or detect_format(filename, body)
    rows = parse_feed(body, fmt)

    pipeline = BulkImportPipeline(
        service.session,
        rehoster=rehoster,
        dry_run=dry_run,
        batch_size=batch_size,
        catalog=service,
    )
    report = await pipeline.run(rows, source=filename or f"upload.{fmt}")
    return ImportReportResponse(**report.to_dict())
