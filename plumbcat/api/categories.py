"""Category API endpoints.

Provides endpoints for browsing and maintaining the category tree.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response, status

from plumbcat.api.dependencies import get_catalog_service
from plumbcat.api.schemas import (
    CategoryCountsResponse,
    CategoryCreateRequest,
    CategoryDeleteResponse,
    CategoryImportResponse,
    CategoryResponse,
    CategoryTreeNode,
    CategoryUpdateRequest,
    ErrorResponse,
)
from plumbcat.catalog.service import CatalogService
from plumbcat.catalog.tree import UNCHANGED
from plumbcat.domain.categories import Category, CategoryNode

router = APIRouter(prefix="/categories", tags=["Categories"])


# ============================================================================
# Converters
# ============================================================================


def category_to_response(category: Any) -> CategoryResponse:
    """Convert a Category node or CategoryModel to response schema."""
    return CategoryResponse(**category.to_dict())


def node_to_response(node: CategoryNode) -> CategoryTreeNode:
    """Convert a nested tree node to response schema."""
    return CategoryTreeNode(
        **node.category.to_dict(),
        children=[node_to_response(child) for child in node.children],
    )


def categories_to_response(categories: list[Category]) -> list[CategoryResponse]:
    return [category_to_response(c) for c in categories]


# ============================================================================
# Read endpoints
# ============================================================================


@router.get(
    "",
    response_model=list[CategoryResponse],
    summary="List categories",
    description="All categories, parents before children.",
)
async def list_categories(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    include_inactive: bool = False,
) -> list[CategoryResponse]:
    """List categories in tree order."""
    return categories_to_response(
        await service.tree.list_categories(include_inactive=include_inactive)
    )


@router.get("/main", response_model=list[CategoryResponse], summary="List root categories")
async def list_main_categories(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    include_inactive: bool = False,
) -> list[CategoryResponse]:
    return categories_to_response(
        await service.tree.get_main_categories(include_inactive=include_inactive)
    )


@router.get(
    "/tree",
    response_model=list[CategoryTreeNode],
    summary="Get category tree",
    description="Nested hierarchy for menus, optionally rooted at one slug.",
)
async def get_tree(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    root_slug: str | None = None,
    include_inactive: bool = False,
) -> list[CategoryTreeNode]:
    """Get the nested category tree."""
    nodes = await service.tree.get_tree(root_slug=root_slug, include_inactive=include_inactive)
    return [node_to_response(node) for node in nodes]


@router.get(
    "/parent-candidates",
    response_model=list[CategoryResponse],
    summary="List valid parents",
    description="Active categories that can take a child, excluding a category's own subtree.",
)
async def get_parent_candidates(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    exclude_id: str | None = None,
) -> list[CategoryResponse]:
    return categories_to_response(await service.tree.get_parent_candidates(exclude_id))


@router.get(
    "/export",
    summary="Export categories as CSV",
    response_class=Response,
)
async def export_categories(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> Response:
    """Export every category as a spreadsheet-friendly CSV file."""
    body = await service.tree.export_categories_csv()
    return Response(
        content=body.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="categories.csv"'},
    )


@router.get(
    "/slug/{slug}",
    response_model=CategoryResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get category by slug",
)
async def get_category_by_slug(
    slug: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CategoryResponse:
    return category_to_response(await service.tree.get_by_slug(slug))


@router.get(
    "/{category_id}",
    response_model=CategoryResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get category",
)
async def get_category(
    category_id: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CategoryResponse:
    return category_to_response(await service.tree.get_category(category_id))


@router.get(
    "/{category_id}/children",
    response_model=list[CategoryResponse],
    responses={404: {"model": ErrorResponse}},
    summary="List direct children",
)
async def get_children(
    category_id: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    include_inactive: bool = False,
) -> list[CategoryResponse]:
    return categories_to_response(
        await service.tree.get_children(category_id, include_inactive=include_inactive)
    )


@router.get(
    "/{category_id}/path",
    response_model=list[CategoryResponse],
    responses={404: {"model": ErrorResponse}},
    summary="Get category path",
    description="Ancestors from the root down to the category itself.",
)
async def get_path(
    category_id: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> list[CategoryResponse]:
    return categories_to_response(await service.tree.get_path(category_id))


@router.get(
    "/{category_id}/descendants",
    response_model=list[str],
    responses={404: {"model": ErrorResponse}},
    summary="Get descendant ids",
    description="Ids of every category below this one, excluding itself.",
)
async def get_descendants(
    category_id: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> list[str]:
    return await service.tree.get_descendant_ids(category_id)


# ============================================================================
# Write endpoints
# ============================================================================


@router.post(
    "",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Create category",
)
async def create_category(
    request: CategoryCreateRequest,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CategoryResponse:
    """Create a category under an optional parent.

    Raises:
        DepthExceededError: If the parent is already at the deepest level.
    """
    category = await service.tree.create_category(
        name=request.name,
        parent_id=request.parent_id,
        description=request.description,
        order=request.order,
        slug=request.slug,
        active=request.active,
    )
    return category_to_response(category)


@router.patch(
    "/{category_id}",
    response_model=CategoryResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Update category",
    description="Rename, move or edit a category. Moves cascade levels to descendants.",
)
async def update_category(
    category_id: str,
    request: CategoryUpdateRequest,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CategoryResponse:
    """Rename and/or move a category.

    Raises:
        CycleError: If the new parent is inside the category's own subtree.
        DepthExceededError: If the moved subtree would become too deep.
    """
    sent = request.model_fields_set
    category = await service.tree.reparent_or_rename(
        category_id,
        new_name=request.name,
        new_parent_id=request.parent_id if "parent_id" in sent else UNCHANGED,
        description=request.description,
        order=request.order,
    )
    if request.active is not None and request.active != category.active:
        category = await service.tree.set_active(category_id, request.active)
    return category_to_response(category)


@router.post(
    "/{category_id}/activate",
    response_model=CategoryResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Reactivate category",
)
async def activate_category(
    category_id: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CategoryResponse:
    return category_to_response(await service.tree.set_active(category_id, True))


@router.delete(
    "/{category_id}",
    response_model=CategoryDeleteResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Delete category",
    description="Soft delete. Products and subcategories are left in place and reported.",
)
async def delete_category(
    category_id: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CategoryDeleteResponse:
    result = await service.tree.delete_category(category_id)
    return CategoryDeleteResponse(
        category=category_to_response(result.category),
        product_count=result.product_count,
        active_children=result.active_children,
        warnings=result.warnings,
    )


@router.post(
    "/import",
    response_model=CategoryImportResponse,
    summary="Import categories",
    description="Create or update categories from exported records, matched by slug.",
)
async def import_categories(
    records: list[dict[str, Any]],
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CategoryImportResponse:
    result = await service.tree.import_categories(records)
    return CategoryImportResponse(**result.to_dict())


@router.post(
    "/recount",
    response_model=CategoryCountsResponse,
    summary="Recompute product counts",
)
async def recount_categories(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CategoryCountsResponse:
    counts = await service.recompute_counts()
    return CategoryCountsResponse(
        categories=len(counts),
        products=sum(own for own, _ in counts.values()),
    )
