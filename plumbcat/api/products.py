"""Product API endpoints.

Provides endpoints for searching and maintaining catalog products.
"""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from plumbcat.api.dependencies import get_catalog_service
from plumbcat.api.schemas import (
    ColorVariantSchema,
    ColorVariantUpdateRequest,
    ErrorDetail,
    ErrorResponse,
    FieldChangeSchema,
    ProductCreateRequest,
    ProductResponse,
    ProductsListResponse,
    ProductUpdateRequest,
    ProductUpdateResponse,
    ProductValidationResponse,
    SkuAvailabilityResponse,
    SkuSuggestionResponse,
)
from plumbcat.catalog.models import ProductModel
from plumbcat.catalog.service import (
    CatalogService,
    PaginationParams,
    ProductFilter,
    UpdateResult,
)
from plumbcat.domain.products import ColorVariant, ProductDraft

router = APIRouter(prefix="/products", tags=["Products"])


# ============================================================================
# Converters
# ============================================================================


def product_to_response(product: ProductModel) -> ProductResponse:
    """Convert ProductModel to response schema."""
    return ProductResponse(**product.to_dict())


def update_to_response(result: UpdateResult) -> ProductUpdateResponse:
    return ProductUpdateResponse(
        product=product_to_response(result.product),
        changes=[FieldChangeSchema(**c.to_dict()) for c in result.changes],
    )


# ============================================================================
# Read endpoints
# ============================================================================


@router.get(
    "",
    response_model=ProductsListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Search products",
    description="Filter by text, category subtree, brand and flags, with pagination.",
)
async def query_products(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    search: str | None = None,
    category_id: str | None = None,
    brand: str | None = None,
    active: bool | None = None,
    featured: bool | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    sort_by: str = "name",
    sort_order: Annotated[str, Query(pattern="^(asc|desc)$")] = "asc",
) -> ProductsListResponse:
    """Search products.

    A category filter matches products in that category or any of its
    descendants.
    """
    result = await service.query(
        ProductFilter(
            search=search,
            category_id=category_id,
            brand=brand,
            active=active,
            featured=featured,
        ),
        PaginationParams(page=page, page_size=page_size, sort_by=sort_by, sort_order=sort_order),
    )
    return ProductsListResponse(
        items=[product_to_response(p) for p in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
        has_more=result.has_next,
    )


@router.get(
    "/export/csv",
    summary="Export products as CSV",
    response_class=Response,
)
async def export_products(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> Response:
    """Export every product as a CSV file the bulk importer accepts back."""
    body = await service.export_products_csv()
    filename = f"products_{date.today().isoformat()}.csv"
    return Response(
        content=body.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/brands", response_model=list[str], summary="List brands")
async def list_brands(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> list[str]:
    return await service.get_brands()


@router.get(
    "/sku-availability",
    response_model=SkuAvailabilityResponse,
    summary="Check SKU availability",
    description="Whether a SKU is free across base and variant SKUs of every product.",
)
async def check_sku(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    sku: Annotated[str, Query(min_length=1)],
    exclude_product_id: str | None = None,
) -> SkuAvailabilityResponse:
    available = await service.is_sku_available(sku.strip(), exclude_product_id)
    return SkuAvailabilityResponse(sku=sku.strip(), available=available)


@router.get(
    "/sku-suggestion",
    response_model=SkuSuggestionResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Suggest a base SKU",
)
async def suggest_sku(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    name: Annotated[str, Query(min_length=1)],
    category_id: str | None = None,
) -> SkuSuggestionResponse:
    category_slug = None
    if category_id:
        category_slug = (await service.tree.get_category(category_id)).slug
    return SkuSuggestionResponse(sku=service.suggest_sku(name, category_slug))


@router.post(
    "/validate",
    response_model=ProductValidationResponse,
    summary="Validate a product",
    description="Run the catalog rules against a draft without touching storage.",
)
async def validate_product(
    request: ProductCreateRequest,
) -> ProductValidationResponse:
    issues = CatalogService.collect_issues(ProductDraft.from_dict(request.model_dump()))
    return ProductValidationResponse(
        valid=not issues,
        errors=[ErrorDetail(**i.to_dict()) for i in issues],
    )


@router.get(
    "/slug/{slug}",
    response_model=ProductResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get product by slug",
)
async def get_product_by_slug(
    slug: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> ProductResponse:
    return product_to_response(await service.get_by_slug(slug))


@router.get(
    "/{product_id}",
    response_model=ProductResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get product",
)
async def get_product(
    product_id: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> ProductResponse:
    return product_to_response(await service.get_product(product_id))


# ============================================================================
# Write endpoints
# ============================================================================


@router.post(
    "",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Create product",
)
async def create_product(
    request: ProductCreateRequest,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> ProductResponse:
    """Create a product.

    Raises:
        ProductValidationError: If the draft breaks a catalog rule or a SKU is taken.
    """
    product = await service.create(ProductDraft.from_dict(request.model_dump()))
    return product_to_response(product)


@router.patch(
    "/{product_id}",
    response_model=ProductUpdateResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Update product",
)
async def update_product(
    product_id: str,
    request: ProductUpdateRequest,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> ProductUpdateResponse:
    """Apply a partial update and report which fields changed."""
    changes = request.model_dump(exclude_unset=True)
    return update_to_response(await service.update(product_id, changes))


@router.delete(
    "/{product_id}",
    response_model=ProductResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Delete product",
    description="Soft delete; the product's SKUs stay reserved.",
)
async def delete_product(
    product_id: str,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> ProductResponse:
    return product_to_response(await service.soft_delete(product_id))


@router.post(
    "/{product_id}/color-variants",
    response_model=ProductUpdateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Add colour variant",
)
async def add_color_variant(
    product_id: str,
    request: ColorVariantSchema,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> ProductUpdateResponse:
    variant = ColorVariant(**request.model_dump())
    return update_to_response(await service.add_color_variant(product_id, variant))


@router.patch(
    "/{product_id}/color-variants/{variant_index}",
    response_model=ProductUpdateResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Update colour variant",
)
async def update_color_variant(
    product_id: str,
    variant_index: int,
    request: ColorVariantUpdateRequest,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> ProductUpdateResponse:
    result = await service.update_color_variant(
        product_id, variant_index, request.model_dump(exclude_unset=True)
    )
    return update_to_response(result)


@router.delete(
    "/{product_id}/color-variants/{variant_index}",
    response_model=ProductUpdateResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Remove colour variant",
)
async def remove_color_variant(
    product_id: str,
    variant_index: int,
    service: Annotated[CatalogService, Depends(get_catalog_service)],
) -> ProductUpdateResponse:
    return update_to_response(await service.remove_color_variant(product_id, variant_index))
