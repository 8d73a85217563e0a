from __future__ import annotations

from fastapi import APIRouter, Depends

from modules.errors import NotFound
from services.api.deps import ServiceContainer, current_user, get_container
from services.api.schemas.common import ErrorResponse
from services.api.schemas.history import DeleteResult
from services.api.schemas.products import ProductCreateRequest, ProductOut


router = APIRouter(prefix="/products", tags=["products"])


@router.post("", response_model=ProductOut, status_code=201, responses={401: {"model": ErrorResponse}})
def create_product(
    req: ProductCreateRequest,
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> ProductOut:
    product = container.store.create_product(
        user_id=user_id,
        name=req.name,
        description=req.description,
        category=req.category,
        image_url=req.image_url,
        price=req.price,
        currency=req.currency,
    )
    return ProductOut.from_record(product)


@router.get("", response_model=list[ProductOut])
def list_products(
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> list[ProductOut]:
    return [ProductOut.from_record(p) for p in container.store.list_products(user_id=user_id)]


@router.get("/{product_id}", response_model=ProductOut, responses={404: {"model": ErrorResponse}})
def get_product(
    product_id: str,
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> ProductOut:
    product = container.store.get_product(product_id, user_id=user_id)
    if product is None:
        raise NotFound("Product not found", details={"productId": product_id})
    return ProductOut.from_record(product)


@router.delete("/{product_id}", response_model=DeleteResult, responses={404: {"model": ErrorResponse}})
def delete_product(
    product_id: str,
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> DeleteResult:
    if not container.store.deactivate_product(product_id, user_id=user_id):
        raise NotFound("Product not found", details={"productId": product_id})
    return DeleteResult(success=True, message="Product deleted")
