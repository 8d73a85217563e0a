from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from modules.storage.uploads import decode_file_data, validate_upload
from services.api.deps import ServiceContainer, current_user, get_container
from services.api.schemas.common import ErrorResponse
from services.api.schemas.upload import ProductUploadRequest, UploadDescriptor, UploadRequest


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["upload"])

_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _decode(req: UploadRequest, max_size: int) -> bytes:
    # Reject on declared size before decoding a large payload
    validate_upload(req.file_size, req.mime_type, max_size=max_size)
    data = decode_file_data(req.file_data)
    validate_upload(len(data), req.mime_type, max_size=max_size)
    return data


@router.post("/scene", response_model=UploadDescriptor, responses=_ERRORS)
def upload_scene(
    req: UploadRequest,
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> UploadDescriptor:
    data = _decode(req, container.uploads.max_size)
    stored = container.uploads.store(data, kind="scene", original_name=req.file_name, mime_type=req.mime_type)
    scene = container.store.create_scene_image(
        user_id=user_id,
        filename=stored.filename,
        original_name=stored.original_name,
        mime_type=stored.mime_type,
        size=stored.size,
        storage_key=stored.key,
        url=stored.url,
    )
    logger.info("scene uploaded id=%s user=%s size=%d", scene.id, user_id, stored.size)
    return UploadDescriptor(
        id=scene.id,
        filename=stored.filename,
        original_name=stored.original_name,
        size=stored.size,
        mime_type=stored.mime_type,
        url=stored.url,
    )


@router.post("/product", response_model=UploadDescriptor, responses=_ERRORS)
def upload_product(
    req: ProductUploadRequest,
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> UploadDescriptor:
    data = _decode(req, container.uploads.max_size)
    stored = container.uploads.store(data, kind="product", original_name=req.file_name, mime_type=req.mime_type)
    product = container.store.create_product(
        user_id=user_id,
        name=req.name or stored.original_name,
        description=req.description,
        category=req.category,
        image_url=stored.url,
        image_key=stored.key,
        image_mime_type=stored.mime_type,
    )
    logger.info("product image uploaded id=%s user=%s size=%d", product.id, user_id, stored.size)
    return UploadDescriptor(
        id=product.id,
        filename=stored.filename,
        original_name=stored.original_name,
        size=stored.size,
        mime_type=stored.mime_type,
        url=stored.url,
    )
