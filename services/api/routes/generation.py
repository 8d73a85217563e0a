from __future__ import annotations

from fastapi import APIRouter, Body, Depends

from modules.generation.client import InlineImage
from modules.generation.orchestrator import GenerationParams
from modules.storage.uploads import decode_inline_image
from services.api.deps import ServiceContainer, current_user, get_container
from services.api.schemas.common import ErrorResponse
from services.api.schemas.generation import GenerateImageRequest, GenerationResultOut, RegenerateRequest


router = APIRouter(prefix="/generation", tags=["generation"])

_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def _inline_image(data: str | None, field: str, max_size: int) -> InlineImage | None:
    if not data:
        return None
    raw, mime_type = decode_inline_image(data, field=field, max_size=max_size)
    return InlineImage(raw, mime_type)


@router.post("/generate", response_model=GenerationResultOut, responses=_ERRORS)
async def generate_image(
    req: GenerateImageRequest = Body(
        examples=[
            {
                "userDescription": "请帮我生成一个温馨的生活场景买家秀",
                "styleDescription": "cozy natural light",
                "temperature": 0.7,
            }
        ]
    ),
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> GenerationResultOut:
    params = GenerationParams(
        user_description=req.user_description,
        product_description=req.product_description,
        placement_description=req.placement_description,
        style_description=req.style_description,
        scene_image_id=req.scene_image_id,
        product_id=req.product_id,
        temperature=req.temperature,
        scene_image=_inline_image(req.scene_image_base64, "sceneImageBase64", container.uploads.max_size),
        product_image=_inline_image(req.product_image_base64, "productImageBase64", container.uploads.max_size),
    )
    record = await container.orchestrator.create_and_run(user_id, params)
    return GenerationResultOut.from_record(record)


@router.get("/{generation_id}", response_model=GenerationResultOut, responses=_ERRORS)
def get_generation_status(
    generation_id: str,
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> GenerationResultOut:
    return GenerationResultOut.from_record(container.orchestrator.get_status(user_id, generation_id))


@router.post("/{generation_id}/regenerate", response_model=GenerationResultOut, responses=_ERRORS)
async def regenerate_image(
    generation_id: str,
    req: RegenerateRequest | None = Body(default=None),
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> GenerationResultOut:
    temperature = req.temperature if req is not None else None
    record = await container.orchestrator.regenerate(user_id, generation_id, temperature=temperature)
    return GenerationResultOut.from_record(record)
