from __future__ import annotations

from datetime import datetime

from pydantic import Field

from modules.persistence.records import GeneratedImageRecord, GenerationRecord

from .common import CamelModel


class GenerateImageRequest(CamelModel):
    user_description: str = Field(min_length=5, max_length=2000)
    product_description: str | None = Field(default=None, max_length=1000)
    placement_description: str | None = Field(default=None, max_length=1000)
    style_description: str | None = Field(default=None, max_length=1000)
    scene_image_id: str | None = None
    product_id: str | None = None
    scene_image_base64: str | None = Field(default=None, description="Scene photo as base64 or a data: URL")
    product_image_base64: str | None = Field(default=None, description="Product photo as base64 or a data: URL")
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)


class RegenerateRequest(CamelModel):
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)


class GeneratedImageOut(CamelModel):
    id: str
    filename: str
    image_data: str
    mime_type: str
    width: int | None = None
    height: int | None = None
    generated_at: datetime | None = None

    @classmethod
    def from_record(cls, rec: GeneratedImageRecord) -> "GeneratedImageOut":
        return cls(
            id=rec.id,
            filename=rec.filename,
            image_data=rec.image_data,
            mime_type=rec.mime_type,
            width=rec.width,
            height=rec.height,
            generated_at=rec.generated_at,
        )


class GenerationResultOut(CamelModel):
    id: str
    status: str
    enhanced_prompt: str
    created_at: datetime
    generated_image: GeneratedImageOut | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_record(cls, rec: GenerationRecord) -> "GenerationResultOut":
        image = rec.generated_images[0] if rec.generated_images else None
        return cls(
            id=rec.id,
            status=rec.status.value,
            enhanced_prompt=rec.enhanced_prompt,
            created_at=rec.created_at,
            generated_image=GeneratedImageOut.from_record(image) if image else None,
            error_code=rec.error_code,
            error_message=rec.error_message,
        )
