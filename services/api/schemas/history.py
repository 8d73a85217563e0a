from __future__ import annotations

from datetime import datetime

from modules.persistence.records import GenerationRecord, GenerationStats, SceneImageRecord

from .common import CamelModel
from .generation import GeneratedImageOut
from .products import ProductOut


class SceneImageOut(CamelModel):
    id: str
    filename: str
    original_name: str
    mime_type: str
    size: int
    url: str
    created_at: datetime

    @classmethod
    def from_record(cls, rec: SceneImageRecord) -> "SceneImageOut":
        return cls(
            id=rec.id,
            filename=rec.filename,
            original_name=rec.original_name,
            mime_type=rec.mime_type,
            size=rec.size,
            url=rec.url,
            created_at=rec.created_at,
        )


class GenerationDetail(CamelModel):
    id: str
    status: str
    user_description: str
    product_description: str | None = None
    placement_description: str | None = None
    style_description: str | None = None
    enhanced_prompt: str
    ai_model: str
    temperature: float
    prompt_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    error_code: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    scene_image: SceneImageOut | None = None
    product: ProductOut | None = None
    generated_images: list[GeneratedImageOut] = []

    @classmethod
    def from_record(cls, rec: GenerationRecord) -> "GenerationDetail":
        return cls(
            id=rec.id,
            status=rec.status.value,
            user_description=rec.user_description,
            product_description=rec.product_description,
            placement_description=rec.placement_description,
            style_description=rec.style_description,
            enhanced_prompt=rec.enhanced_prompt,
            ai_model=rec.ai_model,
            temperature=rec.temperature,
            prompt_tokens=rec.prompt_tokens,
            output_tokens=rec.output_tokens,
            total_tokens=rec.total_tokens,
            error_code=rec.error_code,
            error_message=rec.error_message,
            retry_count=rec.retry_count,
            created_at=rec.created_at,
            updated_at=rec.updated_at,
            completed_at=rec.completed_at,
            scene_image=SceneImageOut.from_record(rec.scene_image) if rec.scene_image else None,
            product=ProductOut.from_record(rec.product) if rec.product else None,
            generated_images=[GeneratedImageOut.from_record(i) for i in rec.generated_images],
        )


class HistoryPage(CamelModel):
    generations: list[GenerationDetail]
    total: int
    has_more: bool


class HistoryStats(CamelModel):
    total_generations: int
    completed_generations: int
    failed_generations: int
    pending_generations: int
    total_tokens_used: int
    average_processing_time: float | None = None

    @classmethod
    def from_stats(cls, stats: GenerationStats) -> "HistoryStats":
        return cls(
            total_generations=stats.total_generations,
            completed_generations=stats.completed_generations,
            failed_generations=stats.failed_generations,
            pending_generations=stats.pending_generations,
            total_tokens_used=stats.total_tokens_used,
            average_processing_time=stats.average_processing_time,
        )


class DeleteResult(CamelModel):
    success: bool
    message: str
