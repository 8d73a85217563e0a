from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class GenerationStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({GenerationStatus.COMPLETED, GenerationStatus.FAILED, GenerationStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[GenerationStatus, frozenset[GenerationStatus]] = {
    GenerationStatus.PENDING: frozenset({GenerationStatus.IN_PROGRESS, GenerationStatus.CANCELLED}),
    GenerationStatus.IN_PROGRESS: frozenset(
        {GenerationStatus.COMPLETED, GenerationStatus.FAILED, GenerationStatus.CANCELLED}
    ),
    GenerationStatus.COMPLETED: frozenset(),
    GenerationStatus.FAILED: frozenset(),
    GenerationStatus.CANCELLED: frozenset(),
}


class InvalidTransition(ValueError):
    pass


def check_transition(current: GenerationStatus, new: GenerationStatus) -> None:
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"cannot move generation from {current.value} to {new.value}")


@dataclass
class SceneImageRecord:
    id: str
    user_id: str
    filename: str
    original_name: str
    mime_type: str
    size: int
    storage_key: str
    url: str
    created_at: datetime


@dataclass
class ProductRecord:
    id: str
    user_id: str
    name: str
    description: str | None = None
    category: str | None = None
    image_url: str | None = None
    image_key: str | None = None
    image_mime_type: str | None = None
    price: float | None = None
    currency: str = "CNY"
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class GeneratedImageRecord:
    id: str
    generation_request_id: str
    filename: str
    original_prompt: str
    enhanced_prompt: str
    image_data: str
    mime_type: str
    size: int | None = None
    width: int | None = None
    height: int | None = None
    ai_model: str | None = None
    generated_at: datetime | None = None


@dataclass
class GenerationRecord:
    id: str
    user_id: str
    user_description: str
    enhanced_prompt: str
    status: GenerationStatus
    ai_model: str
    temperature: float
    created_at: datetime
    updated_at: datetime
    product_description: str | None = None
    placement_description: str | None = None
    style_description: str | None = None
    scene_image_id: str | None = None
    product_id: str | None = None
    prompt_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    error_code: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    completed_at: datetime | None = None
    generated_images: list[GeneratedImageRecord] = field(default_factory=list)
    scene_image: SceneImageRecord | None = None
    product: ProductRecord | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class EventRecord:
    id: str
    generation_id: str
    ts: datetime
    code: str
    level: str = "info"
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationStats:
    total_generations: int
    completed_generations: int
    failed_generations: int
    pending_generations: int
    total_tokens_used: int
    average_processing_time: float | None
