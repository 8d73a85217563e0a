"""Record store used by the generation core.

The core only sees :class:`GenerationStore`. Two implementations exist: the SQL one
below (SQLAlchemy over :class:`~modules.persistence.db.Database`) and the in-memory one
in :mod:`modules.persistence.memory`. Which one runs is decided by configuration when
the service container is built.
"""
from __future__ import annotations

from typing import Any, Protocol

from . import repos
from .db import Database
from .models import Event, GeneratedImage, GenerationRequest, Product, SceneImage
from .records import (
    EventRecord,
    GeneratedImageRecord,
    GenerationRecord,
    GenerationStats,
    GenerationStatus,
    ProductRecord,
    SceneImageRecord,
)


class GenerationStore(Protocol):
    def create_scene_image(
        self,
        *,
        user_id: str,
        filename: str,
        original_name: str,
        mime_type: str,
        size: int,
        storage_key: str,
        url: str,
    ) -> SceneImageRecord: ...

    def get_scene_image(self, image_id: str, *, user_id: str) -> SceneImageRecord | None: ...

    def create_product(self, *, user_id: str, name: str, **fields: Any) -> ProductRecord: ...

    def get_product(self, product_id: str, *, user_id: str) -> ProductRecord | None: ...

    def list_products(self, *, user_id: str) -> list[ProductRecord]: ...

    def deactivate_product(self, product_id: str, *, user_id: str) -> bool: ...

    def create_generation(self, *, user_id: str, enhanced_prompt: str, **fields: Any) -> GenerationRecord: ...

    def get_generation(self, generation_id: str, *, user_id: str) -> GenerationRecord | None: ...

    def update_generation(self, generation_id: str, **values: Any) -> GenerationRecord: ...

    def list_generations(
        self, *, user_id: str, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[list[GenerationRecord], int]: ...

    def delete_generation(self, generation_id: str, *, user_id: str) -> bool: ...

    def generation_stats(self, *, user_id: str) -> GenerationStats: ...

    def add_generated_image(self, *, generation_request_id: str, **fields: Any) -> GeneratedImageRecord: ...

    def append_event(
        self, generation_id: str, code: str, *, level: str = "info", payload: dict[str, Any] | None = None
    ) -> None: ...

    def list_events(self, generation_id: str) -> list[EventRecord]: ...


def _opt_str(value: Any) -> str | None:
    return str(value) if value is not None else None


def scene_to_record(row: SceneImage) -> SceneImageRecord:
    return SceneImageRecord(
        id=str(row.id),
        user_id=row.user_id,
        filename=row.filename,
        original_name=row.original_name,
        mime_type=row.mime_type,
        size=row.size,
        storage_key=row.storage_key,
        url=row.url,
        created_at=row.created_at,
    )


def product_to_record(row: Product) -> ProductRecord:
    return ProductRecord(
        id=str(row.id),
        user_id=row.user_id,
        name=row.name,
        description=row.description,
        category=row.category,
        image_url=row.image_url,
        image_key=row.image_key,
        image_mime_type=row.image_mime_type,
        price=row.price,
        currency=row.currency,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def image_to_record(row: GeneratedImage) -> GeneratedImageRecord:
    return GeneratedImageRecord(
        id=str(row.id),
        generation_request_id=str(row.generation_request_id),
        filename=row.filename,
        original_prompt=row.original_prompt,
        enhanced_prompt=row.enhanced_prompt,
        image_data=row.image_data,
        mime_type=row.mime_type,
        size=row.size,
        width=row.width,
        height=row.height,
        ai_model=row.ai_model,
        generated_at=row.generated_at,
    )


def generation_to_record(row: GenerationRequest) -> GenerationRecord:
    return GenerationRecord(
        id=str(row.id),
        user_id=row.user_id,
        user_description=row.user_description,
        enhanced_prompt=row.enhanced_prompt,
        status=GenerationStatus(row.status),
        ai_model=row.ai_model,
        temperature=row.temperature,
        created_at=row.created_at,
        updated_at=row.updated_at,
        product_description=row.product_description,
        placement_description=row.placement_description,
        style_description=row.style_description,
        scene_image_id=_opt_str(row.scene_image_id),
        product_id=_opt_str(row.product_id),
        prompt_tokens=row.prompt_tokens,
        output_tokens=row.output_tokens,
        total_tokens=row.total_tokens,
        error_code=row.error_code,
        error_message=row.error_message,
        retry_count=row.retry_count,
        completed_at=row.completed_at,
        generated_images=[image_to_record(i) for i in sorted(row.generated_images, key=lambda i: i.generated_at)],
        scene_image=scene_to_record(row.scene_image) if row.scene_image else None,
        product=product_to_record(row.product) if row.product else None,
    )


def event_to_record(row: Event) -> EventRecord:
    return EventRecord(
        id=str(row.id),
        generation_id=str(row.generation_id),
        ts=row.ts,
        code=row.code,
        level=row.level,
        payload=dict(row.payload_json or {}),
    )


class SqlGenerationStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create_scene_image(self, **fields: Any) -> SceneImageRecord:
        with self.db.session() as session:
            return scene_to_record(repos.create_scene_image(session, **fields))

    def get_scene_image(self, image_id: str, *, user_id: str) -> SceneImageRecord | None:
        with self.db.session() as session:
            row = repos.get_scene_image(session, image_id, user_id=user_id)
            return scene_to_record(row) if row else None

    def create_product(self, *, user_id: str, name: str, **fields: Any) -> ProductRecord:
        with self.db.session() as session:
            return product_to_record(repos.create_product(session, user_id=user_id, name=name, **fields))

    def get_product(self, product_id: str, *, user_id: str) -> ProductRecord | None:
        with self.db.session() as session:
            row = repos.get_product(session, product_id, user_id=user_id)
            return product_to_record(row) if row else None

    def list_products(self, *, user_id: str) -> list[ProductRecord]:
        with self.db.session() as session:
            return [product_to_record(p) for p in repos.list_products(session, user_id=user_id)]

    def deactivate_product(self, product_id: str, *, user_id: str) -> bool:
        with self.db.session() as session:
            return repos.deactivate_product(session, product_id, user_id=user_id)

    def create_generation(self, *, user_id: str, enhanced_prompt: str, **fields: Any) -> GenerationRecord:
        with self.db.session() as session:
            row = repos.create_generation(session, user_id=user_id, enhanced_prompt=enhanced_prompt, **fields)
            row = repos.get_generation(session, row.id)
            assert row is not None
            return generation_to_record(row)

    def get_generation(self, generation_id: str, *, user_id: str) -> GenerationRecord | None:
        with self.db.session() as session:
            row = repos.get_generation(session, generation_id, user_id=user_id)
            return generation_to_record(row) if row else None

    def update_generation(self, generation_id: str, **values: Any) -> GenerationRecord:
        with self.db.session() as session:
            return generation_to_record(repos.update_generation(session, generation_id, **values))

    def list_generations(
        self, *, user_id: str, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[list[GenerationRecord], int]:
        with self.db.session() as session:
            rows, total = repos.list_generations(session, user_id=user_id, status=status, limit=limit, offset=offset)
            return [generation_to_record(r) for r in rows], total

    def delete_generation(self, generation_id: str, *, user_id: str) -> bool:
        with self.db.session() as session:
            return repos.delete_generation(session, generation_id, user_id=user_id)

    def generation_stats(self, *, user_id: str) -> GenerationStats:
        with self.db.session() as session:
            return GenerationStats(**repos.generation_stats(session, user_id=user_id))

    def add_generated_image(self, *, generation_request_id: str, **fields: Any) -> GeneratedImageRecord:
        with self.db.session() as session:
            return image_to_record(
                repos.insert_generated_image(session, generation_request_id=generation_request_id, **fields)
            )

    def append_event(
        self, generation_id: str, code: str, *, level: str = "info", payload: dict[str, Any] | None = None
    ) -> None:
        with self.db.session() as session:
            repos.append_event(session, generation_id=generation_id, code=code, level=level, payload=payload)

    def list_events(self, generation_id: str) -> list[EventRecord]:
        with self.db.session() as session:
            return [event_to_record(e) for e in repos.iter_events(session, generation_id)]


def build_store(backend: str, db: Database | None = None) -> GenerationStore:
    if backend == "memory":
        from .memory import InMemoryGenerationStore

        return InMemoryGenerationStore()
    if backend == "sql":
        if db is None:
            raise ValueError("sql store needs a Database")
        return SqlGenerationStore(db)
    raise ValueError(f"unknown store backend: {backend}")
