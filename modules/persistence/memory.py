from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from .records import (
    EventRecord,
    GeneratedImageRecord,
    GenerationRecord,
    GenerationStats,
    GenerationStatus,
    ProductRecord,
    SceneImageRecord,
    check_transition,
)

UTC = timezone.utc


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryGenerationStore:
    """Dict-backed store for tests and single-process demos. Records are copied on the way out."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scenes: dict[str, SceneImageRecord] = {}
        self._products: dict[str, ProductRecord] = {}
        self._generations: dict[str, GenerationRecord] = {}
        self._images: dict[str, list[GeneratedImageRecord]] = {}
        self._events: dict[str, list[EventRecord]] = {}

    # --- Scene images ---

    def create_scene_image(self, *, user_id: str, **fields: Any) -> SceneImageRecord:
        rec = SceneImageRecord(id=str(uuid.uuid4()), user_id=user_id, created_at=_utcnow(), **fields)
        with self._lock:
            self._scenes[rec.id] = rec
        return replace(rec)

    def get_scene_image(self, image_id: str, *, user_id: str) -> SceneImageRecord | None:
        with self._lock:
            rec = self._scenes.get(str(image_id))
        if rec is None or rec.user_id != user_id:
            return None
        return replace(rec)

    # --- Products ---

    def create_product(self, *, user_id: str, name: str, **fields: Any) -> ProductRecord:
        now = _utcnow()
        rec = ProductRecord(id=str(uuid.uuid4()), user_id=user_id, name=name, created_at=now, updated_at=now, **fields)
        with self._lock:
            self._products[rec.id] = rec
        return replace(rec)

    def get_product(self, product_id: str, *, user_id: str) -> ProductRecord | None:
        with self._lock:
            rec = self._products.get(str(product_id))
        if rec is None or rec.user_id != user_id or not rec.is_active:
            return None
        return replace(rec)

    def list_products(self, *, user_id: str) -> list[ProductRecord]:
        with self._lock:
            rows = [p for p in self._products.values() if p.user_id == user_id and p.is_active]
        rows.sort(key=lambda p: p.created_at, reverse=True)
        return [replace(p) for p in rows]

    def deactivate_product(self, product_id: str, *, user_id: str) -> bool:
        with self._lock:
            rec = self._products.get(str(product_id))
            if rec is None or rec.user_id != user_id or not rec.is_active:
                return False
            rec.is_active = False
            rec.updated_at = _utcnow()
            return True

    # --- Generation requests ---

    def _hydrate(self, rec: GenerationRecord) -> GenerationRecord:
        out = replace(rec)
        out.generated_images = [replace(i) for i in self._images.get(rec.id, [])]
        scene = self._scenes.get(rec.scene_image_id or "")
        product = self._products.get(rec.product_id or "")
        out.scene_image = replace(scene) if scene else None
        out.product = replace(product) if product else None
        return out

    def create_generation(self, *, user_id: str, enhanced_prompt: str, **fields: Any) -> GenerationRecord:
        now = _utcnow()
        rec = GenerationRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            enhanced_prompt=enhanced_prompt,
            status=GenerationStatus.PENDING,
            created_at=now,
            updated_at=now,
            **fields,
        )
        with self._lock:
            self._generations[rec.id] = rec
            return self._hydrate(rec)

    def get_generation(self, generation_id: str, *, user_id: str) -> GenerationRecord | None:
        with self._lock:
            rec = self._generations.get(str(generation_id))
            if rec is None or rec.user_id != user_id:
                return None
            return self._hydrate(rec)

    def update_generation(self, generation_id: str, **values: Any) -> GenerationRecord:
        with self._lock:
            rec = self._generations.get(str(generation_id))
            if rec is None:
                raise LookupError(f"generation {generation_id} not found")
            status = values.get("status")
            if status is not None:
                status = GenerationStatus(status)
                check_transition(rec.status, status)
                values["status"] = status
            retry = values.get("retry_count")
            if retry is not None and retry < rec.retry_count:
                raise ValueError("retry_count cannot decrease")
            for key, value in values.items():
                if not hasattr(rec, key):
                    raise AttributeError(key)
                setattr(rec, key, value)
            rec.updated_at = _utcnow()
            return self._hydrate(rec)

    def list_generations(
        self, *, user_id: str, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[list[GenerationRecord], int]:
        lmt = max(1, min(int(limit), 100))
        with self._lock:
            rows = [
                g
                for g in self._generations.values()
                if g.user_id == user_id and (not status or g.status.value == status)
            ]
            rows.sort(key=lambda g: g.created_at, reverse=True)
            start = max(0, int(offset))
            return [self._hydrate(g) for g in rows[start : start + lmt]], len(rows)

    def delete_generation(self, generation_id: str, *, user_id: str) -> bool:
        with self._lock:
            rec = self._generations.get(str(generation_id))
            if rec is None or rec.user_id != user_id:
                return False
            del self._generations[rec.id]
            self._images.pop(rec.id, None)
            self._events.pop(rec.id, None)
            return True

    def generation_stats(self, *, user_id: str) -> GenerationStats:
        with self._lock:
            rows = [g for g in self._generations.values() if g.user_id == user_id]
        durations = [
            (g.completed_at - g.created_at).total_seconds()
            for g in rows
            if g.status is GenerationStatus.COMPLETED and g.completed_at is not None
        ]
        return GenerationStats(
            total_generations=len(rows),
            completed_generations=sum(1 for g in rows if g.status is GenerationStatus.COMPLETED),
            failed_generations=sum(1 for g in rows if g.status is GenerationStatus.FAILED),
            pending_generations=sum(
                1 for g in rows if g.status in (GenerationStatus.PENDING, GenerationStatus.IN_PROGRESS)
            ),
            total_tokens_used=sum(g.total_tokens or 0 for g in rows),
            average_processing_time=(sum(durations) / len(durations)) if durations else None,
        )

    def add_generated_image(self, *, generation_request_id: str, **fields: Any) -> GeneratedImageRecord:
        rec = GeneratedImageRecord(
            id=str(uuid.uuid4()),
            generation_request_id=str(generation_request_id),
            generated_at=_utcnow(),
            **fields,
        )
        with self._lock:
            if rec.generation_request_id not in self._generations:
                raise LookupError(f"generation {generation_request_id} not found")
            self._images.setdefault(rec.generation_request_id, []).append(rec)
        return replace(rec)

    # --- Events ---

    def append_event(
        self, generation_id: str, code: str, *, level: str = "info", payload: dict[str, Any] | None = None
    ) -> None:
        evt = EventRecord(
            id=str(uuid.uuid4()),
            generation_id=str(generation_id),
            ts=_utcnow(),
            code=code,
            level=level,
            payload=dict(payload or {}),
        )
        with self._lock:
            self._events.setdefault(evt.generation_id, []).append(evt)

    def list_events(self, generation_id: str) -> list[EventRecord]:
        with self._lock:
            return [replace(e) for e in self._events.get(str(generation_id), [])]
