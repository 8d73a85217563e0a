from __future__ import annotations

import uuid as _uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, cast, delete, func, select
from sqlalchemy.orm import Session, selectinload

from .models import Event, GeneratedImage, GenerationRequest, Product, SceneImage
from .records import GenerationStatus, check_transition

UTC = timezone.utc


def _utcnow() -> datetime:
    return datetime.now(UTC)


# --- Scene images ---

def create_scene_image(
    session: Session,
    *,
    user_id: str,
    filename: str,
    original_name: str,
    mime_type: str,
    size: int,
    storage_key: str,
    url: str,
) -> SceneImage:
    row = SceneImage(
        id=_uuid.uuid4(),
        user_id=user_id,
        filename=filename,
        original_name=original_name,
        mime_type=mime_type,
        size=size,
        storage_key=storage_key,
        url=url,
        created_at=_utcnow(),
    )
    session.add(row)
    session.flush()
    return row


def get_scene_image(session: Session, image_id: str | _uuid.UUID, *, user_id: str) -> SceneImage | None:
    return session.scalars(
        select(SceneImage).where(cast(SceneImage.id, String) == str(image_id), SceneImage.user_id == user_id)
    ).first()


# --- Products ---

def create_product(session: Session, *, user_id: str, name: str, **fields: Any) -> Product:
    now = _utcnow()
    fields.setdefault("is_active", True)
    fields.setdefault("currency", "CNY")
    row = Product(id=_uuid.uuid4(), user_id=user_id, name=name, created_at=now, updated_at=now, **fields)
    session.add(row)
    session.flush()
    return row


def get_product(
    session: Session, product_id: str | _uuid.UUID, *, user_id: str, active_only: bool = True
) -> Product | None:
    stmt = select(Product).where(cast(Product.id, String) == str(product_id), Product.user_id == user_id)
    if active_only:
        stmt = stmt.where(Product.is_active.is_(True))
    return session.scalars(stmt).first()


def list_products(session: Session, *, user_id: str) -> list[Product]:
    stmt = (
        select(Product)
        .where(Product.user_id == user_id, Product.is_active.is_(True))
        .order_by(Product.created_at.desc())
    )
    return list(session.scalars(stmt).all())


def deactivate_product(session: Session, product_id: str | _uuid.UUID, *, user_id: str) -> bool:
    row = get_product(session, product_id, user_id=user_id)
    if row is None:
        return False
    row.is_active = False
    row.updated_at = _utcnow()
    session.flush()
    return True


# --- Generation requests ---

def create_generation(session: Session, *, user_id: str, enhanced_prompt: str, **fields: Any) -> GenerationRequest:
    now = _utcnow()
    for key in ("scene_image_id", "product_id"):
        if fields.get(key):
            fields[key] = _uuid.UUID(str(fields[key]))
    row = GenerationRequest(
        id=_uuid.uuid4(),
        user_id=user_id,
        enhanced_prompt=enhanced_prompt,
        status=GenerationStatus.PENDING.value,
        retry_count=0,
        created_at=now,
        updated_at=now,
        **fields,
    )
    session.add(row)
    session.flush()
    return row


def get_generation(
    session: Session, generation_id: str | _uuid.UUID, *, user_id: str | None = None
) -> GenerationRequest | None:
    # Avoid dialect-dependent UUID casting by comparing as text
    stmt = (
        select(GenerationRequest)
        .where(cast(GenerationRequest.id, String) == str(generation_id))
        .options(
            selectinload(GenerationRequest.generated_images),
            selectinload(GenerationRequest.scene_image),
            selectinload(GenerationRequest.product),
        )
    )
    if user_id is not None:
        stmt = stmt.where(GenerationRequest.user_id == user_id)
    return session.scalars(stmt).first()


def update_generation(session: Session, generation_id: str | _uuid.UUID, **values: Any) -> GenerationRequest:
    row = get_generation(session, generation_id)
    if row is None:
        raise LookupError(f"generation {generation_id} not found")
    status = values.get("status")
    if status is not None:
        status = GenerationStatus(status)
        check_transition(GenerationStatus(row.status), status)
        values["status"] = status.value
    retry = values.get("retry_count")
    if retry is not None and retry < row.retry_count:
        raise ValueError("retry_count cannot decrease")
    for key, value in values.items():
        setattr(row, key, value)
    row.updated_at = _utcnow()
    session.flush()
    return row


def list_generations(
    session: Session,
    *,
    user_id: str,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[GenerationRequest], int]:
    """Newest-first page of a user's requests plus the unpaged total.

    Caps limit to 100 to avoid accidental large scans.
    """
    lmt = max(1, min(int(limit), 100))
    where = [GenerationRequest.user_id == user_id]
    if status:
        where.append(GenerationRequest.status == status)
    total = session.scalar(select(func.count()).select_from(GenerationRequest).where(*where)) or 0
    stmt = (
        select(GenerationRequest)
        .where(*where)
        .options(
            selectinload(GenerationRequest.generated_images),
            selectinload(GenerationRequest.scene_image),
            selectinload(GenerationRequest.product),
        )
        .order_by(GenerationRequest.created_at.desc())
        .offset(max(0, int(offset)))
        .limit(lmt)
    )
    return list(session.scalars(stmt).all()), int(total)


def delete_generation(session: Session, generation_id: str | _uuid.UUID, *, user_id: str) -> bool:
    row = get_generation(session, generation_id, user_id=user_id)
    if row is None:
        return False
    session.execute(delete(Event).where(cast(Event.generation_id, String) == str(row.id)))
    session.delete(row)
    session.flush()
    return True


def generation_stats(session: Session, *, user_id: str) -> dict[str, Any]:
    rows = session.execute(
        select(GenerationRequest.status, func.count())
        .where(GenerationRequest.user_id == user_id)
        .group_by(GenerationRequest.status)
    ).all()
    by_status = {status: int(n) for status, n in rows}
    tokens = session.scalar(
        select(func.coalesce(func.sum(GenerationRequest.total_tokens), 0)).where(GenerationRequest.user_id == user_id)
    )
    completed = session.execute(
        select(GenerationRequest.created_at, GenerationRequest.completed_at).where(
            GenerationRequest.user_id == user_id,
            GenerationRequest.status == GenerationStatus.COMPLETED.value,
            GenerationRequest.completed_at.is_not(None),
        )
    ).all()
    durations = [(done - created).total_seconds() for created, done in completed]
    return {
        "total_generations": sum(by_status.values()),
        "completed_generations": by_status.get("COMPLETED", 0),
        "failed_generations": by_status.get("FAILED", 0),
        "pending_generations": by_status.get("PENDING", 0) + by_status.get("IN_PROGRESS", 0),
        "total_tokens_used": int(tokens or 0),
        "average_processing_time": (sum(durations) / len(durations)) if durations else None,
    }


def insert_generated_image(
    session: Session,
    *,
    generation_request_id: str | _uuid.UUID,
    filename: str,
    original_prompt: str,
    enhanced_prompt: str,
    image_data: str,
    mime_type: str,
    size: int | None = None,
    width: int | None = None,
    height: int | None = None,
    ai_model: str | None = None,
) -> GeneratedImage:
    img = GeneratedImage(
        id=_uuid.uuid4(),
        generation_request_id=_uuid.UUID(str(generation_request_id)),
        filename=filename,
        original_prompt=original_prompt,
        enhanced_prompt=enhanced_prompt,
        image_data=image_data,
        mime_type=mime_type,
        size=size,
        width=width,
        height=height,
        ai_model=ai_model,
        generated_at=_utcnow(),
    )
    session.add(img)
    session.flush()
    return img


# --- Events ---

def append_event(
    session: Session,
    *,
    generation_id: str | _uuid.UUID,
    code: str,
    level: str = "info",
    payload: dict[str, Any] | None = None,
) -> Event:
    evt = Event(
        id=_uuid.uuid4(),
        generation_id=_uuid.UUID(str(generation_id)),
        ts=_utcnow(),
        code=code,
        level=level,
        payload_json=payload or {},
    )
    session.add(evt)
    session.flush()
    return evt


def iter_events(session: Session, generation_id: str | _uuid.UUID) -> list[Event]:
    stmt = (
        select(Event)
        .where(cast(Event.generation_id, String) == str(generation_id))
        .order_by(Event.ts.asc())
    )
    return list(session.scalars(stmt).all())
