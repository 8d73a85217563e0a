from __future__ import annotations

import uuid as _uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.types import CHAR, TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _uuid_pk() -> _uuid.UUID:  # pragma: no cover
    return _uuid.uuid4()


class GUID(TypeDecorator):
    """Platform-independent GUID/UUID type.

    Uses PostgreSQL's UUID type, otherwise stores as CHAR(36).
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))  # type: ignore[attr-defined]
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is None:
            return value
        return _uuid.UUID(str(value))


_STATUS_CHECK = "status in ('PENDING','IN_PROGRESS','COMPLETED','FAILED','CANCELLED')"


class SceneImage(Base):
    __tablename__ = "scene_images"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    filename: Mapped[str] = mapped_column(String, nullable=False)
    original_name: Mapped[str] = mapped_column(String, nullable=False)
    mime_type: Mapped[str] = mapped_column(String, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("scene_images_user_idx", "user_id"),)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(String)
    image_url: Mapped[str | None] = mapped_column(Text)
    image_key: Mapped[str | None] = mapped_column(Text)
    image_mime_type: Mapped[str | None] = mapped_column(String)
    price: Mapped[float | None] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String, nullable=False, default="CNY")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (Index("products_user_active_idx", "user_id", "is_active"),)


class GenerationRequest(Base):
    __tablename__ = "generation_requests"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    user_description: Mapped[str] = mapped_column(Text, nullable=False)
    product_description: Mapped[str | None] = mapped_column(Text)
    placement_description: Mapped[str | None] = mapped_column(Text)
    style_description: Mapped[str | None] = mapped_column(Text)
    enhanced_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    scene_image_id: Mapped[_uuid.UUID | None] = mapped_column(GUID(), ForeignKey("scene_images.id", ondelete="SET NULL"))
    product_id: Mapped[_uuid.UUID | None] = mapped_column(GUID(), ForeignKey("products.id", ondelete="SET NULL"))
    ai_model: Mapped[str] = mapped_column(String, nullable=False)
    temperature: Mapped[float] = mapped_column(Float, nullable=False, default=0.7)
    prompt_tokens: Mapped[int | None] = mapped_column(Integer)
    output_tokens: Mapped[int | None] = mapped_column(Integer)
    total_tokens: Mapped[int | None] = mapped_column(Integer)
    error_code: Mapped[str | None] = mapped_column(String)
    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    scene_image: Mapped[SceneImage | None] = relationship("SceneImage")
    product: Mapped[Product | None] = relationship("Product")
    generated_images: Mapped[list["GeneratedImage"]] = relationship(
        "GeneratedImage", back_populates="generation_request", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="generation_requests_status_check"),
        CheckConstraint("temperature >= 0 AND temperature <= 1", name="generation_requests_temperature_check"),
        CheckConstraint("retry_count >= 0", name="generation_requests_retry_check"),
        Index("generation_requests_user_created_idx", "user_id", "created_at"),
        Index("generation_requests_status_idx", "status"),
    )


class GeneratedImage(Base):
    __tablename__ = "generated_images"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    generation_request_id: Mapped[_uuid.UUID] = mapped_column(
        GUID(), ForeignKey("generation_requests.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String, nullable=False)
    original_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    enhanced_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    image_data: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(String, nullable=False)
    size: Mapped[int | None] = mapped_column(Integer)
    width: Mapped[int | None] = mapped_column(Integer)
    height: Mapped[int | None] = mapped_column(Integer)
    ai_model: Mapped[str | None] = mapped_column(String)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    generation_request: Mapped[GenerationRequest] = relationship("GenerationRequest", back_populates="generated_images")

    __table_args__ = (Index("generated_images_request_idx", "generation_request_id"),)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    generation_id: Mapped[_uuid.UUID] = mapped_column(
        GUID(), ForeignKey("generation_requests.id", ondelete="CASCADE"), nullable=False
    )
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False)
    level: Mapped[str] = mapped_column(String, nullable=False, default="info")
    payload_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("level in ('debug','info','warn','error')", name="events_level_check"),
        Index("events_generation_ts_idx", "generation_id", "ts"),
    )
