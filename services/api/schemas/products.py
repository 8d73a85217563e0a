from __future__ import annotations

from datetime import datetime

from pydantic import Field

from modules.persistence.records import ProductRecord

from .common import CamelModel


class ProductCreateRequest(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    category: str | None = Field(default=None, max_length=100)
    image_url: str | None = None
    price: float | None = Field(default=None, ge=0)
    currency: str = Field(default="CNY", min_length=3, max_length=3)


class ProductOut(CamelModel):
    id: str
    name: str
    description: str | None = None
    category: str | None = None
    image_url: str | None = None
    price: float | None = None
    currency: str = "CNY"
    is_active: bool = True
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, rec: ProductRecord) -> "ProductOut":
        return cls(
            id=rec.id,
            name=rec.name,
            description=rec.description,
            category=rec.category,
            image_url=rec.image_url,
            price=rec.price,
            currency=rec.currency,
            is_active=rec.is_active,
            created_at=rec.created_at,
        )
