from __future__ import annotations

from pydantic import Field

from .common import CamelModel


class UploadRequest(CamelModel):
    file_data: str = Field(min_length=1, description="Base64 data or a data: URL")
    file_name: str = Field(min_length=1, max_length=255)
    mime_type: str
    file_size: int = Field(ge=0)


class ProductUploadRequest(UploadRequest):
    name: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    category: str | None = Field(default=None, max_length=100)


class UploadDescriptor(CamelModel):
    id: str
    filename: str
    original_name: str
    size: int
    mime_type: str
    url: str
