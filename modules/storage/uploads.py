"""Image upload collaborator: validate, store bytes, hand back a descriptor."""
from __future__ import annotations

import base64
import binascii
import hashlib
import io
import logging
import mimetypes
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from modules.errors import ErrorCode, UploadError, ValidationFailed
from modules.storage import s3


logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")
MAX_FILE_SIZE = 10 * 1024 * 1024

_DATA_URL = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(;[\w=-]+)*;base64,", re.IGNORECASE)
_EXTENSIONS = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}


@dataclass(frozen=True)
class StoredFile:
    key: str
    filename: str
    original_name: str
    size: int
    mime_type: str
    url: str


def decode_file_data(file_data: str, *, field: str = "fileData") -> bytes:
    """Decode plain base64 or a ``data:<mime>;base64,`` URL."""
    raw = _DATA_URL.sub("", file_data.strip(), count=1)
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed(f"{field} is not valid base64", details={"field": field})


def sniff_mime_type(data: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        return None


def decode_inline_image(file_data: str, *, field: str, max_size: int = MAX_FILE_SIZE) -> tuple[bytes, str]:
    """Bytes and mime type of an image sent inline with a request.

    The mime type comes from the data URL prefix when there is one, otherwise from
    the image header.
    """
    m = _DATA_URL.match(file_data.strip())
    declared = m.group("mime") if m else None
    data = decode_file_data(file_data, field=field)
    mime_type = declared or sniff_mime_type(data) or "application/octet-stream"
    validate_upload(len(data), mime_type, max_size=max_size)
    return data, mime_type


def validate_upload(size: int, mime_type: str, *, max_size: int = MAX_FILE_SIZE) -> None:
    if size > max_size:
        raise UploadError(
            f"File size exceeds the {max_size // (1024 * 1024)}MB limit",
            code=ErrorCode.FILE_TOO_LARGE,
            details={"size": size, "max_size": max_size},
        )
    if mime_type not in ALLOWED_MIME_TYPES:
        raise UploadError(
            "Unsupported file type",
            code=ErrorCode.INVALID_FILE_TYPE,
            details={"mime_type": mime_type, "allowed": list(ALLOWED_MIME_TYPES)},
        )


def make_filename(kind: str, data: bytes, original_name: str, mime_type: str) -> str:
    ext = os.path.splitext(original_name)[1].lower() or _EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ""
    digest = hashlib.md5(data).hexdigest()[:8]
    return f"{kind}_{int(time.time() * 1000)}_{digest}{ext}"


class UploadService(Protocol):
    max_size: int

    def store(self, data: bytes, *, kind: str, original_name: str, mime_type: str) -> StoredFile: ...

    def read(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


class LocalUploadService:
    """Files under ``root/<kind>/``; URLs are ``<url_prefix>/<kind>/<filename>``."""

    def __init__(self, root: str | Path, *, url_prefix: str = "/uploads", max_size: int = MAX_FILE_SIZE) -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_size = max_size

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise UploadError("Invalid storage key", details={"key": key})
        return path

    def store(self, data: bytes, *, kind: str, original_name: str, mime_type: str) -> StoredFile:
        validate_upload(len(data), mime_type, max_size=self.max_size)
        filename = make_filename(kind, data, original_name, mime_type)
        key = f"{kind}/{filename}"
        try:
            path = self._path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            logger.error("local upload failed key=%s error=%s", key, exc)
            raise UploadError("Failed to store file", details={"original_error": str(exc)})
        logger.info("stored upload key=%s size=%d", key, len(data))
        return StoredFile(
            key=key,
            filename=filename,
            original_name=original_name,
            size=len(data),
            mime_type=mime_type,
            url=f"{self.url_prefix}/{key}",
        )

    def read(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as exc:
            raise UploadError("Failed to read stored file", details={"key": key, "original_error": str(exc)})

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except OSError as exc:
            raise UploadError("Failed to delete file", code=ErrorCode.DELETE_FAILED, details={"key": key, "original_error": str(exc)})


class S3UploadService:
    """Objects under ``uploads/<kind>/`` in the configured bucket, served through presigned URLs."""

    def __init__(self, cfg: s3.S3Config, *, prefix: str = "uploads", max_size: int = MAX_FILE_SIZE) -> None:
        self.cfg = cfg
        self.prefix = prefix.strip("/")
        self.max_size = max_size

    def store(self, data: bytes, *, kind: str, original_name: str, mime_type: str) -> StoredFile:
        validate_upload(len(data), mime_type, max_size=self.max_size)
        filename = make_filename(kind, data, original_name, mime_type)
        key = f"{self.prefix}/{kind}/{filename}"
        try:
            s3.upload_bytes(self.cfg, key, data, content_type=mime_type)
            url = s3.presign_get(self.cfg, key)
        except Exception as exc:  # noqa: BLE001
            logger.error("s3 upload failed key=%s error=%s", key, exc)
            raise UploadError("Failed to store file", details={"original_error": str(exc)})
        return StoredFile(
            key=key, filename=filename, original_name=original_name, size=len(data), mime_type=mime_type, url=url
        )

    def read(self, key: str) -> bytes:
        try:
            return s3.get_bytes(self.cfg, key)
        except Exception as exc:  # noqa: BLE001
            raise UploadError("Failed to read stored file", details={"key": key, "original_error": str(exc)})

    def delete(self, key: str) -> None:
        try:
            s3.delete_object(self.cfg, key)
        except Exception as exc:  # noqa: BLE001
            raise UploadError("Failed to delete file", code=ErrorCode.DELETE_FAILED, details={"key": key, "original_error": str(exc)})
