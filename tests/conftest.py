from __future__ import annotations

import base64
import io
from typing import Any

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from modules.generation.client import GenerationResult, GenerationUsage, InlineImage, ProviderError
from modules.errors import ErrorCode
from modules.persistence.memory import InMemoryGenerationStore
from modules.storage.uploads import LocalUploadService
from services.api.app import create_app
from services.api.config import Settings
from services.api.deps import build_container


def make_png(width: int = 8, height: int = 6, color: str = "red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeImageGenerator:
    """Stands in for the provider client; replays queued results and records calls."""

    model = "fake-image-model"

    def __init__(self, *results: GenerationResult | Exception) -> None:
        self.results: list[GenerationResult | Exception] = list(results)
        self.calls: list[dict[str, Any]] = []

    @staticmethod
    def ok(width: int = 16, height: int = 12) -> GenerationResult:
        return GenerationResult(
            success=True,
            image_data=base64.b64encode(make_png(width, height)).decode("ascii"),
            mime_type="image/png",
            usage=GenerationUsage(prompt_tokens=100, output_tokens=1290, total_tokens=1390),
            attempts=1,
        )

    @staticmethod
    def failed(code: ErrorCode = ErrorCode.API_ERROR, message: str = "API server error") -> GenerationResult:
        return GenerationResult(success=False, error=ProviderError(code, message), attempts=4)

    async def generate(
        self,
        *,
        prompt: str,
        scene_image: InlineImage | None = None,
        product_image: InlineImage | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> GenerationResult:
        self.calls.append(
            {
                "prompt": prompt,
                "scene_image": scene_image,
                "product_image": product_image,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            }
        )
        nxt = self.results.pop(0) if self.results else self.ok()
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


@pytest.fixture()
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture()
def store() -> InMemoryGenerationStore:
    return InMemoryGenerationStore()


@pytest.fixture()
def uploads(tmp_path) -> LocalUploadService:
    return LocalUploadService(tmp_path / "uploads")


@pytest.fixture()
def fake_generator() -> FakeImageGenerator:
    return FakeImageGenerator()


@pytest.fixture()
def settings() -> Settings:
    return Settings(env="test", store_backend="memory", log_level="WARNING")


@pytest.fixture()
def app(settings, store, uploads, fake_generator):
    container = build_container(settings, store=store, uploads=uploads, client=fake_generator)
    return create_app(settings, container=container)


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def auth() -> dict[str, str]:
    return {"X-User-Id": "user-a"}
