"""Generation request lifecycle.

``create_and_run`` checks ownership of the referenced scene image and product,
builds and validates the prompt, persists a PENDING request, moves it to
IN_PROGRESS, awaits the provider client and leaves the request COMPLETED or
FAILED. Nothing is persisted when a check fails; once a request exists it always
reaches a terminal status.
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from PIL import Image, UnidentifiedImageError

from modules.errors import ErrorCode, NotFound, ValidationFailed
from modules.generation.client import GenerationResult, ImageGenerator, InlineImage, ProviderError
from modules.generation.metrics import GENERATIONS
from modules.generation.prompts import PromptRequest, generate_prompt, optimize_for_gemini, validate_prompt
from modules.persistence.records import GenerationRecord, GenerationStatus, ProductRecord, SceneImageRecord
from modules.persistence.store import GenerationStore
from modules.storage.uploads import UploadService


logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 5
DEFAULT_TEMPERATURE = 0.7
_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp", "image/gif": "gif"}


@dataclass(frozen=True)
class GenerationParams:
    user_description: str
    product_description: str | None = None
    placement_description: str | None = None
    style_description: str | None = None
    scene_image_id: str | None = None
    product_id: str | None = None
    temperature: float | None = None
    # Images sent with the request; they take the place of the id lookups
    scene_image: InlineImage | None = None
    product_image: InlineImage | None = None


def read_dimensions(data: bytes) -> tuple[int | None, int | None]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError):
        return None, None


def generated_filename(mime_type: str) -> str:
    ext = _EXTENSIONS.get(mime_type, "png")
    return f"generated_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.{ext}"


class GenerationOrchestrator:
    def __init__(
        self,
        store: GenerationStore,
        uploads: UploadService,
        client: ImageGenerator,
        *,
        default_temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int | None = None,
    ) -> None:
        self.store = store
        self.uploads = uploads
        self.client = client
        self.default_temperature = default_temperature
        self.max_output_tokens = max_output_tokens

    def _check_params(self, params: GenerationParams) -> float:
        if len((params.user_description or "").strip()) < MIN_DESCRIPTION_LENGTH:
            raise ValidationFailed(
                f"userDescription must be at least {MIN_DESCRIPTION_LENGTH} characters",
                details={"field": "userDescription"},
            )
        temperature = self.default_temperature if params.temperature is None else float(params.temperature)
        if not 0.0 <= temperature <= 1.0:
            raise ValidationFailed("temperature must be between 0 and 1", details={"field": "temperature"})
        return temperature

    def _load_scene(self, user_id: str, scene_image_id: str | None) -> SceneImageRecord | None:
        if not scene_image_id:
            return None
        scene = self.store.get_scene_image(scene_image_id, user_id=user_id)
        if scene is None:
            raise NotFound("Scene image not found", details={"sceneImageId": scene_image_id})
        return scene

    def _load_product(self, user_id: str, product_id: str | None) -> ProductRecord | None:
        if not product_id:
            return None
        product = self.store.get_product(product_id, user_id=user_id)
        if product is None:
            raise NotFound("Product not found", details={"productId": product_id})
        return product

    def _keep_inline_scene(self, user_id: str, image: InlineImage) -> SceneImageRecord:
        stored = self.uploads.store(image.data, kind="scene", original_name="inline-scene", mime_type=image.mime_type)
        return self.store.create_scene_image(
            user_id=user_id,
            filename=stored.filename,
            original_name=stored.original_name,
            mime_type=stored.mime_type,
            size=stored.size,
            storage_key=stored.key,
            url=stored.url,
        )

    def _keep_inline_product(self, user_id: str, image: InlineImage, description: str | None) -> ProductRecord:
        stored = self.uploads.store(image.data, kind="product", original_name="inline-product", mime_type=image.mime_type)
        return self.store.create_product(
            user_id=user_id,
            name=(description or "Product")[:200],
            description=description,
            image_url=stored.url,
            image_key=stored.key,
            image_mime_type=stored.mime_type,
        )

    async def create_and_run(self, user_id: str, params: GenerationParams) -> GenerationRecord:
        temperature = self._check_params(params)
        scene = self._load_scene(user_id, params.scene_image_id)
        product = self._load_product(user_id, params.product_id)

        # Upload errors pass through untouched
        scene_image = params.scene_image
        if scene_image is None and scene is not None:
            scene_image = InlineImage(self.uploads.read(scene.storage_key), scene.mime_type)
        product_image = params.product_image
        if product_image is None and product is not None and product.image_key:
            product_image = InlineImage(
                self.uploads.read(product.image_key), product.image_mime_type or "image/jpeg"
            )

        product_description = params.product_description
        if not product_description and product is not None:
            product_description = product.description or product.name

        prompt = generate_prompt(
            PromptRequest(
                user_description=params.user_description,
                product_description=product_description,
                placement_description=params.placement_description,
                style_description=params.style_description,
                has_scene_image=scene_image is not None,
            )
        )
        enhanced = optimize_for_gemini(prompt.enhanced_prompt)
        if not validate_prompt(enhanced):
            raise ValidationFailed(
                "Generated prompt is invalid or contains inappropriate content",
                details={"length": len(enhanced)},
            )

        # Inline images become owned scene and product records
        if params.scene_image is not None:
            scene = self._keep_inline_scene(user_id, params.scene_image)
        if params.product_image is not None:
            product = self._keep_inline_product(user_id, params.product_image, product_description)

        record = self.store.create_generation(
            user_id=user_id,
            enhanced_prompt=enhanced,
            user_description=params.user_description,
            product_description=product_description,
            placement_description=params.placement_description,
            style_description=params.style_description,
            scene_image_id=scene.id if scene else None,
            product_id=product.id if product else None,
            ai_model=self.client.model,
            temperature=temperature,
        )
        self.store.append_event(
            record.id, "generation.created", payload={"style": prompt.style, "placement": prompt.placement}
        )
        logger.info(
            "generation created id=%s user=%s style=%s placement=%s", record.id, user_id, prompt.style, prompt.placement
        )
        return await self._run(record, scene_image=scene_image, product_image=product_image)

    async def _run(
        self,
        record: GenerationRecord,
        *,
        scene_image: InlineImage | None,
        product_image: InlineImage | None,
    ) -> GenerationRecord:
        record = self.store.update_generation(record.id, status=GenerationStatus.IN_PROGRESS)
        self.store.append_event(record.id, "generation.started")

        try:
            result = await self.client.generate(
                prompt=record.enhanced_prompt,
                scene_image=scene_image,
                product_image=product_image,
                temperature=record.temperature,
                max_output_tokens=self.max_output_tokens,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("provider client raised id=%s", record.id)
            result = GenerationResult(
                success=False,
                error=ProviderError(ErrorCode.GENERATION_FAILED, str(exc) or type(exc).__name__),
            )

        if result.success and result.image_data:
            try:
                return self._complete(record, result)
            except Exception as exc:  # noqa: BLE001
                logger.exception("failed to persist generated image id=%s", record.id)
                current = self.store.get_generation(record.id, user_id=record.user_id)
                if current is not None and current.is_terminal:
                    return current
                result = GenerationResult(
                    success=False,
                    error=ProviderError(ErrorCode.INTERNAL_ERROR, "Failed to save generated image", {"original_error": str(exc)}),
                    attempts=result.attempts,
                )
        return self._fail(record, result)

    def _complete(self, record: GenerationRecord, result: GenerationResult) -> GenerationRecord:
        assert result.image_data is not None
        mime_type = result.mime_type or "image/png"
        try:
            raw = base64.b64decode(result.image_data)
        except (binascii.Error, ValueError):
            raw = b""
        width, height = read_dimensions(raw) if raw else (None, None)
        self.store.add_generated_image(
            generation_request_id=record.id,
            filename=generated_filename(mime_type),
            original_prompt=record.user_description,
            enhanced_prompt=record.enhanced_prompt,
            image_data=result.image_data,
            mime_type=mime_type,
            size=len(raw) or None,
            width=width,
            height=height,
            ai_model=record.ai_model,
        )
        usage = result.usage
        done = self.store.update_generation(
            record.id,
            status=GenerationStatus.COMPLETED,
            prompt_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.output_tokens if usage else None,
            total_tokens=usage.total_tokens if usage else None,
            completed_at=datetime.now(timezone.utc),
        )
        self.store.append_event(
            record.id,
            "generation.completed",
            payload={"attempts": result.attempts, "total_tokens": done.total_tokens},
        )
        GENERATIONS.labels(status=GenerationStatus.COMPLETED.value).inc()
        logger.info("generation completed id=%s attempts=%d", record.id, result.attempts)
        return done

    def _fail(self, record: GenerationRecord, result: GenerationResult) -> GenerationRecord:
        error = result.error or ProviderError(ErrorCode.GENERATION_FAILED, "No image data in response")
        failed = self.store.update_generation(
            record.id,
            status=GenerationStatus.FAILED,
            error_code=error.code.value,
            error_message=error.message,
            retry_count=record.retry_count + 1,
        )
        self.store.append_event(
            record.id,
            "generation.failed",
            level="error",
            payload={"code": error.code.value, "message": error.message, "attempts": result.attempts},
        )
        GENERATIONS.labels(status=GenerationStatus.FAILED.value).inc()
        logger.warning("generation failed id=%s code=%s message=%s", record.id, error.code.value, error.message)
        return failed

    def get_status(self, user_id: str, generation_id: str) -> GenerationRecord:
        record = self.store.get_generation(generation_id, user_id=user_id)
        if record is None:
            raise NotFound("Generation request not found", details={"generationId": generation_id})
        return record

    async def regenerate(self, user_id: str, generation_id: str, temperature: float | None = None) -> GenerationRecord:
        """Start a new request from a previous one's descriptive fields."""
        original = self.get_status(user_id, generation_id)
        params = GenerationParams(
            user_description=original.user_description,
            product_description=original.product_description,
            placement_description=original.placement_description,
            style_description=original.style_description,
            scene_image_id=original.scene_image_id,
            product_id=original.product_id,
            temperature=original.temperature if temperature is None else temperature,
        )
        logger.info("regenerating from id=%s", generation_id)
        return await self.create_and_run(user_id, params)
