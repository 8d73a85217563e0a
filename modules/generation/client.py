"""Client for the multimodal image provider's ``generateContent`` endpoint.

One call to :meth:`GeminiImageClient.generate` is one externally visible generation.
It never raises: every failure comes back as a ``GenerationResult`` with
``success=False`` and a classified :class:`ProviderError`.

Delivery policy, as an explicit bounded loop:

* with a proxy configured, up to ``max_retries`` attempts go through the proxy with
  linear backoff (``attempt * retry_base_delay_s``), then exactly one attempt goes
  direct;
* without a proxy, up to ``max_retries`` direct attempts with the same backoff.

Each attempt is cut off after ``timeout_s``. Every HTTP or transport failure
consumes the budget, 400 and 401 answers included. A 200 answer that carries
no usable image ends the call without further attempts.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from modules.errors import ErrorCode
from modules.generation.metrics import PROVIDER_ATTEMPTS


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
# Fixed per-image output cost reported when the provider omits usage metadata
IMAGE_OUTPUT_TOKENS = 1290


@dataclass(frozen=True)
class InlineImage:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class GenerationUsage:
    prompt_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True)
class ProviderError:
    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    image_data: str | None = None  # base64
    mime_type: str | None = None
    usage: GenerationUsage | None = None
    error: ProviderError | None = None
    attempts: int = 0
    finish_reason: str | None = None


@dataclass(frozen=True)
class ClientConfig:
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    proxy_url: str | None = None
    max_retries: int = 3
    retry_base_delay_s: float = 1.0
    timeout_s: float = 60.0
    default_temperature: float = 0.7
    default_max_output_tokens: int = 2048


class ImageGenerator(Protocol):
    model: str

    async def generate(
        self,
        *,
        prompt: str,
        scene_image: InlineImage | None = None,
        product_image: InlineImage | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> GenerationResult:
        ...


# --- provider wire shapes ---


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InlineData(_Wire):
    mime_type: str = Field(alias="mimeType")
    data: str


class Part(_Wire):
    text: str | None = None
    inline_data: InlineData | None = Field(default=None, alias="inlineData")


class Content(_Wire):
    parts: list[Part] = Field(default_factory=list)


class Candidate(_Wire):
    content: Content | None = None
    finish_reason: str | None = Field(default=None, alias="finishReason")
    index: int | None = None


class UsageMetadata(_Wire):
    prompt_token_count: int | None = Field(default=None, alias="promptTokenCount")
    candidates_token_count: int | None = Field(default=None, alias="candidatesTokenCount")
    total_token_count: int | None = Field(default=None, alias="totalTokenCount")


class ProviderResponse(_Wire):
    candidates: list[Candidate] = Field(default_factory=list)
    usage_metadata: UsageMetadata | None = Field(default=None, alias="usageMetadata")


class _AttemptFailed(Exception):
    def __init__(self, error: ProviderError, *, retryable: bool = True) -> None:
        super().__init__(error.message)
        self.error = error
        self.retryable = retryable


def classify_status(status: int, body: str | None = None) -> ProviderError:
    details: dict[str, Any] = {"status": status}
    if body:
        details["original_error"] = body[:500]
    if status == 401:
        return ProviderError(ErrorCode.INVALID_API_KEY, "Invalid or missing API key", details)
    if status == 429:
        return ProviderError(ErrorCode.RATE_LIMIT_EXCEEDED, "API rate limit exceeded", details)
    if status == 400:
        return ProviderError(ErrorCode.INVALID_REQUEST, "Invalid request format or content", details)
    if status >= 500:
        return ProviderError(ErrorCode.API_ERROR, "API server error", details)
    return ProviderError(ErrorCode.GENERATION_FAILED, "Failed to generate image", details)


ClientFactory = Callable[[str | None], httpx.AsyncClient]


class GeminiImageClient:
    def __init__(
        self,
        config: ClientConfig,
        *,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.model = config.model
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/v1beta/models/{self.config.model}:generateContent"

    def _default_client(self, proxy: str | None) -> httpx.AsyncClient:
        # trust_env off so the direct route never picks up an ambient proxy
        return httpx.AsyncClient(proxy=proxy, timeout=httpx.Timeout(self.config.timeout_s), trust_env=False)

    def attempt_plan(self) -> list[tuple[str | None, int]]:
        """Ordered (proxy, attempt_number) pairs one call may use."""
        n = max(1, int(self.config.max_retries))
        proxy = self.config.proxy_url or None
        plan: list[tuple[str | None, int]] = [(proxy, i) for i in range(1, n + 1)]
        if proxy:
            plan.append((None, 1))
        return plan

    def build_payload(
        self,
        prompt: str,
        *,
        scene_image: InlineImage | None = None,
        product_image: InlineImage | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"text": prompt}]
        for img in (scene_image, product_image):
            if img is None:
                continue
            parts.append(
                {"inlineData": {"mimeType": img.mime_type, "data": base64.b64encode(img.data).decode("ascii")}}
            )
        temp = self.config.default_temperature if temperature is None else float(temperature)
        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": min(1.0, max(0.0, temp)),
                "maxOutputTokens": int(max_output_tokens or self.config.default_max_output_tokens),
            },
        }

    async def generate(
        self,
        *,
        prompt: str,
        scene_image: InlineImage | None = None,
        product_image: InlineImage | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> GenerationResult:
        payload = self.build_payload(
            prompt,
            scene_image=scene_image,
            product_image=product_image,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        logger.info(
            "provider request model=%s prompt_length=%d scene=%s product=%s",
            self.config.model,
            len(prompt),
            scene_image is not None,
            product_image is not None,
        )

        plan = self.attempt_plan()
        last: ProviderError | None = None
        for idx, (proxy, attempt) in enumerate(plan, start=1):
            route = "proxy" if proxy else "direct"
            try:
                result = await self._attempt(payload, proxy)
            except _AttemptFailed as exc:
                last = exc.error
                PROVIDER_ATTEMPTS.labels(route=route, outcome="error").inc()
                logger.warning(
                    "provider attempt failed attempt=%d/%d route=%s code=%s message=%s details=%s",
                    idx,
                    len(plan),
                    route,
                    exc.error.code.value,
                    exc.error.message,
                    exc.error.details,
                )
                if not exc.retryable:
                    return GenerationResult(success=False, error=last, attempts=idx)
                if idx < len(plan) and plan[idx][0] == proxy:
                    await self._sleep(attempt * self.config.retry_base_delay_s)
                continue
            PROVIDER_ATTEMPTS.labels(route=route, outcome="ok").inc()
            logger.info(
                "provider image generated attempt=%d route=%s mime=%s finish=%s",
                idx,
                route,
                result.mime_type,
                result.finish_reason,
            )
            return GenerationResult(
                success=True,
                image_data=result.image_data,
                mime_type=result.mime_type,
                usage=result.usage,
                attempts=idx,
                finish_reason=result.finish_reason,
            )

        assert last is not None
        return GenerationResult(success=False, error=last, attempts=len(plan))

    async def _attempt(self, payload: dict[str, Any], proxy: str | None) -> GenerationResult:
        try:
            body = await asyncio.wait_for(self._post(payload, proxy), timeout=self.config.timeout_s)
        except asyncio.TimeoutError:
            raise _AttemptFailed(
                ProviderError(ErrorCode.API_ERROR, "Image provider timed out", {"timeout_s": self.config.timeout_s})
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise _AttemptFailed(classify_status(status, exc.response.text))
        except httpx.HTTPError as exc:
            raise _AttemptFailed(
                ProviderError(ErrorCode.API_ERROR, "Image provider unreachable", {"original_error": str(exc) or type(exc).__name__})
            )
        except ValueError as exc:
            raise _AttemptFailed(
                ProviderError(ErrorCode.GENERATION_FAILED, "Provider returned malformed JSON", {"original_error": str(exc)}),
                retryable=False,
            )
        return self.parse_response(body)

    async def _post(self, payload: dict[str, Any], proxy: str | None) -> Any:
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.config.api_key}
        async with self._client_factory(proxy) as client:
            resp = await client.post(self.endpoint, json=payload, headers=headers)
            resp.raise_for_status()
            return resp.json()

    def parse_response(self, body: Any) -> GenerationResult:
        try:
            parsed = ProviderResponse.model_validate(body)
        except ValidationError as exc:
            raise _AttemptFailed(
                ProviderError(ErrorCode.GENERATION_FAILED, "Unexpected response shape from provider", {"errors": exc.error_count()}),
                retryable=False,
            )
        if not parsed.candidates or parsed.candidates[0].content is None or not parsed.candidates[0].content.parts:
            raise _AttemptFailed(ProviderError(ErrorCode.GENERATION_FAILED, "No content generated from API"), retryable=False)

        candidate = parsed.candidates[0]
        image = next(
            (
                p.inline_data
                for p in candidate.content.parts  # type: ignore[union-attr]
                if p.inline_data is not None and p.inline_data.mime_type.startswith("image/")
            ),
            None,
        )
        if image is None:
            raise _AttemptFailed(
                ProviderError(
                    ErrorCode.GENERATION_FAILED,
                    "No image data found in response",
                    {"finish_reason": candidate.finish_reason},
                ),
                retryable=False,
            )

        meta = parsed.usage_metadata
        if meta is not None:
            usage = GenerationUsage(
                prompt_tokens=meta.prompt_token_count,
                output_tokens=meta.candidates_token_count,
                total_tokens=meta.total_token_count,
            )
        else:
            usage = GenerationUsage(output_tokens=IMAGE_OUTPUT_TOKENS, total_tokens=IMAGE_OUTPUT_TOKENS)
        return GenerationResult(
            success=True,
            image_data=image.data,
            mime_type=image.mime_type,
            usage=usage,
            finish_reason=candidate.finish_reason,
        )
