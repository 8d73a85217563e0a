import asyncio
import base64
import json
from typing import Any, Callable

import httpx
import pytest

from modules.errors import ErrorCode
from modules.generation.client import (
    IMAGE_OUTPUT_TOKENS,
    ClientConfig,
    GeminiImageClient,
    InlineImage,
    classify_status,
)


IMAGE_B64 = base64.b64encode(b"\x89PNG fake").decode("ascii")


def _image_body(usage: dict[str, int] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": "here you go"},
                        {"inlineData": {"mimeType": "image/png", "data": IMAGE_B64}},
                    ]
                },
                "finishReason": "STOP",
            }
        ]
    }
    if usage is not None:
        body["usageMetadata"] = usage
    return body


class Harness:
    def __init__(self, handler: Callable[[httpx.Request], httpx.Response], **cfg: Any) -> None:
        self.handler = handler
        self.proxies: list[str | None] = []
        self.requests: list[httpx.Request] = []
        self.sleeps: list[float] = []
        config = ClientConfig(api_key="test-key", base_url="https://provider.test", **cfg)
        self.client = GeminiImageClient(config, client_factory=self._factory, sleep=self._sleep)

    def _factory(self, proxy: str | None) -> httpx.AsyncClient:
        self.proxies.append(proxy)

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(record))

    async def _sleep(self, delay: float) -> None:
        self.sleeps.append(delay)


@pytest.mark.asyncio
async def test_success_sends_contract_payload_and_parses_usage() -> None:
    h = Harness(lambda r: httpx.Response(200, json=_image_body({"promptTokenCount": 12, "candidatesTokenCount": 1290, "totalTokenCount": 1302})))
    res = await h.client.generate(
        prompt="Create a cozy scene",
        scene_image=InlineImage(b"scene", "image/jpeg"),
        product_image=InlineImage(b"product", "image/png"),
        temperature=0.4,
    )
    assert res.success is True
    assert res.attempts == 1
    assert res.image_data == IMAGE_B64
    assert res.mime_type == "image/png"
    assert res.finish_reason == "STOP"
    assert res.usage is not None and res.usage.total_tokens == 1302 and res.usage.prompt_tokens == 12

    req = h.requests[0]
    assert str(req.url) == "https://provider.test/v1beta/models/gemini-2.5-flash-image-preview:generateContent"
    assert req.headers["x-goog-api-key"] == "test-key"
    body = json.loads(req.content)
    parts = body["contents"][0]["parts"]
    assert parts[0] == {"text": "Create a cozy scene"}
    assert parts[1]["inlineData"] == {"mimeType": "image/jpeg", "data": base64.b64encode(b"scene").decode()}
    assert parts[2]["inlineData"]["mimeType"] == "image/png"
    assert body["generationConfig"] == {"temperature": 0.4, "maxOutputTokens": 2048}


@pytest.mark.asyncio
async def test_missing_usage_metadata_falls_back_to_per_image_tokens() -> None:
    h = Harness(lambda r: httpx.Response(200, json=_image_body()))
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.usage is not None
    assert res.usage.output_tokens == IMAGE_OUTPUT_TOKENS
    assert res.usage.total_tokens == IMAGE_OUTPUT_TOKENS


@pytest.mark.asyncio
async def test_proxy_failures_fall_back_to_one_direct_attempt() -> None:
    h = Harness(lambda r: httpx.Response(500, text="upstream down"), proxy_url="http://proxy.test:8080")
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.success is False
    assert res.attempts == 4
    assert h.proxies == ["http://proxy.test:8080"] * 3 + [None]
    assert res.error is not None and res.error.code is ErrorCode.API_ERROR
    # Linear backoff between proxied attempts only
    assert h.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_direct_fallback_can_succeed() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] <= 3:
            return httpx.Response(502)
        return httpx.Response(200, json=_image_body())

    h = Harness(handler, proxy_url="http://proxy.test:8080")
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.success is True
    assert res.attempts == 4
    assert h.proxies[-1] is None


@pytest.mark.asyncio
async def test_without_proxy_attempts_are_bounded_by_max_retries() -> None:
    h = Harness(lambda r: httpx.Response(503), max_retries=3)
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.attempts == 3
    assert h.proxies == [None, None, None]
    assert h.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_invalid_api_key_still_uses_the_whole_budget() -> None:
    h = Harness(lambda r: httpx.Response(401, text="bad key"), proxy_url="http://proxy.test:8080")
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.success is False
    assert res.attempts == 4
    assert h.proxies == ["http://proxy.test:8080"] * 3 + [None]
    assert res.error is not None and res.error.code is ErrorCode.INVALID_API_KEY
    assert h.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_bad_request_from_proxy_falls_back_to_direct() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if len(h.proxies) <= 3:
            return httpx.Response(400, text="proxy rejected request")
        return httpx.Response(200, json=_image_body())

    h = Harness(handler, proxy_url="http://proxy.test:8080")
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.success is True
    assert res.attempts == 4
    assert h.proxies[-1] is None


@pytest.mark.asyncio
async def test_rate_limit_is_retried() -> None:
    responses = [httpx.Response(429), httpx.Response(200, json=_image_body())]
    h = Harness(lambda r: responses.pop(0))
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.success is True
    assert res.attempts == 2


@pytest.mark.asyncio
async def test_response_without_image_is_generation_failed() -> None:
    text_only = {"candidates": [{"content": {"parts": [{"text": "sorry"}]}, "finishReason": "SAFETY"}]}
    h = Harness(lambda r: httpx.Response(200, json=text_only), proxy_url="http://proxy.test:8080")
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.success is False
    # The provider ran the generation; it is not repeated
    assert res.attempts == 1
    assert h.proxies == ["http://proxy.test:8080"]
    assert h.sleeps == []
    assert res.error is not None
    assert res.error.code is ErrorCode.GENERATION_FAILED
    assert res.error.message == "No image data found in response"


@pytest.mark.asyncio
async def test_transport_errors_are_classified_and_retried() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("connect timed out", request=request)

    h = Harness(handler, max_retries=2)
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.success is False
    assert res.attempts == 2
    assert res.error is not None and res.error.code is ErrorCode.API_ERROR


@pytest.mark.asyncio
async def test_slow_attempts_are_cut_off_by_the_per_attempt_timeout() -> None:
    async def stall(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json=_image_body())

    h = Harness(stall, proxy_url="http://proxy.test:8080", timeout_s=0.05)
    res = await h.client.generate(prompt="Create a cozy scene")
    assert res.success is False
    assert res.attempts == 4
    assert h.proxies == ["http://proxy.test:8080"] * 3 + [None]
    assert res.error is not None
    assert res.error.code is ErrorCode.API_ERROR
    assert res.error.message == "Image provider timed out"


def test_attempt_plan_shapes() -> None:
    plain = GeminiImageClient(ClientConfig(api_key="k", max_retries=3))
    assert plain.attempt_plan() == [(None, 1), (None, 2), (None, 3)]
    proxied = GeminiImageClient(ClientConfig(api_key="k", max_retries=2, proxy_url="http://p:1"))
    assert proxied.attempt_plan() == [("http://p:1", 1), ("http://p:1", 2), (None, 1)]


def test_temperature_is_clamped_in_payload() -> None:
    c = GeminiImageClient(ClientConfig(api_key="k"))
    assert c.build_payload("p", temperature=3.0)["generationConfig"]["temperature"] == 1.0
    assert c.build_payload("p")["generationConfig"]["temperature"] == 0.7


@pytest.mark.parametrize(
    "status,code",
    [
        (401, ErrorCode.INVALID_API_KEY),
        (429, ErrorCode.RATE_LIMIT_EXCEEDED),
        (400, ErrorCode.INVALID_REQUEST),
        (500, ErrorCode.API_ERROR),
        (503, ErrorCode.API_ERROR),
        (404, ErrorCode.GENERATION_FAILED),
    ],
)
def test_classify_status(status: int, code: ErrorCode) -> None:
    assert classify_status(status).code is code
