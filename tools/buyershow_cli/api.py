"""Thin JSON client for the ``/v1`` HTTP surface."""
from __future__ import annotations

from typing import Any

import httpx

USER_HEADER = "X-User-Id"


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"{code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class BuyerShowApi:
    """Wraps an ``httpx.Client`` (a FastAPI ``TestClient`` works too) bound to one user."""

    def __init__(self, http: httpx.Client, user_id: str) -> None:
        self.http = http
        self.user_id = user_id

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {USER_HEADER: self.user_id}
        try:
            resp = self.http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError(0, "NETWORK_ERROR", str(exc) or type(exc).__name__)
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = None
            if isinstance(detail, dict):
                raise ApiError(resp.status_code, str(detail.get("code", "UNKNOWN")), str(detail.get("message", "")), detail.get("details"))
            raise ApiError(resp.status_code, "HTTP_ERROR", resp.text[:200])
        return resp.json()

    # --- upload ---

    def upload_scene(self, *, file_data: str, file_name: str, mime_type: str, file_size: int) -> dict[str, Any]:
        body = {"fileData": file_data, "fileName": file_name, "mimeType": mime_type, "fileSize": file_size}
        return self._request("POST", "/v1/upload/scene", json=body)

    def upload_product(
        self, *, file_data: str, file_name: str, mime_type: str, file_size: int, name: str | None = None
    ) -> dict[str, Any]:
        body = {"fileData": file_data, "fileName": file_name, "mimeType": mime_type, "fileSize": file_size}
        if name:
            body["name"] = name
        return self._request("POST", "/v1/upload/product", json=body)

    # --- products ---

    def list_products(self) -> list[dict[str, Any]]:
        return self._request("GET", "/v1/products")

    def get_product(self, product_id: str) -> dict[str, Any]:
        return self._request("GET", f"/v1/products/{product_id}")

    # --- generation ---

    def generate_image(self, request: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/v1/generation/generate", json=request)

    def get_generation_status(self, generation_id: str) -> dict[str, Any]:
        return self._request("GET", f"/v1/generation/{generation_id}")

    def regenerate_image(self, generation_id: str, temperature: float | None = None) -> dict[str, Any]:
        body = {"temperature": temperature} if temperature is not None else None
        return self._request("POST", f"/v1/generation/{generation_id}/regenerate", json=body)
