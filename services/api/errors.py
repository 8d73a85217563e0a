from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from modules.errors import AppError, ErrorCode


logger = logging.getLogger(__name__)

STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.INVALID_FILE_TYPE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.FILE_TOO_LARGE: 413,
    ErrorCode.UPLOAD_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.DELETE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    return str(value)


def sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Field errors without the submitted values (they may hold whole base64 images)."""
    out: list[dict[str, Any]] = []
    for err in errors:
        scrubbed = {k: v for k, v in err.items() if k not in ("input", "url")}
        if isinstance(scrubbed.get("ctx"), dict):
            ctx = dict(scrubbed["ctx"])
            ctx.pop("input", None)
            scrubbed["ctx"] = ctx
        out.append(_json_safe(scrubbed))
    return out


def _error_response(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    detail: dict[str, Any] = {"code": code, "message": message}
    if details:
        detail["details"] = details
    return JSONResponse(status_code=status_code, content={"detail": detail})


def install_error_handlers(app: FastAPI, *, production: bool = False) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError) -> JSONResponse:
        status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code >= 500:
            logger.error("%s %s failed code=%s message=%s", request.method, request.url.path, exc.code.value, exc.message)
        payload = exc.to_dict()
        if status_code >= 500 and production:
            return _error_response(status_code, exc.code.value, "Internal server error")
        return _error_response(status_code, payload["code"], payload["message"], payload.get("details"))

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = sanitize_validation_errors(list(exc.errors()))
        logger.info("%s %s rejected: %d validation error(s)", request.method, request.url.path, len(errors))
        return _error_response(
            422,
            ErrorCode.VALIDATION_ERROR.value,
            "Request validation failed",
            {"errors": errors},
        )

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict) and "code" in exc.detail:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
        code = ErrorCode.NOT_FOUND.value if exc.status_code == 404 else ErrorCode.INTERNAL_ERROR.value
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": {"code": code, "message": str(exc.detail)}},
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        message = "Internal server error" if production else (str(exc) or type(exc).__name__)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR.value, message)
