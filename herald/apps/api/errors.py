from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from herald.apps.api.response import error_response
from herald.core.errors import QueueStoreUnavailableError, ReceiptStoreError


logger = logging.getLogger(__name__)

# Seconds a client should wait before retrying after a storage outage.
STORE_RETRY_AFTER_S = 5

_STATUS_CODES: dict[int, str] = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _code_for(status_code: int) -> str:
    return _STATUS_CODES.get(status_code, f"HTTP_{status_code}")


def _unpack_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Routes raise HTTPException(detail={"code", "message", **context}); framework errors carry plain strings.
    if isinstance(detail, dict):
        context = {key: value for key, value in detail.items() if key not in {"code", "message"}}
        return (
            str(detail.get("code") or _code_for(status_code)),
            str(detail.get("message") or "Request failed"),
            context or None,
        )
    return _code_for(status_code), str(detail) if detail else "Request failed", None


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Covers fastapi.HTTPException too, which subclasses the starlette one.
    code, message, details = _unpack_detail(exc.detail, exc.status_code)
    payload = error_response(
        request=request,
        code=code,
        message=message,
        retryable=exc.status_code == 503,
        details=details,
    )
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    # The request did not complete; the caller can repeat it once storage is back.
    logger.warning("notification_store_unavailable path=%s error=%s", request.url.path, exc)
    code = "QUEUE_STORE_UNAVAILABLE" if isinstance(exc, QueueStoreUnavailableError) else "RECEIPT_STORE_UNAVAILABLE"
    payload = error_response(request=request, code=code, message="Notification storage unavailable", retryable=True)
    return JSONResponse(content=payload, status_code=503, headers={"Retry-After": str(STORE_RETRY_AFTER_S)})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_api_error path=%s", request.url.path)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    for error_class in (QueueStoreUnavailableError, ReceiptStoreError):
        app.add_exception_handler(error_class, store_unavailable_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
