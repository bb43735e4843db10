from __future__ import annotations

import time
from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)
    # Unix seconds, the same clock as queue entry timestamps.
    served_at: int


class ErrorDetail(BaseModel):
    code: str
    message: str
    # True when the same request may succeed later (storage outages).
    retryable: bool = False
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def request_id_for(request: Request) -> str:
    # Middleware stamps the id first; handlers reached without it fall back to the header or a fresh id.
    existing = getattr(request.state, "request_id", None)
    if existing:
        return existing
    request_id = request.headers.get(REQUEST_ID_HEADER) or f"req_{uuid4().hex}"
    request.state.request_id = request_id
    return request_id


def _meta(request: Request) -> dict[str, Any]:
    return ResponseMeta(request_id=request_id_for(request), served_at=int(time.time())).model_dump()


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    return {"data": data, "meta": _meta(request)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    retryable: bool = False,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, retryable=retryable, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}
