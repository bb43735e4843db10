from __future__ import annotations

from typing import Any

from herald.apps.api.response import ErrorEnvelope


def _documented_error(description: str, *, code: str, message: str, retryable: bool = False) -> dict[str, Any]:
    example = {
        "error": {"code": code, "message": message, "retryable": retryable},
        "meta": {"request_id": "req_example", "api_version": "v1", "served_at": 1700000000},
    }
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


# Shared by every notification route so clients see the envelope for each failure mode.
DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: _documented_error("Entry not found", code="NOT_FOUND", message="Notification entry not found"),
    422: _documented_error("Rejected request", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    503: _documented_error(
        "Notification storage unavailable",
        code="QUEUE_STORE_UNAVAILABLE",
        message="Notification storage unavailable",
        retryable=True,
    ),
}
