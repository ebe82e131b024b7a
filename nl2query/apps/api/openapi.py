from __future__ import annotations

from typing import Any

from nl2query.apps.api.response import ErrorEnvelope


def _error_response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    example: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        example["error"]["details"] = details
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    404: _error_response(
        "Workspace not found",
        code="NOT_FOUND",
        message="Workspace not found",
        details={"additional_error_info": ["tenant_id=tenant_0123456789abcdef"]},
    ),
    409: _error_response(
        "Ingestion in progress",
        code="INGESTION_IN_PROGRESS",
        message="Workspace ingestion is in progress",
        details={"additional_error_info": ["tenant_id=tenant_0123456789abcdef"]},
    ),
    422: _error_response(
        "Validation error",
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": [{"loc": ["body", "prompt"], "msg": "Field required"}]},
    ),
    500: _error_response("Internal error", code="INTERNAL_ERROR", message="Internal server error"),
    502: _error_response("Upstream failure", code="UPSTREAM_ERROR", message="Client database failure"),
    503: _error_response("Service unavailable", code="SERVICE_UNAVAILABLE", message="Ingestion queue unavailable"),
}
