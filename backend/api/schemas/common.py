"""Common schemas used across the API."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every WorkflowEngineError response (see core.middleware)."""

    detail: str = Field(description="Human-readable error message")
    code: str = Field(description="Machine-readable error code")
    request_id: Optional[str] = Field(default=None, description="X-Request-ID of the failed request")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Graph error details, e.g. node_ids")


_ERROR_DESCRIPTIONS = {
    401: "Missing or invalid bearer token",
    403: "Actor lacks the required capability",
    404: "Resource not found",
    409: "Conflicting state, e.g. an invalid run transition",
    503: "Database unavailable; retry with the same idempotency key",
}


def error_responses(*status_codes: int) -> Dict[int, Dict[str, Any]]:
    """OpenAPI ``responses`` entries documenting the error body."""
    return {
        code: {"model": ErrorResponse, "description": _ERROR_DESCRIPTIONS[code]}
        for code in status_codes
    }
