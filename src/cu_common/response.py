"""Unified error body.

Failed requests return:
{
    "error": "Insufficient credits to unlock contacts.",
    "code": "insufficient_credits",
    "request_id": "req_..."
}

Successful responses are endpoint-specific pydantic models that always carry
`success: true`.
"""

import uuid

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
    request_id: str = Field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")


def error_response(code: str | None, message: str, request_id: str | None = None) -> ErrorResponse:
    if request_id:
        return ErrorResponse(error=message, code=code, request_id=request_id)
    return ErrorResponse(error=message, code=code)
