from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from sessionkit.service.errors import ErrorCode


class ErrorBody(BaseModel):
    """Error payload with a stable code value."""

    code: str = Field(..., description="Stable sessionkit error code")
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        return ErrorCode(value).value


class ErrorResponse(BaseModel):
    error: ErrorBody


class AuthSummary(BaseModel):
    """Serializable view of an auth context for ``/me``-style endpoints."""

    is_authenticated: bool
    session_id: Optional[str] = None
    principal: Optional[Any] = None
    expires_at: Optional[int] = None
