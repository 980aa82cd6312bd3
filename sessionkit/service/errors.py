from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable error codes surfaced by the engine and its adapters."""

    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_SESSION = "INVALID_SESSION"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_BY_CODE = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INVALID_SESSION: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.TOKEN_REFRESH_FAILED: 401,
    ErrorCode.STORE_UNAVAILABLE: 503,
    ErrorCode.LOCK_TIMEOUT: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_from_error_code(code: ErrorCode | str) -> int:
    """Map an error code to the HTTP status adapters should respond with."""
    try:
        return _STATUS_BY_CODE[ErrorCode(code)]
    except ValueError:
        return 500


class SessionKitError(Exception):
    """Canonical exception raised by the engine, stores and lock providers.

    Mirrors the service-error shape used by HTTP handlers: ``message``,
    ``status_code``, ``error_code`` and ``detail`` are always populated, and
    ``cause`` keeps the underlying exception (also chained via ``__cause__``
    when raised with ``from``).
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.cause = cause
        self.detail = details or {}
        self.status_code = status_from_error_code(self.code)

    @property
    def error_code(self) -> str:
        return self.code.value

    def __repr__(self) -> str:
        return f"SessionKitError(code={self.code.value!r}, message={self.message!r})"


def is_session_kit_error(error: object) -> bool:
    return isinstance(error, SessionKitError)


def to_session_kit_error(error: BaseException) -> SessionKitError:
    """Normalize any exception into a :class:`SessionKitError`."""
    if isinstance(error, SessionKitError):
        return error
    message = str(error) or "Unexpected internal error."
    return SessionKitError(ErrorCode.INTERNAL_ERROR, message, error)


def default_error_body(code: ErrorCode | str, message: str) -> Dict[str, Dict[str, str]]:
    """JSON-safe error body used by adapters."""
    return {"error": {"code": ErrorCode(code).value, "message": message}}


__all__ = [
    "ErrorCode",
    "SessionKitError",
    "default_error_body",
    "is_session_kit_error",
    "status_from_error_code",
    "to_session_kit_error",
]
