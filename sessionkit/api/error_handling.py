from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sessionkit.api.schemas import ErrorBody, ErrorResponse
from sessionkit.logging import get_logger
from sessionkit.service.errors import SessionKitError

logger = get_logger(__name__)


class GuardRejected(Exception):
    """Raised by the auth guard after an ``on_fail``/``on_unauthorized`` callback
    wrote its own status and body to the request context."""

    def __init__(self, status_code: int, body: Any) -> None:
        super().__init__(f"guard rejected request with status {status_code}")
        self.status_code = status_code
        self.body = body


def error_response(exc: SessionKitError, details: Optional[Any] = None) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorBody(code=exc.error_code, message=exc.message, details=details)
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(exclude_none=True),
    )


def log_session_kit_error(request: Request, exc: SessionKitError) -> None:
    log_fn = logger.error if exc.status_code >= 500 else logger.warning
    log_fn(
        "session_kit_error",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error_code=exc.error_code,
        message=exc.message,
        cause=repr(exc.cause) if exc.cause is not None else None,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map SessionKitError to its status code and ``{"error": {...}}`` body."""

    @app.exception_handler(SessionKitError)
    async def handle_session_kit_error(request: Request, exc: SessionKitError):
        log_session_kit_error(request, exc)
        return error_response(exc)

    @app.exception_handler(GuardRejected)
    async def handle_guard_rejected(request: Request, exc: GuardRejected):
        logger.info(
            "auth_guard_rejected",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.body)


__all__ = [
    "GuardRejected",
    "error_response",
    "log_session_kit_error",
    "register_exception_handlers",
]
