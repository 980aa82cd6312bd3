from __future__ import annotations

import asyncio
import re

from redis import exceptions as redis_exceptions

from sessionkit.service.errors import ErrorCode, SessionKitError

# Failures that mean the backend cannot be reached or cannot serve writes
_UNAVAILABLE_TYPES: tuple[type[BaseException], ...] = (
    redis_exceptions.ConnectionError,
    redis_exceptions.TimeoutError,
    redis_exceptions.ReadOnlyError,
    redis_exceptions.ClusterDownError,
    redis_exceptions.MasterDownError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_UNAVAILABLE_PATTERN = re.compile(
    r"(?i)(econnrefused|econnreset|etimedout|epipe|connection (refused|reset|closed|lost)"
    r"|closed connection|socket closed|(connection|socket|read|write|operation) timed out"
    r"|timeout (reading|writing|connecting)|\breadonly\b|read.only replica"
    r"|\bloading\b|clusterdown|cluster is down|masterdown|no connection|not connected)"
)


def classify_store_error(error: BaseException) -> ErrorCode:
    """Tag a backend failure as STORE_UNAVAILABLE or INTERNAL_ERROR.

    Callers use the distinction to pick retry policy: unavailability is
    transient infrastructure trouble, anything else is a bug or bad data.
    """
    if isinstance(error, SessionKitError):
        return error.code
    if isinstance(error, _UNAVAILABLE_TYPES):
        return ErrorCode.STORE_UNAVAILABLE
    if _UNAVAILABLE_PATTERN.search(str(error)):
        return ErrorCode.STORE_UNAVAILABLE
    return ErrorCode.INTERNAL_ERROR


def store_error(error: BaseException, message: str) -> SessionKitError:
    if isinstance(error, SessionKitError):
        return error
    return SessionKitError(
        classify_store_error(error),
        message,
        error,
        details={"error_type": type(error).__name__},
    )


__all__ = ["classify_store_error", "store_error"]
