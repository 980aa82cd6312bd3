from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Request correlation id, set by the HTTP adapter for each request
correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "sessionkit_correlation_id", default=None
)

# Field names whose values are credentials or bearer secrets
_SECRET_FIELDS = ("password", "secret", "token", "authorization", "cookie")
# Session ids authenticate whoever presents them, so logs only keep a prefix
_SESSION_ID_FIELDS = ("session_id", "sid")
_SESSION_ID_VISIBLE = 8
# Storage keys whose last segment is a session id
_SESSION_KEY_FIELDS = ("lock_key",)

_TRUTHY = {"1", "true", "yes", "on"}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Use the caller's correlation id, or mint one, for the current context."""
    cid = correlation_id or uuid.uuid4().hex
    correlation_id_var.set(cid)
    return cid


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = correlation_id_var.get()
    if cid and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = cid
    return event_dict


def shorten_session_id(value: str) -> str:
    if len(value) > _SESSION_ID_VISIBLE:
        return value[:_SESSION_ID_VISIBLE] + "..."
    return value


def mask_session_key(key: str) -> str:
    """Shorten the session id at the end of a key such as ``prefix:refresh:<sid>``."""
    prefix, sep, tail = key.rpartition(":")
    return f"{prefix}{sep}{shorten_session_id(tail)}"


def _redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask credential-like fields and shorten session ids."""
    for key, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        lowered = key.lower()
        if lowered in _SESSION_ID_FIELDS:
            event_dict[key] = shorten_session_id(value)
        elif lowered in _SESSION_KEY_FIELDS:
            event_dict[key] = mask_session_key(value)
        elif any(marker in lowered for marker in _SECRET_FIELDS) and len(value) > 4:
            event_dict[key] = f"{value[:2]}***{value[-2:]}"
    return event_dict


def _renderer(json_output: bool, development_mode: bool) -> list:
    if development_mode or not json_output:
        return [structlog.dev.ConsoleRenderer(colors=development_mode)]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def configure_logging(
    log_level: Optional[str] = None,
    json_output: Optional[bool] = None,
    development_mode: Optional[bool] = None,
) -> None:
    """Configure structlog for sessionkit.

    Arguments left as ``None`` come from ``LOG_LEVEL`` (default ``INFO``),
    ``LOG_JSON`` (default true) and ``LOG_DEV_MODE`` (default false). Runs once
    on import; applications that own their logging setup may call it again.
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.getenv("LOG_JSON", "true").lower() in _TRUTHY
    if development_mode is None:
        development_mode = os.getenv("LOG_DEV_MODE", "false").lower() in _TRUTHY

    level = getattr(logging, log_level.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_correlation_id,
            _redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *_renderer(json_output, development_mode),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = [
    "configure_logging",
    "correlation_id_var",
    "get_correlation_id",
    "get_logger",
    "mask_session_key",
    "set_correlation_id",
    "shorten_session_id",
]
