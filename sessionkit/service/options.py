from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Optional, Protocol

from sessionkit.config import CookieOptions, SessionPolicy
from sessionkit.service.http import HttpContext
from sessionkit.service.lock import LockProvider
from sessionkit.storage.base import SessionStore
from sessionkit.storage.models import RefreshResult

RefreshFailPolicy = Literal["unauth", "revoke"]


class Logger(Protocol):
    """Structured logger contract (a structlog bound logger satisfies it)."""

    def debug(self, event: str, **kw: Any) -> Any: ...

    def info(self, event: str, **kw: Any) -> Any: ...

    def warning(self, event: str, **kw: Any) -> Any: ...

    def error(self, event: str, **kw: Any) -> Any: ...


@dataclass(frozen=True)
class TokenRefresher:
    """Describes how to rotate an upstream credential kept in the payload.

    ``should_refresh(payload, now_ms)`` decides; ``refresh(payload)`` returns a
    :class:`RefreshResult`. ``on_refresh_fail="revoke"`` deletes the session
    when refresh raises, ``"unauth"`` only treats the request as anonymous.
    """

    should_refresh: Callable[[Any, int], bool]
    refresh: Callable[[Any], Awaitable[RefreshResult[Any]]]
    on_refresh_fail: RefreshFailPolicy = "unauth"


@dataclass(frozen=True)
class SessionHooks:
    on_unauthorized: Optional[Callable[[HttpContext], Optional[Awaitable[None]]]] = None
    # reason: SESSION_NOT_FOUND, INVALID_PAYLOAD or TOKEN_REFRESH_FAILED
    on_invalid_session: Optional[
        Callable[[HttpContext, str], Optional[Awaitable[None]]]
    ] = None


@dataclass(frozen=True)
class SessionKitOptions:
    store: SessionStore
    session: SessionPolicy
    principal_factory: Callable[[Any], Any]
    cookie: CookieOptions = field(default_factory=CookieOptions)
    payload_transformer: Optional[Callable[[Any], Any]] = None
    token: Optional[TokenRefresher] = None
    lock_provider: Optional[LockProvider] = None
    hooks: SessionHooks = field(default_factory=SessionHooks)
    logger: Optional[Logger] = None


__all__ = [
    "Logger",
    "RefreshFailPolicy",
    "SessionHooks",
    "SessionKitOptions",
    "TokenRefresher",
]
