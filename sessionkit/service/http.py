from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol

from sessionkit.config import CookieOptions


class HttpContext(Protocol):
    """Framework-neutral view of one request/response pair.

    Adapters own cookie parsing and serialization; the engine only names
    cookies and hands over :class:`CookieOptions`. The auth slot holds one
    opaque value for the lifetime of the request.
    """

    def get_cookie(self, name: str) -> Optional[str]: ...

    def set_cookie(
        self,
        name: str,
        value: str,
        options: CookieOptions,
        max_age_seconds: Optional[int] = None,
    ) -> None: ...

    def clear_cookie(self, name: str, options: CookieOptions) -> None: ...

    def set_auth(self, value: Any) -> None: ...

    def get_auth(self) -> Any: ...

    def status(self, code: int) -> None: ...

    def json(self, body: Any) -> None: ...


Next = Callable[[], Awaitable[None]]
HttpMiddleware = Callable[[HttpContext, Next], Awaitable[None]]
ContextCallback = Callable[[HttpContext], Optional[Awaitable[None]]]

__all__ = ["ContextCallback", "HttpContext", "HttpMiddleware", "Next"]
