from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from sessionkit.api.error_handling import (
    GuardRejected,
    error_response,
    log_session_kit_error,
    register_exception_handlers,
)
from sessionkit.api.schemas import AuthSummary
from sessionkit.config import CookieOptions
from sessionkit.logging import set_correlation_id
from sessionkit.service.errors import ErrorCode, SessionKitError, default_error_body
from sessionkit.service.http import ContextCallback
from sessionkit.service.session_kit import SessionKit
from sessionkit.storage.models import AuthContext

AUTH_STATE_ATTR = "sessionkit_auth"


class StarletteHttpContext:
    """``HttpContext`` over a Starlette request and the response being built.

    Cookies are written straight onto ``response``; the auth slot lives in
    ``request.state`` so the middleware and route dependencies share it.
    ``status``/``json`` are recorded for the guard to turn into a response.
    """

    def __init__(self, request: Request, response: Optional[Response] = None) -> None:
        self.request = request
        self.response = response if response is not None else Response()
        self.status_code: Optional[int] = None
        self.body: Any = None

    def get_cookie(self, name: str) -> Optional[str]:
        return self.request.cookies.get(name) or None

    def set_cookie(
        self,
        name: str,
        value: str,
        options: CookieOptions,
        max_age_seconds: Optional[int] = None,
    ) -> None:
        self.response.set_cookie(
            name,
            value,
            max_age=max_age_seconds,
            path=options.path,
            domain=options.domain,
            secure=options.secure,
            httponly=options.http_only,
            samesite=options.same_site,
        )

    def clear_cookie(self, name: str, options: CookieOptions) -> None:
        self.response.delete_cookie(
            name,
            path=options.path,
            domain=options.domain,
            secure=options.secure,
            httponly=options.http_only,
            samesite=options.same_site,
        )

    def set_auth(self, value: Any) -> None:
        setattr(self.request.state, AUTH_STATE_ATTR, value)

    def get_auth(self) -> Any:
        return getattr(self.request.state, AUTH_STATE_ATTR, None)

    def status(self, code: int) -> None:
        self.status_code = code

    def json(self, body: Any) -> None:
        self.body = body

    def set_cookie_headers(self) -> list[str]:
        return self.response.headers.getlist("set-cookie")


class SessionKitMiddleware(BaseHTTPMiddleware):
    """Resolves the session for every request before routing.

    Cookie changes made while resolving (clearing a dead session) are copied
    onto whatever response the route produces, unless the route wrote a cookie
    of the same name, which is the later and therefore winning write.
    """

    def __init__(self, app, kit: SessionKit) -> None:
        super().__init__(app)
        self.kit = kit

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        ctx = StarletteHttpContext(request)
        try:
            await self.kit.middleware()(ctx, _noop_next)
        except SessionKitError as exc:
            log_session_kit_error(request, exc)
            response = error_response(exc)
        else:
            response = await call_next(request)
        route_cookies = {
            _cookie_name(header) for header in response.headers.getlist("set-cookie")
        }
        for header in ctx.set_cookie_headers():
            if _cookie_name(header) not in route_cookies:
                response.headers.append("set-cookie", header)
        response.headers["X-Request-ID"] = correlation_id
        return response


async def _noop_next() -> None:
    return None


def _cookie_name(header: str) -> str:
    return header.split("=", 1)[0].strip()


def http_context(request: Request, response: Response) -> StarletteHttpContext:
    """FastAPI dependency: context whose cookies land on the route's response."""
    return StarletteHttpContext(request, response)


def auth_context(kit: SessionKit) -> Callable[[Request], AuthContext[Any, Any]]:
    """FastAPI dependency factory returning the resolved (possibly anonymous) context."""

    def _auth(request: Request) -> AuthContext[Any, Any]:
        return kit.get_auth(StarletteHttpContext(request))

    return _auth


def require_auth(kit: SessionKit, on_fail: Optional[ContextCallback] = None):
    """FastAPI dependency factory enforcing an authenticated session.

    Without callbacks an anonymous request raises ``UNAUTHORIZED``; a callback
    that writes ``status``/``json`` on the context decides the response.
    """

    async def _require(request: Request, response: Response) -> AuthContext[Any, Any]:
        ctx = StarletteHttpContext(request, response)
        passed = False

        async def _next() -> None:
            nonlocal passed
            passed = True

        await kit.require_auth(on_fail)(ctx, _next)
        if not passed:
            body = ctx.body
            if body is None:
                body = default_error_body(ErrorCode.UNAUTHORIZED, "Authentication required.")
            raise GuardRejected(ctx.status_code or 401, body)
        return kit.get_auth(ctx)

    return _require


def auth_summary(auth: AuthContext[Any, Any]) -> AuthSummary:
    return AuthSummary(
        is_authenticated=auth.is_authenticated,
        session_id=auth.session_id,
        principal=auth.principal,
        expires_at=auth.session.expires_at if auth.session else None,
    )


def install_session_kit(app: FastAPI, kit: SessionKit) -> None:
    """Resolve sessions on every request and map SessionKitError responses."""
    app.add_middleware(SessionKitMiddleware, kit=kit)
    register_exception_handlers(app)


__all__ = [
    "AUTH_STATE_ATTR",
    "SessionKitMiddleware",
    "StarletteHttpContext",
    "auth_context",
    "auth_summary",
    "http_context",
    "install_session_kit",
    "require_auth",
]
