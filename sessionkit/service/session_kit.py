from __future__ import annotations

import inspect
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional

from sessionkit.logging import get_logger
from sessionkit.service.clock import new_session_id, now_ms, seconds_to_ms
from sessionkit.service.errors import ErrorCode, SessionKitError, to_session_kit_error
from sessionkit.service.http import ContextCallback, HttpContext, HttpMiddleware, Next
from sessionkit.service.lock import LockProvider, NoopLockProvider
from sessionkit.service.options import SessionKitOptions, TokenRefresher
from sessionkit.storage.base import close_store, supports_touch, touch_accepts_expiry
from sessionkit.storage.models import AuthContext, SignInResult, StoredSession

TOKEN_REFRESH_LOCK_TTL_SECONDS = 10
REFRESH_LOCK_PREFIX = "sessionkit:refresh:"

# Reasons passed to hooks.on_invalid_session
REASON_SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
REASON_INVALID_PAYLOAD = "INVALID_PAYLOAD"
REASON_TOKEN_REFRESH_FAILED = ErrorCode.TOKEN_REFRESH_FAILED.value


async def _maybe_await(result: Optional[Awaitable[None]]) -> None:
    if inspect.isawaitable(result):
        await result


class SessionKit:
    """Cookie-addressed session engine.

    Every request is resolved from scratch against the store: cookie, stored
    record, optional payload migration, expiry, optional lock-guarded token
    refresh, principal projection and optional rolling touch. Missing,
    invalid and expired sessions resolve to an unauthenticated context; only
    infrastructure failures raise.
    """

    def __init__(
        self,
        options: SessionKitOptions,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.options = options
        self.cookie_name = options.cookie.name
        self.lock_provider: LockProvider = options.lock_provider or NoopLockProvider()
        self.logger = options.logger or get_logger(__name__)
        self._now = clock

    # ------------------------------------------------------------------
    # Middleware entry points
    # ------------------------------------------------------------------

    def middleware(self) -> HttpMiddleware:
        async def _resolve_then_next(ctx: HttpContext, next_: Next) -> None:
            try:
                await self.resolve(ctx)
            except SessionKitError:
                raise
            except Exception as exc:
                raise to_session_kit_error(exc) from exc
            await next_()

        return _resolve_then_next

    def optional_auth(self) -> HttpMiddleware:
        return self.middleware()

    def require_auth(self, on_fail: Optional[ContextCallback] = None) -> HttpMiddleware:
        """Guard on the already resolved context; it never re-reads the store."""

        async def _guard(ctx: HttpContext, next_: Next) -> None:
            if not self.get_auth(ctx).is_authenticated:
                if on_fail is not None:
                    await _maybe_await(on_fail(ctx))
                    return
                if self.options.hooks.on_unauthorized is not None:
                    await _maybe_await(self.options.hooks.on_unauthorized(ctx))
                    return
                raise SessionKitError(ErrorCode.UNAUTHORIZED, "Authentication required.")
            await next_()

        return _guard

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def resolve(self, ctx: HttpContext) -> AuthContext[Any, Any]:
        """Resolve the request's session and attach the result to its auth slot."""
        auth = await self._build_auth_context(ctx)
        ctx.set_auth(auth)
        return auth

    async def sign_in(
        self,
        ctx: HttpContext,
        payload: Any,
        *,
        ttl_seconds: Optional[int] = None,
        hydrate_context: bool = True,
    ) -> SignInResult[Any]:
        ttl = ttl_seconds if ttl_seconds is not None else self.options.session.ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        created_at = self._now()
        session = StoredSession(
            payload=payload,
            created_at=created_at,
            expires_at=created_at + seconds_to_ms(ttl),
        )
        session_id = new_session_id()

        try:
            await self.options.store.set(session_id, session, ttl)
        except Exception as exc:
            raise SessionKitError(
                ErrorCode.STORE_UNAVAILABLE, "Failed to save session.", exc
            ) from exc

        cookie = self.options.cookie
        max_age = cookie.max_age_seconds if cookie.max_age_seconds is not None else ttl
        ctx.set_cookie(self.cookie_name, session_id, cookie, max_age_seconds=max_age)

        principal = self.options.principal_factory(payload)
        if hydrate_context:
            ctx.set_auth(AuthContext.authenticated(session_id, session, principal))

        self.logger.info(
            "session_signed_in", session_id=session_id, expires_at=session.expires_at
        )
        return SignInResult(
            session_id=session_id, principal=principal, expires_at=session.expires_at
        )

    async def sign_out(self, ctx: HttpContext, *, always_clear_cookie: bool = True) -> None:
        session_id = ctx.get_cookie(self.cookie_name)
        if session_id:
            try:
                await self.options.store.delete(session_id)
            except Exception as exc:
                self.logger.warning(
                    "session_delete_failed", session_id=session_id, error=str(exc)
                )
                if not always_clear_cookie:
                    raise SessionKitError(
                        ErrorCode.STORE_UNAVAILABLE, "Failed to delete session.", exc
                    ) from exc

        ctx.clear_cookie(self.cookie_name, self.options.cookie)
        ctx.set_auth(AuthContext.unauthenticated())
        if session_id:
            self.logger.info("session_signed_out", session_id=session_id)

    def get_auth(self, ctx: HttpContext) -> AuthContext[Any, Any]:
        found = ctx.get_auth()
        if isinstance(found, AuthContext):
            return replace(found)
        return AuthContext.unauthenticated()

    async def close(self) -> None:
        """Close the store and lock provider when they expose ``close``."""
        await close_store(self.options.store)
        close = getattr(self.lock_provider, "close", None)
        if callable(close):
            await close()

    # ------------------------------------------------------------------
    # Resolution state machine
    # ------------------------------------------------------------------

    async def _build_auth_context(self, ctx: HttpContext) -> AuthContext[Any, Any]:
        session_id = ctx.get_cookie(self.cookie_name)
        if not session_id:
            return AuthContext.unauthenticated()

        stored = await self._read(session_id)
        if stored is None:
            self.logger.debug("session_not_found", session_id=session_id)
            await self._invalidate(ctx, REASON_SESSION_NOT_FOUND)
            return AuthContext.unauthenticated()

        try:
            stored = self._transform(stored)
        except Exception as exc:
            self.logger.warning(
                "session_payload_invalid", session_id=session_id, error=str(exc)
            )
            await self._invalidate(ctx, REASON_INVALID_PAYLOAD)
            return AuthContext.unauthenticated()

        if stored.is_expired(self._now()):
            self.logger.debug("session_expired", session_id=session_id)
            self._clear_cookie(ctx)
            return AuthContext.unauthenticated()

        refreshed = await self._maybe_refresh(ctx, session_id, stored)
        if refreshed is None:
            return AuthContext.unauthenticated()

        principal = self.options.principal_factory(refreshed.payload)
        auth = AuthContext.authenticated(session_id, refreshed, principal)

        if self.options.session.rolling:
            await self._maybe_touch(session_id, auth)
        return auth

    async def _read(self, session_id: str) -> Optional[StoredSession[Any]]:
        try:
            return await self.options.store.get(session_id)
        except Exception as exc:
            raise SessionKitError(
                ErrorCode.STORE_UNAVAILABLE, "Failed to read session.", exc
            ) from exc

    def _transform(self, stored: StoredSession[Any]) -> StoredSession[Any]:
        # Only the payload is migrated; timestamps stay as stored
        transformer = self.options.payload_transformer
        if transformer is None:
            return stored
        return stored.with_payload(transformer(stored.payload))

    def _clear_cookie(self, ctx: HttpContext) -> None:
        ctx.clear_cookie(self.cookie_name, self.options.cookie)

    async def _invalidate(self, ctx: HttpContext, reason: str) -> None:
        self._clear_cookie(ctx)
        hook = self.options.hooks.on_invalid_session
        if hook is not None:
            await _maybe_await(hook(ctx, reason))

    # ------------------------------------------------------------------
    # Token refresh
    # ------------------------------------------------------------------

    async def _maybe_refresh(
        self, ctx: HttpContext, session_id: str, stored: StoredSession[Any]
    ) -> Optional[StoredSession[Any]]:
        token = self.options.token
        if token is None or not token.should_refresh(stored.payload, self._now()):
            return stored

        try:
            refreshed = await self.lock_provider.with_lock(
                f"{REFRESH_LOCK_PREFIX}{session_id}",
                TOKEN_REFRESH_LOCK_TTL_SECONDS,
                lambda: self._refresh_locked(session_id, token),
            )
        except SessionKitError as exc:
            if exc.code is not ErrorCode.TOKEN_REFRESH_FAILED:
                raise
            await self._handle_refresh_failure(ctx, session_id, exc)
            return None
        except Exception as exc:
            raise to_session_kit_error(exc) from exc

        if refreshed is None:
            self.logger.debug("session_gone_during_refresh", session_id=session_id)
            self._clear_cookie(ctx)
        return refreshed

    async def _refresh_locked(
        self, session_id: str, token: TokenRefresher
    ) -> Optional[StoredSession[Any]]:
        # Another holder may have refreshed while this request waited
        latest = await self._read(session_id)
        if latest is None:
            return None
        try:
            latest = self._transform(latest)
        except Exception as exc:
            self.logger.warning(
                "session_payload_invalid", session_id=session_id, error=str(exc)
            )
            return None
        if latest.is_expired(self._now()):
            return None
        if not token.should_refresh(latest.payload, self._now()):
            return latest

        try:
            result = await token.refresh(latest.payload)
        except Exception as exc:
            raise SessionKitError(
                ErrorCode.TOKEN_REFRESH_FAILED, "Failed to refresh token.", exc
            ) from exc

        ttl = (
            result.ttl_seconds
            if result.ttl_seconds is not None
            else self.options.session.ttl_seconds
        )
        next_stored = StoredSession(
            payload=result.payload,
            created_at=latest.created_at,
            expires_at=self._now() + seconds_to_ms(ttl),
        )
        try:
            await self.options.store.set(session_id, next_stored, ttl)
        except Exception as exc:
            raise SessionKitError(
                ErrorCode.STORE_UNAVAILABLE, "Failed to save session.", exc
            ) from exc
        self.logger.info(
            "session_token_refreshed",
            session_id=session_id,
            expires_at=next_stored.expires_at,
        )
        return next_stored

    async def _handle_refresh_failure(
        self, ctx: HttpContext, session_id: str, error: SessionKitError
    ) -> None:
        cause = error.cause if error.cause is not None else error
        self.logger.warning(
            "token_refresh_failed", session_id=session_id, error=str(cause)
        )
        token = self.options.token
        if token is not None and token.on_refresh_fail == "revoke":
            try:
                await self.options.store.delete(session_id)
            except Exception as exc:
                self.logger.warning(
                    "session_revoke_failed", session_id=session_id, error=str(exc)
                )
        hook = self.options.hooks.on_invalid_session
        if hook is not None:
            await _maybe_await(hook(ctx, REASON_TOKEN_REFRESH_FAILED))
        self._clear_cookie(ctx)

    # ------------------------------------------------------------------
    # Rolling expiration
    # ------------------------------------------------------------------

    async def _maybe_touch(self, session_id: str, auth: AuthContext[Any, Any]) -> None:
        session = auth.session
        if session is None:
            return
        policy = self.options.session
        now = self._now()
        remaining_seconds = (session.expires_at - now) // 1000
        if remaining_seconds > policy.touch_threshold_seconds:
            return

        ttl = policy.ttl_seconds
        extended = session.with_expiry(now + seconds_to_ms(ttl))
        store = self.options.store
        try:
            if touch_accepts_expiry(store):
                await store.touch(  # type: ignore[attr-defined]
                    session_id, ttl, expires_at=extended.expires_at
                )
            elif supports_touch(store):
                await store.touch(session_id, ttl)  # type: ignore[attr-defined]
            else:
                await store.set(session_id, extended, ttl)
        except Exception as exc:
            self.logger.warning("session_touch_failed", session_id=session_id, error=str(exc))
            return
        auth.session = extended
        self.logger.debug(
            "session_touched", session_id=session_id, expires_at=extended.expires_at
        )


__all__ = [
    "REASON_INVALID_PAYLOAD",
    "REASON_SESSION_NOT_FOUND",
    "REASON_TOKEN_REFRESH_FAILED",
    "REFRESH_LOCK_PREFIX",
    "TOKEN_REFRESH_LOCK_TTL_SECONDS",
    "SessionKit",
]
