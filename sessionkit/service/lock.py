from __future__ import annotations

from typing import Awaitable, Callable, Protocol, TypeVar

T = TypeVar("T")


class LockProvider(Protocol):
    """Mutual exclusion keyed by string.

    ``with_lock`` runs ``fn`` while holding ``key`` for at most ``ttl_seconds``;
    at most one ``fn`` per key runs at a time across everything sharing the
    provider's backend.
    """

    async def with_lock(
        self, key: str, ttl_seconds: int, fn: Callable[[], Awaitable[T]]
    ) -> T: ...


class NoopLockProvider:
    """Runs ``fn`` immediately. Refresh races are not prevented."""

    async def with_lock(
        self, key: str, ttl_seconds: int, fn: Callable[[], Awaitable[T]]
    ) -> T:
        return await fn()


__all__ = ["LockProvider", "NoopLockProvider"]
