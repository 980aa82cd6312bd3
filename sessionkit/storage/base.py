from __future__ import annotations

import inspect
from typing import Any, Optional, Protocol, runtime_checkable

from sessionkit.storage.models import StoredSession


@runtime_checkable
class SessionStore(Protocol):
    """Required session store operations.

    ``touch(session_id, ttl_seconds)`` and ``close()`` are optional; the
    engine probes for them with :func:`supports_touch` and :func:`close_store`.
    A ``touch`` that also takes an ``expires_at`` keyword is handed the
    engine's new expiry so the stored record matches the request's view.
    """

    async def get(self, session_id: str) -> Optional[StoredSession[Any]]: ...

    async def set(
        self, session_id: str, session: StoredSession[Any], ttl_seconds: int
    ) -> None: ...

    async def delete(self, session_id: str) -> None: ...


def supports_touch(store: SessionStore) -> bool:
    return callable(getattr(store, "touch", None))


def touch_accepts_expiry(store: SessionStore) -> bool:
    touch = getattr(store, "touch", None)
    if not callable(touch):
        return False
    try:
        params = inspect.signature(touch).parameters
    except (TypeError, ValueError):
        return False
    return "expires_at" in params or any(
        p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values()
    )


async def close_store(store: SessionStore) -> None:
    close = getattr(store, "close", None)
    if callable(close):
        await close()


__all__ = ["SessionStore", "close_store", "supports_touch", "touch_accepts_expiry"]
