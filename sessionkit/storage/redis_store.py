from __future__ import annotations

import json
import time
from typing import Any, Callable, Optional, Protocol

from redis import exceptions as redis_exceptions

from sessionkit.logging import get_logger
from sessionkit.storage.errors import store_error
from sessionkit.storage.models import StoredSession
from sessionkit.storage.redis_client import (
    RedisClientManager,
    RedisConnectionInput,
    normalize_ttl,
)

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "sessionkit:sess:"
TOUCH_ATTEMPTS = 3


class SessionCodec(Protocol):
    def serialize(self, session: StoredSession[Any]) -> str: ...

    def deserialize(self, raw: str) -> StoredSession[Any]: ...


class JsonSessionCodec:
    """Stores the record dict (``payload``/``createdAt``/``expiresAt``) as JSON."""

    def serialize(self, session: StoredSession[Any]) -> str:
        return json.dumps(session.to_dict(), separators=(",", ":"))

    def deserialize(self, raw: str) -> StoredSession[Any]:
        return StoredSession.from_dict(json.loads(raw))


class RedisSessionStore:
    """Redis-backed session store.

    Records live under ``key_prefix + session_id`` with a native Redis TTL.
    ``touch`` rewrites the record with a new ``expiresAt`` and TTL inside an
    optimistic transaction, so it never resurrects or reverts a record that
    changed underneath it.
    """

    def __init__(
        self,
        connection: RedisConnectionInput | RedisClientManager,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        codec: Optional[SessionCodec] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if isinstance(connection, RedisClientManager):
            self.client_manager = connection
        else:
            self.client_manager = RedisClientManager(connection)
        self.key_prefix = key_prefix
        self.codec: SessionCodec = codec or JsonSessionCodec()
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    async def get(self, session_id: str) -> Optional[StoredSession[Any]]:
        client = self.client_manager.get_client()
        try:
            raw = await client.get(self._key(session_id))
        except Exception as exc:
            raise store_error(exc, "Failed to read session.") from exc
        if raw is None:
            return None
        try:
            return self.codec.deserialize(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "redis_session_undecodable", session_id=session_id, error=str(exc)
            )
            return None

    async def set(
        self, session_id: str, session: StoredSession[Any], ttl_seconds: int
    ) -> None:
        ttl = normalize_ttl(ttl_seconds)
        raw = self.codec.serialize(session)
        client = self.client_manager.get_client()
        try:
            await client.set(self._key(session_id), raw, ex=ttl)
        except Exception as exc:
            raise store_error(exc, "Failed to save session.") from exc

    async def delete(self, session_id: str) -> None:
        client = self.client_manager.get_client()
        try:
            await client.delete(self._key(session_id))
        except Exception as exc:
            raise store_error(exc, "Failed to delete session.") from exc

    async def touch(
        self, session_id: str, ttl_seconds: int, *, expires_at: Optional[int] = None
    ) -> None:
        """Move ``expiresAt`` and the key TTL forward without changing the payload.

        The read and the rewrite run in a WATCH/MULTI transaction, so a record
        replaced or deleted in between (a token refresh, a sign-out) is never
        overwritten with the stale copy; the touch retries against the new one.
        """
        ttl = normalize_ttl(ttl_seconds)
        if expires_at is None:
            expires_at = int(self._clock() * 1000) + ttl * 1000
        key = self._key(session_id)
        client = self.client_manager.get_client()
        for attempt in range(1, TOUCH_ATTEMPTS + 1):
            try:
                await self._touch_once(client, session_id, key, ttl, expires_at)
                return
            except redis_exceptions.WatchError as exc:
                if attempt == TOUCH_ATTEMPTS:
                    raise store_error(exc, "Failed to touch session.") from exc
                logger.debug(
                    "redis_session_touch_conflict", session_id=session_id, attempt=attempt
                )
            except Exception as exc:
                raise store_error(exc, "Failed to touch session.") from exc

    async def _touch_once(
        self, client: Any, session_id: str, key: str, ttl: int, expires_at: int
    ) -> None:
        async with client.pipeline(transaction=True) as pipe:
            await pipe.watch(key)
            raw = await pipe.get(key)
            if raw is None:
                return
            try:
                current = self.codec.deserialize(raw)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning(
                    "redis_session_undecodable", session_id=session_id, error=str(exc)
                )
                return
            pipe.multi()
            pipe.set(key, self.codec.serialize(current.with_expiry(expires_at)), ex=ttl)
            await pipe.execute()

    async def close(self) -> None:
        await self.client_manager.close()


__all__ = [
    "DEFAULT_KEY_PREFIX",
    "TOUCH_ATTEMPTS",
    "JsonSessionCodec",
    "RedisSessionStore",
    "SessionCodec",
]
