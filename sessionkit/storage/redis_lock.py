from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sessionkit.logging import get_logger, mask_session_key
from sessionkit.service.clock import new_lock_token
from sessionkit.service.errors import ErrorCode, SessionKitError
from sessionkit.storage.errors import store_error
from sessionkit.storage.redis_client import (
    RedisClientManager,
    RedisConnectionInput,
    normalize_ttl,
)
from sessionkit.storage.redis_store import RedisSessionStore

T = TypeVar("T")

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "sessionkit:lock:"
DEFAULT_ACQUIRE_TIMEOUT_MS = 5000
DEFAULT_RETRY_DELAY_MS = 50


class RedisLockProvider:
    """Owner-tagged, TTL-bounded lock stored next to the sessions in Redis.

    Acquisition is ``SET key token NX EX ttl`` retried every
    ``retry_delay_ms`` until ``acquire_timeout_ms`` has passed since the first
    attempt, then ``LOCK_TIMEOUT``. Release runs a Lua compare-and-delete so a
    holder whose lock already expired cannot delete a successor's lock.
    """

    # Delete only if the caller still owns the key (atomic compare-and-delete)
    _RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""

    def __init__(
        self,
        connection: RedisConnectionInput | RedisClientManager,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        acquire_timeout_ms: int = DEFAULT_ACQUIRE_TIMEOUT_MS,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    ) -> None:
        if isinstance(connection, RedisClientManager):
            self.client_manager = connection
            self.owns_connection = False
        else:
            self.client_manager = RedisClientManager(connection)
            self.owns_connection = True
        self.key_prefix = key_prefix
        self.acquire_timeout_ms = acquire_timeout_ms
        self.retry_delay_ms = retry_delay_ms
        self._release_script: Any = None
        self._script_client: Any = None

    @classmethod
    def from_store(cls, store: RedisSessionStore, **options: Any) -> "RedisLockProvider":
        """Share the session store's connection; :meth:`close` leaves it open."""
        return cls(store.client_manager, **options)

    async def with_lock(
        self, key: str, ttl_seconds: int, fn: Callable[[], Awaitable[T]]
    ) -> T:
        ttl = normalize_ttl(ttl_seconds)
        lock_key = f"{self.key_prefix}{key}"
        token = new_lock_token()

        if not await self._acquire(lock_key, token, ttl):
            logger.warning(
                "lock_acquire_timeout",
                lock_key=lock_key,
                acquire_timeout_ms=self.acquire_timeout_ms,
            )
            raise SessionKitError(
                ErrorCode.LOCK_TIMEOUT,
                "Failed to acquire lock.",
                details={"lock_key": mask_session_key(lock_key)},
            )

        try:
            result = await fn()
        except BaseException:
            # fn's error wins; a release failure here is only logged
            try:
                await self._release(lock_key, token)
            except SessionKitError as release_exc:
                logger.warning(
                    "lock_release_failed",
                    lock_key=lock_key,
                    error=release_exc.message,
                    error_code=release_exc.error_code,
                )
            raise
        await self._release(lock_key, token)
        return result

    async def close(self) -> None:
        if self.owns_connection:
            await self.client_manager.close()

    async def _acquire(self, lock_key: str, token: str, ttl: int) -> bool:
        deadline = time.monotonic() + self.acquire_timeout_ms / 1000
        attempts = 0
        while True:
            attempts += 1
            if await self._try_acquire(lock_key, token, ttl):
                logger.debug("lock_acquired", lock_key=lock_key, attempts=attempts)
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.retry_delay_ms / 1000)

    async def _try_acquire(self, lock_key: str, token: str, ttl: int) -> bool:
        client = self.client_manager.get_client()
        try:
            acquired = await client.set(lock_key, token, nx=True, ex=ttl)
        except Exception as exc:
            raise store_error(exc, "Failed to acquire lock.") from exc
        return bool(acquired)

    def _get_release_script(self) -> Any:
        client = self.client_manager.get_client()
        if self._release_script is None or self._script_client is not client:
            self._release_script = client.register_script(self._RELEASE_SCRIPT)
            self._script_client = client
        return self._release_script

    async def _release(self, lock_key: str, token: str) -> bool:
        try:
            released = await self._get_release_script()(keys=[lock_key], args=[token])
        except Exception as exc:
            raise store_error(exc, "Failed to release lock.") from exc
        if not int(released or 0):
            logger.info("lock_release_skipped_not_owner", lock_key=lock_key)
            return False
        return True


__all__ = [
    "DEFAULT_ACQUIRE_TIMEOUT_MS",
    "DEFAULT_KEY_PREFIX",
    "DEFAULT_RETRY_DELAY_MS",
    "RedisLockProvider",
]
