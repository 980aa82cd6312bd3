from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import redis.asyncio as aioredis

from sessionkit.logging import get_logger

logger = get_logger(__name__)

# Default operation timeout for Redis commands
DEFAULT_SOCKET_TIMEOUT = 5.0


@dataclass(frozen=True)
class RedisConnectionParams:
    """Connection parameters for a client the manager creates and owns."""

    url: Optional[str] = None
    host: str = "localhost"
    port: int = 6379
    username: Optional[str] = None
    password: Optional[str] = None
    database: int = 0
    tls: bool = False
    socket_timeout: float = DEFAULT_SOCKET_TIMEOUT
    redis_options: Dict[str, Any] = field(default_factory=dict)


RedisConnectionInput = Union[aioredis.Redis, RedisConnectionParams, str]


class RedisClientManager:
    """Owns or borrows one ``redis.asyncio`` client.

    A URL or :class:`RedisConnectionParams` yields an owned client created on
    first use and closed by :meth:`close`. A ready ``Redis`` instance is
    borrowed and left open unless ``manage_client=True``.
    """

    def __init__(
        self, connection: RedisConnectionInput, *, manage_client: bool = False
    ) -> None:
        self._client: Optional[aioredis.Redis] = None
        self._params: Optional[RedisConnectionParams] = None
        if isinstance(connection, str):
            self._params = RedisConnectionParams(url=connection)
            self.owns_client = True
        elif isinstance(connection, RedisConnectionParams):
            self._params = connection
            self.owns_client = True
        else:
            self._client = connection
            self.owns_client = manage_client

    def get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self) -> aioredis.Redis:
        params = self._params
        if params is None:
            raise RuntimeError("no redis connection configured")
        common = {
            "decode_responses": True,
            "socket_timeout": params.socket_timeout,
            "socket_connect_timeout": params.socket_timeout,
            **params.redis_options,
        }
        if params.url:
            client = aioredis.from_url(params.url, **common)
        else:
            client = aioredis.Redis(
                host=params.host,
                port=params.port,
                username=params.username,
                password=params.password,
                db=params.database,
                ssl=params.tls,
                **common,
            )
        logger.debug(
            "redis_client_created",
            url=params.url,
            host=None if params.url else params.host,
        )
        return client

    async def close(self) -> None:
        """Close the client when owned; borrowed clients stay open."""
        if not self.owns_client or self._client is None:
            return
        client = self._client
        self._client = None
        close = getattr(client, "aclose", None) or client.close
        await close()


def normalize_ttl(ttl_seconds: float) -> int:
    """Floor a TTL to whole seconds, rejecting non-positive or non-finite values."""
    if not isinstance(ttl_seconds, (int, float)) or not math.isfinite(ttl_seconds):
        raise ValueError("ttl_seconds must be a positive integer.")
    ttl = math.floor(ttl_seconds)
    if ttl <= 0:
        raise ValueError("ttl_seconds must be a positive integer.")
    return int(ttl)


__all__ = [
    "RedisClientManager",
    "RedisConnectionInput",
    "RedisConnectionParams",
    "normalize_ttl",
]
