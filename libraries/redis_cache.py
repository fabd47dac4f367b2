"""
WEBCORE - Redis Cache Library

JSON value cache on redis.asyncio, registered as ``cache:redis``.
"""
import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from config import RedisConfig
from core.errors import LibraryContractError
from core.library import Connector, InstallParams, Library


logger = logging.getLogger("webcore.libraries.redis_cache")


class RedisCache(Library, Connector):
    """Key/value cache with per-entry TTL and a shared key prefix."""

    def __init__(self):
        self.config: Optional[RedisConfig] = None
        self._redis: Optional[Redis] = None

    async def install(self, params: InstallParams) -> None:
        if not isinstance(params.config, RedisConfig):
            raise LibraryContractError(
                f"cache:redis expects RedisConfig, got {type(params.config).__name__}",
                library="cache:redis",
                offending_type=type(params.config),
            )
        self.config = params.config

    async def connect(self) -> None:
        self._redis = aioredis.from_url(
            self.config.url,
            max_connections=self.config.max_connections,
            decode_responses=True,
        )
        try:
            await self._redis.ping()
        except RedisError:
            await self._redis.aclose()
            self._redis = None
            raise
        logger.info(f"Redis cache connected to {self.config.host}:{self.config.port}/{self.config.db}")

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis cache connection closed")

    async def uninstall(self) -> None:
        self.config = None

    @property
    def client(self) -> Optional[Redis]:
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.config.key_prefix}{key}"

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """
        Store a JSON-serializable value.

        Args:
            key: Cache key, without the configured prefix
            value: Value to store
            ttl: Seconds to live; the configured default when None, no
                expiry when 0
        """
        ttl = self.config.default_ttl if ttl is None else ttl
        payload = json.dumps(value, default=str)
        if ttl > 0:
            await self._redis.set(self._key(key), payload, ex=ttl)
        else:
            await self._redis.set(self._key(key), payload)

    async def delete(self, key: str) -> bool:
        return bool(await self._redis.delete(self._key(key)))

    async def exists(self, key: str) -> bool:
        return bool(await self._redis.exists(self._key(key)))
