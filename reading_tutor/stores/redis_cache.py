"""
Redis cache of retrieval results and query embeddings.

Values are serialized to JSON through a pydantic `TypeAdapter` and
stored with an expiry (`SETEX`), under keys of the form
`<namespace>:<sha256 of the key>`. The key may be any JSON-encodable
value, for example the tuple of the search parameters.

The cache never makes a search fail: when the server cannot be
reached the error is logged, the cache disables itself, and the
callers run the uncached search.

```python
cache = RedisCache.from_settings(
    settings.cache, "retrieval", TypeAdapter(RetrievalResult)
)
if cache is not None:
    await cache.set(("entropy", user_id), result)
    cached = await cache.get(("entropy", user_id))
```
"""

import hashlib
import json
import logging
from typing import Any, Generic, TypeVar

import redis.asyncio as redis
from pydantic import TypeAdapter, ValidationError

from ..config.config import CacheSettings

V = TypeVar("V")

default_logger = logging.getLogger(__name__)


class RedisCache(Generic[V]):
    """Expiring cache of values of one type in a namespace of a
    redis database."""

    def __init__(
        self,
        client: redis.Redis,
        namespace: str,
        adapter: TypeAdapter[V],
        ttl_seconds: int = 3600,
        logger: logging.Logger = default_logger,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if not namespace:
            raise ValueError("namespace must not be empty")
        self.client = client
        self.namespace = namespace
        self.adapter = adapter
        self.ttl_seconds = ttl_seconds
        self.logger = logger
        self.enabled = True

    @classmethod
    def from_settings(
        cls,
        settings: CacheSettings,
        namespace: str,
        adapter: TypeAdapter[V],
        logger: logging.Logger = default_logger,
    ) -> 'RedisCache[V] | None':
        """Create the cache from the cache settings, or return None
        if caching is disabled."""
        if not settings.enabled:
            logger.info("Cache is disabled in config.")
            return None
        try:
            client = redis.from_url(
                settings.url,
                decode_responses=True,
                socket_connect_timeout=settings.timeout_seconds,
                socket_timeout=settings.timeout_seconds,
            )
        except ValueError as e:
            logger.error(f"Invalid redis url '{settings.url}': {e}")
            return None
        return cls(
            client, namespace, adapter, settings.ttl_seconds, logger
        )

    def make_key(self, key: Any) -> str:
        encoded = json.dumps(key, ensure_ascii=False, default=str)
        digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()
        return f"{self.namespace}:{digest}"

    def _disable(self, e: Exception) -> None:
        self.logger.warning(
            f"Redis cache '{self.namespace}' unavailable, "
            f"running without cache: {e}"
        )
        self.enabled = False

    async def ping(self) -> bool:
        """Test the connection. The cache is disabled if the server
        does not answer."""
        try:
            await self.client.ping()
        except redis.RedisError as e:
            self._disable(e)
            return False
        return True

    async def get(self, key: Any) -> V | None:
        if not self.enabled:
            return None
        name = self.make_key(key)
        try:
            data = await self.client.get(name)
        except redis.ConnectionError as e:
            self._disable(e)
            return None
        except redis.RedisError as e:
            self.logger.warning(f"Cache read failed: {e}")
            return None
        if data is None:
            return None

        try:
            return self.adapter.validate_json(data)
        except ValidationError as e:
            self.logger.warning(f"Dropping corrupted cache entry: {e}")
            try:
                await self.client.delete(name)
            except redis.RedisError as e:
                self.logger.warning(f"Cache delete failed: {e}")
            return None

    async def set(self, key: Any, value: V) -> bool:
        if not self.enabled:
            return False
        data = self.adapter.dump_json(value).decode("utf-8")
        try:
            await self.client.setex(
                self.make_key(key), self.ttl_seconds, data
            )
        except redis.ConnectionError as e:
            self._disable(e)
            return False
        except redis.RedisError as e:
            self.logger.warning(f"Cache write failed: {e}")
            return False
        return True

    async def clear(self) -> int:
        """Delete all entries of the namespace. Returns the number of
        deleted entries."""
        if not self.enabled:
            return 0
        try:
            names = [
                name
                async for name in self.client.scan_iter(
                    match=f"{self.namespace}:*"
                )
            ]
            if not names:
                return 0
            return int(await self.client.delete(*names))
        except redis.RedisError as e:
            self.logger.warning(f"Cache clear failed: {e}")
            return 0

    async def close(self) -> None:
        await self.client.aclose()
