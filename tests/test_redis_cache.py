"""Tests of the redis cache of retrieval results and embeddings"""

import unittest

import redis.asyncio as redis
from pydantic import TypeAdapter

from reading_tutor.config.config import CacheSettings
from reading_tutor.stores.redis_cache import RedisCache
from reading_tutor.stores.retrieval import RetrievalResult

from tests.test_mocks import USER_ID, MockRedis, make_source

# pyright: basic

LOGGER = "reading_tutor.stores.redis_cache"


def result_cache(client: MockRedis, ttl_seconds: int = 60):
    return RedisCache(
        client,  # type: ignore
        "retrieval",
        TypeAdapter(RetrievalResult),
        ttl_seconds,
    )


class TestRedisCache(unittest.IsolatedAsyncioTestCase):

    async def test_get_set(self):
        client = MockRedis()
        cache = result_cache(client)
        result = RetrievalResult(sources=[make_source()])
        key = ("entropy", USER_ID, (), None, "fast", 5)

        self.assertIsNone(await cache.get(key))
        self.assertTrue(await cache.set(key, result))
        self.assertEqual(await cache.get(key), result)

        (name,) = client.data
        self.assertTrue(name.startswith("retrieval:"))
        self.assertEqual(client.ttls[name], 60)

    async def test_keys(self):
        cache = result_cache(MockRedis())
        self.assertEqual(
            cache.make_key(("entropy", 5)), cache.make_key(("entropy", 5))
        )
        self.assertNotEqual(
            cache.make_key(("entropy", 5)), cache.make_key(("entropy", 3))
        )

    async def test_list_values(self):
        cache: RedisCache[list[float]] = RedisCache(
            MockRedis(),  # type: ignore
            "embedding",
            TypeAdapter(list[float]),
        )
        await cache.set("entropy", [0.5, 0.25])
        self.assertEqual(await cache.get("entropy"), [0.5, 0.25])

    async def test_corrupted_entry_dropped(self):
        client = MockRedis()
        cache = result_cache(client)
        client.data[cache.make_key("entropy")] = "not json"
        with self.assertLogs(LOGGER, "WARNING"):
            self.assertIsNone(await cache.get("entropy"))
        self.assertEqual(client.data, {})
        self.assertTrue(cache.enabled)

    async def test_unreachable_server_disables(self):
        client = MockRedis(exception=redis.ConnectionError("refused"))
        cache = result_cache(client)
        with self.assertLogs(LOGGER, "WARNING"):
            self.assertIsNone(await cache.get("entropy"))
        self.assertFalse(cache.enabled)

        client.exception = None
        self.assertFalse(
            await cache.set("entropy", RetrievalResult())
        )
        self.assertEqual(client.data, {})

    async def test_ping(self):
        cache = result_cache(MockRedis())
        self.assertTrue(await cache.ping())
        failing = result_cache(
            MockRedis(exception=redis.ConnectionError("refused"))
        )
        with self.assertLogs(LOGGER, "WARNING"):
            self.assertFalse(await failing.ping())
        self.assertFalse(failing.enabled)

    async def test_clear_namespace(self):
        client = MockRedis()
        cache = result_cache(client)
        await cache.set("a", RetrievalResult())
        await cache.set("b", RetrievalResult())
        client.data["embedding:other"] = "[]"

        self.assertEqual(await cache.clear(), 2)
        self.assertEqual(list(client.data), ["embedding:other"])

    async def test_invalid_parameters(self):
        with self.assertRaises(ValueError):
            result_cache(MockRedis(), ttl_seconds=0)
        with self.assertRaises(ValueError):
            RedisCache(
                MockRedis(),  # type: ignore
                "",
                TypeAdapter(RetrievalResult),
            )

    async def test_from_settings(self):
        self.assertIsNone(
            RedisCache.from_settings(
                CacheSettings(enabled=False),
                "retrieval",
                TypeAdapter(RetrievalResult),
            )
        )

        cache = RedisCache.from_settings(
            CacheSettings(ttl_seconds=120),
            "retrieval",
            TypeAdapter(RetrievalResult),
        )
        assert cache is not None
        self.assertEqual(cache.ttl_seconds, 120)
        self.assertTrue(cache.enabled)
        await cache.close()

    async def test_from_settings_invalid_url(self):
        with self.assertLogs(LOGGER, "ERROR"):
            cache = RedisCache.from_settings(
                CacheSettings(url="http://localhost"),
                "retrieval",
                TypeAdapter(RetrievalResult),
            )
        self.assertIsNone(cache)


if __name__ == "__main__":
    unittest.main()
