import asyncio

import pytest
from pydantic import ValidationError
from pytest_assume.plugin import assume

from event_reminders.helpers.config_models.cache import (
    CacheModel,
    MemoryModel,
    ModeEnum as CacheModeEnum,
    RedisModel,
)
from event_reminders.persistence.memory import MemoryCache
from event_reminders.persistence.redis import RedisCache


@pytest.mark.asyncio(loop_scope="session")
@pytest.mark.repeat(10)  # Catch multi-threading and concurrency issues
async def test_acid(random_text: str) -> None:
    """
    Test ACID properties of the cache backend.

    Steps:
    1. Create a mock data
    2. Test not exists
    3. Insert test data
    4. Check it exists
    5. Delete it
    6. Check it does not exist anymore

    Test is repeated 10 times to catch multi-threading and concurrency issues.
    """
    cache = MemoryCache(MemoryModel())

    # Init values
    test_key = random_text
    test_value = "lorem ipsum"

    # Check not exists
    assume(not await cache.get(test_key))

    # Insert test value
    await cache.set(
        key=test_key,
        ttl_sec=60,
        value=test_value,
    )

    # Check point read
    assume(await cache.get(test_key) == test_value.encode())

    # Delete, with a missing key
    await cache.delete(test_key, f"{test_key}-missing")
    assume(not await cache.get(test_key))


@pytest.mark.asyncio(loop_scope="session")
async def test_ttl(random_text: str) -> None:
    """
    Test an entry is not returned after its TTL.
    """
    cache = MemoryCache(MemoryModel())

    await cache.set(
        key=random_text,
        ttl_sec=1,
        value="lorem ipsum",
    )
    assume(await cache.get(random_text) == b"lorem ipsum")

    await asyncio.sleep(1.1)
    assume(not await cache.get(random_text))


@pytest.mark.asyncio(loop_scope="session")
async def test_lru_eviction() -> None:
    """
    Test the least recently used entry is evicted when the cache is full.

    Steps:
    1. Fill the cache
    2. Read the first entry, it becomes the most recently used
    3. Add one more entry
    4. Check the second entry was evicted, not the first one
    """
    cache = MemoryCache(MemoryModel(max_size=10))
    for i in range(10):
        await cache.set(key=f"key-{i}", ttl_sec=60, value=str(i))

    assume(await cache.get("key-0") == b"0")
    await cache.set(key="key-10", ttl_sec=60, value="10")

    assume(await cache.get("key-0") == b"0")
    assume(not await cache.get("key-1"))
    assume(await cache.get("key-10") == b"10")


@pytest.mark.asyncio(loop_scope="session")
async def test_instances_isolated(random_text: str) -> None:
    first = MemoryCache(MemoryModel())
    second = MemoryCache(MemoryModel())

    await first.set(key=random_text, ttl_sec=60, value="lorem ipsum")

    assume(await first.get(random_text))
    assume(not await second.get(random_text))


def test_mode_config() -> None:
    """
    Test the cache backend follows the configured mode, and the mode requires its section.
    """
    memory = CacheModel()
    assume(isinstance(memory.instance, MemoryCache))

    redis = CacheModel(
        mode=CacheModeEnum.REDIS,
        redis=RedisModel(host="localhost", ssl=False),
    )
    assume(isinstance(redis.instance, RedisCache))

    with pytest.raises(ValidationError):
        CacheModel(mode=CacheModeEnum.REDIS)
