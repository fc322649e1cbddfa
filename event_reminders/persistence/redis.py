import hashlib

from opentelemetry.instrumentation.redis import RedisInstrumentor
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    BusyLoadingError,
    ConnectionError as RedisConnectionError,
    RedisError,
)

from event_reminders.helpers.config_models.cache import RedisModel
from event_reminders.helpers.logging import logger
from event_reminders.models.readiness import ReadinessEnum
from event_reminders.persistence.icache import ICache

# Instrument redis
RedisInstrumentor().instrument()

_KEY_PREFIX = "event-reminders:"


class RedisCache(ICache):
    """
    Cache shared by all the instances of the service.

    Redis errors are logged and reported as a miss, or as a failed write. The store always falls back to the database.
    """

    _client: Redis | None = None
    _config: RedisModel

    def __init__(self, config: RedisModel):
        logger.info("Using Redis cache %s:%s", config.host, config.port)
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Redis cache.

        The server must answer a ping.
        """
        try:
            if await self._use_client().ping():
                return ReadinessEnum.OK
        except RedisError:
            logger.exception("Error requesting Redis")
        return ReadinessEnum.FAIL

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._use_client().get(self._namespaced(key)) or None
        except RedisError:
            logger.exception("Error getting value")
        return None

    async def set(
        self,
        key: str,
        ttl_sec: int,
        value: str | bytes | None,
    ) -> bool:
        """
        Set a value in the cache, expiring after `ttl_sec`.

        A `None` value is stored as an empty string, read back as a miss.
        """
        try:
            await self._use_client().set(
                ex=ttl_sec,
                name=self._namespaced(key),
                value=value or "",
            )
        except RedisError:
            logger.exception("Error setting value")
            return False
        return True

    async def delete(self, *keys: str) -> bool:
        """
        Delete values from the cache in a single round-trip.
        """
        if not keys:
            return True
        try:
            await self._use_client().delete(*(self._namespaced(key) for key in keys))
        except RedisError:
            logger.exception("Error deleting values")
            return False
        return True

    def _use_client(self) -> Redis:
        """
        Get the Redis client, created on first use.

        Connections are opened lazily by the client pool.
        """
        if not self._client:
            self._client = Redis(
                # Database location
                db=self._config.database,
                host=self._config.host,
                port=self._config.port,
                ssl=self._config.ssl,
                # Reliability
                health_check_interval=10,  # Check the health of the connection every 10 secs
                retry=Retry(backoff=ExponentialBackoff(), retries=3),
                retry_on_error=[BusyLoadingError, RedisConnectionError],
                socket_connect_timeout=5,
                socket_timeout=1,  # Respond quickly or abort, this is a cache
                # Authentication
                password=self._config.password.get_secret_value()
                if self._config.password
                else None,
            )
        return self._client

    @staticmethod
    def _namespaced(key: str) -> str:
        """
        Transform the key into a prefixed hash.

        Hashing bounds the key size, the prefix allows sharing a Redis database with other services.
        """
        return _KEY_PREFIX + hashlib.sha256(key.encode(), usedforsecurity=False).hexdigest()
