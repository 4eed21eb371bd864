import logging

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..settings import get_settings

logger = logging.getLogger(__name__)

REDIS_ERRORS = (RedisConnectionError, RedisTimeoutError)


class RedisCrudService:
    """String get/set/delete on Redis.

    While disconnected every call is a miss. Redis failures are logged and
    reported as ``None`` (get) or ``False`` (set, delete).
    """

    def __init__(self, url: str) -> None:
        self._url = url
        self._client: Redis | None = None

    @property
    def display_url(self) -> str:
        """The URL without credentials, for logs."""
        return self._url.split("@")[-1]

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the client and ping it. Idempotent."""
        if self._client is not None:
            return
        client = Redis.from_url(self._url, decode_responses=True)
        try:
            await client.ping()
        except REDIS_ERRORS as e:
            logger.warning("Redis at %s unreachable: %s", self.display_url, e)
            await client.aclose()
            raise
        self._client = client
        logger.info("Redis connected: %s", self.display_url)

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
            logger.debug("Redis connection closed")

    async def get(self, key: str) -> str | None:
        client = self._client
        if client is None:
            return None
        try:
            value = await client.get(key)
        except REDIS_ERRORS as e:
            logger.warning("Redis GET %s: %s", key, e)
            return None
        return None if value is None else str(value)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """Store ``value``; a positive ``ttl_seconds`` makes the key expire."""
        client = self._client
        if client is None:
            return False
        try:
            if ttl_seconds and ttl_seconds > 0:
                await client.setex(key, ttl_seconds, value)
            else:
                await client.set(key, value)
        except REDIS_ERRORS as e:
            logger.warning("Redis SET %s: %s", key, e)
            return False
        return True

    async def delete(self, key: str) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            await client.delete(key)
        except REDIS_ERRORS as e:
            logger.warning("Redis DEL %s: %s", key, e)
            return False
        return True


def get_redis_crud_service() -> RedisCrudService | None:
    """Build the service from ``redis_url``; None when it is unset."""
    url = (get_settings().redis_url or "").strip()
    return RedisCrudService(url) if url else None
