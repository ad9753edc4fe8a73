"""Shared key-value cache for categorization results."""

from abc import ABC, abstractmethod

from redis.asyncio import Redis


class KeyValueCache(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def setex(self, key: str, ttl_seconds: int, value: str) -> None: ...

    async def close(self) -> None:
        return None


class RedisCache(KeyValueCache):
    """KeyValueCache over redis.asyncio. Values are stored as UTF-8 strings."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._client.setex(key, ttl_seconds, value)

    async def close(self) -> None:
        await self._client.aclose()
