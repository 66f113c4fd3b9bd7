from __future__ import annotations

import copy
from typing import Any, Protocol

import orjson
from redis.asyncio import Redis as AsyncRedis


def _dumps(data: Any) -> str:
    return orjson.dumps(data).decode("utf-8")


def _loads(raw: str | bytes | None, default: Any) -> Any:
    if not raw:
        return default
    return orjson.loads(raw)


class KeyValueStore(Protocol):
    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local store; values are copied in and out like a real backend would."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self.writes = 0

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self.writes += 1

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class RedisKeyValueStore:
    def __init__(self, redis: AsyncRedis, prefix: str) -> None:
        self.redis = redis
        self.prefix = prefix

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self.redis.get(self._key(key))
        return _loads(raw, default)

    async def set(self, key: str, value: Any) -> None:
        await self.redis.set(self._key(key), _dumps(value))

    async def remove(self, key: str) -> None:
        await self.redis.delete(self._key(key))

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"
