from functools import lru_cache

from redis.asyncio import Redis as AsyncRedis

from app.core.settings import get_settings


@lru_cache(maxsize=4)
def get_async_redis(url: str | None = None) -> AsyncRedis:
    """One shared client per URL; both storage scopes reuse it with different key prefixes."""
    return AsyncRedis.from_url(url or get_settings().redis_url, decode_responses=True)
