from redis.asyncio import Redis as AsyncRedis

from ..settings import settings

KEY_PREFIX = "mealplanner"

_redis_async: AsyncRedis | None = None


def redis_url() -> str:
    return settings.redis_url


def key(*parts: str) -> str:
    return ":".join((KEY_PREFIX, *parts))


async def get_redis() -> AsyncRedis:
    global _redis_async
    if _redis_async is None:
        _redis_async = AsyncRedis.from_url(redis_url(), decode_responses=True)
    return _redis_async


def set_redis(client: AsyncRedis | None) -> None:
    global _redis_async
    _redis_async = client
