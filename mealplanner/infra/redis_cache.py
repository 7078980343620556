import json
import logging

from redis.exceptions import RedisError

from .redis_client import get_redis, key

logger = logging.getLogger("mealplanner.cache")


async def get_json(cache_key: str):
    r = await get_redis()
    raw = await r.get(cache_key)
    return json.loads(raw) if raw else None


async def set_json(cache_key: str, value, ttl_sec: int):
    r = await get_redis()
    await r.set(cache_key, json.dumps(value), ex=ttl_sec)


def job_status_key(job_id: str) -> str:
    return key("job-status", job_id)


# Only terminal payloads are cached; they never change again.
# Cache trouble degrades to a store read, it never fails the request.

async def get_cached_job_status(job_id: str):
    try:
        return await get_json(job_status_key(job_id))
    except (RedisError, OSError) as e:
        logger.warning(f"Status cache read failed for {job_id}: {e}")
        return None


async def cache_job_status(job_id: str, payload: dict, ttl_sec: int) -> None:
    try:
        await set_json(job_status_key(job_id), payload, ttl_sec)
    except (RedisError, OSError) as e:
        logger.warning(f"Status cache write failed for {job_id}: {e}")
