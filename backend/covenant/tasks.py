from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from covenant.core.config import settings

# Shared by the API (enqueueing) and the worker (consuming)
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Open a new arq connection pool; the caller closes it."""
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job:
    """Queue *task_name* on the worker with the given arguments.

    A pool is opened per call and closed again even if enqueueing fails.

    Returns:
        The arq Job handle.
    """
    pool = await get_redis_pool()
    try:
        job = await pool.enqueue_job(task_name, *args, **kwargs)
        return job  # type: ignore[return-value]
    finally:
        await pool.close()


async def enqueue_fulfillment_tick() -> Job:
    """Queue a scheduler tick outside the cron cadence."""
    return await enqueue_task("fulfill_due_subscriptions_task")
