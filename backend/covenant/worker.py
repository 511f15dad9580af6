import logging
from typing import Any

from arq import cron

from covenant.core.config import settings
from covenant.core.database import SessionLocal
from covenant.repositories.subscription_repository import SubscriptionRepository
from covenant.services.event_sink import build_event_sink
from covenant.services.scheduler import SubscriptionScheduler
from covenant.services.subscription_registry import SubscriptionRegistry
from covenant.tasks import redis_settings

logger = logging.getLogger(__name__)


async def fulfill_due_subscriptions_task(ctx: dict[str, Any]) -> int:
    """Background task: fire fulfillment events for every due subscription.

    Runs every SCHEDULER_TICK_MINUTES. Candidates left over when the tick
    deadline passes are picked up by the next run.

    Returns:
        Number of subscriptions fulfilled.
    """
    db = SessionLocal()
    try:
        scheduler = SubscriptionScheduler(
            SubscriptionRegistry(SubscriptionRepository(db)),
            build_event_sink(db),
            deadline_seconds=settings.SCHEDULER_TICK_DEADLINE_SECONDS,
        )
        result = scheduler.tick()
        if result.failures:
            logger.warning(
                "Fulfillment tick finished with %d failure(s)", len(result.failures)
            )
        return len(result.fired)
    finally:
        db.close()


def _tick_minutes() -> set[int]:
    step = max(1, settings.SCHEDULER_TICK_MINUTES)
    return set(range(0, 60, step))


class WorkerSettings:
    functions = [
        fulfill_due_subscriptions_task,
    ]
    cron_jobs = [
        cron(fulfill_due_subscriptions_task, minute=_tick_minutes()),
    ]
    redis_settings = redis_settings
