from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from covenant.core.config import settings
from covenant.core.database import get_db
from covenant.repositories.subscription_repository import SubscriptionRepository
from covenant.schemas.scheduler import TickEnqueuedResponse, TickFailureResponse, TickResponse
from covenant.services.event_sink import build_event_sink
from covenant.services.scheduler import SubscriptionScheduler, TickResult
from covenant.services.subscription_registry import SubscriptionRegistry
from covenant.tasks import enqueue_fulfillment_tick

router = APIRouter()


def tick_response(result: TickResult) -> TickResponse:
    return TickResponse(
        now=result.now,
        selected=result.selected,
        fired=result.fired,
        skipped=result.skipped,
        deferred=result.deferred,
        failures=[
            TickFailureResponse(
                subscription_id=failure.subscription_id,
                stage=failure.stage,
                error=failure.error,
            )
            for failure in result.failures
        ],
    )


@router.post(
    "/tick",
    response_model=TickResponse,
    summary="Run a fulfillment tick",
    responses={202: {"model": TickEnqueuedResponse, "description": "Tick queued on the worker"}},
)
async def run_tick(
    defer: bool = Query(default=False, description="Queue the tick on the worker instead"),
    db: Session = Depends(get_db),
) -> TickResponse | JSONResponse:
    """Fulfill every subscription that is due right now.

    Safe to call while the cron tick is running: each subscription is
    claimed before it fires.
    """
    if defer:
        job = await enqueue_fulfillment_tick()
        body = TickEnqueuedResponse(job_id=job.job_id)
        return JSONResponse(status_code=202, content=body.model_dump())

    scheduler = SubscriptionScheduler(
        SubscriptionRegistry(SubscriptionRepository(db)),
        build_event_sink(db),
        deadline_seconds=settings.SCHEDULER_TICK_DEADLINE_SECONDS,
    )
    return tick_response(scheduler.tick())
