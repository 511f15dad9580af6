"""Fulfillment scheduler: one tick selects, claims, advances and emits."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from covenant.core.config import settings
from covenant.core.errors import (
    EventSinkError,
    InvalidSubscriptionError,
    StoreError,
    SubscriptionConflictError,
)
from covenant.models.shared import as_utc, utc_now
from covenant.schemas.fulfillment import FulfillmentEvent
from covenant.services.event_sink import EventSink
from covenant.services.subscription_registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

# Failures on one candidate that must not stop the rest of the batch.
_ISOLATED_ERRORS = (
    StoreError,
    EventSinkError,
    InvalidSubscriptionError,
    SubscriptionConflictError,
)


@dataclass
class TickFailure:
    subscription_id: UUID | None
    stage: str
    error: str


@dataclass
class TickResult:
    """Outcome of a single tick."""

    now: datetime
    selected: int = 0
    fired: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    deferred: int = 0
    failures: list[TickFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class SubscriptionScheduler:
    """Drives fulfillment of due subscriptions.

    Example:
        registry = SubscriptionRegistry(SubscriptionRepository(db))
        scheduler = SubscriptionScheduler(registry, build_event_sink(db))
        result = scheduler.tick()

    Ticks may overlap (a slow tick and the next cron run, or the worker and
    the HTTP trigger); the registry's claim keeps each due subscription from
    firing twice.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        sink: EventSink,
        batch_limit: int | None = None,
        deadline_seconds: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.sink = sink
        self.batch_limit = batch_limit or settings.SCHEDULER_BATCH_LIMIT
        self.deadline_seconds = deadline_seconds
        self._monotonic = monotonic

    def tick(self, now: datetime | None = None) -> TickResult:
        """Fulfill every subscription due at *now* (defaults to the current time)."""
        now = as_utc(now) if now is not None else utc_now()
        result = TickResult(now=now)

        try:
            candidates = self.registry.select_due(now, self.batch_limit)
        except StoreError as exc:
            logger.exception("Could not select due subscriptions")
            result.failures.append(TickFailure(None, "select", str(exc)))
            return result

        result.selected = len(candidates)
        if not candidates:
            return result

        deadline = None
        if self.deadline_seconds is not None:
            deadline = self._monotonic() + self.deadline_seconds

        for index, candidate in enumerate(candidates):
            if deadline is not None and self._monotonic() >= deadline:
                result.deferred = len(candidates) - index
                logger.warning(
                    "Tick deadline reached; deferred %d subscription(s) to the next tick",
                    result.deferred,
                )
                break
            self._fulfill(candidate.id, now, result)

        logger.info(
            "Tick at %s: %d due, %d fired, %d skipped, %d deferred, %d failed",
            now.isoformat(),
            result.selected,
            len(result.fired),
            len(result.skipped),
            result.deferred,
            len(result.failures),
        )
        return result

    def _fulfill(self, subscription_id: UUID, now: datetime, result: TickResult) -> None:
        try:
            snapshot, claimed = self.registry.claim(subscription_id, now)
        except _ISOLATED_ERRORS as exc:
            logger.exception("Claim failed for subscription %s", subscription_id)
            result.failures.append(TickFailure(subscription_id, "claim", str(exc)))
            return

        if not claimed or snapshot is None:
            result.skipped.append(subscription_id)
            return

        try:
            released = self.registry.release(subscription_id, now)
        except _ISOLATED_ERRORS as exc:
            logger.exception("Could not advance subscription %s", subscription_id)
            result.failures.append(TickFailure(subscription_id, "release", str(exc)))
            self._abort(subscription_id)
            return

        if released is None:
            # Deleted, or the claim was completed elsewhere; nothing to deliver.
            result.skipped.append(subscription_id)
            return

        event = FulfillmentEvent(
            subscription_id=subscription_id,
            user_id=released.user_id,
            vendor_id=released.vendor_id,
            item_id=released.item_id,
            fired_at=now,
        )
        try:
            self.sink.emit(event)
        except EventSinkError as exc:
            logger.exception("Fulfillment event for %s was not delivered", subscription_id)
            result.failures.append(TickFailure(subscription_id, "emit", str(exc)))
            return

        result.fired.append(subscription_id)

    def _abort(self, subscription_id: UUID) -> None:
        try:
            self.registry.abort(subscription_id)
        except StoreError:
            logger.exception(
                "Could not drop claim on %s; it will expire after the claim TTL", subscription_id
            )
