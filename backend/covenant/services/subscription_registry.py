"""Coordinating layer between callers and the subscription store.

Validates input, keeps ``next_due_at`` in step with the frequency policy, and
serializes every mutation of a given subscription id through a shared
:class:`KeyedLocks` table. Scheduler claims are recorded in the store so that
the API process and the worker process see the same in-flight claims.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from covenant.core.config import settings
from covenant.core.errors import (
    InvalidSubscriptionError,
    SubscriptionClaimedError,
    SubscriptionConflictError,
)
from covenant.core.locks import KeyedLocks
from covenant.models.shared import as_utc, generate_uuid, utc_now
from covenant.models.subscription import Subscription, SubscriptionStatus
from covenant.repositories.base import SubscriptionStore
from covenant.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionUpdate,
)
from covenant.services.frequency import next_due, parse_frequency

logger = logging.getLogger(__name__)

# Shared by every registry in the process unless one is passed explicitly.
subscription_locks = KeyedLocks()

_ID_FIELDS = ("user_id", "vendor_id", "item_id")

# Compare-and-set attempts before a write gives up on a record that keeps
# changing in another process.
_WRITE_ATTEMPTS = 5


def _require_identifier(name: str, value: str | None) -> str:
    if value is None or not value.strip():
        raise InvalidSubscriptionError(f"{name} must not be empty")
    return value.strip()


class SubscriptionRegistry:
    """Subscription CRUD plus the claim protocol used by the scheduler."""

    def __init__(
        self,
        store: SubscriptionStore,
        locks: KeyedLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
        claim_wait_seconds: float | None = None,
        claim_ttl_seconds: int | None = None,
    ):
        self.store = store
        self.locks = locks if locks is not None else subscription_locks
        self.clock = clock
        self.claim_wait_seconds = (
            settings.CLAIM_WAIT_SECONDS if claim_wait_seconds is None else claim_wait_seconds
        )
        self.claim_ttl = timedelta(
            seconds=settings.CLAIM_TTL_SECONDS if claim_ttl_seconds is None else claim_ttl_seconds
        )

    def _now(self, now: datetime | None) -> datetime:
        return as_utc(now) if now is not None else as_utc(self.clock())

    def _is_claimed(self, subscription: Subscription, now: datetime) -> bool:
        if subscription.claimed_at is None:
            return False
        return as_utc(subscription.claimed_at) >= now - self.claim_ttl  # type: ignore[arg-type]

    @staticmethod
    def _snapshot(subscription: Subscription) -> SubscriptionResponse:
        return SubscriptionResponse.model_validate(subscription)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def insert(self, data: SubscriptionCreate, now: datetime | None = None) -> SubscriptionResponse:
        """Create an active subscription, due one interval after *now*.

        Raises:
            InvalidSubscriptionError: Empty identifier or unknown frequency.
            DuplicateSubscriptionError: The id was used before.
            StoreError: Persistence failed.
        """
        ids = {name: _require_identifier(name, getattr(data, name)) for name in _ID_FIELDS}
        frequency = parse_frequency(data.frequency)
        created_at = self._now(now)

        subscription = Subscription(
            id=data.id or generate_uuid(),
            frequency=frequency.value,
            status=SubscriptionStatus.ACTIVE.value,
            last_fulfilled_at=None,
            next_due_at=next_due(frequency, created_at),
            claimed_at=None,
            created_at=created_at,
            updated_at=created_at,
            deleted_at=None,
            revision=0,
            **ids,
        )
        subscription = self.store.insert(subscription)
        logger.info(
            "Created %s subscription %s for user %s",
            frequency.value,
            subscription.id,
            subscription.user_id,
        )
        return self._snapshot(subscription)

    def get_by_id(self, subscription_id: UUID) -> SubscriptionResponse | None:
        subscription = self.store.get_by_id(subscription_id)
        return self._snapshot(subscription) if subscription is not None else None

    def get_all(self, offset: int = 0, limit: int = 0) -> list[SubscriptionResponse]:
        return [self._snapshot(s) for s in self.store.get_all(offset, limit)]

    def get_by_user(self, user_id: str, offset: int = 0, limit: int = 0) -> list[SubscriptionResponse]:
        return [self._snapshot(s) for s in self.store.get_by_user(user_id, offset, limit)]

    def get_by_vendor(
        self, vendor_id: str, offset: int = 0, limit: int = 0
    ) -> list[SubscriptionResponse]:
        return [self._snapshot(s) for s in self.store.get_by_vendor(vendor_id, offset, limit)]

    def count(self, user_id: str | None = None, vendor_id: str | None = None) -> int:
        return self.store.count(user_id=user_id, vendor_id=vendor_id)

    def update(self, subscription_id: UUID, data: SubscriptionUpdate) -> SubscriptionResponse | None:
        """Apply a partial update and recompute the next due date.

        Returns None if the subscription does not exist or was deleted. The
        write is conditional on the revision that was read; a fulfillment
        recorded meanwhile by another process triggers a re-read, so the new
        due date always starts from the latest fulfillment.

        Raises:
            SubscriptionConflictError: The record kept changing between reads.
        """
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        for name in _ID_FIELDS:
            if name in changes:
                changes[name] = _require_identifier(name, changes[name])
        if "frequency" in changes:
            changes["frequency"] = parse_frequency(changes["frequency"]).value
        if "status" in changes:
            if changes["status"] == SubscriptionStatus.DELETED:
                raise InvalidSubscriptionError("Use delete to remove a subscription")
            changes["status"] = changes["status"].value

        with self.locks.hold(subscription_id):
            for _ in range(_WRITE_ATTEMPTS):
                subscription = self.store.get_by_id(subscription_id)
                if subscription is None:
                    return None
                previous_status = subscription.status
                for key, value in changes.items():
                    setattr(subscription, key, value)
                anchor = subscription.last_fulfilled_at or subscription.created_at
                subscription.next_due_at = next_due(str(subscription.frequency), anchor)  # type: ignore[assignment]
                if self.store.update(subscription_id, subscription):
                    break
                logger.info("Subscription %s changed while updating; re-reading", subscription_id)
            else:
                raise SubscriptionConflictError(
                    f"Subscription {subscription_id} kept changing; retry later"
                )
            updated = self.store.get_by_id(subscription_id)
        if updated is None:
            return None
        if previous_status != updated.status:
            logger.info("Subscription %s %s -> %s", subscription_id, previous_status, updated.status)
        return self._snapshot(updated)

    def delete(self, subscription_id: UUID, now: datetime | None = None) -> bool:
        """Tombstone a subscription.

        Raises:
            SubscriptionClaimedError: A scheduler claim is in flight. The caller
                may retry once the claim is released.
        """
        deleted_at = self._now(now)
        with self.locks.hold(subscription_id):
            subscription = self.store.get_by_id(subscription_id)
            if subscription is None:
                return False
            if self._is_claimed(subscription, deleted_at):
                raise SubscriptionClaimedError(
                    f"Subscription {subscription_id} is being fulfilled; retry later"
                )
            deleted = self.store.delete(subscription_id, deleted_at)
        if deleted:
            logger.info("Deleted subscription %s", subscription_id)
        return deleted

    # ------------------------------------------------------------------
    # Scheduler protocol
    # ------------------------------------------------------------------

    def select_due(self, now: datetime, limit: int) -> list[SubscriptionResponse]:
        return [self._snapshot(s) for s in self.store.select_due(as_utc(now), limit)]

    def claim(self, subscription_id: UUID, now: datetime) -> tuple[SubscriptionResponse | None, bool]:
        """Take the fulfillment claim for a due subscription.

        Returns the pre-claim snapshot and True on success. Losing the race,
        waiting too long for the id lock, or the subscription no longer being
        active and due all return ``(None, False)``.
        """
        now = as_utc(now)
        with self.locks.hold(subscription_id, timeout=self.claim_wait_seconds) as acquired:
            if not acquired:
                logger.debug("Claim on %s timed out waiting for lock", subscription_id)
                return None, False
            subscription = self.store.get_by_id(subscription_id)
            if subscription is None or subscription.status != SubscriptionStatus.ACTIVE.value:
                return None, False
            if as_utc(subscription.next_due_at) > now:  # type: ignore[arg-type]
                return None, False
            snapshot = self._snapshot(subscription)
            if not self.store.try_claim(subscription_id, now, now - self.claim_ttl):
                return None, False
            if snapshot.claimed_at is not None:
                logger.warning(
                    "Took over stale claim on %s from %s", subscription_id, snapshot.claimed_at
                )
            return snapshot, True

    def release(self, subscription_id: UUID, last_fulfilled_at: datetime) -> SubscriptionResponse | None:
        """Record a fulfillment at *last_fulfilled_at* and drop the claim.

        Advancing the schedule and clearing the claim is a single store write,
        so a failure leaves the subscription claimed and still due. The next
        due date is computed from the frequency stored now; an update that
        lands in between makes the write miss and the frequency is re-read.

        Returns None if the subscription was deleted or its claim was already
        completed or dropped elsewhere.

        Raises:
            SubscriptionConflictError: The record kept changing between reads.
        """
        fulfilled_at = as_utc(last_fulfilled_at)
        with self.locks.hold(subscription_id):
            for _ in range(_WRITE_ATTEMPTS):
                subscription = self.store.get_by_id(subscription_id)
                if subscription is None:
                    return None
                if subscription.claimed_at is None:
                    logger.warning("Claim on %s was gone before release", subscription_id)
                    return None
                due = next_due(str(subscription.frequency), fulfilled_at)
                if self.store.complete_claim(
                    subscription_id, fulfilled_at, due, subscription.revision  # type: ignore[arg-type]
                ):
                    break
            else:
                raise SubscriptionConflictError(
                    f"Subscription {subscription_id} kept changing; retry later"
                )
            subscription = self.store.get_by_id(subscription_id)
        return self._snapshot(subscription) if subscription is not None else None

    def abort(self, subscription_id: UUID) -> None:
        """Drop a claim without recording a fulfillment."""
        with self.locks.hold(subscription_id):
            self.store.clear_claim(subscription_id)
