"""Process-local subscription store.

Holds detached copies of Subscription rows in a dict. Useful for embedding
the scheduler without a database and for exercising the registry from many
threads at once.
"""

from datetime import datetime
from threading import Lock
from uuid import UUID

from covenant.core.errors import DuplicateSubscriptionError
from covenant.models.shared import as_utc, generate_uuid, utc_now
from covenant.models.subscription import Subscription, SubscriptionStatus
from covenant.repositories.base import SubscriptionStore, normalize_page

_COLUMNS = tuple(column.key for column in Subscription.__table__.columns)
_EDITABLE_FIELDS = ("user_id", "vendor_id", "item_id", "frequency", "status", "next_due_at")


def _clone(subscription: Subscription) -> Subscription:
    return Subscription(**{name: getattr(subscription, name) for name in _COLUMNS})


class InMemorySubscriptionStore(SubscriptionStore):
    def __init__(self) -> None:
        self._rows: dict[UUID, Subscription] = {}
        self._lock = Lock()

    def _live_sorted(self) -> list[Subscription]:
        rows = [r for r in self._rows.values() if r.status != SubscriptionStatus.DELETED.value]
        rows.sort(key=lambda r: (as_utc(r.created_at), str(r.id)))
        return rows

    def _page(self, rows: list[Subscription], offset: int, limit: int) -> list[Subscription]:
        offset, limit = normalize_page(offset, limit)
        return [_clone(r) for r in rows[offset : offset + limit]]

    def insert(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription.id is None:
                subscription.id = generate_uuid()  # type: ignore[assignment]
            if subscription.id in self._rows:
                raise DuplicateSubscriptionError(f"Subscription {subscription.id} already exists")
            now = utc_now()
            if subscription.created_at is None:
                subscription.created_at = now  # type: ignore[assignment]
            if subscription.updated_at is None:
                subscription.updated_at = now  # type: ignore[assignment]
            if subscription.status is None:
                subscription.status = SubscriptionStatus.ACTIVE.value  # type: ignore[assignment]
            if subscription.revision is None:
                subscription.revision = 0  # type: ignore[assignment]
            self._rows[subscription.id] = _clone(subscription)  # type: ignore[index]
        return subscription

    def get_by_id(self, subscription_id: UUID) -> Subscription | None:
        with self._lock:
            row = self._rows.get(subscription_id)
            if row is None or row.status == SubscriptionStatus.DELETED.value:
                return None
            return _clone(row)

    def get_all(self, offset: int = 0, limit: int = 0) -> list[Subscription]:
        with self._lock:
            return self._page(self._live_sorted(), offset, limit)

    def get_by_vendor(self, vendor_id: str, offset: int = 0, limit: int = 0) -> list[Subscription]:
        with self._lock:
            rows = [r for r in self._live_sorted() if r.vendor_id == vendor_id]
            return self._page(rows, offset, limit)

    def get_by_user(self, user_id: str, offset: int = 0, limit: int = 0) -> list[Subscription]:
        with self._lock:
            rows = [r for r in self._live_sorted() if r.user_id == user_id]
            return self._page(rows, offset, limit)

    def count(self, user_id: str | None = None, vendor_id: str | None = None) -> int:
        with self._lock:
            return sum(
                1
                for r in self._live_sorted()
                if (user_id is None or r.user_id == user_id)
                and (vendor_id is None or r.vendor_id == vendor_id)
            )

    def update(self, subscription_id: UUID, subscription: Subscription) -> bool:
        with self._lock:
            existing = self._rows.get(subscription_id)
            if existing is None or existing.status == SubscriptionStatus.DELETED.value:
                return False
            if existing.revision != subscription.revision:
                return False
            for name in _EDITABLE_FIELDS:
                setattr(existing, name, getattr(subscription, name))
            existing.revision += 1  # type: ignore[assignment]
            existing.updated_at = utc_now()  # type: ignore[assignment]
            return True

    def delete(self, subscription_id: UUID, deleted_at: datetime) -> bool:
        with self._lock:
            existing = self._rows.get(subscription_id)
            if existing is None or existing.status == SubscriptionStatus.DELETED.value:
                return False
            existing.status = SubscriptionStatus.DELETED.value  # type: ignore[assignment]
            existing.deleted_at = deleted_at  # type: ignore[assignment]
            existing.claimed_at = None  # type: ignore[assignment]
            existing.updated_at = utc_now()  # type: ignore[assignment]
            return True

    def select_due(self, now: datetime, limit: int) -> list[Subscription]:
        now = as_utc(now)
        with self._lock:
            due = [
                r
                for r in self._rows.values()
                if r.status == SubscriptionStatus.ACTIVE.value and as_utc(r.next_due_at) <= now
            ]
            due.sort(key=lambda r: (as_utc(r.next_due_at), str(r.id)))
            return [_clone(r) for r in due[:limit]]

    def try_claim(self, subscription_id: UUID, claimed_at: datetime, stale_before: datetime) -> bool:
        with self._lock:
            row = self._rows.get(subscription_id)
            if row is None or row.status != SubscriptionStatus.ACTIVE.value:
                return False
            if as_utc(row.next_due_at) > as_utc(claimed_at):
                return False
            if row.claimed_at is not None and as_utc(row.claimed_at) >= as_utc(stale_before):
                return False
            row.claimed_at = claimed_at  # type: ignore[assignment]
            return True

    def complete_claim(
        self,
        subscription_id: UUID,
        last_fulfilled_at: datetime,
        next_due_at: datetime,
        revision: int,
    ) -> bool:
        with self._lock:
            row = self._rows.get(subscription_id)
            if row is None or row.status == SubscriptionStatus.DELETED.value:
                return False
            if row.claimed_at is None or row.revision != revision:
                return False
            row.last_fulfilled_at = last_fulfilled_at  # type: ignore[assignment]
            row.next_due_at = next_due_at  # type: ignore[assignment]
            row.claimed_at = None  # type: ignore[assignment]
            row.revision += 1  # type: ignore[assignment]
            row.updated_at = utc_now()  # type: ignore[assignment]
            return True

    def clear_claim(self, subscription_id: UUID) -> None:
        with self._lock:
            row = self._rows.get(subscription_id)
            if row is not None:
                row.claimed_at = None  # type: ignore[assignment]
