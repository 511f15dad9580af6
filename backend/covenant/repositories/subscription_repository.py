from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from covenant.core.errors import DuplicateSubscriptionError, StoreError
from covenant.models.shared import utc_now
from covenant.models.subscription import Subscription, SubscriptionStatus
from covenant.repositories.base import SubscriptionStore, normalize_page

_EDITABLE_FIELDS = (
    "user_id",
    "vendor_id",
    "item_id",
    "frequency",
    "status",
    "next_due_at",
)


class SubscriptionRepository(SubscriptionStore):
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError(f"Subscription store failure: {exc}") from exc

    def _live(self) -> "Query[Subscription]":
        return self.db.query(Subscription).filter(
            Subscription.status != SubscriptionStatus.DELETED.value
        )

    def _page(self, query: "Query[Subscription]", offset: int, limit: int) -> list[Subscription]:
        offset, limit = normalize_page(offset, limit)
        with self._guard():
            return (
                query.order_by(Subscription.created_at.asc(), Subscription.id.asc())
                .offset(offset)
                .limit(limit)
                .all()
            )

    def insert(self, subscription: Subscription) -> Subscription:
        with self._guard():
            if subscription.id is not None and self.db.get(Subscription, subscription.id):
                raise DuplicateSubscriptionError(f"Subscription {subscription.id} already exists")
            self.db.add(subscription)
            self.db.commit()
            self.db.refresh(subscription)
        return subscription

    def get_by_id(self, subscription_id: UUID) -> Subscription | None:
        with self._guard():
            return self._live().filter(Subscription.id == subscription_id).first()

    def get_all(self, offset: int = 0, limit: int = 0) -> list[Subscription]:
        return self._page(self._live(), offset, limit)

    def get_by_vendor(self, vendor_id: str, offset: int = 0, limit: int = 0) -> list[Subscription]:
        return self._page(self._live().filter(Subscription.vendor_id == vendor_id), offset, limit)

    def get_by_user(self, user_id: str, offset: int = 0, limit: int = 0) -> list[Subscription]:
        return self._page(self._live().filter(Subscription.user_id == user_id), offset, limit)

    def count(self, user_id: str | None = None, vendor_id: str | None = None) -> int:
        with self._guard():
            return self._count(user_id, vendor_id)

    def _count(self, user_id: str | None, vendor_id: str | None) -> int:
        query = self.db.query(func.count(Subscription.id)).filter(
            Subscription.status != SubscriptionStatus.DELETED.value
        )
        if user_id is not None:
            query = query.filter(Subscription.user_id == user_id)
        if vendor_id is not None:
            query = query.filter(Subscription.vendor_id == vendor_id)
        return int(query.scalar() or 0)

    def update(self, subscription_id: UUID, subscription: Subscription) -> bool:
        with self._guard():
            values = {field: getattr(subscription, field) for field in _EDITABLE_FIELDS}
            stmt = (
                update(Subscription)
                .where(
                    Subscription.id == subscription_id,
                    Subscription.status != SubscriptionStatus.DELETED.value,
                    Subscription.revision == subscription.revision,
                )
                .values(**values, revision=Subscription.revision + 1, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            # Pending changes on a session-bound instance must not be flushed;
            # the row is written only through this conditional statement.
            if subscription in self.db:
                self.db.expunge(subscription)
            result = self.db.execute(stmt)
            self.db.commit()
        return result.rowcount == 1  # type: ignore[attr-defined]

    def delete(self, subscription_id: UUID, deleted_at: datetime) -> bool:
        with self._guard():
            existing = self._live().filter(Subscription.id == subscription_id).first()
            if existing is None:
                return False
            existing.status = SubscriptionStatus.DELETED.value  # type: ignore[assignment]
            existing.deleted_at = deleted_at  # type: ignore[assignment]
            existing.claimed_at = None  # type: ignore[assignment]
            self.db.commit()
        return True

    def select_due(self, now: datetime, limit: int) -> list[Subscription]:
        with self._guard():
            return (
                self.db.query(Subscription)
                .filter(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    Subscription.next_due_at <= now,
                )
                .order_by(Subscription.next_due_at.asc(), Subscription.id.asc())
                .limit(limit)
                .all()
            )

    def try_claim(self, subscription_id: UUID, claimed_at: datetime, stale_before: datetime) -> bool:
        stmt = (
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.next_due_at <= claimed_at,
                or_(Subscription.claimed_at.is_(None), Subscription.claimed_at < stale_before),
            )
            .values(claimed_at=claimed_at)
            .execution_options(synchronize_session=False)
        )
        with self._guard():
            result = self.db.execute(stmt)
            self.db.commit()
        return result.rowcount == 1  # type: ignore[attr-defined]

    def complete_claim(
        self,
        subscription_id: UUID,
        last_fulfilled_at: datetime,
        next_due_at: datetime,
        revision: int,
    ) -> bool:
        stmt = (
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.status != SubscriptionStatus.DELETED.value,
                Subscription.claimed_at.is_not(None),
                Subscription.revision == revision,
            )
            .values(
                last_fulfilled_at=last_fulfilled_at,
                next_due_at=next_due_at,
                claimed_at=None,
                revision=Subscription.revision + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        with self._guard():
            result = self.db.execute(stmt)
            self.db.commit()
        return result.rowcount == 1  # type: ignore[attr-defined]

    def clear_claim(self, subscription_id: UUID) -> None:
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        with self._guard():
            self.db.execute(stmt)
            self.db.commit()
