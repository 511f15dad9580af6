"""Storage contract for subscription records."""

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from covenant.core.config import settings
from covenant.core.errors import InvalidSubscriptionError
from covenant.models.subscription import Subscription


def normalize_page(offset: int, limit: int) -> tuple[int, int]:
    """Validate paging arguments.

    A zero *limit* means the configured page cap; larger limits are clamped
    to it. Negative values are rejected.
    """
    if offset < 0:
        raise InvalidSubscriptionError(f"offset must be non-negative, got {offset}")
    if limit < 0:
        raise InvalidSubscriptionError(f"limit must be non-negative, got {limit}")
    cap = settings.PAGE_LIMIT_CAP
    if limit == 0 or limit > cap:
        limit = cap
    return offset, limit


class SubscriptionStore(ABC):
    """Persistence for subscriptions.

    Deleted records are tombstones: they keep their id forever but are
    invisible to every read below. Implementations raise ``StoreError`` on
    persistence failures and must make each single-record write atomic.
    """

    @abstractmethod
    def insert(self, subscription: Subscription) -> Subscription:
        """Persist a new record. Raises DuplicateSubscriptionError on id reuse."""
        ...  # pragma: no cover

    @abstractmethod
    def get_by_id(self, subscription_id: UUID) -> Subscription | None:
        ...  # pragma: no cover

    @abstractmethod
    def get_all(self, offset: int = 0, limit: int = 0) -> list[Subscription]:
        ...  # pragma: no cover

    @abstractmethod
    def get_by_vendor(self, vendor_id: str, offset: int = 0, limit: int = 0) -> list[Subscription]:
        ...  # pragma: no cover

    @abstractmethod
    def get_by_user(self, user_id: str, offset: int = 0, limit: int = 0) -> list[Subscription]:
        ...  # pragma: no cover

    @abstractmethod
    def count(self, user_id: str | None = None, vendor_id: str | None = None) -> int:
        """Number of live records, optionally filtered."""
        ...  # pragma: no cover

    @abstractmethod
    def update(self, subscription_id: UUID, subscription: Subscription) -> bool:
        """Write the editable fields of a live record and bump its revision.

        Editable fields are the identifiers, frequency, status and
        next_due_at. The write only lands if the stored revision still equals
        ``subscription.revision``. Returns False if the record is missing,
        deleted, or changed since it was read. ``last_fulfilled_at`` and the
        claim marker are never written here.
        """
        ...  # pragma: no cover

    @abstractmethod
    def delete(self, subscription_id: UUID, deleted_at: datetime) -> bool:
        """Tombstone a live record. Returns False if there is none."""
        ...  # pragma: no cover

    @abstractmethod
    def select_due(self, now: datetime, limit: int) -> list[Subscription]:
        """Active records with next_due_at <= now, oldest due first."""
        ...  # pragma: no cover

    @abstractmethod
    def try_claim(self, subscription_id: UUID, claimed_at: datetime, stale_before: datetime) -> bool:
        """Set the claim marker if unclaimed, or claimed before *stale_before*.

        Only an active record with next_due_at <= *claimed_at* can be claimed.
        """
        ...  # pragma: no cover

    @abstractmethod
    def complete_claim(
        self,
        subscription_id: UUID,
        last_fulfilled_at: datetime,
        next_due_at: datetime,
        revision: int,
    ) -> bool:
        """Record a fulfillment and drop the claim in one atomic write.

        Lands only on a live, claimed record whose revision equals *revision*;
        bumps the revision. Returns False otherwise, leaving the row untouched.
        """
        ...  # pragma: no cover

    @abstractmethod
    def clear_claim(self, subscription_id: UUID) -> None:
        ...  # pragma: no cover
