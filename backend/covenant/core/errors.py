"""Exception types shared by the subscription core.

Not-found is never an exception here: lookups return ``None`` and
mutations return ``False``/``None`` when the record is missing or deleted.
"""


class InvalidSubscriptionError(ValueError):
    """Input rejected before it reached the store."""


class InvalidFrequencyError(InvalidSubscriptionError):
    """Frequency value is not one of the supported classes."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Unknown frequency: {value!r}")


class DuplicateSubscriptionError(InvalidSubscriptionError):
    """Subscription id was already used, possibly by a deleted record."""


class SubscriptionConflictError(Exception):
    """The record kept changing underneath a write; the caller may retry."""


class SubscriptionClaimedError(SubscriptionConflictError):
    """Mutation refused while a scheduler claim is in flight."""


class StoreError(RuntimeError):
    """Persistence layer failure."""


class EventSinkError(RuntimeError):
    """Fulfillment event could not be delivered."""
