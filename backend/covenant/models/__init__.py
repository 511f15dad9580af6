from covenant.models.fulfillment import Fulfillment
from covenant.models.subscription import Frequency, Subscription, SubscriptionStatus

__all__ = [
    "Frequency",
    "Fulfillment",
    "Subscription",
    "SubscriptionStatus",
]
