from covenant.repositories.base import SubscriptionStore, normalize_page
from covenant.repositories.fulfillment_repository import FulfillmentRepository
from covenant.repositories.memory_store import InMemorySubscriptionStore
from covenant.repositories.subscription_repository import SubscriptionRepository

__all__ = [
    "FulfillmentRepository",
    "InMemorySubscriptionStore",
    "SubscriptionRepository",
    "SubscriptionStore",
    "normalize_page",
]
