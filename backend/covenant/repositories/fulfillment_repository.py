from uuid import UUID

from sqlalchemy.orm import Session

from covenant.models.fulfillment import Fulfillment
from covenant.repositories.base import normalize_page
from covenant.schemas.fulfillment import FulfillmentEvent


class FulfillmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, event: FulfillmentEvent) -> Fulfillment:
        fulfillment = Fulfillment(
            subscription_id=event.subscription_id,
            user_id=event.user_id,
            vendor_id=event.vendor_id,
            item_id=event.item_id,
            fired_at=event.fired_at,
        )
        self.db.add(fulfillment)
        self.db.commit()
        self.db.refresh(fulfillment)
        return fulfillment

    def get_by_subscription_id(
        self, subscription_id: UUID, offset: int = 0, limit: int = 0
    ) -> list[Fulfillment]:
        offset, limit = normalize_page(offset, limit)
        return (
            self.db.query(Fulfillment)
            .filter(Fulfillment.subscription_id == subscription_id)
            .order_by(Fulfillment.fired_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
