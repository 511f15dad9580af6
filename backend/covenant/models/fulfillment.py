from sqlalchemy import Column, DateTime, ForeignKey, String

from covenant.core.database import Base
from covenant.models.shared import UUIDType, generate_uuid, utc_now


class Fulfillment(Base):
    """One emitted fulfillment event, kept as delivery history."""

    __tablename__ = "fulfillments"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    subscription_id = Column(
        UUIDType,
        ForeignKey("subscriptions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(255), nullable=False)
    vendor_id = Column(String(255), nullable=False)
    item_id = Column(String(255), nullable=False)
    fired_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
