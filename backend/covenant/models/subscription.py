from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String

from covenant.core.database import Base
from covenant.models.shared import UUIDType, generate_uuid, utc_now


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class Frequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_status_next_due_at", "status", "next_due_at"),)

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(String(255), nullable=False, index=True)
    vendor_id = Column(String(255), nullable=False, index=True)
    item_id = Column(String(255), nullable=False)
    frequency = Column(String(20), nullable=False)
    status = Column(
        String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value, index=True
    )
    last_fulfilled_at = Column(DateTime(timezone=True), nullable=True)
    next_due_at = Column(DateTime(timezone=True), nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    # Bumped by every update and completed fulfillment. Writes compare it with
    # the value they read, so a change from another process is never lost.
    revision = Column(Integer, nullable=False, default=0)

