from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, field_validator

from covenant.models.shared import as_utc


class FulfillmentEvent(BaseModel):
    """Signal that a subscription's recurring delivery should happen now."""

    subscription_id: UUID
    user_id: str
    vendor_id: str
    item_id: str
    fired_at: datetime

    model_config = {"frozen": True}


class FulfillmentResponse(BaseModel):
    id: UUID
    subscription_id: UUID
    user_id: str
    vendor_id: str
    item_id: str
    fired_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("fired_at", "created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return as_utc(value)
