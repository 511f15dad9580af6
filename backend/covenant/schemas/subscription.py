from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from covenant.models.shared import as_utc
from covenant.models.subscription import SubscriptionStatus


class SubscriptionCreate(BaseModel):
    id: UUID | None = None
    user_id: str = Field(..., max_length=255)
    vendor_id: str = Field(..., max_length=255)
    item_id: str = Field(..., max_length=255)
    frequency: str = Field(..., max_length=20)


class SubscriptionUpdate(BaseModel):
    user_id: str | None = Field(default=None, max_length=255)
    vendor_id: str | None = Field(default=None, max_length=255)
    item_id: str | None = Field(default=None, max_length=255)
    frequency: str | None = Field(default=None, max_length=20)
    status: SubscriptionStatus | None = None


class SubscriptionResponse(BaseModel):
    id: UUID
    user_id: str
    vendor_id: str
    item_id: str
    frequency: str
    status: SubscriptionStatus
    last_fulfilled_at: datetime | None
    next_due_at: datetime
    claimed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator(
        "last_fulfilled_at",
        "next_due_at",
        "claimed_at",
        "created_at",
        "updated_at",
        "deleted_at",
    )
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None
