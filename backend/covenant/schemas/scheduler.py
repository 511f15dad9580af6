from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class TickFailureResponse(BaseModel):
    subscription_id: UUID | None
    stage: str
    error: str


class TickResponse(BaseModel):
    """Summary of one scheduler tick."""

    now: datetime
    selected: int
    fired: list[UUID]
    skipped: list[UUID]
    deferred: int
    failures: list[TickFailureResponse]


class TickEnqueuedResponse(BaseModel):
    job_id: str
