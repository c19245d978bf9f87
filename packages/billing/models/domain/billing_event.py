"""Domain models for the webhook audit log."""

from typing import Any, Optional
from pydantic import BaseModel, Field

from common.core.time import UtcDatetime


class BillingEvent(BaseModel):
    """
    Audit row for one processor event.

    ``external_event_id`` is unique: it is the serialisation point that makes
    webhook delivery idempotent.
    """

    id: int
    external_event_id: str
    event_type: str
    account_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    processed: bool = False
    processed_at: Optional[UtcDatetime] = None
    created_at: Optional[UtcDatetime] = None

    class Config:
        from_attributes = True


class BillingEventCreateModel(BaseModel):
    external_event_id: str
    event_type: str
    account_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
