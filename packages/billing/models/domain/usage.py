"""
Domain models for usage tracking and quotas.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from common.core.time import UtcDatetime, utc_now
from packages.billing.models.domain.enums import QuotaWindow, ResourceType
from packages.billing.models.domain.limits import Limit


class UsageRecord(BaseModel):
    """
    Individual usage record.

    Immutable once written. ``billing_period_start`` attributes the record
    to the subscription period it was consumed in.
    """

    id: int
    account_id: str
    subscription_id: int

    resource_type: ResourceType
    quantity: int

    event_metadata: dict = Field(default_factory=dict)
    idempotency_key: Optional[str] = None

    billing_period_start: UtcDatetime
    recorded_at: UtcDatetime

    class Config:
        from_attributes = True


class UsageRecordCreateModel(BaseModel):
    """Model for appending a usage record."""

    model_config = ConfigDict(use_enum_values=True)

    account_id: str
    subscription_id: int
    resource_type: ResourceType
    quantity: int = Field(default=1, ge=1)
    event_metadata: dict = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    billing_period_start: datetime
    recorded_at: datetime = Field(default_factory=utc_now)


class WindowUsage(BaseModel):
    """Usage of one resource across the enforced windows."""

    monthly: int = 0
    daily: int = 0
    hourly: int = 0

    def for_window(self, window: QuotaWindow) -> int:
        return getattr(self, window.value)


class QuotaCheck(BaseModel):
    """
    Result of a non-mutating quota check.

    ``window`` and ``limit`` describe the first window that would reject the
    request, or the monthly window when the request is allowed.
    """

    allowed: bool
    resource_type: ResourceType
    requested: int
    window: QuotaWindow
    current_usage: int
    limit: Optional[int]  # None = unlimited
    remaining: Optional[int]  # None = unlimited
    period_end: UtcDatetime

    @classmethod
    def build(
        cls,
        allowed: bool,
        resource_type: ResourceType,
        requested: int,
        window: QuotaWindow,
        current: int,
        limit: Limit,
        period_end: datetime,
    ) -> "QuotaCheck":
        bound = limit.value
        return cls(
            allowed=allowed,
            resource_type=resource_type,
            requested=requested,
            window=window,
            current_usage=current,
            limit=bound,
            remaining=None if bound is None else max(0, bound - current),
            period_end=period_end,
        )


class ResourceUsage(BaseModel):
    """Per-resource line in the usage summary."""

    resource_type: ResourceType
    label: str
    used: int
    limit: Optional[int]  # None = unlimited
    percentage: float

    @classmethod
    def compute(cls, resource: ResourceType, used: int, limit: Limit) -> "ResourceUsage":
        bound = limit.value
        if bound is None:
            percentage = 0.0
        elif bound == 0:
            percentage = 100.0 if used > 0 else 0.0
        else:
            percentage = min(used / bound * 100, 100.0)
        return cls(
            resource_type=resource,
            label=resource.label,
            used=used,
            limit=bound,
            percentage=round(percentage, 2),
        )


class UsageSummary(BaseModel):
    """Current-period usage for every metered resource."""

    account_id: str
    plan_id: str
    period_start: UtcDatetime
    period_end: UtcDatetime
    resources: list[ResourceUsage]

    def get(self, resource: ResourceType) -> Optional[ResourceUsage]:
        return next((r for r in self.resources if r.resource_type == resource), None)
