"""
Domain models for subscriptions.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from common.core.time import UtcDatetime, utc_now
from packages.billing.models.domain.enums import BillingCycle, SubscriptionStatus


class Subscription(BaseModel):
    """
    Account subscription domain model.

    Exactly one row per account. Rows are never deleted: a canceled
    subscription stays as history and is overwritten by the next checkout.
    """

    id: int
    account_id: str

    # Plan
    plan_id: str
    billing_cycle: BillingCycle
    status: SubscriptionStatus

    # Billing period
    current_period_start: UtcDatetime
    current_period_end: UtcDatetime
    cancel_at_period_end: bool = False

    # External platform IDs
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None

    # Lifecycle
    canceled_at: Optional[UtcDatetime] = None
    last_processor_event_at: Optional[UtcDatetime] = None

    # Metadata
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    class Config:
        from_attributes = True

    def is_live(self) -> bool:
        """Live subscriptions count as the account's active subscription."""
        return not self.status.is_terminal()


class SubscriptionCreateModel(BaseModel):
    """Model for creating (or overwriting) an account's subscription."""

    model_config = ConfigDict(use_enum_values=True)

    account_id: str
    plan_id: str
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_start: datetime = Field(default_factory=utc_now)
    current_period_end: datetime
    cancel_at_period_end: bool = False

    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    last_processor_event_at: Optional[datetime] = None


class SubscriptionUpdateModel(BaseModel):
    """Model for updating a subscription. Only set fields are written."""

    model_config = ConfigDict(use_enum_values=True)

    plan_id: Optional[str] = None
    billing_cycle: Optional[BillingCycle] = None
    status: Optional[SubscriptionStatus] = None

    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None

    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None

    canceled_at: Optional[datetime] = None
    last_processor_event_at: Optional[datetime] = None


class ExpirySweepResult(BaseModel):
    """Counts from one run of the expired-subscription sweep."""

    past_due: int = 0
    canceled: int = 0
    skipped: int = 0  # renewed or changed while the sweep ran
