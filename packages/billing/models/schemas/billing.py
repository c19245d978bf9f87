"""
API schemas for billing operations.

Request and response models for billing endpoints. Read endpoints return the
facade's domain models directly.
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, HttpUrl

from packages.billing.models.domain.enums import BillingCycle, ResourceType
from packages.billing.models.domain.invoice import Invoice, InvoicePage
from packages.billing.models.domain.usage import UsageRecord


# ============================================================================
# Checkout Schemas
# ============================================================================


class CheckoutSessionRequest(BaseModel):
    """Request to create a checkout session."""

    plan_id: str = Field(..., min_length=1)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    success_url: HttpUrl
    cancel_url: HttpUrl
    customer_email: Optional[str] = None
    coupon_code: Optional[str] = Field(default=None, min_length=1, max_length=100)


class CheckoutSessionResponse(BaseModel):
    """Response with checkout URL."""

    session_id: str
    url: str = Field(..., description="Stripe checkout session URL")


# ============================================================================
# Subscription Schemas
# ============================================================================


class UpdateSubscriptionRequest(BaseModel):
    """Plan, cycle and cancellation changes. Omitted fields are left alone."""

    plan_id: Optional[str] = None
    billing_cycle: Optional[BillingCycle] = None
    cancel_at_period_end: Optional[bool] = None


class CancelSubscriptionResponse(BaseModel):
    """Response after scheduling cancellation."""

    success: bool
    message: str
    cancel_at_period_end: bool
    access_until: datetime = Field(
        ..., description="Date until which the account retains access"
    )


class PreviewUpgradeRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)
    billing_cycle: Optional[BillingCycle] = None


# ============================================================================
# Usage Schemas
# ============================================================================


class TrackUsageRequest(BaseModel):
    """Report confirmed usage of a metered resource."""

    resource_type: ResourceType
    quantity: int = Field(default=1, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Retries with the same key are recorded once",
    )


class TrackUsageResponse(BaseModel):
    success: bool = True
    usage_record_id: int
    resource_type: ResourceType
    quantity: int
    recorded_at: datetime


class UsageRecordsResponse(BaseModel):
    records: list[UsageRecord]
    limit: int
    offset: int


# ============================================================================
# Payment Method Schemas
# ============================================================================


class AddPaymentMethodRequest(BaseModel):
    """Attach a payment method collected client-side (e.g. Stripe Elements)."""

    payment_method_id: str = Field(..., min_length=1)
    set_as_default: bool = False


class RemovePaymentMethodResponse(BaseModel):
    success: bool = True
    payment_method_id: str


# ============================================================================
# Invoice Schemas
# ============================================================================


class InvoicesResponse(BaseModel):
    """One page of invoices."""

    invoices: list[Invoice]
    total: int
    has_more: bool

    @classmethod
    def from_page(cls, page: InvoicePage) -> "InvoicesResponse":
        return cls(invoices=page.invoices, total=page.total, has_more=page.has_more)


# ============================================================================
# Webhook Schemas
# ============================================================================


class WebhookResponse(BaseModel):
    """Acknowledgement for processed, duplicate and ignored events alike."""

    received: bool = True
