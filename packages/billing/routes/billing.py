"""
Billing API routes.

Account-scoped endpoints for subscriptions, usage, invoices, payment methods
and previews. Billing errors are rendered by the app-level ``BillingError`` handler.
"""

from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Header, Query, status

from packages.billing.dependencies import get_account_id, get_billing_facade
from packages.billing.models.domain.enums import InvoiceStatus, ResourceType
from packages.billing.models.domain.overview import (
    BillingOverview,
    SubscriptionDetails,
)
from packages.billing.models.domain.payment_method import (
    Coupon,
    PaymentMethod,
    PaymentMethodList,
)
from packages.billing.models.domain.proration import ProrationPreview
from packages.billing.models.domain.usage import QuotaCheck, UsageSummary
from packages.billing.models.schemas.billing import (
    AddPaymentMethodRequest,
    CancelSubscriptionResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    InvoicesResponse,
    PreviewUpgradeRequest,
    RemovePaymentMethodResponse,
    TrackUsageRequest,
    TrackUsageResponse,
    UpdateSubscriptionRequest,
    UsageRecordsResponse,
)
from packages.billing.services.billing_facade import BillingFacade

router = APIRouter()


# ============================================================================
# Checkout
# ============================================================================


@router.post("/checkout", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """
    Create a Stripe checkout session for a paid plan.

    The subscription is created when Stripe confirms the checkout. An invalid
    ``coupon_code`` is a 400 rather than a silently undiscounted checkout.
    """
    session = await facade.create_checkout_session(
        account_id=account_id,
        plan_id=request.plan_id,
        billing_cycle=request.billing_cycle,
        success_url=str(request.success_url),
        cancel_url=str(request.cancel_url),
        customer_email=request.customer_email,
        coupon_code=request.coupon_code,
    )
    return CheckoutSessionResponse(session_id=session.session_id, url=session.url)


@router.get("/coupons/{code}", response_model=Coupon)
async def validate_coupon(
    code: str,
    plan_id: str = Query(..., min_length=1),
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Check a promotion code against a plan before starting checkout."""
    return await facade.validate_coupon(code, plan_id)


# ============================================================================
# Subscription
# ============================================================================


@router.get("/subscription", response_model=Optional[SubscriptionDetails])
async def get_subscription(
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Current subscription with plan and usage; null if the account never subscribed."""
    return await facade.get_subscription(account_id)


@router.patch("/subscription", response_model=SubscriptionDetails)
async def update_subscription(
    request: UpdateSubscriptionRequest,
    account_id: str = Depends(get_account_id),
    idempotency_key: Annotated[Optional[str], Header()] = None,
    facade: BillingFacade = Depends(get_billing_facade),
):
    """
    Change plan, billing cycle or cancellation flag.

    Send an ``Idempotency-Key`` header when retrying; a 504 means the
    processor's state is unknown and will settle via webhook.
    """
    return await facade.update_subscription(
        account_id,
        plan_id=request.plan_id,
        billing_cycle=request.billing_cycle,
        cancel_at_period_end=request.cancel_at_period_end,
        idempotency_key=idempotency_key,
    )


@router.post("/subscription/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    account_id: str = Depends(get_account_id),
    idempotency_key: Annotated[Optional[str], Header()] = None,
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Cancel at period end. Access continues until end of billing period."""
    subscription = await facade.cancel_subscription(
        account_id, idempotency_key=idempotency_key
    )
    return CancelSubscriptionResponse(
        success=True,
        message="Subscription will be canceled at the end of the billing period.",
        cancel_at_period_end=subscription.cancel_at_period_end,
        access_until=subscription.current_period_end,
    )


@router.post("/subscription/preview", response_model=ProrationPreview)
async def preview_upgrade(
    request: PreviewUpgradeRequest,
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Prorated cost of switching plans now. Nothing is changed."""
    return await facade.preview_upgrade(
        account_id, request.plan_id, request.billing_cycle
    )


# ============================================================================
# Payment Methods
# ============================================================================


@router.get("/payment-methods", response_model=PaymentMethodList)
async def get_payment_methods(
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Saved cards with the invoice default flagged."""
    return await facade.get_payment_methods(account_id)


@router.post(
    "/payment-methods",
    response_model=PaymentMethod,
    status_code=status.HTTP_201_CREATED,
)
async def add_payment_method(
    request: AddPaymentMethodRequest,
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    return await facade.add_payment_method(
        account_id, request.payment_method_id, set_as_default=request.set_as_default
    )


@router.delete(
    "/payment-methods/{payment_method_id}",
    response_model=RemovePaymentMethodResponse,
)
async def remove_payment_method(
    payment_method_id: str,
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """404 when the method is not saved on this account."""
    await facade.remove_payment_method(account_id, payment_method_id)
    return RemovePaymentMethodResponse(payment_method_id=payment_method_id)


# ============================================================================
# Usage
# ============================================================================


@router.post(
    "/usage",
    response_model=TrackUsageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def track_usage(
    request: TrackUsageRequest,
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Record confirmed usage. 429 when a quota window would be exceeded."""
    record = await facade.track_usage(
        account_id,
        request.resource_type,
        quantity=request.quantity,
        metadata=request.metadata,
        idempotency_key=request.idempotency_key,
    )
    return TrackUsageResponse(
        usage_record_id=record.id,
        resource_type=record.resource_type,
        quantity=record.quantity,
        recorded_at=record.recorded_at,
    )


@router.get("/usage", response_model=UsageSummary)
async def get_usage_summary(
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Current-period usage, limits and percentages for every resource."""
    return await facade.get_usage_summary(account_id)


@router.get("/usage/records", response_model=UsageRecordsResponse)
async def get_usage_records(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Raw usage ledger, newest first."""
    records = await facade.get_usage_records(account_id, limit=limit, offset=offset)
    return UsageRecordsResponse(records=records, limit=limit, offset=offset)


@router.get("/quota/{resource_type}", response_model=QuotaCheck)
async def check_quota(
    resource_type: ResourceType,
    quantity: int = Query(default=1, ge=1),
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Would recording ``quantity`` be admitted right now? Records nothing."""
    return await facade.check_quota(account_id, resource_type, quantity)


# ============================================================================
# Invoices & Overview
# ============================================================================


@router.get("/invoices", response_model=InvoicesResponse)
async def get_invoices(
    status_filter: Optional[InvoiceStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    page = await facade.get_invoices(
        account_id, status=status_filter, limit=limit, offset=offset
    )
    return InvoicesResponse.from_page(page)


@router.get("/overview", response_model=BillingOverview)
async def get_billing_overview(
    account_id: str = Depends(get_account_id),
    facade: BillingFacade = Depends(get_billing_facade),
):
    """Subscription, plan, usage, next invoice estimate and recent invoices."""
    return await facade.get_billing_overview(account_id)
