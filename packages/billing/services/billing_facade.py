"""
Billing facade.

The single entry point the rest of the platform calls. Composes the plan
catalog, subscription store, quota enforcer, usage ledger, proration
calculator and webhook reconciler; none of those are used directly by
routes or other packages.
"""

from datetime import datetime
from typing import Any, Optional

from common.core.config import settings
from common.core.constants import QuotaEnforcementMode
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.core.time import utc_now
from common.providers.counter.interface import CounterInterface
from packages.billing.exceptions import (
    InvalidCoupon,
    InvalidPlan,
    NoActiveSubscription,
    PaymentMethodNotFound,
    SubscriptionAlreadyActive,
)
from packages.billing.models.domain.enums import (
    BillingCycle,
    InvoiceStatus,
    ResourceType,
)
from packages.billing.models.domain.invoice import InvoicePage, UpcomingInvoice
from packages.billing.models.domain.overview import (
    BillingOverview,
    SubscriptionDetails,
)
from packages.billing.models.domain.payment_method import (
    Coupon,
    PaymentMethod,
    PaymentMethodList,
)
from packages.billing.models.domain.plans import PlanInfo, PlansResponse
from packages.billing.models.domain.proration import ProrationPreview
from packages.billing.models.domain.subscription import (
    ExpirySweepResult,
    Subscription,
)
from packages.billing.models.domain.usage import QuotaCheck, UsageRecord, UsageSummary
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.interface import (
    CheckoutSession,
    PaymentProviderInterface,
)
from packages.billing.repositories.invoice_repository import InvoiceRepository
from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.proration_service import ProrationService
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.subscription_service import SubscriptionService
from packages.billing.services.usage_service import UsageService
from packages.billing.webhooks.stripe_webhook import (
    StripeWebhookReconciler,
    WebhookOutcome,
)

logger = get_logger(__name__)

MAX_INVOICE_PAGE = 100
MAX_USAGE_PAGE = 500
RECENT_INVOICES = 5


class BillingFacade:
    """Billing operations for one process. Cheap to construct per request."""

    def __init__(
        self,
        payment: Optional[PaymentProviderInterface] = None,
        plan_catalog: Optional[PlanCatalog] = None,
        counter: Optional[CounterInterface] = None,
        enforcement_mode: Optional[QuotaEnforcementMode] = None,
    ):
        self.payment = payment or get_payment_provider()
        self.plan_catalog = plan_catalog or PlanCatalog()
        self.subscription_service = SubscriptionService(
            payment=self.payment, plan_catalog=self.plan_catalog
        )
        self.quota_service = QuotaService(
            subscription_service=self.subscription_service,
            plan_catalog=self.plan_catalog,
            counter=counter,
            enforcement_mode=enforcement_mode,
        )
        self.usage_service = UsageService(
            subscription_service=self.subscription_service,
            plan_catalog=self.plan_catalog,
        )
        self.proration_service = ProrationService(plan_catalog=self.plan_catalog)
        self.reconciler = StripeWebhookReconciler(
            payment=self.payment,
            subscription_service=self.subscription_service,
            plan_catalog=self.plan_catalog,
        )
        self.invoice_repo = InvoiceRepository()

    def _plan_info(self, plan_id: str) -> PlanInfo:
        return PlanInfo.from_plan(
            self.plan_catalog.get_plan(plan_id), settings.billing_currency
        )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    @trace_span
    async def create_checkout_session(
        self,
        account_id: str,
        plan_id: str,
        billing_cycle: BillingCycle,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        coupon_code: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Start a hosted checkout for a paid plan.

        The subscription row is not created here; it appears when the
        processor reports the completed checkout.

        Raises:
            InvalidPlan: unknown plan, or the free plan
            SubscriptionAlreadyActive: the account already pays for a plan
            InvalidCoupon: ``coupon_code`` cannot be applied to the plan
        """
        plan = self.plan_catalog.get_plan(plan_id)
        if plan.is_free:
            raise InvalidPlan(plan.id)

        existing = await self.subscription_service.get(account_id)
        if existing is not None and existing.status.blocks_new_checkout():
            raise SubscriptionAlreadyActive(account_id)

        coupon = None
        if coupon_code:
            coupon = await self.validate_coupon(coupon_code, plan.id)

        session = await self.payment.create_checkout_session(
            account_id=account_id,
            plan=plan,
            billing_cycle=billing_cycle,
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=customer_email,
            trial_period_days=settings.checkout_trial_days or None,
            stripe_customer_id=existing.stripe_customer_id if existing else None,
            promotion_code_id=coupon.promotion_code_id if coupon else None,
        )

        logger.info(
            f"Checkout started for account {account_id} on {plan.id}",
            extra={
                "account_id": account_id,
                "plan_id": plan.id,
                "billing_cycle": billing_cycle.value,
                "session_id": session.session_id,
                "coupon_code": coupon.code if coupon else None,
            },
        )
        return session

    # ------------------------------------------------------------------
    # Plans and coupons
    # ------------------------------------------------------------------

    def list_plans(self) -> PlansResponse:
        return self.plan_catalog.get_all_plans()

    @trace_span
    async def validate_coupon(self, code: str, plan_id: str) -> Coupon:
        """
        Resolve a promotion code and check it can be used for ``plan_id``.

        Raises:
            InvalidPlan: unknown plan
            InvalidCoupon: unknown, inactive, expired or exhausted code, or
                one restricted to other plans
        """
        plan = self.plan_catalog.get_plan(plan_id)
        coupon = await self.payment.find_promotion_code(code)
        if coupon is None:
            raise InvalidCoupon(code)

        reason = coupon.rejection_reason(plan.id, utc_now())
        if reason is not None:
            logger.info(
                f"Rejected coupon {code}: {reason}",
                extra={"coupon_code": code, "plan_id": plan.id, "reason": reason},
            )
            raise InvalidCoupon(code, reason)
        return coupon

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    @trace_span
    async def get_subscription(self, account_id: str) -> Optional[SubscriptionDetails]:
        """Subscription, plan and (while live) usage, or None if never subscribed."""
        subscription = await self.subscription_service.get(account_id)
        if subscription is None:
            return None

        usage = None
        if subscription.is_live():
            usage = await self.usage_service.summarize(subscription)

        return SubscriptionDetails(
            subscription=subscription,
            plan=self._plan_info(subscription.plan_id),
            usage=usage,
        )

    @trace_span
    async def update_subscription(
        self,
        account_id: str,
        plan_id: Optional[str] = None,
        billing_cycle: Optional[BillingCycle] = None,
        cancel_at_period_end: Optional[bool] = None,
        idempotency_key: Optional[str] = None,
    ) -> SubscriptionDetails:
        """
        Change plan, billing cycle and/or the cancellation flag.

        ``idempotency_key`` is forwarded to the processor so a retried request
        is not applied twice there.
        """
        if plan_id is not None or billing_cycle is not None:
            current = await self.subscription_service.get_active(account_id)
            await self.subscription_service.update_plan(
                account_id,
                plan_id or current.plan_id,
                billing_cycle=billing_cycle,
                idempotency_key=idempotency_key,
            )

        if cancel_at_period_end is not None:
            await self.subscription_service.set_cancel_at_period_end(
                account_id,
                cancel_at_period_end,
                # Processor keys must not be reused with different parameters
                idempotency_key=f"{idempotency_key}:cancel" if idempotency_key else None,
            )

        return await self.get_subscription(account_id)

    @trace_span
    async def cancel_subscription(
        self, account_id: str, idempotency_key: Optional[str] = None
    ) -> Subscription:
        """Cancel at the end of the current period. Access continues until then."""
        return await self.subscription_service.set_cancel_at_period_end(
            account_id, True, idempotency_key=idempotency_key
        )

    @trace_span
    async def sweep_expired_subscriptions(
        self, now: Optional[datetime] = None
    ) -> ExpirySweepResult:
        """Expiry sweep, called hourly by an external scheduler."""
        return await self.subscription_service.sweep_expired(now)

    # ------------------------------------------------------------------
    # Payment methods
    # ------------------------------------------------------------------

    async def _customer_id(self, account_id: str) -> str:
        subscription = await self.subscription_service.get(account_id)
        if subscription is None or not subscription.stripe_customer_id:
            raise NoActiveSubscription(account_id)
        return subscription.stripe_customer_id

    @trace_span
    async def get_payment_methods(self, account_id: str) -> PaymentMethodList:
        customer_id = await self._customer_id(account_id)
        return await self.payment.list_payment_methods(customer_id)

    @trace_span
    async def add_payment_method(
        self, account_id: str, payment_method_id: str, set_as_default: bool = False
    ) -> PaymentMethod:
        customer_id = await self._customer_id(account_id)
        payment_method = await self.payment.attach_payment_method(
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            set_as_default=set_as_default,
        )
        logger.info(
            f"Added payment method for account {account_id}",
            extra={
                "account_id": account_id,
                "payment_method_id": payment_method_id,
                "set_as_default": set_as_default,
            },
        )
        return payment_method

    @trace_span
    async def remove_payment_method(self, account_id: str, payment_method_id: str) -> None:
        """
        Detach one of the account's saved payment methods.

        Raises:
            PaymentMethodNotFound: the method is not saved on this account's
                customer
        """
        customer_id = await self._customer_id(account_id)
        methods = await self.payment.list_payment_methods(customer_id)
        if methods.find(payment_method_id) is None:
            raise PaymentMethodNotFound(payment_method_id)

        await self.payment.detach_payment_method(payment_method_id)
        logger.info(
            f"Removed payment method for account {account_id}",
            extra={"account_id": account_id, "payment_method_id": payment_method_id},
        )

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    @trace_span
    async def track_usage(
        self,
        account_id: str,
        resource_type: ResourceType,
        quantity: int = 1,
        metadata: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> UsageRecord:
        """Record confirmed usage. ``QuotaExceeded`` is a hard stop for callers."""
        return await self.quota_service.record_usage(
            account_id,
            resource_type,
            quantity=quantity,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    @trace_span
    async def check_quota(
        self, account_id: str, resource_type: ResourceType, quantity: int = 1
    ) -> QuotaCheck:
        return await self.quota_service.check_quota(account_id, resource_type, quantity)

    @trace_span
    async def get_usage_summary(self, account_id: str) -> UsageSummary:
        return await self.usage_service.get_usage_summary(account_id)

    @trace_span
    async def get_usage_records(
        self, account_id: str, limit: int = 100, offset: int = 0
    ) -> list[UsageRecord]:
        """Most recent usage records first."""
        limit = max(1, min(limit, MAX_USAGE_PAGE))
        return await self.usage_service.list_usage(
            account_id, limit=limit, offset=max(0, offset)
        )

    @trace_span
    async def prune_usage(self, before: Optional[datetime] = None) -> int:
        """Retention sweep, called by an external scheduler."""
        return await self.usage_service.prune(before)

    # ------------------------------------------------------------------
    # Invoices and overview
    # ------------------------------------------------------------------

    @trace_span
    async def get_invoices(
        self,
        account_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> InvoicePage:
        limit = max(1, min(limit, MAX_INVOICE_PAGE))
        return await self.invoice_repo.list_for_account(
            account_id, status=status, limit=limit, offset=max(0, offset)
        )

    @trace_span
    async def preview_upgrade(
        self,
        account_id: str,
        plan_id: str,
        billing_cycle: Optional[BillingCycle] = None,
    ) -> ProrationPreview:
        subscription = await self.subscription_service.get_active(account_id)
        return self.proration_service.preview_change(
            subscription, plan_id, billing_cycle
        )

    def _next_invoice(self, subscription: Subscription) -> Optional[UpcomingInvoice]:
        """Local estimate of the renewal charge; None when nothing will renew."""
        if not subscription.is_live() or subscription.cancel_at_period_end:
            return None
        plan = self.plan_catalog.get_plan(subscription.plan_id)
        if plan.is_free:
            return None
        return UpcomingInvoice(
            amount_cents=plan.price_cents(subscription.billing_cycle),
            currency=settings.billing_currency,
            due_at=subscription.current_period_end,
            plan_id=plan.id,
        )

    @trace_span
    async def get_billing_overview(self, account_id: str) -> BillingOverview:
        details = await self.get_subscription(account_id)
        recent = await self.invoice_repo.list_for_account(
            account_id, limit=RECENT_INVOICES
        )

        if details is None:
            return BillingOverview(
                plan=PlanInfo.from_plan(
                    self.plan_catalog.free_plan, settings.billing_currency
                ),
                recent_invoices=recent.invoices,
            )

        return BillingOverview(
            subscription=details.subscription,
            plan=details.plan,
            usage=details.usage,
            next_invoice=self._next_invoice(details.subscription),
            recent_invoices=recent.invoices,
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @trace_span
    async def handle_webhook(
        self, payload: bytes, signature: Optional[str]
    ) -> WebhookOutcome:
        return await self.reconciler.handle(payload, signature)
