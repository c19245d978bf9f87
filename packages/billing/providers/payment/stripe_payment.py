"""
Stripe implementation of payment provider.
"""

import asyncio
import json
from typing import Any, Callable, Optional
import stripe

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.exceptions import (
    InvalidPlan,
    PaymentMethodError,
    ProcessorStateUnknown,
    WebhookSignatureInvalid,
)
from common.core.time import from_timestamp
from packages.billing.models.domain.enums import BillingCycle
from packages.billing.models.domain.payment_method import (
    Coupon,
    PaymentMethod,
    PaymentMethodList,
)
from packages.billing.models.domain.plans import Plan
from packages.billing.providers.payment.interface import (
    CheckoutSession,
    PaymentProviderInterface,
)

logger = get_logger(__name__)


class StripePaymentProvider(PaymentProviderInterface):
    """
    Stripe-based payment implementation.

    The Stripe SDK is synchronous; calls run in a worker thread and are
    bounded by ``payment_processor_timeout_seconds``.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        """Initialize Stripe with API credentials."""
        stripe.api_key = settings.stripe_secret_key
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.payment_processor_timeout_seconds
        )

    async def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Stripe {operation} timed out after {self.timeout_seconds}s",
                extra={"operation": operation},
            )
            raise ProcessorStateUnknown(
                f"Payment processor did not answer {operation} in time"
            )
        except stripe.StripeError as e:
            logger.error(
                f"Stripe {operation} failed: {str(e)}",
                extra={"operation": operation, "error": str(e)},
            )
            raise PaymentMethodError(
                e.user_message or f"Payment processor rejected {operation}"
            ) from e

    def _price_id(self, plan: Plan, billing_cycle: BillingCycle) -> str:
        price_id = plan.stripe_price_id(billing_cycle)
        if not price_id:
            raise InvalidPlan(f"{plan.id} ({billing_cycle.value})")
        return price_id

    @trace_span
    async def create_checkout_session(
        self,
        account_id: str,
        plan: Plan,
        billing_cycle: BillingCycle,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        trial_period_days: Optional[int] = None,
        stripe_customer_id: Optional[str] = None,
        promotion_code_id: Optional[str] = None,
    ) -> CheckoutSession:
        metadata = {
            "account_id": account_id,
            "plan_id": plan.id,
            "billing_cycle": billing_cycle.value,
        }

        # Build subscription_data with optional trial
        subscription_data: dict[str, Any] = {"metadata": metadata}
        if trial_period_days:
            subscription_data["trial_period_days"] = trial_period_days

        params: dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [
                {"price": self._price_id(plan, billing_cycle), "quantity": 1}
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": account_id,
            "metadata": metadata,
            "subscription_data": subscription_data,
        }
        # Reuse the account's customer when we know it
        if stripe_customer_id:
            params["customer"] = stripe_customer_id
        elif customer_email:
            params["customer_email"] = customer_email
        if promotion_code_id:
            params["discounts"] = [{"promotion_code": promotion_code_id}]

        session = await self._call(
            "checkout.create", stripe.checkout.Session.create, **params
        )

        logger.info(
            "Created Stripe checkout session",
            extra={
                "account_id": account_id,
                "plan_id": plan.id,
                "billing_cycle": billing_cycle.value,
                "session_id": session.id,
            },
        )
        return CheckoutSession(
            session_id=session.id,
            url=session.url,
            customer_id=getattr(session, "customer", None),
        )

    @trace_span
    async def update_subscription_price(
        self,
        stripe_subscription_id: str,
        plan: Plan,
        billing_cycle: BillingCycle,
        account_id: str,
        idempotency_key: Optional[str] = None,
    ) -> None:
        price_id = self._price_id(plan, billing_cycle)

        # Get current subscription to find the item ID
        subscription = await self._call(
            "subscription.retrieve", stripe.Subscription.retrieve, stripe_subscription_id
        )
        item_id = subscription["items"]["data"][0]["id"]

        request_options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        await self._call(
            "subscription.modify",
            stripe.Subscription.modify,
            stripe_subscription_id,
            items=[{"id": item_id, "price": price_id}],
            metadata={
                "account_id": account_id,
                "plan_id": plan.id,
                "billing_cycle": billing_cycle.value,
            },
            proration_behavior="create_prorations",
            **request_options,
        )

        logger.info(
            f"Updated Stripe subscription to {plan.id} ({billing_cycle.value})",
            extra={
                "stripe_subscription_id": stripe_subscription_id,
                "plan_id": plan.id,
                "account_id": account_id,
            },
        )

    @trace_span
    async def set_cancel_at_period_end(
        self,
        stripe_subscription_id: str,
        cancel_at_period_end: bool,
        idempotency_key: Optional[str] = None,
    ) -> None:
        request_options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        await self._call(
            "subscription.modify",
            stripe.Subscription.modify,
            stripe_subscription_id,
            cancel_at_period_end=cancel_at_period_end,
            **request_options,
        )
        logger.info(
            f"Set cancel_at_period_end={cancel_at_period_end}",
            extra={"stripe_subscription_id": stripe_subscription_id},
        )

    @trace_span
    async def retrieve_subscription(self, stripe_subscription_id: str) -> dict[str, Any]:
        subscription = await self._call(
            "subscription.retrieve", stripe.Subscription.retrieve, stripe_subscription_id
        )
        # StripeObject serialises to the raw API JSON
        return json.loads(str(subscription))

    @staticmethod
    def _to_payment_method(data: dict[str, Any], default_id: Optional[str]) -> PaymentMethod:
        card = data.get("card") or {}
        return PaymentMethod(
            id=data["id"],
            brand=card.get("brand"),
            last4=card.get("last4"),
            exp_month=card.get("exp_month"),
            exp_year=card.get("exp_year"),
            is_default=data["id"] == default_id,
        )

    async def _default_payment_method_id(self, customer_id: str) -> Optional[str]:
        customer = await self._call(
            "customer.retrieve", stripe.Customer.retrieve, customer_id
        )
        settings_data = json.loads(str(customer)).get("invoice_settings") or {}
        default = settings_data.get("default_payment_method")
        # Expanded objects carry the id inside
        if isinstance(default, dict):
            return default.get("id")
        return default

    @trace_span
    async def list_payment_methods(self, customer_id: str) -> PaymentMethodList:
        default_id = await self._default_payment_method_id(customer_id)
        result = await self._call(
            "payment_method.list",
            stripe.PaymentMethod.list,
            customer=customer_id,
            type="card",
        )
        data = json.loads(str(result)).get("data", [])
        return PaymentMethodList(
            payment_methods=[self._to_payment_method(pm, default_id) for pm in data],
            default_payment_method_id=default_id,
        )

    @trace_span
    async def attach_payment_method(
        self, customer_id: str, payment_method_id: str, set_as_default: bool = False
    ) -> PaymentMethod:
        attached = await self._call(
            "payment_method.attach",
            stripe.PaymentMethod.attach,
            payment_method_id,
            customer=customer_id,
        )
        if set_as_default:
            await self._call(
                "customer.modify",
                stripe.Customer.modify,
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
            )

        logger.info(
            "Attached payment method to Stripe customer",
            extra={
                "customer_id": customer_id,
                "payment_method_id": payment_method_id,
                "set_as_default": set_as_default,
            },
        )
        return self._to_payment_method(
            json.loads(str(attached)),
            payment_method_id if set_as_default else None,
        )

    @trace_span
    async def detach_payment_method(self, payment_method_id: str) -> None:
        await self._call(
            "payment_method.detach", stripe.PaymentMethod.detach, payment_method_id
        )
        logger.info(
            "Detached Stripe payment method",
            extra={"payment_method_id": payment_method_id},
        )

    @trace_span
    async def find_promotion_code(self, code: str) -> Optional[Coupon]:
        result = await self._call(
            "promotion_code.list", stripe.PromotionCode.list, code=code, limit=1
        )
        data = json.loads(str(result)).get("data", [])
        if not data:
            return None

        promo = data[0]
        coupon = promo.get("coupon") or {}
        plans = (coupon.get("metadata") or {}).get("plans", "")
        expiries = [
            ts for ts in (promo.get("expires_at"), coupon.get("redeem_by")) if ts
        ]
        if promo.get("max_redemptions") is not None:
            max_redemptions = promo["max_redemptions"]
            times_redeemed = promo.get("times_redeemed", 0)
        else:
            max_redemptions = coupon.get("max_redemptions")
            times_redeemed = coupon.get("times_redeemed", 0)

        return Coupon(
            code=promo.get("code", code),
            promotion_code_id=promo["id"],
            coupon_id=coupon.get("id", ""),
            active=bool(promo.get("active")) and bool(coupon.get("valid", True)),
            percent_off=coupon.get("percent_off"),
            amount_off_cents=coupon.get("amount_off"),
            currency=coupon.get("currency"),
            duration=coupon.get("duration", "once"),
            duration_in_months=coupon.get("duration_in_months"),
            expires_at=from_timestamp(min(expiries)) if expiries else None,
            max_redemptions=max_redemptions,
            times_redeemed=times_redeemed,
            applicable_plans=[p.strip() for p in plans.split(",") if p.strip()],
        )

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        if not signature:
            raise WebhookSignatureInvalid("Missing stripe-signature header")
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, settings.stripe_webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe webhook signature verification failed: {str(e)}")
            raise WebhookSignatureInvalid()
        except ValueError as e:
            logger.error(f"Stripe webhook body is not a valid event: {str(e)}")
            raise WebhookSignatureInvalid("Invalid webhook payload")
        return json.loads(str(event))

    @trace_span
    async def health_check(self) -> bool:
        """Check Stripe health."""
        try:
            # Try to retrieve account to verify API key works
            await self._call("account.retrieve", stripe.Account.retrieve)
            return True
        except PaymentMethodError as e:
            logger.error(f"Payment health check failed: {e}")
            return False
