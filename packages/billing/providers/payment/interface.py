"""
Interface for payment providers.

Abstracts payment processing away from specific platforms (Stripe, Paddle, etc.)
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from pydantic import BaseModel

from packages.billing.models.domain.enums import BillingCycle
from packages.billing.models.domain.payment_method import (
    Coupon,
    PaymentMethod,
    PaymentMethodList,
)
from packages.billing.models.domain.plans import Plan


class CheckoutSession(BaseModel):
    """Hosted checkout the client is redirected to."""

    session_id: str
    url: str
    customer_id: Optional[str] = None


class PaymentProviderInterface(ABC):
    """
    Abstract interface for payment providers.

    Implementations raise ``PaymentMethodError`` when the processor rejects a
    call and ``ProcessorStateUnknown`` when it does not answer in time.
    """

    @abstractmethod
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
        """
        Create a checkout session for subscription payment.

        The account id, plan id and cycle travel in the session metadata and
        come back on ``checkout.session.completed``. ``promotion_code_id`` is
        applied as the session discount.
        """
        pass

    @abstractmethod
    async def update_subscription_price(
        self,
        stripe_subscription_id: str,
        plan: Plan,
        billing_cycle: BillingCycle,
        account_id: str,
        idempotency_key: Optional[str] = None,
    ) -> None:
        """Move an existing subscription to another plan price."""
        pass

    @abstractmethod
    async def set_cancel_at_period_end(
        self,
        stripe_subscription_id: str,
        cancel_at_period_end: bool,
        idempotency_key: Optional[str] = None,
    ) -> None:
        """Schedule (or unschedule) cancellation at the end of the period."""
        pass

    @abstractmethod
    async def retrieve_subscription(self, stripe_subscription_id: str) -> dict[str, Any]:
        """Fetch the processor's subscription object as a plain dict."""
        pass

    @abstractmethod
    async def list_payment_methods(self, customer_id: str) -> PaymentMethodList:
        """Cards saved on the customer, with the invoice default flagged."""
        pass

    @abstractmethod
    async def attach_payment_method(
        self, customer_id: str, payment_method_id: str, set_as_default: bool = False
    ) -> PaymentMethod:
        """Attach a payment method to the customer, optionally as invoice default."""
        pass

    @abstractmethod
    async def detach_payment_method(self, payment_method_id: str) -> None:
        pass

    @abstractmethod
    async def find_promotion_code(self, code: str) -> Optional[Coupon]:
        """Look up a customer-facing promotion code. None if it does not exist."""
        pass

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """
        Verify a webhook signature and decode the event.

        Raises:
            WebhookSignatureInvalid: missing or invalid signature, or a body
                that is not a valid event.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the payment backend is available and healthy.

        Returns:
            True if healthy, False otherwise
        """
        pass
