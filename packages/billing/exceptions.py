"""
Billing error taxonomy.

Every error carries a stable ``code`` and the HTTP ``status_code`` the API
layer renders it with.
"""

from typing import Any, Optional

from common.core.exceptions import AppException


class BillingError(AppException):
    """Base class for all billing errors."""

    code = "BILLING_ERROR"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NoActiveSubscription(BillingError):
    code = "NO_ACTIVE_SUBSCRIPTION"
    status_code = 404

    def __init__(self, account_id: str):
        super().__init__(f"No active subscription for account {account_id}")
        self.account_id = account_id


class InvalidPlan(BillingError):
    code = "INVALID_PLAN"
    status_code = 400

    def __init__(self, plan_id: str):
        super().__init__(f"Invalid plan: {plan_id}")
        self.plan_id = plan_id


class SubscriptionAlreadyActive(BillingError):
    code = "SUBSCRIPTION_ALREADY_ACTIVE"
    status_code = 409

    def __init__(self, account_id: str):
        super().__init__(
            f"Account {account_id} already has an active subscription. "
            "Use the update endpoint to change plans."
        )
        self.account_id = account_id


class QuotaExceeded(BillingError):
    """Raised when recording usage would push a window over its limit."""

    code = "QUOTA_EXCEEDED"
    status_code = 429

    def __init__(
        self,
        window: str,
        resource: str,
        limit: int,
        current: int,
        requested: int = 1,
    ):
        super().__init__(
            f"{window.capitalize()} quota exceeded for {resource}: "
            f"{current}/{limit} used, {requested} requested"
        )
        self.window = window
        self.resource = resource
        self.limit = limit
        self.current = current
        self.requested = requested

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            window=self.window,
            resource=self.resource,
            limit=self.limit,
            current=self.current,
            requested=self.requested,
        )
        return data


class PaymentMethodError(BillingError):
    """The payment processor rejected the request."""

    code = "PAYMENT_ERROR"
    status_code = 402


class ProcessorStateUnknown(PaymentMethodError):
    """
    The processor call timed out.

    The remote change may or may not have been applied; nothing was
    committed locally and reconciliation will converge on the real state.
    """

    code = "PROCESSOR_STATE_UNKNOWN"
    status_code = 504


class WebhookSignatureInvalid(BillingError):
    code = "INVALID_WEBHOOK_SIGNATURE"
    status_code = 400

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


class SubscriptionNotReconciled(BillingError):
    """
    A processor event refers to a subscription that is not stored yet.

    Rendered as a 5xx so the processor redelivers the event once checkout
    completion has been applied.
    """

    code = "SUBSCRIPTION_NOT_RECONCILED"
    status_code = 503

    def __init__(self, reference: str):
        super().__init__(f"No local subscription for processor reference {reference}")
        self.reference = reference


class InvalidCoupon(BillingError):
    code = "INVALID_COUPON"
    status_code = 400

    def __init__(self, coupon_code: str, reason: str = "not found or inactive"):
        super().__init__(f"Coupon {coupon_code!r} is {reason}")
        self.coupon_code = coupon_code
        self.reason = reason


class PaymentMethodNotFound(BillingError):
    code = "PAYMENT_METHOD_NOT_FOUND"
    status_code = 404

    def __init__(self, payment_method_id: str):
        super().__init__(f"Payment method {payment_method_id} not found")
        self.payment_method_id = payment_method_id
