"""
Domain models for Stripe webhook payloads.

Strongly-typed Pydantic models for the processor events the reconciler acts
on. The raw envelope is parsed into a tagged union keyed by ``kind``; any
event we do not understand (unknown type or unexpected shape) becomes an
``UnknownStripeEvent`` that is audited but has no effect.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from enum import Enum
from pydantic import BaseModel, Field, ValidationError, model_validator

from common.core.otel_axiom_exporter import get_logger
from common.core.time import from_timestamp
from packages.billing.models.domain.enums import SubscriptionStatus

logger = get_logger(__name__)


class StripeWebhookType(str, Enum):
    """Stripe webhook event types we act on."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class StripeSubscriptionStatus(str, Enum):
    """Stripe subscription status values."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"

    def to_domain(self) -> SubscriptionStatus:
        """Map to our status. Paused collection is treated as unpaid."""
        if self == StripeSubscriptionStatus.PAUSED:
            return SubscriptionStatus.UNPAID
        return SubscriptionStatus(self.value)


class StripeMetadata(BaseModel):
    """Metadata we attach at checkout and read back from events."""

    account_id: Optional[str] = None
    plan_id: Optional[str] = None
    billing_cycle: Optional[str] = None


class StripeSubscriptionData(BaseModel):
    """
    Stripe subscription object.

    Newer API versions report the period on the subscription items instead
    of the subscription; both shapes are accepted.
    """

    id: str
    customer: Optional[str] = None
    status: StripeSubscriptionStatus
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)

    @model_validator(mode="before")
    @classmethod
    def _period_from_items(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("current_period_start") is not None:
            return data
        items = (data.get("items") or {}).get("data") or []
        if items:
            data = dict(data)
            data["current_period_start"] = items[0].get("current_period_start")
            data["current_period_end"] = items[0].get("current_period_end")
        return data

    @property
    def period_start(self) -> Optional[datetime]:
        return from_timestamp(self.current_period_start)

    @property
    def period_end(self) -> Optional[datetime]:
        return from_timestamp(self.current_period_end)

    @property
    def has_period(self) -> bool:
        return (
            self.current_period_start is not None
            and self.current_period_end is not None
        )


class StripeInvoiceLine(BaseModel):
    description: Optional[str] = None
    amount: int = 0
    quantity: Optional[int] = None


class StripeInvoiceLines(BaseModel):
    data: list[StripeInvoiceLine] = Field(default_factory=list)


class StripeInvoiceData(BaseModel):
    """Stripe invoice object."""

    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    status: Optional[str] = None
    amount_due: int = 0
    amount_paid: int = 0
    currency: str = "usd"
    hosted_invoice_url: Optional[str] = None
    lines: StripeInvoiceLines = Field(default_factory=StripeInvoiceLines)
    status_transitions: dict[str, Optional[int]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _subscription_from_parent(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("subscription"):
            return data
        details = (data.get("parent") or {}).get("subscription_details") or {}
        if details.get("subscription"):
            data = dict(data)
            data["subscription"] = details["subscription"]
        return data

    @property
    def paid_at(self) -> Optional[datetime]:
        return from_timestamp(self.status_transitions.get("paid_at"))


class StripeCheckoutSessionData(BaseModel):
    """Stripe checkout session object (``subscription`` may be expanded)."""

    id: str
    customer: Optional[str] = None
    subscription: Optional[Union[StripeSubscriptionData, str]] = None
    client_reference_id: Optional[str] = None
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)

    @property
    def subscription_id(self) -> Optional[str]:
        if isinstance(self.subscription, StripeSubscriptionData):
            return self.subscription.id
        return self.subscription

    @property
    def expanded_subscription(self) -> Optional[StripeSubscriptionData]:
        if isinstance(self.subscription, StripeSubscriptionData):
            return self.subscription
        return None

    @property
    def account_id(self) -> Optional[str]:
        return self.metadata.account_id or self.client_reference_id


class StripeEventData(BaseModel):
    """Stripe event data wrapper."""

    object: dict[str, Any]


class StripeWebhookPayload(BaseModel):
    """Stripe event envelope."""

    id: str
    type: str
    data: StripeEventData
    created: int
    livemode: bool = False


class _StripeEventBase(BaseModel):
    event_id: str
    event_type: str
    created: int

    @property
    def occurred_at(self) -> datetime:
        return from_timestamp(self.created)


class CheckoutSessionCompleted(_StripeEventBase):
    kind: Literal["checkout_session_completed"] = "checkout_session_completed"
    session: StripeCheckoutSessionData


class SubscriptionUpdated(_StripeEventBase):
    kind: Literal["subscription_updated"] = "subscription_updated"
    subscription: StripeSubscriptionData


class SubscriptionDeleted(_StripeEventBase):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription: StripeSubscriptionData


class InvoicePaid(_StripeEventBase):
    kind: Literal["invoice_paid"] = "invoice_paid"
    invoice: StripeInvoiceData


class InvoicePaymentFailed(_StripeEventBase):
    kind: Literal["invoice_payment_failed"] = "invoice_payment_failed"
    invoice: StripeInvoiceData


class UnknownStripeEvent(_StripeEventBase):
    kind: Literal["unknown"] = "unknown"
    reason: str = "unhandled event type"


StripeWebhookEvent = Annotated[
    Union[
        CheckoutSessionCompleted,
        SubscriptionUpdated,
        SubscriptionDeleted,
        InvoicePaid,
        InvoicePaymentFailed,
        UnknownStripeEvent,
    ],
    Field(discriminator="kind"),
]

_EVENT_MODELS: dict[StripeWebhookType, tuple[type[_StripeEventBase], str]] = {
    StripeWebhookType.CHECKOUT_SESSION_COMPLETED: (CheckoutSessionCompleted, "session"),
    StripeWebhookType.SUBSCRIPTION_UPDATED: (SubscriptionUpdated, "subscription"),
    StripeWebhookType.SUBSCRIPTION_DELETED: (SubscriptionDeleted, "subscription"),
    StripeWebhookType.INVOICE_PAID: (InvoicePaid, "invoice"),
    StripeWebhookType.INVOICE_PAYMENT_FAILED: (InvoicePaymentFailed, "invoice"),
}


def parse_webhook_event(payload: StripeWebhookPayload) -> StripeWebhookEvent:
    """Turn a verified envelope into a typed event."""
    base = {
        "event_id": payload.id,
        "event_type": payload.type,
        "created": payload.created,
    }
    try:
        webhook_type = StripeWebhookType(payload.type)
    except ValueError:
        return UnknownStripeEvent(**base)

    model, field = _EVENT_MODELS[webhook_type]
    try:
        return model(**base, **{field: payload.data.object})
    except ValidationError as e:
        logger.warning(
            f"Unexpected payload shape for {payload.type}: {e.error_count()} errors",
            extra={"event_id": payload.id, "event_type": payload.type},
        )
        return UnknownStripeEvent(**base, reason="unexpected payload shape")
