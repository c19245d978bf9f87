"""
Stripe webhook reconciler.

Turns processor events into local state:
- Checkout session completion (creates the account's subscription)
- Subscription updates and deletion
- Invoice payment success/failure

Every accepted event is first written to the ``billing_events`` audit table.
The insert and the effect share one transaction, and the unique index on
``external_event_id`` decides which delivery of an event gets to apply it.
"""

from enum import Enum
from typing import Optional
from datetime import timedelta
from pydantic import ValidationError

from common.core.otel_axiom_exporter import trace_span, get_logger, log_span_event
from common.core.time import utc_now
from common.db.scoped import transaction
from packages.billing.exceptions import (
    SubscriptionNotReconciled,
    WebhookSignatureInvalid,
)
from packages.billing.models.domain.billing_event import BillingEventCreateModel
from packages.billing.models.domain.enums import (
    BillingCycle,
    InvoiceStatus,
    SubscriptionStatus,
)
from packages.billing.models.domain.invoice import InvoiceLineItem, InvoiceUpsertModel
from packages.billing.models.domain.notification import BillingNotificationCreateModel
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.models.domain.stripe_webhooks import (
    CheckoutSessionCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    StripeCheckoutSessionData,
    StripeInvoiceData,
    StripeSubscriptionData,
    StripeWebhookEvent,
    StripeWebhookPayload,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnknownStripeEvent,
    parse_webhook_event,
)
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.repositories.billing_event_repository import (
    BillingEventRepository,
)
from packages.billing.repositories.invoice_repository import InvoiceRepository
from packages.billing.repositories.notification_repository import (
    BillingNotificationRepository,
)
from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.subscription_service import SubscriptionService

logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    """What happened to a delivered event. All of them are acknowledged."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class StripeWebhookReconciler:
    """Applies verified Stripe events exactly once."""

    def __init__(
        self,
        payment: Optional[PaymentProviderInterface] = None,
        subscription_service: Optional[SubscriptionService] = None,
        plan_catalog: Optional[PlanCatalog] = None,
    ):
        self.payment = payment or get_payment_provider()
        self.plan_catalog = plan_catalog or PlanCatalog()
        self.subscription_service = subscription_service or SubscriptionService(
            payment=self.payment, plan_catalog=self.plan_catalog
        )
        self.event_repo = BillingEventRepository()
        self.invoice_repo = InvoiceRepository()
        self.notification_repo = BillingNotificationRepository()

    @trace_span
    async def handle(
        self, payload: bytes, signature: Optional[str]
    ) -> WebhookOutcome:
        """
        Verify, deduplicate and apply one webhook delivery.

        Raises:
            WebhookSignatureInvalid: signature check failed or the body is
                not a Stripe event
            SubscriptionNotReconciled: an invoice event arrived before the
                subscription it belongs to was stored
        Storage errors propagate after the transaction (audit row included)
        is rolled back, so the processor redelivers.
        """
        raw_event = self.payment.construct_event(payload, signature)
        try:
            envelope = StripeWebhookPayload(**raw_event)
        except ValidationError as e:
            logger.error(
                "Invalid Stripe webhook payload",
                extra={"validation_errors": e.errors()},
            )
            raise WebhookSignatureInvalid("Invalid webhook payload")

        event = parse_webhook_event(envelope)
        logger.info(
            f"Received Stripe webhook: {envelope.type}",
            extra={
                "event_id": envelope.id,
                "event_type": envelope.type,
                "kind": event.kind,
                "livemode": envelope.livemode,
            },
        )

        # Cheap early exit; the unique index below is what actually decides
        if await self.event_repo.get_by_external_id(envelope.id) is not None:
            return self._duplicate(event)

        checkout_subscription = None
        if isinstance(event, CheckoutSessionCompleted):
            # Processor calls happen before any connection is taken
            checkout_subscription = await self._checkout_subscription(event.session)

        async with transaction():
            audit = await self.event_repo.insert_if_absent(
                BillingEventCreateModel(
                    external_event_id=envelope.id,
                    event_type=envelope.type,
                    account_id=self._account_hint(event),
                    payload=raw_event,
                )
            )
            if audit is None:
                return self._duplicate(event)

            if isinstance(event, UnknownStripeEvent):
                logger.info(
                    f"Unhandled Stripe webhook type: {event.event_type}",
                    extra={"event_id": event.event_id, "reason": event.reason},
                )
                return WebhookOutcome.IGNORED

            applied = await self._apply(event, checkout_subscription)
            if not applied:
                return WebhookOutcome.IGNORED

            await self.event_repo.mark_processed(audit.id)

        log_span_event(
            "webhook.processed",
            {"event_id": event.event_id, "event_type": event.event_type},
        )
        return WebhookOutcome.PROCESSED

    def _duplicate(self, event: StripeWebhookEvent) -> WebhookOutcome:
        logger.info(
            f"Skipping duplicate Stripe event {event.event_id}",
            extra={"event_id": event.event_id, "event_type": event.event_type},
        )
        log_span_event("webhook.duplicate", {"event_id": event.event_id})
        return WebhookOutcome.DUPLICATE

    def _account_hint(self, event: StripeWebhookEvent) -> Optional[str]:
        if isinstance(event, CheckoutSessionCompleted):
            return event.session.account_id
        if isinstance(event, (SubscriptionUpdated, SubscriptionDeleted)):
            return event.subscription.metadata.account_id
        return None

    async def _apply(
        self,
        event: StripeWebhookEvent,
        checkout_subscription: Optional[StripeSubscriptionData],
    ) -> bool:
        """Apply the event's effect. Returns False when there was nothing to apply."""
        if isinstance(event, CheckoutSessionCompleted):
            return await self._handle_checkout_completed(event, checkout_subscription)
        elif isinstance(event, SubscriptionUpdated):
            return await self._handle_subscription_updated(event)
        elif isinstance(event, SubscriptionDeleted):
            return await self._handle_subscription_deleted(event)
        elif isinstance(event, InvoicePaid):
            return await self._handle_invoice_paid(event)
        elif isinstance(event, InvoicePaymentFailed):
            return await self._handle_invoice_payment_failed(event)
        return False

    async def _checkout_subscription(
        self, session: StripeCheckoutSessionData
    ) -> Optional[StripeSubscriptionData]:
        """Subscription behind a checkout, fetched when the event lacks its period."""
        expanded = session.expanded_subscription
        if expanded is not None and expanded.has_period:
            return expanded
        if not session.subscription_id:
            return None
        data = await self.payment.retrieve_subscription(session.subscription_id)
        return StripeSubscriptionData(**data)

    async def _handle_checkout_completed(
        self,
        event: CheckoutSessionCompleted,
        stripe_subscription: Optional[StripeSubscriptionData],
    ) -> bool:
        """
        Create the account's subscription once the processor confirms payment.

        An existing row for the account (e.g. a canceled one) is overwritten.
        """
        session = event.session
        account_id = session.account_id
        if not account_id or not session.subscription_id:
            logger.error(
                "Missing account or subscription id in checkout session",
                extra={"event_id": event.event_id, "session_id": session.id},
            )
            return False

        metadata = session.metadata
        if stripe_subscription is not None:
            plan_id = metadata.plan_id or stripe_subscription.metadata.plan_id
            cycle_value = metadata.billing_cycle or stripe_subscription.metadata.billing_cycle
        else:
            plan_id, cycle_value = metadata.plan_id, metadata.billing_cycle

        plan = self.plan_catalog.find_plan(plan_id) if plan_id else None
        if plan is None:
            logger.error(
                f"Unknown plan {plan_id!r} in checkout session metadata",
                extra={"event_id": event.event_id, "account_id": account_id},
            )
            return False

        try:
            billing_cycle = BillingCycle(cycle_value or BillingCycle.MONTHLY.value)
        except ValueError:
            logger.warning(
                f"Unknown billing cycle {cycle_value!r}, defaulting to monthly",
                extra={"event_id": event.event_id, "account_id": account_id},
            )
            billing_cycle = BillingCycle.MONTHLY

        if stripe_subscription is not None and stripe_subscription.has_period:
            period_start = stripe_subscription.period_start
            period_end = stripe_subscription.period_end
        else:
            period_start = utc_now()
            period_end = period_start + timedelta(days=billing_cycle.days_in_period)

        subscription = await self.subscription_service.create(
            SubscriptionCreateModel(
                account_id=account_id,
                plan_id=plan.id,
                billing_cycle=billing_cycle,
                status=SubscriptionStatus.ACTIVE,
                current_period_start=period_start,
                current_period_end=period_end,
                cancel_at_period_end=False,
                stripe_subscription_id=session.subscription_id,
                stripe_customer_id=session.customer,
                last_processor_event_at=event.occurred_at,
            )
        )

        logger.info(
            f"Checkout completed for account {account_id}",
            extra={
                "event_id": event.event_id,
                "account_id": account_id,
                "subscription_id": subscription.id,
                "plan_id": plan.id,
                "session_id": session.id,
                "customer_id": session.customer,
            },
        )
        return True

    async def _handle_subscription_updated(self, event: SubscriptionUpdated) -> bool:
        data = event.subscription
        updated = await self.subscription_service.apply_processor_status(
            stripe_subscription_id=data.id,
            status=data.status.to_domain(),
            period_start=data.period_start,
            period_end=data.period_end,
            cancel_at_period_end=data.cancel_at_period_end,
            event_at=event.occurred_at,
        )
        return updated is not None

    async def _handle_subscription_deleted(self, event: SubscriptionDeleted) -> bool:
        updated = await self.subscription_service.apply_processor_status(
            stripe_subscription_id=event.subscription.id,
            status=SubscriptionStatus.CANCELED,
            event_at=event.occurred_at,
        )
        return updated is not None

    async def _subscription_for_invoice(
        self, invoice: StripeInvoiceData, event: StripeWebhookEvent
    ) -> Subscription:
        """
        Local subscription an invoice belongs to.

        Invoice events can arrive before the checkout completion that creates
        the row. Raising here rolls back the audit insert so the redelivery
        is applied once the subscription exists.
        """
        repo = self.subscription_service.subscription_repo
        if invoice.subscription:
            subscription = await repo.get_by_stripe_subscription_id(invoice.subscription)
            if subscription is not None:
                return subscription
        if invoice.customer:
            subscription = await repo.get_by_stripe_customer_id(invoice.customer)
            if subscription is not None:
                return subscription

        reference = invoice.subscription or invoice.customer or invoice.id
        logger.warning(
            f"No subscription yet for invoice {invoice.id}, deferring {event.event_type}",
            extra={
                "event_id": event.event_id,
                "invoice_id": invoice.id,
                "customer_id": invoice.customer,
                "stripe_subscription_id": invoice.subscription,
            },
        )
        raise SubscriptionNotReconciled(reference)

    async def _handle_invoice_paid(self, event: InvoicePaid) -> bool:
        """Mirror the paid invoice. Subscription status is left alone."""
        invoice = event.invoice
        subscription = await self._subscription_for_invoice(invoice, event)

        await self.invoice_repo.upsert(
            InvoiceUpsertModel(
                account_id=subscription.account_id,
                subscription_id=subscription.id,
                external_invoice_id=invoice.id,
                amount_cents=invoice.amount_paid,
                currency=invoice.currency,
                status=InvoiceStatus.PAID,
                paid_at=invoice.paid_at or event.occurred_at,
                line_items=[
                    InvoiceLineItem(
                        description=line.description,
                        amount_cents=line.amount,
                        quantity=line.quantity,
                    ).model_dump()
                    for line in invoice.lines.data
                ],
                hosted_invoice_url=invoice.hosted_invoice_url,
            )
        )

        logger.info(
            f"Stripe invoice paid: {invoice.id}",
            extra={
                "invoice_id": invoice.id,
                "account_id": subscription.account_id,
                "amount_paid": invoice.amount_paid,
            },
        )
        return True

    async def _handle_invoice_payment_failed(self, event: InvoicePaymentFailed) -> bool:
        """Move the subscription to past_due and notify the account once."""
        invoice = event.invoice
        subscription = await self._subscription_for_invoice(invoice, event)

        if subscription.stripe_subscription_id:
            await self.subscription_service.mark_status(
                subscription.stripe_subscription_id,
                SubscriptionStatus.PAST_DUE,
                event_at=event.occurred_at,
            )

        await self.notification_repo.create(
            BillingNotificationCreateModel.payment_failed(
                subscription.account_id,
                {
                    "invoice_id": invoice.id,
                    "amount_due": invoice.amount_due,
                    "currency": invoice.currency,
                },
            )
        )

        logger.warning(
            f"Stripe invoice payment failed: {invoice.id}",
            extra={
                "invoice_id": invoice.id,
                "account_id": subscription.account_id,
                "amount_due": invoice.amount_due,
            },
        )
        return True
