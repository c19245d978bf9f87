"""
Unit tests for the Stripe webhook reconciler.

Events are fed through BillingFacade.handle_webhook with a payment provider
double whose construct_event simply decodes the JSON body.
"""

import json
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from common.core.time import utc_now
from common.db.scoped import get_session
from packages.billing.exceptions import (
    SubscriptionNotReconciled,
    WebhookSignatureInvalid,
)
from packages.billing.models.database.billing_event import BillingEventEntity
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.domain.enums import (
    BillingCycle,
    InvoiceStatus,
    SubscriptionStatus,
)
from packages.billing.repositories.billing_event_repository import (
    BillingEventRepository,
)
from packages.billing.repositories.invoice_repository import InvoiceRepository
from packages.billing.repositories.notification_repository import (
    BillingNotificationRepository,
)
from packages.billing.webhooks.stripe_webhook import WebhookOutcome

ACCOUNT_ID = "acct_hook_1"


async def _count(entity, *filters) -> int:
    async with get_session() as session:
        return await session.scalar(
            select(func.count()).select_from(entity).where(*filters)
        )


def _body(event) -> bytes:
    return json.dumps(event).encode()


@pytest.fixture
def checkout_event(stripe_event, stripe_subscription_object):
    def _build(event_id="evt_checkout_1", plan_id="pro", expanded=True, **metadata):
        session = {
            "id": "cs_test_123",
            "object": "checkout.session",
            "customer": "cus_hook_1",
            "subscription": (
                stripe_subscription_object(subscription_id="sub_hook_1")
                if expanded
                else "sub_hook_1"
            ),
            "metadata": {"account_id": ACCOUNT_ID, "plan_id": plan_id, **metadata},
        }
        return stripe_event("checkout.session.completed", session, event_id=event_id)

    return _build


@pytest.fixture
def invoice_object():
    def _build(invoice_id="in_1", subscription="sub_test_123", **overrides):
        data = {
            "id": invoice_id,
            "object": "invoice",
            "customer": "cus_test_123",
            "subscription": subscription,
            "amount_due": 2900,
            "amount_paid": 2900,
            "currency": "usd",
            "hosted_invoice_url": "https://invoice.stripe.com/i/in_1",
            "lines": {
                "data": [{"description": "1 x Pro", "amount": 2900, "quantity": 1}]
            },
        }
        data.update(overrides)
        return data

    return _build


@pytest.mark.asyncio
class TestCheckoutCompleted:
    async def test_creates_active_subscription(self, facade, checkout_event):
        outcome = await facade.handle_webhook(_body(checkout_event()), "sig")

        assert outcome == WebhookOutcome.PROCESSED
        subscription = await facade.subscription_service.get(ACCOUNT_ID)
        assert subscription.plan_id == "pro"
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.billing_cycle == BillingCycle.MONTHLY
        assert subscription.stripe_subscription_id == "sub_hook_1"
        assert subscription.stripe_customer_id == "cus_hook_1"
        assert subscription.last_processor_event_at is not None

        audit = await BillingEventRepository().get_by_external_id("evt_checkout_1")
        assert audit.processed is True
        assert audit.account_id == ACCOUNT_ID

    async def test_fetches_subscription_when_not_expanded(
        self, facade, checkout_event, mock_payment_provider, stripe_subscription_object
    ):
        mock_payment_provider.retrieve_subscription.return_value = (
            stripe_subscription_object(subscription_id="sub_hook_1", period_days=365)
        )

        await facade.handle_webhook(
            _body(checkout_event(expanded=False, billing_cycle="yearly")), "sig"
        )

        mock_payment_provider.retrieve_subscription.assert_awaited_once_with("sub_hook_1")
        subscription = await facade.subscription_service.get(ACCOUNT_ID)
        assert subscription.billing_cycle == BillingCycle.YEARLY
        period = subscription.current_period_end - subscription.current_period_start
        assert period == timedelta(days=365)

    async def test_duplicate_delivery_applies_once(
        self, facade, checkout_event, mock_payment_provider
    ):
        body = _body(checkout_event())

        outcomes = [await facade.handle_webhook(body, "sig") for _ in range(3)]

        assert outcomes == [
            WebhookOutcome.PROCESSED,
            WebhookOutcome.DUPLICATE,
            WebhookOutcome.DUPLICATE,
        ]
        assert await _count(BillingEventEntity) == 1
        assert await _count(
            SubscriptionEntity, SubscriptionEntity.account_id == ACCOUNT_ID
        ) == 1

    async def test_second_checkout_overwrites_single_row(self, facade, checkout_event):
        await facade.handle_webhook(_body(checkout_event("evt_a")), "sig")
        first = await facade.subscription_service.get(ACCOUNT_ID)

        await facade.handle_webhook(
            _body(checkout_event("evt_b", plan_id="business")), "sig"
        )

        second = await facade.subscription_service.get(ACCOUNT_ID)
        assert second.id == first.id
        assert second.plan_id == "business"
        assert await _count(
            SubscriptionEntity, SubscriptionEntity.account_id == ACCOUNT_ID
        ) == 1

    async def test_unknown_plan_is_audited_not_applied(self, facade, checkout_event):
        outcome = await facade.handle_webhook(
            _body(checkout_event(plan_id="platinum")), "sig"
        )

        assert outcome == WebhookOutcome.IGNORED
        assert await facade.subscription_service.get(ACCOUNT_ID) is None
        audit = await BillingEventRepository().get_by_external_id("evt_checkout_1")
        assert audit.processed is False


@pytest.mark.asyncio
class TestSubscriptionEvents:
    async def test_update_overwrites_status_and_flag(
        self, facade, pro_subscription, stripe_event, stripe_subscription_object
    ):
        event = stripe_event(
            "customer.subscription.updated",
            stripe_subscription_object(status="past_due", cancel_at_period_end=True),
        )

        await facade.handle_webhook(_body(event), "sig")

        subscription = await facade.subscription_service.get(pro_subscription.account_id)
        assert subscription.status == SubscriptionStatus.PAST_DUE
        assert subscription.cancel_at_period_end is True

    async def test_paused_maps_to_unpaid(
        self, facade, pro_subscription, stripe_event, stripe_subscription_object
    ):
        event = stripe_event(
            "customer.subscription.updated", stripe_subscription_object(status="paused")
        )

        await facade.handle_webhook(_body(event), "sig")

        subscription = await facade.subscription_service.get(pro_subscription.account_id)
        assert subscription.status == SubscriptionStatus.UNPAID

    async def test_out_of_order_update_is_ignored(
        self, facade, pro_subscription, stripe_event, stripe_subscription_object
    ):
        now = int(utc_now().timestamp())
        newer = stripe_event(
            "customer.subscription.updated",
            stripe_subscription_object(status="past_due"),
            event_id="evt_new",
            created=now,
        )
        older = stripe_event(
            "customer.subscription.updated",
            stripe_subscription_object(status="active"),
            event_id="evt_old",
            created=now - 600,
        )

        await facade.handle_webhook(_body(newer), "sig")
        await facade.handle_webhook(_body(older), "sig")

        subscription = await facade.subscription_service.get(pro_subscription.account_id)
        assert subscription.status == SubscriptionStatus.PAST_DUE
        assert await _count(BillingEventEntity) == 2

    async def test_deleted_cancels(
        self, facade, pro_subscription, stripe_event, stripe_subscription_object
    ):
        event = stripe_event(
            "customer.subscription.deleted",
            stripe_subscription_object(status="canceled"),
        )

        await facade.handle_webhook(_body(event), "sig")

        subscription = await facade.subscription_service.get(pro_subscription.account_id)
        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.canceled_at is not None

    async def test_update_for_unknown_subscription_is_ignored(
        self, facade, stripe_event, stripe_subscription_object
    ):
        event = stripe_event(
            "customer.subscription.updated",
            stripe_subscription_object(subscription_id="sub_missing"),
        )

        outcome = await facade.handle_webhook(_body(event), "sig")

        assert outcome == WebhookOutcome.IGNORED


@pytest.mark.asyncio
class TestInvoiceEvents:
    async def test_payment_failed_sets_past_due_and_notifies_once(
        self, facade, pro_subscription, stripe_event, invoice_object
    ):
        event = stripe_event(
            "invoice.payment_failed",
            invoice_object(amount_paid=0),
            event_id="evt_failed",
        )

        await facade.handle_webhook(_body(event), "sig")
        await facade.handle_webhook(_body(event), "sig")

        subscription = await facade.subscription_service.get(pro_subscription.account_id)
        assert subscription.status == SubscriptionStatus.PAST_DUE
        notifications = await BillingNotificationRepository().list_for_account(
            pro_subscription.account_id
        )
        assert len(notifications) == 1
        assert notifications[0].notification_type.value == "payment_failed"
        assert notifications[0].data["invoice_id"] == "in_1"

    async def test_invoice_paid_is_mirrored_without_status_change(
        self, facade, create_subscription, stripe_event, invoice_object
    ):
        subscription = await create_subscription(status=SubscriptionStatus.PAST_DUE)
        event = stripe_event(
            "invoice.paid",
            invoice_object(status_transitions={"paid_at": int(utc_now().timestamp())}),
        )

        outcome = await facade.handle_webhook(_body(event), "sig")

        assert outcome == WebhookOutcome.PROCESSED
        invoice = await InvoiceRepository().get_by_external_id("in_1")
        assert invoice.account_id == subscription.account_id
        assert invoice.subscription_id == subscription.id
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.amount_cents == 2900
        assert invoice.paid_at is not None
        assert invoice.line_items[0].description == "1 x Pro"
        stored = await facade.subscription_service.get(subscription.account_id)
        assert stored.status == SubscriptionStatus.PAST_DUE

    async def test_invoice_matched_by_customer(
        self, facade, pro_subscription, stripe_event, invoice_object
    ):
        event = stripe_event("invoice.paid", invoice_object(subscription=None))

        await facade.handle_webhook(_body(event), "sig")

        invoice = await InvoiceRepository().get_by_external_id("in_1")
        assert invoice.subscription_id == pro_subscription.id

    async def test_invoice_before_checkout_is_retried(
        self, facade, stripe_event, invoice_object, checkout_event
    ):
        event = stripe_event(
            "invoice.paid",
            invoice_object(subscription="sub_hook_1", customer="cus_hook_1"),
            event_id="evt_early_invoice",
        )

        with pytest.raises(SubscriptionNotReconciled):
            await facade.handle_webhook(_body(event), "sig")

        assert (
            await BillingEventRepository().get_by_external_id("evt_early_invoice")
            is None
        )
        assert await InvoiceRepository().get_by_external_id("in_1") is None

        await facade.handle_webhook(_body(checkout_event()), "sig")
        outcome = await facade.handle_webhook(_body(event), "sig")

        assert outcome == WebhookOutcome.PROCESSED
        invoice = await InvoiceRepository().get_by_external_id("in_1")
        assert invoice.account_id == ACCOUNT_ID

    async def test_failed_invoice_before_checkout_is_retried(
        self, facade, stripe_event, invoice_object, checkout_event
    ):
        event = stripe_event(
            "invoice.payment_failed",
            invoice_object(subscription="sub_hook_1", customer="cus_hook_1"),
            event_id="evt_early_failure",
            created=int(utc_now().timestamp()) + 60,
        )

        with pytest.raises(SubscriptionNotReconciled):
            await facade.handle_webhook(_body(event), "sig")

        await facade.handle_webhook(_body(checkout_event()), "sig")
        outcome = await facade.handle_webhook(_body(event), "sig")

        assert outcome == WebhookOutcome.PROCESSED
        subscription = await facade.subscription_service.get(ACCOUNT_ID)
        assert subscription.status == SubscriptionStatus.PAST_DUE
        notifications = await BillingNotificationRepository().list_for_account(
            ACCOUNT_ID
        )
        assert len(notifications) == 1

    async def test_payment_failed_does_not_revive_canceled(
        self, facade, create_subscription, stripe_event, invoice_object
    ):
        await create_subscription(status=SubscriptionStatus.CANCELED)
        event = stripe_event("invoice.payment_failed", invoice_object(amount_paid=0))

        outcome = await facade.handle_webhook(_body(event), "sig")

        assert outcome == WebhookOutcome.PROCESSED
        subscription = await facade.subscription_service.get("acct_test_1")
        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.is_live() is False
        notifications = await BillingNotificationRepository().list_for_account(
            "acct_test_1"
        )
        assert len(notifications) == 1

    async def test_late_update_does_not_revive_canceled(
        self, facade, create_subscription, stripe_event, stripe_subscription_object
    ):
        await create_subscription(status=SubscriptionStatus.CANCELED)
        event = stripe_event(
            "customer.subscription.updated",
            stripe_subscription_object(status="past_due"),
        )

        await facade.handle_webhook(_body(event), "sig")

        subscription = await facade.subscription_service.get("acct_test_1")
        assert subscription.status == SubscriptionStatus.CANCELED


@pytest.mark.asyncio
class TestDeliveryGuarantees:
    async def test_unknown_type_is_audited_unprocessed(self, facade, stripe_event):
        event = stripe_event("customer.created", {"id": "cus_1"}, event_id="evt_unknown")

        outcome = await facade.handle_webhook(_body(event), "sig")

        assert outcome == WebhookOutcome.IGNORED
        audit = await BillingEventRepository().get_by_external_id("evt_unknown")
        assert audit.processed is False
        assert audit.event_type == "customer.created"
        assert audit.payload["data"]["object"]["id"] == "cus_1"

    async def test_bad_signature_records_nothing(
        self, facade, mock_payment_provider, stripe_event
    ):
        mock_payment_provider.construct_event.side_effect = WebhookSignatureInvalid()

        with pytest.raises(WebhookSignatureInvalid):
            await facade.handle_webhook(b"{}", "bad")

        assert await _count(BillingEventEntity) == 0

    async def test_non_event_body_is_rejected(self, facade, mock_payment_provider):
        mock_payment_provider.construct_event.side_effect = None
        mock_payment_provider.construct_event.return_value = {"hello": "world"}

        with pytest.raises(WebhookSignatureInvalid):
            await facade.handle_webhook(b"{}", "sig")

    async def test_storage_failure_rolls_back_audit_row(
        self, facade, pro_subscription, stripe_event, invoice_object
    ):
        event = stripe_event("invoice.paid", invoice_object(), event_id="evt_retry")
        original_upsert = facade.reconciler.invoice_repo.upsert
        facade.reconciler.invoice_repo.upsert = AsyncMock(
            side_effect=SQLAlchemyError("connection lost")
        )

        with pytest.raises(SQLAlchemyError):
            await facade.handle_webhook(_body(event), "sig")

        assert await BillingEventRepository().get_by_external_id("evt_retry") is None

        # Redelivery after recovery is applied normally
        facade.reconciler.invoice_repo.upsert = original_upsert
        outcome = await facade.handle_webhook(_body(event), "sig")

        assert outcome == WebhookOutcome.PROCESSED
        assert await InvoiceRepository().get_by_external_id("in_1") is not None
