"""
Unit tests for the billing facade.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from common.core.time import utc_now

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
    SubscriptionStatus,
)
from packages.billing.models.domain.invoice import InvoiceUpsertModel
from packages.billing.models.domain.payment_method import Coupon
from packages.billing.models.domain.subscription import SubscriptionUpdateModel
from packages.billing.repositories.invoice_repository import InvoiceRepository
from packages.billing.repositories.notification_repository import (
    BillingNotificationRepository,
)

SUCCESS_URL = "https://app.example.com/billing/success"
CANCEL_URL = "https://app.example.com/billing/cancel"


@pytest.mark.asyncio
class TestCheckout:
    async def test_creates_session_for_paid_plan(self, facade, mock_payment_provider):
        session = await facade.create_checkout_session(
            "acct_new", "pro", BillingCycle.YEARLY, SUCCESS_URL, CANCEL_URL
        )

        assert session.session_id == "cs_test_123"
        kwargs = mock_payment_provider.create_checkout_session.await_args.kwargs
        assert kwargs["plan"].id == "pro"
        assert kwargs["billing_cycle"] == BillingCycle.YEARLY
        assert kwargs["trial_period_days"] == 7
        assert kwargs["stripe_customer_id"] is None

    async def test_free_plan_is_not_purchasable(self, facade):
        with pytest.raises(InvalidPlan):
            await facade.create_checkout_session(
                "acct_new", "free", BillingCycle.MONTHLY, SUCCESS_URL, CANCEL_URL
            )

    @pytest.mark.parametrize(
        "status", [SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING]
    )
    async def test_rejects_when_already_paying(
        self, facade, create_subscription, mock_payment_provider, status
    ):
        subscription = await create_subscription(status=status)

        with pytest.raises(SubscriptionAlreadyActive) as exc_info:
            await facade.create_checkout_session(
                subscription.account_id,
                "business",
                BillingCycle.MONTHLY,
                SUCCESS_URL,
                CANCEL_URL,
            )

        assert exc_info.value.status_code == 409
        mock_payment_provider.create_checkout_session.assert_not_awaited()

    async def test_canceled_account_reuses_customer(
        self, facade, create_subscription, mock_payment_provider
    ):
        subscription = await create_subscription(status=SubscriptionStatus.CANCELED)

        await facade.create_checkout_session(
            subscription.account_id, "pro", BillingCycle.MONTHLY, SUCCESS_URL, CANCEL_URL
        )

        kwargs = mock_payment_provider.create_checkout_session.await_args.kwargs
        assert kwargs["stripe_customer_id"] == subscription.stripe_customer_id


@pytest.mark.asyncio
class TestSubscriptionOperations:
    async def test_get_subscription_none(self, facade):
        assert await facade.get_subscription("acct_nobody") is None

    async def test_get_subscription_with_usage(self, facade, pro_subscription):
        await facade.track_usage(pro_subscription.account_id, ResourceType.API_CALLS, 10)

        details = await facade.get_subscription(pro_subscription.account_id)

        assert details.plan.id == "pro"
        assert details.usage.get(ResourceType.API_CALLS).used == 10

    async def test_canceled_subscription_has_no_usage(self, facade, create_subscription):
        subscription = await create_subscription(status=SubscriptionStatus.CANCELED)

        details = await facade.get_subscription(subscription.account_id)

        assert details.subscription.status == SubscriptionStatus.CANCELED
        assert details.usage is None

    async def test_update_plan_and_cancel_flag(
        self, facade, pro_subscription, mock_payment_provider
    ):
        details = await facade.update_subscription(
            pro_subscription.account_id,
            plan_id="business",
            cancel_at_period_end=True,
            idempotency_key="req-9",
        )

        assert details.subscription.plan_id == "business"
        assert details.subscription.cancel_at_period_end is True
        price_call = mock_payment_provider.update_subscription_price.await_args
        assert price_call.kwargs["idempotency_key"] == "req-9"
        cancel_call = mock_payment_provider.set_cancel_at_period_end.await_args
        assert cancel_call.kwargs["idempotency_key"] == "req-9:cancel"

    async def test_update_cycle_keeps_plan(self, facade, pro_subscription):
        details = await facade.update_subscription(
            pro_subscription.account_id, billing_cycle=BillingCycle.YEARLY
        )

        assert details.subscription.plan_id == "pro"
        assert details.subscription.billing_cycle == BillingCycle.YEARLY

    async def test_cancel_keeps_access_until_period_end(self, facade, pro_subscription):
        subscription = await facade.cancel_subscription(pro_subscription.account_id)

        assert subscription.cancel_at_period_end is True
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.current_period_end == pro_subscription.current_period_end

    async def test_cancel_without_subscription(self, facade):
        with pytest.raises(NoActiveSubscription):
            await facade.cancel_subscription("acct_nobody")

    async def test_preview_upgrade(self, facade, pro_subscription):
        preview = await facade.preview_upgrade(pro_subscription.account_id, "business")

        assert preview.new_plan_id == "business"
        assert preview.prorated_amount > Decimal("0")


@pytest.mark.asyncio
class TestInvoicesAndOverview:
    async def _invoice(self, account_id, external_id, status=InvoiceStatus.PAID):
        return await InvoiceRepository().upsert(
            InvoiceUpsertModel(
                account_id=account_id,
                external_invoice_id=external_id,
                amount_cents=2900,
                currency="usd",
                status=status,
            )
        )

    async def test_invoice_page_is_clamped(self, facade):
        for i in range(3):
            await self._invoice("acct_1", f"in_{i}")

        page = await facade.get_invoices("acct_1", limit=500, offset=-4)

        assert page.limit == 100
        assert page.offset == 0
        assert page.total == 3

    async def test_overview_without_subscription_is_free_plan(self, facade):
        overview = await facade.get_billing_overview("acct_nobody")

        assert overview.subscription is None
        assert overview.plan.id == "free"
        assert overview.next_invoice is None
        assert overview.recent_invoices == []

    async def test_overview_with_subscription(self, facade, pro_subscription):
        await self._invoice(pro_subscription.account_id, "in_1")

        overview = await facade.get_billing_overview(pro_subscription.account_id)

        assert overview.plan.id == "pro"
        assert overview.usage is not None
        assert overview.next_invoice.amount_cents == 2900
        assert overview.next_invoice.due_at == pro_subscription.current_period_end
        assert [inv.external_invoice_id for inv in overview.recent_invoices] == ["in_1"]

    async def test_no_next_invoice_when_cancel_scheduled(
        self, facade, create_subscription
    ):
        subscription = await create_subscription(cancel_at_period_end=True)

        overview = await facade.get_billing_overview(subscription.account_id)

        assert overview.next_invoice is None

    async def test_prune_usage(self, facade):
        assert await facade.prune_usage() == 0


def _coupon(**overrides) -> Coupon:
    data = dict(
        code="LAUNCH20",
        promotion_code_id="promo_launch20",
        coupon_id="co_launch20",
        percent_off=20.0,
    )
    data.update(overrides)
    return Coupon(**data)


@pytest.mark.asyncio
class TestPlansAndCoupons:
    async def test_list_plans(self, facade):
        response = facade.list_plans()

        assert [p.id for p in response.plans] == ["free", "pro", "business", "enterprise"]

    async def test_valid_coupon(self, facade, mock_payment_provider):
        mock_payment_provider.find_promotion_code.return_value = _coupon()

        coupon = await facade.validate_coupon("LAUNCH20", "pro")

        assert coupon.promotion_code_id == "promo_launch20"
        mock_payment_provider.find_promotion_code.assert_awaited_once_with("LAUNCH20")

    async def test_unknown_coupon(self, facade):
        with pytest.raises(InvalidCoupon) as exc_info:
            await facade.validate_coupon("NOPE", "pro")

        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"active": False}, "inactive"),
            ({"expires_at": utc_now() - timedelta(days=1)}, "expired"),
            ({"max_redemptions": 10, "times_redeemed": 10}, "fully redeemed"),
            ({"applicable_plans": ["business"]}, "not valid for the pro plan"),
        ],
    )
    async def test_unusable_coupon(
        self, facade, mock_payment_provider, overrides, reason
    ):
        mock_payment_provider.find_promotion_code.return_value = _coupon(**overrides)

        with pytest.raises(InvalidCoupon) as exc_info:
            await facade.validate_coupon("LAUNCH20", "pro")

        assert exc_info.value.reason == reason

    async def test_checkout_applies_coupon(self, facade, mock_payment_provider):
        mock_payment_provider.find_promotion_code.return_value = _coupon(
            applicable_plans=["pro", "business"]
        )

        await facade.create_checkout_session(
            "acct_new",
            "pro",
            BillingCycle.MONTHLY,
            SUCCESS_URL,
            CANCEL_URL,
            coupon_code="LAUNCH20",
        )

        kwargs = mock_payment_provider.create_checkout_session.await_args.kwargs
        assert kwargs["promotion_code_id"] == "promo_launch20"

    async def test_checkout_with_invalid_coupon_is_rejected(
        self, facade, mock_payment_provider
    ):
        with pytest.raises(InvalidCoupon):
            await facade.create_checkout_session(
                "acct_new",
                "pro",
                BillingCycle.MONTHLY,
                SUCCESS_URL,
                CANCEL_URL,
                coupon_code="NOPE",
            )

        mock_payment_provider.create_checkout_session.assert_not_awaited()


@pytest.mark.asyncio
class TestPaymentMethods:
    async def test_list_uses_account_customer(
        self, facade, pro_subscription, mock_payment_provider
    ):
        methods = await facade.get_payment_methods(pro_subscription.account_id)

        assert methods.default_payment_method_id == "pm_card_visa"
        mock_payment_provider.list_payment_methods.assert_awaited_once_with(
            pro_subscription.stripe_customer_id
        )

    async def test_add_as_default(self, facade, pro_subscription, mock_payment_provider):
        method = await facade.add_payment_method(
            pro_subscription.account_id, "pm_new", set_as_default=True
        )

        assert method.id == "pm_new"
        assert method.is_default is True
        kwargs = mock_payment_provider.attach_payment_method.await_args.kwargs
        assert kwargs["customer_id"] == pro_subscription.stripe_customer_id

    async def test_remove_own_method(
        self, facade, pro_subscription, mock_payment_provider
    ):
        await facade.remove_payment_method(pro_subscription.account_id, "pm_card_visa")

        mock_payment_provider.detach_payment_method.assert_awaited_once_with(
            "pm_card_visa"
        )

    async def test_remove_foreign_method_is_not_found(
        self, facade, pro_subscription, mock_payment_provider
    ):
        with pytest.raises(PaymentMethodNotFound) as exc_info:
            await facade.remove_payment_method(pro_subscription.account_id, "pm_other")

        assert exc_info.value.status_code == 404
        mock_payment_provider.detach_payment_method.assert_not_awaited()

    async def test_account_without_customer(self, facade, create_subscription):
        subscription = await create_subscription(stripe_customer_id=None)

        with pytest.raises(NoActiveSubscription):
            await facade.get_payment_methods(subscription.account_id)

        with pytest.raises(NoActiveSubscription):
            await facade.get_payment_methods("acct_nobody")


@pytest.mark.asyncio
class TestExpirySweep:
    async def test_lapsed_subscription_goes_past_due_and_notifies(
        self, facade, create_subscription
    ):
        subscription = await create_subscription(period_days=30, started_days_ago=32)

        result = await facade.sweep_expired_subscriptions()

        assert (result.past_due, result.canceled, result.skipped) == (1, 0, 0)
        stored = await facade.subscription_service.get(subscription.account_id)
        assert stored.status == SubscriptionStatus.PAST_DUE
        notifications = await BillingNotificationRepository().list_for_account(
            subscription.account_id
        )
        assert len(notifications) == 1
        assert notifications[0].notification_type.value == "subscription_expired"
        assert notifications[0].title == "Subscription Expired"

    async def test_scheduled_cancellation_is_finalised(
        self, facade, create_subscription
    ):
        subscription = await create_subscription(
            period_days=30, started_days_ago=32, cancel_at_period_end=True
        )

        result = await facade.sweep_expired_subscriptions()

        assert result.canceled == 1
        stored = await facade.subscription_service.get(subscription.account_id)
        assert stored.status == SubscriptionStatus.CANCELED
        assert stored.canceled_at is not None
        assert await BillingNotificationRepository().list_for_account(
            subscription.account_id
        ) == []

    async def test_grace_period_and_current_rows_are_left_alone(
        self, facade, create_subscription
    ):
        # Ended 12 hours ago: still inside the 24 hour grace
        within_grace = await create_subscription(
            account_id="acct_grace",
            stripe_subscription_id="sub_grace",
            stripe_customer_id="cus_grace",
        )
        await create_subscription()
        await facade.subscription_service.subscription_repo.update(
            within_grace.id,
            SubscriptionUpdateModel(current_period_end=utc_now() - timedelta(hours=12)),
        )

        result = await facade.sweep_expired_subscriptions()

        assert (result.past_due, result.canceled) == (0, 0)
        stored = await facade.subscription_service.get("acct_grace")
        assert stored.status == SubscriptionStatus.ACTIVE

    async def test_past_due_rows_are_not_swept_again(self, facade, create_subscription):
        await create_subscription(
            status=SubscriptionStatus.PAST_DUE, period_days=30, started_days_ago=40
        )

        result = await facade.sweep_expired_subscriptions()

        assert result.past_due == 0


@pytest.mark.asyncio
class TestUsageRecords:
    async def test_records_newest_first_and_page_is_clamped(
        self, facade, pro_subscription
    ):
        for quantity in (1, 2, 3):
            await facade.track_usage(
                pro_subscription.account_id, ResourceType.API_CALLS, quantity
            )

        records = await facade.get_usage_records(pro_subscription.account_id, limit=0)

        assert len(records) == 1
        assert records[0].quantity == 3
