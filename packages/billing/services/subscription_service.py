"""
Service for managing subscriptions.

Local rows follow the payment processor: user-initiated changes are pushed to
the processor first and only committed locally once it accepts them.
"""

from typing import Optional
from datetime import datetime, timedelta

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.core.time import ensure_utc, utc_now
from common.db.scoped import transaction
from packages.billing.exceptions import NoActiveSubscription, PaymentMethodError
from packages.billing.repositories.notification_repository import (
    BillingNotificationRepository,
)
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.models.domain.notification import BillingNotificationCreateModel
from packages.billing.models.domain.subscription import (
    ExpirySweepResult,
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.enums import BillingCycle, SubscriptionStatus
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.services.plan_catalog import PlanCatalog

logger = get_logger(__name__)


class SubscriptionService:
    """Service for subscription management."""

    def __init__(
        self,
        payment: Optional[PaymentProviderInterface] = None,
        plan_catalog: Optional[PlanCatalog] = None,
    ):
        self.subscription_repo = SubscriptionRepository()
        self.notification_repo = BillingNotificationRepository()
        self.payment = payment or get_payment_provider()
        self.plan_catalog = plan_catalog or PlanCatalog()

    @trace_span
    async def get(self, account_id: str) -> Optional[Subscription]:
        """Get the account's subscription row, including terminal ones."""
        return await self.subscription_repo.get_by_account_id(account_id)

    @trace_span
    async def get_active(self, account_id: str) -> Subscription:
        """Get the account's live subscription or raise NoActiveSubscription."""
        subscription = await self.subscription_repo.get_by_account_id(account_id)
        if subscription is None or not subscription.is_live():
            raise NoActiveSubscription(account_id)
        return subscription

    @trace_span
    async def create(self, create_model: SubscriptionCreateModel) -> Subscription:
        """
        Create the account's subscription (reconciliation only).

        An existing row for the account is overwritten in place, so an
        account never has more than one subscription.
        """
        subscription = await self.subscription_repo.replace_for_account(create_model)
        logger.info(
            f"Subscription {subscription.id} set to plan {subscription.plan_id} "
            f"for account {subscription.account_id}",
            extra={
                "subscription_id": subscription.id,
                "account_id": subscription.account_id,
                "plan_id": subscription.plan_id,
                "stripe_subscription_id": subscription.stripe_subscription_id,
            },
        )
        return subscription

    def _require_processor_record(self, subscription: Subscription) -> str:
        if not subscription.stripe_subscription_id:
            raise PaymentMethodError(
                "Subscription has no payment processor record; start a checkout instead"
            )
        return subscription.stripe_subscription_id

    @trace_span
    async def update_plan(
        self,
        account_id: str,
        plan_id: str,
        billing_cycle: Optional[BillingCycle] = None,
        idempotency_key: Optional[str] = None,
    ) -> Subscription:
        """
        Move the account to another plan and/or billing cycle.

        The processor is updated first. If it rejects or times out nothing is
        written locally: a timeout surfaces as ProcessorStateUnknown and the
        webhook feed settles the real state.
        """
        subscription = await self.get_active(account_id)
        plan = self.plan_catalog.get_plan(plan_id)
        cycle = billing_cycle or subscription.billing_cycle

        if plan.id == subscription.plan_id and cycle == subscription.billing_cycle:
            return subscription

        stripe_subscription_id = self._require_processor_record(subscription)
        await self.payment.update_subscription_price(
            stripe_subscription_id=stripe_subscription_id,
            plan=plan,
            billing_cycle=cycle,
            account_id=account_id,
            idempotency_key=idempotency_key,
        )

        updated = await self.subscription_repo.update(
            subscription.id,
            SubscriptionUpdateModel(plan_id=plan.id, billing_cycle=cycle),
        )

        logger.info(
            f"Changed plan {subscription.plan_id} -> {plan.id} for account {account_id}",
            extra={
                "subscription_id": subscription.id,
                "account_id": account_id,
                "old_plan_id": subscription.plan_id,
                "new_plan_id": plan.id,
                "billing_cycle": cycle.value,
            },
        )
        return updated

    @trace_span
    async def set_cancel_at_period_end(
        self,
        account_id: str,
        cancel_at_period_end: bool,
        idempotency_key: Optional[str] = None,
    ) -> Subscription:
        """Schedule or unschedule cancellation. Status is left unchanged."""
        subscription = await self.get_active(account_id)
        if subscription.cancel_at_period_end == cancel_at_period_end:
            return subscription

        if subscription.stripe_subscription_id:
            await self.payment.set_cancel_at_period_end(
                subscription.stripe_subscription_id,
                cancel_at_period_end,
                idempotency_key=idempotency_key,
            )

        updated = await self.subscription_repo.update(
            subscription.id,
            SubscriptionUpdateModel(cancel_at_period_end=cancel_at_period_end),
        )
        logger.info(
            f"Set cancel_at_period_end={cancel_at_period_end} for account {account_id}",
            extra={"subscription_id": subscription.id, "account_id": account_id},
        )
        return updated

    def _is_stale(self, subscription: Subscription, event_at: Optional[datetime]) -> bool:
        last = subscription.last_processor_event_at
        return event_at is not None and last is not None and ensure_utc(event_at) < last

    @trace_span
    async def apply_processor_status(
        self,
        stripe_subscription_id: str,
        status: SubscriptionStatus,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        cancel_at_period_end: Optional[bool] = None,
        event_at: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """
        Overwrite the subscription with the processor's view of it.

        Events older than the last applied one are ignored so a delayed
        delivery cannot roll the row back. A canceled or expired row keeps
        its status; the next checkout is what replaces it.
        """
        subscription = await self.subscription_repo.get_by_stripe_subscription_id(
            stripe_subscription_id
        )
        if subscription is None:
            logger.warning(
                f"No subscription for processor id {stripe_subscription_id}",
                extra={"stripe_subscription_id": stripe_subscription_id},
            )
            return None

        if self._is_stale(subscription, event_at):
            logger.info(
                f"Ignoring out-of-order update for subscription {subscription.id}",
                extra={
                    "subscription_id": subscription.id,
                    "event_at": event_at.isoformat(),
                    "last_processor_event_at": subscription.last_processor_event_at.isoformat(),
                },
            )
            return subscription

        # Only a new checkout replaces a terminal row
        if subscription.status.is_terminal() and status != subscription.status:
            logger.warning(
                f"Ignoring {status.value} for terminal subscription {subscription.id}",
                extra={
                    "subscription_id": subscription.id,
                    "account_id": subscription.account_id,
                    "status": subscription.status.value,
                    "requested_status": status.value,
                },
            )
            return subscription

        update_data = SubscriptionUpdateModel(status=status)
        if period_start is not None:
            update_data.current_period_start = period_start
        if period_end is not None:
            update_data.current_period_end = period_end
        if cancel_at_period_end is not None:
            update_data.cancel_at_period_end = cancel_at_period_end
        if status == SubscriptionStatus.CANCELED and subscription.canceled_at is None:
            update_data.canceled_at = utc_now()
        if event_at is not None:
            update_data.last_processor_event_at = event_at

        updated = await self.subscription_repo.update(subscription.id, update_data)
        logger.info(
            f"Subscription {subscription.id} status {subscription.status.value} -> {status.value}",
            extra={
                "subscription_id": subscription.id,
                "account_id": subscription.account_id,
                "old_status": subscription.status.value,
                "new_status": status.value,
            },
        )
        return updated

    @trace_span
    async def mark_status(
        self,
        stripe_subscription_id: str,
        status: SubscriptionStatus,
        event_at: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """Set only the status (e.g. past_due on a failed payment)."""
        return await self.apply_processor_status(
            stripe_subscription_id, status, event_at=event_at
        )

    @trace_span
    async def sweep_expired(self, now: Optional[datetime] = None) -> ExpirySweepResult:
        """
        Settle paying subscriptions whose period ended without a renewal.

        Called by an external scheduler. Periods that ended more than the
        configured grace ago are handled: rows scheduled to cancel become
        canceled, the rest go past_due and the account is notified. Each row
        is settled in its own transaction, and a row renewed after it was
        listed is skipped.
        """
        now = now or utc_now()
        cutoff = now - timedelta(hours=settings.expired_subscription_grace_hours)
        result = ExpirySweepResult()

        for subscription in await self.subscription_repo.list_expired(cutoff):
            if subscription.cancel_at_period_end:
                update_data = SubscriptionUpdateModel(
                    status=SubscriptionStatus.CANCELED, canceled_at=now
                )
            else:
                update_data = SubscriptionUpdateModel(status=SubscriptionStatus.PAST_DUE)

            async with transaction():
                updated = await self.subscription_repo.update_if_expired(
                    subscription.id, cutoff, update_data
                )
                if updated is None:
                    result.skipped += 1
                    continue

                if updated.status == SubscriptionStatus.CANCELED:
                    result.canceled += 1
                else:
                    result.past_due += 1
                    await self.notification_repo.create(
                        BillingNotificationCreateModel.subscription_expired(
                            updated.account_id,
                            {
                                "subscription_id": updated.id,
                                "plan_id": updated.plan_id,
                                "period_end": updated.current_period_end.isoformat(),
                            },
                        )
                    )

            logger.info(
                f"Expired subscription {updated.id} moved to {updated.status.value}",
                extra={
                    "subscription_id": updated.id,
                    "account_id": updated.account_id,
                    "status": updated.status.value,
                    "period_end": updated.current_period_end.isoformat(),
                },
            )

        logger.info(
            f"Expiry sweep: {result.past_due} past_due, {result.canceled} canceled, "
            f"{result.skipped} skipped",
            extra=result.model_dump(),
        )
        return result
