"""
Service for quota enforcement and checking.

This is the critical service that prevents usage beyond plan limits.

Every usage record is checked against three windows, in order: the monthly
limit for the current billing period, then the daily and hourly burst caps.
A window whose limit is unlimited is skipped.

Enforcement modes:
- soft (default): check-then-append without serialisation. Concurrent calls
  for the same account and resource can each pass the check, so a window may
  be over-admitted by at most the in-flight quantity.
- hard: each call first reserves its quantity on a shared counter; the check
  counts other callers' in-flight reservations as used.
"""

from typing import Any, Optional

from common.core.config import settings
from common.core.constants import QuotaEnforcementMode
from common.core.otel_axiom_exporter import trace_span, get_logger, log_span_event
from common.core.time import utc_now
from common.providers.counter.factory import get_counter_provider
from common.providers.counter.interface import CounterInterface
from packages.billing.cache_keys import quota_inflight_key
from packages.billing.exceptions import QuotaExceeded
from packages.billing.models.domain.enums import QuotaWindow, ResourceType
from packages.billing.models.domain.plans import Plan
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import (
    QuotaCheck,
    UsageRecord,
    UsageRecordCreateModel,
    WindowUsage,
)
from packages.billing.repositories.usage_repository import UsageRecordRepository
from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.subscription_service import SubscriptionService

logger = get_logger(__name__)

# Reservations are released right after the append. The TTL only bounds how
# long a crashed caller's reservation lingers after the last one was taken.
RESERVATION_TTL_SECONDS = 300


class QuotaService:
    """Service for quota enforcement."""

    def __init__(
        self,
        subscription_service: Optional[SubscriptionService] = None,
        plan_catalog: Optional[PlanCatalog] = None,
        counter: Optional[CounterInterface] = None,
        enforcement_mode: Optional[QuotaEnforcementMode] = None,
    ):
        self.plan_catalog = plan_catalog or PlanCatalog()
        self.subscription_service = subscription_service or SubscriptionService(
            plan_catalog=self.plan_catalog
        )
        self.usage_repo = UsageRecordRepository()
        self.enforcement_mode = enforcement_mode or settings.quota_enforcement_mode
        self._counter = counter

    @property
    def counter(self) -> CounterInterface:
        if self._counter is None:
            self._counter = get_counter_provider()
        return self._counter

    def _first_violation(
        self,
        plan: Plan,
        resource_type: ResourceType,
        quantity: int,
        usage: WindowUsage,
        subscription: Subscription,
        in_flight: int = 0,
    ) -> Optional[QuotaCheck]:
        """First window (monthly, daily, hourly) the request would exceed."""
        for window in QuotaWindow:
            limit = plan.limit_for(resource_type, window)
            current = usage.for_window(window) + in_flight
            if not limit.allows(current, quantity):
                return QuotaCheck.build(
                    allowed=False,
                    resource_type=resource_type,
                    requested=quantity,
                    window=window,
                    current=current,
                    limit=limit,
                    period_end=subscription.current_period_end,
                )
        return None

    async def _load(
        self, account_id: str, resource_type: ResourceType
    ) -> tuple[Subscription, Plan, WindowUsage]:
        subscription = await self.subscription_service.get_active(account_id)
        plan = self.plan_catalog.get_plan(subscription.plan_id)
        usage = await self.usage_repo.get_window_usage(
            account_id=account_id,
            resource_type=resource_type,
            period_start=subscription.current_period_start,
            now=utc_now(),
        )
        return subscription, plan, usage

    @trace_span
    async def check_quota(
        self, account_id: str, resource_type: ResourceType, quantity: int = 1
    ) -> QuotaCheck:
        """
        Non-mutating check: would recording ``quantity`` be admitted now?

        Raises NoActiveSubscription when the account has no live subscription.
        """
        subscription, plan, usage = await self._load(account_id, resource_type)
        violation = self._first_violation(
            plan, resource_type, quantity, usage, subscription
        )
        if violation is not None:
            return violation

        return QuotaCheck.build(
            allowed=True,
            resource_type=resource_type,
            requested=quantity,
            window=QuotaWindow.MONTHLY,
            current=usage.monthly,
            limit=plan.limit_for(resource_type, QuotaWindow.MONTHLY),
            period_end=subscription.current_period_end,
        )

    @trace_span
    async def record_usage(
        self,
        account_id: str,
        resource_type: ResourceType,
        quantity: int = 1,
        metadata: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> UsageRecord:
        """
        Check every window and append a usage record.

        A retry carrying an ``idempotency_key`` already recorded for the
        account returns the original record without checking quotas again.

        Raises:
            NoActiveSubscription: no live subscription for the account
            QuotaExceeded: the first window (monthly, daily, hourly) that
                ``quantity`` would push over its limit
        """
        if quantity < 1:
            raise ValueError(f"quantity must be positive, got {quantity}")

        if idempotency_key:
            existing = await self.usage_repo.get_by_idempotency_key(
                account_id, idempotency_key
            )
            if existing is not None:
                logger.info(
                    f"Usage for key {idempotency_key} already recorded",
                    extra={"account_id": account_id, "usage_record_id": existing.id},
                )
                return existing

        if self.enforcement_mode == QuotaEnforcementMode.HARD:
            return await self._record_with_reservation(
                account_id, resource_type, quantity, metadata, idempotency_key
            )
        return await self._check_and_append(
            account_id, resource_type, quantity, metadata, idempotency_key
        )

    async def _record_with_reservation(
        self,
        account_id: str,
        resource_type: ResourceType,
        quantity: int,
        metadata: Optional[dict[str, Any]],
        idempotency_key: Optional[str],
    ) -> UsageRecord:
        key = quota_inflight_key(account_id, resource_type.value)
        reserved = await self.counter.increment(key, RESERVATION_TTL_SECONDS, quantity)
        try:
            return await self._check_and_append(
                account_id,
                resource_type,
                quantity,
                metadata,
                idempotency_key,
                in_flight=max(0, reserved - quantity),
            )
        finally:
            await self.counter.decrement(key, quantity)

    async def _check_and_append(
        self,
        account_id: str,
        resource_type: ResourceType,
        quantity: int,
        metadata: Optional[dict[str, Any]],
        idempotency_key: Optional[str] = None,
        in_flight: int = 0,
    ) -> UsageRecord:
        subscription, plan, usage = await self._load(account_id, resource_type)

        violation = self._first_violation(
            plan, resource_type, quantity, usage, subscription, in_flight
        )
        if violation is not None:
            logger.warning(
                f"Account {account_id} exceeded {violation.window.value} "
                f"{resource_type.value} quota",
                extra={
                    "account_id": account_id,
                    "resource_type": resource_type.value,
                    "window": violation.window.value,
                    "current": violation.current_usage,
                    "limit": violation.limit,
                    "requested": quantity,
                },
            )
            log_span_event(
                "quota.rejected",
                {
                    "account_id": account_id,
                    "resource_type": resource_type.value,
                    "window": violation.window.value,
                },
            )
            raise QuotaExceeded(
                window=violation.window.value,
                resource=resource_type.value,
                limit=violation.limit,
                current=violation.current_usage,
                requested=quantity,
            )

        record, _ = await self.usage_repo.append(
            UsageRecordCreateModel(
                account_id=account_id,
                subscription_id=subscription.id,
                resource_type=resource_type,
                quantity=quantity,
                event_metadata=metadata or {},
                idempotency_key=idempotency_key,
                billing_period_start=subscription.current_period_start,
            )
        )

        logger.info(
            f"Recorded {quantity} {resource_type.value} for account {account_id}",
            extra={
                "account_id": account_id,
                "subscription_id": subscription.id,
                "resource_type": resource_type.value,
                "quantity": quantity,
                "usage_record_id": record.id,
            },
        )
        return record
