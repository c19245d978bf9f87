"""
Service for usage reporting and ledger retention.
"""

from datetime import datetime, timedelta
from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.core.time import utc_now
from packages.billing.models.domain.enums import QuotaWindow, ResourceType
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import (
    ResourceUsage,
    UsageRecord,
    UsageSummary,
)
from packages.billing.repositories.usage_repository import UsageRecordRepository
from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.subscription_service import SubscriptionService

logger = get_logger(__name__)


class UsageService:
    """Read side of the usage ledger."""

    def __init__(
        self,
        subscription_service: Optional[SubscriptionService] = None,
        plan_catalog: Optional[PlanCatalog] = None,
    ):
        self.plan_catalog = plan_catalog or PlanCatalog()
        self.subscription_service = subscription_service or SubscriptionService(
            plan_catalog=self.plan_catalog
        )
        self.usage_repo = UsageRecordRepository()

    @trace_span
    async def get_usage_summary(self, account_id: str) -> UsageSummary:
        """
        Current-period usage for every resource.

        Raises NoActiveSubscription when the account has no live subscription.
        """
        subscription = await self.subscription_service.get_active(account_id)
        return await self.summarize(subscription)

    @trace_span
    async def summarize(self, subscription: Subscription) -> UsageSummary:
        plan = self.plan_catalog.get_plan(subscription.plan_id)
        totals = await self.usage_repo.get_period_totals(
            subscription.account_id, subscription.current_period_start
        )

        resources = [
            ResourceUsage.compute(
                resource,
                totals.get(resource, 0),
                plan.limit_for(resource, QuotaWindow.MONTHLY),
            )
            for resource in ResourceType
        ]
        return UsageSummary(
            account_id=subscription.account_id,
            plan_id=plan.id,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            resources=resources,
        )

    @trace_span
    async def list_usage(
        self, account_id: str, limit: int = 100, offset: int = 0
    ) -> list[UsageRecord]:
        return await self.usage_repo.get_by_account(account_id, limit, offset)

    @trace_span
    async def prune(self, before: Optional[datetime] = None) -> int:
        """
        Delete usage records older than ``before``.

        Defaults to the configured retention window. Invoked by an external
        scheduler; nothing in the engine calls it on its own.
        """
        cutoff = before or utc_now() - timedelta(days=settings.usage_retention_days)
        deleted = await self.usage_repo.delete_recorded_before(cutoff)
        logger.info(
            f"Pruned {deleted} usage records recorded before {cutoff.isoformat()}",
            extra={"deleted": deleted, "cutoff": cutoff.isoformat()},
        )
        return deleted
