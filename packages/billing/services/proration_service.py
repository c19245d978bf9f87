"""
Plan-change previews.

Uses a flat daily rate: the cycle price divided by 30 (monthly) or 365
(yearly), applied to the whole days left in the current period.
"""

import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.core.time import ensure_utc, utc_now
from packages.billing.models.domain.enums import BillingCycle, ResourceType
from packages.billing.models.domain.plans import Plan
from packages.billing.models.domain.proration import FeatureChange, ProrationPreview
from packages.billing.models.domain.subscription import Subscription
from packages.billing.services.plan_catalog import PlanCatalog

logger = get_logger(__name__)

CENTS = Decimal("0.01")
SECONDS_PER_DAY = 86400


def days_remaining(period_end: datetime, now: datetime) -> int:
    """Whole days left in the period, rounded up; 0 once the period is over."""
    seconds = (ensure_utc(period_end) - ensure_utc(now)).total_seconds()
    return max(0, math.ceil(seconds / SECONDS_PER_DAY))


def daily_rate(plan: Plan, cycle: BillingCycle) -> Decimal:
    return plan.price(cycle) / cycle.days_in_period


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def feature_changes(current: Plan, new: Plan) -> list[FeatureChange]:
    """Resources whose monthly limit differs between the plans."""
    changes = []
    for resource in ResourceType:
        old_limit = current.limits.get(resource)
        new_limit = new.limits.get(resource)
        if old_limit != new_limit:
            changes.append(
                FeatureChange(
                    resource=resource,
                    from_value=old_limit.display(),
                    to_value=new_limit.display(),
                )
            )
    return changes


class ProrationService:
    def __init__(self, plan_catalog: Optional[PlanCatalog] = None):
        self.plan_catalog = plan_catalog or PlanCatalog()

    @trace_span
    def preview_change(
        self,
        subscription: Subscription,
        new_plan_id: str,
        new_cycle: Optional[BillingCycle] = None,
        now: Optional[datetime] = None,
    ) -> ProrationPreview:
        """
        Preview the cost of switching ``subscription`` to another plan now.

        ``prorated_amount`` is negative when the unused part of the current
        plan is worth more than the rest of the period on the new one.
        """
        current_plan = self.plan_catalog.get_plan(subscription.plan_id)
        new_plan = self.plan_catalog.get_plan(new_plan_id)
        current_cycle = subscription.billing_cycle
        new_cycle = new_cycle or current_cycle

        days = days_remaining(subscription.current_period_end, now or utc_now())
        credit = daily_rate(current_plan, current_cycle) * days
        charge = daily_rate(new_plan, new_cycle) * days
        prorated = _money(charge) - _money(credit)

        logger.debug(
            f"Proration {current_plan.id} -> {new_plan.id}: {days} days, {prorated}",
            extra={"account_id": subscription.account_id, "days_remaining": days},
        )

        return ProrationPreview(
            current_plan_id=current_plan.id,
            current_cycle=current_cycle,
            new_plan_id=new_plan.id,
            new_cycle=new_cycle,
            days_remaining=days,
            credit=_money(credit),
            charge=_money(charge),
            prorated_amount=prorated,
            immediate_payment=max(Decimal("0.00"), prorated),
            next_billing_amount=_money(new_plan.price(new_cycle)),
            currency=settings.billing_currency,
            changes=feature_changes(current_plan, new_plan),
        )
