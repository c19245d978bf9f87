"""Plan catalog: the fixed set of purchasable plans, their prices and limits."""

from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger
from packages.billing.exceptions import InvalidPlan
from packages.billing.models.domain.enums import BillingCycle, PlanTier, ResourceType
from packages.billing.models.domain.limits import Bounded, ResourceLimits
from packages.billing.models.domain.plans import (
    BurstLimits,
    Plan,
    PlanFeature,
    PlanInfo,
    PlansResponse,
)

logger = get_logger(__name__)

# Limits use the storage encoding: -1 = unlimited
PLAN_LIMITS = {
    PlanTier.FREE: {
        ResourceType.AI_VIDEO_GENERATION: 2,
        ResourceType.AI_BLOG_GENERATION: 3,
        ResourceType.AI_SOCIAL_POST_GENERATION: 5,
        ResourceType.AI_SCRIPT_GENERATION: 5,
        ResourceType.CONTENT_STORAGE: 1,
        ResourceType.API_CALLS: 100,
    },
    PlanTier.PRO: {
        ResourceType.AI_VIDEO_GENERATION: 20,
        ResourceType.AI_BLOG_GENERATION: 30,
        ResourceType.AI_SOCIAL_POST_GENERATION: 50,
        ResourceType.AI_SCRIPT_GENERATION: 50,
        ResourceType.CONTENT_STORAGE: 50,
        ResourceType.API_CALLS: 10000,
    },
    PlanTier.BUSINESS: {
        ResourceType.AI_VIDEO_GENERATION: 100,
        ResourceType.AI_BLOG_GENERATION: 150,
        ResourceType.AI_SOCIAL_POST_GENERATION: 250,
        ResourceType.AI_SCRIPT_GENERATION: 250,
        ResourceType.CONTENT_STORAGE: 200,
        ResourceType.API_CALLS: 50000,
    },
    PlanTier.ENTERPRISE: {resource: -1 for resource in ResourceType},
}

# Daily / hourly caps on generation resources
BURST_LIMITS = {
    PlanTier.FREE: BurstLimits(daily=Bounded(n=2), hourly=Bounded(n=1)),
    PlanTier.PRO: BurstLimits(daily=Bounded(n=50), hourly=Bounded(n=20)),
    PlanTier.BUSINESS: BurstLimits(daily=Bounded(n=100), hourly=Bounded(n=40)),
    PlanTier.ENTERPRISE: BurstLimits(daily=Bounded(n=200), hourly=Bounded(n=100)),
}

# Plan metadata that doesn't come from the limit tables
PLAN_METADATA = {
    PlanTier.FREE: {
        "name": "Free",
        "description": "Get started with basic features",
        "prices": (0, 0),
        "features": [
            PlanFeature(name="AI Generations", description="15 per month", value=15),
            PlanFeature(name="Content Storage", description="1 GB", value=1),
            PlanFeature(name="Basic Analytics", description="7 days history"),
            PlanFeature(name="Community Support"),
        ],
    },
    PlanTier.PRO: {
        "name": "Pro",
        "description": "For content creators and influencers",
        "prices": (2900, 29000),
        "features": [
            PlanFeature(name="AI Generations", description="150 per month", value=150),
            PlanFeature(name="Platform Integrations", description="All platforms", value=-1),
            PlanFeature(name="Content Storage", description="50 GB", value=50),
            PlanFeature(name="Advanced Analytics", description="90 days history"),
            PlanFeature(name="Priority Support"),
        ],
    },
    PlanTier.BUSINESS: {
        "name": "Business",
        "description": "For teams and agencies",
        "prices": (9900, 99000),
        "features": [
            PlanFeature(name="AI Generations", description="750 per month", value=750),
            PlanFeature(name="Content Storage", description="200 GB", value=200),
            PlanFeature(name="Team Collaboration", description="Up to 5 members", value=5),
            PlanFeature(name="API Access"),
        ],
    },
    PlanTier.ENTERPRISE: {
        "name": "Enterprise",
        "description": "Custom solutions for large organizations",
        "prices": (49900, 499000),
        "features": [
            PlanFeature(name="AI Generations", description="Unlimited", value=-1),
            PlanFeature(name="Content Storage", description="Unlimited", value=-1),
            PlanFeature(name="Dedicated Support"),
            PlanFeature(name="SLA Guarantee"),
        ],
    },
}


def _stripe_price_ids(tier: PlanTier) -> dict[BillingCycle, str]:
    if tier == PlanTier.FREE:
        return {}
    return {
        cycle: getattr(settings, f"stripe_price_id_{tier.value}_{cycle.value}")
        for cycle in BillingCycle
    }


def _build_plan(tier: PlanTier) -> Plan:
    metadata = PLAN_METADATA[tier]
    monthly, yearly = metadata["prices"]
    return Plan(
        id=tier.value,
        tier=tier,
        name=metadata["name"],
        description=metadata["description"],
        monthly_price_cents=monthly,
        yearly_price_cents=yearly,
        limits=ResourceLimits.from_storage(
            {resource.value: n for resource, n in PLAN_LIMITS[tier].items()}
        ),
        burst=BURST_LIMITS[tier],
        features=tuple(metadata["features"]),
        stripe_price_ids=_stripe_price_ids(tier),
    )


class PlanCatalog:
    """Read-only plan lookup. Plan ids are matched case-insensitively."""

    def __init__(self, plans: Optional[list[Plan]] = None):
        plans = plans if plans is not None else [_build_plan(t) for t in PlanTier]
        self._plans = {plan.id.lower(): plan for plan in plans}

    def get_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get((plan_id or "").strip().lower())
        if plan is None:
            logger.warning(f"Unknown plan requested: {plan_id}")
            raise InvalidPlan(plan_id)
        return plan

    def find_plan(self, plan_id: str) -> Optional[Plan]:
        return self._plans.get((plan_id or "").strip().lower())

    def list_plans(self) -> list[Plan]:
        return list(self._plans.values())

    @property
    def free_plan(self) -> Plan:
        return self.get_plan(PlanTier.FREE.value)

    def get_all_plans(self) -> PlansResponse:
        """Public catalog listing."""
        return PlansResponse(
            plans=[
                PlanInfo.from_plan(plan, settings.billing_currency)
                for plan in self.list_plans()
            ]
        )
