"""Domain models for billing plans."""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from packages.billing.models.domain.enums import (
    BillingCycle,
    PlanTier,
    QuotaWindow,
    ResourceType,
)
from packages.billing.models.domain.limits import Limit, ResourceLimits, Unlimited


class PlanFeature(BaseModel):
    """Marketing feature line shown on the pricing page."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: Optional[str] = None
    included: bool = True
    value: Optional[int] = None


class BurstLimits(BaseModel):
    """
    Short-window caps on generation resources.

    Applied on top of the monthly limit so a single account cannot burn
    its whole month in an hour.
    """

    model_config = ConfigDict(frozen=True)

    daily: Limit
    hourly: Limit


class Plan(BaseModel):
    """
    Immutable catalog entry.

    Plans are versioned by id: changing a price or limit means a new plan id,
    never an in-place edit.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    tier: PlanTier
    name: str
    description: str
    monthly_price_cents: int = Field(ge=0)
    yearly_price_cents: int = Field(ge=0)
    limits: ResourceLimits
    burst: BurstLimits
    features: tuple[PlanFeature, ...] = ()
    stripe_price_ids: dict[BillingCycle, str] = Field(default_factory=dict)

    def price_cents(self, cycle: BillingCycle) -> int:
        if cycle == BillingCycle.YEARLY:
            return self.yearly_price_cents
        return self.monthly_price_cents

    def price(self, cycle: BillingCycle) -> Decimal:
        """Price in currency units (dollars)."""
        return Decimal(self.price_cents(cycle)) / 100

    def stripe_price_id(self, cycle: BillingCycle) -> Optional[str]:
        return self.stripe_price_ids.get(cycle) or None

    @property
    def is_free(self) -> bool:
        return self.monthly_price_cents == 0 and self.yearly_price_cents == 0

    def limit_for(self, resource: ResourceType, window: QuotaWindow) -> Limit:
        """Limit that applies to a resource over a given window."""
        if window == QuotaWindow.MONTHLY:
            return self.limits.get(resource)
        if not resource.is_generation:
            return Unlimited()
        return self.burst.daily if window == QuotaWindow.DAILY else self.burst.hourly


class PlanInfo(BaseModel):
    """Public view of a plan (API responses); limits use the -1 sentinel."""

    id: str
    tier: str
    name: str
    description: str
    price: dict[str, float]
    price_cents: dict[str, int]
    currency: str
    limits: dict[str, int]
    features: list[PlanFeature]

    @classmethod
    def from_plan(cls, plan: Plan, currency: str) -> "PlanInfo":
        return cls(
            id=plan.id,
            tier=plan.tier.value,
            name=plan.name,
            description=plan.description,
            price={c.value: float(plan.price(c)) for c in BillingCycle},
            price_cents={c.value: plan.price_cents(c) for c in BillingCycle},
            currency=currency,
            limits=plan.limits.to_storage(),
            features=list(plan.features),
        )


class PlansResponse(BaseModel):
    """Response model for plans endpoint."""

    plans: list[PlanInfo]
