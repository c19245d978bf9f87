"""Composite read models returned by the billing facade."""

from typing import Optional
from pydantic import BaseModel, Field

from packages.billing.models.domain.invoice import Invoice, UpcomingInvoice
from packages.billing.models.domain.plans import PlanInfo
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import UsageSummary


class SubscriptionDetails(BaseModel):
    """Subscription with its plan and, while live, current-period usage."""

    subscription: Subscription
    plan: PlanInfo
    usage: Optional[UsageSummary] = None


class BillingOverview(BaseModel):
    """
    Everything the billing page shows.

    Accounts without a subscription get the free plan, no usage and no
    upcoming invoice.
    """

    subscription: Optional[Subscription] = None
    plan: PlanInfo
    usage: Optional[UsageSummary] = None
    next_invoice: Optional[UpcomingInvoice] = None
    recent_invoices: list[Invoice] = Field(default_factory=list)
