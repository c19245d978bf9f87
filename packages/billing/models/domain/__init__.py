"""Domain models for billing."""

from packages.billing.models.domain.enums import (
    SubscriptionStatus,
    BillingCycle,
    PlanTier,
    ResourceType,
    QuotaWindow,
    InvoiceStatus,
    NotificationType,
)
from packages.billing.models.domain.limits import (
    Limit,
    Unlimited,
    Bounded,
    ResourceLimits,
)
from packages.billing.models.domain.plans import Plan, BurstLimits, PlanInfo
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.usage import (
    UsageRecord,
    UsageRecordCreateModel,
    QuotaCheck,
    ResourceUsage,
    UsageSummary,
)
from packages.billing.models.domain.invoice import Invoice, InvoicePage
from packages.billing.models.domain.billing_event import BillingEvent
from packages.billing.models.domain.notification import BillingNotification
from packages.billing.models.domain.proration import ProrationPreview, FeatureChange
from packages.billing.models.domain.overview import BillingOverview, SubscriptionDetails

__all__ = [
    # Enums
    "SubscriptionStatus",
    "BillingCycle",
    "PlanTier",
    "ResourceType",
    "QuotaWindow",
    "InvoiceStatus",
    "NotificationType",
    # Plans
    "Limit",
    "Unlimited",
    "Bounded",
    "ResourceLimits",
    "Plan",
    "BurstLimits",
    "PlanInfo",
    # Subscription
    "Subscription",
    "SubscriptionCreateModel",
    "SubscriptionUpdateModel",
    # Usage
    "UsageRecord",
    "UsageRecordCreateModel",
    "QuotaCheck",
    "ResourceUsage",
    "UsageSummary",
    # Invoices and events
    "Invoice",
    "InvoicePage",
    "BillingEvent",
    "BillingNotification",
    "ProrationPreview",
    "FeatureChange",
    # Facade read models
    "SubscriptionDetails",
    "BillingOverview",
]
