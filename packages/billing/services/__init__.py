"""Billing services."""

from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.subscription_service import SubscriptionService
from packages.billing.services.usage_service import UsageService
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.proration_service import ProrationService

__all__ = [
    "PlanCatalog",
    "SubscriptionService",
    "UsageService",
    "QuotaService",
    "ProrationService",
]
