"""Database models for billing."""

from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.database.usage import UsageRecordEntity
from packages.billing.models.database.invoice import InvoiceEntity
from packages.billing.models.database.billing_event import BillingEventEntity
from packages.billing.models.database.notification import BillingNotificationEntity

__all__ = [
    "SubscriptionEntity",
    "UsageRecordEntity",
    "InvoiceEntity",
    "BillingEventEntity",
    "BillingNotificationEntity",
]
