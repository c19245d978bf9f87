"""Billing repositories."""

from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.usage_repository import UsageRecordRepository
from packages.billing.repositories.invoice_repository import InvoiceRepository
from packages.billing.repositories.billing_event_repository import (
    BillingEventRepository,
)
from packages.billing.repositories.notification_repository import (
    BillingNotificationRepository,
)

__all__ = [
    "SubscriptionRepository",
    "UsageRecordRepository",
    "InvoiceRepository",
    "BillingEventRepository",
    "BillingNotificationRepository",
]
