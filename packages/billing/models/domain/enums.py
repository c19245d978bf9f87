"""
Billing enums - strongly typed enumerations for subscription and billing states.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """
    Subscription status lifecycle (mirrors the payment processor).

    Flow: trialing|active -> past_due -> active (on recovery) -> canceled
    """

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"  # Payment failed, processor is retrying
    CANCELED = "canceled"  # Terminal, kept for history
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"  # Terminal
    UNPAID = "unpaid"

    def is_terminal(self) -> bool:
        """Terminal rows are history; the account has no live subscription."""
        return self in (
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.INCOMPLETE_EXPIRED,
        )

    def blocks_new_checkout(self) -> bool:
        """A paying subscription already exists for the account."""
        return self in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class BillingCycle(str, Enum):
    """Billing cadence; controls price and period length."""

    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def days_in_period(self) -> int:
        """Flat day count used for daily-rate proration (not calendar accurate)."""
        return 30 if self == BillingCycle.MONTHLY else 365


class PlanTier(str, Enum):
    """Plan tiers in the catalog."""

    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class ResourceType(str, Enum):
    """Metered resources. Every plan carries a limit for each of these."""

    AI_VIDEO_GENERATION = "ai_video_generation"
    AI_BLOG_GENERATION = "ai_blog_generation"
    AI_SOCIAL_POST_GENERATION = "ai_social_post_generation"
    AI_SCRIPT_GENERATION = "ai_script_generation"
    CONTENT_STORAGE = "content_storage"  # GB
    API_CALLS = "api_calls"

    @property
    def is_generation(self) -> bool:
        """Generation resources are also subject to the per-tier burst schedule."""
        return self.value.startswith("ai_")

    @property
    def label(self) -> str:
        labels = {
            ResourceType.AI_VIDEO_GENERATION: "AI Video Generations",
            ResourceType.AI_BLOG_GENERATION: "AI Blog Generations",
            ResourceType.AI_SOCIAL_POST_GENERATION: "AI Social Post Generations",
            ResourceType.AI_SCRIPT_GENERATION: "AI Script Generations",
            ResourceType.CONTENT_STORAGE: "Content Storage (GB)",
            ResourceType.API_CALLS: "API Calls",
        }
        return labels[self]


class QuotaWindow(str, Enum):
    """Time windows quotas are enforced over. Checked in declaration order."""

    MONTHLY = "monthly"  # current billing period
    DAILY = "daily"  # trailing 24h
    HOURLY = "hourly"  # trailing 1h


class InvoiceStatus(str, Enum):
    """Invoice status (mirror of the processor-side invoice)."""

    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"


class NotificationType(str, Enum):
    """User-facing billing notifications produced for downstream display."""

    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
