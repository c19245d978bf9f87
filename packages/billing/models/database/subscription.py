"""
Database entity for subscriptions.
"""

from sqlalchemy import Boolean, Column, String, DateTime, Index, false
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class SubscriptionEntity(Base):
    """
    Account subscription database entity.

    One row per account (unique ``account_id``); rows are overwritten, never
    deleted.
    """

    __tablename__ = "subscriptions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(255), nullable=False, unique=True, index=True)

    # Plan
    plan_id = Column(String(50), nullable=False, index=True)  # free, pro, ...
    billing_cycle = Column(String(20), nullable=False)  # monthly, yearly
    status = Column(
        String(50), nullable=False, index=True
    )  # trialing, active, past_due, canceled, ...

    # External platform IDs
    stripe_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)

    # Billing period
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False)
    cancel_at_period_end = Column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    # Lifecycle timestamps
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    # Creation time of the newest processor event applied (out-of-order guard)
    last_processor_event_at = Column(DateTime(timezone=True), nullable=True)

    # Standard timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_subscription_status_plan", "status", "plan_id"),
        Index("idx_subscription_period_end", "current_period_end"),
    )
