"""
Database entity for billing notifications.
"""

from sqlalchemy import Column, String, DateTime, JSON, Text
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class BillingNotificationEntity(Base):
    """Notifications produced by billing for the delivery service to pick up."""

    __tablename__ = "billing_notifications"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(255), nullable=False, index=True)
    notification_type = Column(
        String(50), nullable=False
    )  # payment_failed, subscription_expired
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, server_default="{}")

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
