"""
Database entity for processor webhook events.
"""

from sqlalchemy import Boolean, Column, String, DateTime, JSON, false
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class BillingEventEntity(Base):
    """
    Webhook audit log.

    The unique index on ``external_event_id`` is what makes concurrent
    deliveries of the same event apply at most once.
    """

    __tablename__ = "billing_events"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    external_event_id = Column(String(255), nullable=False, unique=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    account_id = Column(String(255), nullable=True, index=True)
    payload = Column(JSON, nullable=False, server_default="{}")

    processed = Column(Boolean, nullable=False, default=False, server_default=false())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
