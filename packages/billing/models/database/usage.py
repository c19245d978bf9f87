"""
Database entity for usage records.
"""

from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class UsageRecordEntity(Base):
    """
    Usage record database entity.

    Append-only ledger of metered consumption. Only retention pruning deletes.
    High volume table - partitioned by recorded_at in production.
    """

    __tablename__ = "usage_records"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(255), nullable=False, index=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    resource_type = Column(
        String(50), nullable=False
    )  # ai_video_generation, content_storage, api_calls, ...
    quantity = Column(Integer, nullable=False, server_default="1")

    # Caller supplied context, e.g. {"content_id": "..."}
    event_metadata = Column("metadata", JSON, nullable=False, server_default="{}")

    # Client supplied key; a retried call with the same key is not recorded twice
    idempotency_key = Column(String(255), nullable=True)

    # Subscription period the record counts against
    billing_period_start = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    __table_args__ = (
        UniqueConstraint("account_id", "idempotency_key"),
        Index(
            "idx_usage_account_resource_period",
            "account_id",
            "resource_type",
            "billing_period_start",
        ),
        Index(
            "idx_usage_account_resource_recorded",
            "account_id",
            "resource_type",
            "recorded_at",
        ),
    )
