"""
Database entity for invoices.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, JSON, Integer
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class InvoiceEntity(Base):
    """Local mirror of processor invoices, upserted by external id."""

    __tablename__ = "invoices"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(255), nullable=False, index=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
        nullable=True,
    )
    external_invoice_id = Column(String(255), nullable=False, unique=True, index=True)

    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False)  # draft, open, paid, void, ...
    paid_at = Column(DateTime(timezone=True), nullable=True)
    line_items = Column(JSON, nullable=False, server_default="[]")
    hosted_invoice_url = Column(String(1024), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (Index("idx_invoice_account_status", "account_id", "status"),)
