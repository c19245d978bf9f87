"""Domain models for invoices mirrored from the payment processor."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from common.core.time import UtcDatetime
from packages.billing.models.domain.enums import InvoiceStatus


class InvoiceLineItem(BaseModel):
    description: Optional[str] = None
    amount_cents: int
    quantity: Optional[int] = None


class Invoice(BaseModel):
    id: int
    account_id: str
    subscription_id: Optional[int] = None
    external_invoice_id: str
    amount_cents: int
    currency: str
    status: InvoiceStatus
    paid_at: Optional[UtcDatetime] = None
    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    hosted_invoice_url: Optional[str] = None
    created_at: Optional[UtcDatetime] = None

    class Config:
        from_attributes = True

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_cents) / 100


class InvoiceUpsertModel(BaseModel):
    """Insert-or-update by ``external_invoice_id``."""

    model_config = ConfigDict(use_enum_values=True)

    account_id: str
    subscription_id: Optional[int] = None
    external_invoice_id: str
    amount_cents: int
    currency: str
    status: InvoiceStatus
    paid_at: Optional[datetime] = None
    line_items: list[dict] = Field(default_factory=list)
    hosted_invoice_url: Optional[str] = None


class InvoicePage(BaseModel):
    """One page of an account's invoices, newest first."""

    invoices: list[Invoice]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.invoices) < self.total


class UpcomingInvoice(BaseModel):
    """Estimate of the next renewal charge."""

    amount_cents: int
    currency: str
    due_at: UtcDatetime
    plan_id: str
