"""
Repository for invoices mirrored from the payment processor.
"""

from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from common.db.upsert import conflict_insert
from common.repositories.base import BaseRepository
from packages.billing.models.database.invoice import InvoiceEntity
from packages.billing.models.domain.enums import InvoiceStatus
from packages.billing.models.domain.invoice import (
    Invoice,
    InvoicePage,
    InvoiceUpsertModel,
)
from common.core.otel_axiom_exporter import trace_span


class InvoiceRepository(BaseRepository[InvoiceEntity, Invoice]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(InvoiceEntity, Invoice, db_session)

    @trace_span
    async def upsert(self, upsert_model: InvoiceUpsertModel) -> Invoice:
        """Insert the invoice, or overwrite the row with the same external id."""
        data = upsert_model.model_dump()
        async with self._get_session() as session:
            stmt = conflict_insert(session, InvoiceEntity).values(**data)
            stmt = stmt.on_conflict_do_update(
                index_elements=[InvoiceEntity.external_invoice_id],
                set_={
                    key: stmt.excluded[key]
                    for key in data
                    if key not in ("external_invoice_id", "account_id")
                },
            )
            await session.execute(stmt)
            await session.flush()
            result = await session.execute(
                select(InvoiceEntity)
                .where(
                    InvoiceEntity.external_invoice_id
                    == upsert_model.external_invoice_id
                )
                .execution_options(populate_existing=True)
            )
            return self._entity_to_domain(result.scalar_one())

    @trace_span
    async def get_by_external_id(self, external_invoice_id: str) -> Optional[Invoice]:
        async with self._get_session() as session:
            result = await session.execute(
                select(InvoiceEntity).where(
                    InvoiceEntity.external_invoice_id == external_invoice_id
                )
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def list_for_account(
        self,
        account_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> InvoicePage:
        """Page through an account's invoices, newest first."""
        filters = [InvoiceEntity.account_id == account_id]
        if status is not None:
            filters.append(InvoiceEntity.status == status.value)

        async with self._get_session() as session:
            total = await session.scalar(
                select(func.count(InvoiceEntity.id)).where(*filters)
            )
            result = await session.execute(
                select(InvoiceEntity)
                .where(*filters)
                .order_by(InvoiceEntity.created_at.desc(), InvoiceEntity.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return InvoicePage(
                invoices=self._entities_to_domain(result.scalars().all()),
                total=total or 0,
                limit=limit,
                offset=offset,
            )
