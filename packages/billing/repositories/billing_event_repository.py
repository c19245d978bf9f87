"""
Repository for the webhook audit log.
"""

from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.time import utc_now
from common.db.upsert import conflict_insert
from common.repositories.base import BaseRepository
from packages.billing.models.database.billing_event import BillingEventEntity
from packages.billing.models.domain.billing_event import (
    BillingEvent,
    BillingEventCreateModel,
)
from common.core.otel_axiom_exporter import trace_span


class BillingEventRepository(BaseRepository[BillingEventEntity, BillingEvent]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(BillingEventEntity, BillingEvent, db_session)

    @trace_span
    async def insert_if_absent(
        self, create_model: BillingEventCreateModel
    ) -> Optional[BillingEvent]:
        """
        Insert the audit row unless the event id was already recorded.

        Returns None for a duplicate. The unique index decides, so two
        concurrent deliveries of the same event cannot both get a row.
        """
        async with self._get_session() as session:
            stmt = (
                conflict_insert(session, BillingEventEntity)
                .values(**create_model.model_dump(), processed=False)
                .on_conflict_do_nothing(
                    index_elements=[BillingEventEntity.external_event_id]
                )
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return None
            return await self.get_by_external_id(create_model.external_event_id)

    @trace_span
    async def get_by_external_id(self, external_event_id: str) -> Optional[BillingEvent]:
        async with self._get_session() as session:
            result = await session.execute(
                select(BillingEventEntity).where(
                    BillingEventEntity.external_event_id == external_event_id
                )
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def mark_processed(self, event_id: int) -> None:
        async with self._get_session() as session:
            await session.execute(
                update(BillingEventEntity)
                .where(BillingEventEntity.id == event_id)
                .values(processed=True, processed_at=utc_now())
            )
