"""
Repository for the usage ledger.
"""

from typing import Optional
from datetime import datetime, timedelta
from sqlalchemy import case, delete, or_, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from common.db.upsert import conflict_insert
from common.repositories.base import BaseRepository
from packages.billing.models.database.usage import UsageRecordEntity
from packages.billing.models.domain.usage import (
    UsageRecord,
    UsageRecordCreateModel,
    WindowUsage,
)
from packages.billing.models.domain.enums import ResourceType
from common.core.otel_axiom_exporter import trace_span

DAY = timedelta(days=1)
HOUR = timedelta(hours=1)


class UsageRecordRepository(BaseRepository[UsageRecordEntity, UsageRecord]):
    """Append-only access to usage records plus window aggregates."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(UsageRecordEntity, UsageRecord, db_session)

    @trace_span
    async def get_by_idempotency_key(
        self, account_id: str, idempotency_key: str
    ) -> Optional[UsageRecord]:
        async with self._get_session() as session:
            result = await session.execute(
                select(UsageRecordEntity).where(
                    UsageRecordEntity.account_id == account_id,
                    UsageRecordEntity.idempotency_key == idempotency_key,
                )
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def append(
        self, create_model: UsageRecordCreateModel
    ) -> tuple[UsageRecord, bool]:
        """
        Append a record. Returns ``(record, created)``.

        With an idempotency key, a second append for the same account and key
        inserts nothing and returns the original record.
        """
        if create_model.idempotency_key is None:
            return await self.create(create_model), True

        # Keyed by mapped attribute: event_metadata is stored in column "metadata"
        values = {
            getattr(UsageRecordEntity, key): value
            for key, value in create_model.model_dump().items()
        }
        async with self._get_session() as session:
            stmt = (
                conflict_insert(session, UsageRecordEntity)
                .values(values)
                .on_conflict_do_nothing(
                    index_elements=[
                        UsageRecordEntity.account_id,
                        UsageRecordEntity.idempotency_key,
                    ]
                )
            )
            result = await session.execute(stmt)
            created = result.rowcount > 0
        record = await self.get_by_idempotency_key(
            create_model.account_id, create_model.idempotency_key
        )
        return record, created

    @trace_span
    async def get_window_usage(
        self,
        account_id: str,
        resource_type: ResourceType,
        period_start: datetime,
        now: datetime,
    ) -> WindowUsage:
        """
        Sum quantities for the monthly, daily and hourly windows in one query.

        Monthly counts records attributed to ``period_start``; daily and
        hourly are trailing windows ending at ``now`` regardless of period.
        """
        day_ago = now - DAY
        hour_ago = now - HOUR
        entity = UsageRecordEntity

        def _sum_when(condition):
            return func.coalesce(
                func.sum(case((condition, entity.quantity), else_=0)), 0
            )

        async with self._get_session() as session:
            result = await session.execute(
                select(
                    _sum_when(entity.billing_period_start == period_start),
                    _sum_when(entity.recorded_at >= day_ago),
                    _sum_when(entity.recorded_at >= hour_ago),
                ).where(
                    entity.account_id == account_id,
                    entity.resource_type == resource_type.value,
                    or_(
                        entity.billing_period_start == period_start,
                        entity.recorded_at >= day_ago,
                    ),
                )
            )
            monthly, daily, hourly = result.one()
            return WindowUsage(
                monthly=monthly or 0, daily=daily or 0, hourly=hourly or 0
            )

    @trace_span
    async def get_period_totals(
        self, account_id: str, period_start: datetime
    ) -> dict[ResourceType, int]:
        """Sum of quantity per resource for one billing period."""
        async with self._get_session() as session:
            result = await session.execute(
                select(
                    UsageRecordEntity.resource_type,
                    func.coalesce(func.sum(UsageRecordEntity.quantity), 0),
                )
                .where(
                    UsageRecordEntity.account_id == account_id,
                    UsageRecordEntity.billing_period_start == period_start,
                )
                .group_by(UsageRecordEntity.resource_type)
            )
            return {ResourceType(row[0]): row[1] or 0 for row in result.all()}

    @trace_span
    async def get_by_account(
        self, account_id: str, limit: int = 100, offset: int = 0
    ) -> list[UsageRecord]:
        """Most recent usage records for an account."""
        async with self._get_session() as session:
            result = await session.execute(
                select(UsageRecordEntity)
                .where(UsageRecordEntity.account_id == account_id)
                .order_by(
                    UsageRecordEntity.recorded_at.desc(), UsageRecordEntity.id.desc()
                )
                .limit(limit)
                .offset(offset)
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def delete_recorded_before(self, cutoff: datetime) -> int:
        """Retention pruning. Returns the number of records deleted."""
        async with self._get_session() as session:
            result = await session.execute(
                delete(UsageRecordEntity).where(UsageRecordEntity.recorded_at < cutoff)
            )
            return result.rowcount or 0
