"""
Repository for billing notifications.
"""

from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from packages.billing.models.database.notification import BillingNotificationEntity
from packages.billing.models.domain.notification import BillingNotification
from common.core.otel_axiom_exporter import trace_span


class BillingNotificationRepository(
    BaseRepository[BillingNotificationEntity, BillingNotification]
):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(BillingNotificationEntity, BillingNotification, db_session)

    @trace_span
    async def list_for_account(
        self, account_id: str, limit: int = 50
    ) -> list[BillingNotification]:
        async with self._get_session() as session:
            result = await session.execute(
                select(BillingNotificationEntity)
                .where(BillingNotificationEntity.account_id == account_id)
                .order_by(BillingNotificationEntity.id.desc())
                .limit(limit)
            )
            return self._entities_to_domain(result.scalars().all())
