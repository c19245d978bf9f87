"""
Repository for subscription management.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from common.core.otel_axiom_exporter import trace_span
from packages.billing.models.domain.enums import SubscriptionStatus

_RENEWABLE_STATUSES = (
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.TRIALING.value,
)


class SubscriptionRepository(BaseRepository[SubscriptionEntity, Subscription]):
    """Repository for managing account subscriptions (one row per account)."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(SubscriptionEntity, Subscription, db_session)

    @trace_span
    async def get_by_account_id(self, account_id: str) -> Optional[Subscription]:
        """Get the subscription row for an account, whatever its status."""
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity).where(
                    SubscriptionEntity.account_id == account_id
                )
            )
            db_subscription = result.scalar_one_or_none()
            return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def get_by_stripe_subscription_id(
        self, stripe_subscription_id: str
    ) -> Optional[Subscription]:
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity).where(
                    SubscriptionEntity.stripe_subscription_id == stripe_subscription_id
                )
            )
            db_subscription = result.scalar_one_or_none()
            return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def get_by_stripe_customer_id(
        self, stripe_customer_id: str
    ) -> Optional[Subscription]:
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(SubscriptionEntity.stripe_customer_id == stripe_customer_id)
                .order_by(SubscriptionEntity.id.desc())
                .limit(1)
            )
            db_subscription = result.scalar_one_or_none()
            return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def replace_for_account(
        self, create_model: SubscriptionCreateModel
    ) -> Subscription:
        """
        Create the account's subscription, or overwrite the existing row.

        Overwriting keeps the row id so usage history stays attached to it;
        lifecycle fields from the previous subscription are cleared.
        """
        data = create_model.model_dump()
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity.id).where(
                    SubscriptionEntity.account_id == create_model.account_id
                )
            )
            existing_id = result.scalar_one_or_none()
            if existing_id is None:
                db_obj = SubscriptionEntity(**data)
                session.add(db_obj)
                await session.flush()
                await session.refresh(db_obj)
                return self._entity_to_domain(db_obj)

            data["canceled_at"] = None
            await session.execute(
                update(SubscriptionEntity)
                .where(SubscriptionEntity.id == existing_id)
                .values(data)
            )
            await session.flush()
        return await self.get(existing_id)

    @trace_span
    async def list_expired(self, cutoff: datetime, limit: int = 500) -> list[Subscription]:
        """Paying rows whose period ended before ``cutoff`` with no renewal seen."""
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(
                    SubscriptionEntity.status.in_(_RENEWABLE_STATUSES),
                    SubscriptionEntity.current_period_end < cutoff,
                )
                .order_by(SubscriptionEntity.current_period_end)
                .limit(limit)
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def update_if_expired(
        self, id: int, cutoff: datetime, update_model: SubscriptionUpdateModel
    ) -> Optional[Subscription]:
        """
        Apply ``update_model`` only while the row is still expired.

        Returns None when a renewal or status change landed after the row
        was listed.
        """
        async with self._get_session() as session:
            result = await session.execute(
                update(SubscriptionEntity)
                .where(
                    SubscriptionEntity.id == id,
                    SubscriptionEntity.status.in_(_RENEWABLE_STATUSES),
                    SubscriptionEntity.current_period_end < cutoff,
                )
                .values(update_model.model_dump(exclude_unset=True))
            )
            await session.flush()
            if not result.rowcount:
                return None
        return await self.get(id)
