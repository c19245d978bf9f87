# Shared pytest configuration and fixtures for all test types
import json
import os
from datetime import timedelta
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

# Settings are read at import time, so point them at SQLite and the in-process
# counter before anything from the app is imported
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("COUNTER_PROVIDER", "memory")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

from api.main import app  # noqa: E402
from common.core.time import utc_now  # noqa: E402
from common.db.base import Base  # noqa: E402
from common.providers.counter.memory_counter import MemoryCounter  # noqa: E402
import packages.billing.models.database  # noqa: E402,F401  registers tables
from packages.billing.dependencies import get_billing_facade  # noqa: E402
from packages.billing.models.domain.enums import (  # noqa: E402
    BillingCycle,
    SubscriptionStatus,
)
from packages.billing.models.domain.payment_method import (  # noqa: E402
    PaymentMethod,
    PaymentMethodList,
)
from packages.billing.models.domain.subscription import (  # noqa: E402
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.providers.payment.interface import (  # noqa: E402
    CheckoutSession,
    PaymentProviderInterface,
)
from packages.billing.repositories.subscription_repository import (  # noqa: E402
    SubscriptionRepository,
)
from packages.billing.services.billing_facade import BillingFacade  # noqa: E402
from packages.billing.services.plan_catalog import PlanCatalog  # noqa: E402

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ACCOUNT_ID = "acct_test_1"
TEST_STRIPE_SUBSCRIPTION_ID = "sub_test_123"
TEST_STRIPE_CUSTOMER_ID = "cus_test_123"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_connection(test_engine):
    """Create test connection with outer transaction for rollback isolation."""
    async with test_engine.connect() as connection:
        trans = await connection.begin()
        yield connection
        await trans.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_connection):
    """Create session factory bound to test connection.

    Using join_transaction_mode="create_savepoint" so nested transaction()
    calls create savepoints instead of real nested transactions.
    """
    return async_sessionmaker(
        bind=test_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_lazy_sessions(test_session_factory, monkeypatch):
    """
    Patch the session factory to use the test database.

    This allows real transaction() and get_session() to run with proper
    commit/rollback/ContextVar semantics while using the test database.
    """
    monkeypatch.setattr("common.db.scoped.AsyncSessionLocal", test_session_factory)


# ============================================================================
# Providers
# ============================================================================


@pytest.fixture
def mock_payment_provider():
    """Payment provider double. construct_event decodes the body as JSON."""
    provider = AsyncMock(spec=PaymentProviderInterface)
    provider.create_checkout_session = AsyncMock(
        return_value=CheckoutSession(
            session_id="cs_test_123",
            url="https://checkout.stripe.com/c/pay/cs_test_123",
            customer_id=TEST_STRIPE_CUSTOMER_ID,
        )
    )
    provider.update_subscription_price = AsyncMock(return_value=None)
    provider.set_cancel_at_period_end = AsyncMock(return_value=None)
    provider.retrieve_subscription = AsyncMock()
    provider.list_payment_methods = AsyncMock(
        return_value=PaymentMethodList(
            payment_methods=[
                PaymentMethod(
                    id="pm_card_visa",
                    brand="visa",
                    last4="4242",
                    exp_month=12,
                    exp_year=2030,
                    is_default=True,
                )
            ],
            default_payment_method_id="pm_card_visa",
        )
    )
    provider.attach_payment_method = AsyncMock(
        side_effect=lambda customer_id, payment_method_id, set_as_default=False: (
            PaymentMethod(id=payment_method_id, is_default=set_as_default)
        )
    )
    provider.detach_payment_method = AsyncMock(return_value=None)
    provider.find_promotion_code = AsyncMock(return_value=None)
    provider.health_check = AsyncMock(return_value=True)
    provider.construct_event = MagicMock(
        side_effect=lambda payload, signature: json.loads(payload)
    )
    return provider


@pytest.fixture
def memory_counter():
    return MemoryCounter()


@pytest.fixture
def plan_catalog():
    return PlanCatalog()


@pytest.fixture
def facade(mock_payment_provider, plan_catalog, memory_counter):
    """Billing facade wired to the test database and provider doubles."""
    return BillingFacade(
        payment=mock_payment_provider,
        plan_catalog=plan_catalog,
        counter=memory_counter,
    )


# ============================================================================
# Subscriptions
# ============================================================================


@pytest.fixture
def create_subscription():
    """Factory writing an account's subscription row straight to the store."""

    async def _create(
        account_id: str = TEST_ACCOUNT_ID,
        plan_id: str = "pro",
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        period_days: int = 30,
        started_days_ago: int = 1,
        stripe_subscription_id: Optional[str] = TEST_STRIPE_SUBSCRIPTION_ID,
        stripe_customer_id: Optional[str] = TEST_STRIPE_CUSTOMER_ID,
        cancel_at_period_end: bool = False,
    ) -> Subscription:
        start = utc_now() - timedelta(days=started_days_ago)
        return await SubscriptionRepository().replace_for_account(
            SubscriptionCreateModel(
                account_id=account_id,
                plan_id=plan_id,
                billing_cycle=billing_cycle,
                status=status,
                current_period_start=start,
                current_period_end=start + timedelta(days=period_days),
                cancel_at_period_end=cancel_at_period_end,
                stripe_subscription_id=stripe_subscription_id,
                stripe_customer_id=stripe_customer_id,
            )
        )

    return _create


@pytest_asyncio.fixture(scope="function")
async def pro_subscription(create_subscription):
    """Active monthly pro subscription with processor ids."""
    return await create_subscription(plan_id="pro")


# ============================================================================
# Stripe events
# ============================================================================


@pytest.fixture
def stripe_event():
    """Build a Stripe event envelope as the processor would send it."""

    def _build(
        event_type: str,
        obj: dict[str, Any],
        event_id: str = "evt_test_1",
        created: Optional[int] = None,
    ) -> dict[str, Any]:
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": created if created is not None else int(utc_now().timestamp()),
            "livemode": False,
            "data": {"object": obj},
        }

    return _build


@pytest.fixture
def stripe_subscription_object():
    """Build a Stripe subscription object with a period around now."""

    def _build(
        subscription_id: str = TEST_STRIPE_SUBSCRIPTION_ID,
        status: str = "active",
        period_days: int = 30,
        cancel_at_period_end: bool = False,
        metadata: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        start = int(utc_now().timestamp())
        return {
            "id": subscription_id,
            "object": "subscription",
            "customer": TEST_STRIPE_CUSTOMER_ID,
            "status": status,
            "current_period_start": start,
            "current_period_end": start + period_days * 86400,
            "cancel_at_period_end": cancel_at_period_end,
            "metadata": metadata or {},
        }

    return _build


# ============================================================================
# HTTP
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def client(facade):
    """Create a test client backed by the test facade."""
    app.dependency_overrides[get_billing_facade] = lambda: facade

    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
