from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import pool

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger
from common.db.base import Base

logger = get_logger(__name__)


def _engine_kwargs(database_url: str) -> dict:
    kwargs = {"echo": settings.debug}

    if database_url.startswith("sqlite"):
        # SQLite ignores pool sizing; used for local runs and tests
        return kwargs

    kwargs["pool_pre_ping"] = True
    kwargs["pool_recycle"] = 3600

    # NullPool for cron-driven sweeps (retention pruning), pooled for the API
    if settings.db_use_nullpool:
        logger.info("Using NullPool - no connection pooling (sweep mode)")
        kwargs["poolclass"] = pool.NullPool
    else:
        logger.info(
            f"Using connection pooling - pool_size={settings.db_pool_size}, max_overflow={settings.db_pool_overflow}"
        )
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_pool_overflow
    return kwargs


engine = create_async_engine(
    settings.database_url, **_engine_kwargs(settings.database_url)
)
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def init_db(create_tables: bool = False) -> None:
    """
    Prepare the database on startup.

    Schema is owned by migrations in deployed environments; ``create_tables``
    is for local SQLite runs only.
    """
    if create_tables:
        import packages.billing.models.database  # noqa: F401  registers tables

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Created billing tables")


async def dispose_db() -> None:
    await engine.dispose()
