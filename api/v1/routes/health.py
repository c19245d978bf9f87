from fastapi import APIRouter, Depends
from sqlalchemy import text

from common.db.scoped import get_session
from common.core.otel_axiom_exporter import get_logger
from packages.billing.dependencies import get_billing_facade
from packages.billing.services.billing_facade import BillingFacade

logger = get_logger(__name__)

router = APIRouter()


@router.get("/")
async def health_check():
    # No logging - k8s probes hit this every 5-10s
    return {"status": "healthy", "service": "billing-engine"}


@router.get("/db")
async def db_check():
    try:
        async with get_session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "database": "disconnected"}


@router.get("/payments")
async def payments_check(facade: BillingFacade = Depends(get_billing_facade)):
    healthy = await facade.payment.health_check()
    return {
        "status": "healthy" if healthy else "unhealthy",
        "payment_processor": "reachable" if healthy else "unreachable",
    }
