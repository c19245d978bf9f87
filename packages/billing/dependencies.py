from typing import Annotated, Optional
from fastapi import HTTPException, status, Header

from common.core.otel_axiom_exporter import get_logger
from packages.billing.services.billing_facade import BillingFacade

logger = get_logger(__name__)


def get_billing_facade() -> BillingFacade:
    """Get BillingFacade instance."""
    return BillingFacade()


async def get_account_id(
    x_account_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Account the request acts for.

    Set by the platform's auth layer in front of this service; the engine
    does no authentication of its own.
    """
    if not x_account_id or not x_account_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Account-Id header missing",
        )
    return x_account_id.strip()
