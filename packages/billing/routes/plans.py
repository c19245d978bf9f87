"""
Plans API routes.

Public endpoint for retrieving available subscription plans.
"""

from fastapi import APIRouter, Depends

from packages.billing.dependencies import get_billing_facade
from packages.billing.models.domain.plans import PlansResponse
from packages.billing.services.billing_facade import BillingFacade

router = APIRouter()


@router.get("", response_model=PlansResponse)
async def get_plans(facade: BillingFacade = Depends(get_billing_facade)):
    """
    Get all available subscription plans.

    Returns pricing, limits (-1 = unlimited) and features for each tier.
    This endpoint is public (no account header) for pricing pages.
    """
    return facade.list_plans()
