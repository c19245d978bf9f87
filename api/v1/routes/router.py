from fastapi import APIRouter

from api.v1.routes import (
    health,
)
from packages.billing.routes import billing, webhooks, plans

api_router = APIRouter()

# Health check (no account required)
api_router.include_router(health.router, prefix="/health", tags=["health"])

# Webhooks (no account - signature verified internally)
api_router.include_router(webhooks.router, tags=["webhooks"])

# Plans (no account - public pricing info)
api_router.include_router(plans.router, prefix="/billing/plans", tags=["billing"])

# Billing routes (account identity from X-Account-Id)
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
