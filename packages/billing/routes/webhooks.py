"""
Webhook endpoints for billing events.

Public endpoints (no account header) for Stripe webhooks.
"""

from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Header, Request

from common.core.otel_axiom_exporter import get_logger
from packages.billing.dependencies import get_billing_facade
from packages.billing.models.schemas.billing import WebhookResponse
from packages.billing.services.billing_facade import BillingFacade

logger = get_logger(__name__)

router = APIRouter()


@router.post("/billing/webhooks/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: Annotated[Optional[str], Header()] = None,
    facade: BillingFacade = Depends(get_billing_facade),
):
    """
    Receive webhook events from Stripe payment platform.

    The raw body is verified against ``stripe-signature``. Processed,
    duplicate and unhandled events are all acknowledged with 200; only a
    bad signature is a 400. Storage failures surface as 500 so Stripe retries.
    """
    payload = await request.body()
    outcome = await facade.handle_webhook(payload, stripe_signature)
    logger.debug(f"Stripe webhook outcome: {outcome.value}")
    return WebhookResponse(received=True)
