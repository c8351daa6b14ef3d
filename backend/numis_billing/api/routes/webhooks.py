"""
Stripe Webhook Route

The only authentication on this path is the Stripe signature, checked on the
raw body before anything else runs. Events that were processed or
deliberately ignored are acknowledged with 200; record store failures and an
unreachable Stripe API return 500 so Stripe redelivers later.
"""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from numis_billing.api.dependencies import StripeServiceDep, WebhookProcessorDep
from numis_billing.api.rate_limit import limiter
from numis_billing.config.settings import settings
from numis_billing.domain.subscription import WebhookAck
from numis_billing.infrastructure.exceptions import (
    PaymentProviderUnavailableError,
    ReconciliationFailedError,
    WebhookVerificationError,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe-webhook", response_model=WebhookAck)
@limiter.limit(settings.webhook_rate_limit)
async def stripe_webhook(
    request: Request,
    stripe_service: StripeServiceDep,
    processor: WebhookProcessorDep,
):
    """
    Handle Stripe webhook events.

    The body is read as raw bytes; it must not be parsed before verification.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = stripe_service.verify_webhook_signature(payload, signature)
    except WebhookVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e.message}")
        raise

    logger.info(f"Verified Stripe webhook: {event.type} ({event.id})")

    try:
        outcome = await processor.process(event)
    except (ReconciliationFailedError, PaymentProviderUnavailableError) as e:
        logger.error(
            f"Webhook processing error for {event.type} ({event.id}): "
            f"{e.message} {e.details} cause={e.original_error!r}"
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    logger.info(f"Webhook {event.id} {outcome.value}")
    return WebhookAck()
