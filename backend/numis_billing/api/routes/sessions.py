"""
Checkout and Billing Portal Session Routes

Thin request/response endpoints that ask Stripe for hosted session URLs.
They never write subscription state; that only happens through webhooks.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from numis_billing.api.dependencies import StripeServiceDep
from numis_billing.api.rate_limit import limiter
from numis_billing.config.settings import settings
from numis_billing.domain.subscription import (
    CheckoutResponse,
    CreateCheckoutRequest,
    PortalResponse,
    PortalSessionRequest,
)
from numis_billing.infrastructure.exceptions import (
    PaymentProviderError,
    PaymentProviderUnavailableError,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-checkout-session", response_model=CheckoutResponse)
@limiter.limit(settings.session_rate_limit)
async def create_checkout_session(
    request: Request,
    body: CreateCheckoutRequest,
    stripe_service: StripeServiceDep,
):
    """
    Create a Stripe Checkout session for the pro subscription.

    Returns:
        CheckoutResponse with the hosted checkout URL
    """
    try:
        url = await stripe_service.create_checkout_session(
            price_id=body.price_id,
            customer_email=body.customer_email,
            user_id=body.user_id,
            success_url=body.success_url,
            cancel_url=body.cancel_url,
        )
    except PaymentProviderUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider unavailable, please retry",
        )
    except PaymentProviderError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout session",
        )

    return CheckoutResponse(session_url=url)


@router.post("/create-portal-session", response_model=PortalResponse)
@limiter.limit(settings.session_rate_limit)
async def create_portal_session(
    request: Request,
    body: PortalSessionRequest,
    stripe_service: StripeServiceDep,
):
    """
    Create a Stripe Customer Portal session.

    Allows customers to update payment methods, cancel, and view invoices.
    """
    try:
        url = await stripe_service.create_portal_session(
            customer_id=body.customer_id,
            return_url=body.return_url,
        )
    except PaymentProviderUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider unavailable, please retry",
        )
    except PaymentProviderError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create portal session",
        )

    return PortalResponse(url=url)
