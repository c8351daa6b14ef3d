"""
Payments Infrastructure Module

Stripe webhook verification and hosted session services.
"""

from numis_billing.infrastructure.payments.stripe_service import (
    StripeService,
    build_stripe_client,
)

__all__ = ["StripeService", "build_stripe_client"]
