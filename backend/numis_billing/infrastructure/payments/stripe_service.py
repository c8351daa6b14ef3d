"""
Stripe Payment Service

Clean Architecture infrastructure service for Stripe payment processing.
Handles webhook verification, hosted checkout and the billing portal.

The Stripe client is injected at construction; nothing here touches the
SDK's module-level api key.
"""

import json
import logging
from typing import Any, Awaitable, Optional, TypeVar

import stripe
from stripe import APIConnectionError, SignatureVerificationError, StripeError

from numis_billing.domain.events import BillingEvent
from numis_billing.infrastructure.exceptions import (
    ConfigurationError,
    MissingRequiredFieldError,
    MissingSignatureHeaderError,
    PaymentProviderError,
    PaymentProviderUnavailableError,
    SecretNotConfiguredError,
    SignatureInvalidError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_stripe_client(
    secret_key: Optional[str],
    timeout: float,
    max_network_retries: int = 2,
) -> Optional[stripe.StripeClient]:
    """Create a StripeClient with a bounded HTTP timeout, or None without a key."""
    if not secret_key:
        logger.warning("STRIPE_SECRET_KEY not configured, session endpoints disabled")
        return None

    return stripe.StripeClient(
        secret_key,
        http_client=stripe.HTTPXClient(timeout=timeout),
        max_network_retries=max_network_retries,
    )


def _plain(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject into plain nested dicts."""
    return json.loads(str(obj))


class StripeService:
    """
    Stripe payment processing service.

    Stateless apart from its injected client and configuration; safe to
    share between concurrent requests.
    """

    def __init__(
        self,
        client: Optional[stripe.StripeClient],
        webhook_secret: Optional[str],
        frontend_url: str,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        self._client = client
        self._webhook_secret = webhook_secret
        self._frontend_url = frontend_url.rstrip("/")
        self._tolerance = tolerance

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> BillingEvent:
        """
        Verify webhook signature and construct event.

        Args:
            payload: Raw request body, exactly as received
            signature: Stripe-Signature header

        Returns:
            BillingEvent if valid

        Raises:
            MissingSignatureHeaderError: header absent
            SecretNotConfiguredError: STRIPE_WEBHOOK_SECRET not provisioned
            SignatureInvalidError: signature or payload invalid
        """
        if not signature:
            raise MissingSignatureHeaderError()

        if not self._webhook_secret:
            raise SecretNotConfiguredError()

        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                text,
                signature,
                self._webhook_secret,
                self._tolerance,
            )
        except UnicodeDecodeError as e:
            raise SignatureInvalidError(f"Invalid payload: {e}", original_error=e)
        except SignatureVerificationError as e:
            raise SignatureInvalidError(f"Invalid signature: {e}", original_error=e)

        try:
            data = json.loads(text)
        except ValueError as e:
            raise SignatureInvalidError(f"Invalid payload: {e}", original_error=e)

        if not isinstance(data, dict) or not data.get("type"):
            raise SignatureInvalidError("Invalid payload: missing event type")

        return BillingEvent.from_payload(data)

    # =========================================================================
    # Checkout Session (Subscription Flow)
    # =========================================================================

    async def create_checkout_session(
        self,
        price_id: Optional[str],
        customer_email: Optional[str],
        user_id: Optional[str],
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> str:
        """
        Create a Stripe Checkout Session for a subscription.

        The internal user id is attached as client_reference_id and as
        subscription metadata so later webhook events resolve directly.

        Returns:
            Hosted checkout URL
        """
        missing = [
            name for name, value in (
                ("priceId", price_id),
                ("customerEmail", customer_email),
                ("userId", user_id),
            )
            if not value
        ]
        if missing:
            raise MissingRequiredFieldError(missing)

        client = self._require_client()

        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url or f"{self._frontend_url}/subscription?success=true",
            "cancel_url": cancel_url or f"{self._frontend_url}/subscription?canceled=true",
            "client_reference_id": user_id,
            "metadata": {"userId": user_id},
            "subscription_data": {"metadata": {"userId": user_id}},
        }

        customer = await self._find_customer_by_email(customer_email)
        if customer is not None:
            await self._call(
                "update customer",
                client.customers.update_async(
                    customer.id, params={"metadata": {"userId": user_id}}
                ),
            )
            params["customer"] = customer.id
            logger.info(f"Reusing Stripe customer {customer.id} for user {user_id}")
        else:
            params["customer_email"] = customer_email

        session = await self._call(
            "create checkout session",
            client.checkout.sessions.create_async(params=params),
        )
        logger.info(f"Created checkout session {session.id} for user {user_id}")
        return session.url

    # =========================================================================
    # Customer Portal (Subscription Management)
    # =========================================================================

    async def create_portal_session(
        self,
        customer_id: Optional[str],
        return_url: Optional[str] = None,
    ) -> str:
        """
        Create a Billing Portal session for self-service management.

        Returns:
            Hosted portal URL
        """
        if not customer_id:
            raise MissingRequiredFieldError(["customerId"])

        client = self._require_client()
        session = await self._call(
            "create portal session",
            client.billing_portal.sessions.create_async(
                params={
                    "customer": customer_id,
                    "return_url": return_url or f"{self._frontend_url}/subscription",
                }
            ),
        )
        logger.info(f"Created portal session for customer {customer_id}")
        return session.url

    # =========================================================================
    # Subscription Queries
    # =========================================================================

    async def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Retrieve a subscription as plain dicts (same shape as webhook payloads)."""
        client = self._require_client()
        subscription = await self._call(
            "retrieve subscription",
            client.subscriptions.retrieve_async(subscription_id),
        )
        return _plain(subscription)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _find_customer_by_email(self, email: str) -> Optional[stripe.Customer]:
        client = self._require_client()
        customers = await self._call(
            "list customers",
            client.customers.list_async(params={"email": email, "limit": 1}),
        )
        return customers.data[0] if customers.data else None

    def _require_client(self) -> stripe.StripeClient:
        if self._client is None:
            raise ConfigurationError(
                "Stripe API key not configured",
                missing_keys=["STRIPE_SECRET_KEY"],
            )
        return self._client

    async def _call(self, description: str, request: Awaitable[T]) -> T:
        try:
            return await request
        except APIConnectionError as e:
            logger.error(f"Stripe unreachable during {description}: {e}")
            raise PaymentProviderUnavailableError(
                f"Payment provider unavailable ({description})", original_error=e
            )
        except StripeError as e:
            # Full provider detail stays in the server log only
            logger.error(f"Stripe error during {description}: {e!r}")
            raise PaymentProviderError(f"Failed to {description}", original_error=e)
