"""
Webhook Processor

Routes verified Stripe events to the reconciler.

Critical Events:
- customer.subscription.created: Sync subscription
- customer.subscription.updated: Sync subscription, roll usage on renewal
- customer.subscription.deleted: Downgrade to free tier
- invoice.payment_succeeded: Roll usage for the new billing period
- invoice.payment_failed: Re-sync status from Stripe (usually past_due)
"""

import logging
from enum import Enum

from numis_billing.domain.events import (
    BillingEvent,
    EventType,
    invoice_period_end,
    subscription_id_of_invoice,
    subscription_period_end,
)
from numis_billing.infrastructure.exceptions import (
    ConfigurationError,
    PaymentProviderError,
    PaymentProviderUnavailableError,
    ReconciliationFailedError,
    RecordStoreError,
    ResolutionError,
)
from numis_billing.infrastructure.payments.stripe_service import StripeService
from numis_billing.infrastructure.services.subscriber_resolver import SubscriberResolver
from numis_billing.infrastructure.services.subscription_reconciler import (
    SubscriptionReconciler,
    with_subscription,
)


logger = logging.getLogger(__name__)


class WebhookOutcome(str, Enum):
    """What happened to an acknowledged event."""
    PROCESSED = "processed"
    IGNORED = "ignored"
    UNRESOLVED = "unresolved"


SUBSCRIPTION_EVENTS = frozenset({
    EventType.SUBSCRIPTION_CREATED,
    EventType.SUBSCRIPTION_UPDATED,
    EventType.SUBSCRIPTION_DELETED,
})


class WebhookProcessor:
    """
    Applies one verified event.

    Resolution failures are terminal for the event and reported as
    UNRESOLVED. Record store failures raise ReconciliationFailedError and an
    unreachable Stripe API raises PaymentProviderUnavailableError, so the
    caller can ask Stripe to redeliver. Permanent Stripe errors are IGNORED.
    """

    def __init__(
        self,
        resolver: SubscriberResolver,
        reconciler: SubscriptionReconciler,
        stripe_service: StripeService,
    ):
        self._resolver = resolver
        self._reconciler = reconciler
        self._stripe_service = stripe_service

    async def process(self, event: BillingEvent) -> WebhookOutcome:
        event_type = event.event_type
        if event_type is None:
            logger.info(f"Unhandled event type: {event.type}")
            return WebhookOutcome.IGNORED

        try:
            if event_type in SUBSCRIPTION_EVENTS:
                return await self._handle_subscription_event(event, event_type)
            if event_type == EventType.INVOICE_PAYMENT_SUCCEEDED:
                return await self._handle_invoice_payment_succeeded(event)
            return await self._handle_invoice_payment_failed(event)

        except ResolutionError as e:
            logger.warning(
                f"Cannot reconcile {event.type} ({event.id}): {e.message} {e.details}"
            )
            return WebhookOutcome.UNRESOLVED
        except RecordStoreError as e:
            raise ReconciliationFailedError(
                "Failed to look up subscriber", original_error=e
            )

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _handle_subscription_event(
        self,
        event: BillingEvent,
        event_type: EventType,
    ) -> WebhookOutcome:
        data = event.data_object
        resolution = await self._resolver.resolve(data)

        subscription = await self._reconciler.reconcile(
            resolution,
            data,
            canceled=event_type == EventType.SUBSCRIPTION_DELETED,
            event_created=event.created,
        )

        # A subscription update is also Stripe's renewal signal
        if event_type == EventType.SUBSCRIPTION_UPDATED:
            await self._reconciler.roll_usage_period(
                with_subscription(resolution, subscription),
                subscription_period_end(data),
                event_created=event.created,
            )

        return WebhookOutcome.PROCESSED

    async def _handle_invoice_payment_succeeded(self, event: BillingEvent) -> WebhookOutcome:
        invoice = event.data_object
        if not subscription_id_of_invoice(invoice):
            logger.info(f"Invoice {invoice.get('id')} has no subscription, ignoring")
            return WebhookOutcome.IGNORED

        resolution = await self._resolver.resolve(invoice)
        await self._reconciler.roll_usage_period(resolution, invoice_period_end(invoice))
        return WebhookOutcome.PROCESSED

    async def _handle_invoice_payment_failed(self, event: BillingEvent) -> WebhookOutcome:
        invoice = event.data_object
        subscription_id = subscription_id_of_invoice(invoice)
        if not subscription_id:
            logger.info(f"Invoice {invoice.get('id')} has no subscription, ignoring")
            return WebhookOutcome.IGNORED

        logger.warning(f"Payment failed for subscription: {subscription_id}")

        try:
            subscription_data = await self._stripe_service.get_subscription(subscription_id)
        except ConfigurationError as e:
            logger.warning(f"Cannot re-sync {subscription_id}: {e.message}")
            return WebhookOutcome.IGNORED
        except PaymentProviderUnavailableError:
            raise
        except PaymentProviderError as e:
            # Permanent, e.g. the subscription no longer exists
            logger.error(
                f"Cannot re-sync {subscription_id}: {e.message} "
                f"cause={e.original_error!r}"
            )
            return WebhookOutcome.IGNORED

        resolution = await self._resolver.resolve(subscription_data)
        await self._reconciler.reconcile(
            resolution,
            subscription_data,
            canceled=subscription_data.get("status") == "canceled",
            event_created=event.created,
        )
        return WebhookOutcome.PROCESSED
