"""
API Dependencies

FastAPI dependency providers. Each component is built once per process with
its collaborators passed in explicitly; tests replace any of them through
app.dependency_overrides.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from numis_billing.config.settings import get_settings
from numis_billing.infrastructure.db.record_store import RecordStoreClient
from numis_billing.infrastructure.db.repositories import SubscriptionRepository
from numis_billing.infrastructure.payments.stripe_service import (
    StripeService,
    build_stripe_client,
)
from numis_billing.infrastructure.services.subscriber_resolver import (
    SubscriberResolver,
    default_resolver,
)
from numis_billing.infrastructure.services.subscription_reconciler import (
    SubscriptionReconciler,
)
from numis_billing.infrastructure.services.webhook_processor import WebhookProcessor


@lru_cache
def get_record_store() -> RecordStoreClient:
    settings = get_settings()
    return RecordStoreClient(
        base_url=settings.pocketbase_url,
        admin_email=settings.admin_email,
        admin_password=settings.admin_password,
        auth_path=settings.pocketbase_admin_auth_path,
        timeout=settings.request_timeout_seconds,
    )


@lru_cache
def get_subscription_repository() -> SubscriptionRepository:
    return SubscriptionRepository(
        get_record_store(),
        collection=get_settings().subscriptions_collection,
    )


@lru_cache
def get_stripe_service() -> StripeService:
    settings = get_settings()
    client = build_stripe_client(
        settings.stripe_secret_key,
        timeout=settings.request_timeout_seconds,
        max_network_retries=settings.stripe_max_network_retries,
    )
    return StripeService(
        client,
        webhook_secret=settings.stripe_webhook_secret,
        frontend_url=settings.frontend_url,
    )


@lru_cache
def get_subscriber_resolver() -> SubscriberResolver:
    return default_resolver(get_subscription_repository())


@lru_cache
def get_subscription_reconciler() -> SubscriptionReconciler:
    return SubscriptionReconciler(
        get_subscription_repository(),
        pro_price_id=get_settings().stripe_price_pro,
    )


@lru_cache
def get_webhook_processor() -> WebhookProcessor:
    return WebhookProcessor(
        resolver=get_subscriber_resolver(),
        reconciler=get_subscription_reconciler(),
        stripe_service=get_stripe_service(),
    )


# Type aliases for route signatures
StripeServiceDep = Annotated[StripeService, Depends(get_stripe_service)]
WebhookProcessorDep = Annotated[WebhookProcessor, Depends(get_webhook_processor)]
