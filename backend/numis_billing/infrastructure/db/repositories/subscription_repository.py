"""
Subscription Repository

Data access layer for subscription persistence.
Follows Repository pattern for Clean Architecture.
"""

import logging
from typing import Any, Optional

from numis_billing.domain.subscription import Subscription, SubscriptionField
from numis_billing.infrastructure.db.record_store import RecordStoreClient, equals_filter


logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository for subscription data access.

    Wraps the record store with domain model mapping. One record per user is
    a convention rather than a store constraint, so lookups that return more
    than one record are logged as an invariant violation.
    """

    def __init__(self, store: RecordStoreClient, collection: str = "subscriptions"):
        self._store = store
        self._collection = collection

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_user_id(self, user_id: str) -> Optional[Subscription]:
        """
        Get subscription by internal user ID.

        Args:
            user_id: Internal user ID

        Returns:
            Subscription domain model or None
        """
        return await self._get_one(SubscriptionField.USER_ID, user_id)

    async def get_by_provider_customer_id(
        self,
        customer_id: str,
    ) -> Optional[Subscription]:
        """
        Get subscription by Stripe customer ID.

        Args:
            customer_id: Stripe customer ID

        Returns:
            Subscription domain model or None
        """
        return await self._get_one(SubscriptionField.PROVIDER_CUSTOMER_ID, customer_id)

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create(self, fields: dict[str, Any]) -> Subscription:
        """Create a subscription record from store fields."""
        record = await self._store.create(self._collection, fields)
        subscription = Subscription.from_record(record)
        logger.info(f"Created subscription {subscription.id} for user {subscription.user_id}")
        return subscription

    async def update(self, record_id: str, fields: dict[str, Any]) -> Subscription:
        """Patch an existing subscription record."""
        record = await self._store.update(self._collection, record_id, fields)
        return Subscription.from_record(record)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_one(self, field: str, value: str) -> Optional[Subscription]:
        items = await self._store.list(self._collection, equals_filter(field, value))
        if not items:
            return None

        if len(items) > 1:
            logger.error(
                f"Found {len(items)} subscriptions where {field}={value}; "
                f"expected at most one, using {items[0].get('id')}"
            )

        return Subscription.from_record(items[0])
