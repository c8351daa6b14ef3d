"""
Subscription Reconciler

Converges a user's single subscription record to the state reported by
Stripe. Writes are idempotent upserts keyed on userId:

- update in place when a record exists, otherwise create one with zero usage
  and a one-month metering window
- deletion events force free / canceled and clear the Stripe subscription id
- an event older than the newest one already applied is skipped, so a late
  "updated" cannot resurrect a deleted subscription
- usage counters roll only once the stored window has elapsed

Reads and writes for one user are serialized within the process. Deliveries
handled by different processes can still interleave between read and write.
"""

import asyncio
import logging
import weakref
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Optional

from numis_billing.domain.events import customer_id_of, subscription_period_end
from numis_billing.domain.subscription import (
    Subscription,
    SubscriptionField,
    SubscriptionStatus,
    format_store_date,
    format_store_timestamp,
)
from numis_billing.domain.tier_mapper import price_id_of, status_of, tier_of
from numis_billing.domain.usage_period import new_usage_period, plan_usage_reset, utc_now
from numis_billing.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from numis_billing.infrastructure.exceptions import (
    ReconciliationFailedError,
    RecordStoreError,
)
from numis_billing.infrastructure.services.subscriber_resolver import Resolution


logger = logging.getLogger(__name__)


class SubscriptionReconciler:
    """Idempotent create-or-update of subscription records."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        pro_price_id: Optional[str],
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self._pro_price_id = pro_price_id
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # =========================================================================
    # Subscription state
    # =========================================================================

    async def reconcile(
        self,
        resolution: Resolution,
        subscription_data: dict[str, Any],
        *,
        canceled: bool = False,
        event_created: Optional[int] = None,
    ) -> Subscription:
        """
        Apply a Stripe subscription object to the user's record.

        Args:
            resolution: Resolved subscriber (may carry the loaded record)
            subscription_data: Stripe subscription object
            canceled: True for deletion events
            event_created: Stripe event creation time (Unix seconds)

        Returns:
            The stored subscription after the write (or unchanged if stale)

        Raises:
            ReconciliationFailedError: record store read or write failed
        """
        user_id = resolution.user_id

        async with self._lock_for(user_id):
            existing = await self._load(resolution)

            if existing is not None and self._is_stale(existing, event_created):
                logger.warning(
                    f"Skipping out-of-order event for user {user_id}: "
                    f"event created {event_created} < last applied "
                    f"{existing.last_event_created}"
                )
                return existing

            fields = self._subscription_fields(
                user_id, subscription_data, canceled, event_created
            )

            try:
                if existing is not None:
                    subscription = await self._repository.update(existing.id, fields)
                    logger.info(
                        f"Updated subscription for user {user_id}: "
                        f"tier={fields[SubscriptionField.TIER]} "
                        f"status={fields[SubscriptionField.STATUS]}"
                    )
                else:
                    fields.update(self._new_record_defaults())
                    subscription = await self._repository.create(fields)
                    logger.info(f"Created subscription for user {user_id}")
            except RecordStoreError as e:
                action = "update" if existing is not None else "create"
                raise ReconciliationFailedError(
                    f"Failed to {action} subscription",
                    user_id=user_id,
                    original_error=e,
                )

        return subscription

    # =========================================================================
    # Usage period
    # =========================================================================

    async def roll_usage_period(
        self,
        resolution: Resolution,
        event_period_end: Optional[datetime],
        *,
        event_created: Optional[int] = None,
    ) -> Optional[Subscription]:
        """
        Reset usage counters if the stored metering window has elapsed.

        Only renewal-shaped events should call this. A user without a record
        is left alone.

        Args:
            resolution: Resolved subscriber (may carry the loaded record)
            event_period_end: Period end carried by the event, if any
            event_created: Creation time of a subscription event; a roll for
                an event older than the last one applied is skipped

        Returns:
            The subscription after the check, or None if the user has none
        """
        user_id = resolution.user_id

        async with self._lock_for(user_id):
            existing = await self._load(resolution)
            if existing is None:
                logger.info(f"No subscription to reset usage for user {user_id}")
                return None

            if self._is_stale(existing, event_created):
                logger.warning(
                    f"Skipping usage roll for out-of-order event for user {user_id}: "
                    f"event created {event_created} < last applied "
                    f"{existing.last_event_created}"
                )
                return existing

            reset = plan_usage_reset(existing.usage_period_end, event_period_end, self._clock())
            if reset is None:
                logger.debug(f"Usage period still current for user {user_id}")
                return existing

            try:
                subscription = await self._repository.update(existing.id, reset)
            except RecordStoreError as e:
                raise ReconciliationFailedError(
                    "Failed to reset usage period",
                    user_id=user_id,
                    original_error=e,
                )

        logger.info(f"Reset usage period for user {user_id}")
        return subscription

    # =========================================================================
    # Helpers
    # =========================================================================

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _load(self, resolution: Resolution) -> Optional[Subscription]:
        if resolution.subscription is not None:
            return resolution.subscription
        try:
            return await self._repository.get_by_user_id(resolution.user_id)
        except RecordStoreError as e:
            raise ReconciliationFailedError(
                "Failed to fetch existing subscription",
                user_id=resolution.user_id,
                original_error=e,
            )

    @staticmethod
    def _is_stale(existing: Subscription, event_created: Optional[int]) -> bool:
        if existing.last_event_created is None or event_created is None:
            return False
        return event_created < existing.last_event_created

    def _subscription_fields(
        self,
        user_id: str,
        data: dict[str, Any],
        canceled: bool,
        event_created: Optional[int],
    ) -> dict[str, Any]:
        if canceled:
            status = SubscriptionStatus.CANCELED
        else:
            status = status_of(data.get("status"))

        tier = tier_of(price_id_of(data), canceled, self._pro_price_id)

        fields: dict[str, Any] = {
            SubscriptionField.USER_ID: user_id,
            SubscriptionField.TIER: tier.value,
            SubscriptionField.STATUS: status.value,
            SubscriptionField.PROVIDER_SUBSCRIPTION_ID: None if canceled else data.get("id"),
            SubscriptionField.CURRENT_PERIOD_END: format_store_timestamp(
                subscription_period_end(data)
            ),
            SubscriptionField.CANCEL_AT_PERIOD_END: (
                False if canceled else bool(data.get("cancel_at_period_end"))
            ),
        }

        customer_id = customer_id_of(data)
        if customer_id:
            fields[SubscriptionField.PROVIDER_CUSTOMER_ID] = customer_id
        if event_created:
            fields[SubscriptionField.LAST_EVENT_CREATED] = int(event_created)

        return fields

    def _new_record_defaults(self) -> dict[str, Any]:
        start, end = new_usage_period(self._clock().date())
        return {
            SubscriptionField.PMG_FETCHES_USED: 0,
            SubscriptionField.AI_EXTRACTIONS_USED: 0,
            SubscriptionField.USAGE_PERIOD_START: format_store_date(start),
            SubscriptionField.USAGE_PERIOD_END: format_store_date(end),
        }


def with_subscription(resolution: Resolution, subscription: Optional[Subscription]) -> Resolution:
    """Carry a freshly written record forward to the next step."""
    return replace(resolution, subscription=subscription)
