"""
Unit tests for the Subscription Reconciler.

Runs against the in-memory record store and covers:
- create vs update branching and defaults
- idempotent re-application
- cancellation dominance and the out-of-order guard
- concurrent deliveries for the same user
- failure semantics
- usage period rolls
"""

import asyncio
from datetime import datetime, timezone

import pytest

from numis_billing.infrastructure.exceptions import ReconciliationFailedError
from numis_billing.infrastructure.services.subscriber_resolver import Resolution


JAN_15 = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


def clock_at(moment: datetime):
    return lambda: moment


class TestReconcile:

    @pytest.mark.asyncio
    async def test_creates_record_with_defaults(self, make_reconciler, fake_store, user_id, stripe_subscription):
        reconciler = make_reconciler(clock_at(JAN_15))

        sub = await reconciler.reconcile(
            Resolution(user_id, "metadata"), stripe_subscription, event_created=1736935200
        )

        records = fake_store.all()
        assert len(records) == 1
        record = records[0]
        assert record["userId"] == user_id
        assert record["tier"] == "pro"
        assert record["status"] == "active"
        assert record["stripeSubscriptionId"] == "sub_123"
        assert record["stripeCustomerId"] == "cus_123"
        assert record["currentPeriodEnd"] == "2025-02-15T10:00:00.000Z"
        assert record["cancelAtPeriodEnd"] is False
        assert record["pmgFetchesUsed"] == 0
        assert record["aiExtractionsUsed"] == 0
        assert record["usagePeriodStart"] == "2025-01-15"
        assert record["usagePeriodEnd"] == "2025-02-15"
        assert record["lastEventCreated"] == 1736935200
        assert sub.id == record["id"]

    @pytest.mark.asyncio
    async def test_updates_in_place_without_touching_usage(self, make_reconciler, fake_store, user_id, stripe_subscription):
        fake_store.seed("subscriptions", {
            "userId": user_id, "tier": "free", "status": "active",
            "pmgFetchesUsed": 4, "aiExtractionsUsed": 2,
            "usagePeriodStart": "2025-01-01", "usagePeriodEnd": "2025-02-01",
        })

        await make_reconciler().reconcile(Resolution(user_id, "metadata"), stripe_subscription)

        records = fake_store.all()
        assert len(records) == 1
        assert records[0]["tier"] == "pro"
        assert records[0]["pmgFetchesUsed"] == 4
        assert records[0]["usagePeriodEnd"] == "2025-02-01"

    @pytest.mark.asyncio
    async def test_same_event_twice_is_idempotent(self, make_reconciler, fake_store, user_id, stripe_subscription):
        reconciler = make_reconciler(clock_at(JAN_15))
        resolution = Resolution(user_id, "metadata")

        await reconciler.reconcile(resolution, stripe_subscription, event_created=100)
        once = fake_store.all()
        await reconciler.reconcile(resolution, stripe_subscription, event_created=100)

        assert fake_store.all() == once

    @pytest.mark.asyncio
    async def test_cancellation_dominates_price(self, make_reconciler, fake_store, user_id, stripe_subscription):
        fake_store.seed("subscriptions", {
            "userId": user_id, "tier": "pro", "status": "active",
            "stripeSubscriptionId": "sub_123", "cancelAtPeriodEnd": True,
        })
        stripe_subscription["cancel_at_period_end"] = True

        await make_reconciler().reconcile(
            Resolution(user_id, "metadata"), stripe_subscription, canceled=True
        )

        record = fake_store.all()[0]
        assert record["tier"] == "free"
        assert record["status"] == "canceled"
        assert record["stripeSubscriptionId"] is None
        assert record["cancelAtPeriodEnd"] is False

    @pytest.mark.asyncio
    async def test_stale_event_does_not_resurrect_canceled(self, make_reconciler, fake_store, user_id, stripe_subscription):
        reconciler = make_reconciler()
        resolution = Resolution(user_id, "metadata")

        await reconciler.reconcile(resolution, stripe_subscription, canceled=True, event_created=2000)
        calls_before = list(fake_store.calls)
        await reconciler.reconcile(resolution, stripe_subscription, event_created=1000)

        record = fake_store.all()[0]
        assert record["status"] == "canceled"
        assert record["tier"] == "free"
        assert ("update", "subscriptions") not in fake_store.calls[len(calls_before):]

    @pytest.mark.asyncio
    async def test_newer_event_applies_after_cancellation(self, make_reconciler, fake_store, user_id, stripe_subscription):
        reconciler = make_reconciler()
        resolution = Resolution(user_id, "metadata")

        await reconciler.reconcile(resolution, stripe_subscription, canceled=True, event_created=2000)
        await reconciler.reconcile(resolution, stripe_subscription, event_created=3000)

        record = fake_store.all()[0]
        assert record["status"] == "active"
        assert record["tier"] == "pro"
        assert record["lastEventCreated"] == 3000

    @pytest.mark.asyncio
    async def test_concurrent_identical_events_create_one_record(self, make_reconciler, fake_store, user_id, stripe_subscription):
        reconciler = make_reconciler()
        resolution = Resolution(user_id, "metadata")

        await asyncio.gather(
            reconciler.reconcile(resolution, stripe_subscription, event_created=100),
            reconciler.reconcile(resolution, stripe_subscription, event_created=100),
        )

        records = fake_store.all()
        assert len(records) == 1
        assert records[0]["tier"] == "pro"
        assert records[0]["status"] == "active"

    @pytest.mark.asyncio
    async def test_carried_record_skips_lookup(self, make_reconciler, fake_store, repository, stripe_subscription):
        fake_store.seed("subscriptions", {"userId": "u1", "stripeCustomerId": "cus_123"})
        carried = await repository.get_by_provider_customer_id("cus_123")
        fake_store.calls.clear()

        await make_reconciler().reconcile(
            Resolution("u1", "customer_id", carried), stripe_subscription
        )

        assert fake_store.calls == [("update", "subscriptions")]

    @pytest.mark.asyncio
    async def test_read_failure_writes_nothing(self, make_reconciler, fake_store, user_id, stripe_subscription):
        fake_store.fail_on.add("list")

        with pytest.raises(ReconciliationFailedError) as exc_info:
            await make_reconciler().reconcile(Resolution(user_id, "metadata"), stripe_subscription)

        assert exc_info.value.details["user_id"] == user_id
        assert fake_store.calls == [("list", "subscriptions")]

    @pytest.mark.asyncio
    async def test_write_failure_surfaces(self, make_reconciler, fake_store, user_id, stripe_subscription):
        fake_store.fail_on.add("create")

        with pytest.raises(ReconciliationFailedError, match="Failed to create subscription"):
            await make_reconciler().reconcile(Resolution(user_id, "metadata"), stripe_subscription)

        assert fake_store.all() == []


class TestRollUsagePeriod:

    @pytest.mark.asyncio
    async def test_scenario_invoice_after_period_end(self, make_reconciler, fake_store, repository):
        fake_store.seed("subscriptions", {
            "userId": "u1", "tier": "free", "stripeCustomerId": "cus_1",
            "pmgFetchesUsed": 5, "aiExtractionsUsed": 3,
            "usagePeriodStart": "2024-12-01", "usagePeriodEnd": "2025-01-01",
        })
        carried = await repository.get_by_provider_customer_id("cus_1")

        await make_reconciler(clock_at(JAN_15)).roll_usage_period(
            Resolution("u1", "customer_id", carried), None
        )

        record = fake_store.all()[0]
        assert record["usagePeriodStart"] == "2025-01-15"
        assert record["usagePeriodEnd"] == "2025-02-15"
        assert record["pmgFetchesUsed"] == 0
        assert record["aiExtractionsUsed"] == 0

    @pytest.mark.asyncio
    async def test_inside_period_is_noop(self, make_reconciler, fake_store):
        fake_store.seed("subscriptions", {
            "userId": "u1", "pmgFetchesUsed": 5, "aiExtractionsUsed": 3,
            "usagePeriodStart": "2025-01-10", "usagePeriodEnd": "2025-02-10",
        })

        sub = await make_reconciler(clock_at(JAN_15)).roll_usage_period(
            Resolution("u1", "metadata"), datetime(2025, 3, 10, tzinfo=timezone.utc)
        )

        assert sub.pmg_fetches_used == 5
        assert ("update", "subscriptions") not in fake_store.calls
        assert fake_store.all()[0]["usagePeriodEnd"] == "2025-02-10"

    @pytest.mark.asyncio
    async def test_without_record_creates_nothing(self, make_reconciler, fake_store):
        result = await make_reconciler(clock_at(JAN_15)).roll_usage_period(
            Resolution("u1", "metadata"), None
        )

        assert result is None
        assert fake_store.all() == []

    @pytest.mark.asyncio
    async def test_period_start_is_monotonic(self, fake_store, repository):
        from numis_billing.infrastructure.services.subscription_reconciler import (
            SubscriptionReconciler,
        )

        fake_store.seed("subscriptions", {
            "userId": "u1", "pmgFetchesUsed": 1, "aiExtractionsUsed": 1,
            "usagePeriodStart": "2024-12-15", "usagePeriodEnd": "2025-01-15",
        })
        moments = [
            datetime(2025, 1, 10, tzinfo=timezone.utc),   # inside
            datetime(2025, 1, 16, tzinfo=timezone.utc),   # rolls to 02-16
            datetime(2025, 1, 20, tzinfo=timezone.utc),   # inside
            datetime(2025, 2, 16, 8, tzinfo=timezone.utc),  # rolls to 03-16
            datetime(2025, 2, 17, tzinfo=timezone.utc),   # inside
        ]
        expected_resets = [False, True, False, True, False]

        previous_start = "2024-12-15"
        for moment, should_reset in zip(moments, expected_resets):
            # Usage accumulates between renewal signals
            record_id = fake_store.all()[0]["id"]
            fake_store.records["subscriptions"][record_id]["pmgFetchesUsed"] += 1
            before = fake_store.all()[0]

            reconciler = SubscriptionReconciler(repository, "price_pro_test", clock=clock_at(moment))
            await reconciler.roll_usage_period(Resolution("u1", "metadata"), None)

            after = fake_store.all()[0]
            assert after["usagePeriodStart"] >= previous_start
            if should_reset:
                assert after["pmgFetchesUsed"] == 0
                assert after["usagePeriodStart"] == moment.date().isoformat()
            else:
                assert after["pmgFetchesUsed"] == before["pmgFetchesUsed"]
                assert after["usagePeriodEnd"] == before["usagePeriodEnd"]
            previous_start = after["usagePeriodStart"]

    @pytest.mark.asyncio
    async def test_update_failure_surfaces(self, make_reconciler, fake_store):
        fake_store.seed("subscriptions", {"userId": "u1", "usagePeriodEnd": "2025-01-01"})
        fake_store.fail_on.add("update")

        with pytest.raises(ReconciliationFailedError, match="reset usage period"):
            await make_reconciler(clock_at(JAN_15)).roll_usage_period(
                Resolution("u1", "metadata"), None
            )

    @pytest.mark.asyncio
    async def test_out_of_order_event_does_not_roll(self, make_reconciler, fake_store):
        fake_store.seed("subscriptions", {
            "userId": "u1", "status": "canceled", "lastEventCreated": 2000,
            "pmgFetchesUsed": 4, "usagePeriodEnd": "2025-01-01",
        })

        sub = await make_reconciler(clock_at(JAN_15)).roll_usage_period(
            Resolution("u1", "metadata"), None, event_created=1000
        )

        assert sub.pmg_fetches_used == 4
        assert ("update", "subscriptions") not in fake_store.calls
        assert fake_store.all()[0]["usagePeriodEnd"] == "2025-01-01"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_created", [2000, 3000])
    async def test_current_event_rolls(self, make_reconciler, fake_store, event_created):
        fake_store.seed("subscriptions", {
            "userId": "u1", "lastEventCreated": 2000,
            "pmgFetchesUsed": 4, "usagePeriodEnd": "2025-01-01",
        })

        await make_reconciler(clock_at(JAN_15)).roll_usage_period(
            Resolution("u1", "metadata"), None, event_created=event_created
        )

        record = fake_store.all()[0]
        assert record["pmgFetchesUsed"] == 0
        assert record["usagePeriodStart"] == "2025-01-15"
