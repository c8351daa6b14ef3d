"""
Test configuration and fixtures for the billing webhooks service.

Provides shared fixtures for unit and integration tests.
"""

import asyncio
import copy
import hashlib
import hmac
import os
import re
import time
from typing import Any, Callable, Optional

# Settings are read at import time; configure before the app is imported
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_PRO", "price_pro_test")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")
os.environ.setdefault("ADMIN_PASSWORD", "admin-password")

import pytest
from fastapi.testclient import TestClient

from numis_billing.infrastructure.exceptions import RecordStoreError


TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_PRO_PRICE = "price_pro_test"


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application (dependency overrides reset afterwards)."""
    from numis_billing.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)


# =============================================================================
# Record Store Fake
# =============================================================================

_FILTER_PATTERN = re.compile(r'^(\w+) = "((?:[^"\\]|\\.)*)"$')


class FakeRecordStore:
    """
    In-memory stand-in for the HTTP record store.

    Yields to the event loop around every call so concurrent reconciliations
    interleave the way they would against a real network store.
    """

    def __init__(self):
        self.records: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()
        self._next_id = 1

    def seed(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        record = {"id": self._new_id(), **fields}
        self.records.setdefault(collection, {})[record["id"]] = record
        return copy.deepcopy(record)

    def all(self, collection: str = "subscriptions") -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.records.get(collection, {}).values()]

    async def list(self, collection: str, filter: str) -> list[dict[str, Any]]:
        await self._enter("list", collection)
        match = _FILTER_PATTERN.match(filter)
        assert match, f"unsupported filter: {filter}"
        field = match.group(1)
        value = re.sub(r"\\(.)", r"\1", match.group(2))
        items = [
            copy.deepcopy(r)
            for r in self.records.get(collection, {}).values()
            if r.get(field) == value
        ]
        await asyncio.sleep(0)
        return items

    async def create(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        await self._enter("create", collection)
        return self.seed(collection, fields)

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        await self._enter("update", collection)
        record = self.records[collection][record_id]
        record.update(copy.deepcopy(fields))
        return copy.deepcopy(record)

    async def _enter(self, operation: str, collection: str) -> None:
        self.calls.append((operation, collection))
        await asyncio.sleep(0)
        if operation in self.fail_on:
            raise RecordStoreError(
                f"Record store {operation} failed",
                operation=operation,
                collection=collection,
                status_code=503,
            )

    def _new_id(self) -> str:
        record_id = f"rec{self._next_id:012d}"
        self._next_id += 1
        return record_id


@pytest.fixture
def fake_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def repository(fake_store):
    from numis_billing.infrastructure.db.repositories import SubscriptionRepository
    return SubscriptionRepository(fake_store)


@pytest.fixture
def make_reconciler(repository) -> Callable[..., Any]:
    """Build a reconciler with an injectable clock."""
    from numis_billing.infrastructure.services.subscription_reconciler import (
        SubscriptionReconciler,
    )

    def _make(clock: Optional[Callable] = None):
        if clock is None:
            return SubscriptionReconciler(repository, pro_price_id=TEST_PRO_PRICE)
        return SubscriptionReconciler(repository, pro_price_id=TEST_PRO_PRICE, clock=clock)

    return _make


# =============================================================================
# Stripe Helpers
# =============================================================================

@pytest.fixture
def sign_payload() -> Callable[..., str]:
    """Produce a Stripe-Signature header value for a raw payload."""

    def _sign(
        payload: bytes,
        secret: str = TEST_WEBHOOK_SECRET,
        timestamp: Optional[int] = None,
    ) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.".encode("utf-8") + payload
        digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign


# =============================================================================
# Sample Data Fixtures
# =============================================================================

USER_ID = "abc123def456ghi"


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
def stripe_subscription() -> dict[str, Any]:
    """A Stripe subscription object on the pro price."""
    return {
        "id": "sub_123",
        "object": "subscription",
        "customer": "cus_123",
        "status": "active",
        "cancel_at_period_end": False,
        "current_period_end": 1739613600,  # 2025-02-15T10:00:00Z
        "metadata": {"userId": USER_ID},
        "items": {
            "object": "list",
            "data": [{"id": "si_1", "price": {"id": TEST_PRO_PRICE}}],
        },
    }


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    def _make(event_type: str, data_object: dict[str, Any], created: int = 1736935200, event_id: str = "evt_1"):
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": created,
            "data": {"object": data_object},
        }

    return _make
