"""
Billing Event Domain Models

Typed view over a verified Stripe event plus the payload accessors the
reconciler relies on. Stripe payload shapes differ between API versions, so
every lookup that has moved between versions lives here.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional
from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Stripe event types the reconciler acts on."""
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class BillingEvent(BaseModel):
    """A verified provider event."""
    id: str = ""
    type: str
    created: Optional[int] = None
    data_object: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BillingEvent":
        """Build from the decoded JSON body of a verified webhook."""
        data = payload.get("data") or {}
        return cls(
            id=payload.get("id") or "",
            type=payload.get("type") or "",
            created=payload.get("created"),
            data_object=data.get("object") or {},
        )

    @property
    def event_type(self) -> Optional[EventType]:
        try:
            return EventType(self.type)
        except ValueError:
            return None


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe Unix timestamp to an aware UTC datetime."""
    if not timestamp:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def _first_item(obj: dict[str, Any], key: str) -> dict[str, Any]:
    items = (obj.get(key) or {}).get("data") or []
    return items[0] if items else {}


def customer_id_of(obj: dict[str, Any]) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer or None


def subscription_id_of_invoice(invoice: dict[str, Any]) -> Optional[str]:
    """Subscription an invoice belongs to (top level or under parent)."""
    subscription = invoice.get("subscription")
    if not subscription:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription or None


def subscription_period_end(subscription: dict[str, Any]) -> Optional[datetime]:
    """current_period_end on the subscription, else on its first item."""
    period_end = subscription.get("current_period_end")
    if not period_end:
        period_end = _first_item(subscription, "items").get("current_period_end")
    return from_unix(period_end)


def invoice_period_end(invoice: dict[str, Any]) -> Optional[datetime]:
    """Billing period end an invoice pays for, if it carries one."""
    period_end = invoice.get("current_period_end")
    if not period_end:
        period_end = (_first_item(invoice, "lines").get("period") or {}).get("end")
    return from_unix(period_end)


def metadata_candidates(obj: dict[str, Any]) -> Iterator[dict[str, Any]]:
    """Non-empty metadata dicts that may carry the internal user id, most specific first."""
    parent = obj.get("parent") or {}
    for holder in (obj, obj.get("subscription_details"), parent.get("subscription_details")):
        metadata = (holder or {}).get("metadata")
        if metadata:
            yield metadata
