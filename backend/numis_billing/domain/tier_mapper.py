"""
Tier Mapper

Pure translation from Stripe vocabulary to the application's tiers and
statuses. Price-to-tier logic lives only here; adding a paid tier means
extending tier_of, not the reconciler.
"""

from typing import Any, Optional

from numis_billing.domain.subscription import SubscriptionStatus, SubscriptionTier


_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "trialing": SubscriptionStatus.TRIALING,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE_EXPIRED,
}


def status_of(provider_status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status; unknown values default to active."""
    if not provider_status:
        return SubscriptionStatus.ACTIVE
    return _STATUS_MAP.get(provider_status, SubscriptionStatus.ACTIVE)


def tier_of(
    price_id: Optional[str],
    is_canceled: bool,
    pro_price_id: Optional[str],
) -> SubscriptionTier:
    """Map a Stripe price to a tier. Canceled subscriptions are always free."""
    if is_canceled:
        return SubscriptionTier.FREE
    if price_id and pro_price_id and price_id == pro_price_id:
        return SubscriptionTier.PRO
    return SubscriptionTier.FREE


def price_id_of(subscription: dict[str, Any]) -> Optional[str]:
    """Price of the first subscription item (legacy plan objects as fallback)."""
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        first = items[0]
        price = first.get("price") or first.get("plan") or {}
        return price.get("id")
    return (subscription.get("plan") or {}).get("id")
