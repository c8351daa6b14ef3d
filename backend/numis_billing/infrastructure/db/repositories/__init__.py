"""
Repository Layer for NumisGallery Billing

Exports all repository classes for dependency injection.
"""

from numis_billing.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)


__all__ = [
    "SubscriptionRepository",
]
