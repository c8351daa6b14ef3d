"""
Record Store Infrastructure Package

Exports the record store client and repositories.
"""

from numis_billing.infrastructure.db.record_store import (
    RecordStoreClient,
    equals_filter,
)
from numis_billing.infrastructure.db.repositories import SubscriptionRepository


__all__ = [
    "RecordStoreClient",
    "equals_filter",
    "SubscriptionRepository",
]
