"""
Subscriber Resolver

Maps a Stripe billing object to the internal user it belongs to.

Resolution is an explicit ordered list of strategies; the first one that
returns a Resolution wins:
1. MetadataUserIdStrategy - user id echoed back in metadata
2. CustomerIdLookupStrategy - stored record with the same Stripe customer
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from numis_billing.domain.events import customer_id_of, metadata_candidates
from numis_billing.domain.subscription import Subscription
from numis_billing.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from numis_billing.infrastructure.exceptions import (
    InvalidIdentifierFormatError,
    UnresolvedSubscriberError,
)


logger = logging.getLogger(__name__)

# Record store ids are 15 lowercase alphanumerics
USER_ID_PATTERN = re.compile(r"^[a-z0-9]{15}$", re.IGNORECASE)

USER_ID_METADATA_KEY = "userId"


def is_valid_user_id(value: Any) -> bool:
    return isinstance(value, str) and bool(USER_ID_PATTERN.match(value))


@dataclass(frozen=True)
class Resolution:
    """A resolved subscriber.

    subscription is set when the strategy already loaded the user's record,
    letting the reconciler skip a second lookup.
    """
    user_id: str
    source: str
    subscription: Optional[Subscription] = None


class ResolutionStrategy(Protocol):
    """One way of finding the internal user for a billing object."""

    name: str

    async def resolve(self, payload: dict[str, Any]) -> Optional[Resolution]:
        ...


class MetadataUserIdStrategy:
    """Use the user id the checkout flow attached to the subscription."""

    name = "metadata"

    async def resolve(self, payload: dict[str, Any]) -> Optional[Resolution]:
        for metadata in metadata_candidates(payload):
            value = metadata.get(USER_ID_METADATA_KEY)
            if value:
                return self._validated(value)

        reference = payload.get("client_reference_id")
        if reference:
            return self._validated(reference)

        return None

    def _validated(self, value: Any) -> Resolution:
        if not is_valid_user_id(value):
            raise InvalidIdentifierFormatError(str(value))
        return Resolution(user_id=value, source=self.name)


class CustomerIdLookupStrategy:
    """Adopt the user of a stored subscription with the same Stripe customer."""

    name = "customer_id"

    def __init__(self, repository: SubscriptionRepository):
        self._repository = repository

    async def resolve(self, payload: dict[str, Any]) -> Optional[Resolution]:
        customer_id = customer_id_of(payload)
        if not customer_id:
            return None

        subscription = await self._repository.get_by_provider_customer_id(customer_id)
        if subscription is None:
            return None

        return Resolution(
            user_id=subscription.user_id,
            source=self.name,
            subscription=subscription,
        )


class SubscriberResolver:
    """Runs resolution strategies in order and returns the first match."""

    def __init__(self, strategies: Sequence[ResolutionStrategy]):
        self._strategies = list(strategies)

    async def resolve(self, payload: dict[str, Any]) -> Resolution:
        """
        Resolve the internal user for a billing object.

        Raises:
            InvalidIdentifierFormatError: metadata carries a malformed user id
            UnresolvedSubscriberError: no strategy produced a user
        """
        for strategy in self._strategies:
            resolution = await strategy.resolve(payload)
            if resolution is not None:
                logger.debug(
                    f"Resolved user {resolution.user_id} via {strategy.name}"
                )
                return resolution

        raise UnresolvedSubscriberError(customer_id=customer_id_of(payload))


def default_resolver(repository: SubscriptionRepository) -> SubscriberResolver:
    return SubscriberResolver([
        MetadataUserIdStrategy(),
        CustomerIdLookupStrategy(repository),
    ])
