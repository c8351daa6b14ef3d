"""
Subscription Domain Models

Domain models for subscription management following Clean Architecture.
Enums, DTOs, and domain entities for the subscription bounded context.

Record store field names are camelCase; the entity exposes snake_case
attributes and maps them through aliases.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator


class SubscriptionTier(str, Enum):
    """Subscription tier levels."""
    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


class SubscriptionField:
    """Record store field names for the subscriptions collection."""
    USER_ID = "userId"
    TIER = "tier"
    STATUS = "status"
    PROVIDER_SUBSCRIPTION_ID = "stripeSubscriptionId"
    PROVIDER_CUSTOMER_ID = "stripeCustomerId"
    CURRENT_PERIOD_END = "currentPeriodEnd"
    CANCEL_AT_PERIOD_END = "cancelAtPeriodEnd"
    PMG_FETCHES_USED = "pmgFetchesUsed"
    AI_EXTRACTIONS_USED = "aiExtractionsUsed"
    USAGE_PERIOD_START = "usagePeriodStart"
    USAGE_PERIOD_END = "usagePeriodEnd"
    LAST_EVENT_CREATED = "lastEventCreated"


def format_store_date(value: date) -> str:
    """Date-only representation used for usage period bounds."""
    return value.isoformat()


def format_store_timestamp(value: Optional[datetime]) -> Optional[str]:
    """UTC timestamp with millisecond precision, e.g. 2025-02-15T10:00:00.000Z."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


# =============================================================================
# Domain Entities
# =============================================================================

class Subscription(BaseModel):
    """Core subscription domain entity (one per user)."""
    id: Optional[str] = None
    user_id: str = Field(alias=SubscriptionField.USER_ID)
    tier: SubscriptionTier = SubscriptionTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    provider_subscription_id: Optional[str] = Field(
        default=None, alias=SubscriptionField.PROVIDER_SUBSCRIPTION_ID
    )
    provider_customer_id: Optional[str] = Field(
        default=None, alias=SubscriptionField.PROVIDER_CUSTOMER_ID
    )
    current_period_end: Optional[datetime] = Field(
        default=None, alias=SubscriptionField.CURRENT_PERIOD_END
    )
    cancel_at_period_end: bool = Field(
        default=False, alias=SubscriptionField.CANCEL_AT_PERIOD_END
    )
    pmg_fetches_used: int = Field(
        default=0, ge=0, alias=SubscriptionField.PMG_FETCHES_USED
    )
    ai_extractions_used: int = Field(
        default=0, ge=0, alias=SubscriptionField.AI_EXTRACTIONS_USED
    )
    usage_period_start: Optional[date] = Field(
        default=None, alias=SubscriptionField.USAGE_PERIOD_START
    )
    usage_period_end: Optional[date] = Field(
        default=None, alias=SubscriptionField.USAGE_PERIOD_END
    )
    last_event_created: Optional[int] = Field(
        default=None, alias=SubscriptionField.LAST_EVENT_CREATED
    )

    class Config:
        populate_by_name = True
        from_attributes = True

    @field_validator(
        "provider_subscription_id",
        "provider_customer_id",
        "current_period_end",
        "last_event_created",
        mode="before",
    )
    @classmethod
    def _empty_as_none(cls, value: Any) -> Any:
        # PocketBase returns "" (or 0 for numbers) for unset optional fields
        if value == "" or value == 0:
            return None
        if isinstance(value, str) and " " in value:
            return value.replace(" ", "T", 1)
        return value

    @field_validator("pmg_fetches_used", "ai_extractions_used", mode="before")
    @classmethod
    def _null_counter_as_zero(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    @field_validator("usage_period_start", "usage_period_end", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        if isinstance(value, str):
            return value[:10]
        if isinstance(value, datetime):
            return value.date()
        return value

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Subscription":
        """Build the entity from a raw record store item."""
        return cls.model_validate(record)


# =============================================================================
# Request/Response DTOs
# =============================================================================

class CreateCheckoutRequest(BaseModel):
    """Request DTO for creating a checkout session.

    Every field is optional at the schema level so that missing values are
    reported together as a MissingRequiredFieldError instead of a 422.
    """
    price_id: Optional[str] = Field(default=None, alias="priceId")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    user_id: Optional[str] = Field(default=None, alias="userId")
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")

    class Config:
        populate_by_name = True


class PortalSessionRequest(BaseModel):
    """Request DTO for creating a billing portal session."""
    customer_id: Optional[str] = Field(default=None, alias="customerId")
    return_url: Optional[str] = Field(default=None, alias="returnUrl")

    class Config:
        populate_by_name = True


class CheckoutResponse(BaseModel):
    """Response DTO for checkout session creation."""
    session_url: str = Field(alias="sessionUrl")

    class Config:
        populate_by_name = True


class PortalResponse(BaseModel):
    """Response DTO for portal session creation."""
    url: str


class WebhookAck(BaseModel):
    """Acknowledgement returned to Stripe."""
    received: bool = True
