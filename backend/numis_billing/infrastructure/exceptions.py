"""
Custom Exceptions for NumisGallery Billing

Hierarchical exception classes for proper error handling across layers.

Verification errors reject a webhook before any state change, resolution
errors are acknowledged and never retried, and record store failures are the
only class that asks Stripe to redeliver.
"""

from typing import Optional, Dict, Any


class NumisBillingError(Exception):
    """Base exception for all billing service errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


# =============================================================================
# Authentication boundary (webhook verification)
# =============================================================================

class WebhookVerificationError(NumisBillingError):
    """Raised when an inbound event cannot be trusted."""
    pass


class MissingSignatureHeaderError(WebhookVerificationError):
    """Raised when the Stripe-Signature header is absent."""

    def __init__(self, message: str = "Missing stripe-signature header"):
        super().__init__(message)


class SignatureInvalidError(WebhookVerificationError):
    """Raised when the signature does not match the raw payload."""
    pass


class ConfigurationError(NumisBillingError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


class SecretNotConfiguredError(ConfigurationError):
    """Raised when the webhook signing secret was never provisioned."""

    def __init__(self, message: str = "Webhook secret not configured"):
        super().__init__(message, missing_keys=["STRIPE_WEBHOOK_SECRET"])


# =============================================================================
# Subscriber resolution
# =============================================================================

class ResolutionError(NumisBillingError):
    """Raised when an event cannot be mapped to an internal user."""
    pass


class UnresolvedSubscriberError(ResolutionError):
    """Raised when no strategy yields a user for the event."""

    def __init__(
        self,
        message: str = "Could not resolve subscriber for event",
        customer_id: Optional[str] = None,
    ):
        details = {}
        if customer_id:
            details["customer_id"] = customer_id
        super().__init__(message, details)


class InvalidIdentifierFormatError(ResolutionError):
    """Raised when an explicit user identifier has the wrong shape."""

    def __init__(self, value: str):
        super().__init__(
            "Invalid user ID format",
            details={"value": value[:64]},
        )


# =============================================================================
# Record store
# =============================================================================

class RecordStoreError(NumisBillingError):
    """Raised when a record store request fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        collection: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if collection:
            details["collection"] = collection
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details, original_error)


class RecordStoreTimeoutError(RecordStoreError):
    """Raised when a record store request exceeds the configured timeout."""
    pass


class ReconciliationFailedError(NumisBillingError):
    """Raised when a subscription could not be read or written."""

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if user_id:
            details["user_id"] = user_id
        if isinstance(original_error, RecordStoreTimeoutError):
            details["retryable"] = True
        super().__init__(message, details, original_error)


# =============================================================================
# Caller input and payment provider
# =============================================================================

class ValidationError(NumisBillingError):
    """Raised when input validation fails."""
    pass


class MissingRequiredFieldError(ValidationError):
    """Raised when a session request lacks required fields."""

    def __init__(self, fields: list[str]):
        super().__init__(
            f"Missing required fields: {', '.join(fields)}",
            details={"missing_fields": fields},
        )


class PaymentProviderError(NumisBillingError):
    """Raised when a Stripe API call fails."""
    pass


class PaymentProviderUnavailableError(PaymentProviderError):
    """Raised when Stripe could not be reached in time."""
    pass
