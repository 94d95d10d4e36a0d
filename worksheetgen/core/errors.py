"""
Error taxonomy for the entitlement engine.

Business outcomes (limit reached, nothing to cancel) are returned as typed
results and never raised. Everything here is an infrastructure or boundary
failure that propagates to the request boundary, where it is logged in full
and mapped to a generic client message.
"""
from typing import Optional
from fastapi import status


class EntitlementError(Exception):
    """Base error with the HTTP status and client-safe message used at the boundary."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Internal server error"

    def __init__(self, message: str, public_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if public_message:
            self.public_message = public_message


class RetryableError(EntitlementError):
    """Transient failure; safe to retry with backoff."""


class InvalidCredential(EntitlementError):
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Invalid token"


class StoreUnavailable(RetryableError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    public_message = "Service temporarily unavailable"


class GatewaySignatureInvalid(EntitlementError):
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Webhook signature verification failed"


class GatewayCommandFailed(EntitlementError):
    """A command sent to the payment provider failed; local state still proceeds."""

    public_message = "Payment provider error"


class GatewayUnavailable(RetryableError):
    """Network or rate-limit failure talking to the payment provider."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    public_message = "Payment provider temporarily unavailable"


class GatewayNotConfigured(EntitlementError):
    public_message = "Payment configuration not available"
