"""
Subscription Errors

Typed failures raised by the subscription write paths.
Read paths never raise these; they log and return a safe default.
"""

from typing import Optional


class SubscriptionError(Exception):
    """Base class for subscription failures"""

    code = "SUBSCRIPTION_ERROR"
    status_code = 500

    def __init__(self, message: str, provider: Optional[str] = None, code: Optional[str] = None):
        self.message = message
        self.provider = provider
        if code:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "provider": self.provider,
        }


class ProviderUnavailable(SubscriptionError):
    """Provider is not registered, misconfigured, or did not answer in time"""
    code = "PROVIDER_UNAVAILABLE"
    status_code = 503


class ProviderCallFailed(SubscriptionError):
    """Provider answered with a failure (message is the provider's, verbatim)"""
    code = "PROVIDER_CALL_FAILED"
    status_code = 502


class CustomerCreationFailed(ProviderCallFailed):
    code = "CUSTOMER_CREATION_FAILED"


class CheckoutCreationFailed(ProviderCallFailed):
    code = "CHECKOUT_SESSION_FAILED"


class CancellationFailed(ProviderCallFailed):
    code = "SUBSCRIPTION_CANCEL_FAILED"


class ResumeFailed(ProviderCallFailed):
    code = "SUBSCRIPTION_RESUME_FAILED"


class PortalSessionFailed(ProviderCallFailed):
    code = "PORTAL_SESSION_FAILED"


class NoActiveSubscription(SubscriptionError):
    """Operation needs a recorded subscription and the user has none"""
    code = "NO_ACTIVE_SUBSCRIPTION"
    status_code = 400


class UserNotFound(SubscriptionError):
    code = "USER_NOT_FOUND"
    status_code = 404


class InvalidPhoneNumber(SubscriptionError):
    code = "INVALID_PHONE_NUMBER"
    status_code = 400


class ConcurrentUpdate(SubscriptionError):
    """A conditional write kept losing to concurrent writers"""
    code = "CONCURRENT_UPDATE"
    status_code = 409
