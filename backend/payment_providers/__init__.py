"""
Payment Providers Package

Provider-agnostic payment architecture:
- Stripe (web checkout, USD and BRL)
- RevenueCat (iOS App Store / Google Play, read-only)

Provider Selection:
- Each market names a default provider
- A user who already has a provider stays on it (sticky provider)
"""

from .base import (
    PaymentProvider,
    PaymentProviderType,
    ProviderConfig,
    ProviderConfigError,
    PaymentResult,
    ErrorCode,
    CustomerProfile,
    PaymentCustomer,
    CheckoutParams,
    CheckoutSession,
    SubscriptionView,
    SubscriptionState,
    PaymentPlan,
    BillingInterval,
    make_plan_id,
    parse_plan_id,
)
from .registry import (
    PaymentProviderRegistry,
    build_registry_from_settings,
    get_registry,
    get_provider_status,
)

__all__ = [
    # Base classes
    "PaymentProvider",
    "PaymentProviderType",
    "ProviderConfig",
    "ProviderConfigError",
    "PaymentResult",
    "ErrorCode",
    "CustomerProfile",
    "PaymentCustomer",
    "CheckoutParams",
    "CheckoutSession",
    "SubscriptionView",
    "SubscriptionState",
    "PaymentPlan",
    "BillingInterval",
    "make_plan_id",
    "parse_plan_id",
    # Registry
    "PaymentProviderRegistry",
    "build_registry_from_settings",
    "get_registry",
    "get_provider_status",
]
