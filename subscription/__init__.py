"""
Subscription & Entitlement Engine

Decides what a user of the weight tracker may do and how they pay:
- Market resolution (US / Brazil) from the request context
- Sticky payment provider per user (Stripe on the web, RevenueCat in the apps)
- Customer, checkout, cancellation and plan operations through provider adapters
- Tier-based feature entitlements
- Free-tier weekly recording quota
- WhatsApp reminder trial / grant tracking

Architecture:
- Provider adapters live in backend.payment_providers and never raise for
  expected failures; they return PaymentResult
- The orchestrator turns adapter failures into typed SubscriptionError
  subclasses, which the API layer maps to HTTP status codes
- All persisted state goes through a UserRepository (memory or Firestore)
"""

from subscription.models import (
    SubscriptionTier,
    RecordingFrequency,
    WhatsAppStatus,
    FeatureAccess,
    TierDefinition,
    TIER_DEFINITIONS,
    UserSubscriptionRecord,
    WhatsAppState,
)
from subscription.errors import (
    SubscriptionError,
    ProviderUnavailable,
    ProviderCallFailed,
    CustomerCreationFailed,
    CheckoutCreationFailed,
    CancellationFailed,
    ResumeFailed,
    PortalSessionFailed,
    NoActiveSubscription,
    UserNotFound,
    InvalidPhoneNumber,
    ConcurrentUpdate,
)
from subscription.clock import Clock, FrozenClock, get_clock
from subscription.markets import (
    MarketDescriptor,
    MarketContext,
    resolve_market,
    get_market,
    get_default_market,
    get_market_by_domain,
    get_active_markets,
    format_price,
    is_feature_supported,
    get_user_defaults,
)
from subscription.repository import (
    UserRepository,
    InMemoryUserRepository,
    FirestoreUserRepository,
    get_user_repository,
)
from subscription.feature_gate import (
    FeatureGate,
    FeatureGateError,
    PAID_TIERS,
    can_access_feature,
    require_feature,
    get_user_tier,
    tier_in,
)
from subscription.usage_tracker import (
    UsageTracker,
    QuotaStatus,
    RecordingQuotaExceeded,
)
from subscription.whatsapp_access import (
    WhatsAppAccess,
    WhatsAppAccessTracker,
)
from subscription.provider_resolver import resolve_provider
from subscription.orchestrator import SubscriptionOrchestrator, get_orchestrator

__all__ = [
    # Models
    'SubscriptionTier',
    'RecordingFrequency',
    'WhatsAppStatus',
    'FeatureAccess',
    'TierDefinition',
    'TIER_DEFINITIONS',
    'UserSubscriptionRecord',
    'WhatsAppState',
    # Errors
    'SubscriptionError',
    'ProviderUnavailable',
    'ProviderCallFailed',
    'CustomerCreationFailed',
    'CheckoutCreationFailed',
    'CancellationFailed',
    'ResumeFailed',
    'PortalSessionFailed',
    'NoActiveSubscription',
    'UserNotFound',
    'InvalidPhoneNumber',
    'ConcurrentUpdate',
    # Clock
    'Clock',
    'FrozenClock',
    'get_clock',
    # Markets
    'MarketDescriptor',
    'MarketContext',
    'resolve_market',
    'get_market',
    'get_default_market',
    'get_market_by_domain',
    'get_active_markets',
    'format_price',
    'is_feature_supported',
    'get_user_defaults',
    # Storage
    'UserRepository',
    'InMemoryUserRepository',
    'FirestoreUserRepository',
    'get_user_repository',
    # Entitlements
    'FeatureGate',
    'FeatureGateError',
    'PAID_TIERS',
    'can_access_feature',
    'require_feature',
    'get_user_tier',
    'tier_in',
    # Usage quota
    'UsageTracker',
    'QuotaStatus',
    'RecordingQuotaExceeded',
    # WhatsApp
    'WhatsAppAccess',
    'WhatsAppAccessTracker',
    # Providers
    'resolve_provider',
    'SubscriptionOrchestrator',
    'get_orchestrator',
]
