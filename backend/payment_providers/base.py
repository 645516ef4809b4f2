"""
Payment Provider Base Classes

Abstract base class and data structures for payment providers.
All providers must implement this interface.

Adapters report expected failures (network errors, rejected requests,
unsupported operations) through PaymentResult and never raise for them.
The only exception an adapter raises is ProviderConfigError from
initialize() when its credentials are missing.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Generic, TypeVar


T = TypeVar("T")


class PaymentProviderType(str, Enum):
    """Supported payment provider types"""
    STRIPE = "stripe"               # Web checkout (card)
    REVENUECAT = "revenuecat"       # App store purchases (iOS/Android)
    MERCADOPAGO = "mercadopago"     # Latin America, no adapter yet
    PAGARME = "pagarme"             # Brazil, no adapter yet
    PAGSEGURO = "pagseguro"         # Brazil, no adapter yet


class SubscriptionState(str, Enum):
    """Provider-neutral subscription status"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    PENDING = "pending"
    TRIALING = "trialing"
    PAUSED = "paused"


class BillingInterval(str, Enum):
    """Billing periods used in plan ids"""
    MONTHLY = "monthly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"


class ErrorCode(str, Enum):
    """Stable failure codes carried by PaymentResult"""
    CUSTOMER_CREATION_FAILED = "CUSTOMER_CREATION_FAILED"
    CUSTOMER_FETCH_FAILED = "CUSTOMER_FETCH_FAILED"
    CHECKOUT_SESSION_FAILED = "CHECKOUT_SESSION_FAILED"
    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
    SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"
    SUBSCRIPTION_FETCH_FAILED = "SUBSCRIPTION_FETCH_FAILED"
    SUBSCRIPTION_CANCEL_FAILED = "SUBSCRIPTION_CANCEL_FAILED"
    SUBSCRIPTION_RESUME_FAILED = "SUBSCRIPTION_RESUME_FAILED"
    PORTAL_SESSION_FAILED = "PORTAL_SESSION_FAILED"
    PLANS_FETCH_FAILED = "PLANS_FETCH_FAILED"
    NOT_SUPPORTED_BY_PROVIDER = "NOT_SUPPORTED_BY_PROVIDER"


class ProviderConfigError(Exception):
    """Raised when provider configuration is invalid or missing"""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(message)


def make_plan_id(tier: str, interval: BillingInterval) -> str:
    """Build a plan id such as 'premium-monthly'"""
    return f"{tier}-{interval.value}"


def parse_plan_id(plan_id: str) -> Optional[tuple[str, BillingInterval]]:
    """
    Split a plan id into (tier, interval).

    Returns None for anything that is not '<tier>-<interval>'.
    """
    tier, _, interval = (plan_id or "").strip().lower().partition("-")
    if not tier or not interval:
        return None
    try:
        return tier, BillingInterval(interval)
    except ValueError:
        return None


@dataclass
class ProviderConfig:
    """Credentials and settings handed to a provider on registration"""
    api_key: Optional[str] = None
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    environment: str = "sandbox"
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CustomerProfile:
    """Internal user data sent when creating a remote customer"""
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentCustomer:
    """Customer as known by a provider"""
    provider_id: str
    provider: PaymentProviderType
    email: Optional[str] = None
    name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckoutParams:
    """Input for a hosted checkout session"""
    customer_id: str
    plan_id: str
    user_id: str
    success_url: str
    cancel_url: str
    currency: str = "USD"
    locale: Optional[str] = None
    market_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class CheckoutSession:
    """Hosted checkout session returned to the client"""
    session_id: str
    url: str
    provider: PaymentProviderType
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "url": self.url,
            "provider": self.provider.value,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class SubscriptionView:
    """Normalized, provider-neutral view of a subscription"""
    subscription_id: str
    customer_id: str
    provider: PaymentProviderType
    status: SubscriptionState
    plan_id: Optional[str] = None
    tier: Optional[str] = None
    currency: Optional[str] = None
    amount: Optional[int] = None           # minor units
    interval: Optional[BillingInterval] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    trial_end: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_active(self) -> bool:
        return self.status in (SubscriptionState.ACTIVE, SubscriptionState.TRIALING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscriptionId": self.subscription_id,
            "customerId": self.customer_id,
            "provider": self.provider.value,
            "status": self.status.value,
            "planId": self.plan_id,
            "tier": self.tier,
            "currency": self.currency,
            "amount": self.amount,
            "interval": self.interval.value if self.interval else None,
            "currentPeriodStart": self.current_period_start.isoformat() if self.current_period_start else None,
            "currentPeriodEnd": self.current_period_end.isoformat() if self.current_period_end else None,
            "cancelAtPeriodEnd": self.cancel_at_period_end,
            "trialEnd": self.trial_end.isoformat() if self.trial_end else None,
            "isActive": self.is_active(),
        }


@dataclass
class PaymentPlan:
    """A purchasable plan in a provider's catalog"""
    id: str                         # e.g. 'premium-monthly'
    provider: PaymentProviderType
    provider_plan_id: str           # Stripe price id, store product id, ...
    name: str
    tier: str
    currency: str
    amount: int                     # minor units
    interval: BillingInterval
    features: List[str] = field(default_factory=list)
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider.value,
            "name": self.name,
            "tier": self.tier,
            "currency": self.currency,
            "amount": self.amount,
            "interval": self.interval.value,
            "features": list(self.features),
        }


@dataclass
class PaymentResult(Generic[T]):
    """Tagged success/failure result of an adapter operation"""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "PaymentResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: ErrorCode) -> "PaymentResult[T]":
        return cls(success=False, error=error, code=code.value)


class PaymentProvider(ABC):
    """
    Abstract base class for payment providers.

    All payment providers must implement this interface to be usable
    by the subscription orchestrator.
    """

    def __init__(self):
        self.config: Optional[ProviderConfig] = None
        self._initialized = False

    @property
    @abstractmethod
    def provider_type(self) -> PaymentProviderType:
        """Return the provider type"""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable provider name"""
        pass

    @property
    def supported_currencies(self) -> List[str]:
        return []

    @property
    def supported_countries(self) -> List[str]:
        return []

    def initialize(self, config: ProviderConfig) -> None:
        """
        Validate and store credentials.

        Raises:
            ProviderConfigError: If required credentials are missing
        """
        self.validate_config(config)
        self.config = config
        self._initialized = True

    @abstractmethod
    def validate_config(self, config: ProviderConfig) -> None:
        """Raise ProviderConfigError if the config cannot be used"""
        pass

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Required operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_customer(self, profile: CustomerProfile) -> PaymentResult[PaymentCustomer]:
        """Create a remote customer for an internal user"""
        pass

    @abstractmethod
    async def create_checkout_session(self, params: CheckoutParams) -> PaymentResult[CheckoutSession]:
        """Create a hosted checkout session"""
        pass

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> PaymentResult[SubscriptionView]:
        """Fetch and normalize a subscription"""
        pass

    @abstractmethod
    async def cancel_subscription(
        self,
        subscription_id: str,
        immediate: bool = False
    ) -> PaymentResult[SubscriptionView]:
        """Cancel now, or at the end of the current period"""
        pass

    @abstractmethod
    async def get_plans(self, currency: Optional[str] = None) -> PaymentResult[List[PaymentPlan]]:
        """List active plans, optionally filtered by currency"""
        pass

    # ------------------------------------------------------------------
    # Optional operations
    # ------------------------------------------------------------------

    async def resume_subscription(self, subscription_id: str) -> PaymentResult[SubscriptionView]:
        """Undo a pending end-of-period cancellation"""
        return self._not_supported("resume_subscription")

    async def get_customer_portal_url(
        self,
        customer_id: str,
        return_url: str
    ) -> PaymentResult[str]:
        """Self-service billing portal for payment method changes"""
        return self._not_supported("get_customer_portal_url")

    def _not_supported(self, operation: str) -> PaymentResult:
        return PaymentResult.fail(
            f"{operation} is not supported by {self.display_name}",
            ErrorCode.NOT_SUPPORTED_BY_PROVIDER,
        )

    def get_status(self) -> Dict[str, Any]:
        """Get provider status information"""
        return {
            "type": self.provider_type.value,
            "name": self.display_name,
            "initialized": self._initialized,
            "environment": self.config.environment if self.config else None,
            "currencies": self.supported_currencies,
            "countries": self.supported_countries,
        }
