#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests:
- A frozen clock pinned to a fixed instant
- An in-memory user repository with free and paid users
- A fake payment provider adapter with controllable latency and failures
"""

import pytest
import asyncio
import sys
import os
from datetime import datetime, timezone, timedelta
from typing import Optional, List, Dict, Set

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.payment_providers.base import (
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
    parse_plan_id,
)
from backend.payment_providers.registry import PaymentProviderRegistry
from subscription.clock import FrozenClock
from subscription.models import SubscriptionTier, UserSubscriptionRecord
from subscription.orchestrator import SubscriptionOrchestrator
from subscription.repository import InMemoryUserRepository


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


# ============================================================================
# TIME
# ============================================================================

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Clock frozen at NOW (UTC)"""
    return FrozenClock(NOW)


# ============================================================================
# FAKE PAYMENT PROVIDER
# ============================================================================

class FakePaymentProvider(PaymentProvider):
    """
    In-memory adapter used by orchestrator and API tests.

    - delay: seconds every call sleeps before answering
    - hang: operation names that never answer (for timeout tests)
    - failures: operation name -> error message returned as a failure
    - on_create_customer: hook run while create_customer is in flight
    """

    def __init__(self, provider_type: PaymentProviderType = PaymentProviderType.STRIPE, delay: float = 0.0):
        super().__init__()
        self._type = provider_type
        self.delay = delay
        self.hang: Set[str] = set()
        self.failures: Dict[str, str] = {}
        self.on_create_customer = None

        self.create_customer_calls: List[CustomerProfile] = []
        self.checkout_calls: List[CheckoutParams] = []
        self.cancel_calls: List[tuple] = []
        self.subscriptions: Dict[str, SubscriptionView] = {}

    @property
    def provider_type(self) -> PaymentProviderType:
        return self._type

    @property
    def display_name(self) -> str:
        return f"Fake {self._type.value}"

    @property
    def supported_currencies(self) -> List[str]:
        return ["USD", "BRL"]

    def validate_config(self, config: ProviderConfig) -> None:
        if not config.secret_key:
            raise ProviderConfigError(self._type.value, "Fake provider requires secret_key")

    async def _enter(self, operation: str) -> Optional[PaymentResult]:
        if operation in self.hang:
            await asyncio.sleep(3600)
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.failures:
            return PaymentResult.fail(self.failures[operation], ErrorCode.SUBSCRIPTION_FETCH_FAILED)
        return None

    async def create_customer(self, profile: CustomerProfile) -> PaymentResult[PaymentCustomer]:
        self.create_customer_calls.append(profile)
        if self.on_create_customer is not None:
            self.on_create_customer(profile)
        failure = await self._enter("create_customer")
        if failure:
            return PaymentResult.fail(failure.error, ErrorCode.CUSTOMER_CREATION_FAILED)
        customer_id = f"cus_{len(self.create_customer_calls)}"
        return PaymentResult.ok(PaymentCustomer(
            provider_id=customer_id,
            provider=self._type,
            email=profile.email,
            name=profile.name,
        ))

    async def create_checkout_session(self, params: CheckoutParams) -> PaymentResult[CheckoutSession]:
        self.checkout_calls.append(params)
        failure = await self._enter("create_checkout_session")
        if failure:
            return PaymentResult.fail(failure.error, ErrorCode.CHECKOUT_SESSION_FAILED)
        if parse_plan_id(params.plan_id) is None:
            return PaymentResult.fail(f"Unknown plan: {params.plan_id}", ErrorCode.PLAN_NOT_FOUND)
        session_id = f"cs_test_{len(self.checkout_calls)}"
        return PaymentResult.ok(CheckoutSession(
            session_id=session_id,
            url=f"https://checkout.example.com/{session_id}",
            provider=self._type,
        ))

    async def get_subscription(self, subscription_id: str) -> PaymentResult[SubscriptionView]:
        failure = await self._enter("get_subscription")
        if failure:
            return failure
        view = self.subscriptions.get(subscription_id)
        if view is None:
            return PaymentResult.fail("No such subscription", ErrorCode.SUBSCRIPTION_NOT_FOUND)
        return PaymentResult.ok(view)

    async def cancel_subscription(self, subscription_id: str, immediate: bool = False) -> PaymentResult[SubscriptionView]:
        self.cancel_calls.append((subscription_id, immediate))
        failure = await self._enter("cancel_subscription")
        if failure:
            return PaymentResult.fail(failure.error, ErrorCode.SUBSCRIPTION_CANCEL_FAILED)
        view = self.subscriptions.get(subscription_id)
        if view is None:
            return PaymentResult.fail("No such subscription", ErrorCode.SUBSCRIPTION_NOT_FOUND)
        if immediate:
            view.status = SubscriptionState.CANCELED
        else:
            view.cancel_at_period_end = True
        return PaymentResult.ok(view)

    async def resume_subscription(self, subscription_id: str) -> PaymentResult[SubscriptionView]:
        failure = await self._enter("resume_subscription")
        if failure:
            return PaymentResult.fail(failure.error, ErrorCode.SUBSCRIPTION_RESUME_FAILED)
        view = self.subscriptions[subscription_id]
        view.cancel_at_period_end = False
        return PaymentResult.ok(view)

    async def get_customer_portal_url(self, customer_id: str, return_url: str) -> PaymentResult[str]:
        failure = await self._enter("get_customer_portal_url")
        if failure:
            return PaymentResult.fail(failure.error, ErrorCode.PORTAL_SESSION_FAILED)
        return PaymentResult.ok(f"https://billing.example.com/{customer_id}")

    async def get_plans(self, currency: Optional[str] = None) -> PaymentResult[List[PaymentPlan]]:
        failure = await self._enter("get_plans")
        if failure:
            return PaymentResult.fail(failure.error, ErrorCode.PLANS_FETCH_FAILED)
        plans = [
            PaymentPlan("pro-monthly", self._type, "price_pro", "Pro", "pro", "USD", 399, BillingInterval.MONTHLY),
            PaymentPlan("starter-monthly", self._type, "price_starter", "Starter", "starter", "USD", 199, BillingInterval.MONTHLY),
            PaymentPlan("premium-monthly", self._type, "price_premium", "Premium", "premium", "USD", 299, BillingInterval.MONTHLY),
            PaymentPlan("premium-monthly", self._type, "price_premium_brl", "Premium", "premium", "BRL", 1490, BillingInterval.MONTHLY),
        ]
        return PaymentResult.ok(plans)

    def add_subscription(self, subscription_id: str, customer_id: str, tier: str = "premium") -> SubscriptionView:
        view = SubscriptionView(
            subscription_id=subscription_id,
            customer_id=customer_id,
            provider=self._type,
            status=SubscriptionState.ACTIVE,
            plan_id=f"{tier}-monthly",
            tier=tier,
            currency="USD",
            amount=299,
            interval=BillingInterval.MONTHLY,
            current_period_start=NOW - timedelta(days=10),
            current_period_end=NOW + timedelta(days=20),
        )
        self.subscriptions[subscription_id] = view
        return view


@pytest.fixture
def fake_stripe():
    return FakePaymentProvider(PaymentProviderType.STRIPE)


@pytest.fixture
def fake_revenuecat():
    return FakePaymentProvider(PaymentProviderType.REVENUECAT)


@pytest.fixture
def registry(fake_stripe, fake_revenuecat):
    """Registry with both fake adapters configured"""
    registry = PaymentProviderRegistry()
    registry.register(fake_stripe, ProviderConfig(secret_key="sk_test_fake"))
    registry.register(fake_revenuecat, ProviderConfig(secret_key="rc_test_fake"))
    return registry


# ============================================================================
# USERS
# ============================================================================

@pytest.fixture
def repository():
    return InMemoryUserRepository()


@pytest.fixture
def free_user(repository):
    """New user: free tier, no provider fields"""
    return repository.save_user(UserSubscriptionRecord(
        user_id="user_free",
        email="ana@example.com",
        first_name="Ana",
        last_name="Silva",
        locale="en-US",
    ))


@pytest.fixture
def premium_user(repository, fake_stripe):
    """Paying Stripe user with an active premium subscription"""
    fake_stripe.add_subscription("sub_premium", "cus_premium")
    return repository.save_user(UserSubscriptionRecord(
        user_id="user_premium",
        email="bob@example.com",
        subscription_tier=SubscriptionTier.PREMIUM.value,
        payment_provider=PaymentProviderType.STRIPE,
        provider_customer_id="cus_premium",
        provider_subscription_id="sub_premium",
    ))


@pytest.fixture
def orchestrator(repository, registry):
    return SubscriptionOrchestrator(repository, registry, timeout_seconds=0.5)


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require network)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (may take several seconds)"
    )
