#!/usr/bin/env python3
"""
Stripe Provider Tests

Tests for the Stripe adapter with the SDK patched out:
- Configuration validation
- Customer creation idempotency key
- Checkout session parameters and price lookup
- Subscription normalization and cancellation
- Plan catalog from environment price ids
"""

import pytest
import os
import sys
from unittest.mock import patch

import stripe

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.payment_providers.base import (
    ProviderConfig,
    ProviderConfigError,
    CustomerProfile,
    CheckoutParams,
    SubscriptionState,
    BillingInterval,
)
from backend.payment_providers.stripe_provider import (
    StripeProvider,
    get_price_env_key,
    get_price_id,
    find_plan_for_price,
    customer_idempotency_key,
)


PERIOD_START = 1772452800   # 2026-03-02T12:00:00Z
PERIOD_END = 1775131200     # 2026-04-02T12:00:00Z


@pytest.fixture
def provider():
    provider = StripeProvider()
    provider.initialize(ProviderConfig(secret_key="sk_test_123"))
    return provider


@pytest.fixture
def price_env(monkeypatch):
    """Configure a few Stripe price ids"""
    monkeypatch.setenv("STRIPE_PRICE_PREMIUM", "price_premium_usd")
    monkeypatch.setenv("STRIPE_PRICE_PREMIUM_ANUAL", "price_premium_usd_year")
    monkeypatch.setenv("STRIPE_PRICE_PREMIUM_BRL", "price_premium_brl")
    monkeypatch.setenv("STRIPE_PRICE_STARTER", "price_starter_usd")
    monkeypatch.setenv("STRIPE_PRICE_PRO", "")


def sdk_object(resource, values: dict):
    """Build a response the way the SDK does (StripeObjects are not dicts)"""
    return resource.construct_from(values, "sk_test_123")


def make_subscription(status="active", cancel_at_period_end=False, **overrides):
    subscription = {
        "id": "sub_123",
        "customer": "cus_123",
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "trial_end": None,
        "metadata": {"userId": "user_1", "tier": "premium", "planId": "premium-monthly"},
        "items": {"data": [{
            "price": {
                "id": "price_premium_usd",
                "currency": "usd",
                "unit_amount": 299,
                "recurring": {"interval": "month", "interval_count": 1},
            },
        }]},
    }
    subscription.update(overrides)
    return subscription


def subscription_object(**kwargs):
    return sdk_object(stripe.Subscription, make_subscription(**kwargs))


class TestPriceLookup:
    """Tests for the env-based price map"""

    def test_env_keys(self):
        """Key layout matches the deployed environment names"""
        assert get_price_env_key("premium", BillingInterval.MONTHLY, "USD") == "STRIPE_PRICE_PREMIUM"
        assert get_price_env_key("pro", BillingInterval.ANNUAL, "USD") == "STRIPE_PRICE_PRO_ANUAL"
        assert get_price_env_key("starter", BillingInterval.SEMIANNUAL, "BRL") == "STRIPE_PRICE_STARTER_BRL_SEMESTR"

    def test_get_price_id(self, price_env):
        assert get_price_id("premium-monthly", "USD") == "price_premium_usd"
        assert get_price_id("premium-monthly", "BRL") == "price_premium_brl"
        assert get_price_id("premium-annual", "USD") == "price_premium_usd_year"

    def test_unknown_or_unconfigured(self, price_env):
        """Bad plan ids, free tier and empty env values resolve to None"""
        assert get_price_id("premium", "USD") is None
        assert get_price_id("free-monthly", "USD") is None
        assert get_price_id("pro-monthly", "USD") is None

    def test_reverse_lookup(self, price_env):
        assert find_plan_for_price("price_premium_brl") == ("premium", BillingInterval.MONTHLY, "BRL")
        assert find_plan_for_price("price_unknown") is None


class TestStripeConfig:
    """Tests for initialize()"""

    def test_missing_secret_key(self):
        with pytest.raises(ProviderConfigError) as exc_info:
            StripeProvider().initialize(ProviderConfig())
        assert exc_info.value.provider == "stripe"

    def test_initialized(self, provider):
        assert provider.is_initialized
        assert provider.get_status()["initialized"] is True


class TestStripeCustomers:
    """Tests for create_customer"""

    async def test_create_customer(self, provider):
        """Customer is created with the per-user idempotency key"""
        with patch("stripe.Customer.create", return_value=sdk_object(stripe.Customer, {
            "id": "cus_new", "email": "ana@example.com", "name": "Ana", "metadata": {"userId": "user_1"},
        })) as create:
            result = await provider.create_customer(CustomerProfile(
                user_id="user_1", email="ana@example.com", name="Ana", metadata={"marketId": "us"},
            ))

        assert result.success
        assert result.data.provider_id == "cus_new"
        assert result.data.email == "ana@example.com"
        assert result.data.metadata == {"userId": "user_1"}
        kwargs = create.call_args.kwargs
        assert kwargs["idempotency_key"].startswith("customer-create-user_1-")
        assert kwargs["api_key"] == "sk_test_123"
        assert kwargs["metadata"] == {"userId": "user_1", "marketId": "us"}

    async def test_create_customer_error(self, provider):
        """SDK errors become failed results"""
        with patch("stripe.Customer.create", side_effect=stripe.InvalidRequestError("Invalid email", "email")):
            result = await provider.create_customer(CustomerProfile(user_id="user_1", email="bad"))

        assert not result.success
        assert result.code == "CUSTOMER_CREATION_FAILED"
        assert "Invalid email" in result.error

    def test_idempotency_key_follows_profile(self):
        """Repeated creations share a key; an edited profile gets a new one"""
        profile = CustomerProfile(user_id="user_1", email="ana@example.com", name="Ana")

        assert customer_idempotency_key(profile) == customer_idempotency_key(
            CustomerProfile(user_id="user_1", email="ana@example.com", name="Ana")
        )
        assert customer_idempotency_key(profile) != customer_idempotency_key(
            CustomerProfile(user_id="user_1", email="ana.silva@example.com", name="Ana")
        )
        assert customer_idempotency_key(profile) != customer_idempotency_key(
            CustomerProfile(user_id="user_2", email="ana@example.com", name="Ana")
        )


class TestStripeCheckout:
    """Tests for create_checkout_session"""

    async def test_checkout_session(self, provider, price_env):
        """Session is a subscription checkout tagged for reconciliation"""
        with patch("stripe.checkout.Session.create", return_value=sdk_object(stripe.checkout.Session, {
            "id": "cs_123", "url": "https://checkout.stripe.com/c/cs_123", "expires_at": PERIOD_END,
        })) as create:
            result = await provider.create_checkout_session(CheckoutParams(
                customer_id="cus_123",
                plan_id="premium-monthly",
                user_id="user_1",
                success_url="https://scanmyscale.com/subscription-success",
                cancel_url="https://scanmyscale.com/subscription-cancel",
                currency="USD",
                locale="en-US",
                market_id="us",
            ))

        assert result.success
        assert result.data.url == "https://checkout.stripe.com/c/cs_123"

        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["customer"] == "cus_123"
        assert kwargs["line_items"] == [{"price": "price_premium_usd", "quantity": 1}]
        assert kwargs["success_url"].endswith("?session_id={CHECKOUT_SESSION_ID}")
        assert kwargs["metadata"]["userId"] == "user_1"
        assert kwargs["metadata"]["marketId"] == "us"
        assert kwargs["subscription_data"]["metadata"]["tier"] == "premium"
        assert kwargs["locale"] == "en"

    async def test_brazil_checkout(self, provider, price_env):
        """BRL checkout picks the BRL price and keeps the pt-BR locale"""
        with patch("stripe.checkout.Session.create", return_value=sdk_object(stripe.checkout.Session, {"id": "cs_br", "url": "https://x"})) as create:
            await provider.create_checkout_session(CheckoutParams(
                customer_id="cus_123",
                plan_id="premium-monthly",
                user_id="user_1",
                success_url="https://fotopeso.com.br/ok?from=app",
                cancel_url="https://fotopeso.com.br/no",
                currency="BRL",
                locale="pt-BR",
            ))

        kwargs = create.call_args.kwargs
        assert kwargs["line_items"][0]["price"] == "price_premium_brl"
        assert kwargs["locale"] == "pt-BR"
        assert kwargs["success_url"] == "https://fotopeso.com.br/ok?from=app&session_id={CHECKOUT_SESSION_ID}"

    async def test_unconfigured_plan(self, provider, price_env):
        """No SDK call is made for a plan without a price"""
        with patch("stripe.checkout.Session.create") as create:
            result = await provider.create_checkout_session(CheckoutParams(
                customer_id="cus_123", plan_id="pro-monthly", user_id="user_1",
                success_url="https://a", cancel_url="https://b",
            ))

        assert not result.success
        assert result.code == "PLAN_NOT_FOUND"
        create.assert_not_called()


class TestStripeSubscriptions:
    """Tests for subscription reads and cancellation"""

    async def test_get_subscription(self, provider, price_env):
        with patch("stripe.Subscription.retrieve", return_value=subscription_object()):
            result = await provider.get_subscription("sub_123")

        view = result.data
        assert view.status == SubscriptionState.ACTIVE
        assert view.customer_id == "cus_123"
        assert view.plan_id == "premium-monthly"
        assert view.tier == "premium"
        assert view.currency == "USD"
        assert view.amount == 299
        assert view.interval == BillingInterval.MONTHLY
        assert view.current_period_end.year == 2026

    @pytest.mark.parametrize("stripe_status,expected", [
        ("incomplete", SubscriptionState.PENDING),
        ("incomplete_expired", SubscriptionState.PENDING),
        ("unpaid", SubscriptionState.PAST_DUE),
        ("canceled", SubscriptionState.CANCELED),
        ("something_new", SubscriptionState.INACTIVE),
    ])
    async def test_status_mapping(self, provider, stripe_status, expected):
        with patch("stripe.Subscription.retrieve", return_value=subscription_object(status=stripe_status)):
            result = await provider.get_subscription("sub_123")
        assert result.data.status == expected

    async def test_plan_from_price_when_metadata_missing(self, provider, price_env):
        """Older subscriptions without metadata are matched by price id"""
        with patch("stripe.Subscription.retrieve", return_value=subscription_object(metadata={})):
            result = await provider.get_subscription("sub_123")
        assert result.data.plan_id == "premium-monthly"
        assert result.data.tier == "premium"

    async def test_period_on_items(self, provider):
        """Billing period is read from the item on newer API versions"""
        subscription = make_subscription(current_period_start=None, current_period_end=None)
        subscription["items"]["data"][0]["current_period_end"] = PERIOD_END

        with patch("stripe.Subscription.retrieve", return_value=sdk_object(stripe.Subscription, subscription)):
            result = await provider.get_subscription("sub_123")
        assert result.data.current_period_end is not None

    async def test_lookup_failure(self, provider):
        with patch("stripe.Subscription.retrieve", side_effect=stripe.InvalidRequestError("No such subscription", "id")):
            result = await provider.get_subscription("sub_missing")
        assert not result.success
        assert result.code == "SUBSCRIPTION_FETCH_FAILED"

    async def test_cancel_at_period_end(self, provider):
        with patch("stripe.Subscription.modify", return_value=subscription_object(cancel_at_period_end=True)) as modify:
            result = await provider.cancel_subscription("sub_123")

        modify.assert_called_once_with("sub_123", api_key="sk_test_123", cancel_at_period_end=True)
        assert result.data.cancel_at_period_end is True

    async def test_cancel_immediately(self, provider):
        with patch("stripe.Subscription.cancel", return_value=subscription_object(status="canceled")) as cancel:
            result = await provider.cancel_subscription("sub_123", immediate=True)

        cancel.assert_called_once()
        assert result.data.status == SubscriptionState.CANCELED

    async def test_cancel_error_is_verbatim(self, provider):
        with patch("stripe.Subscription.cancel", side_effect=stripe.InvalidRequestError("Subscription already canceled", None)):
            result = await provider.cancel_subscription("sub_123", immediate=True)
        assert not result.success
        assert "Subscription already canceled" in result.error

    async def test_resume(self, provider):
        with patch("stripe.Subscription.modify", return_value=subscription_object()) as modify:
            result = await provider.resume_subscription("sub_123")
        assert modify.call_args.kwargs["cancel_at_period_end"] is False
        assert result.data.cancel_at_period_end is False

    async def test_portal(self, provider):
        with patch("stripe.billing_portal.Session.create", return_value=sdk_object(stripe.billing_portal.Session, {"url": "https://billing.stripe.com/p/1"})):
            result = await provider.get_customer_portal_url("cus_123", "https://scanmyscale.com/settings")
        assert result.data == "https://billing.stripe.com/p/1"


class TestStripePlans:
    """Tests for get_plans"""

    async def test_plans_from_env(self, provider, price_env):
        """Configured, active prices become plans; inactive ones are dropped"""
        prices = {
            "price_premium_usd": {
                "id": "price_premium_usd", "currency": "usd", "unit_amount": 299, "active": True,
                "product": {"id": "prod_1", "name": "ScanMyScale Premium", "active": True},
            },
            "price_premium_usd_year": {
                "id": "price_premium_usd_year", "currency": "usd", "unit_amount": 2999, "active": False,
                "product": {"id": "prod_1", "name": "ScanMyScale Premium", "active": True},
            },
            "price_starter_usd": {
                "id": "price_starter_usd", "currency": "usd", "unit_amount": 199, "active": True,
                "product": "prod_2",
            },
        }

        def retrieve(price_id, **kwargs):
            return sdk_object(stripe.Price, prices[price_id])

        with patch("stripe.Price.retrieve", side_effect=retrieve):
            result = await provider.get_plans(currency="USD")

        plans = {plan.id: plan for plan in result.data}
        assert set(plans) == {"premium-monthly", "starter-monthly"}
        assert plans["premium-monthly"].amount == 299
        assert plans["premium-monthly"].name == "ScanMyScale Premium"
        assert plans["starter-monthly"].name == "ScanMyScale Starter"
        assert plans["starter-monthly"].features

    async def test_failed_price_is_skipped(self, provider, price_env):
        """One failing price does not fail the catalog"""
        def retrieve(price_id, **kwargs):
            if price_id == "price_starter_usd":
                raise stripe.APIConnectionError("network down")
            return sdk_object(stripe.Price, {
                "id": price_id, "currency": "usd", "unit_amount": 299, "active": True, "product": "prod_1",
            })

        with patch("stripe.Price.retrieve", side_effect=retrieve):
            result = await provider.get_plans(currency="USD")

        assert result.success
        assert "starter-monthly" not in {plan.id for plan in result.data}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
