"""
Stripe Payment Provider

Hosted web checkout through the Stripe SDK.

The SDK is synchronous, so every call is pushed to a worker thread.
The API key is passed per call instead of being set on the module, which
keeps several configured instances (tests, sandbox/production) independent.

Price catalog comes from environment variables:
    STRIPE_PRICE_<TIER>                  monthly, USD
    STRIPE_PRICE_<TIER>_SEMESTR          semiannual, USD
    STRIPE_PRICE_<TIER>_ANUAL            annual, USD
    STRIPE_PRICE_<TIER>_BRL[...]         same intervals, BRL
"""

import asyncio
import hashlib
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

import stripe

from config import get_env_price_id
from utils.logger import logger

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


STRIPE_STATUS_MAP = {
    "active": SubscriptionState.ACTIVE,
    "trialing": SubscriptionState.TRIALING,
    "past_due": SubscriptionState.PAST_DUE,
    "unpaid": SubscriptionState.PAST_DUE,
    "canceled": SubscriptionState.CANCELED,
    "incomplete": SubscriptionState.PENDING,
    "incomplete_expired": SubscriptionState.PENDING,
    "paused": SubscriptionState.PAUSED,
}

INTERVAL_ENV_SUFFIX = {
    BillingInterval.MONTHLY: "",
    BillingInterval.SEMIANNUAL: "_SEMESTR",
    BillingInterval.ANNUAL: "_ANUAL",
}

CURRENCY_ENV_SUFFIX = {
    "USD": "",
    "BRL": "_BRL",
}

PLAN_NAMES = {
    "USD": "ScanMyScale",
    "BRL": "FotoPeso",
}

PLAN_FEATURES = {
    "starter": [
        "Unlimited weight scans",
        "Social sharing",
        "WhatsApp reminders",
    ],
    "premium": [
        "Everything in Starter",
        "Progress photos",
        "Goal tracking",
        "Delete last reading",
    ],
    "pro": [
        "Everything in Premium",
        "Advanced analytics",
        "Priority support",
    ],
}

PAID_TIERS = ("starter", "premium", "pro")


def get_price_env_key(tier: str, interval: BillingInterval, currency: str) -> str:
    """Environment variable holding the Stripe price id for a plan"""
    return (
        f"STRIPE_PRICE_{tier.upper()}"
        f"{CURRENCY_ENV_SUFFIX.get(currency.upper(), '_' + currency.upper())}"
        f"{INTERVAL_ENV_SUFFIX[interval]}"
    )


def get_price_id(plan_id: str, currency: str) -> Optional[str]:
    """Resolve a plan id like 'premium-monthly' to a configured Stripe price id"""
    parsed = parse_plan_id(plan_id)
    if parsed is None:
        return None
    tier, interval = parsed
    if tier not in PAID_TIERS:
        return None
    return get_env_price_id(get_price_env_key(tier, interval, currency))


def find_plan_for_price(price_id: str) -> Optional[tuple[str, BillingInterval, str]]:
    """Reverse lookup: (tier, interval, currency) for a configured price id"""
    for currency in CURRENCY_ENV_SUFFIX:
        for tier in PAID_TIERS:
            for interval in BillingInterval:
                if get_env_price_id(get_price_env_key(tier, interval, currency)) == price_id:
                    return tier, interval, currency
    return None


def as_plain_dict(obj: Any) -> Dict[str, Any]:
    """SDK responses are StripeObjects, which are not dicts on current SDK versions"""
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def customer_idempotency_key(profile: CustomerProfile) -> str:
    """
    Idempotency key for customer creation.

    Stable for a user and the profile fields sent, so concurrent or retried
    creations collapse into one customer while an edited profile is not
    rejected as a mismatched replay.
    """
    fingerprint = "|".join(str(value or "") for value in (profile.email, profile.name, profile.phone))
    digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:16]
    return f"customer-create-{profile.user_id}-{digest}"


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _interval_from_recurring(recurring: Optional[Dict[str, Any]]) -> Optional[BillingInterval]:
    if not recurring:
        return None
    interval = recurring.get("interval")
    count = recurring.get("interval_count") or 1
    if interval == "year":
        return BillingInterval.ANNUAL
    if interval == "month" and count == 6:
        return BillingInterval.SEMIANNUAL
    if interval == "month":
        return BillingInterval.MONTHLY
    return None


class StripeProvider(PaymentProvider):
    """Stripe adapter (web checkout)"""

    @property
    def provider_type(self) -> PaymentProviderType:
        return PaymentProviderType.STRIPE

    @property
    def display_name(self) -> str:
        return "Stripe"

    @property
    def supported_currencies(self) -> List[str]:
        return list(CURRENCY_ENV_SUFFIX)

    @property
    def supported_countries(self) -> List[str]:
        return ["US", "BR"]

    def validate_config(self, config: ProviderConfig) -> None:
        if not config.secret_key:
            raise ProviderConfigError(
                self.provider_type.value,
                "Stripe secret key not configured (STRIPE_SECRET_KEY)"
            )

    @property
    def _api_key(self) -> Optional[str]:
        return self.config.secret_key if self.config else None

    async def _call(self, func, *args, **kwargs) -> Dict[str, Any]:
        """Run a blocking SDK call in a worker thread and return plain data"""
        response = await asyncio.to_thread(func, *args, api_key=self._api_key, **kwargs)
        return as_plain_dict(response)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(self, profile: CustomerProfile) -> PaymentResult[PaymentCustomer]:
        metadata = {"userId": profile.user_id, **profile.metadata}
        try:
            # Same key for every attempt with this profile, so Stripe replays the
            # first creation instead of making a second customer.
            customer = await self._call(
                stripe.Customer.create,
                email=profile.email,
                name=profile.name,
                phone=profile.phone,
                metadata=metadata,
                idempotency_key=customer_idempotency_key(profile),
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for user {profile.user_id}: {e}")
            return PaymentResult.fail(str(e), ErrorCode.CUSTOMER_CREATION_FAILED)

        return PaymentResult.ok(PaymentCustomer(
            provider_id=customer["id"],
            provider=self.provider_type,
            email=customer.get("email"),
            name=customer.get("name"),
            metadata=dict(customer.get("metadata") or {}),
        ))

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_checkout_session(self, params: CheckoutParams) -> PaymentResult[CheckoutSession]:
        price_id = get_price_id(params.plan_id, params.currency)
        if price_id is None:
            return PaymentResult.fail(
                f"No Stripe price configured for plan '{params.plan_id}' in {params.currency}",
                ErrorCode.PLAN_NOT_FOUND,
            )

        parsed = parse_plan_id(params.plan_id)
        tier = parsed[0] if parsed else ""
        metadata = {
            "userId": params.user_id,
            "planId": params.plan_id,
            "tier": tier,
            **({"marketId": params.market_id} if params.market_id else {}),
            **params.metadata,
        }

        separator = "&" if "?" in params.success_url else "?"
        success_url = f"{params.success_url}{separator}session_id={{CHECKOUT_SESSION_ID}}"

        request: Dict[str, Any] = {
            "mode": "subscription",
            "customer": params.customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": params.cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "allow_promotion_codes": True,
        }
        if params.locale:
            # Stripe accepts short locales ("pt-BR" is valid, "en-US" is not)
            request["locale"] = params.locale if params.locale == "pt-BR" else params.locale.split("-")[0]

        try:
            session = await self._call(stripe.checkout.Session.create, **request)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout failed for plan {params.plan_id}: {e}")
            return PaymentResult.fail(str(e), ErrorCode.CHECKOUT_SESSION_FAILED)

        return PaymentResult.ok(CheckoutSession(
            session_id=session["id"],
            url=session["url"],
            provider=self.provider_type,
            expires_at=_from_timestamp(session.get("expires_at")),
            metadata=metadata,
        ))

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def _to_view(self, subscription: Dict[str, Any]) -> SubscriptionView:
        """Normalize a Stripe subscription object"""
        items = (subscription.get("items") or {}).get("data") or []
        item = items[0] if items else {}
        price = item.get("price") or {}
        price_id = price.get("id")

        metadata = dict(subscription.get("metadata") or {})
        tier = metadata.get("tier") or (price.get("metadata") or {}).get("tier")
        interval = _interval_from_recurring(price.get("recurring"))
        currency = (price.get("currency") or "").upper() or None

        plan_id = metadata.get("planId")
        if price_id and (not tier or not plan_id):
            match = find_plan_for_price(price_id)
            if match:
                tier = tier or match[0]
                plan_id = plan_id or make_plan_id(match[0], match[1])
        if not plan_id and tier and interval:
            plan_id = make_plan_id(tier, interval)

        customer = subscription.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer

        # Newer API versions moved the billing period onto the items
        period_start = subscription.get("current_period_start") or item.get("current_period_start")
        period_end = subscription.get("current_period_end") or item.get("current_period_end")

        return SubscriptionView(
            subscription_id=subscription["id"],
            customer_id=customer_id or "",
            provider=self.provider_type,
            status=STRIPE_STATUS_MAP.get(subscription.get("status"), SubscriptionState.INACTIVE),
            plan_id=plan_id,
            tier=tier,
            currency=currency,
            amount=price.get("unit_amount"),
            interval=interval,
            current_period_start=_from_timestamp(period_start),
            current_period_end=_from_timestamp(period_end),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            trial_end=_from_timestamp(subscription.get("trial_end")),
            metadata={"priceId": price_id, **metadata},
        )

    async def get_subscription(self, subscription_id: str) -> PaymentResult[SubscriptionView]:
        try:
            subscription = await self._call(stripe.Subscription.retrieve, subscription_id)
        except stripe.StripeError as e:
            logger.warning(f"Stripe subscription lookup failed for {subscription_id}: {e}")
            return PaymentResult.fail(str(e), ErrorCode.SUBSCRIPTION_FETCH_FAILED)

        return PaymentResult.ok(self._to_view(subscription))

    async def cancel_subscription(
        self,
        subscription_id: str,
        immediate: bool = False
    ) -> PaymentResult[SubscriptionView]:
        try:
            if immediate:
                subscription = await self._call(stripe.Subscription.cancel, subscription_id)
            else:
                subscription = await self._call(
                    stripe.Subscription.modify,
                    subscription_id,
                    cancel_at_period_end=True,
                )
        except stripe.StripeError as e:
            logger.error(f"Stripe cancellation failed for {subscription_id}: {e}")
            return PaymentResult.fail(str(e), ErrorCode.SUBSCRIPTION_CANCEL_FAILED)

        return PaymentResult.ok(self._to_view(subscription))

    async def resume_subscription(self, subscription_id: str) -> PaymentResult[SubscriptionView]:
        try:
            subscription = await self._call(
                stripe.Subscription.modify,
                subscription_id,
                cancel_at_period_end=False,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe resume failed for {subscription_id}: {e}")
            return PaymentResult.fail(str(e), ErrorCode.SUBSCRIPTION_RESUME_FAILED)

        return PaymentResult.ok(self._to_view(subscription))

    async def get_customer_portal_url(self, customer_id: str, return_url: str) -> PaymentResult[str]:
        try:
            session = await self._call(
                stripe.billing_portal.Session.create,
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe portal session failed for customer {customer_id}: {e}")
            return PaymentResult.fail(str(e), ErrorCode.PORTAL_SESSION_FAILED)

        return PaymentResult.ok(session["url"])

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def _fetch_plan(
        self,
        tier: str,
        interval: BillingInterval,
        currency: str,
    ) -> Optional[PaymentPlan]:
        env_key = get_price_env_key(tier, interval, currency)
        price_id = get_env_price_id(env_key)
        if not price_id:
            logger.debug(f"Stripe price not configured: {env_key}")
            return None

        try:
            price = await self._call(stripe.Price.retrieve, price_id, expand=["product"])
        except stripe.StripeError as e:
            logger.warning(f"Failed to fetch Stripe price {env_key}: {e}")
            return None

        product = price.get("product") or {}
        if not isinstance(product, dict):
            product = {"id": product, "active": True}

        actual_currency = (price.get("currency") or currency).upper()
        if actual_currency != currency:
            logger.warning(
                f"Currency mismatch for {env_key}: expected {currency}, got {actual_currency}"
            )

        return PaymentPlan(
            id=make_plan_id(tier, interval),
            provider=self.provider_type,
            provider_plan_id=price_id,
            name=product.get("name") or f"{PLAN_NAMES.get(currency, 'Plan')} {tier.title()}",
            tier=tier,
            currency=actual_currency,
            amount=price.get("unit_amount") or 0,
            interval=interval,
            features=list(PLAN_FEATURES.get(tier, [])),
            active=bool(price.get("active", True)) and bool(product.get("active", True)),
        )

    async def get_plans(self, currency: Optional[str] = None) -> PaymentResult[List[PaymentPlan]]:
        currencies = [currency.upper()] if currency else list(CURRENCY_ENV_SUFFIX)

        # Individual price failures drop that plan only
        results = await asyncio.gather(*[
            self._fetch_plan(tier, interval, cur)
            for cur in currencies
            for tier in PAID_TIERS
            for interval in BillingInterval
        ])

        plans = [plan for plan in results if plan is not None and plan.active]
        logger.debug(f"Fetched {len(plans)} active Stripe plans")
        return PaymentResult.ok(plans)
