"""
RevenueCat Payment Provider

App store purchases (iOS App Store / Google Play) tracked by RevenueCat.

Purchases and cancellations happen inside the native store flows, so this
adapter only reads subscriber state. The RevenueCat app user id is the
internal user id, which makes customer creation a local operation.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from urllib.parse import quote

import httpx

from config import settings
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
)


REQUEST_TIMEOUT_SECONDS = 30.0
MAX_RETRIES = 3

# Store product id -> (tier, interval, amount in cents)
STORE_PRODUCTS = {
    "starter_monthly_usd": ("starter", BillingInterval.MONTHLY, 199),
    "starter_yearly_usd": ("starter", BillingInterval.ANNUAL, 1999),
    "premium_monthly_usd": ("premium", BillingInterval.MONTHLY, 299),
    "premium_yearly_usd": ("premium", BillingInterval.ANNUAL, 2999),
    "pro_monthly_usd": ("pro", BillingInterval.MONTHLY, 399),
    "pro_yearly_usd": ("pro", BillingInterval.ANNUAL, 3999),
}


class RevenueCatRequestError(Exception):
    """Raised internally when the REST API keeps failing after retries"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _product_info(product_id: str) -> Optional[tuple[str, BillingInterval, int]]:
    """Match exact store ids and legacy ids without the currency suffix"""
    if product_id in STORE_PRODUCTS:
        return STORE_PRODUCTS[product_id]
    return STORE_PRODUCTS.get(f"{product_id}_usd")


class RevenueCatProvider(PaymentProvider):
    """RevenueCat adapter (mobile app stores)"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, backoff_base: float = 1.0):
        super().__init__()
        self._transport = transport
        self._backoff_base = backoff_base

    @property
    def provider_type(self) -> PaymentProviderType:
        return PaymentProviderType.REVENUECAT

    @property
    def display_name(self) -> str:
        return "RevenueCat"

    @property
    def supported_currencies(self) -> List[str]:
        return ["USD"]

    @property
    def supported_countries(self) -> List[str]:
        return ["US"]

    def validate_config(self, config: ProviderConfig) -> None:
        if not config.api_key:
            raise ProviderConfigError(
                self.provider_type.value,
                "RevenueCat API key not configured (REVENUECAT_API_KEY)"
            )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.REVENUECAT_API_URL,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str) -> Dict[str, Any]:
        """
        Make a REST call, retrying rate limits, server errors and timeouts
        with exponential backoff.

        Raises:
            RevenueCatRequestError: When the call cannot be completed
        """
        last_error = ""
        async with self._client() as client:
            for attempt in range(MAX_RETRIES + 1):
                delay = self._backoff_base * (2 ** attempt)
                try:
                    response = await client.request(method, path)
                except httpx.TimeoutException:
                    last_error = f"RevenueCat request timed out after {REQUEST_TIMEOUT_SECONDS}s"
                except httpx.TransportError as e:
                    last_error = f"RevenueCat network error: {e}"
                else:
                    if response.status_code == 429:
                        retry_after = response.headers.get("Retry-After")
                        if retry_after and retry_after.isdigit():
                            delay = float(retry_after)
                        last_error = "RevenueCat rate limit exceeded"
                    elif response.status_code >= 500:
                        last_error = f"RevenueCat server error {response.status_code}"
                    elif response.status_code >= 400:
                        raise RevenueCatRequestError(
                            f"RevenueCat API error {response.status_code}: {response.text}",
                            response.status_code,
                        )
                    else:
                        return response.json()

                if attempt < MAX_RETRIES:
                    logger.warning(
                        f"{last_error}, retrying in {delay}s (attempt {attempt + 1}/{MAX_RETRIES})"
                    )
                    await asyncio.sleep(delay)

        raise RevenueCatRequestError(last_error)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_customer(self, profile: CustomerProfile) -> PaymentResult[PaymentCustomer]:
        # Subscribers are created by the SDK on first purchase
        return PaymentResult.ok(PaymentCustomer(
            provider_id=profile.user_id,
            provider=self.provider_type,
            email=profile.email,
            name=profile.name,
            metadata={"userId": profile.user_id},
        ))

    async def create_checkout_session(self, params: CheckoutParams) -> PaymentResult[CheckoutSession]:
        return PaymentResult.fail(
            "Checkout is handled by the native app store purchase flow",
            ErrorCode.NOT_SUPPORTED_BY_PROVIDER,
        )

    def _map_status(self, subscription: Dict[str, Any], now: datetime) -> SubscriptionState:
        expires = _parse_date(subscription.get("expires_date"))

        if subscription.get("billing_issues_detected_at"):
            return SubscriptionState.PAST_DUE
        if expires is None:
            # Lifetime purchases never expire
            return SubscriptionState.ACTIVE
        if expires <= now:
            return SubscriptionState.CANCELED
        if subscription.get("period_type") == "trial":
            return SubscriptionState.TRIALING
        return SubscriptionState.ACTIVE

    async def get_subscription(self, subscription_id: str) -> PaymentResult[SubscriptionView]:
        """
        Look up a subscriber. For RevenueCat the stored subscription id is the
        app user id; the active purchase (or the latest one) is returned.
        """
        try:
            data = await self._request("GET", f"/subscribers/{quote(subscription_id, safe='')}")
        except RevenueCatRequestError as e:
            return PaymentResult.fail(str(e), ErrorCode.SUBSCRIPTION_FETCH_FAILED)

        subscriber = data.get("subscriber") or {}
        subscriptions: Dict[str, Dict[str, Any]] = subscriber.get("subscriptions") or {}
        if not subscriptions:
            return PaymentResult.fail(
                "No subscriptions found for subscriber",
                ErrorCode.SUBSCRIPTION_NOT_FOUND,
            )

        now = datetime.now(timezone.utc)
        chosen_id: Optional[str] = None
        latest_id: Optional[str] = None
        latest_purchase: Optional[datetime] = None

        for product_id, sub in subscriptions.items():
            purchased = _parse_date(sub.get("purchase_date"))
            if latest_id is None or (purchased and (latest_purchase is None or purchased > latest_purchase)):
                latest_id, latest_purchase = product_id, purchased
            if chosen_id is None and self._map_status(sub, now) in (
                SubscriptionState.ACTIVE, SubscriptionState.TRIALING
            ):
                chosen_id = product_id

        product_id = chosen_id or latest_id
        sub = subscriptions[product_id]
        info = _product_info(product_id)
        tier, interval, amount = info if info else (None, None, None)

        return PaymentResult.ok(SubscriptionView(
            subscription_id=subscription_id,
            customer_id=subscriber.get("original_app_user_id") or subscription_id,
            provider=self.provider_type,
            status=self._map_status(sub, now),
            plan_id=make_plan_id(tier, interval) if tier else product_id,
            tier=tier,
            currency="USD",
            amount=amount,
            interval=interval,
            current_period_start=_parse_date(sub.get("purchase_date")),
            current_period_end=_parse_date(sub.get("expires_date")),
            cancel_at_period_end=bool(sub.get("unsubscribe_detected_at")),
            metadata={
                "store": sub.get("store"),
                "productId": product_id,
                "isSandbox": sub.get("is_sandbox"),
            },
        ))

    async def cancel_subscription(
        self,
        subscription_id: str,
        immediate: bool = False
    ) -> PaymentResult[SubscriptionView]:
        return PaymentResult.fail(
            "Store subscriptions must be cancelled from the App Store or Google Play settings",
            ErrorCode.NOT_SUPPORTED_BY_PROVIDER,
        )

    async def get_plans(self, currency: Optional[str] = None) -> PaymentResult[List[PaymentPlan]]:
        if currency and currency.upper() not in self.supported_currencies:
            return PaymentResult.ok([])

        plans = [
            PaymentPlan(
                id=make_plan_id(tier, interval),
                provider=self.provider_type,
                provider_plan_id=product_id,
                name=f"ScanMyScale {tier.title()}" + (" (Annual)" if interval == BillingInterval.ANNUAL else ""),
                tier=tier,
                currency="USD",
                amount=amount,
                interval=interval,
            )
            for product_id, (tier, interval, amount) in STORE_PRODUCTS.items()
        ]
        return PaymentResult.ok(plans)
