"""
Subscription Orchestrator

Coordinates the user record, the provider registry and the provider
adapters for customer, checkout, subscription and plan operations.

Write paths (customer, checkout, cancel, resume, portal) raise typed
SubscriptionError subclasses. Read paths (subscription details) log and
return None.

Customer creation runs inside a per-user asyncio lock and re-reads the
record before creating anything. The repository write is itself
conditional, so a binding made by another process is adopted rather
than overwritten.
"""

import asyncio
import weakref
from typing import Optional, List, Awaitable, TypeVar, Type

from backend.payment_providers.base import (
    PaymentProvider,
    PaymentProviderType,
    PaymentResult,
    CustomerProfile,
    CheckoutParams,
    CheckoutSession,
    SubscriptionView,
    SubscriptionState,
    PaymentPlan,
)
from backend.payment_providers.registry import PaymentProviderRegistry, get_registry
from config import settings
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
)
from subscription.markets import MarketDescriptor
from subscription.provider_resolver import resolve_provider, get_adapter
from subscription.repository import UserRepository
from utils.logger import logger


T = TypeVar("T")

# Customer-creation locks, shared by every orchestrator in the process
# (the HTTP layer builds one orchestrator per request)
_customer_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


class SubscriptionOrchestrator:
    """Subscription operations for one deployment (registry + user store)"""

    def __init__(
        self,
        repository: UserRepository,
        registry: Optional[PaymentProviderRegistry] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.repository = repository
        self.registry = registry or get_registry()
        self.timeout_seconds = timeout_seconds or settings.PROVIDER_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        """Per-user lock; dropped automatically once nobody holds it"""
        lock = _customer_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            _customer_locks[user_id] = lock
        return lock

    async def _call(
        self,
        call: Awaitable[PaymentResult[T]],
        operation: str,
        provider_type: PaymentProviderType,
        timeout_error: Type[SubscriptionError] = ProviderUnavailable,
    ) -> PaymentResult[T]:
        """Await an adapter call with the configured timeout"""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"{provider_type.value}.{operation} timed out after {self.timeout_seconds}s")
            raise timeout_error(
                f"Payment provider did not respond within {self.timeout_seconds:g}s",
                provider=provider_type.value,
            )

    def _adapter(self, provider_type: PaymentProviderType) -> PaymentProvider:
        return get_adapter(self.registry, provider_type)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def get_or_create_customer(self, user_id: str, market: MarketDescriptor) -> str:
        """
        Return the user's provider customer id, creating it on first use.

        Raises:
            UserNotFound: If the user does not exist
            ProviderUnavailable: If the provider is not configured or timed out
            CustomerCreationFailed: If the provider rejected the creation
        """
        record = self.repository.require_user(user_id)
        if record.provider_customer_id:
            return record.provider_customer_id

        async with self._user_lock(user_id):
            # Another request may have finished while we waited for the lock
            record = self.repository.require_user(user_id)
            if record.provider_customer_id:
                return record.provider_customer_id

            provider_type = resolve_provider(record, market)
            adapter = self._adapter(provider_type)

            profile = CustomerProfile(
                user_id=user_id,
                email=record.email,
                name=record.display_name,
                metadata={"marketId": market.id, "locale": market.locale},
            )
            result = await self._call(adapter.create_customer(profile), "create_customer", provider_type)
            if not result.success:
                raise CustomerCreationFailed(
                    result.error or "Customer creation failed",
                    provider=provider_type.value,
                    code=result.code,
                )

            customer_id = result.data.provider_id
            link = self.repository.link_provider_customer(user_id, provider_type, customer_id)

            if link.linked:
                logger.info(f"Linked {provider_type.value} customer {customer_id} to user {user_id}")
                return customer_id

            if link.record.provider_customer_id:
                # First writer won in another process; use its customer
                logger.warning(
                    f"User {user_id} already had customer {link.record.provider_customer_id}; "
                    f"adopting it instead of {customer_id}"
                )
                return link.record.provider_customer_id

            raise CustomerCreationFailed(
                f"User is bound to provider {link.record.payment_provider.value}",
                provider=provider_type.value,
            )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_checkout_session(
        self,
        user_id: str,
        market: MarketDescriptor,
        plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """
        Start a hosted checkout for a plan. Never retried automatically.

        Raises:
            ProviderUnavailable: If the provider is not configured
            CheckoutCreationFailed: If the customer or session could not be created
        """
        try:
            customer_id = await self.get_or_create_customer(user_id, market)
        except CustomerCreationFailed as e:
            raise CheckoutCreationFailed(e.message, provider=e.provider, code=e.code) from e

        record = self.repository.require_user(user_id)
        provider_type = resolve_provider(record, market)
        adapter = self._adapter(provider_type)

        params = CheckoutParams(
            customer_id=customer_id,
            plan_id=plan_id,
            user_id=user_id,
            success_url=success_url,
            cancel_url=cancel_url,
            currency=market.currency,
            locale=market.locale,
            market_id=market.id,
        )
        result = await self._call(
            adapter.create_checkout_session(params),
            "create_checkout_session",
            provider_type,
            timeout_error=CheckoutCreationFailed,
        )
        if not result.success:
            logger.error(f"Checkout failed for user {user_id}, plan {plan_id}: [{result.code}] {result.error}")
            raise CheckoutCreationFailed(
                result.error or "Checkout session could not be created",
                provider=provider_type.value,
                code=result.code,
            )

        logger.info(f"Checkout session {result.data.session_id} created for user {user_id} ({plan_id}, {market.id})")
        return result.data

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def get_subscription_details(
        self,
        user_id: str,
        market: MarketDescriptor,
    ) -> Optional[SubscriptionView]:
        """Current subscription, or None if there is none or it cannot be read"""
        try:
            record = self.repository.get_user(user_id)
            if record is None or not record.provider_subscription_id:
                return None

            provider_type = resolve_provider(record, market)
            adapter = self._adapter(provider_type)
            result = await self._call(
                adapter.get_subscription(record.provider_subscription_id),
                "get_subscription",
                provider_type,
            )
        except SubscriptionError as e:
            logger.warning(f"Subscription lookup for user {user_id} degraded: {e.message}")
            return None

        if not result.success:
            logger.warning(f"Subscription lookup for user {user_id} failed: [{result.code}] {result.error}")
            return None

        return result.data

    def _require_subscription(self, user_id: str) -> tuple:
        record = self.repository.require_user(user_id)
        if not record.provider_subscription_id:
            raise NoActiveSubscription("No active subscription. Choose a plan to subscribe.")
        return record, record.provider_subscription_id

    async def cancel_subscription(
        self,
        user_id: str,
        market: MarketDescriptor,
        immediate: bool = False,
    ) -> SubscriptionView:
        """
        Cancel now or at period end.

        An immediate cancellation confirmed by the provider also clears the
        stored subscription id, so later reads report no subscription.

        Raises:
            NoActiveSubscription: If no subscription id is recorded
            ProviderUnavailable: If the provider is not configured or timed out
            CancellationFailed: With the provider's error message
        """
        record, subscription_id = self._require_subscription(user_id)
        provider_type = resolve_provider(record, market)
        adapter = self._adapter(provider_type)

        result = await self._call(
            adapter.cancel_subscription(subscription_id, immediate=immediate),
            "cancel_subscription",
            provider_type,
        )
        if not result.success:
            logger.error(f"Cancellation failed for user {user_id}: [{result.code}] {result.error}")
            raise CancellationFailed(
                result.error or "Cancellation failed",
                provider=provider_type.value,
                code=result.code,
            )

        view = result.data
        if view.status == SubscriptionState.CANCELED:
            self.repository.clear_subscription_id(user_id, subscription_id)

        logger.info(
            f"Subscription {subscription_id} for user {user_id} cancelled "
            f"({'immediately' if immediate else 'at period end'})"
        )
        return view

    async def resume_subscription(self, user_id: str, market: MarketDescriptor) -> SubscriptionView:
        """
        Undo a pending end-of-period cancellation.

        Raises:
            NoActiveSubscription: If no subscription id is recorded
            ResumeFailed: With the provider's error message
        """
        record, subscription_id = self._require_subscription(user_id)
        provider_type = resolve_provider(record, market)
        adapter = self._adapter(provider_type)

        result = await self._call(
            adapter.resume_subscription(subscription_id),
            "resume_subscription",
            provider_type,
        )
        if not result.success:
            raise ResumeFailed(
                result.error or "Resume failed",
                provider=provider_type.value,
                code=result.code,
            )

        logger.info(f"Subscription {subscription_id} for user {user_id} resumed")
        return result.data

    async def create_portal_session(
        self,
        user_id: str,
        market: MarketDescriptor,
        return_url: str,
    ) -> str:
        """
        Billing portal URL for managing payment methods.

        Raises:
            NoActiveSubscription: If the user has no billing account yet
            PortalSessionFailed: With the provider's error message
        """
        record = self.repository.require_user(user_id)
        if not record.provider_customer_id:
            raise NoActiveSubscription("No billing account yet. Subscribe to a plan first.")

        provider_type = resolve_provider(record, market)
        adapter = self._adapter(provider_type)

        result = await self._call(
            adapter.get_customer_portal_url(record.provider_customer_id, return_url),
            "get_customer_portal_url",
            provider_type,
        )
        if not result.success:
            raise PortalSessionFailed(
                result.error or "Billing portal unavailable",
                provider=provider_type.value,
                code=result.code,
            )
        return result.data

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def list_plans(self, market: MarketDescriptor) -> List[PaymentPlan]:
        """
        Plan catalog of the market's provider, in the market currency.

        Raises:
            ProviderUnavailable: If the market's provider is not configured or timed out
            ProviderCallFailed: If the provider reported a failure
        """
        provider_type = market.default_provider
        adapter = self._adapter(provider_type)

        result = await self._call(
            adapter.get_plans(currency=market.currency),
            "get_plans",
            provider_type,
        )
        if not result.success:
            raise ProviderCallFailed(
                result.error or "Plans unavailable",
                provider=provider_type.value,
                code=result.code,
            )

        return sorted(
            (plan for plan in result.data if plan.currency == market.currency),
            key=lambda plan: (plan.amount, plan.id),
        )


_orchestrator: Optional[SubscriptionOrchestrator] = None


def get_orchestrator() -> SubscriptionOrchestrator:
    """Get the singleton orchestrator wired to the configured store and registry"""
    global _orchestrator
    if _orchestrator is None:
        from subscription.repository import get_user_repository

        _orchestrator = SubscriptionOrchestrator(get_user_repository())
    return _orchestrator
