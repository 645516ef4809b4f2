"""
Shared FastAPI dependencies

Services are module singletons in production; tests replace them with
app.dependency_overrides.
"""

from fastapi import Depends, Request, Response

from backend.payment_providers.registry import PaymentProviderRegistry, get_registry
from subscription.clock import Clock, get_clock
from subscription.markets import MarketContext, MarketDescriptor, resolve_market
from subscription.models import UserSubscriptionRecord
from subscription.orchestrator import SubscriptionOrchestrator
from subscription.repository import UserRepository, get_user_repository
from subscription.usage_tracker import UsageTracker
from subscription.whatsapp_access import WhatsAppAccessTracker
from utils.logger import logger
from web_ui.api.middleware.auth import AuthenticatedUser, get_current_user


MARKET_COOKIE = "market_id"
MARKET_COOKIE_MAX_AGE = 30 * 24 * 60 * 60  # 30 days


def get_repository() -> UserRepository:
    return get_user_repository()


def get_provider_registry() -> PaymentProviderRegistry:
    return get_registry()


def get_request_clock() -> Clock:
    return get_clock()


def get_orchestrator(
    repository: UserRepository = Depends(get_repository),
    registry: PaymentProviderRegistry = Depends(get_provider_registry),
) -> SubscriptionOrchestrator:
    return SubscriptionOrchestrator(repository, registry)


def get_usage_tracker(
    repository: UserRepository = Depends(get_repository),
    clock: Clock = Depends(get_request_clock),
) -> UsageTracker:
    return UsageTracker(repository, clock)


def get_whatsapp_tracker(
    repository: UserRepository = Depends(get_repository),
    clock: Clock = Depends(get_request_clock),
) -> WhatsAppAccessTracker:
    return WhatsAppAccessTracker(repository, clock)


def get_request_market(request: Request, response: Response) -> MarketDescriptor:
    """
    Resolve the market for a request and remember it in a cookie.

    The client reads the cookie, so it is not httpOnly.
    """
    context = MarketContext(
        host=request.headers.get("host"),
        forwarded_host=request.headers.get("x-forwarded-host"),
        referer=request.headers.get("referer"),
        accept_language=request.headers.get("accept-language"),
        market_override=request.query_params.get("m"),
    )
    market = resolve_market(context)

    hostname = (context.forwarded_host or context.host or "").lower()
    is_local = "localhost" in hostname or "127.0.0.1" in hostname
    response.set_cookie(
        MARKET_COOKIE,
        market.id,
        max_age=MARKET_COOKIE_MAX_AGE,
        path="/",
        samesite="lax",
        secure=not is_local,
        httponly=False,
    )
    return market


def get_current_record(
    user: AuthenticatedUser = Depends(get_current_user),
    market: MarketDescriptor = Depends(get_request_market),
    repository: UserRepository = Depends(get_repository),
) -> UserSubscriptionRecord:
    """Stored record of the signed-in user, created on first request"""
    record = repository.get_user(user.uid)
    if record is not None:
        return record

    record = repository.create_user(UserSubscriptionRecord(
        user_id=user.uid,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        locale=market.locale,
    ))
    logger.info(f"Created user record for {user.uid} in market {market.id}")
    return record
