"""
Subscription Routes - plans, checkout and subscription management

Thin wrappers over SubscriptionOrchestrator. SubscriptionError raised by
the orchestrator is turned into an HTTP response by the handler in main.
"""

from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from config import settings
from subscription.markets import MarketDescriptor, format_price
from subscription.models import UserSubscriptionRecord
from subscription.orchestrator import SubscriptionOrchestrator
from web_ui.api.dependencies import get_current_record, get_orchestrator, get_request_market


router = APIRouter(prefix="/subscription", tags=["Subscription"])


# ========== Pydantic Models ==========

class CheckoutRequest(BaseModel):
    plan_id: str = Field(..., min_length=3, examples=["premium-monthly"])
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CancelRequest(BaseModel):
    immediate: bool = False


class PortalRequest(BaseModel):
    return_url: Optional[str] = None


class PlanResponse(BaseModel):
    id: str
    provider: str
    name: str
    tier: str
    currency: str
    amount: int
    interval: str
    price_display: str
    features: List[str]


# ========== Routes ==========

@router.get("/plans", response_model=List[PlanResponse])
async def list_plans(
    market: MarketDescriptor = Depends(get_request_market),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
):
    """Plans sold in the request's market, cheapest first"""
    plans = await orchestrator.list_plans(market)
    return [
        PlanResponse(
            id=plan.id,
            provider=plan.provider.value,
            name=plan.name,
            tier=plan.tier,
            currency=plan.currency,
            amount=plan.amount,
            interval=plan.interval.value,
            price_display=format_price(plan.amount, market),
            features=plan.features,
        )
        for plan in plans
    ]


@router.post("/checkout")
async def create_checkout(
    request: CheckoutRequest,
    record: UserSubscriptionRecord = Depends(get_current_record),
    market: MarketDescriptor = Depends(get_request_market),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
):
    """
    Start a hosted checkout.

    The client redirects to the returned URL.
    """
    session = await orchestrator.create_checkout_session(
        record.user_id,
        market,
        request.plan_id,
        success_url=request.success_url or f"{settings.APP_BASE_URL}/subscription-success",
        cancel_url=request.cancel_url or f"{settings.APP_BASE_URL}/subscription-cancel",
    )
    return session.to_dict()


@router.get("/current")
async def get_current_subscription(
    record: UserSubscriptionRecord = Depends(get_current_record),
    market: MarketDescriptor = Depends(get_request_market),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
):
    """Current subscription; `subscription` is null when none can be read"""
    view = await orchestrator.get_subscription_details(record.user_id, market)
    return {
        "tier": record.subscription_tier,
        "provider": record.payment_provider.value if record.payment_provider else None,
        "subscription": view.to_dict() if view else None,
    }


@router.post("/cancel")
async def cancel_subscription(
    request: CancelRequest,
    record: UserSubscriptionRecord = Depends(get_current_record),
    market: MarketDescriptor = Depends(get_request_market),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
):
    """Cancel at period end (default) or immediately"""
    view = await orchestrator.cancel_subscription(record.user_id, market, immediate=request.immediate)
    return {"success": True, "subscription": view.to_dict()}


@router.post("/resume")
async def resume_subscription(
    record: UserSubscriptionRecord = Depends(get_current_record),
    market: MarketDescriptor = Depends(get_request_market),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
):
    view = await orchestrator.resume_subscription(record.user_id, market)
    return {"success": True, "subscription": view.to_dict()}


@router.post("/portal")
async def create_portal_session(
    request: PortalRequest,
    record: UserSubscriptionRecord = Depends(get_current_record),
    market: MarketDescriptor = Depends(get_request_market),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
):
    """Billing portal link for payment method changes"""
    url = await orchestrator.create_portal_session(
        record.user_id,
        market,
        return_url=request.return_url or f"{settings.APP_BASE_URL}/settings",
    )
    return {"url": url}
