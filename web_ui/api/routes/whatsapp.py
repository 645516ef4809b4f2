"""
WhatsApp Routes - reminder add-on connection and trial status
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from subscription.markets import MarketDescriptor, is_feature_supported
from subscription.models import UserSubscriptionRecord, WhatsAppStatus
from subscription.whatsapp_access import TRIAL_WARNING_DAYS, WhatsAppAccessTracker
from web_ui.api.dependencies import get_current_record, get_request_market, get_whatsapp_tracker


router = APIRouter(prefix="/whatsapp", tags=["WhatsApp"])


class ConnectRequest(BaseModel):
    phone: str = Field(..., min_length=8, max_length=24, examples=["+5511999998888"])


@router.get("/status")
async def get_whatsapp_status(
    record: UserSubscriptionRecord = Depends(get_current_record),
    market: MarketDescriptor = Depends(get_request_market),
    tracker: WhatsAppAccessTracker = Depends(get_whatsapp_tracker),
):
    """Status after lazy trial expiry, plus any due trial reminder"""
    access = tracker.get_status(record.user_id)
    warning: Optional[str] = None
    if access.status == WhatsAppStatus.TRIALING:
        warning = TRIAL_WARNING_DAYS.get(access.trial_days_remaining)
    return {
        **access.to_dict(),
        "trialWarning": warning,
        "availableInMarket": is_feature_supported(market, "whatsapp_notifications"),
    }


@router.post("/connect")
async def connect_whatsapp(
    request: ConnectRequest,
    record: UserSubscriptionRecord = Depends(get_current_record),
    tracker: WhatsAppAccessTracker = Depends(get_whatsapp_tracker),
):
    return tracker.enable(record.user_id, request.phone).to_dict()


@router.delete("/disconnect")
async def disconnect_whatsapp(
    record: UserSubscriptionRecord = Depends(get_current_record),
    tracker: WhatsAppAccessTracker = Depends(get_whatsapp_tracker),
):
    return tracker.disconnect(record.user_id).to_dict()
