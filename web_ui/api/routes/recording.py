"""
Recording Routes - weight recording quota
"""

from fastapi import APIRouter, Depends

from subscription.models import UserSubscriptionRecord
from subscription.usage_tracker import UsageTracker
from web_ui.api.dependencies import get_current_record, get_usage_tracker


router = APIRouter(prefix="/recording", tags=["Recording"])


@router.get("/status")
async def get_recording_status(
    record: UserSubscriptionRecord = Depends(get_current_record),
    tracker: UsageTracker = Depends(get_usage_tracker),
):
    return tracker.get_quota_status(record).to_dict()


@router.post("")
async def record_weight(
    record: UserSubscriptionRecord = Depends(get_current_record),
    tracker: UsageTracker = Depends(get_usage_tracker),
):
    """
    Count a weight recording against the quota.

    Returns 429 with the days until the next allowed recording when the
    free-tier window has not elapsed.
    """
    return tracker.record(record.user_id).to_dict()
