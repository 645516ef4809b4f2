"""
Entitlement Routes - what the signed-in user's tier allows
"""

from fastapi import APIRouter, Depends

from subscription.feature_gate import FeatureGate, can_access_feature, get_user_tier
from subscription.models import UserSubscriptionRecord
from web_ui.api.dependencies import get_current_record


router = APIRouter(prefix="/entitlements", tags=["Entitlements"])


@router.get("")
async def get_entitlements(record: UserSubscriptionRecord = Depends(get_current_record)):
    """Tier plus every feature flag and limit"""
    tier = get_user_tier(record)
    return {
        "tier": tier.value,
        **FeatureGate.get_available_features_for_tier(tier),
    }


@router.get("/{feature}")
async def check_feature(feature: str, record: UserSubscriptionRecord = Depends(get_current_record)):
    """Single feature check; unknown features report has_feature false"""
    has_feature = can_access_feature(record, feature)
    required = FeatureGate.get_required_tier(feature)
    return {
        "feature_name": feature,
        "has_feature": has_feature,
        "required_tier": required.value if required else None,
        "upgrade_message": None if has_feature else FeatureGate.get_upgrade_message(feature),
    }
