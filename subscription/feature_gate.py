"""
Feature Gate System - Controls access to features based on subscription tier

Access decisions read the explicit per-tier table in FeatureAccess;
tier order is used only to pick which plan to suggest in upgrade prompts.

Usage:
    # Runtime check
    if can_access_feature(record, 'analytics_access'):
        show_analytics()

    # Guard that raises with an upgrade message
    require_feature(record, 'goal_setting')

    # Limit check
    can_add, reason = FeatureGate.check_limit(record, 'max_photos', current_count)
"""

from typing import Optional, Tuple, Iterable, Dict, Any, FrozenSet

from subscription.models import (
    FeatureAccess,
    SubscriptionTier,
    TierDefinition,
    TIER_DEFINITIONS,
    UserSubscriptionRecord,
)
from utils.logger import logger


# Tiers that include paid features (and the WhatsApp add-on)
PAID_TIERS: FrozenSet[SubscriptionTier] = frozenset({
    SubscriptionTier.STARTER,
    SubscriptionTier.PREMIUM,
    SubscriptionTier.PRO,
    SubscriptionTier.ADMIN,
})

# Tiers offered for purchase, in upgrade-suggestion order
PURCHASABLE_TIERS = (
    SubscriptionTier.STARTER,
    SubscriptionTier.PREMIUM,
    SubscriptionTier.PRO,
)


class FeatureGateError(Exception):
    """Raised when a feature is not available"""

    def __init__(self, feature: str, required_tier: Optional[str], message: str):
        self.feature = feature
        self.required_tier = required_tier
        self.message = message
        super().__init__(message)


def get_user_tier(record: Optional[UserSubscriptionRecord]) -> SubscriptionTier:
    """Stored tier normalized to a SubscriptionTier (absent/invalid -> FREE)"""
    if record is None:
        return SubscriptionTier.FREE
    stored = record.subscription_tier
    tier = SubscriptionTier.parse(stored)
    raw = stored.value if isinstance(stored, SubscriptionTier) else str(stored or "")
    if raw and tier.value != raw.strip().lower():
        logger.warning(f"Unknown stored tier '{record.subscription_tier}' for user {record.user_id}, using free")
    return tier


def get_tier_definition(record: Optional[UserSubscriptionRecord]) -> TierDefinition:
    return TIER_DEFINITIONS[get_user_tier(record)]


def tier_in(record: Optional[UserSubscriptionRecord], tiers: Iterable[SubscriptionTier]) -> bool:
    """Explicit membership test, e.g. tier_in(record, PAID_TIERS)"""
    return get_user_tier(record) in frozenset(tiers)


def can_access_feature(record: Optional[UserSubscriptionRecord], feature_name: str) -> bool:
    """
    Check if a user may use a feature.

    Unknown feature names are denied.
    """
    if feature_name not in FeatureAccess.feature_names():
        logger.debug(f"Unknown feature requested: {feature_name}")
        return False
    return bool(getattr(get_tier_definition(record).features, feature_name))


def require_feature(record: Optional[UserSubscriptionRecord], feature_name: str) -> None:
    """
    Raises:
        FeatureGateError: If the user's tier does not include the feature
    """
    if not can_access_feature(record, feature_name):
        required = FeatureGate.get_required_tier(feature_name)
        raise FeatureGateError(
            feature=feature_name,
            required_tier=required.value if required else None,
            message=FeatureGate.get_upgrade_message(feature_name),
        )


class FeatureGate:
    """
    Tier-based feature lookups used by the API layer.

    This is the central point for feature display data; access checks
    go through can_access_feature().
    """

    @classmethod
    def get_features(cls, record: Optional[UserSubscriptionRecord]) -> FeatureAccess:
        return get_tier_definition(record).features

    @classmethod
    def has_feature(cls, record: Optional[UserSubscriptionRecord], feature_name: str) -> bool:
        return can_access_feature(record, feature_name)

    @classmethod
    def check_limit(
        cls,
        record: Optional[UserSubscriptionRecord],
        limit_name: str,
        current_value: int
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if a limit would be exceeded.

        Args:
            limit_name: Name of the limit (e.g., 'max_photos')
            current_value: Current count

        Returns:
            Tuple of (is_allowed, error_message)
        """
        features = cls.get_features(record)

        if not hasattr(features, limit_name):
            return False, f"Unknown limit: {limit_name}"

        max_value = getattr(features, limit_name)
        if max_value is None:
            return True, None
        if current_value >= max_value:
            return False, f"Limit reached: maximum {limit_name.replace('_', ' ')} is {max_value}. Upgrade to increase."
        return True, None

    @classmethod
    def get_required_tier(cls, feature_name: str) -> Optional[SubscriptionTier]:
        """Cheapest purchasable tier that includes a feature"""
        for tier in PURCHASABLE_TIERS:
            if getattr(TIER_DEFINITIONS[tier].features, feature_name, False):
                return tier
        return None

    @classmethod
    def get_upgrade_message(cls, feature_name: str) -> str:
        """Get a user-friendly upgrade message for a feature"""
        required_tier = cls.get_required_tier(feature_name)

        feature_display = feature_name.replace('_', ' ').title()

        if required_tier is None:
            return f"'{feature_display}' is not available with your current subscription."

        definition = TIER_DEFINITIONS[required_tier]
        return (
            f"'{feature_display}' requires a {definition.display_name} subscription. "
            f"Upgrade now to unlock this feature!"
        )

    @classmethod
    def get_available_features_for_tier(cls, tier: SubscriptionTier) -> Dict[str, Any]:
        """Feature flags and limits for a tier, grouped for display"""
        features = TIER_DEFINITIONS[tier].features

        return {
            'features': {name: getattr(features, name) for name in sorted(FeatureAccess.feature_names())},
            'limits': {
                'recording_frequency': features.recording_frequency.value,
                'max_photos': features.max_photos,
            },
        }
