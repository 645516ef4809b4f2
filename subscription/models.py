"""
Subscription Data Models

Defines the core data structures for the subscription system:
tiers, per-tier feature access, and the persisted user record.
"""

from enum import Enum
from dataclasses import dataclass, fields, replace
from typing import Optional, Dict, Any, FrozenSet
from datetime import datetime

from backend.payment_providers.base import PaymentProviderType


class SubscriptionTier(str, Enum):
    """
    Subscription tiers.

    Pricing (USD, monthly):
    - FREE: one weight recording per week
    - STARTER: $1.99 - unlimited recordings, social sharing
    - PREMIUM: $2.99 - adds photos, goals, delete last reading
    - PRO: $3.99 - adds analytics
    - ADMIN: staff accounts, everything
    """
    FREE = "free"
    STARTER = "starter"
    PREMIUM = "premium"
    PRO = "pro"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SubscriptionTier":
        """Normalize a stored tier string; absent or unknown values are FREE"""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.FREE


class RecordingFrequency(str, Enum):
    """How often a tier may record a weight"""
    WEEKLY = "weekly"
    UNLIMITED = "unlimited"


class WhatsAppStatus(str, Enum):
    """WhatsApp add-on access state"""
    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, value: Optional[str]) -> "WhatsAppStatus":
        try:
            return cls(value or "none")
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class FeatureAccess:
    """
    Feature access for a tier.

    Each tier's row is spelled out in full; nothing is inferred from
    tier order.
    """
    # Feature flags
    analytics_access: bool = False
    social_sharing: bool = False
    image_upload: bool = False
    goal_setting: bool = False
    delete_last_reading: bool = False
    whatsapp_reminders: bool = False
    admin_panel: bool = False

    # Limits (None = unlimited)
    recording_frequency: RecordingFrequency = RecordingFrequency.WEEKLY
    max_photos: Optional[int] = 0

    @classmethod
    def for_tier(cls, tier: SubscriptionTier) -> "FeatureAccess":
        """Get feature access for a specific tier"""
        if tier == SubscriptionTier.STARTER:
            return cls.starter_features()
        elif tier == SubscriptionTier.PREMIUM:
            return cls.premium_features()
        elif tier == SubscriptionTier.PRO:
            return cls.pro_features()
        elif tier == SubscriptionTier.ADMIN:
            return cls.admin_features()
        else:
            return cls.free_features()

    @classmethod
    def free_features(cls) -> "FeatureAccess":
        """Free: weekly recording, no extras"""
        return cls(
            recording_frequency=RecordingFrequency.WEEKLY,
            max_photos=0,
        )

    @classmethod
    def starter_features(cls) -> "FeatureAccess":
        return cls(
            social_sharing=True,
            whatsapp_reminders=True,
            recording_frequency=RecordingFrequency.UNLIMITED,
            max_photos=0,
        )

    @classmethod
    def premium_features(cls) -> "FeatureAccess":
        return cls(
            social_sharing=True,
            image_upload=True,
            goal_setting=True,
            delete_last_reading=True,
            whatsapp_reminders=True,
            recording_frequency=RecordingFrequency.UNLIMITED,
            max_photos=None,
        )

    @classmethod
    def pro_features(cls) -> "FeatureAccess":
        return cls(
            analytics_access=True,
            social_sharing=True,
            image_upload=True,
            goal_setting=True,
            delete_last_reading=True,
            whatsapp_reminders=True,
            recording_frequency=RecordingFrequency.UNLIMITED,
            max_photos=None,
        )

    @classmethod
    def admin_features(cls) -> "FeatureAccess":
        return cls(
            analytics_access=True,
            social_sharing=True,
            image_upload=True,
            goal_setting=True,
            delete_last_reading=True,
            whatsapp_reminders=True,
            admin_panel=True,
            recording_frequency=RecordingFrequency.UNLIMITED,
            max_photos=None,
        )

    @classmethod
    def feature_names(cls) -> FrozenSet[str]:
        """Names of the boolean feature flags"""
        return frozenset(f.name for f in fields(cls) if f.type in (bool, "bool"))

    def enabled_features(self) -> FrozenSet[str]:
        return frozenset(name for name in self.feature_names() if getattr(self, name))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            'analytics_access': self.analytics_access,
            'social_sharing': self.social_sharing,
            'image_upload': self.image_upload,
            'goal_setting': self.goal_setting,
            'delete_last_reading': self.delete_last_reading,
            'whatsapp_reminders': self.whatsapp_reminders,
            'admin_panel': self.admin_panel,
            'recording_frequency': self.recording_frequency.value,
            'max_photos': self.max_photos,
        }


@dataclass(frozen=True)
class TierDefinition:
    """Display and policy data for a tier"""
    tier: SubscriptionTier
    display_name: str
    priority: int
    price_cents: Optional[int]      # USD monthly list price, None if not sold
    features: FeatureAccess

    def to_dict(self) -> dict:
        return {
            'tier': self.tier.value,
            'display_name': self.display_name,
            'priority': self.priority,
            'price_cents': self.price_cents,
            'features': self.features.to_dict(),
        }


TIER_DEFINITIONS: Dict[SubscriptionTier, TierDefinition] = {
    SubscriptionTier.FREE: TierDefinition(
        SubscriptionTier.FREE, "Free", 1, None, FeatureAccess.free_features()
    ),
    SubscriptionTier.STARTER: TierDefinition(
        SubscriptionTier.STARTER, "Starter", 2, 199, FeatureAccess.starter_features()
    ),
    SubscriptionTier.PREMIUM: TierDefinition(
        SubscriptionTier.PREMIUM, "Premium", 3, 299, FeatureAccess.premium_features()
    ),
    SubscriptionTier.PRO: TierDefinition(
        SubscriptionTier.PRO, "Pro", 4, 399, FeatureAccess.pro_features()
    ),
    SubscriptionTier.ADMIN: TierDefinition(
        SubscriptionTier.ADMIN, "Admin", 5, None, FeatureAccess.admin_features()
    ),
}


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes (Firestore) or ISO strings (JSON)"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class UserSubscriptionRecord:
    """
    Persisted subscription-related fields of a user.

    subscription_tier is kept as the raw stored string; use
    feature_gate.get_user_tier() to read it as a SubscriptionTier.
    """
    user_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    locale: Optional[str] = None

    subscription_tier: Optional[str] = SubscriptionTier.FREE.value
    payment_provider: Optional[PaymentProviderType] = None
    provider_customer_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None

    last_recording_at: Optional[datetime] = None

    whatsapp_enabled: bool = False
    whatsapp_phone: Optional[str] = None
    whatsapp_status: WhatsAppStatus = WhatsAppStatus.NONE
    whatsapp_trial_ends_at: Optional[datetime] = None
    whatsapp_opt_in_at: Optional[datetime] = None

    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> Optional[str]:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or None

    def copy(self, **changes) -> "UserSubscriptionRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored document shape"""
        return {
            "id": self.user_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "locale": self.locale,
            "subscriptionTier": self.subscription_tier,
            "paymentProvider": self.payment_provider.value if self.payment_provider else None,
            "providerCustomerId": self.provider_customer_id,
            "providerSubscriptionId": self.provider_subscription_id,
            "lastRecordingAt": _format_datetime(self.last_recording_at),
            "whatsappEnabled": self.whatsapp_enabled,
            "whatsappPhone": self.whatsapp_phone,
            "whatsappStatus": self.whatsapp_status.value,
            "whatsappTrialEndsAt": _format_datetime(self.whatsapp_trial_ends_at),
            "whatsappOptInAt": _format_datetime(self.whatsapp_opt_in_at),
            "updatedAt": _format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], user_id: Optional[str] = None) -> "UserSubscriptionRecord":
        """Create from a stored document"""
        provider = data.get("paymentProvider")
        try:
            payment_provider = PaymentProviderType(provider) if provider else None
        except ValueError:
            payment_provider = None

        return cls(
            user_id=user_id or data["id"],
            email=data.get("email"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            locale=data.get("locale"),
            subscription_tier=data.get("subscriptionTier"),
            payment_provider=payment_provider,
            provider_customer_id=data.get("providerCustomerId"),
            provider_subscription_id=data.get("providerSubscriptionId"),
            last_recording_at=_parse_datetime(data.get("lastRecordingAt")),
            whatsapp_enabled=bool(data.get("whatsappEnabled", False)),
            whatsapp_phone=data.get("whatsappPhone"),
            whatsapp_status=WhatsAppStatus.parse(data.get("whatsappStatus")),
            whatsapp_trial_ends_at=_parse_datetime(data.get("whatsappTrialEndsAt")),
            whatsapp_opt_in_at=_parse_datetime(data.get("whatsappOptInAt")),
            updated_at=_parse_datetime(data.get("updatedAt")),
        )


@dataclass
class WhatsAppState:
    """The WhatsApp fields, written together"""
    enabled: bool = False
    phone: Optional[str] = None
    status: WhatsAppStatus = WhatsAppStatus.NONE
    trial_ends_at: Optional[datetime] = None
    opt_in_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: UserSubscriptionRecord) -> "WhatsAppState":
        return cls(
            enabled=record.whatsapp_enabled,
            phone=record.whatsapp_phone,
            status=record.whatsapp_status,
            trial_ends_at=record.whatsapp_trial_ends_at,
            opt_in_at=record.whatsapp_opt_in_at,
        )

    def apply_to(self, record: UserSubscriptionRecord) -> UserSubscriptionRecord:
        return record.copy(
            whatsapp_enabled=self.enabled,
            whatsapp_phone=self.phone,
            whatsapp_status=self.status,
            whatsapp_trial_ends_at=self.trial_ends_at,
            whatsapp_opt_in_at=self.opt_in_at,
        )


@dataclass
class CustomerLink:
    """Outcome of binding a provider customer to a user"""
    record: UserSubscriptionRecord
    linked: bool = False        # False when an existing binding was adopted
