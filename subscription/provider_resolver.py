"""
Provider Resolution

Chooses which payment provider serves a user. A user bound to a
provider stays on it for life; only unbound users follow their market's
default.
"""

from typing import Optional

from backend.payment_providers.base import PaymentProvider, PaymentProviderType, ProviderConfigError
from backend.payment_providers.registry import PaymentProviderRegistry
from subscription.errors import ProviderUnavailable
from subscription.markets import MarketDescriptor
from subscription.models import UserSubscriptionRecord


def resolve_provider(
    record: Optional[UserSubscriptionRecord],
    market: MarketDescriptor
) -> PaymentProviderType:
    """Sticky provider if bound, otherwise the market default (no I/O)"""
    if record is not None and record.payment_provider is not None:
        return record.payment_provider
    return market.default_provider


def get_adapter(registry: PaymentProviderRegistry, provider_type: PaymentProviderType) -> PaymentProvider:
    """
    Registry lookup for the orchestrator.

    Raises:
        ProviderUnavailable: If the provider is not registered or misconfigured
    """
    try:
        return registry.get(provider_type)
    except ProviderConfigError as e:
        raise ProviderUnavailable(e.message, provider=e.provider) from e
