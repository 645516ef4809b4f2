"""
Payment Provider Registry

Central registry for payment provider adapters.
Handles registration, credential validation and lookup by provider type.
"""

from typing import Optional, Dict, List, Any

from config import settings
from utils.logger import logger

from .base import (
    PaymentProvider,
    PaymentProviderType,
    ProviderConfig,
    ProviderConfigError,
)
from .stripe_provider import StripeProvider
from .revenuecat_provider import RevenueCatProvider


class PaymentProviderRegistry:
    """
    Registry for payment providers.

    A provider whose credentials are missing is not registered; the reason
    is remembered and returned from get() as a ProviderConfigError so that
    callers see why the provider is unusable.
    """

    def __init__(self):
        self._providers: Dict[PaymentProviderType, PaymentProvider] = {}
        self._config_errors: Dict[PaymentProviderType, ProviderConfigError] = {}

    def register(self, provider: PaymentProvider, config: ProviderConfig) -> bool:
        """
        Initialize and register a provider.

        Returns:
            True if the provider was registered, False if its config was rejected
        """
        provider_type = provider.provider_type
        try:
            provider.initialize(config)
        except ProviderConfigError as e:
            self._providers.pop(provider_type, None)
            self._config_errors[provider_type] = e
            logger.warning(f"Payment provider {provider_type.value} not configured: {e.message}")
            return False

        self._providers[provider_type] = provider
        self._config_errors.pop(provider_type, None)
        logger.debug(f"Registered payment provider: {provider_type.value} ({config.environment})")
        return True

    def unregister(self, provider_type: PaymentProviderType) -> None:
        self._providers.pop(provider_type, None)
        self._config_errors.pop(provider_type, None)

    def get(self, provider_type: PaymentProviderType) -> PaymentProvider:
        """
        Get an initialized provider.

        Raises:
            ProviderConfigError: If the provider is unknown, unregistered or misconfigured
        """
        try:
            provider_type = PaymentProviderType(provider_type)
        except ValueError:
            raise ProviderConfigError(str(provider_type), f"Unknown payment provider: {provider_type}")

        provider = self._providers.get(provider_type)
        if provider is not None:
            return provider

        if provider_type in self._config_errors:
            raise self._config_errors[provider_type]

        raise ProviderConfigError(
            provider_type.value,
            f"Payment provider not registered: {provider_type.value}"
        )

    def is_available(self, provider_type: PaymentProviderType) -> bool:
        return provider_type in self._providers

    def get_all_providers(self) -> Dict[str, PaymentProvider]:
        """Get all registered providers"""
        return {k.value: v for k, v in self._providers.items()}

    def get_all_status(self) -> List[Dict[str, Any]]:
        """Status of every known provider type, configured or not"""
        statuses = []
        for provider_type in PaymentProviderType:
            if provider_type in self._providers:
                status = self._providers[provider_type].get_status()
                status["available"] = True
            else:
                status = {"type": provider_type.value, "available": False}
                error = self._config_errors.get(provider_type)
                status["error"] = error.message if error else "No adapter registered"
            statuses.append(status)
        return statuses


def build_registry_from_settings() -> PaymentProviderRegistry:
    """Create a registry with the adapters configured in the environment"""
    registry = PaymentProviderRegistry()

    registry.register(
        StripeProvider(),
        ProviderConfig(
            secret_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            environment=settings.PAYMENT_ENVIRONMENT,
        ),
    )
    registry.register(
        RevenueCatProvider(),
        ProviderConfig(
            api_key=settings.REVENUECAT_API_KEY,
            webhook_secret=settings.REVENUECAT_WEBHOOK_SECRET,
            environment=settings.PAYMENT_ENVIRONMENT,
        ),
    )

    return registry


# Singleton registry instance
_registry: Optional[PaymentProviderRegistry] = None


def get_registry() -> PaymentProviderRegistry:
    """Get the singleton registry instance"""
    global _registry
    if _registry is None:
        _registry = build_registry_from_settings()
    return _registry


def reset_registry() -> None:
    """Drop the singleton (used when settings change, e.g. in tests)"""
    global _registry
    _registry = None


def get_provider_status() -> List[Dict[str, Any]]:
    """Get status of all payment providers"""
    return get_registry().get_all_status()
