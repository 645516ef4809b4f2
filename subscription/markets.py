"""
Market Configuration and Resolution

A market is a regional deployment of the product:
- US (scanmyscale.com) - USD, imperial units by default, free unit choice
- BR (fotopeso.com.br) - BRL, metric units only

resolve_market() is total: every request context maps to exactly one
market, falling back to the default market.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Any

from backend.payment_providers.base import PaymentProviderType
from config import settings
from utils.logger import logger


class UnitPolicy(str, Enum):
    """Whether users may pick their measurement system"""
    FREE_CHOICE = "free_choice"
    METRIC_ONLY = "metric_only"


@dataclass(frozen=True)
class PricingDisplay:
    """How prices are written for a market"""
    currency_symbol: str
    symbol_before: bool = True
    decimal_separator: str = "."
    thousands_separator: str = ","


@dataclass(frozen=True)
class MarketDescriptor:
    """Immutable configuration of one market"""
    id: str
    name: str
    domain: str
    brand_name: str
    locale: str
    language: str
    country: str
    currency: str
    default_provider: PaymentProviderType
    weight_unit: str
    height_unit: str
    unit_policy: UnitPolicy
    timezone: str
    pricing: PricingDisplay
    features: Dict[str, bool] = field(default_factory=dict)
    support_email: str = ""
    is_active: bool = True

    @property
    def unit_selector_enabled(self) -> bool:
        return self.unit_policy == UnitPolicy.FREE_CHOICE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "brandName": self.brand_name,
            "locale": self.locale,
            "language": self.language,
            "country": self.country,
            "currency": self.currency,
            "paymentProvider": self.default_provider.value,
            "weightUnit": self.weight_unit,
            "heightUnit": self.height_unit,
            "unitSelectorEnabled": self.unit_selector_enabled,
            "timezone": self.timezone,
        }


# ============================================================================
# MARKET CONFIGURATION
# ============================================================================

US_MARKET = MarketDescriptor(
    id="us",
    name="United States",
    domain="scanmyscale.com",
    brand_name="ScanMyScale",
    locale="en-US",
    language="en",
    country="US",
    currency="USD",
    default_provider=PaymentProviderType.STRIPE,
    weight_unit="lbs",
    height_unit="inches",
    unit_policy=UnitPolicy.FREE_CHOICE,
    timezone="America/New_York",
    pricing=PricingDisplay(currency_symbol="$"),
    features={
        "social_sharing": True,
        "email_notifications": True,
        "sms_notifications": True,
        "whatsapp_notifications": True,
    },
    support_email="support@scanmyscale.com",
)

BRAZIL_MARKET = MarketDescriptor(
    id="br",
    name="Brasil",
    domain="fotopeso.com.br",
    brand_name="FotoPeso",
    locale="pt-BR",
    language="pt",
    country="BR",
    currency="BRL",
    default_provider=PaymentProviderType.STRIPE,
    weight_unit="kg",
    height_unit="cm",
    unit_policy=UnitPolicy.METRIC_ONLY,
    timezone="America/Sao_Paulo",
    pricing=PricingDisplay(
        currency_symbol="R$",
        decimal_separator=",",
        thousands_separator=".",
    ),
    features={
        "social_sharing": True,
        "email_notifications": True,
        "sms_notifications": False,   # SMS is expensive in Brazil
        "whatsapp_notifications": True,
    },
    support_email="suporte@fotopeso.com.br",
)

MARKETS: Dict[str, MarketDescriptor] = {
    US_MARKET.id: US_MARKET,
    BRAZIL_MARKET.id: BRAZIL_MARKET,
}

DOMAIN_TO_MARKET: Dict[str, str] = {
    "scanmyscale.com": "us",
    "www.scanmyscale.com": "us",
    "fotopeso.com.br": "br",
    "www.fotopeso.com.br": "br",
    # Development
    "localhost:5000": "us",
    "127.0.0.1:5000": "us",
}

# Substrings that identify the Brazilian brand in hosts and referers
BRAZIL_HOST_MARKERS = ("fotopeso",)


@dataclass
class MarketContext:
    """Request signals used to pick a market"""
    host: Optional[str] = None
    forwarded_host: Optional[str] = None
    referer: Optional[str] = None
    accept_language: Optional[str] = None
    market_override: Optional[str] = None     # ?m=br
    user_locale: Optional[str] = None


# ============================================================================
# LOOKUP
# ============================================================================

def get_market(market_id: Optional[str]) -> Optional[MarketDescriptor]:
    """Get a market by id"""
    if not market_id:
        return None
    return MARKETS.get(market_id.strip().lower())


def get_default_market() -> MarketDescriptor:
    return MARKETS.get(settings.DEFAULT_MARKET, US_MARKET)


def get_market_by_domain(domain: Optional[str]) -> Optional[MarketDescriptor]:
    """Exact domain lookup, then suffix match (subdomains of a market domain)"""
    if not domain:
        return None
    domain = domain.strip().lower()

    market_id = DOMAIN_TO_MARKET.get(domain)
    if market_id:
        return MARKETS[market_id]

    hostname = domain.split(":")[0]
    for market in MARKETS.values():
        if hostname == market.domain or hostname.endswith(f".{market.domain}"):
            return market
    return None


def get_active_markets() -> List[MarketDescriptor]:
    return [market for market in MARKETS.values() if market.is_active]


def _is_portuguese(value: Optional[str]) -> bool:
    # Matches "pt", "pt-BR", "en-BR" and Accept-Language lists
    return bool(value) and ("pt" in value.lower() or "BR" in value)


def resolve_market(context: MarketContext) -> MarketDescriptor:
    """
    Pick the market for a request.

    Priority:
    1. Explicit override parameter (must name a known market)
    2. Domain (X-Forwarded-Host first, then Host), exact or subdomain
    3. Brazilian brand marker in any host or the referer
    4. Accept-Language asking for Portuguese / Brazil
    5. Stored user locale
    6. Default market
    """
    override = get_market(context.market_override)
    if override is not None:
        logger.debug(f"Market override: {override.id}")
        return override

    forwarded = (context.forwarded_host or "").split(",")[0].strip()
    domain = forwarded or (context.host or "").strip()
    market = get_market_by_domain(domain)
    if market is not None:
        return market

    for candidate in (context.forwarded_host, context.host, context.referer):
        if candidate and any(marker in candidate.lower() for marker in BRAZIL_HOST_MARKERS):
            return BRAZIL_MARKET

    if _is_portuguese(context.accept_language):
        return BRAZIL_MARKET

    if _is_portuguese(context.user_locale):
        return BRAZIL_MARKET

    return get_default_market()


# ============================================================================
# DISPLAY HELPERS
# ============================================================================

def format_price(amount_minor: int, market: MarketDescriptor) -> str:
    """Format an amount in minor units (cents) the way the market writes prices"""
    pricing = market.pricing
    integer_part, decimal_part = f"{amount_minor / 100:,.2f}".split(".")
    integer_part = integer_part.replace(",", pricing.thousands_separator)
    amount = f"{integer_part}{pricing.decimal_separator}{decimal_part}"

    if pricing.symbol_before:
        return f"{pricing.currency_symbol}{amount}"
    return f"{amount} {pricing.currency_symbol}"


def is_feature_supported(market: MarketDescriptor, feature: str) -> bool:
    """Market-level feature switch (unknown features are off)"""
    return market.features.get(feature, False)


def get_user_defaults(market: MarketDescriptor) -> Dict[str, Any]:
    """Defaults for a new user's preferences in this market"""
    return {
        "locale": market.locale,
        "currency": market.currency,
        "weightUnit": market.weight_unit,
        "heightUnit": market.height_unit,
        "timezone": market.timezone,
        "unitSelectorEnabled": market.unit_selector_enabled,
    }
