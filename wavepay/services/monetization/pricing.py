"""Canonical price and limit catalog.

All amounts are minor units (kobo for NGN, cents for USD). This module is the
single source of truth for monetization figures; anything user-facing reads
from `GET /monetization/pricing`, which renders `DEFAULT_CATALOG`.
"""

from dataclasses import dataclass, field
from enum import Enum

from wavepay.services.monetization.errors import UnknownPurchaseType, UnsupportedCurrency


class PurchaseType(str, Enum):
    # Deprecated but still accepted: stale clients may still send it, and
    # activation answers with a no-op message.
    CHAT_PASS = "chat_pass"
    CROSS_LIST = "cross_list"
    AGGRESSIVE_BOOST = "aggressive_boost"
    SPOTLIGHT_3 = "spotlight_3"
    SPOTLIGHT_7 = "spotlight_7"
    PREMIUM = "premium"

    @classmethod
    def parse(cls, value: "str | PurchaseType") -> "PurchaseType":
        try:
            return cls(value)
        except ValueError as exc:
            raise UnknownPurchaseType(f"Invalid purchase type: {value}") from exc

    @property
    def requires_listing(self) -> bool:
        return self in LISTING_PURCHASE_TYPES


LISTING_PURCHASE_TYPES = frozenset(
    {
        PurchaseType.CROSS_LIST,
        PurchaseType.AGGRESSIVE_BOOST,
        PurchaseType.SPOTLIGHT_3,
        PurchaseType.SPOTLIGHT_7,
    }
)

SPOTLIGHT_DAYS = {PurchaseType.SPOTLIGHT_3: 3, PurchaseType.SPOTLIGHT_7: 7}


class Currency(str, Enum):
    NGN = "NGN"
    USD = "USD"

    @classmethod
    def parse(cls, value: "str | Currency | None") -> "Currency":
        if value is None:
            return cls.NGN
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as exc:
            raise UnsupportedCurrency(f"Unsupported currency: {value}") from exc


class Tier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


@dataclass(frozen=True)
class TierLimits:
    """Consumption limits for one tier; `None` means unlimited."""

    free_listings: int | None
    free_daily_chats: int | None
    daily_community_posts: int | None
    daily_community_offers: int | None
    premium_spotlight_credits: int


@dataclass(frozen=True)
class PricingCatalog:
    version: str
    prices: dict[PurchaseType, dict[Currency, int]]
    # Per-tier price overrides, e.g. the premium aggressive-boost discount.
    tier_prices: dict[Tier, dict[PurchaseType, dict[Currency, int]]] = field(default_factory=dict)
    tier_limits: dict[Tier, TierLimits] = field(default_factory=dict)

    def price(self, purchase_type: "str | PurchaseType", currency: "str | Currency", tier: "str | Tier" = Tier.FREE) -> int:
        """Amount in minor units for one purchase, after any tier discount."""

        purchase_type = PurchaseType.parse(purchase_type)
        currency = Currency.parse(currency)
        override = self.tier_prices.get(Tier(tier), {}).get(purchase_type)
        if override is not None:
            return override[currency]
        try:
            return self.prices[purchase_type][currency]
        except KeyError as exc:
            raise UnknownPurchaseType(f"No price for {purchase_type.value}/{currency.value}") from exc

    def limits(self, tier: "str | Tier") -> TierLimits:
        return self.tier_limits[Tier(tier)]

    def as_table(self) -> dict:
        """Plain-dict rendering for the public pricing endpoint."""

        return {
            "version": self.version,
            "prices": {
                purchase_type.value: {currency.value: amount for currency, amount in by_currency.items()}
                for purchase_type, by_currency in self.prices.items()
            },
            "tierPrices": {
                tier.value: {
                    purchase_type.value: {currency.value: amount for currency, amount in by_currency.items()}
                    for purchase_type, by_currency in overrides.items()
                }
                for tier, overrides in self.tier_prices.items()
            },
            "limits": {
                tier.value: {
                    "freeListings": limits.free_listings,
                    "freeDailyChats": limits.free_daily_chats,
                    "dailyCommunityPosts": limits.daily_community_posts,
                    "dailyCommunityOffers": limits.daily_community_offers,
                    "premiumSpotlightCredits": limits.premium_spotlight_credits,
                }
                for tier, limits in self.tier_limits.items()
            },
        }


DEFAULT_CATALOG = PricingCatalog(
    version="2025-early-adopter",
    prices={
        PurchaseType.PREMIUM: {Currency.NGN: 250_000, Currency.USD: 499},
        PurchaseType.AGGRESSIVE_BOOST: {Currency.NGN: 100_000, Currency.USD: 299},
        PurchaseType.SPOTLIGHT_3: {Currency.NGN: 50_000, Currency.USD: 199},
        PurchaseType.SPOTLIGHT_7: {Currency.NGN: 120_000, Currency.USD: 399},
        PurchaseType.CROSS_LIST: {Currency.NGN: 0, Currency.USD: 0},
        PurchaseType.CHAT_PASS: {Currency.NGN: 0, Currency.USD: 0},
    },
    tier_prices={
        Tier.PREMIUM: {
            PurchaseType.AGGRESSIVE_BOOST: {Currency.NGN: 50_000, Currency.USD: 149},
        },
    },
    tier_limits={
        Tier.FREE: TierLimits(
            free_listings=10,
            free_daily_chats=15,
            daily_community_posts=50,
            daily_community_offers=50,
            premium_spotlight_credits=2,
        ),
        Tier.PREMIUM: TierLimits(
            free_listings=None,
            free_daily_chats=None,
            daily_community_posts=None,
            daily_community_offers=None,
            premium_spotlight_credits=2,
        ),
    },
)
