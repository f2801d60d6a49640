"""Catalog lookups: base prices, tier overrides and input validation."""

import pytest

from wavepay.services.monetization.errors import UnknownPurchaseType, UnsupportedCurrency
from wavepay.services.monetization.pricing import DEFAULT_CATALOG, Currency, PurchaseType, Tier


def test_base_prices_in_minor_units():
    assert DEFAULT_CATALOG.price("spotlight_3", "NGN") == 50_000
    assert DEFAULT_CATALOG.price(PurchaseType.SPOTLIGHT_7, Currency.USD) == 399
    assert DEFAULT_CATALOG.price("premium", "ngn") == 250_000
    assert DEFAULT_CATALOG.price("cross_list", "NGN") == 0


def test_premium_tier_gets_boost_discount():
    """Only aggressive boost carries a premium override."""

    assert DEFAULT_CATALOG.price("aggressive_boost", "NGN", Tier.FREE) == 100_000
    assert DEFAULT_CATALOG.price("aggressive_boost", "NGN", Tier.PREMIUM) == 50_000
    assert DEFAULT_CATALOG.price("aggressive_boost", "USD", "premium") == 149
    assert DEFAULT_CATALOG.price("spotlight_3", "NGN", Tier.PREMIUM) == 50_000


def test_unknown_type_and_currency_are_rejected():
    with pytest.raises(UnknownPurchaseType):
        DEFAULT_CATALOG.price("mega_boost", "NGN")
    with pytest.raises(UnsupportedCurrency):
        DEFAULT_CATALOG.price("premium", "EUR")


def test_missing_currency_defaults_to_naira():
    assert Currency.parse(None) is Currency.NGN


def test_listing_requirement_by_type():
    assert PurchaseType.SPOTLIGHT_3.requires_listing
    assert PurchaseType.AGGRESSIVE_BOOST.requires_listing
    assert not PurchaseType.PREMIUM.requires_listing
    assert not PurchaseType.CHAT_PASS.requires_listing


def test_pricing_table_renders_every_figure():
    table = DEFAULT_CATALOG.as_table()

    assert table["prices"]["spotlight_7"]["NGN"] == 120_000
    assert table["tierPrices"]["premium"]["aggressive_boost"]["NGN"] == 50_000
    assert table["limits"]["free"]["freeDailyChats"] == 15
    assert table["limits"]["premium"]["freeListings"] is None


def test_enum_members_pass_through_parsing():
    """Members are accepted as-is, not via their str() form."""

    assert DEFAULT_CATALOG.price(PurchaseType.SPOTLIGHT_3, Currency.NGN) == 50_000
    assert DEFAULT_CATALOG.price("premium", Currency.USD) == 499
    assert Currency.parse(Currency.USD) is Currency.USD
