"""Tests for pricing policies and weight detection."""

import pytest

from sync.pricing import (
    DEFAULT_WEIGHT,
    MarkupPricing,
    PassthroughPricing,
    build_pricing_policy,
    detect_weight,
    format_price,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Slim Fit Jeans", 0.6),
        ("Classic Wool Coats", 1.5),
        ("Hydrating Shampoo 250ml", 0.3),
        ("Unknown gadget", DEFAULT_WEIGHT),
        ("", DEFAULT_WEIGHT),
        (None, DEFAULT_WEIGHT),
    ],
)
def test_detect_weight(name, expected):
    assert detect_weight(name) == pytest.approx(expected)


def test_detect_weight_matches_whole_words_only():
    assert detect_weight("Geliebte") == DEFAULT_WEIGHT
    assert detect_weight("Hair Gel") == pytest.approx(0.2)


@pytest.mark.parametrize(
    "discount, expected",
    [
        (None, 113),
        ("25", 134),
        ("45", 140),
        ("70", 213),
        ("150", 213),
        ("n/a", 113),
    ],
)
def test_markup_tiers(discount, expected):
    meta = {} if discount is None else {"discount": discount}
    assert MarkupPricing(rate=1).final_price(100, meta) == expected


def test_markup_applies_conversion_rate():
    assert MarkupPricing().final_price(100, {"discount": "25"}) == 20100000


def test_build_pricing_policy():
    assert isinstance(build_pricing_policy("markup"), MarkupPricing)
    assert isinstance(build_pricing_policy("passthrough"), PassthroughPricing)
    assert PassthroughPricing().final_price(12.5) == 12.5


def test_format_price():
    assert format_price(10.0) == "10"
    assert format_price(10.5) == "10.50"
    assert format_price(None) is None
