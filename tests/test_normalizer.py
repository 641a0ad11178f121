"""Tests for variant matrix normalization."""

import pytest

from core.types import ColorwayVariant, ImageRef, ProductStatus, SizeVariant
from parsers.normalizer import (
    build_variant_matrix,
    clean_price,
    compute_discount,
    dedupe_images,
    derive_status,
    image_refs,
    normalize_colourway,
    normalize_side_channel_variations,
    parse_price_value,
)


def test_size_price_falls_back_to_colourway_base_price():
    colourway = ColorwayVariant(colour_label="Black", base_price=50)
    assert colourway.resolve_price(SizeVariant(size="M")) == 50
    assert colourway.resolve_price(SizeVariant(size="L", price=45)) == 45
    assert ColorwayVariant(colour_label="Red").resolve_price(SizeVariant(size="S")) is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("€ 1.234,56", 1234.56),
        ("£1,234.56", 1234.56),
        ("99,99 €", 99.99),
        ("1,234", 1234.0),
        ("12.345", 12345.0),
        ("€ 1.234.567", 1234567.0),
        ("139.99", 139.99),
        ("free", None),
        ("", None),
    ],
)
def test_clean_price(text, expected):
    assert clean_price(text) == expected


def test_parse_price_value_shapes():
    assert parse_price_value(12) == 12.0
    assert parse_price_value({"current": "€ 19,99"}) == 19.99
    assert parse_price_value(True) is None
    assert parse_price_value(-1) is None


def test_compute_discount():
    assert compute_discount(79, 108) == 26.85
    assert compute_discount(100, 100) is None
    assert compute_discount(None, 100) is None


def test_normalize_colourway_reads_variants():
    raw = {
        "id": "cw-1",
        "label": "Rainforest Green",
        "price": {"current": 79, "originalPrice": 108},
        "pdpUrl": {"path": "/p/align/green"},
        "images": [{"url": "/img/1.jpg", "alt": "Front"}],
        "variants": [
            {"size": "XS", "id": 111, "stockAvailability": "IN_STOCK"},
            {"size": {"label": "S"}, "catentryId": "222", "stockAvailability": "OUT_OF_STOCK", "price": 70},
            {"size": "", "stockAvailability": True},
        ],
    }
    colourway = normalize_colourway(raw, "GBP", "https://shop.example.com")

    assert colourway.colour_slug == "rainforest-green"
    assert colourway.pdp_url == "https://shop.example.com/p/align/green"
    assert colourway.discount_percentage == 26.85
    assert [(s.size, s.sku, s.stock_available, s.price) for s in colourway.size_variants] == [
        ("XS", "111", True, None),
        ("S", "222", False, 70.0),
    ]
    assert colourway.images[0].url == "https://shop.example.com/img/1.jpg"
    assert normalize_colourway({"variants": []}) is None


def test_side_channel_sizes_and_prices():
    data = {
        "Black": {
            "price": 108,
            "discount_price": 79,
            "images": ["https://cdn.example.com/black.jpg"],
            "sizes": {"available": ["4", "6"], "unavailable": ["8"]},
        },
        "": {"sizes": {"available": ["4"]}},
    }
    [colourway] = normalize_side_channel_variations(data, "GBP")

    assert colourway.base_price == 108
    assert colourway.discount_percentage == 26.85
    assert [(s.size, s.stock_available, s.price) for s in colourway.size_variants] == [
        ("4", True, 79.0),
        ("6", True, 79.0),
        ("8", False, 79.0),
    ]


def test_matrix_merges_duplicate_labels_and_drops_sizeless_colourways():
    matrix = build_variant_matrix(
        [
            ColorwayVariant(colour_label="Black", size_variants=[SizeVariant("S")], images=[ImageRef("a")]),
            ColorwayVariant(colour_label="black ", base_price=30, size_variants=[SizeVariant("S"), SizeVariant("M")], images=[ImageRef("a"), ImageRef("b")]),
            ColorwayVariant(colour_label="White"),
            None,
        ]
    )

    assert len(matrix) == 1
    black = matrix[0]
    assert [s.size for s in black.size_variants] == ["S", "M"]
    assert [i.url for i in black.images] == ["a", "b"]
    assert black.base_price == 30
    labels = [c.colour_label.lower() for c in matrix]
    assert len(labels) == len(set(labels))
    assert all(c.size_variants for c in matrix)


def test_dedupe_images_marks_first_primary():
    images = dedupe_images([ImageRef("x"), ImageRef("y"), ImageRef("x"), ImageRef("")])
    assert [(i.url, i.primary) for i in images] == [("x", True), ("y", False)]


def test_derive_status():
    sold_out = [ColorwayVariant(colour_label="A", size_variants=[SizeVariant("S"), SizeVariant("M")])]
    in_stock = [ColorwayVariant(colour_label="A", size_variants=[SizeVariant("S", stock_available=True)])]

    assert derive_status(sold_out) == ProductStatus.OUT_OF_STOCK
    assert derive_status(in_stock) == ProductStatus.PUBLISHED
    assert derive_status(None, available=False) == ProductStatus.OUT_OF_STOCK
    assert derive_status(None, available=None) == ProductStatus.PUBLISHED


def test_image_refs_skip_non_string_urls():
    refs = image_refs(
        [{"url": {"src": "/img/nested.jpg"}}, {"src": "/img/2.jpg", "alt": "Back"}, 7, None],
        "Pant",
        "https://shop.example.com",
    )
    assert [(ref.url, ref.alt_text) for ref in refs] == [("https://shop.example.com/img/2.jpg", "Back")]
