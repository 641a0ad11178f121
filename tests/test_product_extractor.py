"""Tests for detail-page extraction into canonical products."""

import json

import pytest

from core.types import ExtractionContext, ProductStatus
from parsers.product_extractor import ProductExtractor
from parsers.registry import available_strategies, get_strategy
from utils.error_handling import ConfigurationError, MalformedSourceError

URL = "https://shop.example.com/t/pegasus-41/FD2722"


def next_data_page(black_stock=("IN_STOCK", "OUT_OF_STOCK"), white_stock="OUT_OF_STOCK", extra_html=""):
    state = {
        "props": {
            "pageProps": {
                "product": {
                    "id": "FD2722",
                    "name": "Pegasus 41",
                    "description": "Road running shoe",
                    "brand": "Nike",
                    "price": {"current": 99.99, "originalPrice": 129.99},
                    "colourways": [
                        {
                            "id": "FD2722-001",
                            "label": "Black",
                            "pdpUrl": {"url": "https://shop.example.com/t/pegasus-41/FD2722-001"},
                            "images": [{"url": "https://cdn.example.com/black-1.jpg"}],
                            "variants": [
                                {"size": "42", "id": "sku-42", "stockAvailability": black_stock[0]},
                                {"size": "43", "id": "sku-43", "stockAvailability": black_stock[1]},
                            ],
                        },
                        {
                            "id": "FD2722-100",
                            "label": "White",
                            "price": {"current": 89.99},
                            "images": [{"url": "https://cdn.example.com/white-1.jpg"}],
                            "variants": [
                                {"size": "44", "id": "sku-44", "stockAvailability": white_stock},
                            ],
                        },
                    ],
                }
            }
        }
    }
    return (
        "<html><head>"
        f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(state)}</script>'
        "</head><body>"
        '<div class="product-gallery"><img src="https://cdn.example.com/gallery.jpg"></div>'
        f"{extra_html}</body></html>"
    )


def context(**kwargs):
    options = {"url": URL, "site_id": "demo", "base_url": "https://shop.example.com", "currency": "EUR"}
    options.update(kwargs)
    return ExtractionContext(**options)


def test_two_colourways_yield_three_size_variants():
    product = ProductExtractor().extract(next_data_page(), context())

    assert product.external_id == "FD2722"
    assert product.title == "Pegasus 41"
    assert product.slug == "pegasus-41"
    assert product.is_variable
    assert [c.colour_label for c in product.variant_matrix] == ["Black", "White"]
    assert product.size_variant_count() == 3
    assert product.status == ProductStatus.PUBLISHED
    assert product.price == 99.99
    assert product.original_price == 129.99
    assert product.meta["brand"] == "Nike"
    assert product.meta["discount"] == "23.08"
    assert product.meta["extraction_strategy"] == "next_data"
    assert product.meta["weblink"] == URL


def test_out_of_stock_only_when_every_size_is_unavailable():
    sold_out = ProductExtractor().extract(
        next_data_page(black_stock=("OUT_OF_STOCK", "OUT_OF_STOCK")), context()
    )
    one_left = ProductExtractor().extract(
        next_data_page(black_stock=("OUT_OF_STOCK", "OUT_OF_STOCK"), white_stock="IN_STOCK"), context()
    )

    assert sold_out.status == ProductStatus.OUT_OF_STOCK
    assert one_left.status == ProductStatus.PUBLISHED


def test_images_are_deduplicated_with_colourway_images_first():
    product = ProductExtractor().extract(next_data_page(), context())
    urls = [image.url for image in product.images]

    assert urls == [
        "https://cdn.example.com/black-1.jpg",
        "https://cdn.example.com/white-1.jpg",
        "https://cdn.example.com/gallery.jpg",
    ]
    assert product.images[0].primary


def test_json_payload_source():
    payload = {
        "id": "LW5",
        "name": "Align Pant",
        "price": 98,
        "colourways": [
            {"id": "c1", "label": "Navy", "variants": [{"size": "4", "stockAvailability": True}]}
        ],
    }
    product = ProductExtractor().extract(payload, context())

    assert product.external_id == "LW5"
    assert product.size_variant_count() == 1
    assert product.price == 98


def test_nested_image_objects_are_skipped():
    payload = {
        "id": "LW6",
        "name": "Define Jacket",
        "colourways": [
            {
                "id": "c1",
                "label": "Black",
                "images": [
                    {"url": {"src": "https://cdn.example.com/nested.jpg"}},
                    {"url": "https://cdn.example.com/black.jpg"},
                ],
                "variants": [{"size": "6", "stockAvailability": True}],
            }
        ],
    }
    product = ProductExtractor().extract(payload, context())

    assert [image.url for image in product.variant_matrix[0].images] == ["https://cdn.example.com/black.jpg"]
    assert product.size_variant_count() == 1


def test_side_channel_strategy_for_rendered_pages():
    html = '<html><body><h1>Align Pant</h1><div data-product-id="prod101"></div></body></html>'
    side_channel = {
        "COLOR_VARIATIONS": {
            "Rainforest Green": {
                "price": 108,
                "discount_price": 79,
                "images": ["https://cdn.example.com/green.jpg"],
                "sizes": {"available": ["4"], "unavailable": ["6"]},
            }
        }
    }
    product = ProductExtractor().extract(html, context(side_channel=side_channel))

    assert product.meta["extraction_strategy"] == "side_channel"
    assert product.external_id == "prod101"
    assert product.price == 79
    assert [(s.size, s.stock_available) for s in product.variant_matrix[0].size_variants] == [
        ("4", True),
        ("6", False),
    ]


def test_html_swatch_strategy():
    html = """
    <h1>Trail Jacket</h1>
    <span class="price">€ 120,00</span>
    <button class="color-swatch" data-colour="Olive" aria-checked="true"></button>
    <button data-testid="size-button" data-size="S" data-sku="J-S">S</button>
    <button data-testid="size-button" data-size="M" disabled>M</button>
    """
    product = ProductExtractor().extract(html, context(url="https://shop.example.com/p/trail-jacket/TJ1"))

    assert product.external_id == "TJ1"
    assert product.meta["extraction_strategy"] == "html"
    [colourway] = product.variant_matrix
    assert colourway.colour_label == "Olive"
    assert colourway.base_price == 120.0
    assert [(s.size, s.sku, s.stock_available) for s in colourway.size_variants] == [
        ("S", "J-S", True),
        ("M", None, False),
    ]


def test_page_without_variants_becomes_simple_product():
    html = '<h1>Gift Card</h1><span class="price">€ 25</span><button class="add-to-cart" disabled>Buy</button>'
    product = ProductExtractor().extract(html, context(url="https://shop.example.com/p/gift/GC25"))

    assert not product.is_variable
    assert product.price == 25.0
    assert product.status == ProductStatus.OUT_OF_STOCK


def test_missing_external_id_or_title_is_malformed():
    with pytest.raises(MalformedSourceError):
        ProductExtractor().extract("<html><h1>Nameless</h1></html>", context(url="https://shop.example.com/"))
    with pytest.raises(MalformedSourceError):
        ProductExtractor().extract("<html></html>", context(url="https://shop.example.com/p/x/ID1"))


def test_colour_pages_add_images_to_their_colourway():
    product = ProductExtractor().extract(next_data_page(), context())
    pages = ProductExtractor.colour_page_urls(product)
    assert pages == {"Black": "https://shop.example.com/t/pegasus-41/FD2722-001"}

    colour_html = '<div class="product-gallery"><img src="/img/black-2.jpg"><img src="https://cdn.example.com/black-1.jpg"></div>'
    added = ProductExtractor.apply_colour_page(product, "Black", colour_html, "https://shop.example.com")

    assert added == 1
    assert "https://shop.example.com/img/black-2.jpg" in [i.url for i in product.images]


def test_strategy_registry():
    assert available_strategies() == ("next_data", "side_channel", "html")
    assert get_strategy("html") is get_strategy("html")
    with pytest.raises(ConfigurationError):
        get_strategy("xpath")
