"""
Detail-page extraction into ``CanonicalProduct``.

Embedded JSON state is preferred over HTML when both are present; HTML field
chains fill whatever the JSON did not provide.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from core.types import (
    CanonicalProduct,
    ColorwayVariant,
    ExtractionContext,
    ImageRef,
    slugify,
)
from parsers import html_fields
from parsers.json_search import ID_KEYS, NAME_KEYS, find_current_product
from parsers.normalizer import (
    image_refs,
    dedupe_images,
    derive_status,
    parse_original_price,
    parse_price_value,
    compute_discount,
)
from parsers.registry import DEFAULT_ORDER, extract_variant_matrix
from parsers.strategies.interfaces import SourceDocument
from utils.error_handling import MalformedSourceError
from utils.logger import get_logger

logger = get_logger(__name__)


def _first_str(node: Dict[str, Any], keys) -> Optional[str]:
    for key in keys:
        value = node.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            return html_fields.sanitize_text(str(value))
    return None


class ProductExtractor:
    """Turns one fetched detail page (HTML or JSON) into a canonical product."""

    def __init__(self, strategies: Optional[List[str]] = None):
        self.strategies = list(strategies or DEFAULT_ORDER)

    def extract(
        self, source: Union[str, Dict[str, Any]], context: ExtractionContext
    ) -> CanonicalProduct:
        """
        Raises:
            MalformedSourceError: no external id or title could be recovered
        """
        document = SourceDocument.from_source(source, context)
        node = find_current_product(document.next_data) or {}
        soup = document.soup

        external_id = _first_str(node, ID_KEYS)
        if not external_id and soup is not None:
            external_id = html_fields.extract_external_id(soup, context.url)
        if not external_id:
            raise MalformedSourceError(
                f"No external id recoverable from {context.url}",
                {"url": context.url, "site_id": context.site_id},
            )

        title = _first_str(node, NAME_KEYS)
        if not title and soup is not None:
            title = html_fields.extract_title(soup)
        if not title:
            raise MalformedSourceError(
                f"No title recoverable from {context.url}",
                {"url": context.url, "external_id": external_id},
            )

        description = _first_str(node, ("description", "longDescription", "shortDescription"))
        if not description and soup is not None:
            description = html_fields.extract_description(soup)

        price = parse_price_value(node.get("price") or node.get("prices"))
        original_price = parse_original_price(node.get("price") or node.get("prices"))
        discount: Optional[float] = None
        html_prices: Dict[str, Optional[float]] = {}
        if soup is not None:
            html_prices = html_fields.extract_prices(soup)
            if price is None:
                price = html_prices["price"]
            if original_price is None:
                original_price = html_prices["original_price"]
            discount = html_prices["discount"]
        if discount is None:
            discount = compute_discount(price, original_price)

        strategy_name, matrix = extract_variant_matrix(
            document, context.strategies or self.strategies
        )
        if matrix and price is None:
            price = self._matrix_price(matrix)

        images: List[ImageRef] = []
        for colourway in matrix:
            images.extend(colourway.images)
        images.extend(image_refs(node.get("images") or node.get("media"), title, context.base_url))
        if soup is not None:
            images.extend(html_fields.extract_images(soup, context.base_url))

        availability = html_fields.extract_availability(soup) if soup is not None else None
        if availability is None and "inStock" in node:
            availability = bool(node.get("inStock"))

        meta: Dict[str, str] = {"weblink": context.url}
        brand = _first_str(node, ("brand", "brandName"))
        if not brand and soup is not None:
            brand = html_fields.extract_brand(soup)
        if brand:
            meta["brand"] = brand
        if discount is not None:
            meta["discount"] = f"{discount:g}"
        if soup is not None:
            for key, value in html_fields.extract_attributes(soup).items():
                meta[f"attribute_{slugify(key)}"] = value
        if strategy_name:
            meta["extraction_strategy"] = strategy_name

        product = CanonicalProduct(
            external_id=external_id,
            title=title,
            site_id=context.site_id,
            description=description,
            slug=slugify(title),
            price=price,
            original_price=original_price,
            currency=context.currency,
            status=derive_status(matrix or None, availability),
            images=dedupe_images(images),
            variant_matrix=matrix or None,
            meta=meta,
            source_url=context.url,
        )
        document.release()
        logger.debug(
            f"Extracted {external_id} from {context.url}: "
            f"{len(matrix)} colourway(s), {product.size_variant_count()} size(s)"
        )
        return product

    @staticmethod
    def _matrix_price(matrix: List[ColorwayVariant]) -> Optional[float]:
        prices = [
            colourway.resolve_price(size)
            for colourway in matrix
            for size in colourway.size_variants
        ]
        prices = [p for p in prices if p is not None]
        return min(prices) if prices else None

    @staticmethod
    def colour_page_urls(product: CanonicalProduct) -> Dict[str, str]:
        """``{colour_label: pdp_url}`` for colourways living on their own page."""
        urls: Dict[str, str] = {}
        for colourway in product.variant_matrix or []:
            if colourway.pdp_url and colourway.pdp_url != product.source_url:
                urls[colourway.colour_label] = colourway.pdp_url
        return urls

    @staticmethod
    def apply_colour_page(
        product: CanonicalProduct, colour_label: str, html: str, base_url: Optional[str] = None
    ) -> int:
        """Add a colour page's gallery to its colourway; returns the number of new images."""
        colourway = next(
            (c for c in product.variant_matrix or [] if c.colour_label == colour_label), None
        )
        if colourway is None or not html:
            return 0
        before = len(colourway.images)
        colourway.images = dedupe_images(
            colourway.images + html_fields.extract_images(html, base_url)
        )
        product.images = dedupe_images(
            product.images + [ImageRef(url=i.url, alt_text=i.alt_text) for i in colourway.images]
        )
        return len(colourway.images) - before
