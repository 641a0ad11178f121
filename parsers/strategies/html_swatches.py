from __future__ import annotations

from typing import List, Optional

from core.types import ColorwayVariant, SizeVariant, VariantMatrix
from parsers import html_fields
from parsers.normalizer import build_variant_matrix
from parsers.strategies.interfaces import SourceDocument

SELECTED_COLOUR_SELECTORS = [
    '[data-testid="selected-colour"]',
    '[data-testid="colour-name"]',
    ".selected-color",
    ".colour-name",
]
SWATCH_SELECTORS = ['[data-testid="colour-swatch"]', ".color-swatch", ".swatch[data-colour]"]
SIZE_SELECTORS = ['[data-testid="size-button"]', ".size-selector button", "button[data-size]"]


def _selected_swatch_label(document: SourceDocument) -> Optional[str]:
    soup = document.soup
    for selector in SWATCH_SELECTORS:
        for swatch in soup.select(selector):
            selected = (
                swatch.get("aria-checked") == "true"
                or swatch.get("aria-pressed") == "true"
                or "selected" in (swatch.get("class") or [])
            )
            if selected:
                label = swatch.get("data-colour") or swatch.get("aria-label") or swatch.get("title")
                if label:
                    return html_fields.sanitize_text(label)
    return None


def _sizes(document: SourceDocument) -> List[SizeVariant]:
    sizes: List[SizeVariant] = []
    seen = set()
    for selector in SIZE_SELECTORS:
        for button in document.soup.select(selector):
            size = button.get("data-size") or button.get_text(" ", strip=True)
            size = html_fields.sanitize_text(size)
            if not size or size in seen:
                continue
            seen.add(size)
            unavailable = (
                button.has_attr("disabled")
                or button.get("aria-disabled") == "true"
                or "unavailable" in " ".join(button.get("class") or [])
            )
            sizes.append(SizeVariant(size=size, sku=button.get("data-sku"), stock_available=not unavailable))
        if sizes:
            break
    return sizes


class Strategy:
    """Single colourway from the rendered DOM: the selected swatch and its size buttons."""

    name = "html"

    def extract_matrix(self, document: SourceDocument) -> VariantMatrix:
        if document.soup is None:
            return []
        label = _selected_swatch_label(document) or html_fields.first_text(
            document.soup, SELECTED_COLOUR_SELECTORS
        )
        sizes = _sizes(document)
        if not label or not sizes:
            return []
        prices = html_fields.extract_prices(document.soup)
        colourway = ColorwayVariant(
            colour_label=label,
            base_price=prices["price"],
            currency=document.currency,
            discount_percentage=prices["discount"],
            images=html_fields.extract_images(document.soup, document.base_url),
            size_variants=sizes,
        )
        return build_variant_matrix([colourway])
