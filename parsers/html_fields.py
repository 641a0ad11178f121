"""
Field-level extraction from detail-page HTML.

Every field is an explicit chain of selectors ending in a generic heuristic.
A field that cannot be found degrades to None (or an empty collection); nothing
here raises on unexpected markup.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

from core.types import ImageRef
from parsers.normalizer import clean_price, compute_discount
from utils.logger import get_logger

logger = get_logger(__name__)

EUR_PRICE_PATTERN = re.compile(r"€\s*([\d,]+\.?\d*)")
PERCENT_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")

MIN_HTML_PRICE = 0.01
MAX_HTML_PRICE = 10000.0

TITLE_SELECTORS = ["h1", 'meta[property="og:title"]', "title"]
DESCRIPTION_SELECTORS = [
    'meta[name="description"]',
    'meta[property="og:description"]',
    '[data-testid="product-description"]',
    ".product-description",
    "#description",
]
CURRENT_PRICE_SELECTORS = [
    '[data-testid="currentPrice-container"]',
    '[data-testid="price"]',
    ".price",
]
ORIGINAL_PRICE_SELECTORS = [
    '[data-testid="initialPrice-container"]',
    "s",
    "del",
]
DISCOUNT_SELECTORS = ['[data-testid="OfferPercentage"]']
GALLERY_IMAGE_SELECTORS = [
    '[data-testid="product-gallery"] img',
    ".product-gallery img",
    ".pdp-images img",
    "picture img",
]
ADD_TO_BAG_SELECTORS = [
    'button[data-testid="add-to-bag"]',
    'button[name="add-to-cart"]',
    "button.add-to-cart",
    "button.add-to-bag",
]
ACCORDION_SELECTORS = ["details", '[data-testid="accordion-item"]', ".accordion-item"]
BRAND_SELECTORS = ['meta[property="product:brand"]', '[itemprop="brand"]', '[data-testid="brand"]']
PRODUCT_ID_ATTRIBUTES = ("data-product-id", "data-productid", "data-pid", "data-style-code")
OUT_OF_STOCK_MARKERS = ("out of stock", "sold out", "agotado", "currently unavailable")

Soup = Union[str, BeautifulSoup]


def as_soup(html: Soup) -> BeautifulSoup:
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html or "", "html.parser")


def sanitize_text(text: Optional[str]) -> str:
    """Remove control characters and normalize whitespace."""
    if not isinstance(text, str):
        return ""
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f]", " ", text)
    return re.sub(r"\s+", " ", sanitized).strip()


def _node_value(element: Tag) -> Optional[str]:
    if element.name == "meta":
        value = element.get("content")
    else:
        value = element.get_text(" ", strip=True)
    value = sanitize_text(value) if isinstance(value, str) else ""
    return value or None


def first_text(soup: BeautifulSoup, selectors: List[str]) -> Optional[str]:
    """Text (or meta content) of the first selector that yields a non-empty value."""
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        value = _node_value(element)
        if value:
            return value
    return None


def parse_eur_price(text: Optional[str]) -> Optional[float]:
    """Price from '€ 1,234.50'-style text, falling back to locale-aware parsing."""
    if not text:
        return None
    match = EUR_PRICE_PATTERN.search(text)
    if match:
        price = clean_price(match.group(1))
        if price is not None:
            return price
    return clean_price(text)


def _valid_html_price(price: Optional[float]) -> Optional[float]:
    if price is None:
        return None
    if not MIN_HTML_PRICE <= price <= MAX_HTML_PRICE:
        logger.debug(f"Discarding HTML price outside {MIN_HTML_PRICE}..{MAX_HTML_PRICE}: {price}")
        return None
    return price


def price_from(soup: BeautifulSoup, selectors: List[str]) -> Optional[float]:
    for selector in selectors:
        for element in soup.select(selector):
            price = _valid_html_price(parse_eur_price(_node_value(element)))
            if price is not None:
                return price
    return None


# ---------------------------------------------------------------------------
# JSON-LD heuristic
# ---------------------------------------------------------------------------


def json_ld_product(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    """The first schema.org Product object from ld+json scripts."""
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        candidates = data if isinstance(data, list) else [data]
        for candidate in candidates:
            if isinstance(candidate, dict) and isinstance(candidate.get("@graph"), list):
                candidates.extend(candidate["@graph"])
                continue
            if isinstance(candidate, dict) and candidate.get("@type") in ("Product", ["Product"]):
                return candidate
    return None


def _json_ld_offer(product: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not product:
        return {}
    offers = product.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    return offers if isinstance(offers, dict) else {}


# ---------------------------------------------------------------------------
# Field chains
# ---------------------------------------------------------------------------


def extract_title(html: Soup) -> Optional[str]:
    soup = as_soup(html)
    title = first_text(soup, TITLE_SELECTORS)
    if title:
        return title
    product = json_ld_product(soup)
    if product and isinstance(product.get("name"), str):
        return sanitize_text(product["name"]) or None
    return None


def extract_description(html: Soup) -> Optional[str]:
    soup = as_soup(html)
    description = first_text(soup, DESCRIPTION_SELECTORS)
    if description:
        return description
    product = json_ld_product(soup)
    if product and isinstance(product.get("description"), str):
        return sanitize_text(product["description"]) or None
    return None


def extract_prices(html: Soup) -> Dict[str, Optional[float]]:
    """
    Current, original and discount values.

    The discount is read from the offer badge, otherwise derived from the
    original/current pair.
    """
    soup = as_soup(html)
    current = price_from(soup, CURRENT_PRICE_SELECTORS)
    original = price_from(soup, ORIGINAL_PRICE_SELECTORS)

    if current is None:
        offer = _json_ld_offer(json_ld_product(soup))
        raw = offer.get("price")
        current = _valid_html_price(
            float(raw) if isinstance(raw, (int, float)) else parse_eur_price(str(raw)) if raw else None
        )

    if original is not None and current is not None and original <= current:
        original = None

    discount: Optional[float] = None
    badge = first_text(soup, DISCOUNT_SELECTORS)
    if badge:
        match = PERCENT_PATTERN.search(badge)
        if match:
            discount = float(match.group(1).replace(",", "."))
    if discount is None:
        discount = compute_discount(current, original)

    return {"price": current, "original_price": original, "discount": discount}


def _absolute(url: str, base_url: Optional[str]) -> str:
    if url.startswith("//"):
        return "https:" + url
    if base_url and not url.startswith(("http://", "https://")):
        return urljoin(base_url.rstrip("/") + "/", url)
    return url


def extract_images(html: Soup, base_url: Optional[str] = None) -> List[ImageRef]:
    """``og:image`` first, then gallery images; duplicates keep first position."""
    soup = as_soup(html)
    alt_default = extract_title(soup)
    images: List[ImageRef] = []
    seen = set()

    def _add(url: Optional[str], alt: Optional[str]) -> None:
        if not url or url.startswith("data:"):
            return
        absolute = _absolute(url.strip(), base_url)
        if absolute in seen:
            return
        seen.add(absolute)
        images.append(ImageRef(url=absolute, alt_text=alt or alt_default))

    og_image = soup.select_one('meta[property="og:image"]')
    if og_image is not None:
        _add(og_image.get("content"), None)

    for selector in GALLERY_IMAGE_SELECTORS:
        for img in soup.select(selector):
            srcset = img.get("srcset") or ""
            candidate = img.get("src") or img.get("data-src") or (srcset.split(",")[0].split(" ")[0] if srcset else None)
            _add(candidate, img.get("alt"))

    if not images:
        product = json_ld_product(soup)
        raw = product.get("image") if product else None
        for url in raw if isinstance(raw, list) else [raw]:
            if isinstance(url, str):
                _add(url, None)

    if images:
        images[0].primary = True
    return images


def extract_availability(html: Soup) -> Optional[bool]:
    """False on out-of-stock markers or a disabled add-to-bag button; None when unknown."""
    soup = as_soup(html)
    for selector in ADD_TO_BAG_SELECTORS:
        button = soup.select_one(selector)
        if button is None:
            continue
        if button.has_attr("disabled") or button.get("aria-disabled") == "true":
            return False
        return True

    text = soup.get_text(" ", strip=True).lower()
    if any(marker in text for marker in OUT_OF_STOCK_MARKERS):
        return False

    availability = _json_ld_offer(json_ld_product(soup)).get("availability")
    if isinstance(availability, str):
        return "instock" in availability.lower().replace("_", "")
    return None


def extract_attributes(html: Soup) -> Dict[str, str]:
    """Accordion sections as ``{heading: body text}``."""
    soup = as_soup(html)
    attributes: Dict[str, str] = {}
    for selector in ACCORDION_SELECTORS:
        for section in soup.select(selector):
            heading = section.find(["summary", "h2", "h3", "button"])
            if heading is None:
                continue
            key = sanitize_text(heading.get_text(" ", strip=True))
            full = sanitize_text(section.get_text(" ", strip=True))
            value = full[len(key):].strip() if full.startswith(key) else full
            if key and value and key not in attributes:
                attributes[key] = value
        if attributes:
            break
    return attributes


def extract_brand(html: Soup) -> Optional[str]:
    soup = as_soup(html)
    brand = first_text(soup, BRAND_SELECTORS)
    if brand:
        return brand
    product = json_ld_product(soup)
    raw = product.get("brand") if product else None
    if isinstance(raw, dict):
        raw = raw.get("name")
    return sanitize_text(raw) or None if isinstance(raw, str) else None


def extract_external_id(html: Soup, url: Optional[str] = None) -> Optional[str]:
    """Product-id data attributes, then JSON-LD sku, then the last URL path segment."""
    soup = as_soup(html)
    for attribute in PRODUCT_ID_ATTRIBUTES:
        element = soup.find(attrs={attribute: True})
        if element is not None and str(element.get(attribute)).strip():
            return str(element.get(attribute)).strip()

    product = json_ld_product(soup)
    if product:
        for key in ("sku", "productID", "mpn"):
            value = product.get(key)
            if isinstance(value, (str, int)) and str(value).strip():
                return str(value).strip()

    if url:
        segments = [segment for segment in urlsplit(url).path.split("/") if segment]
        if segments:
            return re.sub(r"\.html?$", "", segments[-1]) or None
    return None
