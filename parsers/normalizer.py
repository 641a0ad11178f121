"""Normalization of raw colourway records into the canonical variant matrix."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin

from core.types import (
    ColorwayVariant,
    ImageRef,
    ProductStatus,
    SizeVariant,
    VariantMatrix,
)
from utils.logger import get_logger

logger = get_logger(__name__)

OUT_OF_STOCK_VALUES = {"", "0", "false", "no", "none", "out_of_stock", "outofstock", "unavailable", "sold_out"}


def clean_price(price_text: str) -> Optional[float]:
    """Parse price text to float with currency and decimal-separator support."""
    if not isinstance(price_text, str) or not price_text.strip():
        return None

    cleaned = re.sub(r"[€$£¥₽\s\xa0]", "", price_text.strip())

    # Comma is a decimal separator in "123,45"; a thousands separator otherwise
    if "," in cleaned and "." not in cleaned:
        parts = cleaned.split(",")
        if len(parts) == 2 and len(parts[1]) <= 2 and parts[1].isdigit():
            cleaned = cleaned.replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "." in cleaned:
        # "12.345" and "1.234.567" use the dot for thousands
        parts = cleaned.split(".")
        if all(part.isdigit() for part in parts) and all(len(part) == 3 for part in parts[1:]):
            cleaned = cleaned.replace(".", "")

    match = re.search(r"(\d+(?:\.\d{1,2})?)", cleaned)
    if not match:
        return None

    price = float(match.group(1))
    if price < 0 or price > 1000000:
        logger.warning("Price out of reasonable range: %f", price)
        return None
    return price


def parse_price_value(value: Any) -> Optional[float]:
    """Numbers, price strings and ``{"price": ..}``/``{"value": ..}`` objects."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    if isinstance(value, str):
        return clean_price(value)
    if isinstance(value, dict):
        for key in ("price", "value", "current", "salePrice", "amount"):
            if key in value:
                parsed = parse_price_value(value[key])
                if parsed is not None:
                    return parsed
    return None


def parse_original_price(value: Any) -> Optional[float]:
    if isinstance(value, dict):
        for key in ("originalPrice", "wasPrice", "initialPrice", "listPrice", "regularPrice"):
            if key in value:
                parsed = parse_price_value(value[key])
                if parsed is not None:
                    return parsed
    return None


def compute_discount(sale: Optional[float], original: Optional[float]) -> Optional[float]:
    """``round(100 * (1 - sale / original), 2)`` when both prices are known and sale < original."""
    if sale is None or original is None or original <= 0 or sale >= original:
        return None
    return round(100 * (1 - sale / original), 2)


def stock_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value > 0
    if isinstance(value, str):
        return value.strip().lower() not in OUT_OF_STOCK_VALUES
    return bool(value)


def image_refs(raw_images: Any, alt_text: Optional[str], base_url: Optional[str]) -> List[ImageRef]:
    refs: List[ImageRef] = []
    if isinstance(raw_images, (str, dict)):
        raw_images = [raw_images]
    for image in raw_images or []:
        url = None
        alt = alt_text
        if isinstance(image, str):
            url = image
        elif isinstance(image, dict):
            url = image.get("url") or image.get("src") or image.get("href")
            alt = image.get("alt") or image.get("altText") or alt_text
        if not isinstance(url, str) or not url:
            continue
        if base_url and not url.startswith(("http://", "https://")):
            url = urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))
        refs.append(ImageRef(url=url, alt_text=alt))
    return refs


def normalize_colourway(
    raw: Dict[str, Any], currency: Optional[str] = None, base_url: Optional[str] = None
) -> Optional[ColorwayVariant]:
    """One raw colourway record to a ColorwayVariant; None without a label."""
    label = raw.get("label") or raw.get("colour") or raw.get("color") or raw.get("colourCode")
    if isinstance(label, dict):
        label = label.get("label") or label.get("name")
    if not isinstance(label, str) or not label.strip():
        return None
    label = label.strip()

    base_price = parse_price_value(raw.get("price"))
    original_price = parse_original_price(raw.get("price"))
    discount = raw.get("discountPercentage")
    if not isinstance(discount, (int, float)) or isinstance(discount, bool):
        discount = compute_discount(base_price, original_price)

    swatch = raw.get("swatchUrl") or raw.get("swatch")
    if isinstance(swatch, dict):
        swatch = swatch.get("url")

    pdp_url = raw.get("pdpUrl") or raw.get("url")
    if isinstance(pdp_url, dict):
        pdp_url = pdp_url.get("url") or pdp_url.get("path")
    if isinstance(pdp_url, str) and base_url and not pdp_url.startswith(("http://", "https://")):
        pdp_url = urljoin(base_url.rstrip("/") + "/", pdp_url.lstrip("/"))

    sizes: List[SizeVariant] = []
    for variant in raw.get("variants") or []:
        if not isinstance(variant, dict):
            continue
        size = variant.get("size")
        if isinstance(size, dict):
            size = size.get("label") or size.get("name")
        if size is None or str(size).strip() == "":
            continue
        sku = variant.get("id") or variant.get("catentryId") or variant.get("sku")
        sizes.append(
            SizeVariant(
                size=str(size).strip(),
                sku=str(sku) if sku not in (None, "") else None,
                stock_available=stock_flag(variant.get("stockAvailability")),
                price=parse_price_value(variant.get("price")),
            )
        )

    return ColorwayVariant(
        colour_label=label,
        swatch_url=swatch if isinstance(swatch, str) else None,
        pdp_url=pdp_url if isinstance(pdp_url, str) else None,
        base_price=base_price,
        currency=currency,
        discount_percentage=discount,
        images=image_refs(raw.get("images"), label, base_url),
        size_variants=sizes,
    )


def normalize_side_channel_variations(
    data: Dict[str, Any], currency: Optional[str] = None, base_url: Optional[str] = None
) -> List[ColorwayVariant]:
    """
    Normalize renderer side-channel data.

    Expected shape, keyed by colour title::

        {"Rainforest Green": {"images": [...], "price": 108, "discount_price": 79,
                              "discount_percent": 27,
                              "sizes": {"available": ["XS"], "unavailable": ["L"]}}}
    """
    colourways: List[ColorwayVariant] = []
    if not isinstance(data, dict):
        return colourways

    for colour_title, colour_data in data.items():
        if not isinstance(colour_data, dict) or not str(colour_title).strip():
            continue
        price = parse_price_value(colour_data.get("price"))
        discount_price = parse_price_value(colour_data.get("discount_price"))
        discount = colour_data.get("discount_percent")
        if not isinstance(discount, (int, float)) or isinstance(discount, bool):
            discount = compute_discount(discount_price, price)

        sizes_data = colour_data.get("sizes") or {}
        available = sizes_data.get("available") if isinstance(sizes_data, dict) else None
        unavailable = sizes_data.get("unavailable") if isinstance(sizes_data, dict) else None

        size_price = discount_price if discount_price is not None else None
        sizes = [
            SizeVariant(size=str(size), stock_available=True, price=size_price)
            for size in (available if isinstance(available, list) else [])
        ] + [
            SizeVariant(size=str(size), stock_available=False, price=size_price)
            for size in (unavailable if isinstance(unavailable, list) else [])
        ]

        colourways.append(
            ColorwayVariant(
                colour_label=str(colour_title).strip(),
                base_price=price,
                currency=currency,
                discount_percentage=discount,
                images=image_refs(colour_data.get("images"), str(colour_title), base_url),
                size_variants=sizes,
            )
        )
    return colourways


def dedupe_images(images: Iterable[ImageRef]) -> List[ImageRef]:
    """First-seen order by URL; the first surviving image is primary."""
    unique: Dict[str, ImageRef] = {}
    for image in images:
        if image.url and image.url not in unique:
            unique[image.url] = ImageRef(
                url=image.url, alt_text=image.alt_text, local_path=image.local_path
            )
    result = list(unique.values())
    if result:
        result[0].primary = True
    return result


def build_variant_matrix(colourways: Iterable[Optional[ColorwayVariant]]) -> VariantMatrix:
    """
    Merge colourways sharing a label into the first one and drop colourways without sizes.
    """
    merged: Dict[str, ColorwayVariant] = {}
    for colourway in colourways:
        if colourway is None:
            continue
        key = colourway.colour_label.strip().lower()
        existing = merged.get(key)
        if existing is None:
            merged[key] = colourway
            continue

        known_sizes = {size.size for size in existing.size_variants}
        for size in colourway.size_variants:
            if size.size not in known_sizes:
                existing.size_variants.append(size)
                known_sizes.add(size.size)
        known_images = {image.url for image in existing.images}
        for image in colourway.images:
            if image.url not in known_images:
                existing.images.append(image)
                known_images.add(image.url)
        for attr in ("base_price", "swatch_url", "pdp_url", "discount_percentage", "currency"):
            if getattr(existing, attr) is None:
                setattr(existing, attr, getattr(colourway, attr))

    matrix: VariantMatrix = []
    for colourway in merged.values():
        if not colourway.size_variants:
            logger.debug(f"Dropping colourway without sizes: {colourway.colour_label}")
            continue
        colourway.images = dedupe_images(colourway.images)
        matrix.append(colourway)
    return matrix


def derive_status(matrix: Optional[VariantMatrix], available: Optional[bool] = None) -> ProductStatus:
    """out_of_stock only when every size is unavailable (or a single SKU is unavailable)."""
    if matrix:
        if any(colourway.has_stock for colourway in matrix):
            return ProductStatus.PUBLISHED
        return ProductStatus.OUT_OF_STOCK
    if available is False:
        return ProductStatus.OUT_OF_STOCK
    return ProductStatus.PUBLISHED
