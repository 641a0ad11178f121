"""
Search over embedded page state (``__NEXT_DATA__``) for colourway and product nodes.

The embedding path differs between page templates, so known paths are tried
first and a bounded-depth shape-matching walk is the fallback.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from core.types import slugify
from utils.logger import get_logger

logger = get_logger(__name__)

MAX_DEPTH = 10

COLOURWAY_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("props", "pageProps", "product", "colourways"),
    ("props", "pageProps", "colourways"),
    ("props", "pageProps", "productData", "colourways"),
    ("query", "product", "colourways"),
)

PRODUCT_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("props", "pageProps", "product"),
    ("props", "pageProps", "productData"),
    ("query", "product"),
    ("props", "pageProps", "initialProduct"),
)

COLOUR_KEYS = ("colour", "color", "label", "colourCode")
ID_KEYS = ("id", "productId", "partNumber", "styleCode", "sku")
NAME_KEYS = ("name", "title", "productName")


def extract_next_data(html_or_soup: Any) -> Optional[Dict[str, Any]]:
    """Parse ``<script id="__NEXT_DATA__" type="application/json">``; None when absent or invalid."""
    soup = (
        html_or_soup
        if isinstance(html_or_soup, BeautifulSoup)
        else BeautifulSoup(html_or_soup or "", "html.parser")
    )
    script = soup.find("script", id="__NEXT_DATA__")
    if script is None:
        return None
    raw = script.string or script.get_text()
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        logger.debug(f"__NEXT_DATA__ is not valid JSON: {exc}")
        return None
    return data if isinstance(data, dict) else None


def get_path(data: Any, path: Sequence[str]) -> Any:
    node = data
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def iter_nodes(
    value: Any,
    max_depth: int = MAX_DEPTH,
    skip_numeric_keys: bool = False,
    _depth: int = 0,
    _path: Tuple[Any, ...] = (),
) -> Iterator[Tuple[Tuple[Any, ...], Any]]:
    """Depth-bounded pre-order walk over dict/list containers.

    With ``skip_numeric_keys`` list elements and digit-string keys are not
    descended into.
    """
    yield _path, value
    if _depth >= max_depth:
        return
    if isinstance(value, dict):
        for key, child in value.items():
            if skip_numeric_keys and str(key).isdigit():
                continue
            if isinstance(child, (dict, list)):
                yield from iter_nodes(child, max_depth, skip_numeric_keys, _depth + 1, _path + (key,))
    elif isinstance(value, list) and not skip_numeric_keys:
        for index, child in enumerate(value):
            if isinstance(child, (dict, list)):
                yield from iter_nodes(child, max_depth, skip_numeric_keys, _depth + 1, _path + (index,))


def colour_of(node: Dict[str, Any]) -> Optional[str]:
    for key in COLOUR_KEYS:
        value = node.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict):
            nested = value.get("label") or value.get("name")
            if isinstance(nested, str) and nested.strip():
                return nested.strip()
    return None


def looks_like_colourway_list(value: Any) -> bool:
    """An array whose first element has an id, a colour-ish field and size/stock variants."""
    if not isinstance(value, list) or not value:
        return False
    first = value[0]
    if not isinstance(first, dict) or "id" not in first:
        return False
    if not any(key in first for key in COLOUR_KEYS):
        return False
    variants = first.get("variants")
    if not isinstance(variants, list) or not variants:
        return False
    variant = variants[0]
    return isinstance(variant, dict) and "size" in variant and "stockAvailability" in variant


def looks_like_flat_variant_list(value: Any) -> bool:
    if not isinstance(value, list) or not value:
        return False
    first = value[0]
    return isinstance(first, dict) and "colour" in first and "size" in first


def group_flat_variants(variants: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Group variants carrying a flat ``colour`` field into synthetic colourway records."""
    grouped: Dict[str, Dict[str, Any]] = {}
    for variant in variants:
        if not isinstance(variant, dict):
            continue
        colour = colour_of(variant)
        if not colour:
            continue
        record = grouped.get(colour)
        if record is None:
            record = {
                "id": f"colour-{slugify(colour)}",
                "label": colour,
                "variants": [],
                "images": [],
            }
            if variant.get("price") is not None:
                record["price"] = variant.get("price")
            grouped[colour] = record
        record["variants"].append(variant)
        for image in variant.get("images") or []:
            if image not in record["images"]:
                record["images"].append(image)
    return list(grouped.values())


def _dedupe_colourways(colourways: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    unique: List[Dict[str, Any]] = []
    for colourway in colourways:
        key = colourway.get("id") or colour_of(colourway)
        if key is None or key in seen:
            continue
        seen.add(key)
        unique.append(colourway)
    return unique


def related_colourways(data: Any, max_depth: int = MAX_DEPTH) -> List[Dict[str, Any]]:
    """Related products that carry their own variants, shaped as colourways."""
    found: List[Dict[str, Any]] = []
    for _, node in iter_nodes(data, max_depth):
        if not isinstance(node, dict) or not isinstance(node.get("relatedProducts"), list):
            continue
        for related in node["relatedProducts"]:
            if not isinstance(related, dict):
                continue
            variants = related.get("variants")
            if not isinstance(variants, list) or not variants:
                continue
            label = colour_of(related) or related.get("name")
            if not label:
                continue
            found.append({**related, "label": label, "variants": variants})
    return found


def find_colourways(data: Any, max_depth: int = MAX_DEPTH) -> List[Dict[str, Any]]:
    """Locate the raw colourway records in embedded page state."""
    if not isinstance(data, (dict, list)):
        return []

    matches: List[Dict[str, Any]] = []
    for path in COLOURWAY_PATHS:
        value = get_path(data, path)
        if looks_like_colourway_list(value):
            logger.debug(f"Colourways found at known path {'.'.join(path)}")
            matches.extend(value)
            break

    if not matches:
        for path, node in iter_nodes(data, max_depth):
            if looks_like_colourway_list(node):
                logger.debug(f"Colourways found by shape at {path}")
                matches.extend(node)

    if not matches:
        for _, node in iter_nodes(data, max_depth):
            if looks_like_flat_variant_list(node):
                matches.extend(group_flat_variants(node))
                break

    if matches:
        matches.extend(related_colourways(data, max_depth))

    return _dedupe_colourways([m for m in matches if isinstance(m, dict)])


def _looks_like_product(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    has_id = any(node.get(key) not in (None, "") for key in ID_KEYS)
    has_name = any(isinstance(node.get(key), str) and node.get(key) for key in NAME_KEYS)
    has_commerce = any(key in node for key in ("colourways", "variants", "price", "prices"))
    return has_id and has_name and has_commerce


def find_current_product(data: Any, max_depth: int = MAX_DEPTH) -> Optional[Dict[str, Any]]:
    """The product node of the page: known paths first, then a dict-only search."""
    if not isinstance(data, dict):
        return None
    for path in PRODUCT_PATHS:
        value = get_path(data, path)
        if isinstance(value, dict) and value:
            return value
    if _looks_like_product(data):
        return data
    for _, node in iter_nodes(data, max_depth, skip_numeric_keys=True):
        if node is not data and _looks_like_product(node):
            return node
    return None
