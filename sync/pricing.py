"""Remote price policies and the name-based shipping weight detector."""

from __future__ import annotations

import re
from typing import Dict, Mapping, Optional, Protocol, Tuple

from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_WEIGHT = 0.3

# keyword -> (min, max) in kg
WEIGHT_TABLE: Dict[str, Tuple[float, float]] = {
    "blazers": (0.9, 1.2),
    "suits": (0.9, 1.2),
    "cardigans": (0.4, 0.7),
    "jumpers": (0.4, 0.7),
    "hoodies": (0.5, 0.8),
    "sweatshirts": (0.5, 0.8),
    "jackets": (1.0, 2.0),
    "coats": (1.0, 2.0),
    "jeans": (0.5, 0.7),
    "pants": (0.4, 0.6),
    "shirts": (0.2, 0.4),
    "shoes": (0.5, 1.0),
    "shorts": (0.2, 0.3),
    "sleepwear": (0.2, 0.5),
    "loungewear": (0.2, 0.5),
    "socks": (0.05, 0.1),
    "sportswear": (0.2, 0.5),
    "swimwear": (0.1, 0.3),
    "tshirts": (0.15, 0.3),
    "t-shirts": (0.15, 0.3),
    "underwear": (0.1, 0.3),
    "foundation": (0.05, 0.15),
    "lipstick": (0.02, 0.05),
    "eye shadow": (0.005, 0.05),
    "eyeshadow": (0.005, 0.05),
    "mascara": (0.02, 0.04),
    "creams": (0.05, 0.25),
    "moisturizers": (0.05, 0.25),
    "moisturiser": (0.05, 0.25),
    "cleansers": (0.05, 0.2),
    "face masks": (0.03, 0.1),
    "shampoo": (0.1, 0.5),
    "conditioner": (0.1, 0.5),
    "hair spray": (0.1, 0.3),
    "gel": (0.1, 0.3),
    "perfume": (0.05, 0.3),
    "cologne": (0.05, 0.3),
    "brushes": (0.005, 0.1),
    "sponges": (0.005, 0.1),
    "trimmers": (0.1, 0.5),
    "epilators": (0.1, 0.5),
}


def _normalize_name(name: str) -> str:
    normalized = re.sub(r"[^a-z0-9\s]", " ", name.lower().strip())
    return re.sub(r"\s+", " ", normalized)


def detect_weight(name: Optional[str], table: Mapping[str, Tuple[float, float]] = WEIGHT_TABLE) -> float:
    """Midpoint of the first keyword range matching ``name`` on word boundaries."""
    if not name:
        return DEFAULT_WEIGHT
    normalized = _normalize_name(name)
    for keyword, (low, high) in table.items():
        pattern = r"\b" + re.escape(_normalize_name(keyword)) + r"\b"
        if re.search(pattern, normalized):
            return round((low + high) / 2, 3)
    return DEFAULT_WEIGHT


class PricingPolicy(Protocol):
    def final_price(self, price: float, meta: Optional[Mapping[str, str]] = None) -> float:
        ...


class PassthroughPricing:
    """Remote price equals the harvested price."""

    def final_price(self, price: float, meta: Optional[Mapping[str, str]] = None) -> float:
        return price


class MarkupPricing:
    """
    Profit tier by the product's discount, plus tax, times a conversion rate.

    Discount 1-30 adds 21 %, 31-60 adds 27 %, 61-99 adds 100 %; without a
    discount no profit is added.
    """

    def __init__(self, rate: float = 150000, tax: float = 0.13):
        self.rate = rate
        self.tax = tax

    @staticmethod
    def _discount(meta: Optional[Mapping[str, str]]) -> int:
        if not meta or meta.get("discount") in (None, ""):
            return 0
        try:
            discount = int(float(meta["discount"]))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric discount {meta.get('discount')!r}")
            return 0
        return max(1, min(99, discount))

    def profit_rate(self, discount: int) -> float:
        if 1 <= discount <= 30:
            return 0.21
        if 31 <= discount <= 60:
            return 0.27
        if 61 <= discount <= 99:
            return 1.0
        return 0.0

    def final_price(self, price: float, meta: Optional[Mapping[str, str]] = None) -> float:
        profit = price * self.profit_rate(self._discount(meta))
        tax = price * self.tax
        return int(round((price + profit + tax) * self.rate))


def build_pricing_policy(name: str, rate: float = 150000) -> PricingPolicy:
    if name == "markup":
        return MarkupPricing(rate=rate)
    return PassthroughPricing()


def format_price(value: Optional[float]) -> Optional[str]:
    """Catalog prices are decimal strings."""
    if value is None:
        return None
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"
