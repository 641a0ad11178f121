"""Named extraction strategies, resolved lazily by module path."""

from __future__ import annotations

import importlib
from functools import lru_cache
from typing import Dict, Iterable, Optional, Tuple

from core.types import VariantMatrix
from parsers.strategies.interfaces import ExtractionStrategy, SourceDocument
from utils.error_handling import ConfigurationError
from utils.logger import get_logger

logger = get_logger(__name__)


_REGISTRY: Dict[str, str] = {
    "next_data": "parsers.strategies.next_data",
    "side_channel": "parsers.strategies.side_channel",
    "html": "parsers.strategies.html_swatches",
}

DEFAULT_ORDER = ("next_data", "side_channel", "html")


@lru_cache(maxsize=None)
def _load_strategy(path: str) -> ExtractionStrategy:
    module = importlib.import_module(path)
    strategy_cls = getattr(module, "Strategy")
    return strategy_cls()


def available_strategies() -> Tuple[str, ...]:
    return tuple(_REGISTRY)


def get_strategy(name: str) -> ExtractionStrategy:
    if name not in _REGISTRY:
        raise ConfigurationError(
            f"Unknown extraction strategy: {name}", {"available": list(_REGISTRY)}
        )
    return _load_strategy(_REGISTRY[name])


def extract_variant_matrix(
    document: SourceDocument, strategies: Optional[Iterable[str]] = None
) -> Tuple[Optional[str], VariantMatrix]:
    """Run strategies in order; the first one producing a non-empty matrix wins."""
    for name in strategies or DEFAULT_ORDER:
        matrix = get_strategy(name).extract_matrix(document)
        if matrix:
            logger.debug(f"Strategy {name} produced {len(matrix)} colourway(s) for {document.url}")
            return name, matrix
    return None, []
