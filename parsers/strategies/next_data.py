from __future__ import annotations

from core.types import VariantMatrix
from parsers.json_search import find_colourways
from parsers.normalizer import build_variant_matrix, normalize_colourway
from parsers.strategies.interfaces import SourceDocument
from utils.logger import get_logger

logger = get_logger(__name__)


class Strategy:
    """Colourways from embedded ``__NEXT_DATA__`` state or a JSON detail payload."""

    name = "next_data"

    def extract_matrix(self, document: SourceDocument) -> VariantMatrix:
        data = document.next_data
        if data is None:
            return []
        raw_colourways = find_colourways(data)
        logger.debug(f"{len(raw_colourways)} raw colourway record(s) in {document.url}")
        return build_variant_matrix(
            normalize_colourway(raw, document.currency, document.base_url)
            for raw in raw_colourways
        )
