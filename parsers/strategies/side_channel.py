from __future__ import annotations

from core.types import VariantMatrix
from parsers.normalizer import build_variant_matrix, normalize_side_channel_variations
from parsers.strategies.interfaces import SourceDocument


class Strategy:
    """Per-colour data relayed by the renderer after clicking through swatches."""

    name = "side_channel"

    def extract_matrix(self, document: SourceDocument) -> VariantMatrix:
        colourways = []
        for block in document.side_channel.values():
            if isinstance(block, dict):
                colourways.extend(
                    normalize_side_channel_variations(block, document.currency, document.base_url)
                )
        return build_variant_matrix(colourways)
