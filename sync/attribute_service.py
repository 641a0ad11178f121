"""
Global attribute and term resolution for variable products.

Resolution order for both attributes and terms: process cache, remote by slug,
remote by name, remote by slug again, create, and after a failed create one
more remote-by-slug check before the error is re-raised.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from core.types import ColorwayVariant, slugify
from utils.error_handling import RemoteCatalogError
from utils.logger import get_logger

logger = get_logger(__name__)

COLOR_ATTRIBUTE = "Color"
SIZE_ATTRIBUTE = "Size"

Lookup = Callable[[], Awaitable[Optional[Dict[str, Any]]]]


class AttributeService:
    """Process-lifetime caches over remote attributes and terms."""

    def __init__(self, client):
        self.client = client
        self.attribute_cache: Dict[str, int] = {}
        self.term_cache: Dict[Tuple[int, str], int] = {}
        self.created_attributes = 0
        self.created_terms = 0

    async def _resolve(
        self,
        kind: str,
        name: str,
        by_slug: Lookup,
        by_name: Lookup,
        create: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> Tuple[int, bool]:
        """Return ``(remote_id, created)`` following the lookup chain."""
        for step, lookup in (("slug", by_slug), ("name", by_name), ("slug recheck", by_slug)):
            found = await lookup()
            if found:
                logger.debug(f"Found existing {kind} '{name}' by {step}: #{found['id']}")
                return int(found["id"]), False

        logger.info(f"{kind.capitalize()} '{name}' does not exist, creating")
        try:
            created = await create()
        except RemoteCatalogError as exc:
            logger.warning(f"Creating {kind} '{name}' failed, performing final slug check: {exc}")
            found = await by_slug()
            if found:
                return int(found["id"]), False
            logger.error(f"Failed to create or find {kind} '{name}' after all checks")
            raise
        return int(created["id"]), True

    async def get_or_create_attribute(self, name: str, slug: Optional[str] = None) -> int:
        if name in self.attribute_cache:
            return self.attribute_cache[name]

        slug = slug or slugify(name)
        attribute_id, created = await self._resolve(
            "attribute",
            name,
            by_slug=lambda: self.client.get_attribute_by_slug(slug),
            by_name=lambda: self.client.get_attribute_by_name(name),
            create=lambda: self.client.create_attribute(
                name, slug=slug, type="select", order_by="menu_order"
            ),
        )
        if created:
            self.created_attributes += 1
        self.attribute_cache[name] = attribute_id
        return attribute_id

    async def get_or_create_term(self, attribute_id: int, term_name: str) -> str:
        """Ensure the term exists; returns the term name used in variation payloads."""
        key = (attribute_id, term_name)
        if key in self.term_cache:
            return term_name

        slug = slugify(term_name)
        term_id, created = await self._resolve(
            "term",
            term_name,
            by_slug=lambda: self.client.get_term_by_slug(attribute_id, slug),
            by_name=lambda: self.client.get_term_by_name(attribute_id, term_name),
            create=lambda: self.client.create_term(attribute_id, term_name, slug),
        )
        if created:
            self.created_terms += 1
        self.term_cache[key] = term_id
        return term_name

    async def ensure_terms(self, attribute_id: int, names: Iterable[str]) -> List[str]:
        return [await self.get_or_create_term(attribute_id, name) for name in names]

    async def prepare_product_attributes(
        self, colours: Iterable[str], sizes: Iterable[str]
    ) -> List[Dict[str, Any]]:
        """Color and Size entries for a variable product payload."""
        colours = list(dict.fromkeys(c for c in colours if c))
        sizes = list(dict.fromkeys(s for s in sizes if s))

        attributes: List[Dict[str, Any]] = []
        for name, options in ((COLOR_ATTRIBUTE, colours), (SIZE_ATTRIBUTE, sizes)):
            if not options:
                continue
            attribute_id = await self.get_or_create_attribute(name)
            attributes.append(
                {
                    "id": attribute_id,
                    "position": len(attributes),
                    "visible": True,
                    "variation": True,
                    "options": await self.ensure_terms(attribute_id, options),
                }
            )
        return attributes

    async def attributes_for_matrix(self, matrix: Iterable[ColorwayVariant]) -> List[Dict[str, Any]]:
        matrix = list(matrix)
        return await self.prepare_product_attributes(
            (colourway.colour_label for colourway in matrix),
            (size.size for colourway in matrix for size in colourway.size_variants),
        )
