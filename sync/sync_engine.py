"""
Idempotent upsert of canonical products into the remote catalog.

Per product: ``NEW -> CREATING -> SYNCED|FAILED`` when no remote id is
mapped yet, ``EXISTING -> UPDATING -> SYNCED|FAILED`` otherwise.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from core.types import (
    CanonicalProduct,
    ColorwayVariant,
    ImageRef,
    ProductStatus,
    SizeVariant,
    SyncMapping,
    SyncState,
    SyncStatus,
)
from sync.attribute_service import COLOR_ATTRIBUTE, SIZE_ATTRIBUTE, AttributeService
from sync.pricing import PassthroughPricing, PricingPolicy, detect_weight, format_price
from utils.error_handling import RemoteCatalogError, describe_exception
from utils.logger import get_logger

logger = get_logger(__name__)

STATUS_MAP = {
    "published": "publish",
    "active": "publish",
    ProductStatus.OUT_OF_STOCK.value: "publish",
    "draft": "draft",
    "archived": "private",
}

COLOUR_ATTRIBUTE_NAMES = ("color", "colour")
SIZE_ATTRIBUTE_NAMES = ("size",)


def map_status(status: Any) -> str:
    value = status.value if isinstance(status, ProductStatus) else str(status or "")
    return STATUS_MAP.get(value.lower(), "draft")


def variation_key(colour: str, size: str) -> str:
    return f"{colour.strip().lower()}|{size.strip().lower()}"


def remote_variation_key(variation: Dict[str, Any]) -> Optional[str]:
    colour = size = None
    for attribute in variation.get("attributes") or []:
        name = str(attribute.get("name", "")).strip().lower().replace("pa_", "")
        if name in COLOUR_ATTRIBUTE_NAMES:
            colour = attribute.get("option")
        elif name in SIZE_ATTRIBUTE_NAMES:
            size = attribute.get("option")
    if colour is None or size is None:
        return None
    return variation_key(str(colour), str(size))


def fallback_sku(external_id: str, colour_label: str, size: str) -> str:
    return f"{external_id}-{colour_label[:3].upper()}-{size}"


class SyncEngine:
    """Maps canonical products and their variant matrix onto catalog objects."""

    def __init__(
        self,
        client,
        attribute_service: AttributeService,
        mapping_store,
        pricing: Optional[PricingPolicy] = None,
        default_category: Optional[str] = None,
        storage_root: str = "data/storage",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.client = client
        self.attributes = attribute_service
        self.mapping_store = mapping_store
        self.pricing = pricing or PassthroughPricing()
        self.default_category = default_category
        self.storage_root = Path(storage_root)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._category_cache: Dict[str, int] = {}
        self._media_cache: Dict[str, int] = {}
        self.stats = {
            "created": 0,
            "updated": 0,
            "failed": 0,
            "variations_created": 0,
            "variations_updated": 0,
            "variations_failed": 0,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def sync(self, product: CanonicalProduct, site_name: Optional[str] = None) -> SyncMapping:
        """
        Create or update ``product`` remotely and record the outcome.

        Remote errors are recorded on the returned mapping (status FAILED with
        the error and trace in the snapshot) rather than raised.
        """
        mapping = self.mapping_store.get(product.site_id, product.external_id) or SyncMapping(
            site_id=product.site_id, external_id=product.external_id
        )
        mapping.state = SyncState.EXISTING if mapping.remote_product_id else SyncState.NEW
        operation = "update" if mapping.state == SyncState.EXISTING else "create"

        try:
            payload = await self.build_payload(product, site_name)
            if mapping.state == SyncState.NEW:
                mapping.state = SyncState.CREATING
                response = await self.client.create_product(payload)
            else:
                mapping.state = SyncState.UPDATING
                response = await self.client.update_product(mapping.remote_product_id, payload)

            remote_id = int(response["id"])
            mapping.remote_product_id = remote_id
            variation_stats = {}
            if product.is_variable:
                variation_stats = await self.reconcile_variations(remote_id, product)
        except (RemoteCatalogError, KeyError, TypeError, ValueError) as exc:
            logger.error(f"Sync failed for {product.site_id}/{product.external_id}: {exc}")
            snapshot = describe_exception(exc)
            snapshot["operation"] = operation
            if isinstance(exc, RemoteCatalogError):
                snapshot["status_code"] = exc.status_code
                snapshot["body"] = str(exc.body)[:2000] if exc.body is not None else None
            mapping.state = SyncState.FAILED
            mapping.last_sync_status = SyncStatus.FAILED
            mapping.last_payload_snapshot = snapshot
            mapping.last_synced_at = self._clock()
            self.stats["failed"] += 1
            self.mapping_store.save(mapping)
            return mapping

        mapping.state = SyncState.SYNCED
        mapping.last_sync_status = SyncStatus.SUCCESS
        mapping.last_synced_at = self._clock()
        mapping.last_payload_snapshot = {
            "operation": operation,
            "payload": payload,
            "variations": variation_stats,
        }
        self.stats["created" if operation == "create" else "updated"] += 1
        self.mapping_store.save(mapping)
        logger.info(
            f"{operation.capitalize()}d {product.site_id}/{product.external_id} as #{mapping.remote_product_id}"
        )
        return mapping

    # ------------------------------------------------------------------
    # Product payload
    # ------------------------------------------------------------------

    def _price(self, price: Optional[float], product: CanonicalProduct) -> Optional[str]:
        if price is None:
            return None
        return format_price(self.pricing.final_price(price, product.meta))

    async def build_payload(self, product: CanonicalProduct, site_name: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": product.title,
            "description": product.meta.get("description_translated") or product.description or "",
            "type": "variable" if product.is_variable else "simple",
            "status": map_status(product.status),
            "sku": product.external_id,
            "weight": str(detect_weight(product.title)),
        }
        if product.slug:
            payload["slug"] = product.slug

        if product.is_variable:
            payload["manage_stock"] = False
            payload["attributes"] = await self.attributes.attributes_for_matrix(product.variant_matrix)
        else:
            regular_price = self._price(product.price, product)
            if regular_price is not None:
                payload["regular_price"] = regular_price
            payload["stock_status"] = (
                "outofstock" if product.status == ProductStatus.OUT_OF_STOCK else "instock"
            )

        images = await self.build_images(product)
        if images:
            payload["images"] = images

        category_name = self.default_category or site_name
        if category_name:
            payload["categories"] = [{"id": await self.ensure_category(category_name)}]

        meta = dict(product.meta)
        if product.source_url:
            meta["weblink"] = product.source_url
        payload["meta_data"] = [{"key": key, "value": value} for key, value in meta.items()]
        return payload

    async def ensure_category(self, name: str) -> int:
        key = name.strip().lower()
        if key in self._category_cache:
            return self._category_cache[key]
        category = await self.client.get_category_by_name(name)
        if category is None:
            logger.info(f"Creating category '{name}'")
            category = await self.client.create_category(name)
        self._category_cache[key] = int(category["id"])
        return self._category_cache[key]

    async def _upload(self, image: ImageRef, alt_text: str) -> Optional[int]:
        if not image.local_path:
            return None
        if image.local_path in self._media_cache:
            return self._media_cache[image.local_path]
        path = self.storage_root / image.local_path
        if not path.is_file():
            logger.warning(f"Local image missing, using source URL: {path}")
            return None
        try:
            media = await self.client.upload_media(str(path), alt_text)
        except RemoteCatalogError as exc:
            logger.warning(f"Image upload failed for {path}: {exc}")
            return None
        self._media_cache[image.local_path] = int(media["id"])
        return self._media_cache[image.local_path]

    async def build_images(self, product: CanonicalProduct) -> List[Dict[str, Any]]:
        """Uploaded media ids where a local copy exists, source URLs otherwise."""
        images: List[Dict[str, Any]] = []
        for position, image in enumerate(product.images):
            alt = image.alt_text or product.title
            media_id = await self._upload(image, alt)
            entry: Dict[str, Any] = {"id": media_id} if media_id else {"src": image.url}
            entry["alt"] = alt
            entry["position"] = position
            images.append(entry)
        return images

    # ------------------------------------------------------------------
    # Variations
    # ------------------------------------------------------------------

    async def _colour_image(
        self, colourway: ColorwayVariant, product: CanonicalProduct, cache: Dict[str, Optional[int]]
    ) -> Optional[int]:
        key = colourway.colour_label.strip().lower()
        if key in cache:
            return cache[key]
        local = next((image for image in colourway.images if image.local_path), None)
        media_id = None
        if local is not None:
            media_id = await self._upload(local, f"{product.title} - {colourway.colour_label}")
        # another colourway may have filled the slot while the upload was in flight
        if cache.get(key) is None:
            cache[key] = media_id
        return cache[key]

    def build_variation_payload(
        self,
        product: CanonicalProduct,
        colourway: ColorwayVariant,
        size: SizeVariant,
        colour_attribute_id: int,
        size_attribute_id: int,
        image_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        price = colourway.resolve_price(size)
        if price is None:
            price = product.price
        payload: Dict[str, Any] = {
            "attributes": [
                {"id": colour_attribute_id, "option": colourway.colour_label},
                {"id": size_attribute_id, "option": size.size},
            ],
            "sku": size.sku or fallback_sku(product.external_id, colourway.colour_label, size.size),
            "manage_stock": True,
            "stock_quantity": 1 if size.stock_available else 0,
            "stock_status": "instock" if size.stock_available else "outofstock",
            "weight": str(detect_weight(product.title)),
        }
        regular_price = self._price(price, product)
        if regular_price is not None:
            payload["regular_price"] = regular_price
        if image_id:
            payload["image"] = {"id": image_id}
        elif colourway.images:
            payload["image"] = {"src": colourway.images[0].url}
        return payload

    async def reconcile_variations(self, remote_id: int, product: CanonicalProduct) -> Dict[str, int]:
        """
        Update matching remote variations, create missing ones.

        Remote-only variations are left in place.
        """
        colour_attribute_id = await self.attributes.get_or_create_attribute(COLOR_ATTRIBUTE)
        size_attribute_id = await self.attributes.get_or_create_attribute(SIZE_ATTRIBUTE)

        existing: Dict[str, int] = {}
        for variation in await self.client.list_variations(remote_id):
            key = remote_variation_key(variation)
            if key is not None and key not in existing:
                existing[key] = int(variation["id"])

        counts = {"created": 0, "updated": 0, "failed": 0, "untouched": 0}
        seen: List[str] = []
        colour_cache: Dict[str, Optional[int]] = {}

        for colourway in product.variant_matrix or []:
            image_id = await self._colour_image(colourway, product, colour_cache)
            for size in colourway.size_variants:
                key = variation_key(colourway.colour_label, size.size)
                seen.append(key)
                payload = self.build_variation_payload(
                    product, colourway, size, colour_attribute_id, size_attribute_id, image_id
                )
                try:
                    if key in existing:
                        await self.client.update_variation(remote_id, existing[key], payload)
                        counts["updated"] += 1
                    else:
                        created = await self.client.create_variation(remote_id, payload)
                        existing[key] = int(created["id"])
                        counts["created"] += 1
                except RemoteCatalogError as exc:
                    counts["failed"] += 1
                    logger.warning(
                        f"Variation {key} of {product.external_id} failed, continuing: {exc}"
                    )

        counts["untouched"] = len(set(existing) - set(seen))
        self.stats["variations_created"] += counts["created"]
        self.stats["variations_updated"] += counts["updated"]
        self.stats["variations_failed"] += counts["failed"]
        logger.info(
            f"Variations for #{remote_id}: {counts['created']} created, "
            f"{counts['updated']} updated, {counts['failed']} failed, {counts['untouched']} untouched"
        )
        return counts

