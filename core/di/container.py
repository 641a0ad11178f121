from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from core.batch_processor import BatchProcessor
from core.exponential_backoff import ExponentialBackoff
from core.orchestrator import HarvestOrchestrator
from core.settings import Settings, get_settings
from core.types import SiteProfile
from network.fetch_engine import FetchEngine, HeaderPool
from network.render_bridge import RenderBridge, SubprocessRenderer
from parsers.product_extractor import ProductExtractor
from services.media import LocalBlobStore, MediaDownloader
from services.translation import GeminiTranslator, NoopTranslator
from sync.attribute_service import AttributeService
from sync.mapping_store import SqliteSyncMappingStore
from sync.pricing import build_pricing_policy
from sync.sync_engine import SyncEngine
from sync.woocommerce_client import WooCommerceClient


class Container:
    def __init__(self) -> None:
        self._providers: Dict[str, Callable[["Container"], Any]] = {}
        self._cache: Dict[str, Any] = {}

    def register(self, key: str, provider: Callable[["Container"], Any]) -> None:
        self._providers[key] = provider
        self._cache.pop(key, None)

    def resolve(self, key: str) -> Any:
        if key in self._cache:
            return self._cache[key]
        provider = self._providers[key]
        instance = provider(self)
        self._cache[key] = instance
        return instance


def _mapping_connection(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(db_path)


def build_container(
    settings: Optional[Settings] = None, profile: Optional[SiteProfile] = None
) -> Container:
    """Wire the harvest pipeline from settings; ``profile`` tunes the renderer markers."""
    settings = settings or get_settings()
    container = Container()

    container.register("settings", lambda _: settings)
    container.register(
        "backoff",
        lambda _: ExponentialBackoff(
            {"base": settings.backoff_base, "max_attempts": settings.max_retries}
        ),
    )
    container.register(
        "batch_processor",
        lambda _: BatchProcessor(
            batch_size=settings.batch_size,
            wave_sleep=settings.wave_sleep,
            batch_sleep=settings.batch_sleep,
            gc_every_batches=settings.gc_every_batches,
        ),
    )
    container.register(
        "header_pool",
        lambda _: HeaderPool.from_fake_useragent() if settings.use_fake_useragent else HeaderPool(),
    )
    container.register(
        "renderer",
        lambda _: SubprocessRenderer(
            script_path=settings.render_script,
            node_executable=settings.node_executable,
            default_timeout=settings.render_timeout,
            grace=settings.render_grace,
            side_channel_markers=(
                profile.detail.side_channel_markers if profile else ("COLOR_VARIATIONS",)
            ),
        ),
    )
    container.register(
        "render_bridge",
        lambda c: RenderBridge(c.resolve("renderer"), default_timeout=settings.render_timeout),
    )
    container.register(
        "fetch_engine",
        lambda c: FetchEngine(
            base_url=profile.base_url if profile else None,
            timeout=settings.http_timeout,
            max_retries=settings.max_retries,
            backoff=c.resolve("backoff"),
            header_pool=c.resolve("header_pool"),
            batch_processor=c.resolve("batch_processor"),
            renderer=c.resolve("renderer"),
        ),
    )
    container.register(
        "extractor",
        lambda _: ProductExtractor(list(profile.detail.strategies) if profile else None),
    )
    container.register(
        "catalog_client",
        lambda _: _catalog_client(settings),
    )
    container.register("attribute_service", lambda c: AttributeService(c.resolve("catalog_client")))
    container.register(
        "mapping_store",
        lambda _: SqliteSyncMappingStore(_mapping_connection(settings.mapping_db_path)),
    )
    container.register(
        "pricing",
        lambda _: build_pricing_policy(settings.pricing_policy, settings.markup_conversion_rate),
    )
    container.register(
        "sync_engine",
        lambda c: SyncEngine(
            c.resolve("catalog_client"),
            c.resolve("attribute_service"),
            c.resolve("mapping_store"),
            pricing=c.resolve("pricing"),
            default_category=(profile.default_category if profile else None) or settings.default_category,
            storage_root=settings.storage_root,
        ),
    )
    container.register("blob_store", lambda _: LocalBlobStore(settings.storage_root))
    container.register(
        "media_downloader",
        lambda c: MediaDownloader(c.resolve("blob_store")) if settings.download_images else None,
    )
    container.register("translator", lambda _: _translator(settings))
    container.register(
        "orchestrator",
        lambda c: HarvestOrchestrator(
            c.resolve("fetch_engine"),
            c.resolve("extractor"),
            c.resolve("sync_engine"),
            render_bridge=c.resolve("render_bridge"),
            media_downloader=c.resolve("media_downloader"),
            translator=c.resolve("translator"),
            listing_concurrency=settings.listing_concurrency,
            detail_concurrency=settings.detail_concurrency,
            colour_concurrency=settings.colour_concurrency,
            round_sleep=settings.round_sleep,
            debug_dir=settings.debug_dir,
        ),
    )
    return container


def _catalog_client(settings: Settings) -> WooCommerceClient:
    return WooCommerceClient(
        base_url=settings.catalog_base_url,
        consumer_key=settings.catalog_consumer_key,
        consumer_secret=settings.catalog_consumer_secret,
        api_version=settings.catalog_api_version,
        wp_username=settings.wp_username,
        wp_app_password=settings.wp_app_password,
        timeout=settings.catalog_timeout,
    )


def _translator(settings: Settings):
    if settings.translator == "gemini":
        return GeminiTranslator(
            api_key=settings.translation_api_key or "",
            target_language=settings.translation_language,
            model=settings.translation_model,
        )
    return NoopTranslator()
